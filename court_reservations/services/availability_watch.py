import asyncio
import logging

from court_reservations.core.errors import StoreUnavailable
from court_reservations.db.session import SessionLocal
from court_reservations.services.availability_service import compute_availability
from court_reservations.services.change_feed import ChangeFeed, FeedDisconnected

logger = logging.getLogger(__name__)


class AvailabilityWatcher:
    """Keeps one viewer's slot list for a (court, date) current.

    ``stream`` yields the slot list once on subscribe and again after every
    change event on that topic. When the feed drops it resubscribes with
    exponential backoff and yields a fresh snapshot, since events may have been
    missed while disconnected.
    """

    def __init__(self, feed: ChangeFeed, session_factory=SessionLocal,
                 max_reconnects: int = 5, backoff_seconds: float = 0.5, max_backoff_seconds: float = 8.0):
        self.feed = feed
        self.session_factory = session_factory
        self.max_reconnects = max_reconnects
        self.backoff_seconds = backoff_seconds
        self.max_backoff_seconds = max_backoff_seconds

    def _compute(self, court_id: int, date_str: str):
        db = self.session_factory()
        try:
            return compute_availability(db, court_id, date_str)
        finally:
            db.close()

    async def snapshot(self, court_id: int, date_str: str):
        return await asyncio.to_thread(self._compute, court_id, date_str)

    async def stream(self, court_id: int, date_str: str):
        failures = 0
        while True:
            # subscribe before reading so no write can slip between snapshot and first event
            sub = self.feed.subscribe(court_id, date_str)
            try:
                yield await self.snapshot(court_id, date_str)
                async for _event in sub:
                    failures = 0
                    yield await self.snapshot(court_id, date_str)
                return
            except FeedDisconnected as e:
                failures += 1
                if failures > self.max_reconnects:
                    logger.error("availability stream %s/%s: giving up after %d reconnects",
                                 court_id, date_str, self.max_reconnects)
                    raise StoreUnavailable("The change feed could not be reached") from e
                delay = min(self.backoff_seconds * (2 ** (failures - 1)), self.max_backoff_seconds)
                logger.warning("availability stream %s/%s disconnected (%s), resubscribing in %.2fs",
                               court_id, date_str, e, delay)
                await asyncio.sleep(delay)
            finally:
                await sub.close()
