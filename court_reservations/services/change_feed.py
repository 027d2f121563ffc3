"""
Change notifications scoped by (court, date).

Booking writes publish a ChangeEvent after commit; availability watchers
subscribe to the topic of the (court, date) they are showing and recompute on
every event. Two backends:

- InMemoryChangeFeed: single process (API workers share it through threads).
- RedisChangeFeed: pub/sub channel ``bookings:<court_id>:<date>`` for
  deployments with several API processes or a Celery worker writing bookings.
"""
from __future__ import annotations

import asyncio
import json
import logging
import threading
from dataclasses import dataclass, asdict

import redis
import redis.asyncio as aioredis

from court_reservations.core.config import settings
from court_reservations.core.errors import StoreUnavailable

logger = logging.getLogger(__name__)

INSERT = "insert"
UPDATE = "update"
DELETE = "delete"


@dataclass(frozen=True)
class ChangeEvent:
    court_id: int
    date_str: str
    kind: str  # insert | update | delete
    booking_id: str = ""

    @property
    def topic(self) -> tuple[int, str]:
        return (self.court_id, self.date_str)

    def to_json(self) -> str:
        return json.dumps(asdict(self), separators=(",", ":"))

    @classmethod
    def from_json(cls, raw) -> "ChangeEvent":
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        d = json.loads(raw)
        return cls(court_id=int(d["court_id"]), date_str=d["date_str"], kind=d["kind"],
                   booking_id=d.get("booking_id", ""))


class FeedDisconnected(Exception):
    """The subscription lost its connection to the feed; resubscribe to continue."""


class Subscription:
    """Async iterator of ChangeEvents for one topic. Call ``close()`` when done."""

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeEvent:
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError


class ChangeFeed:
    def publish(self, event: ChangeEvent) -> None:
        raise NotImplementedError

    def subscribe(self, court_id: int, date_str: str) -> Subscription:
        raise NotImplementedError


def channel_for(court_id: int, date_str: str) -> str:
    return f"bookings:{court_id}:{date_str}"


# ---- in-memory ----

_DISCONNECTED = object()


class _MemorySubscription(Subscription):
    def __init__(self, feed: "InMemoryChangeFeed", topic: tuple[int, str], loop: asyncio.AbstractEventLoop):
        self._feed = feed
        self.topic = topic
        self._loop = loop
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    def _deliver(self, item) -> bool:
        # publishers run in request worker threads; hand the item to the subscriber's loop
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, item)
        except RuntimeError:
            return False  # loop already closed
        return True

    async def __anext__(self) -> ChangeEvent:
        if self._closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _DISCONNECTED:
            raise FeedDisconnected(f"feed dropped topic {self.topic}")
        return item

    async def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._feed._remove(self)


class InMemoryChangeFeed(ChangeFeed):
    def __init__(self):
        self._lock = threading.Lock()
        self._topics: dict[tuple[int, str], set[_MemorySubscription]] = {}

    def subscribe(self, court_id: int, date_str: str) -> Subscription:
        topic = (int(court_id), date_str)
        sub = _MemorySubscription(self, topic, asyncio.get_running_loop())
        with self._lock:
            self._topics.setdefault(topic, set()).add(sub)
        return sub

    def publish(self, event: ChangeEvent) -> None:
        with self._lock:
            subs = list(self._topics.get(event.topic, ()))
        for sub in subs:
            if not sub._deliver(event):
                self._remove(sub)

    def _remove(self, sub: _MemorySubscription) -> None:
        with self._lock:
            subs = self._topics.get(sub.topic)
            if subs is None:
                return
            subs.discard(sub)
            if not subs:
                del self._topics[sub.topic]

    def active_topics(self) -> set[tuple[int, str]]:
        with self._lock:
            return set(self._topics)

    def disconnect_all(self) -> None:
        """Signal every live subscription that the feed dropped (shutdown, failover)."""
        with self._lock:
            subs = [s for group in self._topics.values() for s in group]
        for sub in subs:
            sub._deliver(_DISCONNECTED)


# ---- redis ----

class _RedisSubscription(Subscription):
    def __init__(self, url: str, channel: str):
        self._url = url
        self.channel = channel
        self._client = None
        self._pubsub = None
        self._closed = False

    async def _connect(self):
        self._client = aioredis.from_url(self._url)
        self._pubsub = self._client.pubsub()
        await self._pubsub.subscribe(self.channel)

    async def __anext__(self) -> ChangeEvent:
        if self._closed:
            raise StopAsyncIteration
        try:
            if self._pubsub is None:
                await self._connect()
            while True:
                msg = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if msg is None:
                    continue
                return ChangeEvent.from_json(msg["data"])
        except (redis.exceptions.ConnectionError, redis.exceptions.TimeoutError) as e:
            raise FeedDisconnected(f"redis channel {self.channel}: {e}") from e

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            if self._pubsub is not None:
                await self._pubsub.unsubscribe(self.channel)
                await self._pubsub.aclose()
            if self._client is not None:
                await self._client.aclose()
        except redis.exceptions.ConnectionError as e:
            logger.warning("closing subscription %s: %s", self.channel, e)


class RedisChangeFeed(ChangeFeed):
    def __init__(self, url: str):
        self._url = url
        self._publisher = redis.Redis.from_url(url)

    def publish(self, event: ChangeEvent) -> None:
        try:
            self._publisher.publish(channel_for(event.court_id, event.date_str), event.to_json())
        except (redis.exceptions.ConnectionError, redis.exceptions.TimeoutError) as e:
            raise StoreUnavailable("The change feed could not be reached") from e

    def subscribe(self, court_id: int, date_str: str) -> Subscription:
        return _RedisSubscription(self._url, channel_for(court_id, date_str))


_feed: ChangeFeed | None = None


def get_change_feed() -> ChangeFeed:
    global _feed
    if _feed is None:
        if settings.CHANGE_FEED_BACKEND == "redis":
            _feed = RedisChangeFeed(settings.REDIS_URL)
        else:
            _feed = InMemoryChangeFeed()
    return _feed


def publish_changes(events) -> None:
    """Publish after commit. The write already stands; a feed outage is logged, watchers resync on reconnect."""
    feed = get_change_feed()
    for ev in events:
        try:
            feed.publish(ev)
        except StoreUnavailable as e:
            logger.error("change event %s for %s not published: %s", ev.kind, ev.topic, e)
