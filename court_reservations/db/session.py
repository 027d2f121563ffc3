"""
Database engine, session factory and transport-failure retry.
"""
import functools
import logging
import time

from sqlalchemy import create_engine
from sqlalchemy.exc import InterfaceError, OperationalError, TimeoutError as PoolTimeout
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from court_reservations.core.config import settings
from court_reservations.core.errors import StoreUnavailable

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


_connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True, connect_args=_connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# Connection-level failures only; IntegrityError and friends are domain signals.
TRANSPORT_ERRORS = (OperationalError, InterfaceError, PoolTimeout)


def with_store_retry(fn):
    """Retry a store operation on transport failure, then raise StoreUnavailable.

    The wrapped function must take the session as its first argument; the session
    is rolled back between attempts so each attempt starts from a fresh read.

    ``fn.once`` is the same call without rollback or retry. Use it inside a
    transaction that holds row locks: a rollback would drop them.
    """
    @functools.wraps(fn)
    def once(db, *args, **kwargs):
        try:
            return fn(db, *args, **kwargs)
        except TRANSPORT_ERRORS as e:
            logger.error("%s: store unavailable inside a locked transaction: %s", fn.__name__, e)
            raise StoreUnavailable("The booking store could not be reached") from e

    @functools.wraps(fn)
    def wrapper(db, *args, **kwargs):
        attempts = max(1, settings.STORE_RETRY_ATTEMPTS)
        for attempt in range(1, attempts + 1):
            try:
                return fn(db, *args, **kwargs)
            except TRANSPORT_ERRORS as e:
                db.rollback()
                if attempt == attempts:
                    logger.error("%s: store unavailable after %d attempts: %s", fn.__name__, attempts, e)
                    raise StoreUnavailable("The booking store could not be reached") from e
                delay = settings.STORE_RETRY_BACKOFF_SECONDS * (2 ** (attempt - 1))
                logger.warning("%s: transport error (attempt %d/%d), retrying in %.2fs: %s",
                               fn.__name__, attempt, attempts, delay, e)
                time.sleep(delay)
    wrapper.once = once
    return wrapper
