"""Embedded database engine, async session factory and write retry policy."""

import logging

from sqlalchemy import event
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from shared.config import settings

_stdlib_logger = logging.getLogger(__name__)


def make_engine(database_url: str) -> AsyncEngine:
    """Create an async engine for the embedded SQLite store.

    Every connection runs in WAL mode with a busy timeout so the upload
    drain can read while a cache batch is being committed.
    """
    engine = create_async_engine(
        database_url,
        echo=False,
        connect_args={"timeout": settings.database_busy_timeout_seconds},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    return engine


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


async def init_db(engine: AsyncEngine) -> None:
    """Create all tables. Idempotent."""
    from healthcache.domain.orm import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


engine = make_engine(settings.database_url)

async_session_factory = make_session_factory(engine)


# Backoff between lock retries: 50 ms doubling up to the configured cap, plus up
# to 100 ms of jitter.
lock_contention_wait = wait_exponential(
    multiplier=0.05, max=settings.retry_max_wait_seconds
) + wait_random(0, 0.1)

# SQLite reports lock contention as OperationalError ("database is locked").
# Only that is retried; anything else fails the transaction immediately.
retry_on_lock_contention = retry(
    retry=retry_if_exception_type(OperationalError),
    wait=lock_contention_wait,
    stop=stop_after_attempt(settings.retry_max_attempts),
    before_sleep=before_sleep_log(_stdlib_logger, logging.WARNING),
    reraise=True,
)
