"""Async database engine and unit-of-work helpers.

``Database`` owns the engine and session factory for the embedded
store.  It is constructed once at process start (see
``gcal.container``) and passed to the stores; there is no module-level
engine.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from gcal.core.errors import StorageError
from gcal.db.models import Base

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _is_memory_url(url: str) -> bool:
    return url.endswith("://") or ":memory:" in url


class Database:
    """Engine + session factory with commit/rollback and retry handling.

    Args:
        engine: Async engine bound to the store.
        retries: Extra attempts for a failed unit of work (0 = no retry).
    """

    def __init__(self, engine: AsyncEngine, retries: int = 0) -> None:
        self.engine = engine
        self._retries = retries
        self._session_factory = async_sessionmaker(engine, expire_on_commit=False)
        # SQLite has a single writer and in-memory stores share one
        # connection, so units of work run one at a time.
        self._lock = asyncio.Lock()

    @classmethod
    def from_url(cls, url: str, retries: int = 0) -> Database:
        """Create a ``Database`` for *url*.

        In-memory SQLite URLs share a single connection so that every
        session sees the same tables.
        """
        if _is_memory_url(url):
            engine = create_async_engine(url, echo=False, poolclass=StaticPool)
        else:
            engine = create_async_engine(url, echo=False, pool_pre_ping=True)
        return cls(engine, retries=retries)

    async def create_all(self) -> None:
        """Create all tables (tests and first run without Alembic)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield an async session; commit on success, rollback on error.

        Storage-level failures are re-raised as ``StorageError``.
        """
        async with self._lock:
            session = self._session_factory()
            try:
                yield session
                await session.commit()
            except (SQLAlchemyError, OSError) as exc:
                await session.rollback()
                raise StorageError() from exc
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    async def run(
        self,
        work: Callable[..., Awaitable[T]],
        /,
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """Execute ``work(session, *args, **kwargs)`` in its own transaction.

        Failed attempts are retried ``retries`` times.

        Args:
            work: Coroutine function taking the session first (usually a
                repo static method).

        Returns:
            Whatever *work* returns.

        Raises:
            StorageError: When every attempt failed.
        """
        attempt = 0
        while True:
            try:
                async with self.session() as session:
                    return await work(session, *args, **kwargs)
            except StorageError as exc:
                if attempt >= self._retries:
                    logger.error(
                        "Storage operation failed: %s",
                        exc.__cause__,
                        extra={"event": "storage_error", "attempt": attempt + 1},
                    )
                    raise
                attempt += 1
                logger.warning(
                    "Storage operation failed, retrying: %s",
                    exc.__cause__,
                    extra={"event": "storage_retry", "attempt": attempt},
                )
