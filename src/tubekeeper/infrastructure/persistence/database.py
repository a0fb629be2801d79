"""Database engine and session management."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from tubekeeper.config import Settings
from tubekeeper.infrastructure.persistence.repositories import SqlAlchemyUnitOfWork

logger = logging.getLogger(__name__)


class Database:
    """Owns the async engine and hands out sessions / units of work."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        url = settings.database.url

        engine_kwargs: dict[str, Any] = {
            "echo": settings.database.echo,
            "pool_pre_ping": settings.database.pool_pre_ping,
        }
        if url.startswith("sqlite"):
            # Several scheduler workers write at the same time; wait for the lock
            # instead of failing with "database is locked".
            engine_kwargs["connect_args"] = {"timeout": 30}
        else:
            engine_kwargs.update(
                {
                    "pool_size": settings.database.pool_size,
                    "max_overflow": settings.database.max_overflow,
                    "pool_timeout": settings.database.pool_timeout,
                    "pool_recycle": settings.database.pool_recycle,
                }
            )

        self._engine = create_async_engine(url, **engine_kwargs)
        if url.startswith("sqlite"):
            self._enable_sqlite_pragmas()

        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    # Hey future me - SQLite ships with foreign keys OFF. Without this the
    # ON DELETE CASCADE of subscriptions -> videos silently does nothing.
    def _enable_sqlite_pragmas(self) -> None:
        @event.listens_for(self._engine.sync_engine, "connect")
        def set_sqlite_pragma(dbapi_conn: Any, _connection_record: Any) -> None:
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory

    @asynccontextmanager
    async def session_scope(self) -> AsyncGenerator[AsyncSession, None]:
        """Provide a transactional scope (commit on success, rollback on error)."""
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    def unit_of_work(self) -> SqlAlchemyUnitOfWork:
        """Create a unit of work bound to a fresh session."""
        return SqlAlchemyUnitOfWork(self._session_factory)

    async def create_tables(self) -> None:
        """Create all tables that don't exist yet."""
        from tubekeeper.infrastructure.persistence.models import Base

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.debug("Database schema ensured")

    async def close(self) -> None:
        """Dispose the engine and its connections."""
        await self._engine.dispose()

