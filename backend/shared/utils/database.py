"""
Async PostgreSQL connection manager for the catalog and dub stores.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from shared.config import Settings, get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)


class DatabaseManager:
    """Owns the async engine; hands out read and write sessions to SQLEntityStore."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    async def connect(self) -> None:
        if self._engine is not None:
            return
        s = self._settings
        self._engine = create_async_engine(
            s.database_url_str,
            pool_size=s.db_pool_min,
            max_overflow=max(0, s.db_pool_max - s.db_pool_min),
            pool_pre_ping=True,
            pool_recycle=300,
            echo=s.debug,
            connect_args={
                "command_timeout": s.db_command_timeout,
                "server_settings": {"application_name": f"dubtrack-{s.instance_id or 'jobs'}"},
            },
        )
        self._session_factory = async_sessionmaker(
            bind=self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        logger.info("database_connected", url=s.database_url_safe_log, pool_max=s.db_pool_max)

    async def disconnect(self) -> None:
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._session_factory = None
        logger.info("database_disconnected")

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("DatabaseManager not connected.")
        return self._engine

    def _factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            raise RuntimeError("DatabaseManager not connected. Call connect() first.")
        return self._session_factory

    @asynccontextmanager
    async def read_session(self) -> AsyncIterator[AsyncSession]:
        """Session without commit; lookups, listings and stats."""
        async with self._factory()() as session:
            yield session

    @asynccontextmanager
    async def write_session(self) -> AsyncIterator[AsyncSession]:
        """One transaction per store call: commit on success, roll back on any error."""
        async with self._factory()() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
