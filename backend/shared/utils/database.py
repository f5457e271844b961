"""
Async database connection manager using the SQLAlchemy 2.0 async engine.
PostgreSQL (asyncpg) in deployment, SQLite (aiosqlite) for local runs and tests.
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from shared.config import Settings, get_settings
from shared.models.orm import Base
from shared.utils.logging import get_logger

logger = get_logger(__name__)


class DatabaseManager:
    """Manages the async engine and session factory."""

    def __init__(self, settings: Settings | None = None, url: str | None = None) -> None:
        self._settings = settings or get_settings()
        self._url = url or self._settings.database_url
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def _engine_kwargs(self) -> dict[str, Any]:
        if self._url.startswith("sqlite"):
            return {"echo": self._settings.debug}
        return {
            "pool_size": self._settings.db_pool_min,
            "max_overflow": self._settings.db_pool_max - self._settings.db_pool_min,
            "pool_pre_ping": True,
            "pool_recycle": 300,
            "echo": self._settings.debug,
            "connect_args": {"command_timeout": self._settings.db_command_timeout},
        }

    async def connect(self, create_schema: bool = True) -> None:
        """Create the engine and session factory; optionally create missing tables."""
        self._engine = create_async_engine(self._url, **self._engine_kwargs())
        self._session_factory = async_sessionmaker(
            bind=self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        if create_schema:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        safe_url = self._settings.database_url_safe_log if self._url == self._settings.database_url else self._url
        logger.info("database_connected", url=safe_url, dialect=self._engine.dialect.name)

    async def disconnect(self) -> None:
        """Dispose of the engine and all connections."""
        if self._engine:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("database_disconnected")

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("DatabaseManager not connected.")
        return self._engine

    @asynccontextmanager
    async def read_session(self) -> AsyncIterator[AsyncSession]:
        """Provide a read-only session (no commit)."""
        if self._session_factory is None:
            raise RuntimeError("DatabaseManager not connected.")
        async with self._session_factory() as session:
            yield session

    @asynccontextmanager
    async def write_session(self) -> AsyncIterator[AsyncSession]:
        """Provide a transactional session that commits on success."""
        if self._session_factory is None:
            raise RuntimeError("DatabaseManager not connected.")
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise


CONNECT_RETRY_ATTEMPTS = 10
CONNECT_RETRY_BASE_DELAY_S = 2.0


async def connect_with_retry(
    connect_fn: Callable[[], Awaitable[None]],
    name: str,
    attempts: int = CONNECT_RETRY_ATTEMPTS,
    base_delay_s: float = CONNECT_RETRY_BASE_DELAY_S,
) -> None:
    """Call connect_fn(); retry with exponential backoff (e.g. Postgres not ready yet in Docker)."""
    for attempt in range(1, attempts + 1):
        try:
            await connect_fn()
            return
        except Exception as exc:
            if attempt == attempts:
                raise
            delay = base_delay_s * (2 ** (attempt - 1))
            logger.warning(
                "connect_retry",
                name=name,
                attempt=attempt,
                max_attempts=attempts,
                delay_s=delay,
                error=str(exc),
            )
            await asyncio.sleep(delay)
