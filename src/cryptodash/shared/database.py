"""
Database session management with async SQLAlchemy.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from cryptodash.config import get_settings
from cryptodash.shared.exceptions import StorageError
from cryptodash.shared.logging import get_logger

logger = get_logger(__name__)

# Driver-level failures that SQLAlchemy does not always wrap
STORAGE_FAILURES = (SQLAlchemyError, OSError, TimeoutError)


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


def _connect_args(database_url: str, timeout: float) -> dict[str, Any]:
    """Translate the storage timeout into driver connect arguments."""
    if database_url.startswith("postgresql+asyncpg"):
        return {"timeout": timeout, "command_timeout": timeout}
    if database_url.startswith("sqlite"):
        return {"timeout": timeout}
    return {}


class DatabaseManager:
    """Manages database connections and sessions."""

    def __init__(
        self,
        database_url: str | None = None,
        timeout_seconds: float | None = None,
        echo: bool | None = None,
    ) -> None:
        """Initialize database manager.

        Args:
            database_url: Optional database URL override.
            timeout_seconds: Optional storage timeout override.
            echo: Optional SQL echo override.
        """
        settings = get_settings()
        self._database_url = database_url or settings.database_url
        self._timeout = timeout_seconds or settings.storage_timeout_seconds
        self._echo = settings.debug if echo is None else echo
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        """Get or create the database engine."""
        if self._engine is None:
            options: dict[str, Any] = {
                "echo": self._echo,
                "pool_pre_ping": True,
                "connect_args": _connect_args(self._database_url, self._timeout),
            }
            if not self._database_url.startswith("sqlite"):
                options.update(pool_size=5, max_overflow=10, pool_timeout=self._timeout)
            self._engine = create_async_engine(self._database_url, **options)
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        """Get or create the session factory."""
        if self._session_factory is None:
            self._session_factory = async_sessionmaker(
                bind=self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False,
            )
        return self._session_factory

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Create a new database session context."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Dependency for FastAPI to get a database session."""
        async with self.session() as session:
            yield session

    async def create_all(self) -> None:
        """Create all tables registered on Base.metadata."""
        # Model modules register their tables on import
        import cryptodash.admin.models  # noqa: F401
        import cryptodash.auth.models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        """Close the database engine."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None


# Global database manager instance
_db_manager: DatabaseManager | None = None


def get_database_manager() -> DatabaseManager:
    """Get the global database manager instance."""
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager()
    return _db_manager


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for database sessions.

    Uses the manager attached to the application by create_app().
    """
    manager: DatabaseManager = getattr(request.app.state, "db", None) or get_database_manager()
    async for session in manager.get_session():
        yield session


@asynccontextmanager
async def storage_guard(
    session: AsyncSession,
    operation: str,
    **context: Any,
) -> AsyncGenerator[None, None]:
    """Translate storage failures inside the block into StorageError.

    The session is rolled back and the cause logged with full detail; the
    raised StorageError carries only a generic message.
    """
    try:
        yield
    except STORAGE_FAILURES as exc:
        logger.exception(
            "Storage operation failed",
            extra={"event_type": "storage_failure", "operation": operation, **context},
        )
        try:
            await session.rollback()
        except STORAGE_FAILURES:
            logger.warning("Rollback after storage failure also failed", extra={"operation": operation})
        raise StorageError(operation) from exc


__all__ = [
    "Base",
    "DatabaseManager",
    "STORAGE_FAILURES",
    "get_database_manager",
    "get_db_session",
    "storage_guard",
]
