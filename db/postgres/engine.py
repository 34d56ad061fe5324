"""Database engine and session management."""

from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from common.errors import ConfigurationError
from db.postgres.models import Base

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def configure_engine(database_url: str, echo: bool = False, pool_timeout: float = 10.0) -> AsyncEngine:
    """Create the async engine and session factory for ``database_url``.

    In-memory SQLite (used by tests and local tooling) shares a single
    connection so every session sees the same database.
    """
    global _engine, _session_factory

    if database_url.startswith("sqlite"):
        engine = create_async_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_async_engine(
            database_url,
            echo=echo,
            pool_size=5,
            max_overflow=10,
            pool_timeout=pool_timeout,
        )

    _engine = engine
    _session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return engine


def get_engine() -> AsyncEngine:
    """Return the configured engine."""
    if _engine is None:
        raise ConfigurationError(
            "Database is not configured. Set DATABASE_URL and start the application."
        )
    return _engine


@asynccontextmanager
async def get_session():
    """Get an async database session, committed on success."""
    if _session_factory is None:
        raise ConfigurationError(
            "Database is not configured. Set DATABASE_URL and start the application."
        )
    async with _session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db():
    """Initialize database tables."""
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db():
    """Close database connections."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
