# ABOUTME: Async database engine and session lifecycle for the newsletter store.
# ABOUTME: One engine per process; repositories commit each write, sessions close out the rest.

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from portfolio_newsletter.config import Settings, get_settings
from portfolio_newsletter.db.models import Base

log = structlog.get_logger()


class Database:
    """Owns the async engine and the session factory bound to it."""

    def __init__(self, settings: Settings, url: str | None = None):
        self.engine: AsyncEngine = create_async_engine(
            url or settings.database_url,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_pool_max_overflow,
            pool_pre_ping=True,
            echo=settings.log_level.upper() == "DEBUG",
        )
        # Services keep reading rows after each per-write commit
        self.sessions = async_sessionmaker(self.engine, expire_on_commit=False, autoflush=False)

    async def create_schema(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()


_database: Database | None = None


def get_database() -> Database:
    """Process-wide Database, created on first use."""
    global _database
    if _database is None:
        _database = Database(get_settings())
        log.debug("database_engine_created")
    return _database


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession]:
    """Session scoped to one request or CLI command.

    Repository writes are already committed when they return; the final
    commit only closes the read transaction, and rollback on error can never
    undo a write that earlier succeeded.

    Usage:
        async with get_session() as session:
            repo = SubscriberRepository(session)
    """
    async with get_database().sessions() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db_session() -> AsyncGenerator[AsyncSession]:
    """FastAPI dependency yielding a request-scoped session."""
    async with get_session() as session:
        yield session


async def init_db() -> None:
    """Create newsletter tables if missing. Production schemas come from Alembic."""
    await get_database().create_schema()
    log.info("database_schema_ready")


async def close_db() -> None:
    """Dispose of the engine so the next use starts a fresh pool."""
    global _database
    if _database is not None:
        await _database.dispose()
        _database = None
