"""
Database engine, sessions and schema bootstrap.

The API shares one module-level engine. Celery tasks open a short-lived
engine per task through get_task_session().
"""
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


def _engine_options(url: str) -> dict[str, Any]:
    """Pool sizing only applies to server databases; SQLite uses its own pool"""
    options: dict[str, Any] = {"echo": settings.DEBUG, "pool_pre_ping": True}
    if not url.startswith("sqlite"):
        options["pool_size"] = settings.DB_POOL_SIZE
        options["max_overflow"] = settings.DB_MAX_OVERFLOW
    return options


engine = create_async_engine(settings.DATABASE_URL, **_engine_options(settings.DATABASE_URL))

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session; anything left uncommitted by a failed request is rolled back"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def init_models() -> None:
    """Create missing tables for every registered model"""
    import app.db.models  # noqa: F401  registers the mappers on Base.metadata

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized", extra_data={"tables": len(Base.metadata.tables)})


@asynccontextmanager
async def get_task_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Session for one Celery task.

    Every task runs its own event loop, and asyncpg connections are bound
    to the loop that opened them, so the engine lives and dies with the task.
    """
    task_engine = create_async_engine(
        settings.DATABASE_URL, **_engine_options(settings.DATABASE_URL)
    )
    session_maker = async_sessionmaker(
        bind=task_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    try:
        async with session_maker() as session:
            yield session
    finally:
        await task_engine.dispose()
