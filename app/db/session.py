import os
import sys
from collections.abc import AsyncGenerator

from sqlalchemy import create_engine as create_sync_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.core.config import get_settings
from app.db.base import Base

# Registers every ORM model on Base.metadata (the attendance model imports
# the meeting and student models).
from app.models import attendance_record  # noqa: F401

settings = get_settings()

# Detect if we're running under pytest (also while conftest is being imported)
IS_TEST = "PYTEST_CURRENT_TEST" in os.environ or "pytest" in sys.modules

engine = create_async_engine(
    settings.DB_URL,
    echo=False,
    # Tests drive the engine from several event loops (TestClient + asyncio
    # tests), so connections must not be pooled across them.
    poolclass=NullPool if IS_TEST else None,
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    autoflush=False,
    expire_on_commit=False,
    class_=AsyncSession,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides an async SQLAlchemy session.

    The session is automatically closed when the request is completed.
    """
    async with AsyncSessionLocal() as session:
        yield session


async def init_db() -> None:
    """
    Create any missing tables for application startup.

    Safe to call repeatedly; existing tables are left untouched.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def build_sync_db_url(async_url: str) -> str:
    """
    Convert an async driver URL into its synchronous counterpart, e.g.
    'postgresql+asyncpg://...' -> 'postgresql://...' and
    'sqlite+aiosqlite://...' -> 'sqlite://...'.
    """
    for driver in ("+asyncpg", "+aiosqlite"):
        if driver in async_url:
            return async_url.replace(driver, "")
    return async_url


def reset_schema_sync(db_url: str | None = None) -> None:
    """
    TEST-ONLY: drop and recreate every table using a synchronous engine.

    Running DDL through a sync engine keeps it independent of whichever
    event loop the async engine will later be used from.
    """
    sync_engine = create_sync_engine(build_sync_db_url(db_url or settings.DB_URL))

    with sync_engine.begin() as conn:
        Base.metadata.drop_all(bind=conn)
        Base.metadata.create_all(bind=conn)

    sync_engine.dispose()
