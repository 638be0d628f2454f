"""
Database engine and session factory (SQLAlchemy async)
"""

from typing import AsyncGenerator, Optional
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from core.config import settings
import logging

logger = logging.getLogger(__name__)


def build_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """
    Async engine for PostgreSQL (asyncpg) or, for local runs, SQLite.

    Connections are not pooled across event loops: the API, the scheduler
    and CLI scripts each open their own.
    """
    database_url = database_url or settings.DATABASE_URL
    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=False, connect_args={"check_same_thread": False})
    return create_async_engine(database_url, echo=False, poolclass=NullPool)


engine = build_engine()

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False
)


async def create_tables(target: Optional[AsyncEngine] = None):
    """Create the clinics and import_runs tables if missing"""
    from models.base import Base
    # Registers the tables on Base.metadata
    from models.clinic import Clinic  # noqa: F401
    from models.import_run import ImportRun  # noqa: F401

    target = target or engine
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Tables ready: {', '.join(sorted(Base.metadata.tables))}")


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session"""
    async with async_session_maker() as session:
        yield session
