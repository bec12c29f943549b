"""
Async engine and session factory for the parcel store.

PostgreSQL (asyncpg) in every deployed environment; SQLite (aiosqlite) is
accepted for local runs and tests, where the ON CONFLICT upserts behave the
same way.
"""

from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool
from core.config import settings
import logging

logger = logging.getLogger(__name__)


def build_engine(database_url: Optional[str] = None, echo: bool = False) -> AsyncEngine:
    """Engine for ``database_url`` (defaults to settings.DATABASE_URL)."""
    url = database_url or settings.DATABASE_URL

    if url.startswith("sqlite") and ":memory:" in url:
        # one shared connection keeps the in-memory database alive
        return create_async_engine(
            url,
            echo=echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )

    # connections are not shared across event loops (CLI runs, API workers)
    return create_async_engine(url, echo=echo, poolclass=NullPool)


def build_session_maker(bind: AsyncEngine) -> async_sessionmaker:
    # rows stay readable after commit; the pipeline commits once per stage
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


engine = build_engine()
async_session_maker = build_session_maker(engine)


async def create_tables(bind: Optional[AsyncEngine] = None) -> List[str]:
    """Create every mapped table that does not exist yet; returns the table names."""
    # importing the package registers every model on Base.metadata
    from models import Base

    bind = bind or engine
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    tables = sorted(Base.metadata.tables)
    logger.info(f"Tables ready: {', '.join(tables)}")
    return tables
