"""
Database engine and session management with SQLAlchemy async.

The same engine backs the engine-owned tables (source configs, mappings,
run audit) and the shared destination tables the synchronizer writes into.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool
from core.config import settings
import logging

logger = logging.getLogger(__name__)


def build_engine(url: str, **kwargs) -> AsyncEngine:
    """Create an async engine without a connection pool.

    Every unit of work opens and closes its own connection, so nothing is held
    across a whole synchronization run.
    """
    return create_async_engine(url, poolclass=NullPool, future=True, **kwargs)


def build_session_maker(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = build_engine(settings.DATABASE_URL)
async_session_maker = build_session_maker(engine)
