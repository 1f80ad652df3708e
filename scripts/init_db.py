import asyncio
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from sqlalchemy import select
from core.config import settings
from core.database import build_engine, build_session_maker
from core.logging import setup_logging
from models import Base, SourceConfig, SourceKind, SourceStatus

logger = logging.getLogger(__name__)


async def init_database(seed_sources: bool = True):
    """Create the engine-owned tables and one inactive config row per source kind."""
    logger.info("Connecting to database...")
    engine = build_engine(settings.DATABASE_URL)

    async with engine.begin() as conn:
        logger.info("Creating tables...")
        await conn.run_sync(Base.metadata.create_all)
        logger.info("Tables created successfully.")

    if seed_sources:
        session_maker = build_session_maker(engine)
        async with session_maker() as session:
            for source_kind in SourceKind:
                existing = (await session.execute(
                    select(SourceConfig).where(SourceConfig.source_kind == source_kind)
                )).scalar_one_or_none()
                if existing is None:
                    session.add(SourceConfig(
                        source_kind=source_kind,
                        connection={},
                        status=SourceStatus.INACTIVE,
                        sync_frequency=24,
                    ))
                    logger.info(f"Seeded inactive {source_kind.value} source config")
            await session.commit()

    await engine.dispose()

if __name__ == "__main__":
    setup_logging()
    asyncio.run(init_database())
