"""
Health check endpoint with database and sync status
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, text
from api.dependencies import get_db, get_scheduler
from schemas.api import HealthCheckResponse, SourceHealth
from models.base import SourceKind, SourceStatus
from models.source_config import SourceConfig
from models.sync_run import SyncRun
from sync_engine.scheduler import SyncScheduler
from datetime import datetime
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(
    db: AsyncSession = Depends(get_db),
    scheduler: SyncScheduler = Depends(get_scheduler),
):
    """
    Health check endpoint.

    Returns:
    - Database connectivity status
    - Per-source configuration, last sync time and last run outcome
    """

    db_connected = False

    try:
        await db.execute(text("SELECT 1"))
        db_connected = True
    except Exception as e:
        logger.error(f"Database connection failed: {str(e)}")

    sources = []

    if db_connected:
        try:
            for source_kind in SourceKind:
                config = (await db.execute(
                    select(SourceConfig).where(SourceConfig.source_kind == source_kind)
                )).scalar_one_or_none()

                last_run = (await db.execute(
                    select(SyncRun)
                    .where(SyncRun.source_kind == source_kind)
                    .order_by(SyncRun.started_at.desc(), SyncRun.id.desc())
                    .limit(1)
                )).scalar_one_or_none()

                sources.append(SourceHealth(
                    source_kind=source_kind,
                    configured=config is not None,
                    active=bool(config and config.status == SourceStatus.ACTIVE),
                    last_synced_at=config.last_synced_at if config else None,
                    last_run_status=last_run.status if last_run else None,
                    scheduler_running=scheduler.is_running(source_kind),
                ))
        except Exception as e:
            logger.error(f"Failed to read sync state: {str(e)}")

    return HealthCheckResponse(
        database_connected=db_connected,
        sources=sources,
        timestamp=datetime.utcnow(),
    )
