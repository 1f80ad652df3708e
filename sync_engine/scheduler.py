"""
Scheduler: periodically checks each source kind and runs a sync when due.
"""

from datetime import datetime, timezone
from typing import Optional
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from core.config import settings
from models.base import SourceKind
from models.source_config import SourceConfig
from schemas.sync import SyncResult
from sync_engine.orchestrator import SyncOrchestrator
from sync_engine.registry import MappingRegistry

logger = logging.getLogger(__name__)


def is_due(config: Optional[SourceConfig], now: datetime) -> bool:
    """
    Whether a source should be synchronized now.

    Inactive sources and sources without a sync frequency are never due; a
    source that never synchronized is always due.
    """
    if config is None or not config.is_active or not config.sync_frequency:
        return False
    if config.last_synced_at is None:
        return True
    hours_since = (now - config.last_synced_at).total_seconds() / 3600
    return hours_since >= config.sync_frequency


class SyncScheduler:
    """
    One APScheduler interval job per source kind.

    A job polls every SCHEDULER_POLL_SECONDS (first check immediately on
    start) and calls the orchestrator when the source is due. The
    orchestrator's own guard covers overlap with on-demand runs.
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        registry: MappingRegistry,
        poll_seconds: Optional[int] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.orchestrator = orchestrator
        self.registry = registry
        self.poll_seconds = poll_seconds or settings.SCHEDULER_POLL_SECONDS
        self.scheduler = scheduler or AsyncIOScheduler()

    @staticmethod
    def job_id(source_kind: SourceKind) -> str:
        return f"sync:{source_kind.value}"

    async def tick(self, source_kind: SourceKind) -> Optional[SyncResult]:
        """Job body: run a sync if due. Never raises."""
        try:
            config = await self.registry.get_config(source_kind)
            if not is_due(config, datetime.utcnow()):
                return None

            logger.info(f"Scheduler: {source_kind.value} is due, starting sync")
            result = await self.orchestrator.run_once(source_kind)
            logger.info(f"Scheduler: {source_kind.value} sync finished with {result.status.value}")
            return result

        except Exception as e:
            logger.error(f"Scheduler: {source_kind.value} tick failed - {e}")
            return None

    def start(self, source_kind: SourceKind) -> bool:
        """Start the job for a source kind. Returns False if it was already running."""
        if self.is_running(source_kind):
            return False

        if not self.scheduler.running:
            self.scheduler.start()

        self.scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(seconds=self.poll_seconds),
            args=[source_kind],
            id=self.job_id(source_kind),
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now(timezone.utc),
        )
        logger.info(f"Scheduler started for {source_kind.value} (every {self.poll_seconds}s)")
        return True

    def stop(self, source_kind: SourceKind) -> bool:
        """Remove the job for a source kind. Returns False if it was not running."""
        if not self.is_running(source_kind):
            return False
        self.scheduler.remove_job(self.job_id(source_kind))
        logger.info(f"Scheduler stopped for {source_kind.value}")
        return True

    def is_running(self, source_kind: SourceKind) -> bool:
        return (
            self.scheduler.running
            and self.scheduler.get_job(self.job_id(source_kind)) is not None
        )

    def start_all(self) -> None:
        for source_kind in SourceKind:
            self.start(source_kind)

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Sync scheduler shut down")

    async def trigger(self, source_kind: SourceKind, full_resync: bool = False) -> SyncResult:
        """On-demand run through the orchestrator"""
        return await self.orchestrator.run_once(source_kind, full_resync=full_resync)
