"""
Pydantic schemas for run statistics and run results
"""

from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime
from models.base import SyncStatus


class EntitySyncStats(BaseModel):
    """
    Counters for one source entity type within a run.

    ``skipped`` covers both rows removed by the change filter (also counted
    in ``unchanged``) and rows dropped for having no key value. ``errors``
    counts rows whose lookup/insert/update failed.
    """
    total: int = 0
    new: int = 0
    updated: int = 0
    skipped: int = 0
    unchanged: int = 0
    errors: int = 0

    @property
    def dropped(self) -> int:
        """Rows skipped for a reason other than being unchanged"""
        return self.skipped - self.unchanged


class SyncRunStats(BaseModel):
    """Statistics of a single run, persisted as ``last_sync_stats``"""

    entities: Dict[str, EntitySyncStats] = Field(default_factory=dict)
    start_time: datetime = Field(default_factory=datetime.utcnow, alias="startTime")
    end_time: Optional[datetime] = Field(None, alias="endTime")
    duration_seconds: Optional[float] = Field(None, alias="durationSeconds")
    incremental: bool = False

    class Config:
        populate_by_name = True

    def for_entity(self, entity_type: str) -> EntitySyncStats:
        if entity_type not in self.entities:
            self.entities[entity_type] = EntitySyncStats()
        return self.entities[entity_type]

    def finish(self, end_time: Optional[datetime] = None) -> "SyncRunStats":
        self.end_time = end_time or datetime.utcnow()
        self.duration_seconds = round(
            (self.end_time - self.start_time).total_seconds(), 3
        )
        return self

    @property
    def total_fetched(self) -> int:
        return sum(e.total for e in self.entities.values())

    @property
    def total_new(self) -> int:
        return sum(e.new for e in self.entities.values())

    @property
    def total_updated(self) -> int:
        return sum(e.updated for e in self.entities.values())

    @property
    def total_skipped(self) -> int:
        return sum(e.skipped for e in self.entities.values())

    @property
    def total_errors(self) -> int:
        return sum(e.errors for e in self.entities.values())

    @property
    def has_dropped_rows(self) -> bool:
        return any(e.errors or e.dropped for e in self.entities.values())

    def to_blob(self) -> Dict[str, Any]:
        """JSON-ready representation stored on SourceConfig"""
        return self.model_dump(mode="json", by_alias=True)


class SyncResult(BaseModel):
    """
    Structured outcome of ``run_once``.

    ``status`` lets callers tell apart "nothing to do" (no_op), a run that
    dropped rows (partial_success), a concurrent request (busy) and a hard
    failure (failed).
    """
    success: bool
    status: SyncStatus
    message: str
    record_count: int = 0
    stats: Optional[SyncRunStats] = None
    run_id: Optional[str] = None
