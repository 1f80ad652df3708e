"""
Pydantic schemas for API request/response models
"""

from pydantic import BaseModel, Field, validator
from typing import Optional, List, Dict, Any
from datetime import datetime
from models.base import SourceKind, SourceStatus, SyncStatus


# ============================================================================
# Sync Trigger Schemas
# ============================================================================

class SyncTriggerResponse(BaseModel):
    """Result of an on-demand sync"""
    success: bool
    status: SyncStatus
    message: str
    records: int = 0
    stats: Optional[Dict[str, Any]] = None
    run_id: Optional[str] = None

    class Config:
        use_enum_values = True
        json_schema_extra = {
            "example": {
                "success": True,
                "status": "success",
                "message": "Synchronized 37 billing records: 12 new, 25 updated, 0 skipped, 0 errors",
                "records": 37,
                "stats": {
                    "entities": {
                        "customer": {"total": 37, "new": 12, "updated": 25, "skipped": 0}
                    },
                    "startTime": "2024-01-15T10:00:00",
                    "endTime": "2024-01-15T10:00:04",
                    "durationSeconds": 4.2,
                    "incremental": True
                }
            }
        }


# ============================================================================
# Sync Status Schemas
# ============================================================================

class SyncRunSummary(BaseModel):
    """One row of the run audit trail"""
    run_id: str
    status: SyncStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    records_fetched: int = 0
    records_inserted: int = 0
    records_updated: int = 0
    records_skipped: int = 0
    records_failed: int = 0
    error_message: Optional[str] = None

    class Config:
        from_attributes = True
        use_enum_values = True


class SourceSyncStatus(BaseModel):
    """Configuration summary and recent history of one source kind"""
    source_kind: SourceKind
    configured: bool
    status: Optional[SourceStatus] = None
    sync_frequency: Optional[int] = Field(None, description="Hours between scheduled runs")
    last_synced_at: Optional[datetime] = None
    last_sync_stats: Optional[Dict[str, Any]] = None
    sync_in_progress: bool = False
    scheduler_running: bool = False
    recent_runs: List[SyncRunSummary] = Field(default_factory=list)

    class Config:
        use_enum_values = True


class FieldInfo(BaseModel):
    name: str
    description: str


class AvailableFieldsResponse(BaseModel):
    """Source fields an admin can map for one entity type"""
    source_kind: SourceKind
    entity: str
    fields: List[FieldInfo] = Field(default_factory=list)

    class Config:
        use_enum_values = True


# ============================================================================
# Scheduler Schemas
# ============================================================================

class SchedulerResponse(BaseModel):
    """Outcome of a scheduler control action"""
    success: bool
    message: str
    status: str = Field(..., description="running, stopped or unknown")


# ============================================================================
# Health Check Schemas
# ============================================================================

class SourceHealth(BaseModel):
    """Sync state of one source for the health check"""
    source_kind: SourceKind
    configured: bool
    active: bool = False
    last_synced_at: Optional[datetime] = None
    last_run_status: Optional[SyncStatus] = None
    scheduler_running: bool = False

    class Config:
        use_enum_values = True


class HealthCheckResponse(BaseModel):
    """Health check response model"""
    database_connected: bool
    sources: List[SourceHealth] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    status: str = Field("healthy", description="Overall system status: healthy, degraded, unhealthy")

    @validator("status", pre=True, always=True)
    def determine_status(cls, v, values):
        """Determine overall health status"""
        if not values.get("database_connected", False):
            return "unhealthy"

        sources = values.get("sources") or []
        failed = sum(
            1 for s in sources
            if s.last_run_status in (SyncStatus.FAILED, SyncStatus.FAILED.value)
        )

        if failed == 0:
            return "healthy"
        elif failed < len(sources):
            return "degraded"
        else:
            return "unhealthy"

    class Config:
        json_schema_extra = {
            "example": {
                "status": "healthy",
                "timestamp": "2024-01-15T10:30:00Z",
                "database_connected": True,
                "sources": [
                    {
                        "source_kind": "billing",
                        "configured": True,
                        "active": True,
                        "last_synced_at": "2024-01-15T10:00:00Z",
                        "last_run_status": "success",
                        "scheduler_running": True
                    }
                ]
            }
        }


