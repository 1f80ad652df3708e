"""
Pydantic schemas for data validation and serialization.

Schemas:
    sync: Run statistics (persisted as last_sync_stats) and run results
    api: API endpoint response models

Usage:
    from schemas.sync import SyncRunStats, SyncResult
    from schemas.api import SyncTriggerResponse, HealthCheckResponse

Example:
    stats = SyncRunStats()
    stats.for_entity("customer").new += 1
    stats.finish()

    # Stored with camelCase run-level keys
    assert "startTime" in stats.to_blob()
"""

__all__ = [
    "EntitySyncStats",
    "SyncRunStats",
    "SyncResult",
    "SyncTriggerResponse",
    "SourceSyncStatus",
    "SyncRunSummary",
    "AvailableFieldsResponse",
    "SchedulerResponse",
    "HealthCheckResponse",
]
