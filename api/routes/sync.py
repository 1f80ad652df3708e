"""
Sync trigger, status and field catalogue endpoints
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from api.dependencies import get_orchestrator, get_registry, get_scheduler
from schemas.api import (
    AvailableFieldsResponse,
    FieldInfo,
    SourceSyncStatus,
    SyncRunSummary,
    SyncTriggerResponse,
)
from models.base import SourceKind, SyncStatus
from core.exceptions import SourceUnreachable
from sync_engine.adapters import build_adapter
from sync_engine.orchestrator import SyncOrchestrator
from sync_engine.registry import MappingRegistry
from sync_engine.scheduler import SyncScheduler
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/sync", tags=["Sync"])

STATUS_CODES = {
    SyncStatus.BUSY: 409,
    SyncStatus.FAILED: 500,
}


@router.post("/{source_kind}", response_model=SyncTriggerResponse)
async def trigger_sync(
    request: Request,
    source_kind: SourceKind,
    full_resync: bool = Query(False, description="Ignore last_synced_at for this run"),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """
    Run a synchronization now.

    - 200: success, partial_success or no_op
    - 409: a run for this source is already in progress
    - 500: the run failed
    """
    request_id = getattr(request.state, "request_id", "-")
    logger.info(f"[{request_id}] Sync requested for {source_kind.value} (full_resync={full_resync})")

    result = await orchestrator.run_once(source_kind, full_resync=full_resync)

    body = SyncTriggerResponse(
        success=result.success,
        status=result.status,
        message=result.message,
        records=result.record_count,
        stats=result.stats.to_blob() if result.stats else None,
        run_id=result.run_id,
    )
    return JSONResponse(
        status_code=STATUS_CODES.get(result.status, 200),
        content=body.model_dump(mode="json"),
    )


@router.get("/{source_kind}", response_model=SourceSyncStatus)
async def get_sync_status(
    source_kind: SourceKind,
    limit: int = Query(10, ge=1, le=100, description="Number of recent runs to return"),
    registry: MappingRegistry = Depends(get_registry),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    scheduler: SyncScheduler = Depends(get_scheduler),
):
    """Configuration summary, last run statistics and recent run history"""
    config = await registry.get_config(source_kind)
    runs = await registry.recent_runs(source_kind, limit=limit)

    return SourceSyncStatus(
        source_kind=source_kind,
        configured=config is not None,
        status=config.status if config else None,
        sync_frequency=config.sync_frequency if config else None,
        last_synced_at=config.last_synced_at if config else None,
        last_sync_stats=config.last_sync_stats if config else None,
        sync_in_progress=orchestrator.is_running(source_kind),
        scheduler_running=scheduler.is_running(source_kind),
        recent_runs=[SyncRunSummary.model_validate(run) for run in runs],
    )


@router.get("/{source_kind}/fields", response_model=AvailableFieldsResponse)
async def get_available_fields(
    source_kind: SourceKind,
    entity: str = Query(..., min_length=1, description="Source entity type, e.g. customer"),
    registry: MappingRegistry = Depends(get_registry),
):
    """Fields an admin can map for one source entity type"""
    config = await registry.get_config(source_kind)

    try:
        adapter = build_adapter(source_kind, config.connection if config else None)
        async with adapter:
            fields = await adapter.available_fields(entity)
    except SourceUnreachable as e:
        logger.error(
            f"Could not list fields for {source_kind.value}.{entity}: {e.message}",
            extra={"error_context": e.to_dict()}
        )
        raise HTTPException(status_code=503, detail=e.message)

    return AvailableFieldsResponse(
        source_kind=source_kind,
        entity=entity,
        fields=[FieldInfo(**field) for field in fields],
    )
