"""
Scheduler control endpoints
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from api.dependencies import get_scheduler
from schemas.api import SchedulerResponse
from models.base import SourceKind
from sync_engine.scheduler import SyncScheduler
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/scheduler", tags=["Scheduler"])


def _state(scheduler: SyncScheduler, source_kind: SourceKind) -> str:
    return "running" if scheduler.is_running(source_kind) else "stopped"


@router.post("/{source_kind}/{action}", response_model=SchedulerResponse)
async def control_scheduler(
    source_kind: SourceKind,
    action: str,
    scheduler: SyncScheduler = Depends(get_scheduler),
):
    """
    Start, stop or inspect the periodic job for a source kind.

    Actions: start, stop, status. Anything else is a 400.
    """
    if action == "start":
        started = scheduler.start(source_kind)
        message = (
            f"Scheduler started for {source_kind.value}" if started
            else f"Scheduler already running for {source_kind.value}"
        )
    elif action == "stop":
        stopped = scheduler.stop(source_kind)
        message = (
            f"Scheduler stopped for {source_kind.value}" if stopped
            else f"Scheduler was not running for {source_kind.value}"
        )
    elif action == "status":
        message = f"Scheduler is {_state(scheduler, source_kind)} for {source_kind.value}"
    else:
        logger.warning(f"Unknown scheduler action '{action}' for {source_kind.value}")
        return JSONResponse(
            status_code=400,
            content=SchedulerResponse(
                success=False,
                message=f"Unknown action '{action}'. Use start, stop or status",
                status="unknown",
            ).model_dump(),
        )

    return SchedulerResponse(
        success=True,
        message=message,
        status=_state(scheduler, source_kind),
    )
