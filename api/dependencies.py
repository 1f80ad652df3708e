"""
FastAPI dependencies: database session and the engine services created in
``create_app`` (stored on ``app.state``).
"""

from typing import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import async_session_maker
from sync_engine.orchestrator import SyncOrchestrator
from sync_engine.registry import MappingRegistry
from sync_engine.scheduler import SyncScheduler


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a database session"""
    async with async_session_maker() as session:
        yield session


def get_registry(request: Request) -> MappingRegistry:
    return request.app.state.registry


def get_orchestrator(request: Request) -> SyncOrchestrator:
    return request.app.state.orchestrator


def get_scheduler(request: Request) -> SyncScheduler:
    return request.app.state.scheduler
