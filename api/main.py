"""
FastAPI application initialization
"""

from fastapi import FastAPI
from api.routes import health, sync, scheduler as scheduler_routes
from api.middleware import RequestContextMiddleware
from core.config import settings
from core.database import async_session_maker, engine
from core.logging import setup_logging
from sync_engine.destination import DestinationStore
from sync_engine.orchestrator import SyncOrchestrator
from sync_engine.registry import MappingRegistry
from sync_engine.scheduler import SyncScheduler
import logging

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """Build the app and the engine services it exposes on ``app.state``"""
    setup_logging()

    app = FastAPI(
        title="Customer Success Sync Service",
        description="Synchronizes billing and analytical data into the customer success database",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(RequestContextMiddleware)

    registry = MappingRegistry(async_session_maker)
    orchestrator = SyncOrchestrator(registry, DestinationStore(engine))
    app.state.registry = registry
    app.state.orchestrator = orchestrator
    app.state.scheduler = SyncScheduler(orchestrator, registry)

    app.include_router(health.router)
    app.include_router(sync.router)
    app.include_router(scheduler_routes.router)

    @app.on_event("startup")
    async def startup_event():
        """Application startup event"""
        logger.info("Starting Customer Success Sync Service")
        logger.info(f"Environment: {settings.ENVIRONMENT}")
        logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")

        if settings.SCHEDULER_AUTOSTART:
            app.state.scheduler.start_all()
        else:
            logger.info("Scheduler autostart disabled (SCHEDULER_AUTOSTART=false)")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Application shutdown event"""
        logger.info("Shutting down Customer Success Sync Service")
        app.state.scheduler.shutdown()

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "message": "Customer Success Sync Service",
            "version": "1.0.0",
            "docs": "/docs",
            "health": "/health",
            "endpoints": {
                "sync": "/sync/{source_kind}",
                "fields": "/sync/{source_kind}/fields?entity=",
                "scheduler": "/scheduler/{source_kind}/{start|stop|status}"
            }
        }

    return app


app = create_app()
