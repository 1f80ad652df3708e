"""
API endpoint tests
"""

import pytest
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from api.main import app
from api.dependencies import get_db, get_orchestrator, get_registry, get_scheduler
from core.database import build_engine, build_session_maker
from core.exceptions import SourceNetworkError
from models.base import Base, SourceKind, SourceStatus, SyncStatus
from models.source_config import SourceConfig
from models.sync_run import SyncRun
from schemas.sync import SyncResult, SyncRunStats


@pytest.fixture
def orchestrator():
    orchestrator = MagicMock()
    orchestrator.run_once = AsyncMock()
    orchestrator.is_running = MagicMock(return_value=False)
    return orchestrator


@pytest.fixture
def scheduler():
    scheduler = MagicMock()
    scheduler.is_running = MagicMock(return_value=False)
    return scheduler


@pytest.fixture
def registry():
    registry = MagicMock()
    registry.get_config = AsyncMock(return_value=None)
    registry.recent_runs = AsyncMock(return_value=[])
    return registry


@pytest.fixture
def database_url(tmp_path):
    """File database prepared through the synchronous sqlite driver"""
    path = tmp_path / "api.db"
    sync_engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(sync_engine)
    with Session(sync_engine) as session:
        session.add(SourceConfig(
            source_kind=SourceKind.BILLING,
            connection={},
            status=SourceStatus.ACTIVE,
            sync_frequency=24,
            last_synced_at=datetime(2024, 1, 16, 9, 30),
        ))
        session.add(SyncRun(
            run_id="run-1",
            source_kind=SourceKind.BILLING,
            status=SyncStatus.FAILED,
            started_at=datetime(2024, 1, 16, 9, 30),
            error_message="Source unreachable: boom",
        ))
        session.commit()
    sync_engine.dispose()
    return f"sqlite+aiosqlite:///{path}"


@pytest.fixture
def client(orchestrator, scheduler, registry, database_url):
    """Test client with engine services and database overridden"""
    session_maker = build_session_maker(build_engine(database_url))

    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_scheduler] = lambda: scheduler
    app.dependency_overrides[get_registry] = lambda: registry

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def _result(status, success=True, message="done"):
    stats = SyncRunStats(start_time=datetime(2024, 1, 16, 9, 30))
    stats.for_entity("customer").new = 2
    stats.finish(datetime(2024, 1, 16, 9, 31))
    return SyncResult(
        success=success, status=status, message=message, record_count=2, stats=stats, run_id="run-42"
    )


def test_root_lists_endpoints(client):
    response = client.get("/")

    assert response.status_code == 200
    assert "sync" in response.json()["endpoints"]


def test_trigger_sync_success(client, orchestrator):
    orchestrator.run_once.return_value = _result(SyncStatus.SUCCESS)

    response = client.post("/sync/billing")

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["status"] == "success"
    assert data["records"] == 2
    assert data["run_id"] == "run-42"
    assert data["stats"]["entities"]["customer"]["new"] == 2
    assert data["stats"]["durationSeconds"] == 60.0
    orchestrator.run_once.assert_awaited_once_with(SourceKind.BILLING, full_resync=False)


def test_trigger_sync_full_resync_flag(client, orchestrator):
    orchestrator.run_once.return_value = _result(SyncStatus.PARTIAL)

    response = client.post("/sync/analytical?full_resync=true")

    assert response.status_code == 200
    assert response.json()["status"] == "partial_success"
    orchestrator.run_once.assert_awaited_once_with(SourceKind.ANALYTICAL, full_resync=True)


def test_trigger_sync_no_op_is_not_an_error(client, orchestrator):
    orchestrator.run_once.return_value = SyncResult(
        success=False, status=SyncStatus.NO_OP, message="No configuration found for billing"
    )

    response = client.post("/sync/billing")

    assert response.status_code == 200
    assert response.json()["status"] == "no_op"
    assert response.json()["stats"] is None


def test_trigger_sync_busy_returns_conflict(client, orchestrator):
    orchestrator.run_once.return_value = SyncResult(
        success=False, status=SyncStatus.BUSY, message="A billing sync is already in progress"
    )

    response = client.post("/sync/billing")

    assert response.status_code == 409
    assert response.json()["status"] == "busy"


def test_trigger_sync_failure_returns_server_error(client, orchestrator):
    orchestrator.run_once.return_value = _result(
        SyncStatus.FAILED, success=False, message="Source unreachable: timeout"
    )

    response = client.post("/sync/billing")

    assert response.status_code == 500
    assert response.json()["message"] == "Source unreachable: timeout"


def test_unknown_source_kind_is_rejected(client, orchestrator):
    response = client.post("/sync/salesforce")

    assert response.status_code == 422
    orchestrator.run_once.assert_not_awaited()


def test_sync_status(client, registry, orchestrator):
    registry.get_config.return_value = SourceConfig(
        source_kind=SourceKind.BILLING,
        status=SourceStatus.ACTIVE,
        sync_frequency=12,
        last_synced_at=datetime(2024, 1, 16, 9, 30),
        last_sync_stats={"entities": {}},
    )
    registry.recent_runs.return_value = [SyncRun(
        run_id="run-7",
        source_kind=SourceKind.BILLING,
        status=SyncStatus.SUCCESS,
        started_at=datetime(2024, 1, 16, 9, 30),
        records_fetched=4,
        records_inserted=4,
        records_updated=0,
        records_skipped=0,
        records_failed=0,
    )]
    orchestrator.is_running.return_value = True

    response = client.get("/sync/billing?limit=5")

    assert response.status_code == 200
    data = response.json()
    assert data["configured"] is True
    assert data["sync_frequency"] == 12
    assert data["sync_in_progress"] is True
    assert data["recent_runs"][0]["run_id"] == "run-7"
    assert data["recent_runs"][0]["status"] == "success"
    registry.recent_runs.assert_awaited_once_with(SourceKind.BILLING, limit=5)


def test_sync_status_unconfigured(client):
    response = client.get("/sync/analytical")

    assert response.status_code == 200
    assert response.json()["configured"] is False
    assert response.json()["recent_runs"] == []


def test_available_fields(client):
    adapter = MagicMock()
    adapter.__aenter__ = AsyncMock(return_value=adapter)
    adapter.__aexit__ = AsyncMock(return_value=None)
    adapter.available_fields = AsyncMock(return_value=[{"name": "paid_at", "description": "Payment Date"}])

    with patch("api.routes.sync.build_adapter", return_value=adapter) as factory:
        response = client.get("/sync/billing/fields?entity=invoice")

    assert response.status_code == 200
    assert response.json()["fields"] == [{"name": "paid_at", "description": "Payment Date"}]
    factory.assert_called_once_with(SourceKind.BILLING, None)
    adapter.available_fields.assert_awaited_once_with("invoice")


def test_available_fields_source_unreachable(client):
    adapter = MagicMock()
    adapter.__aenter__ = AsyncMock(return_value=adapter)
    adapter.__aexit__ = AsyncMock(return_value=None)
    adapter.available_fields = AsyncMock(side_effect=SourceNetworkError("Could not read columns of accounts"))

    with patch("api.routes.sync.build_adapter", return_value=adapter):
        response = client.get("/sync/analytical/fields?entity=accounts")

    assert response.status_code == 503
    assert response.json()["detail"] == "Could not read columns of accounts"


def test_available_fields_requires_entity(client):
    response = client.get("/sync/billing/fields")

    assert response.status_code == 422


@pytest.mark.parametrize("action,method,returns,message", [
    ("start", "start", True, "Scheduler started for billing"),
    ("start", "start", False, "Scheduler already running for billing"),
    ("stop", "stop", True, "Scheduler stopped for billing"),
    ("stop", "stop", False, "Scheduler was not running for billing"),
])
def test_scheduler_actions(client, scheduler, action, method, returns, message):
    getattr(scheduler, method).return_value = returns

    response = client.post(f"/scheduler/billing/{action}")

    assert response.status_code == 200
    assert response.json()["message"] == message
    getattr(scheduler, method).assert_called_once_with(SourceKind.BILLING)


def test_scheduler_status(client, scheduler):
    scheduler.is_running.return_value = True

    response = client.post("/scheduler/analytical/status")

    assert response.status_code == 200
    assert response.json()["status"] == "running"
    scheduler.start.assert_not_called()


def test_scheduler_unknown_action(client, scheduler):
    response = client.post("/scheduler/billing/restart")

    assert response.status_code == 400
    assert response.json()["status"] == "unknown"
    scheduler.start.assert_not_called()
    scheduler.stop.assert_not_called()


def test_health_reports_sources(client, scheduler):
    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["database_connected"] is True
    billing, analytical = data["sources"]
    assert billing["source_kind"] == "billing"
    assert billing["configured"] is True
    assert billing["active"] is True
    assert billing["last_run_status"] == "failed"
    assert analytical["configured"] is False
    assert data["status"] == "degraded"


def test_request_id_header_is_echoed(client):
    response = client.get("/", headers={"X-Request-ID": "abc123"})

    assert response.headers["X-Request-ID"] == "abc123"
