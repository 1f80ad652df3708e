"""
End-to-end tests for synchronization runs
"""

import asyncio
import pytest
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy import select, text
from core.database import build_engine
from core.exceptions import SourceNetworkError, PersistenceFailure
from models.base import SourceKind, SyncStatus
from models.source_config import SourceConfig
from models.sync_run import SyncRun
from sync_engine.adapters import SourceAdapter
from core.logging import current_sync_context
from sync_engine.change_filter import EPOCH_SECONDS, TimestampPolicy
from sync_engine.orchestrator import SyncOrchestrator


class FakeAdapter(SourceAdapter):
    """In-memory source keyed by entity type"""

    def __init__(self, source_kind, entities: Dict[str, List[Dict[str, Any]]], error: Optional[Exception] = None):
        self.source_kind = source_kind
        self.entities = entities
        self.error = error
        self.opened = False
        self.closed = False
        self.fetch_calls = []

    async def open(self):
        self.opened = True

    async def close(self):
        self.closed = True

    def supports(self, entity_type):
        return entity_type in self.entities

    def timestamp_policy(self, entity_type):
        return TimestampPolicy(("updated_at", "paid_at", "date"), EPOCH_SECONDS)

    async def available_fields(self, entity_type):
        return []

    async def fetch_entities(self, entity_type, since=None, fields=None):
        self.fetch_calls.append((entity_type, since, fields))
        if self.error:
            raise self.error
        return list(self.entities[entity_type])


def _orchestrator(registry, store, adapters: Dict[SourceKind, SourceAdapter]):
    return SyncOrchestrator(registry, store, adapter_factory=lambda kind, connection: adapters[kind])


async def _customers(engine):
    async with engine.connect() as conn:
        result = await conn.execute(text("SELECT * FROM customers ORDER BY id"))
        return [dict(row) for row in result.mappings().all()]


async def _config(session_maker, source_kind):
    async with session_maker() as session:
        return (await session.execute(
            select(SourceConfig).where(SourceConfig.source_kind == source_kind)
        )).scalar_one()


async def _runs(session_maker, source_kind):
    async with session_maker() as session:
        return (await session.execute(
            select(SyncRun).where(SyncRun.source_kind == source_kind).order_by(SyncRun.id)
        )).scalars().all()


@pytest.mark.asyncio
async def test_no_config_is_a_no_op(registry, store, session_maker):
    orchestrator = _orchestrator(registry, store, {})

    result = await orchestrator.run_once(SourceKind.BILLING)

    assert result.success is False
    assert result.status == SyncStatus.NO_OP
    assert await _runs(session_maker, SourceKind.BILLING) == []


@pytest.mark.asyncio
async def test_no_mappings_is_a_no_op(registry, store, seed_source):
    await seed_source(SourceKind.BILLING, [])
    orchestrator = _orchestrator(registry, store, {})

    result = await orchestrator.run_once(SourceKind.BILLING)

    assert result.status == SyncStatus.NO_OP
    assert "No field mappings" in result.message


@pytest.mark.asyncio
async def test_successful_run_persists_stats_and_baseline(
    registry, store, seed_source, session_maker, test_engine,
    billing_customer_mappings, mock_billing_customers,
):
    await seed_source(SourceKind.BILLING, billing_customer_mappings)
    adapter = FakeAdapter(SourceKind.BILLING, {"customer": mock_billing_customers})
    orchestrator = _orchestrator(registry, store, {SourceKind.BILLING: adapter})

    before = datetime.utcnow()
    result = await orchestrator.run_once(SourceKind.BILLING)

    assert result.success is True
    assert result.status == SyncStatus.SUCCESS
    assert result.record_count == 2
    assert result.stats.entities["customer"].new == 2
    assert adapter.opened and adapter.closed

    config = await _config(session_maker, SourceKind.BILLING)
    assert config.last_synced_at is not None
    assert before <= config.last_synced_at <= result.stats.end_time
    assert config.last_sync_stats["entities"]["customer"]["new"] == 2
    assert "startTime" in config.last_sync_stats

    rows = await _customers(test_engine)
    assert [r["name"] for r in rows] == ["Acme", "Globex"]

    runs = await _runs(session_maker, SourceKind.BILLING)
    assert len(runs) == 1
    assert runs[0].status == SyncStatus.SUCCESS
    assert runs[0].records_inserted == 2


@pytest.mark.asyncio
async def test_incremental_run_skips_unchanged_entities(
    registry, store, seed_source, billing_customer_mappings, mock_billing_customers,
):
    # Between a1 (2024-01-15T10:00Z) and b2 (2024-01-17T10:00Z)
    await seed_source(
        SourceKind.BILLING,
        billing_customer_mappings,
        last_synced_at=datetime(2024, 1, 16),
    )
    adapter = FakeAdapter(SourceKind.BILLING, {"customer": mock_billing_customers})
    orchestrator = _orchestrator(registry, store, {SourceKind.BILLING: adapter})

    result = await orchestrator.run_once(SourceKind.BILLING)

    customer_stats = result.stats.entities["customer"]
    assert result.status == SyncStatus.SUCCESS
    assert result.stats.incremental is True
    assert customer_stats.total == 2
    assert customer_stats.new == 1
    assert customer_stats.skipped == 1
    assert customer_stats.unchanged == 1
    assert adapter.fetch_calls[0][1] == datetime(2024, 1, 16)


@pytest.mark.asyncio
async def test_full_resync_ignores_baseline(
    registry, store, seed_source, billing_customer_mappings, mock_billing_customers,
):
    await seed_source(SourceKind.BILLING, billing_customer_mappings, last_synced_at=datetime(2030, 1, 1))
    adapter = FakeAdapter(SourceKind.BILLING, {"customer": mock_billing_customers})
    orchestrator = _orchestrator(registry, store, {SourceKind.BILLING: adapter})

    result = await orchestrator.run_once(SourceKind.BILLING, full_resync=True)

    assert result.stats.incremental is False
    assert result.stats.entities["customer"].new == 2
    assert adapter.fetch_calls[0][1] is None


@pytest.mark.asyncio
async def test_adapter_failure_leaves_baseline_untouched(
    registry, store, seed_source, session_maker, billing_customer_mappings,
):
    baseline = datetime(2024, 1, 16)
    await seed_source(SourceKind.BILLING, billing_customer_mappings, last_synced_at=baseline)
    adapter = FakeAdapter(
        SourceKind.BILLING,
        {"customer": []},
        error=SourceNetworkError("Server error after 3 attempts", context={"status_code": 503}),
    )
    orchestrator = _orchestrator(registry, store, {SourceKind.BILLING: adapter})

    result = await orchestrator.run_once(SourceKind.BILLING)

    assert result.success is False
    assert result.status == SyncStatus.FAILED
    assert "Server error" in result.message
    assert adapter.closed

    config = await _config(session_maker, SourceKind.BILLING)
    assert config.last_synced_at == baseline
    assert config.last_sync_stats is None

    runs = await _runs(session_maker, SourceKind.BILLING)
    assert runs[0].status == SyncStatus.FAILED
    assert runs[0].run_id == result.run_id
    assert "Server error" in runs[0].error_message


@pytest.mark.asyncio
async def test_unexpected_error_is_a_failed_run(registry, store, seed_source, billing_customer_mappings):
    await seed_source(SourceKind.BILLING, billing_customer_mappings)
    adapter = FakeAdapter(SourceKind.BILLING, {"customer": []}, error=KeyError("list"))
    orchestrator = _orchestrator(registry, store, {SourceKind.BILLING: adapter})

    result = await orchestrator.run_once(SourceKind.BILLING)

    assert result.status == SyncStatus.FAILED
    assert result.message.startswith("Unexpected error")


@pytest.mark.asyncio
async def test_bookkeeping_failure_reports_failed(
    registry, store, seed_source, billing_customer_mappings, mock_billing_customers, monkeypatch,
):
    await seed_source(SourceKind.BILLING, billing_customer_mappings)
    adapter = FakeAdapter(SourceKind.BILLING, {"customer": mock_billing_customers})
    orchestrator = _orchestrator(registry, store, {SourceKind.BILLING: adapter})

    async def failing_save(*args, **kwargs):
        raise PersistenceFailure("Failed to persist run result")

    monkeypatch.setattr(registry, "save_run_result", failing_save)

    result = await orchestrator.run_once(SourceKind.BILLING)

    assert result.status == SyncStatus.FAILED
    assert "Data synchronized but bookkeeping not persisted" in result.message
    assert result.stats.entities["customer"].new == 2


@pytest.mark.asyncio
async def test_missing_keys_make_run_partial(registry, store, seed_source, billing_customer_mappings):
    await seed_source(SourceKind.BILLING, billing_customer_mappings)
    adapter = FakeAdapter(SourceKind.BILLING, {"customer": [{"id": "a1", "company": "Acme"}, {"company": "Anonymous"}]})
    orchestrator = _orchestrator(registry, store, {SourceKind.BILLING: adapter})

    result = await orchestrator.run_once(SourceKind.BILLING)

    assert result.success is True
    assert result.status == SyncStatus.PARTIAL
    assert result.stats.entities["customer"].skipped == 1
    assert result.stats.entities["customer"].unchanged == 0


@pytest.mark.asyncio
async def test_unknown_entities_and_keyless_tables_are_skipped(registry, store, seed_source, test_engine):
    await seed_source(SourceKind.BILLING, [
        ("customer", "id", "customers", "billing_customer_id", True),
        ("customer", "company", "customers", "name", False),
        ("customer", "email", "contacts", "email", False),
        ("credit_note", "id", "credit_notes", "credit_note_id", True),
    ])
    adapter = FakeAdapter(SourceKind.BILLING, {"customer": [{"id": "a1", "company": "Acme", "email": "a@acme.test"}]})
    orchestrator = _orchestrator(registry, store, {SourceKind.BILLING: adapter})

    result = await orchestrator.run_once(SourceKind.BILLING)

    assert result.status == SyncStatus.SUCCESS
    assert "credit_note" not in result.stats.entities
    assert [call[0] for call in adapter.fetch_calls] == ["customer"]
    assert await store.describe_table("contacts", refresh=True) == {}
    assert len(await _customers(test_engine)) == 1


@pytest.mark.asyncio
async def test_subscription_enriches_customers_across_entities(registry, store, seed_source, test_engine):
    await seed_source(SourceKind.BILLING, [
        ("customer", "id", "customers", "billing_customer_id", True),
        ("customer", "company", "customers", "name", False),
        ("subscription", "customer_id", "customers", "billing_customer_id", True),
    ])
    adapter = FakeAdapter(SourceKind.BILLING, {
        "customer": [{"id": "a1", "company": "Acme"}],
        "subscription": [{"id": "sub_1", "customer_id": "a1", "status": "active", "plan_id": "growth"}],
    })
    orchestrator = _orchestrator(registry, store, {SourceKind.BILLING: adapter})

    result = await orchestrator.run_once(SourceKind.BILLING)

    assert result.stats.entities["customer"].new == 1
    assert result.stats.entities["subscription"].updated == 1
    rows = await _customers(test_engine)
    assert len(rows) == 1
    assert rows[0]["subscription_status"] == "active"
    assert rows[0]["plan_id"] == "growth"


@pytest.mark.asyncio
async def test_concurrent_run_for_same_source_is_busy(
    registry, store, seed_source, billing_customer_mappings, mock_billing_customers,
):
    await seed_source(SourceKind.BILLING, billing_customer_mappings)
    release = asyncio.Event()

    class SlowAdapter(FakeAdapter):
        async def fetch_entities(self, entity_type, since=None, fields=None):
            await release.wait()
            return await super().fetch_entities(entity_type, since, fields)

    adapter = SlowAdapter(SourceKind.BILLING, {"customer": mock_billing_customers})
    orchestrator = _orchestrator(registry, store, {SourceKind.BILLING: adapter})

    first = asyncio.create_task(orchestrator.run_once(SourceKind.BILLING))
    while not orchestrator.is_running(SourceKind.BILLING):
        await asyncio.sleep(0)

    second = await orchestrator.run_once(SourceKind.BILLING)
    release.set()
    first_result = await first

    assert second.status == SyncStatus.BUSY
    assert second.success is False
    assert first_result.status == SyncStatus.SUCCESS
    assert orchestrator.is_running(SourceKind.BILLING) is False


@pytest.mark.asyncio
async def test_failure_of_one_source_does_not_affect_the_other(
    registry, store, seed_source, session_maker, test_engine, billing_customer_mappings,
):
    await seed_source(SourceKind.BILLING, billing_customer_mappings)
    await seed_source(SourceKind.ANALYTICAL, [
        ("company", "company_id", "customers", "external_company_id", True),
        ("company", "company_name", "customers", "name", False),
    ])
    adapters = {
        SourceKind.BILLING: FakeAdapter(SourceKind.BILLING, {"customer": []}, error=SourceNetworkError("down")),
        SourceKind.ANALYTICAL: FakeAdapter(SourceKind.ANALYTICAL, {
            "company": [{"company_id": 7, "company_name": "Umbrella", "updated_at": 1705312800}],
        }),
    }
    orchestrator = _orchestrator(registry, store, adapters)

    billing, analytical = await asyncio.gather(
        orchestrator.run_once(SourceKind.BILLING),
        orchestrator.run_once(SourceKind.ANALYTICAL),
    )

    assert billing.status == SyncStatus.FAILED
    assert analytical.status == SyncStatus.SUCCESS
    assert (await _config(session_maker, SourceKind.BILLING)).last_synced_at is None
    assert (await _config(session_maker, SourceKind.ANALYTICAL)).last_synced_at is not None
    rows = await _customers(test_engine)
    assert rows[0]["external_company_id"] == "7"
    assert rows[0]["updated_from_analytical_at"] is not None


@pytest.mark.asyncio
async def test_analytical_source_read_from_a_database_table(
    registry, store, seed_source, session_maker, test_engine, tmp_path,
):
    source_url = f"sqlite+aiosqlite:///{tmp_path / 'analytical.db'}"
    source_engine = build_engine(source_url)
    async with source_engine.begin() as conn:
        await conn.execute(text(
            "CREATE TABLE accounts (account_id INTEGER PRIMARY KEY, title TEXT, nps INTEGER, updated_at DATETIME)"
        ))
        await conn.execute(text(
            "INSERT INTO accounts VALUES (1, 'Hooli', 42, '2024-01-15 10:00:00'), "
            "(2, 'Pied Piper', 71, '2024-01-17 10:00:00')"
        ))
    await source_engine.dispose()

    await seed_source(
        SourceKind.ANALYTICAL,
        [
            ("accounts", "account_id", "customers", "external_company_id", True),
            ("accounts", "title", "customers", "name", False),
            ("accounts", "nps", "customers", "nps_score", False),
        ],
        connection={"url": source_url},
    )
    orchestrator = SyncOrchestrator(registry, store)

    result = await orchestrator.run_once(SourceKind.ANALYTICAL)

    assert result.status == SyncStatus.SUCCESS
    assert result.stats.entities["accounts"].new == 2
    rows = await _customers(test_engine)
    assert [(r["external_company_id"], r["name"], r["nps_score"]) for r in rows] == [
        ("1", "Hooli", 42),
        ("2", "Pied Piper", 71),
    ]

    # Second run only sees rows changed since the first run started
    second = await orchestrator.run_once(SourceKind.ANALYTICAL)
    assert second.stats.incremental is True
    assert second.stats.entities["accounts"].unchanged == 2
    assert second.stats.entities["accounts"].new == 0


@pytest.mark.asyncio
async def test_run_id_ties_result_audit_row_and_log_context(
    registry, store, seed_source, session_maker, billing_customer_mappings, mock_billing_customers,
):
    await seed_source(SourceKind.BILLING, billing_customer_mappings)
    contexts = []

    class RecordingAdapter(FakeAdapter):
        async def fetch_entities(self, entity_type, since=None, fields=None):
            contexts.append(current_sync_context())
            return await super().fetch_entities(entity_type, since, fields)

    adapter = RecordingAdapter(SourceKind.BILLING, {"customer": mock_billing_customers})
    orchestrator = _orchestrator(registry, store, {SourceKind.BILLING: adapter})

    result = await orchestrator.run_once(SourceKind.BILLING)

    runs = await _runs(session_maker, SourceKind.BILLING)
    assert result.run_id is not None
    assert runs[0].run_id == result.run_id
    assert contexts == [f"billing:{result.run_id[:8]}"]
    assert current_sync_context() == "-"
