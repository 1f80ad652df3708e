"""
Pytest configuration and fixtures
"""

import os

# Settings are read at import time; keep the app off the production database
# and the scheduler idle while tests run.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SCHEDULER_AUTOSTART"] = "false"

import pytest
import pytest_asyncio
from datetime import datetime
from typing import AsyncGenerator, Dict, List, Optional, Any
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import build_engine, build_session_maker
from models.base import Base, SourceKind, SourceStatus
from models.field_mapping import FieldMapping
from models.source_config import SourceConfig
from sync_engine.destination import DestinationStore
from sync_engine.registry import MappingRegistry


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """File-backed SQLite engine with the engine-owned tables created"""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'destination.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(test_engine):
    return build_session_maker(test_engine)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    async with session_maker() as session:
        yield session


@pytest.fixture
def registry(session_maker) -> MappingRegistry:
    return MappingRegistry(session_maker)


@pytest.fixture
def store(test_engine) -> DestinationStore:
    return DestinationStore(test_engine)


@pytest.fixture
def seed_source(session_maker):
    """
    Insert a SourceConfig and its field mappings.

    Mappings are (entity, source_field, table, local_field, is_key[, field_type]).
    """

    async def _seed(
        source_kind: SourceKind,
        mappings: List[tuple],
        connection: Optional[Dict[str, Any]] = None,
        last_synced_at: Optional[datetime] = None,
        status: SourceStatus = SourceStatus.ACTIVE,
        sync_frequency: Optional[int] = 24,
    ) -> None:
        async with session_maker() as session:
            session.add(SourceConfig(
                source_kind=source_kind,
                connection=connection or {},
                status=status,
                sync_frequency=sync_frequency,
                last_synced_at=last_synced_at,
            ))
            for mapping in mappings:
                entity, source_field, table, local_field, is_key = mapping[:5]
                session.add(FieldMapping(
                    source_kind=source_kind,
                    source_entity=entity,
                    source_field=source_field,
                    local_table=table,
                    local_field=local_field,
                    is_key_field=is_key,
                    field_type=mapping[5] if len(mapping) > 5 else None,
                ))
            await session.commit()

    return _seed


@pytest.fixture
def billing_customer_mappings():
    """customer.id -> customers.billing_customer_id (key), customer.company -> customers.name"""
    return [
        ("customer", "id", "customers", "billing_customer_id", True),
        ("customer", "company", "customers", "name", False),
        ("customer", "email", "customers", "email", False),
    ]


@pytest.fixture
def mock_billing_customers():
    """Billing provider customers, timestamps in epoch seconds"""
    return [
        {
            "id": "a1",
            "company": "Acme",
            "email": "ops@acme.test",
            "updated_at": 1705312800,  # 2024-01-15T10:00:00Z
        },
        {
            "id": "b2",
            "company": "Globex",
            "email": "it@globex.test",
            "updated_at": 1705485600,  # 2024-01-17T10:00:00Z
        },
    ]
