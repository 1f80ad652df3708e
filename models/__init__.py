"""
SQLAlchemy ORM models for the tables the engine owns.

Models:
    base: Declarative base and shared enums (SourceKind, SourceStatus, SyncStatus)
    source_config: Connection, schedule and last-run bookkeeping per source
    field_mapping: Admin-defined source field -> destination column mappings
    sync_run: Audit trail of run attempts

Destination tables (customers, billing_invoices, ...) are not modelled here:
their columns grow at runtime and are reached through reflection.

Usage:
    from models.source_config import SourceConfig
    from models.base import SourceKind, SourceStatus
"""

from models.base import Base, SourceKind, SourceStatus, SyncStatus
from models.source_config import SourceConfig
from models.field_mapping import FieldMapping
from models.sync_run import SyncRun

__all__ = [
    "Base",
    "SourceKind",
    "SourceStatus",
    "SyncStatus",
    "SourceConfig",
    "FieldMapping",
    "SyncRun",
]
