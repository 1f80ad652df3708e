from sqlalchemy import Column, BigInteger, String, Enum, DateTime, Float, Integer, Text, Index
from datetime import datetime
import uuid
from models.base import Base, JSONType, SourceKind, SyncStatus


class SyncRun(Base):
    """
    Audit trail of synchronization attempts.

    Purpose:
    - Operators can see failed runs, which never touch SourceConfig
    - Run history for the admin status endpoint

    Rows are written after a run finishes; they are never read back by the
    engine to decide what to synchronize.
    """
    __tablename__ = "sync_runs"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    run_id = Column(String(36), default=lambda: str(uuid.uuid4()), unique=True, nullable=False)

    source_kind = Column(Enum(SourceKind), nullable=False, index=True)
    status = Column(Enum(SyncStatus), nullable=False)

    started_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Float, nullable=True)

    # Statistics
    records_fetched = Column(Integer, default=0)
    records_inserted = Column(Integer, default=0)
    records_updated = Column(Integer, default=0)
    records_skipped = Column(Integer, default=0)
    records_failed = Column(Integer, default=0)

    error_message = Column(Text, nullable=True)
    stats = Column(JSONType, nullable=True)

    __table_args__ = (
        Index("idx_sync_run_source_started", "source_kind", "started_at"),
    )
