from sqlalchemy import Column, Integer, Enum, DateTime
from datetime import datetime
from models.base import Base, JSONType, SourceKind, SourceStatus


class SourceConfig(Base):
    """
    Connection and scheduling settings for one external source.

    Design:
    - One row per source kind (unique), so at most one can be active
    - ``connection`` is opaque to everything but the adapter factory
    - ``last_synced_at`` / ``last_sync_stats`` are written only at the end of
      a successful run, together
    """
    __tablename__ = "source_configs"

    id = Column(Integer, primary_key=True, autoincrement=True)

    source_kind = Column(Enum(SourceKind), nullable=False, unique=True)
    connection = Column(JSONType, nullable=True)

    # Scheduling
    status = Column(Enum(SourceStatus), default=SourceStatus.ACTIVE, nullable=False)
    sync_frequency = Column(Integer, nullable=True, default=24)  # hours between runs

    # Last successful run
    last_synced_at = Column(DateTime, nullable=True)
    last_sync_stats = Column(JSONType, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def is_active(self) -> bool:
        return self.status == SourceStatus.ACTIVE
