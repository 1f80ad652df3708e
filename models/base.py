from sqlalchemy import JSON
from sqlalchemy.orm import declarative_base
from sqlalchemy.dialects.postgresql import JSONB
import enum

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


# ============================================================================
# ENUMS
# ============================================================================

class SourceKind(str, enum.Enum):
    """External systems the engine pulls from"""
    BILLING = "billing"
    ANALYTICAL = "analytical"


class SourceStatus(str, enum.Enum):
    """Whether the scheduler may run a source"""
    ACTIVE = "active"
    INACTIVE = "inactive"


class SyncStatus(str, enum.Enum):
    """Outcome of a synchronization run"""
    SUCCESS = "success"
    PARTIAL = "partial_success"
    NO_OP = "no_op"
    BUSY = "busy"
    FAILED = "failed"
