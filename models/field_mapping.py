from sqlalchemy import Column, Integer, String, Enum, DateTime, Boolean, Index
from datetime import datetime
from models.base import Base, SourceKind


class FieldMapping(Base):
    """
    Declarative mapping of one source field onto one destination column.

    Field Mapping Strategy:

    Billing (source_entity = customer / subscription / invoice):
    - customer.id            -> customers.billing_customer_id  (key)
    - customer.company       -> customers.name
    - subscription.customer_id -> customers.billing_customer_id (key)
    - invoice.id             -> billing_invoices.invoice_id     (key)

    Analytical (source_entity = query name or table):
    - company.company_id     -> customers.external_company_id  (key)
    - company.industry       -> customers.industry

    An entity can fan out to several destination tables; a destination table
    without at least one key mapping is skipped for that source.
    """
    __tablename__ = "field_mappings"

    id = Column(Integer, primary_key=True, autoincrement=True)

    source_kind = Column(Enum(SourceKind), nullable=False, index=True)
    source_entity = Column(String(100), nullable=False)
    source_field = Column(String(200), nullable=False)

    local_table = Column(String(100), nullable=False)
    local_field = Column(String(100), nullable=False)
    field_type = Column(String(50), nullable=True)  # explicit destination type, e.g. "integer"

    is_key_field = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_field_mapping_source_entity", "source_kind", "source_entity", "local_table"),
    )
