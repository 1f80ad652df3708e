"""
Projection of source entities onto destination rows, and the table-specific
enrichment rules applied on top of the mapped fields.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from sync_engine.registry import FieldMappingSpec


class ProjectedRecord:
    """
    Ordered (destination field, value) pairs for one destination row.

    Setting a field that is already present replaces its value in place.
    """

    def __init__(self, pairs: Optional[List[Tuple[str, Any]]] = None):
        self._values: Dict[str, Any] = {}
        for name, value in pairs or []:
            self.set(name, value)

    def set(self, name: str, value: Any) -> None:
        self._values[name] = value

    def get(self, name: str, default: Any = None) -> Any:
        return self._values.get(name, default)

    def has_value(self, name: str) -> bool:
        return self._values.get(name) is not None

    def as_dict(self) -> Dict[str, Any]:
        return dict(self._values)

    def __iter__(self) -> Iterator[Tuple[str, Any]]:
        return iter(self._values.items())

    def __repr__(self) -> str:
        return f"ProjectedRecord({list(self._values.items())!r})"


def project(row: Dict[str, Any], mappings: List[FieldMappingSpec]) -> ProjectedRecord:
    """Copy each mapped source field that is present on the row."""
    record = ProjectedRecord()
    for mapping in mappings:
        if mapping.source_field in row:
            record.set(mapping.local_field, row[mapping.source_field])
    return record


# ============================================================================
# Enrichment rules
# ============================================================================

@dataclass(frozen=True)
class EnrichmentRule:
    """
    Extra columns derived from the source entity for one (entity, table) pair.

    Attributes:
        source_entity: Source entity type the rule applies to
        local_table: Destination table the rule applies to
        columns: Destination columns the rule may write, with their type names
        apply: Mutates the projected record from the source row
    """
    source_entity: str
    local_table: str
    columns: Dict[str, str]
    apply: Callable[[Dict[str, Any], ProjectedRecord], None] = field(compare=False)


def _subscription_into_customer(row: Dict[str, Any], record: ProjectedRecord) -> None:
    if row.get("status") is not None:
        record.set("subscription_status", row["status"])
    if row.get("plan_id") is not None:
        record.set("plan_id", row["plan_id"])


def _invoice_recurring_flag(row: Dict[str, Any], record: ProjectedRecord) -> None:
    record.set("recurring", bool(row.get("subscription_id")))


ENRICHMENT_RULES: List[EnrichmentRule] = [
    EnrichmentRule(
        source_entity="subscription",
        local_table="customers",
        columns={"subscription_status": "text", "plan_id": "text"},
        apply=_subscription_into_customer,
    ),
    EnrichmentRule(
        source_entity="invoice",
        local_table="billing_invoices",
        columns={"recurring": "boolean"},
        apply=_invoice_recurring_flag,
    ),
]


def rules_for(source_entity: Optional[str], local_table: str) -> List[EnrichmentRule]:
    return [
        rule for rule in ENRICHMENT_RULES
        if rule.source_entity == source_entity and rule.local_table == local_table
    ]


def enrichment_columns(source_entity: Optional[str], local_table: str) -> Dict[str, str]:
    """Columns the enrichment rules for (entity, table) may write."""
    columns: Dict[str, str] = {}
    for rule in rules_for(source_entity, local_table):
        columns.update(rule.columns)
    return columns


def enrich(
    row: Dict[str, Any],
    record: ProjectedRecord,
    source_entity: Optional[str],
    local_table: str,
) -> ProjectedRecord:
    for rule in rules_for(source_entity, local_table):
        rule.apply(row, record)
    return record
