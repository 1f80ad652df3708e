"""
Schema Evolver: makes sure every column a run is about to write exists.

Columns are only ever added, always nullable. A failed add is logged and the
run continues; rows that then reference the missing column fail one by one in
the synchronizer instead of aborting the run.
"""

from typing import Dict, List, Optional
import logging

from sqlalchemy import Boolean, Date, DateTime, Integer, Numeric, Text
from sqlalchemy.types import TypeEngine

from core.exceptions import SchemaEvolutionFailure
from models.base import JSONType
from sync_engine.destination import DestinationStore
from sync_engine.projection import enrichment_columns
from sync_engine.registry import FieldMappingSpec

logger = logging.getLogger(__name__)

TYPE_NAMES: Dict[str, TypeEngine] = {
    "text": Text(),
    "string": Text(),
    "varchar": Text(),
    "integer": Integer(),
    "int": Integer(),
    "number": Integer(),
    "float": Numeric(),
    "double": Numeric(),
    "decimal": Numeric(),
    "numeric": Numeric(),
    "boolean": Boolean(),
    "bool": Boolean(),
    "date": Date(),
    "datetime": DateTime(),
    "timestamp": DateTime(),
    "json": JSONType,
    "object": JSONType,
}

# Columns of the destination tables the application already knows about
KNOWN_COLUMN_TYPES: Dict[str, Dict[str, str]] = {
    "customers": {
        "mrr": "numeric",
        "arr": "numeric",
        "add_on_revenue": "numeric",
        "data_tagging_percentage": "numeric",
        "nps_score": "integer",
        "in_red_zone": "boolean",
    },
    "billing_invoices": {
        "amount": "numeric",
        "amount_paid": "numeric",
        "amount_due": "numeric",
        "total": "numeric",
        "recurring": "boolean",
        "first_invoice": "boolean",
        "has_advance_charges": "boolean",
    },
}


def type_from_name(type_name: Optional[str]) -> TypeEngine:
    """SQLAlchemy type for a configured type name; unknown names become TEXT."""
    if not type_name:
        return Text()
    return TYPE_NAMES.get(type_name.strip().lower(), Text())


def resolve_column_type(
    table_name: str,
    column_name: str,
    field_type: Optional[str] = None,
) -> TypeEngine:
    """Explicit field type first, then the well-known type, then TEXT."""
    if field_type:
        return type_from_name(field_type)
    known = KNOWN_COLUMN_TYPES.get(table_name, {}).get(column_name)
    return type_from_name(known)


def provenance_column(source_kind: str) -> str:
    return f"updated_from_{source_kind}_at"


class SchemaEvolver:
    """Adds missing destination columns for one source kind."""

    def __init__(self, store: DestinationStore, source_kind: str):
        self.store = store
        self.source_kind = source_kind

    @property
    def provenance_column(self) -> str:
        return provenance_column(self.source_kind)

    def required_columns(
        self,
        table_name: str,
        mappings: List[FieldMappingSpec],
    ) -> Dict[str, TypeEngine]:
        """Mapped columns, then columns written by enrichment rules, then provenance."""
        columns: Dict[str, TypeEngine] = {}
        for mapping in mappings:
            if mapping.local_field not in columns:
                columns[mapping.local_field] = resolve_column_type(
                    table_name, mapping.local_field, mapping.field_type
                )
        for entity_type in dict.fromkeys(m.source_entity for m in mappings):
            for name, type_name in enrichment_columns(entity_type, table_name).items():
                if name not in columns:
                    columns[name] = resolve_column_type(table_name, name, type_name)
        columns[self.provenance_column] = DateTime()
        return columns

    async def ensure_columns(
        self,
        table_name: str,
        mappings: List[FieldMappingSpec],
    ) -> List[str]:
        """
        Add every mapped, enrichment or provenance column missing from the table.

        Returns the names of the columns that were added. Safe to call any
        number of times.
        """
        try:
            existing = await self.store.describe_table(table_name, refresh=True)
            if not existing:
                logger.info(f"Destination table {table_name} does not exist, creating it")
                await self.store.create_table(table_name)
                existing = await self.store.describe_table(table_name)
        except Exception as e:
            error = SchemaEvolutionFailure(
                f"Could not read or create destination table {table_name}",
                context={"table_name": table_name, "source_kind": self.source_kind},
                original_exception=e,
            )
            logger.error(error.message, extra={"error_context": error.to_dict()})
            return []

        added: List[str] = []
        for column_name, column_type in self.required_columns(
            table_name, mappings
        ).items():
            if column_name in existing:
                continue
            try:
                await self.store.add_column(table_name, column_name, column_type)
                added.append(column_name)
                logger.info(f"Added column {column_name} ({column_type}) to {table_name}")
            except Exception as e:
                error = SchemaEvolutionFailure(
                    f"Failed to add column {column_name} to {table_name}",
                    context={
                        "table_name": table_name,
                        "column_name": column_name,
                        "column_type": str(column_type),
                    },
                    original_exception=e,
                )
                logger.error(error.message, extra={"error_context": error.to_dict()})

        return added
