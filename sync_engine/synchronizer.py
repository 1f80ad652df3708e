"""
Table Synchronizer: idempotent upsert of source rows into one destination
table, keyed by whichever key fields each row actually carries.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from core.exceptions import RowSyncFailure
from sync_engine.destination import DestinationStore
from sync_engine.projection import enrich, project
from sync_engine.registry import FieldMappingSpec, key_fields
from sync_engine.schema_evolver import provenance_column

logger = logging.getLogger(__name__)

INSERTED = "inserted"
UPDATED = "updated"
SKIPPED = "skipped"


@dataclass
class TableSyncOutcome:
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0


class TableSynchronizer:
    """
    Writes projected rows into destination tables for one source kind.

    Per row:
    1. Project through the mappings and apply enrichment rules
    2. Match an existing row on ANY key field that has a value
    3. Insert when nothing matches, otherwise update every non-key field
    4. Stamp ``updated_from_<source>_at`` on both paths

    Each row runs in its own transaction. A failing row is logged and
    counted; the rest of the batch carries on.
    """

    def __init__(self, store: DestinationStore, source_kind: str):
        self.store = store
        self.source_kind = source_kind
        self.provenance_column = provenance_column(source_kind)

    async def sync(
        self,
        table_name: str,
        mappings: List[FieldMappingSpec],
        rows: List[Dict[str, Any]],
        entity_type: Optional[str] = None,
    ) -> TableSyncOutcome:
        outcome = TableSyncOutcome()
        keys = key_fields(mappings)

        if not keys:
            logger.warning(
                f"No key field mapped for {table_name} ({self.source_kind}), "
                f"skipping {len(rows)} rows"
            )
            outcome.skipped = len(rows)
            return outcome

        primary_key = await self.store.primary_key(table_name)

        for row in rows:
            try:
                result = await self.sync_row(
                    table_name, mappings, keys, row, entity_type, primary_key
                )
            except RowSyncFailure as e:
                outcome.errors += 1
                logger.error(
                    f"Row sync failed for {table_name}: {e.message}",
                    extra={"error_context": e.to_dict()}
                )
                continue

            if result == INSERTED:
                outcome.inserted += 1
            elif result == UPDATED:
                outcome.updated += 1
            else:
                outcome.skipped += 1

        logger.info(
            f"Synchronized {table_name} from {self.source_kind}"
            f"{f' {entity_type}' if entity_type else ''}: "
            f"new={outcome.inserted}, updated={outcome.updated}, "
            f"skipped={outcome.skipped}, errors={outcome.errors}"
        )
        return outcome

    async def sync_row(
        self,
        table_name: str,
        mappings: List[FieldMappingSpec],
        keys: List[str],
        row: Dict[str, Any],
        entity_type: Optional[str],
        primary_key: List[str],
    ) -> str:
        """
        Upsert one source row. Returns ``inserted``, ``updated`` or ``skipped``.

        Raises:
            RowSyncFailure: projection, lookup or write failed
        """
        operation = "project"
        key_values: Dict[str, Any] = {}
        try:
            record = enrich(row, project(row, mappings), entity_type, table_name)
            key_values = {key: record.get(key) for key in keys if record.has_value(key)}

            if not key_values:
                logger.debug(
                    f"Skipping {entity_type or 'row'} for {table_name}: no key value among {keys}"
                )
                return SKIPPED

            now = datetime.utcnow()
            async with self.store.transaction() as conn:
                operation = "lookup"
                existing = await self.store.find_by_keys(table_name, key_values, conn)

                if existing is None:
                    operation = "insert"
                    values = record.as_dict()
                    values[self.provenance_column] = now
                    await self.store.insert_row(table_name, values, conn)
                    return INSERTED

                operation = "update"
                values = {name: value for name, value in record if name not in keys}
                values[self.provenance_column] = now

                if primary_key and all(existing.get(c) is not None for c in primary_key):
                    await self.store.update_row_by_keys(
                        table_name, {c: existing[c] for c in primary_key}, values, conn
                    )
                else:
                    await self.store.update_row_by_keys(
                        table_name, key_values, values, conn, match_any=True
                    )
                return UPDATED

        except Exception as e:
            raise RowSyncFailure(
                f"Failed to {operation} row",
                context={
                    "table_name": table_name,
                    "entity_type": entity_type,
                    "source_kind": self.source_kind,
                    "key_values": {k: str(v) for k, v in key_values.items()},
                    "operation": operation,
                },
                original_exception=e,
            )
