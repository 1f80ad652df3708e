"""
Mapping Registry: thin accessor over persisted source configuration.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Callable
import logging
import re
import uuid

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import PersistenceFailure
from models.base import SourceKind, SyncStatus
from models.field_mapping import FieldMapping
from models.source_config import SourceConfig
from models.sync_run import SyncRun
from schemas.sync import SyncRunStats

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")


@dataclass(frozen=True)
class FieldMappingSpec:
    """Read-only view of an enabled FieldMapping row"""
    source_entity: str
    source_field: str
    local_table: str
    local_field: str
    is_key_field: bool = False
    field_type: Optional[str] = None


def is_identifier(name: str) -> bool:
    return bool(name) and bool(_IDENTIFIER.match(name))


def group_mappings(
    mappings: List[FieldMappingSpec],
) -> Dict[str, Dict[str, List[FieldMappingSpec]]]:
    """Group mappings by source entity, then by destination table."""
    grouped: Dict[str, Dict[str, List[FieldMappingSpec]]] = {}
    for mapping in mappings:
        tables = grouped.setdefault(mapping.source_entity, {})
        tables.setdefault(mapping.local_table, []).append(mapping)
    return grouped


def key_fields(mappings: List[FieldMappingSpec]) -> List[str]:
    """Destination key columns, in mapping order, without duplicates"""
    fields: List[str] = []
    for mapping in mappings:
        if mapping.is_key_field and mapping.local_field not in fields:
            fields.append(mapping.local_field)
    return fields


class MappingRegistry:
    """
    Reads SourceConfig / FieldMapping rows and writes run results.

    Absent config or an empty mapping list is returned as-is; the caller
    decides that means "nothing to do".
    """

    def __init__(self, session_factory: Callable[[], AsyncSession]):
        self.session_factory = session_factory

    async def get_config(self, source_kind: SourceKind) -> Optional[SourceConfig]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(SourceConfig).where(SourceConfig.source_kind == source_kind)
            )
            return result.scalar_one_or_none()

    async def get_mappings(self, source_kind: SourceKind) -> List[FieldMappingSpec]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(FieldMapping)
                .where(
                    FieldMapping.source_kind == source_kind,
                    FieldMapping.is_active.is_(True),
                )
                .order_by(FieldMapping.id)
            )
            rows = result.scalars().all()

        specs: Dict[tuple, FieldMappingSpec] = {}
        for row in rows:
            local_table = (row.local_table or "").strip().lower()
            local_field = (row.local_field or "").strip().lower()

            if not is_identifier(local_table) or not is_identifier(local_field):
                logger.warning(
                    f"Ignoring mapping {row.id} for {source_kind.value}: "
                    f"'{row.local_table}.{row.local_field}' is not a valid column reference"
                )
                continue

            spec = FieldMappingSpec(
                source_entity=row.source_entity.strip(),
                source_field=row.source_field.strip(),
                local_table=local_table,
                local_field=local_field,
                is_key_field=bool(row.is_key_field),
                field_type=row.field_type,
            )
            identity = (spec.source_entity, spec.source_field, local_table, local_field)

            previous = specs.get(identity)
            if previous is not None:
                # Same column mapped twice: keep one, key if either says so
                spec = FieldMappingSpec(
                    source_entity=spec.source_entity,
                    source_field=spec.source_field,
                    local_table=local_table,
                    local_field=local_field,
                    is_key_field=previous.is_key_field or spec.is_key_field,
                    field_type=previous.field_type or spec.field_type,
                )
            specs[identity] = spec

        return list(specs.values())

    async def save_run_result(
        self,
        source_kind: SourceKind,
        timestamp: datetime,
        stats: SyncRunStats,
    ) -> None:
        """Advance last_synced_at and replace last_sync_stats in one transaction."""
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        update(SourceConfig)
                        .where(SourceConfig.source_kind == source_kind)
                        .values(
                            last_synced_at=timestamp,
                            last_sync_stats=stats.to_blob(),
                            updated_at=datetime.utcnow(),
                        )
                    )
                    if result.rowcount == 0:
                        raise PersistenceFailure(
                            "Source configuration disappeared during the run",
                            context={"source_kind": source_kind.value},
                        )
        except PersistenceFailure:
            raise
        except Exception as e:
            raise PersistenceFailure(
                "Failed to persist run result",
                context={
                    "source_kind": source_kind.value,
                    "last_synced_at": timestamp.isoformat(),
                },
                original_exception=e,
            )

    async def record_run(
        self,
        source_kind: SourceKind,
        status: SyncStatus,
        stats: SyncRunStats,
        error_message: Optional[str] = None,
        run_id: Optional[str] = None,
    ) -> None:
        """Write a SyncRun audit row. Failures are logged, never raised."""
        try:
            async with self.session_factory() as session:
                session.add(SyncRun(
                    run_id=run_id or str(uuid.uuid4()),
                    source_kind=source_kind,
                    status=status,
                    started_at=stats.start_time,
                    completed_at=stats.end_time,
                    duration_seconds=stats.duration_seconds,
                    records_fetched=stats.total_fetched,
                    records_inserted=stats.total_new,
                    records_updated=stats.total_updated,
                    records_skipped=stats.total_skipped,
                    records_failed=stats.total_errors,
                    error_message=error_message,
                    stats=stats.to_blob(),
                ))
                await session.commit()
        except Exception as e:
            logger.error(f"Failed to record sync run for {source_kind.value}: {str(e)}")

    async def recent_runs(self, source_kind: SourceKind, limit: int = 10) -> List[SyncRun]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(SyncRun)
                .where(SyncRun.source_kind == source_kind)
                .order_by(SyncRun.started_at.desc(), SyncRun.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())
