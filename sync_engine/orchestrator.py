"""
Sync Orchestrator: one synchronization run for one source kind.

Run lifecycle:
1. Load config and mappings (absent: nothing to do)
2. Per entity type: fetch, then filter to what changed since the last run
3. Per destination table: evolve the schema once, then upsert the rows
4. Persist last_synced_at (the run's start time) and the run statistics

A failure before step 4 leaves last_synced_at untouched, so the next run
repeats the work; that is safe because the synchronizer is idempotent.
"""

import asyncio
import uuid
from datetime import datetime
from typing import Callable, Dict, List, Optional
import logging

from core.exceptions import (
    ConfigurationMissing,
    PersistenceFailure,
    SourceUnreachable,
    SyncException,
)
from core.logging import sync_run_context
from models.base import SourceKind, SyncStatus
from models.source_config import SourceConfig
from schemas.sync import SyncResult, SyncRunStats
from sync_engine.adapters import SourceAdapter, build_adapter
from sync_engine.change_filter import filter_changed
from sync_engine.destination import DestinationStore
from sync_engine.registry import (
    FieldMappingSpec,
    MappingRegistry,
    group_mappings,
    key_fields,
)
from sync_engine.schema_evolver import SchemaEvolver
from sync_engine.synchronizer import TableSynchronizer

logger = logging.getLogger(__name__)

AdapterFactory = Callable[[SourceKind, Optional[dict]], SourceAdapter]


class SyncOrchestrator:
    """
    Runs synchronizations and guards each source kind against overlapping runs.

    Responsibilities:
    - Drive fetch, filter, evolve and synchronize for every mapped entity type
    - Keep runs of different source kinds independent
    - Advance last_synced_at only after a run completed
    - Record every finished attempt in the run audit table
    """

    def __init__(
        self,
        registry: MappingRegistry,
        store: DestinationStore,
        adapter_factory: AdapterFactory = build_adapter,
    ):
        self.registry = registry
        self.store = store
        self.adapter_factory = adapter_factory
        self._locks: Dict[SourceKind, asyncio.Lock] = {}

    def _lock_for(self, source_kind: SourceKind) -> asyncio.Lock:
        if source_kind not in self._locks:
            self._locks[source_kind] = asyncio.Lock()
        return self._locks[source_kind]

    def is_running(self, source_kind: SourceKind) -> bool:
        return self._lock_for(source_kind).locked()

    async def run_once(self, source_kind: SourceKind, full_resync: bool = False) -> SyncResult:
        """
        Run one synchronization for a source kind.

        Args:
            source_kind: billing or analytical
            full_resync: Disable the change filter for this run

        Returns:
            SyncResult with status success, partial_success, no_op, busy or failed
        """
        lock = self._lock_for(source_kind)
        if lock.locked():
            logger.warning(f"Sync for {source_kind.value} requested while one is running")
            return SyncResult(
                success=False,
                status=SyncStatus.BUSY,
                message=f"A {source_kind.value} sync is already in progress",
            )

        run_id = str(uuid.uuid4())
        async with lock:
            with sync_run_context(source_kind.value, run_id):
                return await self._run(source_kind, full_resync, run_id)

    async def _run(self, source_kind: SourceKind, full_resync: bool, run_id: str) -> SyncResult:
        stats = SyncRunStats(start_time=datetime.utcnow())
        run_started = stats.start_time
        logger.info(f"Starting {source_kind.value} sync{' (full resync)' if full_resync else ''}")

        try:
            config = await self.registry.get_config(source_kind)
            if config is None:
                raise ConfigurationMissing(
                    f"No configuration found for {source_kind.value}",
                    context={"source_kind": source_kind.value},
                )

            mappings = await self.registry.get_mappings(source_kind)
            if not mappings:
                raise ConfigurationMissing(
                    f"No field mappings configured for {source_kind.value}",
                    context={"source_kind": source_kind.value},
                )

            stats.incremental = config.last_synced_at is not None and not full_resync
            adapter = self.adapter_factory(source_kind, config.connection)
            await self._synchronize(source_kind, adapter, config, mappings, stats)

        except ConfigurationMissing as e:
            logger.info(f"Nothing to sync: {e.message}")
            return SyncResult(success=False, status=SyncStatus.NO_OP, message=e.message)

        except SourceUnreachable as e:
            logger.error(
                f"{source_kind.value} sync aborted: {e.message}",
                extra={"error_context": e.to_dict()}
            )
            return await self._failed(source_kind, run_id, stats, f"Source unreachable: {e.message}")

        except SyncException as e:
            logger.error(
                f"{source_kind.value} sync failed: {e.message}",
                extra={"error_context": e.to_dict()}
            )
            return await self._failed(source_kind, run_id, stats, e.message)

        except Exception as e:
            logger.exception(f"Unexpected error in {source_kind.value} sync")
            return await self._failed(source_kind, run_id, stats, f"Unexpected error: {str(e)}")

        stats.finish()

        try:
            await self.registry.save_run_result(source_kind, run_started, stats)
        except PersistenceFailure as e:
            logger.error(
                f"{source_kind.value} data synchronized but bookkeeping not persisted",
                extra={"error_context": e.to_dict()}
            )
            return await self._failed(
                source_kind,
                run_id,
                stats,
                f"Data synchronized but bookkeeping not persisted: {e.message}",
            )

        status = SyncStatus.PARTIAL if stats.has_dropped_rows else SyncStatus.SUCCESS
        message = (
            f"Synchronized {stats.total_fetched} {source_kind.value} records: "
            f"{stats.total_new} new, {stats.total_updated} updated, "
            f"{stats.total_skipped} skipped, {stats.total_errors} errors"
        )
        await self.registry.record_run(source_kind, status, stats, run_id=run_id)

        logger.info(f"{source_kind.value} sync completed: {status.value} - {message}")
        return SyncResult(
            success=True,
            status=status,
            message=message,
            record_count=stats.total_fetched,
            stats=stats,
            run_id=run_id,
        )

    async def _failed(
        self,
        source_kind: SourceKind,
        run_id: str,
        stats: SyncRunStats,
        message: str,
    ) -> SyncResult:
        stats.finish()
        await self.registry.record_run(
            source_kind, SyncStatus.FAILED, stats, error_message=message, run_id=run_id
        )
        return SyncResult(
            success=False,
            status=SyncStatus.FAILED,
            message=message,
            record_count=stats.total_fetched,
            stats=stats,
            run_id=run_id,
        )

    async def _synchronize(
        self,
        source_kind: SourceKind,
        adapter: SourceAdapter,
        config: SourceConfig,
        mappings: List[FieldMappingSpec],
        stats: SyncRunStats,
    ) -> None:
        grouped = group_mappings(mappings)
        evolver = SchemaEvolver(self.store, source_kind.value)
        synchronizer = TableSynchronizer(self.store, source_kind.value)

        # Each table is evolved once, with every column any entity maps into it
        table_mappings: Dict[str, List[FieldMappingSpec]] = {}
        for entity_type, tables in grouped.items():
            for table_name, table_maps in tables.items():
                table_mappings.setdefault(table_name, []).extend(table_maps)
        evolved = set()

        since = config.last_synced_at if stats.incremental else None

        async with adapter:
            for entity_type, tables in grouped.items():
                if not adapter.supports(entity_type):
                    logger.warning(
                        f"Unknown {source_kind.value} entity type '{entity_type}', skipping"
                    )
                    continue

                fields = list(dict.fromkeys(
                    m.source_field for table_maps in tables.values() for m in table_maps
                ))
                entities = await adapter.fetch_entities(entity_type, since=since, fields=fields)

                entity_stats = stats.for_entity(entity_type)
                entity_stats.total = len(entities)

                filtered = filter_changed(
                    entities,
                    config.last_synced_at,
                    stats.incremental,
                    adapter.timestamp_policy(entity_type),
                )
                entity_stats.skipped += filtered.skipped_count
                entity_stats.unchanged += filtered.skipped_count
                logger.info(
                    f"{entity_type}: {len(entities)} fetched, {len(filtered.kept)} changed, "
                    f"{filtered.skipped_count} unchanged"
                )

                for table_name, table_maps in tables.items():
                    if not key_fields(table_maps):
                        logger.warning(
                            f"No key field mapped from {entity_type} into {table_name}, skipping table"
                        )
                        continue

                    if table_name not in evolved:
                        await evolver.ensure_columns(table_name, table_mappings[table_name])
                        evolved.add(table_name)

                    outcome = await synchronizer.sync(
                        table_name, table_maps, filtered.kept, entity_type
                    )
                    entity_stats.new += outcome.inserted
                    entity_stats.updated += outcome.updated
                    entity_stats.skipped += outcome.skipped
                    entity_stats.errors += outcome.errors
