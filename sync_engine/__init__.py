"""
Synchronization engine.

Modules:
    registry: Source configuration, field mappings and run bookkeeping
    destination: Reflection and key-based row access on destination tables
    schema_evolver: Adds missing destination columns at runtime
    change_filter: Keeps entities changed since the last successful run
    projection: Mapping projection and table-specific enrichment rules
    synchronizer: Per-table idempotent upsert
    adapters: Billing provider and analytical database sources
    orchestrator: One run per source kind, with a run-in-progress guard
    scheduler: Periodic runs driven by each source's sync frequency

Control flow:
    SyncScheduler -> SyncOrchestrator -> SourceAdapter -> filter_changed
    -> SchemaEvolver -> TableSynchronizer -> MappingRegistry.save_run_result
"""
