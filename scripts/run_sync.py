"""
Script to run one synchronization for one or all source kinds
"""

import argparse
import asyncio
import sys
import os
import logging

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.database import async_session_maker, engine
from core.logging import setup_logging
from models.base import SourceKind, SyncStatus
from sync_engine.destination import DestinationStore
from sync_engine.orchestrator import SyncOrchestrator
from sync_engine.registry import MappingRegistry

logger = logging.getLogger(__name__)


async def run_sync(source_kinds, full_resync: bool = False) -> bool:
    """Run each source kind once. Returns True if no run failed."""
    registry = MappingRegistry(async_session_maker)
    orchestrator = SyncOrchestrator(registry, DestinationStore(engine))

    ok = True
    try:
        for source_kind in source_kinds:
            result = await orchestrator.run_once(source_kind, full_resync=full_resync)
            logger.info(f"{source_kind.value}: {result.status.value} - {result.message}")
            if result.status == SyncStatus.FAILED:
                ok = False
    finally:
        await engine.dispose()

    return ok


def main():
    parser = argparse.ArgumentParser(description="Run a data synchronization")
    parser.add_argument(
        "source",
        choices=[kind.value for kind in SourceKind] + ["all"],
        help="Source kind to synchronize",
    )
    parser.add_argument(
        "--full-resync",
        action="store_true",
        help="Ignore last_synced_at and synchronize every fetched entity",
    )
    args = parser.parse_args()

    setup_logging()
    kinds = list(SourceKind) if args.source == "all" else [SourceKind(args.source)]
    ok = asyncio.run(run_sync(kinds, full_resync=args.full_resync))
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
