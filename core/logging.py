"""
Logging configuration

Every line carries the sync run it belongs to (``billing:1f2e3d4c``) or ``-``
outside of a run, so interleaved runs of both sources can be told apart.
"""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator
from core.config import settings

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(sync_context)-19s | %(name)s | %(message)s"

_sync_context: ContextVar[str] = ContextVar("sync_context", default="-")


class SyncContextFilter(logging.Filter):
    """Stamps records with the active sync run"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.sync_context = _sync_context.get()
        return True


@contextmanager
def sync_run_context(source_kind: str, run_id: str) -> Iterator[str]:
    """Tag log records emitted inside the block with ``<source_kind>:<run id prefix>``"""
    label = f"{source_kind}:{run_id[:8]}"
    token = _sync_context.set(label)
    try:
        yield label
    finally:
        _sync_context.reset(token)


def current_sync_context() -> str:
    return _sync_context.get()


def setup_logging():
    """Configure application logging"""

    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(SyncContextFilter())

    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[handler]
    )

    # SQLAlchemy and APScheduler log every statement / tick at INFO
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
    logging.getLogger("apscheduler.executors").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(f"Logging configured at {settings.LOG_LEVEL} level")
