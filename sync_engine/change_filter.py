"""
Change Filter: decides which fetched entities are new or modified since the
last successful run.

Neither source offers a change feed, so the decision is made locally from
each entity's own modification timestamp. The filter is conservative: when
in doubt it keeps the entity, since re-synchronizing an unchanged row is
harmless.
"""

from dataclasses import dataclass, field
from datetime import datetime, date, timezone
from typing import Any, Dict, List, Optional, Tuple

EPOCH_SECONDS = "epoch_seconds"
DATETIME = "datetime"


@dataclass(frozen=True)
class TimestampPolicy:
    """
    Where an entity keeps its modification time.

    Attributes:
        candidate_fields: Tried in order; the first present value wins
        unit: ``epoch_seconds`` (billing) or ``datetime`` (analytical)
    """
    candidate_fields: Tuple[str, ...] = ("updated_at",)
    unit: str = DATETIME


@dataclass
class FilterResult:
    kept: List[Dict[str, Any]] = field(default_factory=list)
    skipped_count: int = 0


def _datetime_epoch(value: datetime) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def _as_epoch(value: Any, unit: str) -> Optional[float]:
    """
    Read a source timestamp in the source's own unit.

    Datetime objects are unambiguous under either unit. Otherwise
    ``epoch_seconds`` accepts numbers and numeric strings, and ``datetime``
    accepts ISO 8601 strings. Anything else is unreadable (None).
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return _datetime_epoch(value)
    if isinstance(value, date):
        return _datetime_epoch(datetime(value.year, value.month, value.day))

    if unit == EPOCH_SECONDS:
        if isinstance(value, (int, float)):
            return float(value)
        if isinstance(value, str):
            try:
                return float(value.strip())
            except ValueError:
                return None
        return None

    if isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        return _datetime_epoch(parsed)
    return None


def entity_timestamp(entity: Dict[str, Any], policy: TimestampPolicy) -> Optional[float]:
    """
    Modification time of an entity as epoch seconds, or None if it has none.

    Values are read in ``policy.unit`` and normalized to epoch seconds for
    comparison; naive datetimes are taken as UTC.
    """
    for name in policy.candidate_fields:
        value = entity.get(name)
        if value is None:
            continue
        return _as_epoch(value, policy.unit)
    return None


def filter_changed(
    entities: List[Dict[str, Any]],
    last_synced_at: Optional[datetime],
    is_incremental: bool,
    policy: TimestampPolicy,
) -> FilterResult:
    """
    Keep entities modified at or after ``last_synced_at``.

    - No baseline, or a non-incremental run: everything is kept.
    - An entity without a determinable timestamp is always kept.
    """
    if last_synced_at is None or not is_incremental:
        return FilterResult(kept=list(entities), skipped_count=0)

    baseline = _datetime_epoch(last_synced_at)
    result = FilterResult()

    for entity in entities:
        changed_at = entity_timestamp(entity, policy)
        if changed_at is None or changed_at >= baseline:
            result.kept.append(entity)
        else:
            result.skipped_count += 1

    return result
