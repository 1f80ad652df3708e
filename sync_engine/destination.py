"""
Destination store: reflection, column adds and key-based row access for
tables whose column set is only known at runtime.

All statements are built from SQLAlchemy constructs parameterized by table
and column names taken from reflection, so mapping-controlled strings are
never concatenated into SQL.
"""

from contextlib import asynccontextmanager
from datetime import datetime, date, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, AsyncIterator, Dict, List, Optional
import json
import logging

from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    Integer,
    Numeric,
    String,
    and_,
    column,
    insert,
    inspect,
    or_,
    select,
    table,
    update,
)
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine
from sqlalchemy.sql.expression import TableClause
from sqlalchemy.types import NullType, TypeEngine

logger = logging.getLogger(__name__)

_TRUE = {"true", "t", "yes", "y", "1"}
_FALSE = {"false", "f", "no", "n", "0", ""}


def _to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return _to_naive_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)
    if isinstance(value, str):
        return _to_naive_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
    raise ValueError(f"Cannot interpret {value!r} as a timestamp")


def coerce_value(column_type: Optional[TypeEngine], value: Any) -> Any:
    """
    Convert a source value to what the destination column accepts.

    Raises ValueError when the value cannot be represented; the caller treats
    that as a row failure.
    """
    if value is None or column_type is None or isinstance(column_type, NullType):
        return value

    if isinstance(column_type, Boolean):
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return bool(value)
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in _TRUE:
                return True
            if lowered in _FALSE:
                return False
        raise ValueError(f"Cannot interpret {value!r} as a boolean")

    if isinstance(column_type, Integer):
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, (int, str, Decimal)):
            return int(value)
        raise ValueError(f"Cannot interpret {value!r} as an integer")

    if isinstance(column_type, Float):
        return float(value)

    if isinstance(column_type, Numeric):
        if isinstance(value, bool):
            return Decimal(int(value))
        try:
            return Decimal(str(value))
        except InvalidOperation:
            raise ValueError(f"Cannot interpret {value!r} as a number")

    if isinstance(column_type, DateTime):
        return _parse_datetime(value)

    if isinstance(column_type, Date):
        return _parse_datetime(value).date()

    if isinstance(column_type, JSON):
        return value

    if isinstance(column_type, String):
        if isinstance(value, str):
            return value
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (dict, list, tuple)):
            return json.dumps(value, default=str, sort_keys=True)
        if isinstance(value, (datetime, date)):
            return value.isoformat()
        return str(value)

    return value


class DestinationStore:
    """
    Capability object over the shared destination database.

    Keeps a per-table cache of reflected column types and primary keys; the
    cache is refreshed whenever this store changes a table.
    """

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self._columns: Dict[str, Dict[str, TypeEngine]] = {}
        self._primary_keys: Dict[str, List[str]] = {}

    # ------------------------------------------------------------------
    # Reflection
    # ------------------------------------------------------------------

    async def describe_table(self, table_name: str, refresh: bool = False) -> Dict[str, TypeEngine]:
        """Return {column name: type} for a table, or {} if it does not exist."""
        if not refresh and table_name in self._columns:
            return self._columns[table_name]

        def _reflect(sync_conn):
            inspector = inspect(sync_conn)
            if not inspector.has_table(table_name):
                return None, []
            columns = {
                col["name"].lower(): col["type"]
                for col in inspector.get_columns(table_name)
            }
            pk = inspector.get_pk_constraint(table_name).get("constrained_columns") or []
            return columns, [name.lower() for name in pk]

        async with self.engine.connect() as conn:
            columns, primary_key = await conn.run_sync(_reflect)

        if columns is None:
            self._columns.pop(table_name, None)
            self._primary_keys.pop(table_name, None)
            return {}

        self._columns[table_name] = columns
        self._primary_keys[table_name] = primary_key
        return columns

    async def primary_key(self, table_name: str) -> List[str]:
        if table_name not in self._primary_keys:
            await self.describe_table(table_name)
        return self._primary_keys.get(table_name, [])

    # ------------------------------------------------------------------
    # Schema changes
    # ------------------------------------------------------------------

    async def create_table(self, table_name: str) -> None:
        """Create an empty table with an integer ``id`` primary key."""

        def _create(sync_conn):
            Operations(MigrationContext.configure(sync_conn)).create_table(
                table_name,
                Column("id", Integer, primary_key=True, autoincrement=True),
            )

        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(_create)
        finally:
            await self.describe_table(table_name, refresh=True)

    async def add_column(self, table_name: str, column_name: str, column_type: TypeEngine) -> None:
        """Add a nullable column."""

        def _add(sync_conn):
            Operations(MigrationContext.configure(sync_conn)).add_column(
                table_name,
                Column(column_name, column_type, nullable=True),
            )

        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(_add)
        finally:
            await self.describe_table(table_name, refresh=True)

    # ------------------------------------------------------------------
    # Row access
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncConnection]:
        """One unit of work: commits on exit, rolls back on error."""
        async with self.engine.begin() as conn:
            yield conn

    async def _table(self, table_name: str, names: List[str]) -> TableClause:
        types = await self.describe_table(table_name)
        return table(table_name, *[column(name, types.get(name, NullType())) for name in names])

    async def _coerced(self, table_name: str, values: Dict[str, Any]) -> Dict[str, Any]:
        types = await self.describe_table(table_name)
        return {name: coerce_value(types.get(name), value) for name, value in values.items()}

    async def find_by_keys(
        self,
        table_name: str,
        key_values: Dict[str, Any],
        conn: AsyncConnection,
    ) -> Optional[Dict[str, Any]]:
        """First row matching ANY of the given key values, or None."""
        if not key_values:
            return None

        types = await self.describe_table(table_name)
        tbl = await self._table(table_name, list(types))
        keys = await self._coerced(table_name, key_values)

        stmt = (
            select(tbl)
            .where(or_(*[tbl.c[name] == value for name, value in keys.items()]))
            .limit(1)
        )
        row = (await conn.execute(stmt)).mappings().first()
        return dict(row) if row is not None else None

    async def insert_row(
        self,
        table_name: str,
        values: Dict[str, Any],
        conn: AsyncConnection,
    ) -> None:
        tbl = await self._table(table_name, list(values))
        await conn.execute(insert(tbl).values(await self._coerced(table_name, values)))

    async def update_row_by_keys(
        self,
        table_name: str,
        key_values: Dict[str, Any],
        values: Dict[str, Any],
        conn: AsyncConnection,
        match_any: bool = False,
    ) -> int:
        """
        Update rows matching the key values (all of them, or any of them when
        ``match_any``). Returns the number of rows changed.
        """
        if not key_values or not values:
            return 0

        tbl = await self._table(table_name, list(dict.fromkeys([*key_values, *values])))
        keys = await self._coerced(table_name, key_values)
        conditions = [tbl.c[name] == value for name, value in keys.items()]
        where = or_(*conditions) if match_any else and_(*conditions)

        result = await conn.execute(
            update(tbl).where(where).values(await self._coerced(table_name, values))
        )
        return result.rowcount
