"""
Analytical database adapter: one read query per entity type.

Named wide queries cover entity types that aggregate several source tables;
any other entity type is read straight from the table of the same name.
"""

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional, Union
import logging

from sqlalchemy import column, inspect, select, table, text
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from core.config import settings
from core.exceptions import (
    SourceConfigurationError,
    SourceNetworkError,
    SourceQueryError,
)
from models.base import SourceKind
from sync_engine.adapters.base import SourceAdapter
from sync_engine.change_filter import DATETIME, TimestampPolicy
from sync_engine.registry import is_identifier

logger = logging.getLogger(__name__)

# Growth-plan companies with their store, loyalty and campaign aggregates
COMPANY_QUERY = text("""
    SELECT
      c.reelo_id AS company_id,
      c.name AS company_name,
      c.active_stores_count AS active_stores,
      c.createdate AS company_create_date,
      c.hubspot_id AS hubspot_id,
      COUNT(DISTINCT d.reelo_id) AS growth_subscription_count,
      SUM(CASE WHEN d.loyalty_activated = 1 THEN 1 ELSE 0 END) AS loyalty_active_store_count,
      SUM(CASE WHEN d.loyalty_activated = 0 OR d.loyalty_activated IS NULL THEN 1 ELSE 0 END)
        AS loyalty_inactive_store_count,
      GROUP_CONCAT(DISTINCT d.loyalty_active_channels) AS loyalty_active_channels,
      SUM(CASE WHEN d.negative_feedback_alert_activated = 0
               OR d.negative_feedback_alert_activated IS NULL THEN 1 ELSE 0 END)
        AS negative_feedback_alert_inactive,
      SUM(CASE WHEN d.bills_received_last_30_days < 300 THEN 1 ELSE 0 END) AS less_than_300_bills,
      MAX(CASE WHEN c.whatsapp_sender_id IS NULL OR c.whatsapp_sender_id = ''
               OR c.whatsapp_sender_id = 'unknown' THEN 0 ELSE 1 END) AS wa_header_active,
      (SELECT GROUP_CONCAT(ct.email SEPARATOR ', ')
         FROM contacts ct
         JOIN company_contact cc ON ct.reelo_id = cc.contact_id
        WHERE cc.company_id = c.reelo_id AND ct.email IS NOT NULL AND ct.email <> '')
        AS contact_emails,
      COALESCE(LENGTH(c.auto_campaigns) - LENGTH(REPLACE(c.auto_campaigns, ',', '')) + 1, 0)
        AS active_auto_campaigns_count,
      SUM(d.customers_visited_last_30_days) / NULLIF(SUM(d.bills_received_last_30_days), 0)
        AS unique_customers_captured,
      c.revenue_last_1_year AS revenue_1_year,
      c.customers_with_min_one_visit,
      c.customers_with_min_two_visit,
      c.aov,
      c.next_month_birthdays,
      c.next_month_anniversaries,
      c.percentage_of_inactive_customers,
      c.negative_feedbacks_count,
      c.customer_id,
      c.subscription_id,
      c.campaigns_sent_last_90_days,
      JSON_UNQUOTE(JSON_EXTRACT(c.loyalty_rewards, '$.type')) AS loyalty_type,
      JSON_UNQUOTE(JSON_EXTRACT(c.loyalty_rewards, '$.tier')) AS loyalty_reward,
      SUM(d.bills_received_last_30_days) AS bills_received_last_30_days,
      SUM(d.customers_acquired_last_30_days) AS customers_acquired_last_30_days,
      c.updated_at
    FROM companies c
    JOIN company_deal cd ON c.reelo_id = cd.company_id
    JOIN deals d ON cd.deal_id = d.reelo_id
    WHERE d.subscription_plan LIKE '%growth%'
      AND d.is_active = 1
      AND d.subscription_plan IS NOT NULL
      AND (:since IS NULL OR c.updated_at >= :since)
    GROUP BY c.reelo_id
""")

COMPANY_FIELDS: List[Dict[str, str]] = [
    {"name": "company_id", "description": "Company ID"},
    {"name": "company_name", "description": "Company Name"},
    {"name": "active_stores", "description": "Active Stores"},
    {"name": "company_create_date", "description": "Company Created Date"},
    {"name": "hubspot_id", "description": "HubSpot ID"},
    {"name": "growth_subscription_count", "description": "Growth Subscriptions"},
    {"name": "loyalty_active_store_count", "description": "Stores With Loyalty Active"},
    {"name": "loyalty_inactive_store_count", "description": "Stores With Loyalty Inactive"},
    {"name": "loyalty_active_channels", "description": "Loyalty Channels"},
    {"name": "negative_feedback_alert_inactive", "description": "Stores Without Feedback Alerts"},
    {"name": "less_than_300_bills", "description": "Stores Under 300 Bills"},
    {"name": "wa_header_active", "description": "WhatsApp Header Active"},
    {"name": "contact_emails", "description": "Contact Emails"},
    {"name": "active_auto_campaigns_count", "description": "Active Auto Campaigns"},
    {"name": "unique_customers_captured", "description": "Unique Customers Captured"},
    {"name": "revenue_1_year", "description": "Revenue (1 Year)"},
    {"name": "customers_with_min_one_visit", "description": "Customers With 1+ Visit"},
    {"name": "customers_with_min_two_visit", "description": "Customers With 2+ Visits"},
    {"name": "aov", "description": "Average Order Value"},
    {"name": "next_month_birthdays", "description": "Birthdays Next Month"},
    {"name": "next_month_anniversaries", "description": "Anniversaries Next Month"},
    {"name": "percentage_of_inactive_customers", "description": "Inactive Customers (%)"},
    {"name": "negative_feedbacks_count", "description": "Negative Feedbacks"},
    {"name": "customer_id", "description": "Billing Customer ID"},
    {"name": "subscription_id", "description": "Billing Subscription ID"},
    {"name": "campaigns_sent_last_90_days", "description": "Campaigns Sent (90 Days)"},
    {"name": "loyalty_type", "description": "Loyalty Type"},
    {"name": "loyalty_reward", "description": "Loyalty Reward Tier"},
    {"name": "bills_received_last_30_days", "description": "Bills Received (30 Days)"},
    {"name": "customers_acquired_last_30_days", "description": "Customers Acquired (30 Days)"},
    {"name": "updated_at", "description": "Last Updated Date"},
]

NAMED_QUERIES = {"company": COMPANY_QUERY}
NAMED_QUERY_FIELDS = {"company": COMPANY_FIELDS}

TIMESTAMP_FIELDS = ("updated_at",)


class AnalyticalAdapter(SourceAdapter):
    """
    Read entities from the analytical relational database.

    Table and column names are passed through SQLAlchemy constructs, which
    quote them for the target dialect.
    """

    source_kind = SourceKind.ANALYTICAL

    def __init__(
        self,
        url: Union[str, URL],
        query_timeout: Optional[float] = None,
        engine: Optional[AsyncEngine] = None,
    ):
        self.url = url
        self.query_timeout = query_timeout or settings.ANALYTICAL_QUERY_TIMEOUT
        self._engine: Optional[AsyncEngine] = engine
        self._owns_engine = engine is None

    @classmethod
    def from_connection(cls, connection: Optional[Dict[str, Any]]) -> "AnalyticalAdapter":
        """
        Build from a SourceConfig connection blob: ``{"url"}`` or
        ``{"driver", "host", "port", "username", "password", "database"}``.
        Falls back to ANALYTICAL_DATABASE_URL.

        Raises:
            SourceConfigurationError: No usable connection settings
        """
        connection = connection or {}
        try:
            if connection.get("url"):
                url = make_url(connection["url"])
            elif connection.get("host"):
                url = URL.create(
                    drivername=connection.get("driver") or settings.ANALYTICAL_DRIVER,
                    username=connection.get("username"),
                    password=connection.get("password"),
                    host=connection["host"],
                    port=int(connection["port"]) if connection.get("port") else None,
                    database=connection.get("database"),
                )
            elif settings.ANALYTICAL_DATABASE_URL:
                url = make_url(settings.ANALYTICAL_DATABASE_URL)
            else:
                raise SourceConfigurationError(
                    "Analytical source has no connection settings",
                    context={"source_kind": cls.source_kind.value},
                )
        except SourceConfigurationError:
            raise
        except (ArgumentError, ValueError, TypeError) as e:
            raise SourceConfigurationError(
                "Analytical connection settings are invalid",
                context={"source_kind": cls.source_kind.value},
                original_exception=e,
            )
        return cls(url)

    async def open(self) -> None:
        if self._engine is None:
            self._engine = create_async_engine(self.url, poolclass=NullPool)
            self._owns_engine = True

    async def close(self) -> None:
        if self._engine is not None and self._owns_engine:
            await self._engine.dispose()
            self._engine = None

    def supports(self, entity_type: str) -> bool:
        return entity_type in NAMED_QUERIES or is_identifier(entity_type)

    def timestamp_policy(self, entity_type: str) -> TimestampPolicy:
        return TimestampPolicy(candidate_fields=TIMESTAMP_FIELDS, unit=DATETIME)

    async def _table_columns(self, conn, table_name: str) -> List[str]:
        def _reflect(sync_conn):
            inspector = inspect(sync_conn)
            if not inspector.has_table(table_name):
                return []
            return [col["name"] for col in inspector.get_columns(table_name)]

        return await conn.run_sync(_reflect)

    async def available_fields(self, entity_type: str) -> List[Dict[str, str]]:
        if entity_type in NAMED_QUERY_FIELDS:
            return list(NAMED_QUERY_FIELDS[entity_type])
        if not self.supports(entity_type):
            return []

        await self.open()
        try:
            async with self._engine.connect() as conn:
                names = await self._table_columns(conn, entity_type)
        except Exception as e:
            raise SourceNetworkError(
                f"Could not read columns of {entity_type}",
                context={"source_kind": self.source_kind.value, "entity_type": entity_type},
                original_exception=e,
            )
        return [{"name": name, "description": name.replace("_", " ").title()} for name in names]

    async def fetch_entities(
        self,
        entity_type: str,
        since: Optional[datetime] = None,
        fields: Optional[List[str]] = None,
    ) -> List[Dict[str, Any]]:
        if not self.supports(entity_type):
            raise SourceQueryError(
                f"Unsupported analytical entity type: {entity_type}",
                context={"source_kind": self.source_kind.value, "entity_type": entity_type},
            )

        await self.open()
        context = {"source_kind": self.source_kind.value, "entity_type": entity_type}

        try:
            conn = await self._engine.connect()
        except Exception as e:
            raise SourceNetworkError(
                "Could not connect to the analytical database",
                context=context,
                original_exception=e,
            )

        try:
            if entity_type in NAMED_QUERIES:
                stmt = NAMED_QUERIES[entity_type].bindparams(since=since)
            else:
                stmt = await self._table_query(conn, entity_type, fields)

            result = await asyncio.wait_for(conn.execute(stmt), timeout=self.query_timeout)
            rows = [dict(row) for row in result.mappings().all()]

        except SourceQueryError:
            raise
        except asyncio.TimeoutError as e:
            raise SourceQueryError(
                f"Query for {entity_type} exceeded {self.query_timeout} seconds",
                context=context,
                original_exception=e,
            )
        except Exception as e:
            raise SourceQueryError(
                f"Query for {entity_type} failed",
                context=context,
                original_exception=e,
            )
        finally:
            await conn.close()

        logger.info(f"Fetched {len(rows)} {entity_type} rows from analytical source")
        return rows

    async def _table_query(self, conn, entity_type: str, fields: Optional[List[str]]):
        """SELECT the requested fields (plus the timestamp field) that exist."""
        available = await self._table_columns(conn, entity_type)
        if not available:
            raise SourceQueryError(
                f"Table {entity_type} does not exist in the analytical source",
                context={"source_kind": self.source_kind.value, "entity_type": entity_type},
            )

        wanted = list(dict.fromkeys([*(fields or available), *TIMESTAMP_FIELDS]))
        by_lower = {name.lower(): name for name in available}
        names = [by_lower[name.lower()] for name in wanted if name.lower() in by_lower]

        missing = [name for name in (fields or []) if name.lower() not in by_lower]
        if missing:
            logger.warning(f"Columns {missing} not found in {entity_type}, they will be empty")

        source = table(entity_type, *[column(name) for name in names])
        return select(*source.c)
