"""
Source adapters and the factory that builds them from a SourceConfig.
"""

from typing import Any, Dict, Optional

from core.config import settings
from core.exceptions import SourceConfigurationError
from models.base import SourceKind
from sync_engine.adapters.base import SourceAdapter
from sync_engine.adapters.billing import BillingAdapter
from sync_engine.adapters.analytical import AnalyticalAdapter


def build_adapter(
    source_kind: SourceKind,
    connection: Optional[Dict[str, Any]] = None,
) -> SourceAdapter:
    """
    Construct the adapter for a source kind from its connection settings.

    Raises:
        SourceConfigurationError: Credentials missing or unusable
    """
    connection = connection or {}

    if source_kind == SourceKind.BILLING:
        return BillingAdapter(
            site=connection.get("site") or settings.BILLING_SITE,
            api_key=connection.get("api_key") or settings.BILLING_API_KEY,
            base_url=connection.get("base_url"),
        )

    if source_kind == SourceKind.ANALYTICAL:
        return AnalyticalAdapter.from_connection(connection)

    raise SourceConfigurationError(
        f"Unknown source kind: {source_kind}",
        context={"source_kind": str(source_kind)},
    )


__all__ = ["SourceAdapter", "BillingAdapter", "AnalyticalAdapter", "build_adapter"]
