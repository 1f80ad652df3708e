"""
Abstract base class for source adapters
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from models.base import SourceKind
from sync_engine.change_filter import TimestampPolicy

logger = logging.getLogger(__name__)


class SourceAdapter(ABC):
    """
    Uniform "fetch entities of type T" contract over an external system.

    Adapters are async context managers: connections are opened on enter and
    released on exit, so one run holds them only while it fetches.
    """

    source_kind: SourceKind

    async def __aenter__(self) -> "SourceAdapter":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def open(self) -> None:
        """Acquire connections. Default: nothing to do."""

    async def close(self) -> None:
        """Release connections. Default: nothing to do."""

    @abstractmethod
    def supports(self, entity_type: str) -> bool:
        """Whether this source knows the entity type"""

    @abstractmethod
    async def fetch_entities(
        self,
        entity_type: str,
        since: Optional[datetime] = None,
        fields: Optional[List[str]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Fetch all entities of a type.

        Args:
            entity_type: Source entity type (customer, invoice, company, ...)
            since: Optional hint; the adapter may narrow the fetch with it but
                the change filter still decides what is synchronized
            fields: Source fields the mappings need

        Raises:
            SourceUnreachable: The source could not be read
        """

    @abstractmethod
    def timestamp_policy(self, entity_type: str) -> TimestampPolicy:
        """Where entities of this type keep their modification time"""

    @abstractmethod
    async def available_fields(self, entity_type: str) -> List[Dict[str, str]]:
        """Field catalogue for the admin mapping UI: [{"name", "description"}]"""
