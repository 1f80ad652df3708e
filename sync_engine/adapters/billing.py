"""
Billing provider adapter with Basic authentication, cursor pagination and
retry logic.

This module provides:
- Exponential backoff retry for timeouts, network errors and 5xx responses
- Retry-After handling for rate limiting (HTTP 429)
- Immediate failure on authentication errors (HTTP 401, 403)
- Unwrapping of the provider's ``{"list": [{"<entity>": {...}}]}`` envelope
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging

import httpx

from core.config import settings
from core.exceptions import (
    SourceAuthenticationError,
    SourceConfigurationError,
    SourceNetworkError,
    SourceQueryError,
    SourceRateLimitError,
    SourceUnreachable,
)
from models.base import SourceKind
from sync_engine.adapters.base import SourceAdapter
from sync_engine.change_filter import EPOCH_SECONDS, TimestampPolicy

logger = logging.getLogger(__name__)

ENTITY_ENDPOINTS = {
    "customer": "/customers",
    "subscription": "/subscriptions",
    "invoice": "/invoices",
}

TIMESTAMP_FIELDS = {
    "customer": ("updated_at",),
    "subscription": ("updated_at",),
    "invoice": ("updated_at", "paid_at", "date"),
}

# Entity types whose list endpoint accepts an updated_at[after] filter
SINCE_FILTER_ENTITIES = {"customer", "subscription"}

FIELD_CATALOGUE: Dict[str, List[Dict[str, str]]] = {
    "customer": [
        {"name": "id", "description": "Customer ID"},
        {"name": "first_name", "description": "First Name"},
        {"name": "last_name", "description": "Last Name"},
        {"name": "email", "description": "Email Address"},
        {"name": "company", "description": "Company Name"},
        {"name": "created_at", "description": "Created Date"},
        {"name": "updated_at", "description": "Last Updated Date"},
        {"name": "billing_address", "description": "Billing Address"},
        {"name": "auto_collection", "description": "Auto Collection Method"},
        {"name": "net_term_days", "description": "Payment Terms (Days)"},
        {"name": "allow_direct_debit", "description": "Allow Direct Debit"},
        {"name": "taxability", "description": "Tax Status"},
        {"name": "phone", "description": "Phone Number"},
    ],
    "subscription": [
        {"name": "id", "description": "Subscription ID"},
        {"name": "customer_id", "description": "Customer ID"},
        {"name": "status", "description": "Subscription Status"},
        {"name": "plan_id", "description": "Plan ID"},
        {"name": "plan_amount", "description": "Plan Amount"},
        {"name": "currency_code", "description": "Currency"},
        {"name": "next_billing_at", "description": "Next Billing Date"},
        {"name": "created_at", "description": "Created Date"},
        {"name": "started_at", "description": "Start Date"},
        {"name": "updated_at", "description": "Last Updated Date"},
        {"name": "billing_period", "description": "Billing Period"},
        {"name": "billing_period_unit", "description": "Billing Period Unit"},
        {"name": "plan_quantity", "description": "Quantity"},
        {"name": "trial_start", "description": "Trial Start Date"},
        {"name": "trial_end", "description": "Trial End Date"},
    ],
    "invoice": [
        {"name": "id", "description": "Invoice ID"},
        {"name": "subscription_id", "description": "Subscription ID"},
        {"name": "customer_id", "description": "Customer ID"},
        {"name": "status", "description": "Invoice Status"},
        {"name": "amount", "description": "Amount"},
        {"name": "amount_paid", "description": "Amount Paid"},
        {"name": "amount_due", "description": "Amount Due"},
        {"name": "date", "description": "Invoice Date"},
        {"name": "due_date", "description": "Due Date"},
        {"name": "paid_at", "description": "Payment Date"},
        {"name": "total", "description": "Total Amount"},
        {"name": "recurring", "description": "Is Recurring"},
        {"name": "first_invoice", "description": "Is First Invoice"},
        {"name": "has_advance_charges", "description": "Has Advance Charges"},
    ],
}


class BillingAdapter(SourceAdapter):
    """
    Fetch customers, subscriptions and invoices from the billing provider.

    Attributes:
        base_url: ``https://{site}.chargebee.com/api/v2`` unless overridden
        page_size: Items requested per page (``limit``)
        max_pages: Upper bound on pages followed per entity type
        max_retries: Attempts per request for retryable failures
        retry_delay: Initial backoff in seconds, doubled on each attempt
        timeout: Request timeout in seconds
    """

    source_kind = SourceKind.BILLING

    def __init__(
        self,
        site: Optional[str],
        api_key: Optional[str],
        base_url: Optional[str] = None,
        page_size: Optional[int] = None,
        max_pages: Optional[int] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not api_key or not (site or base_url):
            raise SourceConfigurationError(
                "Billing source needs a site and an API key",
                context={"source_kind": self.source_kind.value, "site": site},
            )

        self.site = site
        self.api_key = api_key
        self.base_url = base_url or settings.BILLING_BASE_URL_TEMPLATE.format(site=site)
        self.page_size = page_size or settings.BILLING_PAGE_SIZE
        self.max_pages = max_pages or settings.BILLING_MAX_PAGES
        self.timeout = timeout or settings.BILLING_TIMEOUT
        self.max_retries = max_retries or settings.BILLING_MAX_RETRIES
        self.retry_delay = settings.BILLING_RETRY_DELAY if retry_delay is None else retry_delay
        self.transport = transport

        self._client: Optional[httpx.AsyncClient] = None

    async def open(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                auth=httpx.BasicAuth(self.api_key, ""),
                headers={"Accept": "application/json"},
                timeout=self.timeout,
                transport=self.transport,
            )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def supports(self, entity_type: str) -> bool:
        return entity_type in ENTITY_ENDPOINTS

    def timestamp_policy(self, entity_type: str) -> TimestampPolicy:
        return TimestampPolicy(
            candidate_fields=TIMESTAMP_FIELDS.get(entity_type, ("updated_at",)),
            unit=EPOCH_SECONDS,
        )

    async def available_fields(self, entity_type: str) -> List[Dict[str, str]]:
        return list(FIELD_CATALOGUE.get(entity_type, []))

    async def _request_with_retry(self, path: str, params: Dict[str, Any]) -> httpx.Response:
        """
        GET with retry logic and exponential backoff.

        Raises:
            SourceAuthenticationError: 401 / 403, never retried
            SourceRateLimitError: still rate limited after max retries
            SourceNetworkError: timeouts, network errors or 5xx after max retries
            SourceQueryError: any other unsuccessful response
        """
        context = {"source_kind": self.source_kind.value, "path": path}

        for attempt in range(self.max_retries):
            is_last = attempt == self.max_retries - 1
            delay = self.retry_delay * (2 ** attempt)

            try:
                logger.debug(f"Request attempt {attempt + 1}/{self.max_retries} to {path}")
                response = await self._client.get(path, params=params)
            except httpx.TimeoutException as e:
                if not is_last:
                    logger.warning(f"Request timeout. Retrying in {delay} seconds")
                    await asyncio.sleep(delay)
                    continue
                raise SourceNetworkError(
                    f"Request timeout after {self.max_retries} attempts",
                    context={**context, "timeout": self.timeout, "retry_count": attempt + 1},
                    original_exception=e,
                )
            except httpx.TransportError as e:
                if not is_last:
                    logger.warning(f"Network error. Retrying in {delay} seconds")
                    await asyncio.sleep(delay)
                    continue
                raise SourceNetworkError(
                    f"Network error after {self.max_retries} attempts",
                    context={**context, "retry_count": attempt + 1},
                    original_exception=e,
                )

            if response.status_code in (401, 403):
                raise SourceAuthenticationError(
                    f"Authentication failed for {path}",
                    context={**context, "status_code": response.status_code},
                )

            if response.status_code == 429:
                retry_after = _retry_after(response, delay)
                if not is_last:
                    logger.warning(f"Rate limited. Retrying after {retry_after} seconds")
                    await asyncio.sleep(retry_after)
                    continue
                raise SourceRateLimitError(
                    f"Rate limit exceeded for {path}",
                    context={**context, "status_code": 429, "retry_count": attempt + 1},
                    retry_after=retry_after,
                )

            if response.status_code >= 500:
                if not is_last:
                    logger.warning(
                        f"Server error {response.status_code}. "
                        f"Retrying in {delay} seconds (attempt {attempt + 1}/{self.max_retries})"
                    )
                    await asyncio.sleep(delay)
                    continue
                raise SourceNetworkError(
                    f"Server error after {self.max_retries} attempts",
                    context={
                        **context,
                        "status_code": response.status_code,
                        "retry_count": attempt + 1,
                        "response_body": response.text[:500],
                    },
                )

            if not response.is_success:
                raise SourceQueryError(
                    f"Request to {path} was rejected",
                    context={
                        **context,
                        "status_code": response.status_code,
                        "response_body": response.text[:500],
                    },
                )

            return response

        raise SourceNetworkError("Max retries exceeded", context=context)

    async def fetch_entities(
        self,
        entity_type: str,
        since: Optional[datetime] = None,
        fields: Optional[List[str]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Fetch every page of an entity type, following ``next_offset``.

        ``fields`` is not used: the provider always returns whole entities.
        """
        if not self.supports(entity_type):
            raise SourceQueryError(
                f"Unsupported billing entity type: {entity_type}",
                context={"source_kind": self.source_kind.value, "entity_type": entity_type},
            )

        if self._client is None:
            async with self:
                return await self.fetch_entities(entity_type, since, fields)

        path = ENTITY_ENDPOINTS[entity_type]
        params: Dict[str, Any] = {"limit": self.page_size}
        if since is not None and entity_type in SINCE_FILTER_ENTITIES:
            params["updated_at[after]"] = _epoch_seconds(since)

        records: List[Dict[str, Any]] = []
        pages = 0

        try:
            while pages < self.max_pages:
                logger.info(f"Fetching {entity_type} page {pages + 1} from billing provider")
                response = await self._request_with_retry(path, dict(params))

                try:
                    data = response.json()
                except ValueError as e:
                    raise SourceQueryError(
                        "Failed to parse JSON response",
                        context={
                            "source_kind": self.source_kind.value,
                            "entity_type": entity_type,
                            "page": pages + 1,
                            "response_body": response.text[:500],
                        },
                        original_exception=e,
                    )

                pages += 1
                for item in data.get("list", []) if isinstance(data, dict) else []:
                    entity = item.get(entity_type) if isinstance(item, dict) else None
                    if isinstance(entity, dict):
                        records.append(entity)

                next_offset = data.get("next_offset") if isinstance(data, dict) else None
                if not next_offset:
                    break
                params["offset"] = next_offset
            else:
                logger.warning(
                    f"Stopped fetching {entity_type} after {self.max_pages} pages "
                    f"(BILLING_MAX_PAGES)"
                )

        except SourceUnreachable:
            raise

        except Exception as e:
            raise SourceNetworkError(
                "Unexpected error during billing fetch",
                context={
                    "source_kind": self.source_kind.value,
                    "entity_type": entity_type,
                    "page": pages + 1,
                    "records_fetched": len(records),
                },
                original_exception=e,
            )

        logger.info(f"Fetched {len(records)} {entity_type} records ({pages} pages)")
        return records


def _epoch_seconds(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


def _retry_after(response: httpx.Response, default: float) -> float:
    header = response.headers.get("Retry-After")
    if header is None:
        return default
    try:
        return max(float(header), 0.0)
    except ValueError:
        return default
