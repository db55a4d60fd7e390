"""
Azure Retail Prices API client.
Uses public REST API (no authentication required).

API Documentation: https://learn.microsoft.com/rest/api/cost-management/retail-prices/azure-retail-prices
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional, Tuple
import logging
import time

import httpx
from pydantic import ValidationError

from deploycost.core.config import config
from deploycost.domain.cost_models import PricingRecord
from deploycost.domain.wire_models import RetailPriceItem, RetailPricePage
from deploycost.pricing.cache_store import PriceCacheStore, get_price_cache
from deploycost.resilience.circuit_breaker import (
    CircuitBreaker,
    get_circuit_breaker,
    is_upstream_failure,
)


logger = logging.getLogger(__name__)


class PricingError(Exception):
    """Raised when a pricing query fails."""
    pass


class PricingHTTPError(PricingError):
    """Raised when the pricing API answers with an error status."""

    def __init__(self, status_code: int, path: str):
        self.status_code = status_code
        self.path = path
        super().__init__(f"Pricing API returned HTTP {status_code} for {path}")


class PricingTimeoutError(PricingError):
    """Raised when a pricing request exceeds its timeout."""

    def __init__(self, timeout_seconds: float, path: str):
        self.timeout_seconds = timeout_seconds
        self.path = path
        super().__init__(f"Pricing request timed out after {timeout_seconds:g}s for {path}")


class PricingUnavailableError(PricingError):
    """Raised while the pricing circuit breaker is open."""
    pass


# Billing unit -> multiplier that turns retailPrice into a price per hour
_UNIT_TO_HOURLY: Dict[str, float] = {
    "1 hour": 1.0,
    "1/hour": 1.0,
    "hours": 1.0,
    "1 month": 1.0 / (30 * 24),
    "monthly": 1.0 / (30 * 24),
    "1 day": 1.0 / 24,
    "daily": 1.0 / 24,
    "1 minute": 60.0,
    "minutes": 60.0,
    "1 second": 3600.0,
    "seconds": 3600.0,
}

# Pricing category -> serviceName
CATEGORY_SERVICES: Dict[str, str] = {
    "vm": "Virtual Machines",
    "aks": "Azure Kubernetes Service",
    "aca": "Container Apps",
    "logs": "Log Analytics",
    "insights": "Application Insights",
    "storage": "Storage",
    "lb": "Load Balancer",
}

# Resource type (and short aliases) -> pricing category
RESOURCE_TYPE_CATEGORIES: Dict[str, str] = {
    "vm": "vm",
    "virtual-machine": "vm",
    "virtual-machine-scale-set": "vm",
    "vmss": "vm",
    "aks-node-pool": "vm",
    "aks": "aks",
    "kubernetes": "aks",
    "aks-cluster": "aks",
    "aca": "aca",
    "container-apps": "aca",
    "container-app": "aca",
    "logs": "logs",
    "log-analytics": "logs",
    "insights": "insights",
    "application-insights": "insights",
    "storage": "storage",
    "storage-account": "storage",
    "load-balancer": "lb",
}


def normalize_price_per_hour(retail_price: float, unit_of_measure: Optional[str]) -> float:
    """
    Convert a retail price to a price per hour.

    Hourly units pass through, monthly divides by 30x24, daily by 24, per-minute
    multiplies by 60 and per-second by 3600. Any other unit (storage, data
    transfer, requests...) is returned unchanged.

    Args:
        retail_price: Price as published by the API
        unit_of_measure: The item's unitOfMeasure string

    Returns:
        Price per hour
    """
    factor = _UNIT_TO_HOURLY.get((unit_of_measure or "").strip().lower())
    if factor is None:
        return retail_price
    return retail_price * factor


def odata_literal(value: str) -> str:
    """Quote a value as an OData string literal, doubling embedded quotes."""
    return "'" + str(value).replace("'", "''") + "'"


_DISCOUNTED_METER_MARKERS = ("spot", "low priority")
_LICENSED_OS_MARKER = "windows"


def _is_regular_meter(record: PricingRecord) -> bool:
    meter = record.meter_name.lower()
    return not any(marker in meter for marker in _DISCOUNTED_METER_MARKERS)


def _is_linux_product(record: PricingRecord) -> bool:
    return _LICENSED_OS_MARKER not in record.product_name.lower()


def _best_sku_match(records: List[PricingRecord], sku: str) -> Optional[PricingRecord]:
    """
    Pick the exact SKU match a Linux pay-as-you-go deployment would be billed at.

    Windows and Linux meters share the same armSkuName, and Spot/Low Priority
    meters sit next to the regular one. Preference order: Linux regular, any
    Linux, any regular, then the first exact match.
    """
    exact = [record for record in records if record.sku == sku]
    preferences = (
        lambda record: _is_linux_product(record) and _is_regular_meter(record),
        _is_linux_product,
        _is_regular_meter,
    )
    for accept in preferences:
        for record in exact:
            if accept(record):
                return record
    return exact[0] if exact else None


def to_pricing_record(item: RetailPriceItem) -> PricingRecord:
    """Convert a raw API item to a normalized PricingRecord."""
    return PricingRecord(
        service=item.service_name,
        sku=item.arm_sku_name or item.sku_name,
        region=item.arm_region_name,
        price_per_hour=normalize_price_per_hour(item.retail_price, item.unit_of_measure),
        currency=item.currency_code,
        unit_of_measure=item.unit_of_measure,
        meter_name=item.meter_name,
        product_name=item.product_name,
    )


class AzurePricingClient:
    """Client for querying the Azure Retail Prices API by resource category."""

    def __init__(
        self,
        region: Optional[str] = None,
        currency: Optional[str] = None,
        timeout: Optional[float] = None,
        enable_cache: bool = True,
        cache_ttl_seconds: Optional[float] = None,
        price_cache: Optional[PriceCacheStore] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        base_url: Optional[str] = None,
        page_size: Optional[int] = None,
        max_items: Optional[int] = None
    ):
        """
        Initialize Azure pricing client.

        Args:
            region: Default ARM region for queries (e.g., 'eastus')
            currency: Currency code (default from config)
            timeout: Per-request timeout in seconds
            enable_cache: Cache category results and resolved lookups
            cache_ttl_seconds: TTL of the in-memory category cache
            price_cache: Persistent store for resolved lookups (default: shared instance)
            http_client: Reusable AsyncClient; a short-lived one is opened per query otherwise
            circuit_breaker: Breaker guarding the API (default: shared "retail_pricing")
            base_url: Pricing endpoint override
            page_size: Value of the $top parameter
            max_items: Hard cap on collected items per query
        """
        self.region = region or config.DEFAULT_PRICING_REGION
        self.currency = currency or config.DEFAULT_CURRENCY
        self.timeout = timeout if timeout is not None else config.PRICING_TIMEOUT_SECONDS
        self.enable_cache = enable_cache
        self.cache_ttl_seconds = (
            cache_ttl_seconds if cache_ttl_seconds is not None else config.PRICING_CACHE_TTL_SECONDS
        )
        self.base_url = base_url or config.PRICING_API_BASE_URL
        self.page_size = page_size or config.PRICING_PAGE_SIZE
        self.max_items = max_items or config.PRICING_MAX_ITEMS
        self.circuit_breaker = circuit_breaker or get_circuit_breaker("retail_pricing")
        self._http_client = http_client
        self._price_cache = price_cache
        # category cache: key -> (records, stored_at)
        self._cache: Dict[str, Tuple[List[PricingRecord], float]] = {}

    @property
    def price_cache(self) -> PriceCacheStore:
        if self._price_cache is None:
            self._price_cache = get_price_cache()
        return self._price_cache

    # Category queries

    async def get_vm_pricing(
        self,
        region: Optional[str] = None,
        vm_sizes: Optional[List[str]] = None
    ) -> List[PricingRecord]:
        """
        Get pricing for Virtual Machines.

        Args:
            region: ARM region (defaults to the client region)
            vm_sizes: Optional armSkuName allow-list (e.g., ['Standard_D4s_v5'])

        Returns:
            Normalized pricing records

        Raises:
            PricingError: If the API call fails
        """
        extra = None
        if vm_sizes:
            extra = "(" + " or ".join(f"armSkuName eq {odata_literal(size)}" for size in vm_sizes) + ")"
        return await self._get_category("vm", region, ",".join(vm_sizes or []), extra)

    async def get_aks_pricing(self, region: Optional[str] = None) -> List[PricingRecord]:
        """Get pricing for Azure Kubernetes Service."""
        return await self._get_category("aks", region)

    async def get_container_apps_pricing(self, region: Optional[str] = None) -> List[PricingRecord]:
        """Get pricing for Container Apps."""
        return await self._get_category("aca", region)

    async def get_log_analytics_pricing(self, region: Optional[str] = None) -> List[PricingRecord]:
        """Get pricing for Log Analytics ingestion."""
        return await self._get_category("logs", region)

    async def get_app_insights_pricing(self, region: Optional[str] = None) -> List[PricingRecord]:
        """Get pricing for Application Insights."""
        return await self._get_category("insights", region)

    async def get_storage_pricing(
        self,
        region: Optional[str] = None,
        storage_type: Optional[str] = None
    ) -> List[PricingRecord]:
        """
        Get pricing for Storage Accounts.

        Args:
            region: ARM region (defaults to the client region)
            storage_type: Optional skuName filter (e.g., 'Standard_LRS')
        """
        extra = f"skuName eq {odata_literal(storage_type)}" if storage_type else None
        return await self._get_category("storage", region, storage_type or "", extra)

    async def get_load_balancer_pricing(self, region: Optional[str] = None) -> List[PricingRecord]:
        """Get pricing for Load Balancer."""
        return await self._get_category("lb", region)

    async def _get_category(
        self,
        category: str,
        region: Optional[str],
        sku_filter: str = "",
        extra_filter: Optional[str] = None
    ) -> List[PricingRecord]:
        target_region = region or self.region
        cache_key = self._get_cache_key(category, target_region, sku_filter)

        if self.enable_cache:
            cached = self._get_cached_records(cache_key)
            if cached is not None:
                return cached

        filters = self.build_filters(CATEGORY_SERVICES[category], target_region, extra_filter)
        items = await self._query_pricing(filters)
        records = [to_pricing_record(item) for item in items]

        if self.enable_cache:
            self._cache[cache_key] = (records, time.time())
        return records

    def build_filters(self, service_name: str, region: str, extra_filter: Optional[str] = None) -> List[str]:
        """
        Build the OData filter clauses for a category query.

        Args:
            service_name: serviceName value (e.g., 'Virtual Machines')
            region: ARM region name
            extra_filter: Optional additional clause (SKU allow-list)

        Returns:
            Filter clauses, to be joined with ' and '
        """
        filters = [
            f"serviceName eq {odata_literal(service_name)}",
            f"armRegionName eq {odata_literal(region)}",
            f"currencyCode eq {odata_literal(self.currency)}",
            "type eq 'Consumption'",
        ]
        if extra_filter:
            filters.append(extra_filter)
        return filters

    # Transport

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            yield client

    async def _query_pricing(self, filters: List[str]) -> List[RetailPriceItem]:
        """
        Query the pricing API, following NextPageLink until exhausted or capped.

        Args:
            filters: Filter clauses

        Returns:
            Raw items (at most max_items)
        """
        params: Optional[Dict[str, str]] = {
            "$filter": " and ".join(filters),
            "$top": str(self.page_size),
        }
        url: Optional[str] = self.base_url
        items: List[RetailPriceItem] = []

        async with self._session() as client:
            while url:
                page = await self._fetch_page(client, url, params)
                items.extend(page.items)
                if len(items) >= self.max_items:
                    if page.next_page_link:
                        logger.warning(
                            "Azure pricing query truncated at %d items (filter: %s)",
                            self.max_items,
                            " and ".join(filters)
                        )
                    items = items[:self.max_items]
                    break
                url = page.next_page_link
                params = None  # NextPageLink already carries the query

        return items

    async def _fetch_page(
        self,
        client: httpx.AsyncClient,
        url: str,
        params: Optional[Dict[str, str]]
    ) -> RetailPricePage:
        path = httpx.URL(url).path

        if not self.circuit_breaker.allow_request():
            raise PricingUnavailableError(
                "Azure pricing service temporarily unavailable (circuit breaker open)"
            )

        try:
            response = await client.get(
                url,
                params=params,
                headers={"Accept": "application/json"},
                timeout=self.timeout
            )
            if response.status_code >= 400:
                raise PricingHTTPError(response.status_code, path)
            page = RetailPricePage.model_validate(response.json())
        except PricingHTTPError as error:
            if is_upstream_failure(error.status_code):
                self.circuit_breaker.record_failure()
            else:
                # the API answered; only this query is bad
                self.circuit_breaker.record_success()
            logger.error(f"Azure pricing API HTTP error: {error}")
            raise
        except httpx.TimeoutException as error:
            self.circuit_breaker.record_failure()
            logger.error(f"Azure pricing API timeout after {self.timeout}s for {path}")
            raise PricingTimeoutError(self.timeout, path) from error
        except httpx.RequestError as error:
            self.circuit_breaker.record_failure()
            logger.error(f"Azure pricing API request error: {error}")
            raise PricingError(f"Failed to connect to Azure pricing API: {error}") from error
        except (ValueError, ValidationError) as error:
            self.circuit_breaker.record_failure()
            logger.error(f"Error parsing Azure pricing response: {error}")
            raise PricingError(f"Malformed Azure pricing response for {path}") from error

        self.circuit_breaker.record_success()
        return page

    # Lookup by resource type

    async def lookup(
        self,
        resource_type: str,
        sku: str,
        region: Optional[str] = None
    ) -> Optional[PricingRecord]:
        """
        Resolve the hourly price of one resource type / SKU.

        The persistent price cache is consulted first. Otherwise the matching
        category is queried and the exact SKU match, else the first record, is
        returned.

        Args:
            resource_type: Resource type or alias (e.g., 'aks-node-pool', 'vm')
            sku: SKU name (e.g., 'Standard_D4s_v5')
            region: ARM region (defaults to the client region)

        Returns:
            PricingRecord, or None if the type is unknown or no price exists

        Raises:
            PricingError: On network-level failures
        """
        category = RESOURCE_TYPE_CATEGORIES.get(resource_type.lower())
        if category is None:
            logger.warning(f"Unknown resource type for pricing: {resource_type}")
            return None

        target_region = region or self.region
        persistent_key = f"{resource_type}|{sku}|{target_region}|{self.currency}".lower()

        if self.enable_cache:
            cached_price = self.price_cache.get(persistent_key)
            if cached_price is not None:
                return PricingRecord(
                    service=CATEGORY_SERVICES[category],
                    sku=sku,
                    region=target_region,
                    price_per_hour=cached_price,
                    currency=self.currency,
                    unit_of_measure="1 Hour",
                    meter_name="",
                    source="cached",
                )

        if category == "vm":
            records = await self.get_vm_pricing(target_region, [sku])
        elif category == "storage":
            records = await self.get_storage_pricing(target_region, sku)
        elif category == "aks":
            records = await self.get_aks_pricing(target_region)
        elif category == "aca":
            records = await self.get_container_apps_pricing(target_region)
        elif category == "logs":
            records = await self.get_log_analytics_pricing(target_region)
        elif category == "insights":
            records = await self.get_app_insights_pricing(target_region)
        else:
            records = await self.get_load_balancer_pricing(target_region)

        match = _best_sku_match(records, sku)
        if match is None and records:
            match = records[0]
        if match is None:
            return None

        if self.enable_cache:
            self.price_cache.set(persistent_key, match.price_per_hour)
        return match

    # Cache management

    def _get_cache_key(self, category: str, region: str, sku_filter: str = "") -> str:
        """Generate category cache key."""
        return f"{category}|{region}|{sku_filter or 'all'}"

    def _get_cached_records(self, cache_key: str) -> Optional[List[PricingRecord]]:
        """Get cached category records if still valid."""
        if cache_key in self._cache:
            records, stored_at = self._cache[cache_key]
            if time.time() - stored_at <= self.cache_ttl_seconds:
                return records
            del self._cache[cache_key]
        return None

    def clear_cache(self, clear_persistent: bool = False) -> None:
        """
        Clear cached pricing data.

        Args:
            clear_persistent: Also clear (and save) the persistent price cache
        """
        self._cache.clear()
        if clear_persistent:
            self.price_cache.clear()
            self.price_cache.save()

    def get_cache_stats(self) -> Dict[str, int]:
        """Get category cache statistics."""
        return {
            "entries": len(self._cache),
            "records": sum(len(records) for records, _ in self._cache.values()),
        }


async def get_pricing_for_resource(
    resource_type: str,
    sku: str,
    region: str,
    client: Optional[AzurePricingClient] = None
) -> Optional[PricingRecord]:
    """
    Get pricing for a specific resource type and SKU.

    Pricing is advisory: network-level failures are logged and reported as None.

    Args:
        resource_type: Resource type or alias
        sku: SKU name
        region: ARM region
        client: Pricing client to use (a default one is created if None)

    Returns:
        Exact SKU match, else first result, else None
    """
    client = client or AzurePricingClient(region=region)
    try:
        record = await client.lookup(resource_type, sku, region)
    except PricingError as error:
        logger.warning(f"Failed to get pricing for {resource_type}/{sku}: {error}")
        return None
    if client.enable_cache:
        client.price_cache.save()
    return record
