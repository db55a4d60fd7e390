"""
Azure Resource Manager quota usages client.

Reads usage/limit pairs for the compute, network and storage resource
providers of a subscription/region. Each namespace is an independent failure
domain: one failing call never hides the others.
"""
import asyncio
from contextlib import asynccontextmanager
import inspect
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

import httpx
from azure.identity.aio import DefaultAzureCredential
from pydantic import ValidationError

from deploycost.core.config import config
from deploycost.domain.quota_models import (
    COMPUTE,
    NETWORK,
    STORAGE,
    NamespaceQuota,
    QuotaStatus,
    QuotaUsage,
    RegionQuota,
)
from deploycost.domain.wire_models import UsagePage


logger = logging.getLogger(__name__)


# namespace -> (resource provider, api-version)
QUOTA_ENDPOINTS: Dict[str, Tuple[str, str]] = {
    COMPUTE: ("Microsoft.Compute", "2023-07-01"),
    NETWORK: ("Microsoft.Network", "2023-05-01"),
    STORAGE: ("Microsoft.Storage", "2023-01-01"),
}

MAX_USAGE_PAGES = 10


class QuotaError(Exception):
    """Raised when a usages call fails."""
    pass


async def acquire_token(credential: Any, scope: str) -> str:
    """
    Get a bearer token from a sync or async credential.

    Args:
        credential: Object exposing get_token(scope)
        scope: OAuth scope (e.g., 'https://management.azure.com/.default')

    Returns:
        Access token string

    Raises:
        QuotaError: If the credential returns no token
    """
    token = credential.get_token(scope)
    if inspect.isawaitable(token):
        token = await token
    value = getattr(token, "token", None)
    if not value:
        raise QuotaError("Failed to acquire Azure access token")
    return value


def _unavailable(region: str, reason: str, namespaces: Sequence[str] = tuple(QUOTA_ENDPOINTS)) -> List[NamespaceQuota]:
    return [
        NamespaceQuota(namespace=namespace, region=region, status=QuotaStatus.UNAVAILABLE, error=reason)
        for namespace in namespaces
    ]


class AzureQuotaClient:
    """Client for ARM ``.../locations/{region}/usages`` endpoints."""

    def __init__(
        self,
        credential: Any = None,
        http_client: Optional[httpx.AsyncClient] = None,
        base_url: Optional[str] = None,
        timeout_ms: Optional[int] = None,
        scope: Optional[str] = None
    ):
        """
        Initialize quota client.

        Args:
            credential: Default credential (DefaultAzureCredential is created per call if None)
            http_client: Reusable AsyncClient; a short-lived one is opened per call otherwise
            base_url: ARM endpoint override
            timeout_ms: Default per-namespace timeout in milliseconds
            scope: Token scope override
        """
        self.credential = credential
        self.base_url = (base_url or config.ARM_BASE_URL).rstrip("/")
        self.timeout_ms = timeout_ms or config.QUOTA_TIMEOUT_MS
        self.scope = scope or config.ARM_SCOPE
        self._http_client = http_client

    async def fetch_region_quota(
        self,
        subscription_id: str,
        region: str,
        credential: Any = None,
        timeout_ms: Optional[int] = None
    ) -> List[QuotaUsage]:
        """
        Fetch usage records of all namespaces for one region.

        Args:
            subscription_id: Azure subscription id
            region: ARM region name
            credential: Credential override for this call
            timeout_ms: Per-namespace timeout override

        Returns:
            Usage records of the namespaces that answered (empty if no token)
        """
        result = await self.fetch_region_quota_detailed(subscription_id, region, credential, timeout_ms)
        return result.usages

    async def fetch_region_quota_detailed(
        self,
        subscription_id: str,
        region: str,
        credential: Any = None,
        timeout_ms: Optional[int] = None
    ) -> RegionQuota:
        """
        Fetch quota for one region, keeping per-namespace availability.

        Returns:
            RegionQuota; namespaces that failed are marked UNAVAILABLE
        """
        results = await self.fetch_quota_for_regions(subscription_id, [region], credential, timeout_ms)
        return results[0]

    async def fetch_quota_for_regions(
        self,
        subscription_id: str,
        regions: Sequence[str],
        credential: Any = None,
        timeout_ms: Optional[int] = None
    ) -> List[RegionQuota]:
        """
        Fetch quota for several regions concurrently with a single token.

        Args:
            subscription_id: Azure subscription id
            regions: ARM region names
            credential: Credential override for this call
            timeout_ms: Per-namespace timeout override

        Returns:
            One RegionQuota per region, in input order
        """
        credential = credential or self.credential
        owned_credential = credential is None
        if owned_credential:
            credential = DefaultAzureCredential()

        try:
            token = await acquire_token(credential, self.scope)
        except Exception as error:
            # Quota is "unknown" without a token, never "zero"
            logger.warning(f"Azure token acquisition failed, quota unavailable: {error}")
            return [
                RegionQuota(region=region, namespaces=_unavailable(region, "token unavailable"), token_acquired=False)
                for region in regions
            ]
        finally:
            if owned_credential:
                await credential.close()

        timeout_seconds = (timeout_ms or self.timeout_ms) / 1000.0
        async with self._session(timeout_seconds) as client:
            return list(await asyncio.gather(*(
                self._fetch_region(client, subscription_id, region, token, timeout_seconds)
                for region in regions
            )))

    @asynccontextmanager
    async def _session(self, timeout_seconds: float) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            yield client

    async def _fetch_region(
        self,
        client: httpx.AsyncClient,
        subscription_id: str,
        region: str,
        token: str,
        timeout_seconds: float
    ) -> RegionQuota:
        namespaces = await asyncio.gather(*(
            self._fetch_namespace(client, namespace, subscription_id, region, token, timeout_seconds)
            for namespace in QUOTA_ENDPOINTS
        ))
        return RegionQuota(region=region, namespaces=list(namespaces))

    async def _fetch_namespace(
        self,
        client: httpx.AsyncClient,
        namespace: str,
        subscription_id: str,
        region: str,
        token: str,
        timeout_seconds: float
    ) -> NamespaceQuota:
        provider, api_version = QUOTA_ENDPOINTS[namespace]
        path = f"/subscriptions/{subscription_id}/providers/{provider}/locations/{region}/usages"
        url: Optional[str] = f"{self.base_url}{path}"
        params: Optional[Dict[str, str]] = {"api-version": api_version}
        usages: List[QuotaUsage] = []

        try:
            for _ in range(MAX_USAGE_PAGES):
                if not url:
                    break
                response = await client.get(
                    url,
                    params=params,
                    headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
                    timeout=timeout_seconds
                )
                if response.status_code >= 400:
                    raise QuotaError(f"HTTP {response.status_code} for {path}")
                page = UsagePage.model_validate(response.json())
                usages.extend(
                    QuotaUsage(
                        namespace=namespace,
                        limit=item.limit,
                        current=item.current_value,
                        unit=item.unit,
                        region=region,
                    )
                    for item in page.value
                )
                url = page.next_link
                params = None  # nextLink already carries the query
        except httpx.TimeoutException:
            reason = f"timeout after {int(timeout_seconds * 1000)}ms for {path}"
            logger.warning(f"Quota {namespace} usages unavailable in {region}: {reason}")
            return NamespaceQuota(namespace, region, QuotaStatus.UNAVAILABLE, error=reason)
        except (httpx.RequestError, QuotaError, ValidationError, ValueError) as error:
            logger.warning(f"Quota {namespace} usages unavailable in {region}: {error}")
            return NamespaceQuota(namespace, region, QuotaStatus.UNAVAILABLE, error=str(error))

        return NamespaceQuota(namespace, region, QuotaStatus.AVAILABLE, usages=usages)


async def fetch_region_quota(
    subscription_id: str,
    region: str,
    credential: Any = None,
    timeout_ms: Optional[int] = None
) -> List[QuotaUsage]:
    """
    Fetch quota usages for one subscription/region with a default client.

    Returns:
        Usage records; empty when no token could be acquired
    """
    client = AzureQuotaClient()
    return await client.fetch_region_quota(subscription_id, region, credential, timeout_ms)
