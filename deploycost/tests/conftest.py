"""
Shared pytest fixtures for deploycost tests.
"""

import sys
import os
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

# Never touch a real cache file or pricing endpoint from tests
os.environ.setdefault('PRICING_CACHE_DISABLED', 'true')
os.environ.setdefault('PRICING_TIMEOUT_SECONDS', '5')

import pytest
from unittest.mock import AsyncMock, Mock

from deploycost.domain.cost_models import PricingRecord
from deploycost.domain.deployment_context import ResolvedTopology, TopologyHolder
from deploycost.pricing.cache_store import PriceCacheStore, reset_price_cache
from deploycost.resilience.circuit_breaker import reset_circuit_breakers


PRICES_URL = "https://prices.azure.com/api/retail/prices"


@pytest.fixture(autouse=True)
def clean_singletons():
    """Fresh circuit breakers and price cache for every test."""
    reset_circuit_breakers()
    reset_price_cache()
    yield
    reset_circuit_breakers()
    reset_price_cache()


@pytest.fixture
def cache_file(tmp_path):
    """Path of a throwaway cache file."""
    return tmp_path / "pricing-cache.json"


@pytest.fixture
def price_cache(cache_file):
    """Enabled price cache backed by a temp file."""
    return PriceCacheStore(cache_file=str(cache_file), ttl_seconds=3600)


@pytest.fixture
def sample_holder():
    """Two regions, three validators and one RPC node per region, on AKS."""
    return TopologyHolder(
        resolved_topology=ResolvedTopology(
            regions=['eastus', 'westus2'],
            placements={
                'validators': {'replicas': 3},
                'rpcNodes': {'replicas': 1},
            }
        ),
        deployment_default='aks',
        size_map={'validators': 'Standard_D4s_v5', 'rpc': 'Standard_D2s_v5'},
        pricing_region='eastus',
    )


def make_record(sku, price_per_hour, service='Virtual Machines', region='eastus', source='live'):
    """Build a PricingRecord for mocks."""
    return PricingRecord(
        service=service,
        sku=sku,
        region=region,
        price_per_hour=price_per_hour,
        currency='USD',
        unit_of_measure='1 Hour',
        meter_name=sku.replace('Standard_', '').replace('_', ' '),
        source=source,
    )


@pytest.fixture
def mock_pricing_client():
    """Pricing client whose lookup returns $0.10/hour for any SKU."""
    mock = Mock()
    mock.lookup = AsyncMock(side_effect=lambda resource_type, sku, region=None: make_record(sku, 0.10))
    return mock


@pytest.fixture
def mock_cache():
    """Cache handle that records save() calls."""
    mock = Mock()
    mock.save = Mock()
    return mock


@pytest.fixture
def record_factory():
    """Factory for PricingRecord instances."""
    return make_record
