"""
Tests for the cost analysis orchestrator.
"""

import httpx
import pytest
import respx
from unittest.mock import AsyncMock, Mock

from deploycost.domain.deployment_context import (
    DeploymentConfigurationError,
    ResolvedTopology,
    TopologyHolder,
    to_deployment_context,
)
from deploycost.domain.quota_models import COMPUTE, NETWORK, STORAGE, NamespaceQuota, QuotaStatus, QuotaUsage, RegionQuota
from deploycost.pricing.azure_pricing_client import AzurePricingClient, PricingHTTPError
from deploycost.services.cost_analysis import (
    CostAnalysisError,
    CostAnalysisOptions,
    CostAnalysisOrchestrator,
    estimate_hourly_cost,
    plan_resources,
    run_cost_analysis,
)


def region_quota(region, compute=(10, 0), network=(10, 0), storage=None):
    """RegionQuota with available namespaces built from (limit, current) pairs."""
    namespaces = []
    for namespace, pair in ((COMPUTE, compute), (NETWORK, network), (STORAGE, storage)):
        usages = []
        if pair is not None:
            usages = [QuotaUsage(namespace, pair[0], pair[1], 'Count', region)]
        namespaces.append(NamespaceQuota(namespace, region, QuotaStatus.AVAILABLE, usages=usages))
    return RegionQuota(region=region, namespaces=namespaces)


@pytest.mark.asyncio
async def test_end_to_end_totals(sample_holder, mock_pricing_client, mock_cache):
    """Two regions x (3 validators + 1 RPC node) at $0.10/hour."""
    report = await run_cost_analysis(sample_holder, pricing_client=mock_pricing_client, cache=mock_cache)

    assert len(report.line_items) == 4
    assert report.total_hourly_cost == pytest.approx(0.8)
    assert report.total_daily_cost == pytest.approx(0.8 * 24)
    assert report.total_monthly_cost == pytest.approx(0.8 * 720)
    assert report.period_cost('day') == pytest.approx(19.2)
    assert report.period_cost('week') is None
    assert report.errors == []
    assert report.currency == 'USD'
    assert report.deployment_strategy == '2 Regions AKS'
    assert report.quota_summary is None
    assert report.summary.startswith('4/4 resource(s) priced')
    mock_cache.save.assert_called_once()


@pytest.mark.asyncio
async def test_each_price_is_looked_up_once(sample_holder, mock_pricing_client, mock_cache):
    options = CostAnalysisOptions(pricing_region='westeurope', max_concurrency=1)

    await run_cost_analysis(sample_holder, options, pricing_client=mock_pricing_client, cache=mock_cache)

    assert mock_pricing_client.lookup.await_count == 2
    regions = {call.args[2] for call in mock_pricing_client.lookup.await_args_list}
    assert regions == {'westeurope'}


@pytest.mark.asyncio
async def test_partial_pricing_failure(sample_holder, record_factory, mock_cache):
    """A failed SKU is reported as an error; the rest of the report is kept."""
    async def lookup(resource_type, sku, region=None):
        if sku == 'Standard_D2s_v5':
            raise PricingHTTPError(503, '/api/retail/prices')
        return record_factory(sku, 1.0)

    pricing_client = Mock()
    pricing_client.lookup = AsyncMock(side_effect=lookup)

    report = await run_cost_analysis(sample_holder, pricing_client=pricing_client, cache=mock_cache)

    assert report.total_hourly_cost == pytest.approx(6.0)
    assert len(report.errors) == 2
    assert {error.region for error in report.errors} == {'eastus', 'westus2'}
    assert all('HTTP 503' in error.reason for error in report.errors)
    unpriced = [item for item in report.line_items if not item.priced]
    assert len(unpriced) == 2
    assert all(item.total_cost == 0 and item.source == 'unknown' for item in unpriced)
    assert report.summary.endswith('2 pricing issue(s)')


@pytest.mark.asyncio
async def test_all_pricing_failed_raises(sample_holder, mock_cache):
    pricing_client = Mock()
    pricing_client.lookup = AsyncMock(return_value=None)

    with pytest.raises(CostAnalysisError, match='every resource'):
        await run_cost_analysis(sample_holder, pricing_client=pricing_client, cache=mock_cache)

    mock_cache.save.assert_called_once()


@pytest.mark.asyncio
async def test_baseline_estimates_replace_missing_prices(sample_holder, mock_cache):
    pricing_client = Mock()
    pricing_client.lookup = AsyncMock(return_value=None)
    options = CostAnalysisOptions(use_estimates=True)

    report = await run_cost_analysis(sample_holder, options, pricing_client=pricing_client, cache=mock_cache)

    expected = (estimate_hourly_cost('aks-node-pool', 'Standard_D4s_v5') * 3
                + estimate_hourly_cost('aks-node-pool', 'Standard_D2s_v5')) * 2
    assert report.total_hourly_cost == pytest.approx(expected)
    assert all(item.source == 'estimated' for item in report.line_items)
    assert len(report.errors) == 4
    assert all(error.reason.endswith('using baseline estimate') for error in report.errors)


@pytest.mark.asyncio
async def test_discount_factors(sample_holder, mock_pricing_client, mock_cache):
    options = CostAnalysisOptions(discount_factors={'aks-node-pool': 0.5})

    report = await run_cost_analysis(sample_holder, options, pricing_client=mock_pricing_client, cache=mock_cache)

    assert report.total_hourly_cost == pytest.approx(0.4)


@pytest.mark.asyncio
async def test_shared_resources(sample_holder, mock_pricing_client, mock_cache):
    options = CostAnalysisOptions(include_shared_resources=True)

    report = await run_cost_analysis(sample_holder, options, pricing_client=mock_pricing_client, cache=mock_cache)

    shared = [item for item in report.line_items if item.role == 'shared']
    assert sorted({item.resource_type for item in shared}) == [
        'aks-cluster', 'application-insights', 'load-balancer', 'log-analytics', 'storage-account',
    ]
    assert len(shared) == 10


@pytest.mark.asyncio
async def test_requested_periods(sample_holder, mock_pricing_client, mock_cache):
    options = CostAnalysisOptions(periods=('minute', 'week', 'annual'))

    report = await run_cost_analysis(sample_holder, options, pricing_client=mock_pricing_client, cache=mock_cache)

    assert [rate.period for rate in report.burn_rates] == ['minute', 'week', 'annual']
    assert report.period_cost('week') == pytest.approx(0.8 * 168)
    assert report.period_cost('annual') == pytest.approx(0.8 * 8760)


@pytest.mark.parametrize('options', [
    dict(periods=('fortnight',)),
    dict(discount_factors={'aks-node-pool': 1.5}),
    dict(discount_factors={'aks-node-pool': 0}),
    dict(max_concurrency=0),
])
def test_invalid_options_rejected(options, mock_pricing_client):
    with pytest.raises(CostAnalysisError):
        CostAnalysisOrchestrator(CostAnalysisOptions(**options), pricing_client=mock_pricing_client)


@pytest.mark.asyncio
async def test_missing_topology_raises(mock_pricing_client, mock_cache):
    with pytest.raises(DeploymentConfigurationError):
        await run_cost_analysis(TopologyHolder(), pricing_client=mock_pricing_client, cache=mock_cache)
    mock_pricing_client.lookup.assert_not_awaited()


@pytest.mark.asyncio
async def test_empty_regions_raise(mock_pricing_client, mock_cache):
    holder = TopologyHolder(resolved_topology=ResolvedTopology(regions=[], placements={}))
    with pytest.raises(CostAnalysisError, match='region'):
        await run_cost_analysis(holder, pricing_client=mock_pricing_client, cache=mock_cache)


@pytest.mark.asyncio
async def test_quota_shortages_attached(sample_holder, mock_pricing_client, mock_cache):
    quota_client = Mock()
    quota_client.fetch_quota_for_regions = AsyncMock(return_value=[
        region_quota('eastus', compute=(10, 9)),
        region_quota('westus2'),
    ])
    options = CostAnalysisOptions(subscription_id='sub-1', quota_timeout_ms=1000)

    report = await run_cost_analysis(
        sample_holder, options, pricing_client=mock_pricing_client, quota_client=quota_client, cache=mock_cache
    )

    assert [(s.namespace, s.region, s.deficit) for s in report.quota_shortages] == [(COMPUTE, 'eastus', 2)]
    assert report.quota_summary == '1 quota shortage(s) detected.'
    args, kwargs = quota_client.fetch_quota_for_regions.await_args
    assert args == ('sub-1', ['eastus', 'westus2'])
    assert kwargs['timeout_ms'] == 1000


@pytest.mark.asyncio
async def test_unavailable_namespace_is_not_a_shortage(sample_holder, mock_pricing_client, mock_cache):
    eastus = region_quota('eastus')
    eastus.namespaces[0] = NamespaceQuota(COMPUTE, 'eastus', QuotaStatus.UNAVAILABLE, error='timeout')
    quota_client = Mock()
    quota_client.fetch_quota_for_regions = AsyncMock(return_value=[eastus, region_quota('westus2')])

    report = await run_cost_analysis(
        sample_holder,
        CostAnalysisOptions(subscription_id='sub-1'),
        pricing_client=mock_pricing_client,
        quota_client=quota_client,
        cache=mock_cache
    )

    assert report.quota_shortages == []


@pytest.mark.asyncio
async def test_quota_failure_does_not_fail_analysis(sample_holder, mock_pricing_client, mock_cache):
    quota_client = Mock()
    quota_client.fetch_quota_for_regions = AsyncMock(side_effect=RuntimeError('boom'))

    report = await run_cost_analysis(
        sample_holder,
        CostAnalysisOptions(subscription_id='sub-1'),
        pricing_client=mock_pricing_client,
        quota_client=quota_client,
        cache=mock_cache
    )

    assert report.total_hourly_cost == pytest.approx(0.8)
    assert report.quota_shortages == []
    assert report.quota_summary == 'Quota data unavailable; shortages not evaluated.'


@pytest.mark.asyncio
async def test_quota_report_survives_pricing_outage(sample_holder, mock_cache):
    """With every price missing, a quota evaluation is still worth reporting."""
    pricing_client = Mock()
    pricing_client.lookup = AsyncMock(return_value=None)
    quota_client = Mock()
    quota_client.fetch_quota_for_regions = AsyncMock(return_value=[
        region_quota('eastus'), region_quota('westus2'),
    ])

    report = await run_cost_analysis(
        sample_holder,
        CostAnalysisOptions(subscription_id='sub-1'),
        pricing_client=pricing_client,
        quota_client=quota_client,
        cache=mock_cache
    )

    assert report.total_hourly_cost == 0
    assert len(report.errors) == 4
    assert report.quota_summary == 'All required quotas appear sufficient.'


def test_default_pricing_client_uses_given_cache(price_cache):
    orchestrator = CostAnalysisOrchestrator(cache=price_cache)
    assert isinstance(orchestrator.pricing_client, AzurePricingClient)
    assert orchestrator.pricing_client.price_cache is price_cache
    assert orchestrator.cache is price_cache


def test_plan_uses_scale_map_and_placement_overrides():
    holder = {
        'resolvedAzure': {
            'regions': ['eastus', 'westus2'],
            'placements': {
                'validators': {},
                'rpcNodes': {'replicas': 2, 'deploymentType': 'aca', 'regions': ['westus2']},
                'archive': {'replicas': 0},
            },
        },
        'azureDeploymentDefault': 'vm',
        'azureScaleMap': {'validators': {'min': 2, 'max': 5}},
    }

    plans = plan_resources(to_deployment_context(holder))

    assert [(p.role, p.resource_type, p.region, p.sku, p.quantity) for p in plans] == [
        ('validators', 'virtual-machine', 'eastus', 'Standard_D4s_v5', 3),
        ('validators', 'virtual-machine', 'westus2', 'Standard_D4s_v5', 3),
        ('rpcNodes', 'container-app', 'westus2', 'Consumption', 2),
    ]


def test_plan_rejects_unknown_placement_type():
    holder = {
        'resolvedAzure': {'regions': ['eastus'], 'placements': {'validators': {'replicas': 1, 'deploymentType': 'k3s'}}},
    }
    with pytest.raises(CostAnalysisError, match='k3s'):
        plan_resources(to_deployment_context(holder))


@pytest.mark.asyncio
async def test_report_serialization_orders_by_cost(sample_holder, mock_pricing_client, mock_cache):
    report = await run_cost_analysis(sample_holder, pricing_client=mock_pricing_client, cache=mock_cache)

    payload = report.to_dict()

    costs = [item['total_cost'] for item in payload['line_items']]
    assert costs == sorted(costs, reverse=True)
    assert payload['total_monthly_cost'] == pytest.approx(576.0)
    assert payload['quota_shortages'] == []
    assert payload['comparison'] is None


@pytest.mark.asyncio
async def test_monthly_total_is_hourly_times_720(mock_pricing_client, mock_cache):
    holder = TopologyHolder(
        resolved_topology=ResolvedTopology(
            regions=['eastus', 'westus2'],
            placements={'validators': {'replicas': 4}, 'rpcNodes': {'instanceCount': 2}},
        ),
        pricing_region='eastus',
    )
    options = CostAnalysisOptions(periods=('hour', 'day', 'month'))

    report = await run_cost_analysis(holder, options, pricing_client=mock_pricing_client, cache=mock_cache)

    assert report.total_hourly_cost >= 0
    assert report.total_hourly_cost == pytest.approx(1.2)
    assert report.total_monthly_cost == pytest.approx(report.total_hourly_cost * 720)
    assert report.period_cost('month') == pytest.approx(report.total_monthly_cost)


PRICES_URL = "https://prices.azure.com/api/retail/prices"


def retail_page(*items):
    """Retail Prices page with (armSkuName, price) Linux pay-as-you-go items."""
    return {
        'Items': [
            {
                'currencyCode': 'USD',
                'retailPrice': price,
                'armRegionName': 'eastus',
                'meterName': sku,
                'productName': 'Virtual Machines Series',
                'skuName': sku,
                'armSkuName': sku,
                'serviceName': 'Virtual Machines',
                'unitOfMeasure': '1 Hour',
                'type': 'Consumption',
            }
            for sku, price in items
        ],
        'NextPageLink': None,
    }


@pytest.mark.asyncio
@respx.mock
async def test_rejected_skus_do_not_block_other_roles(price_cache):
    """Three roles with SKUs the API rejects still leave the healthy role priced."""
    def answer(request):
        if 'Standard_D2s_v5' in request.url.params['$filter']:
            return httpx.Response(200, json=retail_page(('Standard_D2s_v5', 0.096)))
        return httpx.Response(400, json={'error': 'invalid filter'})

    respx.get(PRICES_URL).mock(side_effect=answer)
    holder = TopologyHolder(
        resolved_topology=ResolvedTopology(
            regions=['eastus'],
            placements={
                'validators': {'replicas': 1},
                'sentries': {'replicas': 1},
                'archivers': {'replicas': 1},
                'rpcNodes': {'replicas': 3},
            },
        ),
        deployment_default='vm',
        size_map={
            'validators': 'Bogus_A1',
            'sentries': 'Bogus_B1',
            'archivers': 'Bogus_C1',
            'rpcNodes': 'Standard_D2s_v5',
        },
        pricing_region='eastus',
    )
    pricing_client = AzurePricingClient(region='eastus', price_cache=price_cache)

    report = await run_cost_analysis(holder, CostAnalysisOptions(max_concurrency=1), pricing_client=pricing_client)

    assert report.total_hourly_cost == pytest.approx(0.288)
    assert sorted(error.role for error in report.errors) == ['archivers', 'sentries', 'validators']
    assert all('HTTP 400' in error.reason for error in report.errors)
    assert pricing_client.circuit_breaker.consecutive_failures == 0


@pytest.mark.asyncio
@respx.mock
async def test_injected_client_cache_is_saved(sample_holder, price_cache, cache_file):
    respx.get(PRICES_URL).mock(return_value=httpx.Response(200, json=retail_page(
        ('Standard_D4s_v5', 0.192), ('Standard_D2s_v5', 0.096),
    )))
    orchestrator = CostAnalysisOrchestrator(pricing_client=AzurePricingClient(region='eastus', price_cache=price_cache))

    report = await orchestrator.run(sample_holder)

    assert orchestrator.cache is price_cache
    assert report.total_hourly_cost == pytest.approx((0.192 * 3 + 0.096) * 2)
    assert cache_file.exists()
    assert 'aks-node-pool|standard_d4s_v5|eastus|usd' in cache_file.read_text()


@pytest.mark.asyncio
async def test_strategy_comparison(sample_holder, mock_pricing_client, mock_cache):
    """At a flat $0.10/hour, single-region layouts halve the two-region cost."""
    options = CostAnalysisOptions(compare_strategies=True)

    report = await run_cost_analysis(sample_holder, options, pricing_client=mock_pricing_client, cache=mock_cache)

    comparison = report.comparison
    assert [entry.name for entry in comparison.strategies] == [
        'current', 'single-region-aks', 'multi-region-aks', 'single-region-vm', 'multi-region-vm', 'hybrid-aks-aca',
    ]
    current = comparison.strategy('current')
    assert current.description == '2 Regions AKS'
    assert current.monthly_cost == pytest.approx(report.total_monthly_cost)
    assert current.annual_cost == pytest.approx(report.total_monthly_cost * 12)
    assert comparison.strategy('single-region-vm').description == 'Single Region VM'
    assert comparison.strategy('single-region-vm').monthly_cost == pytest.approx(288.0)
    assert comparison.strategy('hybrid-aks-aca').hourly_cost == pytest.approx(0.4)

    cheapest, high_availability = comparison.recommendations
    assert cheapest.strategy == 'single-region-aks'
    assert cheapest.reason == 'Lowest cost option - saves $288.00/month (50.0%)'
    assert cheapest.savings == pytest.approx(288.0)
    assert cheapest.tradeoffs == ['Moderate cost', 'Auto-scaling', 'Kubernetes complexity']
    assert high_availability.strategy == 'multi-region-aks'
    assert high_availability.savings == pytest.approx(0.0)
    assert high_availability.tradeoffs == ['Higher cost', 'Better disaster recovery', 'Lower latency globally']

    # the report itself still describes the current layout
    assert report.total_hourly_cost == pytest.approx(0.8)
    assert len(report.line_items) == 4
    assert report.to_dict()['comparison']['strategies'][0]['name'] == 'current'
    mock_cache.save.assert_called_once()


@pytest.mark.asyncio
async def test_strategy_comparison_subset(sample_holder, mock_pricing_client, mock_cache):
    options = CostAnalysisOptions(compare_strategies=True, comparison_strategies=('multi-region-vm',))

    report = await run_cost_analysis(sample_holder, options, pricing_client=mock_pricing_client, cache=mock_cache)

    assert [entry.name for entry in report.comparison.strategies] == ['current', 'multi-region-vm']
    assert [rec.strategy for rec in report.comparison.recommendations] == ['multi-region-vm']


@pytest.mark.asyncio
async def test_comparison_is_off_by_default(sample_holder, mock_pricing_client, mock_cache):
    report = await run_cost_analysis(sample_holder, pricing_client=mock_pricing_client, cache=mock_cache)

    assert report.comparison is None
    assert mock_pricing_client.lookup.await_count == 2


def test_unknown_strategy_rejected(mock_pricing_client):
    with pytest.raises(CostAnalysisError, match='serverless'):
        CostAnalysisOrchestrator(
            CostAnalysisOptions(compare_strategies=True, comparison_strategies=('serverless',)),
            pricing_client=mock_pricing_client
        )
