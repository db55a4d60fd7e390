"""
Tests for building the deployment context from a topology holder.
"""

import pytest

from deploycost.domain.deployment_context import (
    DeploymentConfigurationError,
    ResolvedTopology,
    TopologyHolder,
    placement_count,
    to_deployment_context,
)


def test_defaults_applied():
    holder = TopologyHolder(resolved_topology=ResolvedTopology(regions=['eastus'], placements={}))

    context = to_deployment_context(holder)

    assert context.regions == ('eastus',)
    assert context.deployment_default == 'aks'
    assert context.pricing_region == 'eastus'
    assert context.currency == 'USD'
    assert dict(context.size_map) == {}


def test_camel_case_mapping_is_accepted():
    """Holders from the network builder use camelCase keys."""
    holder = {
        'resolvedAzure': {'regions': ['westus2'], 'placements': {'validators': {'replicas': 2}}},
        'azureDeploymentDefault': 'VMSS',
        'azureSizeMap': {'validators': 'Standard_D8s_v5'},
        'azureScaleMap': {'validators': {'min': 1, 'max': 3}},
        'azurePricingRegion': 'westeurope',
    }

    context = to_deployment_context(holder)

    assert context.deployment_default == 'vmss'
    assert context.size_map['validators'] == 'Standard_D8s_v5'
    assert context.scale_map['validators']['max'] == 3
    assert context.pricing_region == 'westeurope'
    assert context.placements['validators']['replicas'] == 2


def test_context_is_read_only(sample_holder):
    context = to_deployment_context(sample_holder)

    with pytest.raises(TypeError):
        context.placements['validators']['replicas'] = 10
    with pytest.raises(AttributeError):
        context.regions = ('northeurope',)

    # The holder is not affected by building a context
    assert sample_holder.resolved_topology.placements['validators'] == {'replicas': 3}


def test_missing_holder_raises():
    with pytest.raises(DeploymentConfigurationError, match='got no input'):
        to_deployment_context(None)


def test_missing_topology_raises():
    with pytest.raises(DeploymentConfigurationError, match='Resolved topology required'):
        to_deployment_context(TopologyHolder())


def test_unsupported_deployment_type_raises():
    holder = TopologyHolder(
        resolved_topology=ResolvedTopology(regions=['eastus'], placements={}),
        deployment_default='functions',
    )
    with pytest.raises(DeploymentConfigurationError, match='functions'):
        to_deployment_context(holder)


@pytest.mark.parametrize('placement,expected', [
    ({'replicas': 3}, 3),
    ({'instanceCount': 2}, 2),
    ({'instance_count': 4}, 4),
    ({}, 0),
    (None, 0),
])
def test_placement_count(placement, expected):
    assert placement_count(placement) == expected
