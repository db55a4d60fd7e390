"""
Deployment strategy comparison.

Re-shapes a deployment context into alternative strategies (single vs multi
region, AKS vs VMs, AKS with Container Apps for RPC) and turns their priced
totals into recommendations.
"""
from dataclasses import replace
from types import MappingProxyType
from typing import Any, Dict, List, Sequence, Tuple

from deploycost.core.config import config
from deploycost.domain.cost_models import CostLineItem, StrategyCost, StrategyRecommendation
from deploycost.domain.deployment_context import DeploymentContext


CURRENT_STRATEGY = "current"

DEFAULT_COMPARISON_STRATEGIES: Tuple[str, ...] = (
    "single-region-aks",
    "multi-region-aks",
    "single-region-vm",
    "multi-region-vm",
    "hybrid-aks-aca",
)

FALLBACK_REGIONS: Tuple[str, ...] = ("eastus", "westus2", "centralus")
HYBRID_REGION = "eastus"

STRATEGY_TRADEOFFS: Dict[str, List[str]] = {
    "single-region-vm": ["Lower cost", "Manual scaling", "Single point of failure"],
    "single-region-aks": ["Moderate cost", "Auto-scaling", "Kubernetes complexity"],
    "multi-region-aks": ["Higher cost", "High availability", "Complex networking"],
    "multi-region-vm": ["Moderate cost", "Geographic distribution", "Manual coordination"],
    "hybrid-aks-aca": ["Flexible scaling", "Mixed complexity", "Service coordination"],
}
GENERIC_TRADEOFFS = ["Strategy-specific considerations apply"]
HIGH_AVAILABILITY_TRADEOFFS = ["Higher cost", "Better disaster recovery", "Lower latency globally"]

# Placement keys that pin a role to the current layout
_LAYOUT_KEYS = ("regions", "deploymentType")


def strategy_tradeoffs(strategy: str) -> List[str]:
    """Known tradeoffs of a strategy."""
    return list(STRATEGY_TRADEOFFS.get(strategy, GENERIC_TRADEOFFS))


def _multi_regions(regions: Sequence[str]) -> Tuple[str, ...]:
    if len(regions) > 1:
        return tuple(regions)
    # widen a single-region deployment with fallback regions
    widened = list(regions)
    for region in FALLBACK_REGIONS:
        if len(widened) >= len(FALLBACK_REGIONS):
            break
        if region not in widened:
            widened.append(region)
    return tuple(widened)


def _unpinned(placement: Any) -> Dict[str, Any]:
    return {key: value for key, value in placement.items() if key not in _LAYOUT_KEYS}


def alternative_context(context: DeploymentContext, strategy: str) -> DeploymentContext:
    """
    Build the deployment context a strategy would run with.

    Role counts, sizes and scale bounds are kept; regions and deployment types
    follow the strategy. Per-role region and deployment type pins are dropped,
    except for the hybrid strategy which pins validators to AKS and RPC nodes
    to Container Apps in one region.

    Args:
        context: Current deployment context
        strategy: One of DEFAULT_COMPARISON_STRATEGIES

    Returns:
        New DeploymentContext

    Raises:
        ValueError: If the strategy is unknown
    """
    placements = {role: _unpinned(placement) for role, placement in context.placements.items()}
    regions = context.regions

    if strategy == "single-region-aks":
        regions, deployment_default = (regions[0] if regions else FALLBACK_REGIONS[0],), "aks"
    elif strategy == "multi-region-aks":
        regions, deployment_default = _multi_regions(regions), "aks"
    elif strategy == "single-region-vm":
        regions, deployment_default = (regions[0] if regions else FALLBACK_REGIONS[0],), "vm"
    elif strategy == "multi-region-vm":
        regions, deployment_default = _multi_regions(regions), "vm"
    elif strategy == "hybrid-aks-aca":
        deployment_default = "aks"
        for role, placement in placements.items():
            if role == "validators":
                placement.update(deploymentType="aks", regions=[HYBRID_REGION])
            elif role in ("rpcNodes", "rpc"):
                placement.update(deploymentType="aca", regions=[HYBRID_REGION])
    else:
        raise ValueError(f"Unknown deployment strategy: {strategy}")

    return replace(
        context,
        regions=tuple(regions),
        deployment_default=deployment_default,
        placements=MappingProxyType({
            role: MappingProxyType(placement) for role, placement in placements.items()
        }),
    )


def strategy_cost(name: str, description: str, line_items: Sequence[CostLineItem]) -> StrategyCost:
    """Total the line items of one strategy."""
    hourly = sum(item.total_cost for item in line_items)
    monthly = hourly * config.HOURS_PER_MONTH
    return StrategyCost(
        name=name,
        description=description,
        hourly_cost=hourly,
        monthly_cost=monthly,
        annual_cost=monthly * 12,
        resource_count=len(line_items),
        unpriced_count=sum(1 for item in line_items if not item.priced),
    )


def recommend_strategies(strategies: Sequence[StrategyCost]) -> List[StrategyRecommendation]:
    """
    Recommend alternatives to the current strategy.

    The cheapest strategy is recommended when it is not the current one, and
    the first multi-region strategy is offered for high availability with its
    extra monthly cost.

    Args:
        strategies: Strategy costs, the current strategy first

    Returns:
        Recommendations, cheapest first
    """
    if not strategies:
        return []

    recommendations: List[StrategyRecommendation] = []
    base_cost = strategies[0].monthly_cost
    cheapest = min(strategies, key=lambda entry: entry.monthly_cost)

    if cheapest.name != CURRENT_STRATEGY:
        savings = base_cost - cheapest.monthly_cost
        percent = savings / base_cost * 100 if base_cost else 0.0
        recommendations.append(StrategyRecommendation(
            strategy=cheapest.name,
            reason=f"Lowest cost option - saves ${savings:.2f}/month ({percent:.1f}%)",
            savings=savings,
            tradeoffs=strategy_tradeoffs(cheapest.name),
        ))

    multi_region = next((entry for entry in strategies if "multi-region" in entry.name), None)
    if multi_region is not None and multi_region.name != CURRENT_STRATEGY:
        extra_cost = multi_region.monthly_cost - base_cost
        recommendations.append(StrategyRecommendation(
            strategy=multi_region.name,
            reason=f"High availability across regions (+${extra_cost:.2f}/month)",
            savings=-extra_cost,
            tradeoffs=list(HIGH_AVAILABILITY_TRADEOFFS),
        ))

    return recommendations
