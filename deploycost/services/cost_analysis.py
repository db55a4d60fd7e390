"""
Cost analysis service.
Turns a resolved deployment topology into a cost report with optional quota checks.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from deploycost.core.config import config
from deploycost.domain.cost_models import (
    CostLineItem,
    CostReport,
    PeriodCost,
    PricingFailure,
    PricingRecord,
    StrategyComparison,
)
from deploycost.domain.deployment_context import DeploymentContext, placement_count, to_deployment_context
from deploycost.domain.quota_models import QuotaShortage
from deploycost.pricing.azure_pricing_client import AzurePricingClient
from deploycost.pricing.cache_store import PriceCacheStore
from deploycost.quota.quota_client import AzureQuotaClient
from deploycost.quota.quota_evaluator import evaluate_quota
from deploycost.services.strategy_comparison import (
    CURRENT_STRATEGY,
    DEFAULT_COMPARISON_STRATEGIES,
    alternative_context,
    recommend_strategies,
    strategy_cost,
)


logger = logging.getLogger(__name__)


PERIOD_HOURS: Dict[str, float] = {
    "minute": 1 / 60,
    "hour": 1,
    "day": 24,
    "3-day": 24 * 3,
    "week": 24 * 7,
    "month": 24 * 30,
    "quarter": 24 * 90,
    "annual": 24 * 365,
}

DEPLOYMENT_RESOURCE_TYPES: Dict[str, str] = {
    "aks": "aks-node-pool",
    "aca": "container-app",
    "vm": "virtual-machine",
    "vmss": "virtual-machine-scale-set",
}

ROLE_SIZE_ALIASES: Dict[str, str] = {"rpcNodes": "rpc"}
RPC_ROLES = ("rpcNodes", "rpc")
DEFAULT_NODE_SKU = "Standard_D4s_v5"
DEFAULT_RPC_SKU = "Standard_D2s_v5"
CONTAINER_APP_SKU = "Consumption"
SHARED_ROLE = "shared"

# Baseline hourly prices used when live pricing fails and estimates are allowed
BASELINE_VM_COSTS: Dict[str, float] = {
    "Standard_D2s_v5": 0.096,
    "Standard_D4s_v5": 0.192,
    "Standard_D8s_v5": 0.384,
    "Standard_D16s_v5": 0.768,
    "Standard_B2s": 0.041,
    "Standard_B4ms": 0.166,
}
BASELINE_COSTS: Dict[str, float] = {
    "aks-cluster": 0.10,
    "container-app": 0.05,
    "log-analytics": 0.05,
    "application-insights": 0.01,
    "storage-account": 0.02,
    "load-balancer": 0.025,
}
_VM_RESOURCE_TYPES = ("aks-node-pool", "virtual-machine", "virtual-machine-scale-set")


class CostAnalysisError(Exception):
    """Raised when no cost report can be produced."""
    pass


def _default_concurrency() -> int:
    return config.PRICING_MAX_CONCURRENCY


@dataclass
class CostAnalysisOptions:
    """Options for one analysis run."""
    pricing_region: Optional[str] = None  # defaults to the context's pricing region
    periods: Sequence[str] = ("hour", "day", "month")
    subscription_id: Optional[str] = None  # enables quota evaluation
    credential: Any = None
    quota_timeout_ms: Optional[int] = None
    include_shared_resources: bool = False
    use_estimates: bool = False
    discount_factors: Dict[str, float] = field(default_factory=dict)
    max_concurrency: int = field(default_factory=_default_concurrency)
    compare_strategies: bool = False
    comparison_strategies: Sequence[str] = DEFAULT_COMPARISON_STRATEGIES

    def validate(self) -> None:
        """
        Validate the options.

        Raises:
            CostAnalysisError: If a period, discount factor, strategy or concurrency limit is invalid
        """
        unknown = [period for period in self.periods if period not in PERIOD_HOURS]
        if unknown:
            raise CostAnalysisError(
                f"Unsupported cost period(s): {', '.join(unknown)} (expected: {', '.join(PERIOD_HOURS)})"
            )
        for resource_type, factor in self.discount_factors.items():
            if not 0 < factor <= 1:
                raise CostAnalysisError(f"Discount factor for {resource_type} must be in (0, 1] (got {factor})")
        unknown_strategies = [
            name for name in self.comparison_strategies if name not in DEFAULT_COMPARISON_STRATEGIES
        ]
        if unknown_strategies:
            raise CostAnalysisError(
                f"Unsupported deployment strategy(ies): {', '.join(unknown_strategies)} "
                f"(expected: {', '.join(DEFAULT_COMPARISON_STRATEGIES)})"
            )
        if self.max_concurrency <= 0:
            raise CostAnalysisError("max_concurrency must be positive")


@dataclass(frozen=True)
class ResourcePlan:
    """One resource to price: a role's instances in one region, or shared infrastructure."""
    role: str
    resource_type: str
    resource_name: str
    region: str
    sku: str
    quantity: int

    @property
    def pricing_key(self) -> Tuple[str, str]:
        return self.resource_type, self.sku


def estimate_hourly_cost(resource_type: str, sku: str) -> float:
    """
    Baseline hourly price of a resource when live pricing is unavailable.

    Args:
        resource_type: Resource type (e.g., 'virtual-machine')
        sku: SKU name

    Returns:
        Estimated price per hour in USD
    """
    if resource_type in _VM_RESOURCE_TYPES:
        return BASELINE_VM_COSTS.get(sku, 0.10)
    return BASELINE_COSTS.get(resource_type, 0.01)


def _role_quantity(role: str, placement: Mapping[str, Any], scale_map: Mapping[str, Mapping[str, int]]) -> int:
    declared = any(key in placement for key in ("replicas", "instanceCount", "instance_count"))
    if declared:
        return placement_count(placement)
    bounds = scale_map.get(role) or {}
    if bounds.get("min") is not None and bounds.get("max") is not None:
        # Autoscaling: use average of min/max
        return int((bounds["min"] + bounds["max"]) / 2)
    return 0


def _role_sku(role: str, resource_type: str, size_map: Mapping[str, str]) -> str:
    if resource_type == "container-app":
        return CONTAINER_APP_SKU
    for key in (role, ROLE_SIZE_ALIASES.get(role), "default"):
        if key and size_map.get(key):
            return size_map[key]
    return DEFAULT_RPC_SKU if role in RPC_ROLES else DEFAULT_NODE_SKU


def plan_resources(context: DeploymentContext, include_shared_resources: bool = False) -> List[ResourcePlan]:
    """
    List the resources to price for a deployment context.

    Args:
        context: Deployment context
        include_shared_resources: Add per-region AKS control plane, storage, monitoring and load balancing

    Returns:
        Resource plans in role order, then region order
    """
    plans: List[ResourcePlan] = []
    rpc_regions = set()
    aks_regions = set()

    for role, placement in context.placements.items():
        quantity = _role_quantity(role, placement, context.scale_map)
        if quantity <= 0:
            continue
        deployment_type = str(placement.get("deploymentType") or context.deployment_default).lower()
        resource_type = DEPLOYMENT_RESOURCE_TYPES.get(deployment_type)
        if resource_type is None:
            raise CostAnalysisError(f"Unsupported deployment type '{deployment_type}' for role {role}")
        sku = _role_sku(role, resource_type, context.size_map)
        for region in placement.get("regions") or context.regions:
            plans.append(ResourcePlan(
                role=role,
                resource_type=resource_type,
                resource_name=f"{role}-{region}",
                region=region,
                sku=sku,
                quantity=quantity,
            ))
            if role in RPC_ROLES:
                rpc_regions.add(region)
            if deployment_type == "aks":
                aks_regions.add(region)

    if include_shared_resources:
        for region in context.regions:
            if region in aks_regions:
                plans.append(ResourcePlan(SHARED_ROLE, "aks-cluster", f"aks-{region}", region, "Standard", 1))
            plans.append(ResourcePlan(SHARED_ROLE, "storage-account", f"st{region}", region, "Standard_LRS", 1))
            plans.append(ResourcePlan(SHARED_ROLE, "log-analytics", f"logs-{region}", region, "Standard", 1))
            plans.append(ResourcePlan(SHARED_ROLE, "application-insights", f"insights-{region}", region, "Standard", 1))
            if region in rpc_regions:
                plans.append(ResourcePlan(SHARED_ROLE, "load-balancer", f"lb-{region}", region, "Standard", 1))

    return plans


def calculate_burn_rates(hourly_cost: float, periods: Sequence[str], currency: str) -> List[PeriodCost]:
    """Scale an hourly cost to each requested period."""
    return [PeriodCost(period=period, cost=hourly_cost * PERIOD_HOURS[period], currency=currency) for period in periods]


def deployment_strategy_name(context: DeploymentContext) -> str:
    region_text = "Single Region" if len(context.regions) == 1 else f"{len(context.regions)} Regions"
    return f"{region_text} {context.deployment_default.upper()}"


class CostAnalysisOrchestrator:
    """Runs pricing and (optionally) quota evaluation for a deployment topology."""

    def __init__(
        self,
        options: Optional[CostAnalysisOptions] = None,
        pricing_client: Optional[AzurePricingClient] = None,
        quota_client: Optional[AzureQuotaClient] = None,
        cache: Optional[PriceCacheStore] = None
    ):
        """
        Initialize the orchestrator.

        Args:
            options: Analysis options (defaults apply if None)
            pricing_client: Pricing client (creates one bound to ``cache`` if None)
            quota_client: Quota client (created on demand when a subscription is given)
            cache: Price cache handle; saved once at the end of each run
                (defaults to the pricing client's own store)
        """
        self.options = options or CostAnalysisOptions()
        self.options.validate()
        if pricing_client is None:
            pricing_client = AzurePricingClient(region=self.options.pricing_region, price_cache=cache)
        self.pricing_client = pricing_client
        self.quota_client = quota_client
        self.cache = cache if cache is not None else getattr(pricing_client, "price_cache", None)

    async def run(self, holder: Any) -> CostReport:
        """
        Analyze costs for an external topology holder.

        Args:
            holder: Object carrying a resolved topology (see to_deployment_context)

        Returns:
            CostReport

        Raises:
            DeploymentConfigurationError: If the topology is missing
            CostAnalysisError: If there are no regions, or every resource failed to price
        """
        context = to_deployment_context(holder)
        if not context.regions:
            raise CostAnalysisError("At least one region is required for cost analysis")

        pricing_region = self.options.pricing_region or context.pricing_region
        plans = plan_resources(context, self.options.include_shared_resources)
        logger.info(
            "Analyzing costs for %d resource(s) across %d region(s), pricing region %s",
            len(plans),
            len(context.regions),
            pricing_region
        )

        try:
            prices, (shortages, quota_summary, quota_evaluated) = await asyncio.gather(
                self._price_resources(plans, pricing_region),
                self._check_quota(context),
            )

            line_items, errors = self._build_line_items(plans, prices, context.currency)
            if plans and not any(item.priced for item in line_items) and not quota_evaluated:
                raise CostAnalysisError(
                    f"Pricing failed for every resource ({len(errors)} failure(s)); nothing to report"
                )

            comparison = None
            if self.options.compare_strategies:
                comparison = await self._compare_strategies(context, pricing_region, line_items)
        finally:
            if self.cache is not None:
                self.cache.save()

        hourly = sum(item.total_cost for item in line_items)
        report = CostReport(
            currency=context.currency,
            pricing_region=pricing_region,
            deployment_strategy=deployment_strategy_name(context),
            total_hourly_cost=hourly,
            total_daily_cost=hourly * config.HOURS_PER_DAY,
            total_monthly_cost=hourly * config.HOURS_PER_MONTH,
            burn_rates=calculate_burn_rates(hourly, self.options.periods, context.currency),
            line_items=line_items,
            errors=errors,
            summary=self._summary(line_items, errors, hourly),
            analysis_date=datetime.now(timezone.utc),
            quota_shortages=shortages,
            quota_summary=quota_summary,
            comparison=comparison,
        )
        logger.info("Cost analysis finished: %s", report.summary)
        return report

    async def _compare_strategies(
        self,
        context: DeploymentContext,
        pricing_region: str,
        current_items: Sequence[CostLineItem]
    ) -> StrategyComparison:
        """Price each configured alternative strategy next to the current layout."""
        strategies = [strategy_cost(CURRENT_STRATEGY, deployment_strategy_name(context), current_items)]

        for name in self.options.comparison_strategies:
            alternative = alternative_context(context, name)
            plans = plan_resources(alternative, self.options.include_shared_resources)
            prices = await self._price_resources(plans, pricing_region)
            line_items, _ = self._build_line_items(plans, prices, alternative.currency)
            strategies.append(strategy_cost(name, deployment_strategy_name(alternative), line_items))
            logger.debug("Strategy %s: $%.4f/hour", name, strategies[-1].hourly_cost)

        return StrategyComparison(strategies=strategies, recommendations=recommend_strategies(strategies))

    async def _price_resources(
        self,
        plans: Sequence[ResourcePlan],
        pricing_region: str
    ) -> Dict[Tuple[str, str], Tuple[Optional[PricingRecord], Optional[str]]]:
        """Price each distinct (resource_type, sku) once, bounded by max_concurrency."""
        semaphore = asyncio.Semaphore(self.options.max_concurrency)
        keys = list(dict.fromkeys(plan.pricing_key for plan in plans))

        async def lookup(key: Tuple[str, str]) -> Tuple[Optional[PricingRecord], Optional[str]]:
            resource_type, sku = key
            async with semaphore:
                try:
                    record = await self.pricing_client.lookup(resource_type, sku, pricing_region)
                except Exception as error:
                    logger.warning(f"Pricing lookup failed for {resource_type}/{sku}: {error}")
                    return None, str(error) or type(error).__name__
            if record is None:
                return None, f"No price found for {resource_type}/{sku} in {pricing_region}"
            return record, None

        results = await asyncio.gather(*(lookup(key) for key in keys))
        return dict(zip(keys, results))

    def _build_line_items(
        self,
        plans: Sequence[ResourcePlan],
        prices: Mapping[Tuple[str, str], Tuple[Optional[PricingRecord], Optional[str]]],
        currency: str
    ) -> Tuple[List[CostLineItem], List[PricingFailure]]:
        line_items: List[CostLineItem] = []
        errors: List[PricingFailure] = []

        for plan in plans:
            record, reason = prices[plan.pricing_key]
            if record is not None:
                unit_cost, priced, source = record.price_per_hour, True, record.source
            elif self.options.use_estimates:
                unit_cost, priced, source = estimate_hourly_cost(plan.resource_type, plan.sku), True, "estimated"
                reason = f"{reason}; using baseline estimate"
            else:
                unit_cost, priced, source = 0.0, False, "unknown"

            if reason is not None:
                errors.append(PricingFailure(
                    role=plan.role,
                    resource_type=plan.resource_type,
                    region=plan.region,
                    sku=plan.sku,
                    reason=reason,
                ))

            discount = self.options.discount_factors.get(plan.resource_type)
            if discount is not None:
                unit_cost *= discount

            line_items.append(CostLineItem(
                role=plan.role,
                resource_type=plan.resource_type,
                resource_name=plan.resource_name,
                region=plan.region,
                sku=plan.sku,
                quantity=plan.quantity,
                unit_cost=unit_cost,
                total_cost=unit_cost * plan.quantity,
                currency=currency,
                priced=priced,
                source=source,
            ))

        return line_items, errors

    async def _check_quota(self, context: DeploymentContext) -> Tuple[List[QuotaShortage], Optional[str], bool]:
        """
        Evaluate quota when a subscription is configured.

        Returns:
            (shortages, quota summary or None, whether quota data was evaluated)
        """
        if not self.options.subscription_id:
            return [], None, False

        if self.quota_client is None:
            self.quota_client = AzureQuotaClient()

        try:
            results = await self.quota_client.fetch_quota_for_regions(
                self.options.subscription_id,
                list(context.regions),
                credential=self.options.credential,
                timeout_ms=self.options.quota_timeout_ms
            )
        except Exception as error:
            logger.warning(f"Quota evaluation unavailable: {error}")
            return [], "Quota data unavailable; shortages not evaluated.", False

        if not any(result.has_data for result in results):
            logger.warning("No quota data returned for any region; shortages not evaluated")
            return [], "Quota data unavailable; shortages not evaluated.", False

        unavailable = {
            (result.region, namespace)
            for result in results
            for namespace in result.unavailable_namespaces
        }
        usages = [usage for result in results for usage in result.usages]
        evaluation = evaluate_quota(context, usages, unavailable=unavailable)
        return evaluation.shortages, evaluation.summary, True

    @staticmethod
    def _summary(line_items: Sequence[CostLineItem], errors: Sequence[PricingFailure], hourly: float) -> str:
        priced = sum(1 for item in line_items if item.priced)
        text = (
            f"{priced}/{len(line_items)} resource(s) priced: "
            f"${hourly:.4f}/hour, ${hourly * config.HOURS_PER_MONTH:.2f}/month"
        )
        if errors:
            text += f"; {len(errors)} pricing issue(s)"
        return text


async def run_cost_analysis(
    holder: Any,
    options: Optional[CostAnalysisOptions] = None,
    pricing_client: Optional[AzurePricingClient] = None,
    quota_client: Optional[AzureQuotaClient] = None,
    cache: Optional[PriceCacheStore] = None
) -> CostReport:
    """
    High-level entry point: build the context, price it and attach quota results.

    Args:
        holder: Object carrying a resolved topology
        options: Analysis options
        pricing_client: Pricing client override
        quota_client: Quota client override
        cache: Price cache handle

    Returns:
        CostReport
    """
    orchestrator = CostAnalysisOrchestrator(options, pricing_client, quota_client, cache)
    return await orchestrator.run(holder)
