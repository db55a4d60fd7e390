"""
API routes for cost analysis, quota evaluation and price lookups.
"""
from typing import Dict, Any, List, Optional
import logging

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from deploycost.domain.deployment_context import DeploymentConfigurationError, ResolvedTopology, TopologyHolder
from deploycost.domain.quota_models import QuotaUsage
from deploycost.pricing.azure_pricing_client import AzurePricingClient, RESOURCE_TYPE_CATEGORIES, get_pricing_for_resource
from deploycost.quota.quota_evaluator import evaluate_quota
from deploycost.services.cost_analysis import CostAnalysisError, CostAnalysisOptions, run_cost_analysis
from deploycost.services.strategy_comparison import DEFAULT_COMPARISON_STRATEGIES


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["cost-analysis"])


class TopologyModel(BaseModel):
    """Resolved topology: regions and per-role placements."""
    regions: List[str] = Field(..., description="Ordered region names (e.g., ['eastus', 'westus2'])")
    placements: Dict[str, Dict[str, Any]] = Field(
        default_factory=dict,
        description="Role name -> placement ({replicas | instanceCount, deploymentType?, regions?})"
    )


class CostAnalysisRequest(BaseModel):
    """Request model for a cost analysis run."""
    topology: Optional[TopologyModel] = Field(None, description="Resolved deployment topology")
    deployment_default: Optional[str] = Field(None, description="aks | aca | vm | vmss")
    size_map: Dict[str, str] = Field(default_factory=dict, description="Role -> VM size")
    scale_map: Dict[str, Dict[str, int]] = Field(default_factory=dict, description="Role -> {min, max}")
    pricing_region: Optional[str] = Field(None, description="Region used for price queries")
    periods: List[str] = Field(default_factory=lambda: ["hour", "day", "month"])
    subscription_id: Optional[str] = Field(None, description="Enables quota evaluation")
    include_shared_resources: bool = False
    use_estimates: bool = False
    discount_factors: Dict[str, float] = Field(default_factory=dict)
    compare_strategies: bool = Field(False, description="Also price alternative deployment strategies")
    comparison_strategies: Optional[List[str]] = Field(None, description="Strategies to compare (default: all)")


class QuotaUsageModel(BaseModel):
    namespace: str
    region: str
    limit: float = 0
    current: float = 0
    unit: str = "Count"


class QuotaEvaluationRequest(BaseModel):
    """Request model for evaluating a plan against known usages."""
    regions: List[str]
    placements: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    usages: List[QuotaUsageModel] = Field(default_factory=list)


@router.get("/health")
async def health() -> Dict[str, str]:
    """Liveness probe."""
    return {"status": "ok"}


@router.post("/cost-analysis")
async def create_cost_analysis(request: CostAnalysisRequest) -> Dict[str, Any]:
    """
    Run a cost analysis for a resolved topology.

    Returns 400 when the topology is missing or nothing could be priced.
    """
    holder = TopologyHolder(
        resolved_topology=(
            ResolvedTopology(regions=request.topology.regions, placements=request.topology.placements)
            if request.topology else None
        ),
        deployment_default=request.deployment_default,
        size_map=request.size_map,
        scale_map=request.scale_map,
        pricing_region=request.pricing_region,
    )

    try:
        options = CostAnalysisOptions(
            pricing_region=request.pricing_region,
            periods=request.periods,
            subscription_id=request.subscription_id,
            include_shared_resources=request.include_shared_resources,
            use_estimates=request.use_estimates,
            discount_factors=request.discount_factors,
            compare_strategies=request.compare_strategies,
            comparison_strategies=request.comparison_strategies or DEFAULT_COMPARISON_STRATEGIES,
        )
        report = await run_cost_analysis(holder, options)
    except (DeploymentConfigurationError, CostAnalysisError) as error:
        logger.warning(f"Cost analysis rejected: {error}")
        raise HTTPException(status_code=400, detail=str(error)) from error

    return report.to_dict()


@router.post("/quota/evaluate")
async def evaluate_quota_plan(request: QuotaEvaluationRequest) -> Dict[str, Any]:
    """Evaluate a plan against posted quota usages."""
    usages = [
        QuotaUsage(
            namespace=usage.namespace,
            limit=usage.limit,
            current=usage.current,
            unit=usage.unit,
            region=usage.region,
        )
        for usage in request.usages
    ]
    evaluation = evaluate_quota(
        {"regions": request.regions, "placements": request.placements},
        usages
    )
    return {
        "shortages": [shortage.to_dict() for shortage in evaluation.shortages],
        "summary": evaluation.summary,
    }


@router.get("/pricing/{resource_type}")
async def get_resource_price(
    resource_type: str,
    sku: str = Query(..., description="SKU name (e.g., Standard_D4s_v5)"),
    region: str = Query("eastus", description="ARM region")
) -> Dict[str, Any]:
    """
    Look up the hourly price of a resource type / SKU.

    Returns 404 when the type is unknown or no price could be resolved.
    """
    if resource_type.lower() not in RESOURCE_TYPE_CATEGORIES:
        raise HTTPException(status_code=404, detail=f"Unknown resource type: {resource_type}")

    record = await get_pricing_for_resource(resource_type, sku, region, AzurePricingClient(region=region))
    if record is None:
        raise HTTPException(status_code=404, detail=f"No price available for {resource_type}/{sku} in {region}")
    return record.to_dict()
