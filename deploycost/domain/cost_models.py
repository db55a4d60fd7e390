"""
Domain models for cost analysis.
Defines normalized price quotes, per-resource cost lines and the final report.
"""
from typing import List, Dict, Any, Optional
from dataclasses import dataclass, field
from datetime import datetime

from deploycost.domain.quota_models import QuotaShortage


@dataclass(frozen=True)
class PricingRecord:
    """One normalized price quote from the retail pricing API."""
    service: str
    sku: str
    region: str
    price_per_hour: float
    currency: str
    unit_of_measure: str
    meter_name: str
    source: str = "live"  # "live" | "cached"
    product_name: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "service": self.service,
            "sku": self.sku,
            "region": self.region,
            "price_per_hour": self.price_per_hour,
            "currency": self.currency,
            "unit_of_measure": self.unit_of_measure,
            "meter_name": self.meter_name,
            "product_name": self.product_name,
            "source": self.source,
        }


@dataclass
class CostLineItem:
    """Hourly cost of one resource (a role's instances, or shared infrastructure) in one region."""
    role: str  # placement role, or "shared" for per-region infrastructure
    resource_type: str  # e.g., "aks-node-pool", "virtual-machine", "storage-account"
    resource_name: str
    region: str
    sku: str
    quantity: int
    unit_cost: float  # per hour, after discount
    total_cost: float  # unit_cost * quantity
    currency: str
    priced: bool
    source: str  # "live" | "cached" | "estimated" | "unknown"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "role": self.role,
            "resource_type": self.resource_type,
            "resource_name": self.resource_name,
            "region": self.region,
            "sku": self.sku,
            "quantity": self.quantity,
            "unit_cost": round(self.unit_cost, 6),
            "total_cost": round(self.total_cost, 6),
            "currency": self.currency,
            "priced": self.priced,
            "source": self.source,
        }


@dataclass
class PricingFailure:
    """A resource whose price could not be resolved."""
    role: str
    resource_type: str
    region: str
    sku: str
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "role": self.role,
            "resource_type": self.resource_type,
            "region": self.region,
            "sku": self.sku,
            "reason": self.reason,
        }


@dataclass
class PeriodCost:
    """Burn rate for one reporting period."""
    period: str
    cost: float
    currency: str

    def to_dict(self) -> Dict[str, Any]:
        return {"period": self.period, "cost": round(self.cost, 6), "currency": self.currency}


@dataclass
class CostReport:
    """Result of one cost analysis run."""
    currency: str
    pricing_region: str
    deployment_strategy: str
    total_hourly_cost: float
    total_daily_cost: float
    total_monthly_cost: float
    burn_rates: List[PeriodCost]
    line_items: List[CostLineItem]
    errors: List[PricingFailure]
    summary: str
    analysis_date: datetime
    quota_shortages: List[QuotaShortage] = field(default_factory=list)
    quota_summary: Optional[str] = None
    comparison: Optional["StrategyComparison"] = None

    def period_cost(self, period: str) -> Optional[float]:
        """
        Get the burn rate for a requested period.

        Args:
            period: Period name (e.g., "day")

        Returns:
            Cost for the period, or None if it was not requested
        """
        for rate in self.burn_rates:
            if rate.period == period:
                return rate.cost
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        sorted_items = sorted(
            self.line_items,
            key=lambda x: x.total_cost,
            reverse=True
        )

        return {
            "currency": self.currency,
            "pricing_region": self.pricing_region,
            "deployment_strategy": self.deployment_strategy,
            "analysis_date": self.analysis_date.isoformat(),
            "total_hourly_cost": round(self.total_hourly_cost, 6),
            "total_daily_cost": round(self.total_daily_cost, 4),
            "total_monthly_cost": round(self.total_monthly_cost, 2),
            "burn_rates": [rate.to_dict() for rate in self.burn_rates],
            "line_items": [item.to_dict() for item in sorted_items],
            "errors": [error.to_dict() for error in self.errors],
            "quota_shortages": [shortage.to_dict() for shortage in self.quota_shortages],
            "quota_summary": self.quota_summary,
            "comparison": self.comparison.to_dict() if self.comparison else None,
            "summary": self.summary,
        }


@dataclass
class StrategyCost:
    """Cost of the deployment under one deployment strategy."""
    name: str  # "current" or a strategy key such as "single-region-vm"
    description: str  # e.g., "Single Region VM"
    hourly_cost: float
    monthly_cost: float
    annual_cost: float
    resource_count: int
    unpriced_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "name": self.name,
            "description": self.description,
            "hourly_cost": round(self.hourly_cost, 6),
            "monthly_cost": round(self.monthly_cost, 2),
            "annual_cost": round(self.annual_cost, 2),
            "resource_count": self.resource_count,
            "unpriced_count": self.unpriced_count,
        }


@dataclass
class StrategyRecommendation:
    """A suggested alternative deployment strategy."""
    strategy: str
    reason: str
    savings: float  # per month; negative when the strategy costs more
    tradeoffs: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy,
            "reason": self.reason,
            "savings": round(self.savings, 2),
            "tradeoffs": list(self.tradeoffs),
        }


@dataclass
class StrategyComparison:
    """Costs of alternative deployment strategies next to the current one."""
    strategies: List[StrategyCost]  # "current" first
    recommendations: List[StrategyRecommendation]

    def strategy(self, name: str) -> Optional[StrategyCost]:
        for entry in self.strategies:
            if entry.name == name:
                return entry
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "strategies": [entry.to_dict() for entry in self.strategies],
            "recommendations": [recommendation.to_dict() for recommendation in self.recommendations],
        }
