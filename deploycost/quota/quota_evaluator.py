"""
Quota feasibility evaluation.

Pure function comparing the instance counts a plan needs with the headroom
(limit - current) reported per region and namespace.
"""
from dataclasses import dataclass
from typing import Any, Collection, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from deploycost.domain.deployment_context import placement_count
from deploycost.domain.quota_models import (
    COMPUTE,
    NETWORK,
    STORAGE,
    QuotaEvaluation,
    QuotaShortage,
    QuotaUsage,
)


SUFFICIENT_SUMMARY = "All required quotas appear sufficient."


@dataclass(frozen=True)
class QuotaRule:
    """
    How much of a namespace a plan needs in each region.

    Either ``role`` (the placement whose instance count is required) or a fixed
    ``baseline`` applies. With ``requires_data`` a shortage is only reported when
    the region returned at least one record for the namespace.
    """
    namespace: str
    role: Optional[str] = None
    baseline: int = 0
    requires_data: bool = False

    def required(self, placements: Mapping[str, Any]) -> int:
        if self.role is not None:
            return placement_count(placements.get(self.role))
        return self.baseline


DEFAULT_QUOTA_RULES: Tuple[QuotaRule, ...] = (
    QuotaRule(COMPUTE, role="validators"),
    QuotaRule(NETWORK, role="rpcNodes"),
    # One storage account per region for logs/artifacts; not every region exposes storage usages
    QuotaRule(STORAGE, baseline=1, requires_data=True),
)


def _plan_parts(plan: Any) -> Tuple[Sequence[str], Mapping[str, Any]]:
    if isinstance(plan, Mapping):
        return plan.get("regions") or (), plan.get("placements") or {}
    return getattr(plan, "regions", None) or (), getattr(plan, "placements", None) or {}


def summarize_shortages(shortages: Sequence[QuotaShortage]) -> str:
    if not shortages:
        return SUFFICIENT_SUMMARY
    return f"{len(shortages)} quota shortage(s) detected."


def evaluate_quota(
    plan: Any,
    quota_usages: Iterable[QuotaUsage],
    rules: Sequence[QuotaRule] = DEFAULT_QUOTA_RULES,
    unavailable: Optional[Collection[Tuple[str, str]]] = None
) -> QuotaEvaluation:
    """
    Compare a plan's requirements with available quota.

    Args:
        plan: DeploymentContext, or mapping/object with ``regions`` and ``placements``
        quota_usages: Usage records for any regions/namespaces
        rules: Namespace requirement table
        unavailable: (region, namespace) pairs whose data is unknown; they are skipped

    Returns:
        QuotaEvaluation with shortages in region order, then rule order
    """
    regions, placements = _plan_parts(plan)
    skipped = set(unavailable or ())

    # (region, namespace) -> (available headroom, record count)
    headroom: Dict[Tuple[str, str], Tuple[float, int]] = {}
    for usage in quota_usages:
        key = (usage.region, usage.namespace)
        available, count = headroom.get(key, (0.0, 0))
        headroom[key] = (available + (usage.limit - usage.current), count + 1)

    shortages: List[QuotaShortage] = []
    for region in regions:
        for rule in rules:
            if (region, rule.namespace) in skipped:
                continue
            required = rule.required(placements)
            available, count = headroom.get((region, rule.namespace), (0, 0))
            if rule.requires_data and count == 0:
                continue
            # nothing to place, nothing to be short of
            if required > 0 and available < required:
                shortages.append(QuotaShortage(
                    namespace=rule.namespace,
                    region=region,
                    required=required,
                    deficit=required - available,
                ))

    return QuotaEvaluation(shortages=shortages, summary=summarize_shortages(shortages))
