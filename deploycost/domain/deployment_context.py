"""
Deployment context models.

Maps the topology produced by the network builder (an external collaborator)
into the normalized, immutable context used by cost and quota analysis.
"""
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from deploycost.core.config import config


DEPLOYMENT_TYPES = ("aks", "aca", "vm", "vmss")
DEFAULT_DEPLOYMENT_TYPE = "aks"

# (snake_case attribute, camelCase key used by the network builder)
_HOLDER_FIELDS = {
    "resolved_topology": "resolvedAzure",
    "deployment_default": "azureDeploymentDefault",
    "size_map": "azureSizeMap",
    "scale_map": "azureScaleMap",
    "pricing_region": "azurePricingRegion",
}


class DeploymentConfigurationError(ValueError):
    """Raised when the input cannot be turned into a deployment context."""
    pass


@dataclass
class ResolvedTopology:
    """Regions and per-role placements chosen for a deployment."""
    regions: List[str]
    placements: Dict[str, Dict[str, Any]]


@dataclass
class TopologyHolder:
    """Minimal shape accepted from the network builder."""
    resolved_topology: Optional[ResolvedTopology] = None
    deployment_default: Optional[str] = None
    size_map: Dict[str, str] = field(default_factory=dict)
    scale_map: Dict[str, Dict[str, int]] = field(default_factory=dict)
    pricing_region: Optional[str] = None


@dataclass(frozen=True)
class DeploymentContext:
    """Normalized analysis input, derived once per analysis run."""
    regions: Tuple[str, ...]
    placements: Mapping[str, Mapping[str, Any]]
    deployment_default: str
    size_map: Mapping[str, str]
    scale_map: Mapping[str, Mapping[str, int]]
    pricing_region: str
    currency: str = "USD"


def placement_count(placement: Optional[Mapping[str, Any]]) -> int:
    """
    Instance count of a placement.

    Args:
        placement: Placement mapping (``replicas`` or ``instanceCount``)

    Returns:
        Count, or 0 when the placement is missing or declares neither
    """
    if not placement:
        return 0
    for key in ("replicas", "instanceCount", "instance_count"):
        value = placement.get(key)
        if value is not None:
            return int(value)
    return 0


def _read(holder: Any, name: str) -> Any:
    camel = _HOLDER_FIELDS[name]
    if isinstance(holder, Mapping):
        value = holder.get(name)
        return value if value is not None else holder.get(camel)
    value = getattr(holder, name, None)
    return value if value is not None else getattr(holder, camel, None)


def _topology_parts(topology: Any) -> Tuple[List[str], Dict[str, Any]]:
    if isinstance(topology, Mapping):
        return list(topology.get("regions") or []), dict(topology.get("placements") or {})
    return list(getattr(topology, "regions", None) or []), dict(getattr(topology, "placements", None) or {})


def to_deployment_context(holder: Any) -> DeploymentContext:
    """
    Build a DeploymentContext from an external topology holder.

    Args:
        holder: TopologyHolder, mapping or object carrying a resolved topology

    Returns:
        Immutable DeploymentContext

    Raises:
        DeploymentConfigurationError: If no resolved topology is present
    """
    if holder is None:
        raise DeploymentConfigurationError("Resolved topology required for cost analysis (got no input)")

    topology = _read(holder, "resolved_topology")
    if topology is None:
        raise DeploymentConfigurationError("Resolved topology required for cost analysis")

    regions, placements = _topology_parts(topology)
    deployment_default = (_read(holder, "deployment_default") or DEFAULT_DEPLOYMENT_TYPE).lower()
    if deployment_default not in DEPLOYMENT_TYPES:
        raise DeploymentConfigurationError(
            f"Unsupported deployment type '{deployment_default}' (expected one of {', '.join(DEPLOYMENT_TYPES)})"
        )

    frozen_placements = {
        role: MappingProxyType(dict(placement or {}))
        for role, placement in placements.items()
    }
    scale_map = {
        role: MappingProxyType(dict(bounds or {}))
        for role, bounds in (_read(holder, "scale_map") or {}).items()
    }

    return DeploymentContext(
        regions=tuple(regions),
        placements=MappingProxyType(frozen_placements),
        deployment_default=deployment_default,
        size_map=MappingProxyType(dict(_read(holder, "size_map") or {})),
        scale_map=MappingProxyType(scale_map),
        pricing_region=_read(holder, "pricing_region") or config.DEFAULT_PRICING_REGION,
        currency="USD",
    )
