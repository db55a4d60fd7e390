"""
Domain models for quota feasibility checks.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


COMPUTE = "compute"
NETWORK = "network"
STORAGE = "storage"

QUOTA_NAMESPACES = (COMPUTE, NETWORK, STORAGE)


@dataclass(frozen=True)
class QuotaUsage:
    """One usage reading (limit vs current) for a namespace in a region."""
    namespace: str
    limit: float
    current: float
    unit: str
    region: str

    @property
    def available(self) -> float:
        return self.limit - self.current


@dataclass(frozen=True)
class QuotaShortage:
    """A namespace/region pair without enough headroom for the plan."""
    namespace: str
    region: str
    required: float
    deficit: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "namespace": self.namespace,
            "region": self.region,
            "required": self.required,
            "deficit": self.deficit,
        }


@dataclass(frozen=True)
class QuotaEvaluation:
    """Outcome of comparing a plan with quota usages."""
    shortages: List[QuotaShortage]
    summary: str

    @property
    def sufficient(self) -> bool:
        return not self.shortages


class QuotaStatus(Enum):
    """Whether a namespace call returned data."""
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class NamespaceQuota:
    """
    Result of one namespace usages call.

    An UNAVAILABLE result means "unknown", which is not the same thing as an
    AVAILABLE result with no usage records.
    """
    namespace: str
    region: str
    status: QuotaStatus
    usages: List[QuotaUsage] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def is_available(self) -> bool:
        return self.status is QuotaStatus.AVAILABLE


@dataclass
class RegionQuota:
    """All namespace results for one subscription/region pair."""
    region: str
    namespaces: List[NamespaceQuota]
    token_acquired: bool = True

    @property
    def usages(self) -> List[QuotaUsage]:
        return [usage for result in self.namespaces for usage in result.usages]

    @property
    def unavailable_namespaces(self) -> List[str]:
        return [result.namespace for result in self.namespaces if not result.is_available]

    @property
    def has_data(self) -> bool:
        return any(result.is_available for result in self.namespaces)
