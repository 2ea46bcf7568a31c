"""
Algorithm Version Registry
===========================
Maps logical analysis operations to versioned algorithms so that every audit
record names the exact version that produced it.  A change to decay weights,
banding thresholds or traversal semantics gets a new version entry; older
entries stay listed so historical results can be re-derived.

An audited request can only be replayed while the version that produced it
is still the active one; deprecating a version retires its audit records
from replay.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from operator import attrgetter
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class AlgorithmVersionDescriptor:
    """Immutable record describing one algorithm version."""
    version: str
    description: str
    effective_from: datetime = field(default_factory=datetime.utcnow)
    deprecated_at: Optional[datetime] = None

    def is_active(self, at: datetime) -> bool:
        return self.deprecated_at is None and self.effective_from <= at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "description": self.description,
            "effective_from": self.effective_from.isoformat(),
            "deprecated_at": self.deprecated_at.isoformat() if self.deprecated_at else None,
        }


_REGISTRY: Dict[str, List[AlgorithmVersionDescriptor]] = {}


def _versions(operation: str) -> List[AlgorithmVersionDescriptor]:
    versions = _REGISTRY.get(operation)
    if not versions:
        raise KeyError(f"Unknown operation: {operation}")
    return versions


def register_version(
    operation: str,
    version: str,
    description: str,
    effective_from: Optional[datetime] = None,
) -> AlgorithmVersionDescriptor:
    """
    Append a version for *operation*.  A future *effective_from* schedules it;
    until then the previous version stays active.
    """
    if any(v.version == version for v in _REGISTRY.get(operation, ())):
        raise ValueError(f"{operation} already has a version {version}")
    descriptor = AlgorithmVersionDescriptor(
        version=version,
        description=description,
        effective_from=effective_from or datetime.utcnow(),
    )
    _REGISTRY.setdefault(operation, []).append(descriptor)
    return descriptor


def get_current_version(operation: str) -> AlgorithmVersionDescriptor:
    """Latest version of *operation* that is in effect and not deprecated."""
    now = datetime.utcnow()
    active = [v for v in _versions(operation) if v.is_active(now)]
    if not active:
        raise KeyError(f"No active algorithm version for operation {operation!r}")
    return max(active, key=attrgetter("effective_from"))


def find_version(operation: str, version: str) -> AlgorithmVersionDescriptor:
    for descriptor in _versions(operation):
        if descriptor.version == version:
            return descriptor
    raise KeyError(f"{operation} has no version {version}")


def deprecate_version(operation: str, version: str) -> AlgorithmVersionDescriptor:
    """Retire *version*; it stays listed but is never selected or replayed again."""
    versions = _versions(operation)
    for position, descriptor in enumerate(versions):
        if descriptor.version == version and descriptor.deprecated_at is None:
            versions[position] = replace(descriptor, deprecated_at=datetime.utcnow())
            return versions[position]
    raise KeyError(f"{operation} has no active version {version}")


def list_versions(operation: str) -> List[AlgorithmVersionDescriptor]:
    """Every version of *operation*, deprecated ones included, oldest first."""
    return sorted(_versions(operation), key=attrgetter("effective_from"))


def list_operations() -> List[str]:
    return sorted(_REGISTRY)


register_version(
    "import_graph", "1.0.0",
    "Curated graph import with integrity validation before persistence.",
)
register_version(
    "check_integrity", "1.0.0",
    "Dangling edges, duplicate ids and unknown loop edges as violations; "
    "orphan nodes and loop polarity mismatches as warnings.",
)
register_version(
    "propagate", "1.0.0",
    "Level-synchronous signed propagation, per-tier weight times hop decay, "
    "paths summed and the total clamped to [-1, 1].",
)
register_version(
    "compute_pathway", "1.0.0",
    "Bounded upstream/downstream BFS from drug targets with loop involvement.",
)
register_version(
    "find_components", "1.0.0",
    "Connected components of the tier-filtered undirected projection.",
)
register_version(
    "find_hubs", "1.0.0",
    "Distinct undirected neighbour count against a caller threshold.",
)
register_version(
    "find_bridges", "1.0.0",
    "Cross-module edges grouped by unordered module pair.",
)
register_version(
    "find_uncovered_modules", "1.0.0",
    "Modules owning no edge at or above the confidence floor.",
)
register_version(
    "score_risk", "1.0.0",
    "Weighted input/output betweenness, loop membership, edge evidence and boundary proximity.",
)
register_version(
    "predict_trials", "1.0.0",
    "Banded structural failure risks combined with caller weights.",
)
register_version(
    "network_insights", "1.0.0",
    "networkx betweenness/closeness, module bridge nodes, evidence gaps, "
    "loop vulnerabilities and long input-to-outcome cascades.",
)
register_version(
    "replay", "1.0.0",
    "Re-run of an audited request under its recorded, still active algorithm version.",
)
