"""Error hierarchy for the mechanism network engines."""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Optional, Sequence


class MechanismNetworkError(Exception):
    """Base exception for mechanism network failures."""

    def __init__(self, message: str, *, context: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(message)
        self.context = dict(context) if context else {}

    def log_message(self) -> str:
        if not self.context:
            return str(self)
        return f"{self}: {self.context}"


class GraphIntegrityError(MechanismNetworkError):
    """
    The graph references ids that do not exist or reuses ids.

    ``violations`` holds every finding, not only the first, so curators can fix
    the source data in one pass.
    """

    def __init__(self, violations: Sequence[Any]) -> None:
        self.violations = list(violations)
        listing = "; ".join(str(v) for v in self.violations[:10])
        more = len(self.violations) - 10
        if more > 0:
            listing += f"; ... and {more} more"
        super().__init__(
            f"Graph integrity check failed with {len(self.violations)} violation(s): {listing}",
            context={"violation_count": len(self.violations)},
        )


class GraphContractError(MechanismNetworkError):
    """A query referenced something the graph does not contain or is malformed."""


class UnknownNodeError(GraphContractError):
    def __init__(self, node_ids: Iterable[str]) -> None:
        self.node_ids = sorted(set(node_ids))
        super().__init__(
            f"Unknown node id(s): {', '.join(self.node_ids)}",
            context={"node_ids": self.node_ids},
        )


class UnknownRoleError(GraphContractError):
    def __init__(self, roles: Iterable[str]) -> None:
        self.roles = sorted(set(roles))
        super().__init__(
            f"Role(s) not held by any node: {', '.join(self.roles)}",
            context={"roles": self.roles},
        )


class InvalidPerturbationError(GraphContractError):
    """Perturbation sign or magnitude outside its allowed range."""


class PropagationLimitError(MechanismNetworkError):
    """The propagation exceeded its defensive edge-relaxation cap."""


__all__ = [
    "MechanismNetworkError",
    "GraphIntegrityError",
    "GraphContractError",
    "UnknownNodeError",
    "UnknownRoleError",
    "InvalidPerturbationError",
    "PropagationLimitError",
]
