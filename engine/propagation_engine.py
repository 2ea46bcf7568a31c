"""
Propagation Engine
==================
Simulates how a perturbation at one or more nodes (a drug activating or
inhibiting its targets) spreads through the causal graph.

The sweep is level-synchronous: at every depth each frontier node is expanded
once, passing ``effect * edge_sign * decay_factor`` to its successors.
Contributions from all distinct paths are summed unclamped; only the reported
total and the value a node passes on are clamped to ``[-1, 1]``. Once a node
has a signed arrival, unsigned arrivals no longer count towards its paths.
Non-propagable relations (association, regulates, ...) mark their target as
reached with an unknown direction of effect and stop there.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from models.mechanism_graph import ConfidenceTier, Edge
from .errors import GraphContractError, InvalidPerturbationError
from .graph_index import GraphIndex
from .traversal import DEFAULT_RELAXATION_CAP, sweep_levels, tier_filter

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 5


def clamp(value: float, low: float = -1.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


@dataclass(frozen=True)
class Perturbation:
    node_id: str
    sign: int = 1
    magnitude: float = 1.0

    def validate(self) -> None:
        if self.sign not in (1, -1):
            raise InvalidPerturbationError(
                f"Perturbation sign must be +1 or -1, got {self.sign!r}",
                context={"node_id": self.node_id},
            )
        if not (0.0 < self.magnitude <= 1.0):
            raise InvalidPerturbationError(
                f"Perturbation magnitude must be in (0, 1], got {self.magnitude!r}",
                context={"node_id": self.node_id},
            )

    @classmethod
    def from_dict(cls, record: Mapping[str, Any]) -> "Perturbation":
        return cls(
            node_id=record.get("nodeId", record.get("node_id")),
            sign=int(record.get("sign", 1)),
            magnitude=float(record.get("magnitude", 1.0)),
        )


_DEFAULT_TIER_WEIGHTS: Dict[ConfidenceTier, float] = {
    ConfidenceTier.L1: 1.0,
    ConfidenceTier.L2: 0.9,
    ConfidenceTier.L3: 0.8,
    ConfidenceTier.L4: 0.65,
    ConfidenceTier.L5: 0.5,
    ConfidenceTier.L6: 0.35,
    ConfidenceTier.L7: 0.2,
}


@dataclass(frozen=True)
class DecayModel:
    """
    Attenuation applied per hop.

    The factor of an edge is ``tier_weights[tier] * hop_decay``; compounded
    along a path this decays geometrically with hop count, and weaker evidence
    tiers pass on less of the effect.  Both knobs are meant to be calibrated.
    """

    tier_weights: Mapping[ConfidenceTier, float] = field(default_factory=lambda: dict(_DEFAULT_TIER_WEIGHTS))
    hop_decay: float = 0.85

    def __post_init__(self):
        if not (0.0 < self.hop_decay <= 1.0):
            raise ValueError(f"hop_decay must be in (0, 1], got {self.hop_decay}")
        for tier in ConfidenceTier:
            weight = self.tier_weights.get(tier)
            if weight is None or not (0.0 <= weight <= 1.0):
                raise ValueError(f"tier weight for {tier.value} must be in [0, 1], got {weight}")

    def tier_weight(self, edge: Edge) -> float:
        return self.tier_weights[edge.causal_confidence]

    def factor(self, edge: Edge) -> float:
        return self.tier_weight(edge) * self.hop_decay


@dataclass(frozen=True)
class NodeEffect:
    signed_effect: float
    hop_distance: int
    path_confidence_avg: float
    effect_known: bool = True
    path_count: int = 1
    # depth of the first arrival over signed edges only; None when effect is unknown
    signed_hop_distance: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signedEffect": self.signed_effect,
            "hopDistance": self.hop_distance,
            "signedHopDistance": self.signed_hop_distance,
            "pathConfidenceAvg": self.path_confidence_avg,
            "effectKnown": self.effect_known,
            "pathCount": self.path_count,
        }


@dataclass(frozen=True)
class PropagationResult:
    sources: Tuple[Perturbation, ...]
    max_depth: int
    effects: Dict[str, NodeEffect]
    min_confidence_tier: Optional[ConfidenceTier] = None

    def __contains__(self, node_id: str) -> bool:
        return node_id in self.effects

    def __len__(self) -> int:
        return len(self.effects)

    def get(self, node_id: str) -> Optional[NodeEffect]:
        return self.effects.get(node_id)

    @property
    def source_ids(self) -> Tuple[str, ...]:
        return tuple(dict.fromkeys(p.node_id for p in self.sources))

    def reached_ids(self) -> List[str]:
        return sorted(self.effects)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sources": [
                {"nodeId": p.node_id, "sign": p.sign, "magnitude": p.magnitude} for p in self.sources
            ],
            "maxDepth": self.max_depth,
            "minConfidenceTier": self.min_confidence_tier.value if self.min_confidence_tier else None,
            "effects": {node_id: self.effects[node_id].to_dict() for node_id in sorted(self.effects)},
        }


@dataclass(frozen=True)
class _Arrival:
    effect: float
    confidence_sum: float
    paths: int
    signed: bool


def _merge(a: _Arrival, b: _Arrival) -> _Arrival:
    if a.signed != b.signed:
        return a if a.signed else b
    return _Arrival(
        effect=a.effect + b.effect,
        confidence_sum=a.confidence_sum + b.confidence_sum,
        paths=a.paths + b.paths,
        signed=a.signed,
    )


def propagate(
    index: GraphIndex,
    perturbations: Sequence[Perturbation],
    max_depth: int = DEFAULT_MAX_DEPTH,
    min_confidence_tier: Optional[ConfidenceTier] = None,
    decay: Optional[DecayModel] = None,
    revisit_horizon: Optional[int] = None,
    relaxation_cap: int = DEFAULT_RELAXATION_CAP,
) -> PropagationResult:
    """
    Signed, decayed effect of *perturbations* on every reachable node.

    Perturbation sources appear in the result only when a cycle carries an
    effect back to them; their own injected magnitude is not reported.
    """
    if not perturbations:
        raise InvalidPerturbationError("At least one perturbation is required")
    if max_depth < 0:
        raise InvalidPerturbationError(f"max_depth must be >= 0, got {max_depth}")
    for p in perturbations:
        p.validate()
    index.require_nodes(p.node_id for p in perturbations)

    decay = decay or DecayModel()
    horizon = max_depth if revisit_horizon is None else revisit_horizon

    frontier: Dict[str, _Arrival] = {}
    for p in perturbations:
        arrival = _Arrival(effect=p.sign * p.magnitude, confidence_sum=1.0, paths=1, signed=True)
        frontier[p.node_id] = _merge(frontier[p.node_id], arrival) if p.node_id in frontier else arrival

    first_seen: Dict[str, int] = {node_id: 0 for node_id in frontier}

    def relax(_node_id: str, state: _Arrival, edge: Edge) -> Optional[_Arrival]:
        if not state.signed:
            return None
        confidence = state.confidence_sum * decay.tier_weight(edge)
        if edge.sign == 0:
            return _Arrival(effect=0.0, confidence_sum=confidence, paths=state.paths, signed=False)
        return _Arrival(
            effect=clamp(state.effect) * edge.sign * decay.factor(edge),
            confidence_sum=confidence,
            paths=state.paths,
            signed=True,
        )

    def expandable(node_id: str, depth: int) -> bool:
        return depth - first_seen.get(node_id, depth) <= horizon

    totals: Dict[str, _Arrival] = {}
    hops: Dict[str, int] = {}
    signed_hops: Dict[str, int] = {}
    for depth, level in sweep_levels(
        index,
        frontier,
        relax=relax,
        merge=_merge,
        max_depth=max_depth,
        edge_filter=tier_filter(min_confidence_tier),
        expandable=expandable,
        relaxation_cap=relaxation_cap,
    ):
        for node_id, arrival in level.items():
            first_seen.setdefault(node_id, depth)
            if arrival.signed:
                signed_hops.setdefault(node_id, depth)
            if node_id in totals:
                totals[node_id] = _merge(totals[node_id], arrival)
            else:
                totals[node_id] = arrival
                hops[node_id] = depth

    effects = {
        node_id: NodeEffect(
            signed_effect=clamp(total.effect) if total.signed else 0.0,
            hop_distance=hops[node_id],
            path_confidence_avg=total.confidence_sum / total.paths,
            effect_known=total.signed,
            path_count=total.paths,
            signed_hop_distance=signed_hops.get(node_id),
        )
        for node_id, total in sorted(totals.items())
    }
    logger.debug(
        "Propagated %d source(s) to %d node(s) within %d hop(s)",
        len(perturbations), len(effects), max_depth,
    )
    return PropagationResult(
        sources=tuple(perturbations),
        max_depth=max_depth,
        effects=effects,
        min_confidence_tier=min_confidence_tier,
    )


@dataclass(frozen=True)
class BatchOutcome:
    intervention_id: str
    result: Optional[PropagationResult] = None
    error: Optional[GraphContractError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def propagate_batch(
    index: GraphIndex,
    interventions: Mapping[str, Sequence[Perturbation]],
    max_depth: int = DEFAULT_MAX_DEPTH,
    min_confidence_tier: Optional[ConfidenceTier] = None,
    decay: Optional[DecayModel] = None,
    max_workers: Optional[int] = None,
) -> Dict[str, BatchOutcome]:
    """
    Run independent interventions concurrently.

    A caller-contract error (unknown source, bad magnitude) fails only the
    intervention that caused it.
    """

    def run_one(intervention_id: str) -> BatchOutcome:
        try:
            result = propagate(
                index,
                interventions[intervention_id],
                max_depth=max_depth,
                min_confidence_tier=min_confidence_tier,
                decay=decay,
            )
        except GraphContractError as exc:
            logger.warning("Intervention %s rejected: %s", intervention_id, exc)
            return BatchOutcome(intervention_id=intervention_id, error=exc)
        return BatchOutcome(intervention_id=intervention_id, result=result)

    ids = list(interventions)
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        outcomes = list(pool.map(run_one, ids))
    return {outcome.intervention_id: outcome for outcome in outcomes}
