from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from models.mechanism_graph import Node, NodeRole, loop_node_ids
from .errors import UnknownRoleError
from .graph_index import GraphIndex
from .propagation_engine import PropagationResult

OutcomePredicate = Callable[[Node], bool]


def outcome_predicate(
    index: GraphIndex,
    node_ids: Optional[Iterable[str]] = None,
    roles: Optional[Iterable[Any]] = None,
    boundary_outputs: bool = False,
) -> OutcomePredicate:
    """
    Build a validated "is clinical outcome" predicate.

    Ids must exist in the index and each role must be held by at least one
    node; otherwise the query is rejected rather than silently matching nothing.
    """
    ids = set(node_ids or ())
    index.require_nodes(sorted(ids))

    wanted_roles = set()
    for role in roles or ():
        try:
            wanted_roles.add(NodeRole.parse(role))
        except ValueError:
            raise UnknownRoleError([str(role)]) from None
    held = {r for n in index.nodes for r in n.roles}
    unheld = [r.value for r in wanted_roles if r not in held]
    if unheld:
        raise UnknownRoleError(unheld)

    def predicate(node: Node) -> bool:
        if node.id in ids:
            return True
        if wanted_roles & node.roles:
            return True
        return boundary_outputs and node.is_output_boundary

    return predicate


def default_outcome(node: Node) -> bool:
    return node.is_output_boundary


@dataclass(frozen=True)
class PathwayStatistics:
    reached_count: int
    by_category: Dict[str, int]
    by_role: Dict[str, int]
    increased_count: int
    decreased_count: int
    neutral_count: int
    unknown_effect_count: int
    confidence_weighted_reach: float
    affected_modules: List[str]
    loops_intersected: List[str]
    loops_targetable: List[str]
    nearest_outcome_id: Optional[str] = None
    nearest_outcome_distance: Optional[int] = None
    outcome_ids_reached: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reached_count": self.reached_count,
            "by_category": dict(self.by_category),
            "by_role": dict(self.by_role),
            "increased_count": self.increased_count,
            "decreased_count": self.decreased_count,
            "neutral_count": self.neutral_count,
            "unknown_effect_count": self.unknown_effect_count,
            "confidence_weighted_reach": self.confidence_weighted_reach,
            "affected_modules": list(self.affected_modules),
            "loops_intersected": list(self.loops_intersected),
            "loops_targetable": list(self.loops_targetable),
            "nearest_outcome_id": self.nearest_outcome_id,
            "nearest_outcome_distance": self.nearest_outcome_distance,
            "outcome_ids_reached": list(self.outcome_ids_reached),
        }


def summarize(
    result: PropagationResult,
    index: GraphIndex,
    is_outcome: Optional[OutcomePredicate] = None,
) -> PathwayStatistics:
    """Counts and reach measures for one propagation result.  Pure, deterministic."""
    is_outcome = is_outcome or default_outcome
    reached = result.reached_ids()
    nodes = [index.node(node_id) for node_id in reached]

    by_category = Counter(n.category.value for n in nodes)
    by_role = Counter(r.value for n in nodes for r in n.roles)

    increased = decreased = neutral = unknown = 0
    for node_id in reached:
        effect = result.effects[node_id]
        if not effect.effect_known:
            unknown += 1
        elif effect.signed_effect > 0:
            increased += 1
        elif effect.signed_effect < 0:
            decreased += 1
        else:
            neutral += 1

    reached_set = set(reached)
    sources = set(result.source_ids)
    edges_by_id = index.edges_by_id
    intersected = []
    targetable = []
    for loop in index.feedback_loops:
        if reached_set.intersection(loop_node_ids(loop, edges_by_id)):
            intersected.append(loop.id)
        if sources.intersection(loop.intervention_points):
            targetable.append(loop.id)

    outcomes = [
        (result.effects[n.id].signed_hop_distance, n.id)
        for n in nodes
        if result.effects[n.id].effect_known and is_outcome(n)
    ]
    nearest = min(outcomes) if outcomes else None

    return PathwayStatistics(
        reached_count=len(reached),
        by_category=dict(sorted(by_category.items())),
        by_role=dict(sorted(by_role.items())),
        increased_count=increased,
        decreased_count=decreased,
        neutral_count=neutral,
        unknown_effect_count=unknown,
        confidence_weighted_reach=sum(result.effects[n].path_confidence_avg for n in reached),
        affected_modules=sorted({n.module_id for n in nodes}),
        loops_intersected=sorted(intersected),
        loops_targetable=sorted(targetable),
        nearest_outcome_id=nearest[1] if nearest else None,
        nearest_outcome_distance=nearest[0] if nearest else None,
        outcome_ids_reached=sorted(node_id for _, node_id in outcomes),
    )
