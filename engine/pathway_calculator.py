"""
Drug pathway calculator.

Given the nodes a drug acts on, collects what lies upstream (causes) and
downstream (effects) of them within a hop budget, the edges and modules that
pathway spans, and how the drug engages each feedback loop it touches.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from models.mechanism_graph import LoopType, loop_node_ids
from .errors import InvalidPerturbationError
from .graph_index import GraphIndex
from .integrity_validator import effective_loop_type
from .propagation_engine import DEFAULT_MAX_DEPTH, Perturbation
from .traversal import BACKWARD, FORWARD, bfs_distances


class TargetEffect(str, Enum):
    ACTIVATES = "activates"
    INHIBITS = "inhibits"
    MODULATES = "modulates"


class Involvement(str, Enum):
    BREAKS = "breaks"
    WEAKENS = "weakens"
    STRENGTHENS = "strengthens"
    ENTERS = "enters"


@dataclass(frozen=True)
class DrugTarget:
    node_id: str
    effect: TargetEffect = TargetEffect.MODULATES

    def to_perturbation(self, magnitude: float = 1.0) -> Perturbation:
        if self.effect is TargetEffect.ACTIVATES:
            return Perturbation(self.node_id, sign=1, magnitude=magnitude)
        if self.effect is TargetEffect.INHIBITS:
            return Perturbation(self.node_id, sign=-1, magnitude=magnitude)
        raise InvalidPerturbationError(
            "A modulating target has no direction of effect to propagate",
            context={"node_id": self.node_id},
        )

    @classmethod
    def from_dict(cls, record: Mapping[str, Any]) -> "DrugTarget":
        return cls(
            node_id=record.get("nodeId", record.get("node_id")),
            effect=TargetEffect(record.get("effect", TargetEffect.MODULATES.value)),
        )


@dataclass(frozen=True)
class Pathway:
    upstream_ids: Tuple[str, ...]
    target_ids: Tuple[str, ...]
    downstream_ids: Tuple[str, ...]
    edge_ids: Tuple[str, ...]
    affected_modules: Tuple[str, ...]

    @property
    def all_node_ids(self) -> Tuple[str, ...]:
        return tuple(sorted(set(self.upstream_ids) | set(self.target_ids) | set(self.downstream_ids)))


@dataclass(frozen=True)
class LoopInvolvement:
    loop_id: str
    involvement: Involvement
    node_in_loop: str

    def to_dict(self) -> Dict[str, str]:
        return {"loop_id": self.loop_id, "involvement": self.involvement.value, "node_in_loop": self.node_in_loop}


@dataclass(frozen=True)
class DrugPathway:
    drug_id: str
    pathway: Pathway
    loop_involvements: Tuple[LoopInvolvement, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "drug_id": self.drug_id,
            "upstream_nodes": list(self.pathway.upstream_ids),
            "target_nodes": list(self.pathway.target_ids),
            "downstream_nodes": list(self.pathway.downstream_ids),
            "pathway_edges": list(self.pathway.edge_ids),
            "affected_modules": list(self.pathway.affected_modules),
            "relevant_loops": [inv.to_dict() for inv in self.loop_involvements],
        }


def compute_pathway(index: GraphIndex, target_ids: Sequence[str], max_depth: int = DEFAULT_MAX_DEPTH) -> Pathway:
    """Bounded upstream and downstream BFS from *target_ids* over every edge."""
    targets = list(dict.fromkeys(target_ids))
    index.require_nodes(targets)
    target_set = set(targets)

    upstream = set(bfs_distances(index, targets, BACKWARD, max_depth=max_depth)) - target_set
    downstream = set(bfs_distances(index, targets, FORWARD, max_depth=max_depth)) - target_set
    members = upstream | target_set | downstream

    edge_ids = [e.id for e in index.edges if e.source in members and e.target in members]
    modules = {index.node(node_id).module_id for node_id in members}
    return Pathway(
        upstream_ids=tuple(sorted(upstream)),
        target_ids=tuple(targets),
        downstream_ids=tuple(sorted(downstream)),
        edge_ids=tuple(edge_ids),
        affected_modules=tuple(sorted(modules)),
    )


def _involvement(effect: TargetEffect, loop_type: LoopType, direct: bool) -> Involvement:
    if not direct or effect is TargetEffect.MODULATES:
        return Involvement.ENTERS
    if effect is TargetEffect.ACTIVATES:
        return Involvement.STRENGTHENS
    if loop_type is LoopType.REINFORCING:
        return Involvement.BREAKS
    return Involvement.WEAKENS


def analyze_loop_involvement(
    targets: Sequence[DrugTarget],
    pathway: Pathway,
    index: GraphIndex,
) -> List[LoopInvolvement]:
    """
    Classify each loop that shares an edge with the pathway.

    Inhibiting a node of a reinforcing loop breaks it, inhibiting a node of a
    balancing loop weakens it and activating any loop node strengthens it.
    A loop the pathway merely passes through is entered.
    """
    edges_by_id = index.edges_by_id
    pathway_edges = set(pathway.edge_ids)
    effects = {t.node_id: t.effect for t in targets}
    members = set(pathway.all_node_ids)

    involvements = []
    for loop in index.feedback_loops:
        if not pathway_edges.intersection(loop.edge_ids):
            continue
        in_loop = loop_node_ids(loop, edges_by_id)
        direct = [node_id for node_id in in_loop if node_id in effects]
        if direct:
            node_id = direct[0]
            kind = _involvement(effects[node_id], effective_loop_type(loop, edges_by_id), True)
        else:
            node_id = next(n for n in in_loop if n in members)
            kind = Involvement.ENTERS
        involvements.append(LoopInvolvement(loop_id=loop.id, involvement=kind, node_in_loop=node_id))
    return involvements


def calculate_drug_pathway(
    drug_id: str,
    targets: Sequence[DrugTarget],
    index: GraphIndex,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> DrugPathway:
    pathway = compute_pathway(index, [t.node_id for t in targets], max_depth=max_depth)
    return DrugPathway(
        drug_id=drug_id,
        pathway=pathway,
        loop_involvements=tuple(analyze_loop_involvement(targets, pathway, index)),
    )


def pathway_stats(drug_pathway: DrugPathway) -> Dict[str, int]:
    pathway = drug_pathway.pathway
    kinds = Counter(inv.involvement for inv in drug_pathway.loop_involvements)
    return {
        "total_nodes": len(pathway.all_node_ids),
        "upstream_count": len(pathway.upstream_ids),
        "target_count": len(pathway.target_ids),
        "downstream_count": len(pathway.downstream_ids),
        "edge_count": len(pathway.edge_ids),
        "module_count": len(pathway.affected_modules),
        "loop_count": len(drug_pathway.loop_involvements),
        "loops_breaking": kinds[Involvement.BREAKS],
        "loops_weakening": kinds[Involvement.WEAKENS],
        "loops_strengthening": kinds[Involvement.STRENGTHENS],
    }
