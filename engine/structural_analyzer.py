"""
Structural Analyzer
===================
Pure functions over ``(nodes, edges)`` restricted to an evidence-tier filter:
connected components of the undirected projection, hub detection and
cross-module bridges.  Integrity validation lives in
``engine.integrity_validator`` and is re-exported here.

Every list is returned in a deterministic order so repeated runs and tests see
identical output.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from models.mechanism_graph import ConfidenceTier, Edge, Node, iter_tier_filtered
from .integrity_validator import loop_polarity, validate_integrity  # noqa: F401
from .traversal import undirected_components

UNKNOWN_MODULE = "UNKNOWN"


@dataclass(frozen=True)
class Component:
    node_ids: Tuple[str, ...]
    module_breakdown: Dict[str, int]

    @property
    def size(self) -> int:
        return len(self.node_ids)

    def to_dict(self) -> Dict[str, Any]:
        return {"size": self.size, "node_ids": list(self.node_ids), "module_breakdown": dict(self.module_breakdown)}


@dataclass(frozen=True)
class Hub:
    node_id: str
    degree: int
    module_id: str
    neighbor_ids: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_id": self.node_id,
            "degree": self.degree,
            "module_id": self.module_id,
            "neighbor_ids": list(self.neighbor_ids),
        }


@dataclass(frozen=True)
class BridgeGroup:
    module_pair: Tuple[str, str]
    edge_ids: Tuple[str, ...]

    @property
    def count(self) -> int:
        return len(self.edge_ids)

    def to_dict(self) -> Dict[str, Any]:
        return {"module_pair": list(self.module_pair), "count": self.count, "edge_ids": list(self.edge_ids)}


def undirected_adjacency(edges: Sequence[Edge]) -> Dict[str, Set[str]]:
    adjacency: Dict[str, Set[str]] = {}
    for edge in edges:
        adjacency.setdefault(edge.source, set())
        adjacency.setdefault(edge.target, set())
        if edge.source != edge.target:
            adjacency[edge.source].add(edge.target)
            adjacency[edge.target].add(edge.source)
    return adjacency


def _module_lookup(nodes: Sequence[Node]) -> Dict[str, str]:
    return {n.id: n.module_id for n in nodes}


def find_components(
    nodes: Sequence[Node],
    edges: Sequence[Edge],
    min_confidence_tier: Optional[ConfidenceTier] = None,
    include_isolated: bool = False,
) -> List[Component]:
    """
    Connected components of the undirected projection of qualifying edges.

    Components cover exactly the endpoints of qualifying edges.  With
    ``include_isolated`` every node without a qualifying edge is added as a
    singleton.  Sorted by descending size, then by smallest node id.
    """
    adjacency = undirected_adjacency(list(iter_tier_filtered(edges, min_confidence_tier)))
    if include_isolated:
        for node in nodes:
            adjacency.setdefault(node.id, set())

    modules = _module_lookup(nodes)
    components = [
        Component(
            node_ids=tuple(ids),
            module_breakdown=dict(sorted(Counter(modules.get(n, UNKNOWN_MODULE) for n in ids).items())),
        )
        for ids in undirected_components(adjacency)
    ]
    components.sort(key=lambda c: (-c.size, c.node_ids[0]))
    return components


def find_hubs(
    nodes: Sequence[Node],
    edges: Sequence[Edge],
    threshold: int,
    min_confidence_tier: Optional[ConfidenceTier] = None,
) -> List[Hub]:
    """Nodes whose count of distinct undirected neighbours is at least *threshold*."""
    if threshold < 1:
        raise ValueError(f"Hub threshold must be >= 1, got {threshold}")
    adjacency = undirected_adjacency(list(iter_tier_filtered(edges, min_confidence_tier)))
    modules = _module_lookup(nodes)
    hubs = [
        Hub(
            node_id=node_id,
            degree=len(neighbors),
            module_id=modules.get(node_id, UNKNOWN_MODULE),
            neighbor_ids=tuple(sorted(neighbors)),
        )
        for node_id, neighbors in adjacency.items()
        if len(neighbors) >= threshold
    ]
    hubs.sort(key=lambda h: (-h.degree, h.node_id))
    return hubs


def find_bridges(
    nodes: Sequence[Node],
    edges: Sequence[Edge],
    min_confidence_tier: Optional[ConfidenceTier] = None,
) -> List[BridgeGroup]:
    """
    Qualifying edges joining two different known modules, grouped by
    unordered module pair; largest groups first.
    """
    modules = _module_lookup(nodes)
    groups: Dict[Tuple[str, str], List[str]] = {}
    for edge in iter_tier_filtered(edges, min_confidence_tier):
        source_module = modules.get(edge.source)
        target_module = modules.get(edge.target)
        if source_module is None or target_module is None or source_module == target_module:
            continue
        pair = tuple(sorted((source_module, target_module)))
        groups.setdefault(pair, []).append(edge.id)

    bridges = [BridgeGroup(module_pair=pair, edge_ids=tuple(ids)) for pair, ids in groups.items()]
    bridges.sort(key=lambda b: (-b.count, b.module_pair))
    return bridges


def modules_without_edges(
    module_ids: Sequence[str],
    edges: Sequence[Edge],
    min_confidence_tier: Optional[ConfidenceTier] = None,
) -> List[str]:
    """Modules that own no qualifying edge (e.g. no L1-L3 evidence at all)."""
    covered = {e.module_id for e in iter_tier_filtered(edges, min_confidence_tier)}
    return sorted(m for m in module_ids if m not in covered)
