"""
Network Insights
================
Whole-graph reading of the mechanism network: where the hubs, chokepoints
and module bridges are, which well-placed nodes nobody targets yet, where the
evidence is thin, and which feedback loops hinge on a weak edge.

Centrality measures come from networkx.  Closeness is computed on the
reversed graph so that it measures how quickly a node reaches everything
else, which is the question asked of an intervention point.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import networkx as nx

from models.mechanism_graph import ConfidenceTier, LoopType, NodeCategory, NodeRole, loop_node_ids
from .graph_index import GraphIndex
from .integrity_validator import effective_loop_type

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InsightOptions:
    hub_degree: int = 5
    chokepoint_betweenness: float = 0.01
    neglected_percentile: float = 0.75
    gap_min_edges: int = 3
    gap_max_high_confidence_ratio: float = 0.3
    high_confidence_tier: ConfidenceTier = ConfidenceTier.L3
    surprise_min_hops: int = 2
    top_hubs: int = 15
    top_chokepoints: int = 15
    top_bridges: int = 15
    top_neglected: int = 10
    top_gaps: int = 10
    top_surprises: int = 10


@dataclass
class NodeCentrality:
    node_id: str
    module_id: str
    category: str
    in_degree: int
    out_degree: int
    betweenness: float
    closeness: float
    is_hub: bool = False
    is_bridge: bool = False
    is_chokepoint: bool = False

    @property
    def total_degree(self) -> int:
        return self.in_degree + self.out_degree


@dataclass(frozen=True)
class ModuleBridgeNode:
    node_id: str
    connects_modules: Tuple[str, ...]
    cross_module_edges: int

    @property
    def bridge_score(self) -> int:
        return (len(self.connects_modules) - 1) * self.cross_module_edges


@dataclass(frozen=True)
class NeglectedTarget:
    node_id: str
    module_id: str
    betweenness: float
    total_degree: int
    reason: str


@dataclass(frozen=True)
class EvidenceGap:
    node_id: str
    module_id: str
    total_edges: int
    high_confidence_edges: int
    low_confidence_edges: int

    @property
    def confidence_ratio(self) -> float:
        return self.high_confidence_edges / self.total_edges

    @property
    def gap_score(self) -> float:
        return self.total_edges * (1 - self.confidence_ratio)


@dataclass(frozen=True)
class LoopVulnerability:
    loop_id: str
    loop_type: LoopType
    node_ids: Tuple[str, ...]
    weakest_edge_id: str
    weakest_confidence: ConfidenceTier


@dataclass(frozen=True)
class PathInfo:
    source: str
    target: str
    path: Tuple[str, ...]
    edge_ids: Tuple[str, ...]
    lowest_confidence: Optional[ConfidenceTier]
    modules: Tuple[str, ...]

    @property
    def length(self) -> int:
        return len(self.path) - 1


@dataclass
class NetworkInsights:
    summary: Dict[str, float]
    centralities: Dict[str, NodeCentrality] = field(default_factory=dict)
    hubs: List[NodeCentrality] = field(default_factory=list)
    chokepoints: List[NodeCentrality] = field(default_factory=list)
    bridge_nodes: List[ModuleBridgeNode] = field(default_factory=list)
    neglected_targets: List[NeglectedTarget] = field(default_factory=list)
    evidence_gaps: List[EvidenceGap] = field(default_factory=list)
    loop_vulnerabilities: List[LoopVulnerability] = field(default_factory=list)
    surprising_connections: List[PathInfo] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        def centrality(c: NodeCentrality) -> Dict[str, Any]:
            return {**asdict(c), "total_degree": c.total_degree}

        return {
            "summary": dict(self.summary),
            "hubs": [centrality(c) for c in self.hubs],
            "chokepoints": [centrality(c) for c in self.chokepoints],
            "bridge_nodes": [
                {**asdict(b), "bridge_score": b.bridge_score} for b in self.bridge_nodes
            ],
            "neglected_targets": [asdict(t) for t in self.neglected_targets],
            "evidence_gaps": [
                {**asdict(g), "confidence_ratio": g.confidence_ratio, "gap_score": g.gap_score}
                for g in self.evidence_gaps
            ],
            "loop_vulnerabilities": [
                {
                    "loop_id": v.loop_id,
                    "loop_type": v.loop_type.value,
                    "node_ids": list(v.node_ids),
                    "weakest_edge_id": v.weakest_edge_id,
                    "weakest_confidence": v.weakest_confidence.value,
                }
                for v in self.loop_vulnerabilities
            ],
            "surprising_connections": [
                {
                    "source": p.source,
                    "target": p.target,
                    "length": p.length,
                    "path": list(p.path),
                    "edge_ids": list(p.edge_ids),
                    "lowest_confidence": p.lowest_confidence.value if p.lowest_confidence else None,
                    "modules": list(p.modules),
                }
                for p in self.surprising_connections
            ],
        }


def _summary(index: GraphIndex, G: nx.DiGraph, centralities: Dict[str, NodeCentrality]) -> Dict[str, float]:
    n = len(centralities)
    edge_count = len(index.edges)
    lengths = [
        d for _, row in nx.all_pairs_shortest_path_length(G) for d in row.values() if d > 0
    ]
    return {
        "total_nodes": n,
        "total_edges": edge_count,
        "avg_degree": round(sum(c.total_degree for c in centralities.values()) / n, 2) if n else 0.0,
        "avg_path_length": round(sum(lengths) / len(lengths), 2) if lengths else 0.0,
        "network_density": round(edge_count / (n * (n - 1)), 4) if n > 1 else 0.0,
    }


def find_module_bridge_nodes(index: GraphIndex) -> List[ModuleBridgeNode]:
    """Nodes with edges into other modules, scored ``(modules - 1) * cross-module edges``."""
    bridges = []
    for node in index.nodes:
        modules = {node.module_id}
        cross = 0
        for edge in index.incident_edges(node.id):
            other = edge.target if edge.source == node.id else edge.source
            other_module = index.node(other).module_id
            if other_module != node.module_id:
                modules.add(other_module)
                cross += 1
        if len(modules) > 1:
            bridges.append(
                ModuleBridgeNode(
                    node_id=node.id,
                    connects_modules=(node.module_id,) + tuple(sorted(modules - {node.module_id})),
                    cross_module_edges=cross,
                )
            )
    bridges.sort(key=lambda b: (-b.bridge_score, b.node_id))
    return bridges


def find_neglected_targets(
    index: GraphIndex,
    centralities: Dict[str, NodeCentrality],
    options: InsightOptions,
) -> List[NeglectedTarget]:
    values = sorted(c.betweenness for c in centralities.values())
    if not values:
        return []
    cutoff = values[min(int(len(values) * options.neglected_percentile), len(values) - 1)]

    neglected = []
    for node in index.nodes:
        c = centralities[node.id]
        if c.betweenness <= cutoff:
            continue
        if node.has_role(NodeRole.THERAPEUTIC_TARGET) or node.category is NodeCategory.BOUNDARY:
            continue
        reason = "High betweenness centrality but not marked as therapeutic target"
        if c.total_degree >= options.hub_degree:
            reason += "; also a hub node with many connections"
        neglected.append(
            NeglectedTarget(
                node_id=node.id,
                module_id=node.module_id,
                betweenness=c.betweenness,
                total_degree=c.total_degree,
                reason=reason,
            )
        )
    neglected.sort(key=lambda t: (-t.betweenness, t.node_id))
    return neglected


def find_evidence_gaps(index: GraphIndex, options: InsightOptions) -> List[EvidenceGap]:
    """Well-connected nodes whose edges are mostly weak evidence."""
    gaps = []
    for node in index.nodes:
        edges = index.incident_edges(node.id)
        if len(edges) < options.gap_min_edges:
            continue
        high = sum(1 for e in edges if e.causal_confidence.at_least(options.high_confidence_tier))
        low = sum(1 for e in edges if e.causal_confidence.level >= 5)
        gap = EvidenceGap(
            node_id=node.id,
            module_id=node.module_id,
            total_edges=len(edges),
            high_confidence_edges=high,
            low_confidence_edges=low,
        )
        if gap.confidence_ratio < options.gap_max_high_confidence_ratio:
            gaps.append(gap)
    gaps.sort(key=lambda g: (-g.gap_score, g.node_id))
    return gaps


def find_loop_vulnerabilities(index: GraphIndex) -> List[LoopVulnerability]:
    edges_by_id = index.edges_by_id
    vulnerabilities = []
    for loop in index.feedback_loops:
        loop_edges = [edges_by_id[e] for e in loop.edge_ids if e in edges_by_id]
        if not loop_edges:
            continue
        weakest = min(loop_edges, key=lambda e: e.causal_confidence.rank)
        vulnerabilities.append(
            LoopVulnerability(
                loop_id=loop.id,
                loop_type=effective_loop_type(loop, edges_by_id),
                node_ids=tuple(loop_node_ids(loop, edges_by_id)),
                weakest_edge_id=weakest.id,
                weakest_confidence=weakest.causal_confidence,
            )
        )
    return vulnerabilities


def _path_info(index: GraphIndex, G: nx.DiGraph, path: List[str]) -> PathInfo:
    edge_ids = []
    lowest: Optional[ConfidenceTier] = None
    for u, v in zip(path, path[1:]):
        edge = index.edge(G.edges[u, v]["id"])
        edge_ids.append(edge.id)
        if lowest is None or edge.causal_confidence.level > lowest.level:
            lowest = edge.causal_confidence
    return PathInfo(
        source=path[0],
        target=path[-1],
        path=tuple(path),
        edge_ids=tuple(edge_ids),
        lowest_confidence=lowest,
        modules=tuple(dict.fromkeys(index.node(n).module_id for n in path)),
    )


def find_surprising_connections(index: GraphIndex, G: nx.DiGraph, options: InsightOptions) -> List[PathInfo]:
    """Risk-factor inputs that reach clinical outputs only through long cascades."""
    inputs = sorted(n.id for n in index.nodes if n.is_input_boundary)
    outputs = sorted(n.id for n in index.nodes if n.is_output_boundary)
    found = []
    for source in inputs:
        paths = nx.single_source_shortest_path(G, source)
        for target in outputs:
            path = paths.get(target)
            if path is None or len(path) - 1 < options.surprise_min_hops:
                continue
            found.append(_path_info(index, G, path))
    found.sort(key=lambda p: (-p.length, p.source, p.target))
    return found


def analyze_network(index: GraphIndex, options: Optional[InsightOptions] = None) -> NetworkInsights:
    options = options or InsightOptions()
    G = index.to_networkx()

    betweenness = nx.betweenness_centrality(G, normalized=True)
    closeness = nx.closeness_centrality(G.reverse(copy=True))

    centralities = {
        node.id: NodeCentrality(
            node_id=node.id,
            module_id=node.module_id,
            category=node.category.value,
            in_degree=len(index.incoming(node.id)),
            out_degree=len(index.outgoing(node.id)),
            betweenness=betweenness.get(node.id, 0.0),
            closeness=closeness.get(node.id, 0.0),
        )
        for node in index.nodes
    }
    bridges = find_module_bridge_nodes(index)
    top_bridge_ids = {b.node_id for b in bridges[:20]}
    for c in centralities.values():
        c.is_hub = c.total_degree >= options.hub_degree
        c.is_chokepoint = c.betweenness > options.chokepoint_betweenness
        c.is_bridge = c.node_id in top_bridge_ids

    ordered = sorted(centralities.values(), key=lambda c: c.node_id)
    hubs = sorted((c for c in ordered if c.is_hub), key=lambda c: -c.total_degree)
    chokepoints = sorted((c for c in ordered if c.is_chokepoint), key=lambda c: -c.betweenness)

    insights = NetworkInsights(
        summary=_summary(index, G, centralities),
        centralities=centralities,
        hubs=hubs[: options.top_hubs],
        chokepoints=chokepoints[: options.top_chokepoints],
        bridge_nodes=bridges[: options.top_bridges],
        neglected_targets=find_neglected_targets(index, centralities, options)[: options.top_neglected],
        evidence_gaps=find_evidence_gaps(index, options)[: options.top_gaps],
        loop_vulnerabilities=find_loop_vulnerabilities(index),
        surprising_connections=find_surprising_connections(index, G, options)[: options.top_surprises],
    )
    logger.debug(
        "Network insights: %d hubs, %d chokepoints, %d evidence gaps",
        len(insights.hubs), len(insights.chokepoints), len(insights.evidence_gaps),
    )
    return insights
