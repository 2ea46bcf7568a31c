from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import networkx as nx

from models.mechanism_graph import (
    ConfidenceTier,
    Edge,
    FeedbackLoop,
    GraphData,
    Module,
    Node,
    iter_tier_filtered,
    loop_node_ids,
)
from .errors import GraphIntegrityError, UnknownNodeError
from .integrity_validator import validate_integrity

logger = logging.getLogger(__name__)


class GraphIndex:
    """
    Forward/backward adjacency and id lookups over an immutable graph.

    Built once per analysis run; stores references to the frozen records and
    never mutates them.  Edge lists keep the order the edges were supplied in,
    which keeps every traversal deterministic.
    """

    def __init__(
        self,
        nodes: Dict[str, Node],
        edges: Dict[str, Edge],
        outgoing: Dict[str, List[Edge]],
        incoming: Dict[str, List[Edge]],
        modules: Dict[str, Module],
        feedback_loops: Tuple[FeedbackLoop, ...],
    ):
        self._nodes = nodes
        self._edges = edges
        self._outgoing = outgoing
        self._incoming = incoming
        self._modules = modules
        self._loops = feedback_loops

    @classmethod
    def build(
        cls,
        nodes: Sequence[Node],
        edges: Sequence[Edge],
        modules: Sequence[Module] = (),
        feedback_loops: Sequence[FeedbackLoop] = (),
    ) -> "GraphIndex":
        report = validate_integrity(nodes, edges, feedback_loops)
        if report.violations:
            raise GraphIntegrityError(report.violations)

        node_map = {n.id: n for n in nodes}
        outgoing: Dict[str, List[Edge]] = {n.id: [] for n in nodes}
        incoming: Dict[str, List[Edge]] = {n.id: [] for n in nodes}
        edge_map: Dict[str, Edge] = {}
        for edge in edges:
            outgoing[edge.source].append(edge)
            incoming[edge.target].append(edge)
            edge_map[edge.id] = edge

        logger.debug("Indexed %d nodes and %d edges", len(node_map), len(edge_map))
        return cls(
            nodes=node_map,
            edges=edge_map,
            outgoing=outgoing,
            incoming=incoming,
            modules={m.id: m for m in modules},
            feedback_loops=tuple(feedback_loops),
        )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def outgoing(self, node_id: str) -> List[Edge]:
        self._require(node_id)
        return list(self._outgoing[node_id])

    def incoming(self, node_id: str) -> List[Edge]:
        self._require(node_id)
        return list(self._incoming[node_id])

    def node(self, node_id: str) -> Node:
        self._require(node_id)
        return self._nodes[node_id]

    def has_node(self, node_id: str) -> bool:
        return node_id in self._nodes

    def edge(self, edge_id: str) -> Edge:
        try:
            return self._edges[edge_id]
        except KeyError:
            raise KeyError(f"Unknown edge id: {edge_id}") from None

    def all_node_ids(self) -> List[str]:
        return list(self._nodes)

    @property
    def nodes(self) -> List[Node]:
        return list(self._nodes.values())

    @property
    def edges(self) -> List[Edge]:
        return list(self._edges.values())

    @property
    def edges_by_id(self) -> Dict[str, Edge]:
        return dict(self._edges)

    @property
    def modules(self) -> Dict[str, Module]:
        return dict(self._modules)

    @property
    def feedback_loops(self) -> Tuple[FeedbackLoop, ...]:
        return self._loops

    def incident_edges(self, node_id: str) -> List[Edge]:
        self._require(node_id)
        return self._incoming[node_id] + self._outgoing[node_id]

    def loops_containing(self, node_id: str, loops: Optional[Iterable[FeedbackLoop]] = None) -> List[FeedbackLoop]:
        loops = self._loops if loops is None else loops
        return [loop for loop in loops if node_id in loop_node_ids(loop, self._edges)]

    def require_nodes(self, node_ids: Iterable[str]) -> None:
        missing = [n for n in node_ids if n not in self._nodes]
        if missing:
            raise UnknownNodeError(missing)

    def _require(self, node_id: str) -> None:
        if node_id not in self._nodes:
            raise UnknownNodeError([node_id])

    # ------------------------------------------------------------------
    # networkx export for centrality measures
    # ------------------------------------------------------------------
    def to_networkx(self, min_confidence_tier: Optional[ConfidenceTier] = None) -> nx.DiGraph:
        G = nx.DiGraph()
        for n in self._nodes.values():
            G.add_node(n.id, category=n.category.value, module=n.module_id)
        for e in iter_tier_filtered(self._edges.values(), min_confidence_tier):
            # Parallel edges collapse; keep the strongest evidence for the pair.
            existing = G.get_edge_data(e.source, e.target)
            if existing and existing["rank"] >= e.causal_confidence.rank:
                continue
            G.add_edge(e.source, e.target, id=e.id, sign=e.sign, rank=e.causal_confidence.rank)
        return G


def build_index(graph: GraphData) -> GraphIndex:
    return GraphIndex.build(graph.nodes, graph.edges, graph.modules, graph.feedback_loops)
