"""
Risk Scorer
===========
Composite "how fragile is this intervention point" score for a node.

Four raw measures are computed over signed edges (optionally restricted to an
evidence tier):

* centrality - fraction of boundary-input -> boundary-output node pairs for
  which the node lies on a shortest signed path (BFS from every sampled
  input, no all-pairs betweenness);
* loop membership - number of feedback loops touching the node;
* evidence - mean confidence level of the edges incident to the node;
* proximity - hop distance from the nearest risk-factor input and to the
  nearest clinical outcome.

Each measure is normalised to ``[0, 1]`` and combined with caller-supplied
``RiskWeights``.  No weighting is assumed: all weights default to zero.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from models.mechanism_graph import ConfidenceTier, FeedbackLoop, Node
from .graph_index import GraphIndex
from .pathway_statistics import OutcomePredicate, default_outcome
from .traversal import BACKWARD, FORWARD, bfs_distances, combine_filters, signed_only, tier_filter

logger = logging.getLogger(__name__)


def default_risk_factor(node: Node) -> bool:
    return node.is_input_boundary


@dataclass(frozen=True)
class RiskWeights:
    centrality: float = 0.0
    loop_membership: float = 0.0
    evidence: float = 0.0
    upstream_proximity: float = 0.0
    downstream_proximity: float = 0.0

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class RiskOptions:
    weights: RiskWeights = field(default_factory=RiskWeights)
    min_confidence_tier: Optional[ConfidenceTier] = None
    sample_limit: Optional[int] = None
    is_risk_factor: OutcomePredicate = default_risk_factor
    is_outcome: OutcomePredicate = default_outcome


@dataclass(frozen=True)
class RiskScore:
    node_id: str
    centrality: float
    loop_count: int
    mean_confidence_level: Optional[float]
    distance_from_risk_factor: Optional[int]
    distance_to_outcome: Optional[int]
    features: Dict[str, float]
    composite: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_id": self.node_id,
            "centrality": self.centrality,
            "loop_count": self.loop_count,
            "mean_confidence_level": self.mean_confidence_level,
            "distance_from_risk_factor": self.distance_from_risk_factor,
            "distance_to_outcome": self.distance_to_outcome,
            "features": dict(self.features),
            "composite": self.composite,
        }


class _PathContext:
    """BFS tables shared by every node scored under the same options."""

    def __init__(self, index: GraphIndex, options: RiskOptions):
        edge_filter = combine_filters(signed_only, tier_filter(options.min_confidence_tier))
        nodes = index.nodes
        inputs = sorted(n.id for n in nodes if options.is_risk_factor(n))
        outputs = sorted(n.id for n in nodes if options.is_outcome(n))
        if options.sample_limit is not None:
            inputs = inputs[: options.sample_limit]

        self.inputs = inputs
        self.outputs = outputs
        self.from_input = {s: bfs_distances(index, [s], FORWARD, edge_filter=edge_filter) for s in inputs}
        self.to_output = {t: bfs_distances(index, [t], BACKWARD, edge_filter=edge_filter) for t in outputs}
        self.nearest_input = bfs_distances(index, inputs, FORWARD, edge_filter=edge_filter)
        self.nearest_output = bfs_distances(index, outputs, BACKWARD, edge_filter=edge_filter)
        self.pairs: List[Tuple[str, str]] = [
            (s, t) for s in inputs for t in outputs if s != t and t in self.from_input[s]
        ]

    def centrality(self, node_id: str) -> float:
        if not self.pairs:
            return 0.0
        through = 0
        for s, t in self.pairs:
            if node_id in (s, t):
                continue
            d_sv = self.from_input[s].get(node_id)
            d_vt = self.to_output[t].get(node_id)
            if d_sv is not None and d_vt is not None and d_sv + d_vt == self.from_input[s][t]:
                through += 1
        return through / len(self.pairs)


def _proximity(distance: Optional[int]) -> float:
    return 0.0 if distance is None else 1.0 / (1.0 + distance)


def _score(
    node_id: str,
    index: GraphIndex,
    loops: Sequence[FeedbackLoop],
    options: RiskOptions,
    context: _PathContext,
) -> RiskScore:
    incident = [
        e for e in index.incident_edges(node_id)
        if e.causal_confidence.at_least(options.min_confidence_tier)
    ]
    mean_level = (
        sum(e.causal_confidence.level for e in incident) / len(incident) if incident else None
    )
    loop_count = len(index.loops_containing(node_id, loops))
    centrality = context.centrality(node_id)
    from_risk = context.nearest_input.get(node_id)
    to_outcome = context.nearest_output.get(node_id)

    features = {
        "centrality": centrality,
        "loop_membership": loop_count / len(loops) if loops else 0.0,
        "evidence": (8 - mean_level) / 7 if mean_level is not None else 0.0,
        "upstream_proximity": _proximity(from_risk),
        "downstream_proximity": _proximity(to_outcome),
    }
    weights = options.weights.as_dict()
    composite = sum(weights[name] * value for name, value in features.items())

    return RiskScore(
        node_id=node_id,
        centrality=centrality,
        loop_count=loop_count,
        mean_confidence_level=mean_level,
        distance_from_risk_factor=from_risk,
        distance_to_outcome=to_outcome,
        features=features,
        composite=composite,
    )


def score(
    node_id: str,
    index: GraphIndex,
    loops: Optional[Sequence[FeedbackLoop]] = None,
    options: Optional[RiskOptions] = None,
) -> RiskScore:
    """Score a single node.  Raises ``UnknownNodeError`` for an id not in the index."""
    index.require_nodes([node_id])
    options = options or RiskOptions()
    loops = index.feedback_loops if loops is None else tuple(loops)
    return _score(node_id, index, loops, options, _PathContext(index, options))


def rank_nodes(
    node_ids: Iterable[str],
    index: GraphIndex,
    loops: Optional[Sequence[FeedbackLoop]] = None,
    options: Optional[RiskOptions] = None,
) -> List[RiskScore]:
    """Score several nodes against one shared BFS context; highest composite first."""
    node_ids = list(dict.fromkeys(node_ids))
    index.require_nodes(node_ids)
    options = options or RiskOptions()
    loops = index.feedback_loops if loops is None else tuple(loops)
    context = _PathContext(index, options)
    logger.debug(
        "Scoring %d node(s) over %d input/output pair(s)", len(node_ids), len(context.pairs)
    )
    scores = [_score(node_id, index, loops, options, context) for node_id in node_ids]
    scores.sort(key=lambda s: (-s.composite, s.node_id))
    return scores
