"""
Trial Failure Predictor
=======================
Reads a clinical trial's mechanism onto the causal graph and scores how likely
it is to fail, using only structure: how close its targets sit to the
clinical outcomes, whether it touches any reinforcing loop, how many
input -> outcome routes run through it, how many distinct targets it has, how
strong the evidence on its edges is, and whether the trial population matches
the intervention window of the modules it acts on.

Each component is banded to a 0-100 risk; the overall risk is their weighted
sum with caller-supplied ``FailureRiskWeights``.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from models.mechanism_graph import InterventionWindow, LoopType, loop_node_ids
from .graph_index import GraphIndex
from .integrity_validator import effective_loop_type
from .pathway_statistics import OutcomePredicate, default_outcome
from .traversal import BACKWARD, FORWARD, bfs_distances, shortest_distance

logger = logging.getLogger(__name__)

LATE_STAGE_TERMS = ("moderate", "dementia")
EARLY_STAGE_TERMS = ("prodromal", "early", "prevention")


@dataclass(frozen=True)
class Trial:
    name: str
    mechanism: str
    population: str = ""
    target_ids: Tuple[str, ...] = ()
    red_flags: str = ""

    @property
    def search_text(self) -> str:
        return f"{self.name} {self.mechanism} {self.red_flags}".lower()


@dataclass(frozen=True)
class FailureRiskWeights:
    downstream: float = 0.0
    loop_miss: float = 0.0
    low_centrality: float = 0.0
    single_target: float = 0.0
    weak_evidence: float = 0.0
    stage_mismatch: float = 0.0


@dataclass(frozen=True)
class TrialMetrics:
    paths_disrupted: int
    avg_paths_through: float
    avg_distance_to_outcomes: Optional[float]
    avg_distance_from_inputs: Optional[float]
    loops_broken: int
    loops_participating: int
    avg_edge_rank: float
    modules_affected: int


@dataclass
class TrialPrediction:
    trial: Trial
    matched_node_ids: List[str]
    matched_modules: List[str]
    metrics: TrialMetrics
    risk_scores: Dict[str, int]
    overall_risk: float
    confidence: str
    top_reasons: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trial": asdict(self.trial),
            "matched_node_ids": list(self.matched_node_ids),
            "matched_modules": list(self.matched_modules),
            "metrics": asdict(self.metrics),
            "risk_scores": dict(self.risk_scores),
            "overall_risk": self.overall_risk,
            "confidence": self.confidence,
            "top_reasons": list(self.top_reasons),
            "suggestions": list(self.suggestions),
        }


def match_nodes(trial: Trial, index: GraphIndex, keyword_map: Optional[Mapping[str, Sequence[str]]] = None) -> List[str]:
    """
    Explicit target ids (validated) plus every indexed node mapped from a
    keyword that occurs in the trial's name, mechanism or red flags.
    """
    index.require_nodes(trial.target_ids)
    matched = set(trial.target_ids)
    text = trial.search_text
    for keyword, node_ids in (keyword_map or {}).items():
        if keyword.lower() in text:
            matched.update(n for n in node_ids if index.has_node(n))
    return sorted(matched)


def _band_downstream(distance: Optional[float]) -> int:
    if distance is None:
        return 70
    if distance <= 2:
        return 85
    if distance <= 4:
        return 50
    return 20


def _band_loop_miss(broken: int) -> int:
    if broken == 0:
        return 90
    if broken == 1:
        return 40
    return 15


def _band_centrality(avg_paths: float) -> int:
    if avg_paths < 2:
        return 70
    if avg_paths < 5:
        return 40
    return 20


def _band_single_target(count: int) -> int:
    if count <= 1:
        return 75
    if count <= 3:
        return 45
    return 20


def _band_evidence(avg_rank: float) -> int:
    if avg_rank < 3:
        return 70
    if avg_rank < 5:
        return 40
    return 15


def _mean(values: Sequence[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


class TrialFailurePredictor:
    """
    Scores trials against one indexed graph.

    Reachability tables for the input and outcome nodes are computed once and
    shared across every trial predicted by the same instance.
    """

    def __init__(
        self,
        index: GraphIndex,
        weights: FailureRiskWeights,
        keyword_map: Optional[Mapping[str, Sequence[str]]] = None,
        is_outcome: OutcomePredicate = default_outcome,
        input_sample: Optional[int] = 5,
    ):
        self.index = index
        self.weights = weights
        self.keyword_map = dict(keyword_map or {})
        nodes = index.nodes
        self.inputs = sorted(n.id for n in nodes if n.is_input_boundary)
        self.outcomes = sorted(n.id for n in nodes if is_outcome(n))
        sampled = self.inputs if input_sample is None else self.inputs[:input_sample]
        self._reach_from_input = {s: set(bfs_distances(self.index, [s], FORWARD)) for s in sampled}
        self._reaches_outcome = {t: set(bfs_distances(self.index, [t], BACKWARD)) for t in self.outcomes}

    def paths_through(self, node_id: str) -> int:
        """Sampled (input, outcome) pairs where the input reaches the node and the node reaches the outcome."""
        count = 0
        for reached in self._reach_from_input.values():
            if node_id not in reached:
                continue
            count += sum(1 for upstream in self._reaches_outcome.values() if node_id in upstream)
        return count

    def _loop_involvement(self, node_ids: Iterable[str]) -> Tuple[int, int]:
        edges_by_id = self.index.edges_by_id
        wanted = set(node_ids)
        broken = participating = 0
        for loop in self.index.feedback_loops:
            if not wanted.intersection(loop_node_ids(loop, edges_by_id)):
                continue
            participating += 1
            if effective_loop_type(loop, edges_by_id) is LoopType.REINFORCING:
                broken += 1
        return broken, participating

    def _stage_mismatch(self, trial: Trial, module_ids: Sequence[str]) -> bool:
        population = trial.population.lower()
        windows = {
            self.index.modules[m].intervention_window for m in module_ids if m in self.index.modules
        }
        mismatch = False
        if any(term in population for term in LATE_STAGE_TERMS):
            mismatch = InterventionWindow.PREVENTION in windows
        if any(term in population for term in EARLY_STAGE_TERMS):
            mismatch = InterventionWindow.TREATMENT in windows
        return mismatch

    def metrics(self, node_ids: Sequence[str]) -> TrialMetrics:
        outcome_set = set(self.outcomes)
        input_set = set(self.inputs)
        paths = [self.paths_through(n) for n in node_ids]
        to_outcomes = [d for d in (shortest_distance(self.index, n, outcome_set, FORWARD) for n in node_ids) if d is not None]
        from_inputs = [d for d in (shortest_distance(self.index, n, input_set, BACKWARD) for n in node_ids) if d is not None]
        ranks = [e.causal_confidence.rank for n in node_ids for e in self.index.incident_edges(n)]
        broken, participating = self._loop_involvement(node_ids)
        return TrialMetrics(
            paths_disrupted=sum(paths),
            avg_paths_through=_mean(paths) or 0.0,
            avg_distance_to_outcomes=_mean(to_outcomes),
            avg_distance_from_inputs=_mean(from_inputs),
            loops_broken=broken,
            loops_participating=participating,
            avg_edge_rank=_mean(ranks) or 0.0,
            modules_affected=len({self.index.node(n).module_id for n in node_ids}),
        )

    def predict(self, trial: Trial) -> TrialPrediction:
        node_ids = match_nodes(trial, self.index, self.keyword_map)
        modules = sorted({self.index.node(n).module_id for n in node_ids})
        metrics = self.metrics(node_ids)
        stage_mismatch = self._stage_mismatch(trial, modules)

        risk = {
            "downstream": _band_downstream(metrics.avg_distance_to_outcomes),
            "loop_miss": _band_loop_miss(metrics.loops_broken),
            "low_centrality": _band_centrality(metrics.avg_paths_through),
            "single_target": _band_single_target(len(node_ids)),
            "weak_evidence": _band_evidence(metrics.avg_edge_rank),
            "stage_mismatch": 65 if stage_mismatch else 25,
        }
        weights = asdict(self.weights)
        overall = sum(weights[name] * value for name, value in risk.items())

        if len(node_ids) >= 3 and metrics.avg_distance_to_outcomes is not None:
            confidence = "HIGH"
        elif node_ids:
            confidence = "MEDIUM"
        else:
            confidence = "LOW"

        reasons = []
        if risk["loop_miss"] >= 80:
            reasons.append("Does not break any reinforcing feedback loop")
        if risk["downstream"] >= 70:
            if metrics.avg_distance_to_outcomes is None:
                reasons.append("Targets have no causal route to a clinical outcome")
            else:
                reasons.append(
                    f"Targets downstream pathology ({metrics.avg_distance_to_outcomes:.1f} steps from outcomes)"
                )
        if risk["single_target"] >= 60:
            reasons.append("Single-target approach")
        if risk["weak_evidence"] >= 70:
            reasons.append("Target edges rest on weak causal evidence")
        if stage_mismatch:
            reasons.append("Potential stage mismatch between intervention and patient population")

        suggestions = []
        if metrics.loops_broken == 0:
            suggestions.append("Combine with an agent that breaks a reinforcing loop")
        if metrics.avg_distance_to_outcomes is not None and metrics.avg_distance_to_outcomes <= 2:
            suggestions.append("Consider an upstream combination")
        if len(node_ids) <= 1:
            suggestions.append("Add a second mechanism targeting a different module")
        if any(term in trial.population.lower() for term in LATE_STAGE_TERMS):
            suggestions.append("Test in an earlier population")

        logger.debug("Trial %r matched %d node(s), overall risk %.1f", trial.name, len(node_ids), overall)
        return TrialPrediction(
            trial=trial,
            matched_node_ids=node_ids,
            matched_modules=modules,
            metrics=metrics,
            risk_scores=risk,
            overall_risk=overall,
            confidence=confidence,
            top_reasons=reasons,
            suggestions=suggestions,
        )


def predict_trial_failure(
    trial: Trial,
    index: GraphIndex,
    weights: FailureRiskWeights,
    keyword_map: Optional[Mapping[str, Sequence[str]]] = None,
    is_outcome: OutcomePredicate = default_outcome,
) -> TrialPrediction:
    return TrialFailurePredictor(index, weights, keyword_map, is_outcome).predict(trial)
