"""
Network Analysis API Layer
==========================
Structured facade exposing every analysis through a consistent, audited,
version-tracked interface.  Every public method:

  1. Resolves the current algorithm version for the operation.
  2. Loads and indexes the stored graph (once per facade instance).
  3. Delegates to the engine functions.
  4. Writes an AuditLogEntry, with the graph fingerprint, before returning.

Caller mistakes (unknown node, bad tier, invalid perturbation) and integrity
failures come back as error envelopes; they never leak into other requests.

Public operations
~~~~~~~~~~~~~~~~~
  - ``import_graph``      - validate and persist a curated graph.
  - ``check_integrity``   - integrity report for the stored graph.
  - ``propagate``         - signed perturbation propagation + statistics.
  - ``compute_pathway``   - upstream/downstream pathway of a drug.
  - ``find_components``   - connected components.
  - ``find_hubs``         - high-degree nodes.
  - ``find_bridges``      - cross-module edge groups.
  - ``find_uncovered_modules`` - modules with no edge above a confidence floor.
  - ``score_risk``        - composite risk scores for candidate nodes.
  - ``predict_trials``    - structural trial failure prediction.
  - ``network_insights``  - whole-network centrality and gap report.
  - ``replay``            - re-run an audited request and compare the results.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from engine.errors import GraphIntegrityError, MechanismNetworkError
from engine.graph_index import GraphIndex, build_index
from engine.graph_store import GraphStore, graph_fingerprint
from engine.integrity_validator import log_report, validate_integrity
from engine.network_insights import InsightOptions, analyze_network
from engine.pathway_calculator import DrugTarget, calculate_drug_pathway, pathway_stats
from engine.pathway_statistics import outcome_predicate, summarize
from engine.propagation_engine import DEFAULT_MAX_DEPTH, Perturbation, propagate
from engine.risk_scorer import RiskOptions, RiskWeights, rank_nodes
from engine.structural_analyzer import find_bridges, find_components, find_hubs, modules_without_edges
from engine.trial_failure_predictor import FailureRiskWeights, Trial, TrialFailurePredictor
from models.mechanism_graph import ConfidenceTier, GraphData

from api.algorithm_registry import find_version, get_current_version, list_operations, list_versions
from api.audit_log import AuditLogger
from api.logging_setup import log_exception
from api.response_envelope import ApiResponse, error_envelope, success_envelope

logger = logging.getLogger(__name__)

REPLAYABLE_OPERATIONS = (
    "check_integrity",
    "propagate",
    "compute_pathway",
    "find_components",
    "find_hubs",
    "find_bridges",
    "find_uncovered_modules",
    "score_risk",
    "predict_trials",
    "network_insights",
)

Computation = Callable[[], Tuple[Any, str]]


def _tier(value: Optional[str]) -> Optional[ConfidenceTier]:
    return ConfidenceTier.parse(value) if value else None


def _from_fields(cls, values: Mapping[str, Any]):
    unknown = sorted(set(values) - set(cls.__dataclass_fields__))
    if unknown:
        raise ValueError(f"Unknown {cls.__name__} field(s): {unknown}")
    return cls(**values)


class NetworkAnalysisAPI:
    """
    Unified API surface for the mechanism network analyses.

    Each public method returns an :class:`ApiResponse` carrying the
    structured result, a short explanation, the algorithm version and the
    audit-log entry id.
    """

    def __init__(self, session: Session, caller_identity: Optional[str] = None):
        self.session = session
        self.caller_identity = caller_identity
        self._store = GraphStore(session)
        self._audit = AuditLogger(session)
        self._graph: Optional[GraphData] = None
        self._index: Optional[GraphIndex] = None
        self._fingerprint: Optional[str] = None

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------
    def _load(self) -> GraphIndex:
        if self._index is None:
            self._graph = self._store.load_graph()
            self._fingerprint = graph_fingerprint(self._graph)
            self._index = build_index(self._graph)
        return self._index

    def _reset(self) -> None:
        self._graph = self._index = self._fingerprint = None

    def _execute(self, op: str, request_payload: Dict[str, Any], compute: Computation) -> ApiResponse:
        ver = get_current_version(op)
        t0 = time.perf_counter()
        try:
            data, explanation = compute()
        except (MechanismNetworkError, ValueError, KeyError) as exc:
            message = log_exception(logger, exc, level=logging.WARNING)
            context = exc.context if isinstance(exc, MechanismNetworkError) else {}
            audit = self._audit.log(
                operation=op,
                algorithm_version=ver.version,
                request_payload=request_payload,
                response_payload=None,
                duration_ms=(time.perf_counter() - t0) * 1000,
                graph_fingerprint=self._fingerprint,
                caller_identity=self.caller_identity,
                status="error",
                error_detail=message,
            )
            self.session.commit()
            return error_envelope(
                operation=op,
                api_version=ver.version,
                error_message=message,
                audit_id=audit.id,
                metadata={"error_type": type(exc).__name__, "context": context},
            )

        audit = self._audit.log(
            operation=op,
            algorithm_version=ver.version,
            request_payload=request_payload,
            response_payload=data,
            duration_ms=(time.perf_counter() - t0) * 1000,
            graph_fingerprint=self._fingerprint,
            caller_identity=self.caller_identity,
        )
        self.session.commit()
        return success_envelope(
            operation=op,
            api_version=ver.version,
            data=data,
            explanation=explanation,
            audit_id=audit.id,
            metadata={"graph_fingerprint": self._fingerprint} if self._fingerprint else None,
        )

    # ------------------------------------------------------------------
    # Graph management
    # ------------------------------------------------------------------
    def import_graph(self, graph_payload: Mapping[str, Any], replace: bool = True) -> ApiResponse:
        def compute():
            graph = GraphData.from_dict(graph_payload)
            report = validate_integrity(graph.nodes, graph.edges, graph.feedback_loops)
            log_report(report)
            if report.violations:
                raise GraphIntegrityError(report.violations)
            written = self._store.import_graph(graph, replace=replace)
            self._reset()
            self._load()
            data = {
                "records_written": written,
                "node_count": len(graph.nodes),
                "edge_count": len(graph.edges),
                "module_count": len(graph.modules),
                "feedback_loop_count": len(graph.feedback_loops),
                "graph_fingerprint": self._fingerprint,
                "integrity": report.to_dict(),
            }
            explanation = (
                f"Imported {len(graph.nodes)} nodes and {len(graph.edges)} edges; "
                f"{len(report.orphan_node_ids)} orphan node(s) and "
                f"{len(report.loop_polarity_mismatches)} loop polarity mismatch(es) reported as warnings."
            )
            return data, explanation

        request = {"replace": replace, "node_count": len(graph_payload.get("nodes", ()))}
        return self._execute("import_graph", request, compute)

    def check_integrity(self) -> ApiResponse:
        def compute():
            graph = self._store.load_graph()
            self._fingerprint = graph_fingerprint(graph)
            report = validate_integrity(graph.nodes, graph.edges, graph.feedback_loops)
            log_report(report)
            explanation = (
                "Graph is clean." if report.is_clean
                else f"{len(report.violations)} integrity violation(s) found."
            )
            return report.to_dict(), explanation

        return self._execute("check_integrity", {}, compute)

    # ------------------------------------------------------------------
    # Propagation and pathways
    # ------------------------------------------------------------------
    def propagate(
        self,
        perturbations: Sequence[Mapping[str, Any]],
        max_depth: int = DEFAULT_MAX_DEPTH,
        min_confidence_tier: Optional[str] = None,
        outcome_node_ids: Optional[Sequence[str]] = None,
        outcome_roles: Optional[Sequence[str]] = None,
    ) -> ApiResponse:
        request = {
            "perturbations": list(perturbations),
            "max_depth": max_depth,
            "min_confidence_tier": min_confidence_tier,
            "outcome_node_ids": outcome_node_ids,
            "outcome_roles": outcome_roles,
        }

        def compute():
            index = self._load()
            result = propagate(
                index,
                [Perturbation.from_dict(p) for p in perturbations],
                max_depth=max_depth,
                min_confidence_tier=_tier(min_confidence_tier),
            )
            is_outcome = None
            if outcome_node_ids or outcome_roles:
                is_outcome = outcome_predicate(index, outcome_node_ids, outcome_roles)
            stats = summarize(result, index, is_outcome)
            explanation = (
                f"Perturbation of {', '.join(result.source_ids)} reached {stats.reached_count} node(s) "
                f"within {max_depth} hop(s): {stats.increased_count} increased, "
                f"{stats.decreased_count} decreased, {stats.unknown_effect_count} with unknown direction."
            )
            return {"propagation": result.to_dict(), "statistics": stats.to_dict()}, explanation

        return self._execute("propagate", request, compute)

    def compute_pathway(
        self,
        drug_id: str,
        targets: Sequence[Mapping[str, Any]],
        max_depth: int = DEFAULT_MAX_DEPTH,
    ) -> ApiResponse:
        request = {"drug_id": drug_id, "targets": list(targets), "max_depth": max_depth}

        def compute():
            index = self._load()
            drug_pathway = calculate_drug_pathway(
                drug_id, [DrugTarget.from_dict(t) for t in targets], index, max_depth=max_depth
            )
            stats = pathway_stats(drug_pathway)
            explanation = (
                f"Pathway for {drug_id} spans {stats['total_nodes']} node(s) across "
                f"{stats['module_count']} module(s) and engages {stats['loop_count']} feedback loop(s)."
            )
            return {"pathway": drug_pathway.to_dict(), "stats": stats}, explanation

        return self._execute("compute_pathway", request, compute)

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------
    def find_components(self, min_confidence_tier: Optional[str] = None, include_isolated: bool = False) -> ApiResponse:
        request = {"min_confidence_tier": min_confidence_tier, "include_isolated": include_isolated}

        def compute():
            index = self._load()
            components = find_components(
                index.nodes, index.edges, _tier(min_confidence_tier), include_isolated=include_isolated
            )
            sizes = [c.size for c in components]
            return [c.to_dict() for c in components], f"{len(components)} component(s), sizes {sizes}."

        return self._execute("find_components", request, compute)

    def find_hubs(self, threshold: int, min_confidence_tier: Optional[str] = None) -> ApiResponse:
        request = {"threshold": threshold, "min_confidence_tier": min_confidence_tier}

        def compute():
            index = self._load()
            hubs = find_hubs(index.nodes, index.edges, threshold, _tier(min_confidence_tier))
            return [h.to_dict() for h in hubs], f"{len(hubs)} node(s) with at least {threshold} neighbours."

        return self._execute("find_hubs", request, compute)

    def find_bridges(self, min_confidence_tier: Optional[str] = None) -> ApiResponse:
        request = {"min_confidence_tier": min_confidence_tier}

        def compute():
            index = self._load()
            bridges = find_bridges(index.nodes, index.edges, _tier(min_confidence_tier))
            total = sum(b.count for b in bridges)
            return [b.to_dict() for b in bridges], f"{total} cross-module edge(s) over {len(bridges)} module pair(s)."

        return self._execute("find_bridges", request, compute)

    def find_uncovered_modules(self, min_confidence_tier: Optional[str] = None) -> ApiResponse:
        request = {"min_confidence_tier": min_confidence_tier}

        def compute():
            index = self._load()
            module_ids = sorted(set(index.modules) | {n.module_id for n in index.nodes})
            uncovered = modules_without_edges(module_ids, index.edges, _tier(min_confidence_tier))
            floor = f" at {min_confidence_tier} or stronger" if min_confidence_tier else ""
            return uncovered, f"{len(uncovered)} of {len(module_ids)} module(s) own no edge{floor}."

        return self._execute("find_uncovered_modules", request, compute)

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------
    def score_risk(
        self,
        node_ids: Sequence[str],
        weights: Mapping[str, float],
        min_confidence_tier: Optional[str] = None,
        sample_limit: Optional[int] = None,
    ) -> ApiResponse:
        request = {
            "node_ids": list(node_ids),
            "weights": dict(weights),
            "min_confidence_tier": min_confidence_tier,
            "sample_limit": sample_limit,
        }

        def compute():
            index = self._load()
            options = RiskOptions(
                weights=_from_fields(RiskWeights, weights),
                min_confidence_tier=_tier(min_confidence_tier),
                sample_limit=sample_limit,
            )
            scores = rank_nodes(node_ids, index, options=options)
            top = scores[0].node_id if scores else None
            return [s.to_dict() for s in scores], f"Scored {len(scores)} node(s); highest composite: {top}."

        return self._execute("score_risk", request, compute)

    def predict_trials(
        self,
        trials: Sequence[Mapping[str, Any]],
        weights: Mapping[str, float],
        keyword_map: Optional[Mapping[str, Sequence[str]]] = None,
    ) -> ApiResponse:
        request = {"trials": list(trials), "weights": dict(weights), "keyword_map": keyword_map}

        def compute():
            index = self._load()
            predictor = TrialFailurePredictor(index, _from_fields(FailureRiskWeights, weights), keyword_map)
            predictions = [
                predictor.predict(
                    Trial(
                        name=t["name"],
                        mechanism=t.get("mechanism", ""),
                        population=t.get("population", ""),
                        target_ids=tuple(t.get("target_ids", ())),
                        red_flags=t.get("red_flags", ""),
                    )
                )
                for t in trials
            ]
            predictions.sort(key=lambda p: -p.overall_risk)
            high = sum(1 for p in predictions if p.confidence == "HIGH")
            return (
                [p.to_dict() for p in predictions],
                f"Predicted {len(predictions)} trial(s); {high} with HIGH confidence.",
            )

        return self._execute("predict_trials", request, compute)

    def network_insights(self, options: Optional[Mapping[str, Any]] = None) -> ApiResponse:
        request = {"options": dict(options or {})}

        def compute():
            index = self._load()
            overrides = dict(options or {})
            if "high_confidence_tier" in overrides:
                overrides["high_confidence_tier"] = ConfidenceTier.parse(overrides["high_confidence_tier"])
            insights = analyze_network(index, _from_fields(InsightOptions, overrides))
            summary = insights.summary
            explanation = (
                f"{summary['total_nodes']} nodes, {summary['total_edges']} edges; "
                f"{len(insights.hubs)} hub(s), {len(insights.evidence_gaps)} evidence gap(s)."
            )
            return insights.to_dict(), explanation

        return self._execute("network_insights", request, compute)

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------
    def query_audit_log(
        self,
        operation: Optional[str] = None,
        since: Optional[datetime] = None,
        status: Optional[str] = None,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        """Retrieve audit-log entries for review, newest first."""
        entries = self._audit.query_log(operation=operation, since=since, status=status, limit=limit)
        return [e.to_dict() for e in entries]

    def algorithm_versions(self, operation: Optional[str] = None) -> Dict[str, List[Dict[str, Any]]]:
        """Version history per operation, deprecated versions included."""
        operations = [operation] if operation else list_operations()
        return {op: [v.to_dict() for v in list_versions(op)] for op in operations}

    def replay(self, audit_id: str) -> ApiResponse:
        """
        Re-run the request recorded in audit entry *audit_id* and report
        whether the result matches the recorded one.

        Only entries whose algorithm version is still the active version of
        their operation can be replayed; the re-run is audited as well.
        """
        request = {"audit_id": audit_id}

        def compute():
            entry = self._audit.get(audit_id)
            if entry is None:
                raise ValueError(f"Unknown audit entry: {audit_id}")
            if entry.operation not in REPLAYABLE_OPERATIONS:
                raise ValueError(f"Operation {entry.operation!r} cannot be replayed")
            recorded = find_version(entry.operation, entry.algorithm_version)
            if recorded.deprecated_at is not None:
                raise ValueError(
                    f"{entry.operation} {recorded.version} was deprecated at "
                    f"{recorded.deprecated_at.isoformat()}; its results cannot be replayed"
                )
            current = get_current_version(entry.operation)
            if current.version != recorded.version:
                raise ValueError(
                    f"{entry.operation} {recorded.version} has been superseded by {current.version}"
                )

            rerun = getattr(self, entry.operation)(**json.loads(entry.request_payload))
            rerun_payload = json.loads(json.dumps(rerun.data, default=str))
            reproduced = rerun_payload == json.loads(entry.response_payload)
            data = {
                "replayed_audit_id": entry.id,
                "rerun_audit_id": rerun.audit_id,
                "operation": entry.operation,
                "algorithm_version": recorded.version,
                "status": rerun.status,
                "graph_matches": entry.graph_fingerprint == self._fingerprint,
                "reproduced": reproduced,
            }
            outcome = "reproduced" if reproduced else "differs from the recorded result"
            return data, f"Replayed {entry.operation} {recorded.version}: {outcome}."

        return self._execute("replay", request, compute)
