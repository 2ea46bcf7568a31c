"""
Integrity validation for curated mechanism graphs.

Hand-curated scientific data is routinely incomplete, so validation never
raises: it returns an ``IntegrityReport`` and leaves it to the caller whether a
finding is fatal.  ``GraphIndex.build`` is the one caller that is strict.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from models.mechanism_graph import Edge, FeedbackLoop, LoopType, Node

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IntegrityViolation:
    kind: str  # dangling_edge | duplicate_node_id | duplicate_edge_id | unknown_loop_edge
    subject_id: str
    missing_ids: Tuple[str, ...] = ()
    detail: str = ""

    def __str__(self) -> str:
        if self.kind == "dangling_edge":
            return f"edge {self.subject_id} references missing node(s) {', '.join(self.missing_ids)}"
        if self.kind == "unknown_loop_edge":
            return f"loop {self.subject_id} references missing edge(s) {', '.join(self.missing_ids)}"
        return f"{self.kind.replace('_', ' ')} {self.subject_id}"

    def to_dict(self) -> Dict[str, object]:
        return {
            "kind": self.kind,
            "subject_id": self.subject_id,
            "missing_ids": list(self.missing_ids),
            "detail": self.detail,
        }


@dataclass(frozen=True)
class LoopPolarityMismatch:
    loop_id: str
    curated_type: LoopType
    computed_type: LoopType

    def to_dict(self) -> Dict[str, str]:
        return {
            "loop_id": self.loop_id,
            "curated_type": self.curated_type.value,
            "computed_type": self.computed_type.value,
        }


@dataclass
class IntegrityReport:
    violations: List[IntegrityViolation] = field(default_factory=list)
    orphan_node_ids: List[str] = field(default_factory=list)
    loop_polarity_mismatches: List[LoopPolarityMismatch] = field(default_factory=list)
    undetermined_loop_ids: List[str] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not self.violations

    def of_kind(self, kind: str) -> List[IntegrityViolation]:
        return [v for v in self.violations if v.kind == kind]

    def to_dict(self) -> Dict[str, object]:
        return {
            "is_clean": self.is_clean,
            "violations": [v.to_dict() for v in self.violations],
            "orphan_node_ids": list(self.orphan_node_ids),
            "loop_polarity_mismatches": [m.to_dict() for m in self.loop_polarity_mismatches],
            "undetermined_loop_ids": list(self.undetermined_loop_ids),
        }


def loop_sign(loop: FeedbackLoop, edges_by_id: Mapping[str, Edge]) -> Optional[int]:
    """
    Product of edge signs around the loop, ghost edge included.

    Returns ``None`` when the polarity cannot be derived: a missing edge or any
    non-propagable relation on the cycle.
    """
    product = 1
    signs: List[int] = []
    for edge_id in loop.edge_ids:
        edge = edges_by_id.get(edge_id)
        if edge is None:
            return None
        signs.append(edge.sign)
    if loop.ghost_edge is not None:
        signs.append(loop.ghost_edge.relation.sign)
    if not signs:
        return None
    for sign in signs:
        if sign == 0:
            return None
        product *= sign
    return product


def loop_polarity(loop: FeedbackLoop, edges_by_id: Mapping[str, Edge]) -> Optional[LoopType]:
    sign = loop_sign(loop, edges_by_id)
    return LoopType.from_sign(sign) if sign is not None else None


def effective_loop_type(loop: FeedbackLoop, edges_by_id: Mapping[str, Edge]) -> LoopType:
    """Computed polarity when derivable, otherwise the curated label."""
    return loop_polarity(loop, edges_by_id) or loop.loop_type


def _duplicates(ids: Iterable[str]) -> List[str]:
    counts = Counter(ids)
    return sorted(i for i, n in counts.items() if n > 1)


def validate_integrity(
    nodes: Sequence[Node],
    edges: Sequence[Edge],
    feedback_loops: Sequence[FeedbackLoop] = (),
) -> IntegrityReport:
    report = IntegrityReport()
    node_ids = {n.id for n in nodes}

    for node_id in _duplicates(n.id for n in nodes):
        report.violations.append(IntegrityViolation(kind="duplicate_node_id", subject_id=node_id))
    for edge_id in _duplicates(e.id for e in edges):
        report.violations.append(IntegrityViolation(kind="duplicate_edge_id", subject_id=edge_id))

    connected = set()
    for edge in edges:
        missing = tuple(dict.fromkeys(x for x in (edge.source, edge.target) if x not in node_ids))
        if missing:
            report.violations.append(
                IntegrityViolation(kind="dangling_edge", subject_id=edge.id, missing_ids=missing)
            )
        connected.add(edge.source)
        connected.add(edge.target)

    edges_by_id = {e.id: e for e in edges}
    for loop in feedback_loops:
        missing_edges = tuple(eid for eid in loop.edge_ids if eid not in edges_by_id)
        if missing_edges:
            report.violations.append(
                IntegrityViolation(kind="unknown_loop_edge", subject_id=loop.id, missing_ids=missing_edges)
            )
            continue
        computed = loop_polarity(loop, edges_by_id)
        if computed is None:
            report.undetermined_loop_ids.append(loop.id)
        elif computed is not loop.loop_type:
            report.loop_polarity_mismatches.append(
                LoopPolarityMismatch(loop_id=loop.id, curated_type=loop.loop_type, computed_type=computed)
            )

    report.orphan_node_ids = sorted(node_ids - connected)
    return report


def log_report(report: IntegrityReport, log: logging.Logger = logger) -> None:
    """Emit every finding as a warning; degraded integrity does not halt analysis."""
    for violation in report.violations:
        log.warning("Integrity violation: %s", violation)
    for mismatch in report.loop_polarity_mismatches:
        log.warning(
            "Loop %s is curated as %s but its edge signs make it %s",
            mismatch.loop_id, mismatch.curated_type.value, mismatch.computed_type.value,
        )
    if report.orphan_node_ids:
        log.warning("%d orphan node(s): %s", len(report.orphan_node_ids), ", ".join(report.orphan_node_ids))
