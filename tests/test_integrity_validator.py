import logging

import pytest

from engine.integrity_validator import (
    effective_loop_type,
    log_report,
    loop_polarity,
    loop_sign,
    validate_integrity,
)
from models.mechanism_graph import (
    ConfidenceTier,
    Edge,
    FeedbackLoop,
    GhostEdge,
    LoopType,
    Node,
    NodeCategory,
    Relation,
)


def _node(node_id, module_id="M"):
    return Node(id=node_id, label=node_id, category=NodeCategory.STATE, module_id=module_id)


def _edge(edge_id, source, target, relation=Relation.INCREASES, tier=ConfidenceTier.L2):
    return Edge(
        id=edge_id,
        source=source,
        target=target,
        relation=relation,
        causal_confidence=tier,
        module_id="M",
    )


def test_clean_graph_has_no_violations(sample_graph):
    report = validate_integrity(sample_graph.nodes, sample_graph.edges, sample_graph.feedback_loops)
    assert report.is_clean
    assert report.violations == []
    assert report.loop_polarity_mismatches == []


def test_orphan_is_a_warning_not_a_violation(sample_graph):
    report = validate_integrity(sample_graph.nodes, sample_graph.edges, sample_graph.feedback_loops)
    assert report.orphan_node_ids == ["iso"]
    assert report.is_clean


def test_single_dangling_edge_reported_once():
    nodes = [_node("A"), _node("B")]
    edges = [_edge("ab", "A", "B"), _edge("bz", "B", "Z")]
    report = validate_integrity(nodes, edges)

    assert not report.is_clean
    assert len(report.violations) == 1
    violation = report.violations[0]
    assert violation.kind == "dangling_edge"
    assert violation.subject_id == "bz"
    assert violation.missing_ids == ("Z",)


def test_edge_missing_both_endpoints_lists_both():
    report = validate_integrity([], [_edge("xy", "X", "Y")])
    assert report.violations[0].missing_ids == ("X", "Y")


def test_duplicate_ids_are_violations():
    nodes = [_node("A"), _node("A"), _node("B")]
    edges = [_edge("e", "A", "B"), _edge("e", "B", "A")]
    report = validate_integrity(nodes, edges)
    assert [v.subject_id for v in report.of_kind("duplicate_node_id")] == ["A"]
    assert [v.subject_id for v in report.of_kind("duplicate_edge_id")] == ["e"]


def test_loop_with_unknown_edge_is_a_violation():
    nodes = [_node("A"), _node("B")]
    edges = [_edge("ab", "A", "B")]
    loop = FeedbackLoop(id="L", name="L", loop_type=LoopType.REINFORCING, edge_ids=("ab", "ba"))
    report = validate_integrity(nodes, edges, [loop])
    (violation,) = report.of_kind("unknown_loop_edge")
    assert violation.subject_id == "L"
    assert violation.missing_ids == ("ba",)


def test_loop_polarity_mismatch_is_reported():
    nodes = [_node("A"), _node("B")]
    edges = [_edge("ab", "A", "B"), _edge("ba", "B", "A", relation=Relation.DECREASES)]
    loop = FeedbackLoop(id="L", name="L", loop_type=LoopType.REINFORCING, edge_ids=("ab", "ba"))
    report = validate_integrity(nodes, edges, [loop])

    assert report.is_clean
    (mismatch,) = report.loop_polarity_mismatches
    assert mismatch.curated_type is LoopType.REINFORCING
    assert mismatch.computed_type is LoopType.BALANCING
    assert effective_loop_type(loop, {e.id: e for e in edges}) is LoopType.BALANCING


def test_unsigned_loop_is_undetermined_and_keeps_curated_type():
    nodes = [_node("A"), _node("B")]
    edges = [_edge("ab", "A", "B"), _edge("ba", "B", "A", relation=Relation.REGULATES)]
    loop = FeedbackLoop(id="L", name="L", loop_type=LoopType.REINFORCING, edge_ids=("ab", "ba"))
    edges_by_id = {e.id: e for e in edges}

    assert loop_sign(loop, edges_by_id) is None
    assert loop_polarity(loop, edges_by_id) is None
    assert effective_loop_type(loop, edges_by_id) is LoopType.REINFORCING
    assert validate_integrity(nodes, edges, [loop]).undetermined_loop_ids == ["L"]


def test_ghost_edge_counts_towards_polarity():
    edges = {"ab": _edge("ab", "A", "B")}
    loop = FeedbackLoop(
        id="L",
        name="L",
        loop_type=LoopType.BALANCING,
        edge_ids=("ab",),
        ghost_edge=GhostEdge(source="B", target="A", relation=Relation.DECREASES),
    )
    assert loop_sign(loop, edges) == -1
    assert loop_polarity(loop, edges) is LoopType.BALANCING


def test_sample_loop_is_balancing(sample_index):
    loop = sample_index.feedback_loops[0]
    assert loop_sign(loop, sample_index.edges_by_id) == -1


def test_report_to_dict():
    report = validate_integrity([_node("A")], [_edge("az", "A", "Z")])
    data = report.to_dict()
    assert data["is_clean"] is False
    assert data["violations"][0] == {
        "kind": "dangling_edge",
        "subject_id": "az",
        "missing_ids": ["Z"],
        "detail": "",
    }


def test_log_report_emits_warnings(caplog):
    report = validate_integrity([_node("A"), _node("lonely")], [_edge("az", "A", "Z")])
    with caplog.at_level(logging.WARNING):
        log_report(report)
    messages = [r.getMessage() for r in caplog.records]
    assert any("edge az references missing node(s) Z" in m for m in messages)
    assert any("lonely" in m for m in messages)


if __name__ == "__main__":
    pytest.main([__file__])
