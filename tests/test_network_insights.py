import pytest

from engine.network_insights import (
    InsightOptions,
    analyze_network,
    find_evidence_gaps,
    find_module_bridge_nodes,
)
from models.mechanism_graph import ConfidenceTier, LoopType


@pytest.fixture
def insights(sample_index):
    return analyze_network(sample_index)


def test_summary(insights):
    assert insights.summary == {
        "total_nodes": 8,
        "total_edges": 7,
        "avg_degree": 1.75,
        "avg_path_length": 2.05,
        "network_density": 0.125,
    }


def test_betweenness_and_chokepoints(insights):
    c = insights.centralities
    assert c["b"].betweenness == pytest.approx(8 / 42)
    assert c["c"].betweenness == pytest.approx(7 / 42)
    assert c["a"].betweenness == pytest.approx(5 / 42)
    assert c["iso"].betweenness == 0.0
    assert [n.node_id for n in insights.chokepoints] == ["b", "c", "a", "d"]
    assert all(n.is_chokepoint for n in insights.chokepoints)


def test_closeness_measures_outward_reach(insights):
    c = insights.centralities
    assert c["outcome"].closeness == 0.0
    assert c["risk"].closeness > 0.0


def test_hub_threshold(sample_index, insights):
    assert insights.hubs == []
    hubs = analyze_network(sample_index, InsightOptions(hub_degree=3)).hubs
    assert [h.node_id for h in hubs] == ["a", "b", "c"]


def test_module_bridge_nodes(sample_index, insights):
    bridges = find_module_bridge_nodes(sample_index)
    assert [(b.node_id, b.bridge_score) for b in bridges[:2]] == [("c", 4), ("b", 2)]
    assert bridges[0].connects_modules == ("M2", "M1", "M3")
    assert bridges[0].cross_module_edges == 2
    assert insights.centralities["c"].is_bridge
    assert not insights.centralities["iso"].is_bridge


def test_neglected_targets_skip_marked_targets_and_boundaries(insights):
    assert [t.node_id for t in insights.neglected_targets] == ["b"]
    assert insights.neglected_targets[0].reason.startswith("High betweenness centrality")


def test_evidence_gaps(sample_index, insights):
    assert insights.evidence_gaps == []
    (gap,) = find_evidence_gaps(sample_index, InsightOptions(gap_max_high_confidence_ratio=0.5))
    assert gap.node_id == "c"
    assert gap.high_confidence_edges == 1
    assert gap.low_confidence_edges == 1
    assert gap.confidence_ratio == pytest.approx(1 / 3)
    assert gap.gap_score == pytest.approx(2.0)


def test_loop_vulnerabilities(insights):
    (vulnerability,) = insights.loop_vulnerabilities
    assert vulnerability.loop_id == "loop1"
    assert vulnerability.loop_type is LoopType.BALANCING
    assert vulnerability.node_ids == ("b", "c", "d")
    assert vulnerability.weakest_edge_id == "e6"
    assert vulnerability.weakest_confidence is ConfidenceTier.L6


def test_surprising_connections(sample_index, insights):
    (path,) = insights.surprising_connections
    assert path.path == ("risk", "a", "b", "c", "outcome")
    assert path.length == 4
    assert path.edge_ids == ("e1", "e2", "e3", "e4")
    assert path.lowest_confidence is ConfidenceTier.L4
    assert path.modules == ("M1", "M2", "M3")

    short_only = analyze_network(sample_index, InsightOptions(surprise_min_hops=5))
    assert short_only.surprising_connections == []


def test_to_dict_is_serialisable(insights):
    data = insights.to_dict()
    assert data["bridge_nodes"][0]["bridge_score"] == 4
    assert data["loop_vulnerabilities"][0]["weakest_confidence"] == "L6"
    assert data["surprising_connections"][0]["length"] == 4
    assert "centralities" not in data


if __name__ == "__main__":
    pytest.main([__file__])
