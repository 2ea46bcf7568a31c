import pytest

from engine.errors import UnknownNodeError
from engine.risk_scorer import RiskOptions, RiskWeights, rank_nodes, score
from models.mechanism_graph import ConfidenceTier


def test_measures_for_loop_node_on_main_path(sample_index):
    result = score("b", sample_index)
    assert result.centrality == pytest.approx(1.0)
    assert result.loop_count == 1
    assert result.mean_confidence_level == pytest.approx(10 / 3)
    assert result.distance_from_risk_factor == 2
    assert result.distance_to_outcome == 2


def test_features_are_normalised(sample_index):
    features = score("b", sample_index).features
    assert features["centrality"] == pytest.approx(1.0)
    assert features["loop_membership"] == pytest.approx(1.0)
    assert features["evidence"] == pytest.approx(2 / 3)
    assert features["upstream_proximity"] == pytest.approx(1 / 3)
    assert features["downstream_proximity"] == pytest.approx(1 / 3)
    assert all(0.0 <= v <= 1.0 for v in features.values())


def test_default_weights_give_zero_composite(sample_index):
    assert score("b", sample_index).composite == 0.0


def test_composite_is_weighted_sum(sample_index):
    weights = RiskWeights(centrality=0.5, loop_membership=0.25, evidence=0.25)
    result = score("b", sample_index, options=RiskOptions(weights=weights))
    assert result.composite == pytest.approx(0.5 * 1.0 + 0.25 * 1.0 + 0.25 * (2 / 3))


def test_node_off_shortest_route(sample_index):
    result = score("d", sample_index)
    assert result.centrality == 0.0
    assert result.distance_from_risk_factor == 4
    assert result.distance_to_outcome == 3


def test_unsigned_neighbour_is_unreachable(sample_index):
    result = score("e", sample_index)
    assert result.centrality == 0.0
    assert result.distance_from_risk_factor is None
    assert result.distance_to_outcome is None
    assert result.features["upstream_proximity"] == 0.0
    assert result.mean_confidence_level == pytest.approx(7.0)


def test_isolated_node_has_no_evidence(sample_index):
    result = score("iso", sample_index)
    assert result.mean_confidence_level is None
    assert result.features["evidence"] == 0.0
    assert result.loop_count == 0


def test_endpoints_are_excluded_from_their_own_pairs(sample_index):
    assert score("risk", sample_index).centrality == 0.0
    assert score("outcome", sample_index).centrality == 0.0


def test_tier_filter_cuts_paths(sample_index):
    options = RiskOptions(min_confidence_tier=ConfidenceTier.L3)
    result = score("b", sample_index, options=options)
    # e4 (L4) is gone, so risk no longer reaches outcome
    assert result.centrality == 0.0
    assert result.distance_to_outcome is None
    assert result.mean_confidence_level == pytest.approx(2.0)


def test_explicit_loop_subset(sample_index):
    assert score("b", sample_index, loops=[]).loop_count == 0
    assert score("b", sample_index, loops=[]).features["loop_membership"] == 0.0


def test_rank_nodes_orders_by_composite(sample_index):
    options = RiskOptions(weights=RiskWeights(centrality=1.0, downstream_proximity=1.0))
    ranked = rank_nodes(["d", "a", "b", "c"], sample_index, options=options)
    assert [r.node_id for r in ranked] == ["c", "b", "a", "d"]


def test_rank_nodes_dedupes_and_ties_break_by_id(sample_index):
    ranked = rank_nodes(["d", "b", "d"], sample_index)
    assert [r.node_id for r in ranked] == ["b", "d"]


def test_unknown_node_rejected(sample_index):
    with pytest.raises(UnknownNodeError):
        score("nope", sample_index)
    with pytest.raises(UnknownNodeError):
        rank_nodes(["a", "nope"], sample_index)


def test_to_dict(sample_index):
    data = score("b", sample_index).to_dict()
    assert data["node_id"] == "b"
    assert set(data["features"]) == {
        "centrality",
        "loop_membership",
        "evidence",
        "upstream_proximity",
        "downstream_proximity",
    }


if __name__ == "__main__":
    pytest.main([__file__])
