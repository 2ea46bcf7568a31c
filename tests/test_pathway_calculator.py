import pytest

from engine.errors import InvalidPerturbationError, UnknownNodeError
from engine.graph_index import build_index
from engine.pathway_calculator import (
    DrugTarget,
    Involvement,
    TargetEffect,
    calculate_drug_pathway,
    compute_pathway,
    pathway_stats,
)
from engine.propagation_engine import Perturbation
from models.mechanism_graph import GraphData


@pytest.fixture
def reinforcing_index():
    return build_index(GraphData.from_dict({
        "nodes": [
            {"id": "A", "category": "STATE", "moduleId": "M"},
            {"id": "B", "category": "STATE", "moduleId": "M"},
        ],
        "edges": [
            {"id": "ab", "source": "A", "target": "B", "relation": "increases", "causalConfidence": "L2", "moduleId": "M"},
            {"id": "ba", "source": "B", "target": "A", "relation": "increases", "causalConfidence": "L2", "moduleId": "M"},
        ],
        "feedbackLoops": [
            {"id": "vicious", "type": "reinforcing", "edgeIds": ["ab", "ba"]},
        ],
    }))


def test_pathway_upstream_and_downstream(sample_index):
    pathway = compute_pathway(sample_index, ["c"])
    assert pathway.upstream_ids == ("a", "b", "d", "risk")
    assert pathway.target_ids == ("c",)
    assert pathway.downstream_ids == ("b", "d", "outcome")
    assert pathway.edge_ids == ("e1", "e2", "e3", "e4", "e5", "e6")
    assert pathway.affected_modules == ("M1", "M2", "M3")
    assert pathway.all_node_ids == ("a", "b", "c", "d", "outcome", "risk")


def test_pathway_depth_bound(sample_index):
    pathway = compute_pathway(sample_index, ["a"], max_depth=1)
    assert pathway.upstream_ids == ("risk",)
    assert pathway.downstream_ids == ("b", "e")
    assert pathway.edge_ids == ("e1", "e2", "e7")


def test_pathway_unknown_target(sample_index):
    with pytest.raises(UnknownNodeError):
        compute_pathway(sample_index, ["c", "nope"])


def test_inhibiting_balancing_loop_node_weakens(sample_index):
    drug = calculate_drug_pathway("drug-x", [DrugTarget("c", TargetEffect.INHIBITS)], sample_index)
    (involvement,) = drug.loop_involvements
    assert involvement.loop_id == "loop1"
    assert involvement.involvement is Involvement.WEAKENS
    assert involvement.node_in_loop == "c"


def test_activating_loop_node_strengthens(sample_index):
    drug = calculate_drug_pathway("drug-y", [DrugTarget("b", TargetEffect.ACTIVATES)], sample_index)
    assert drug.loop_involvements[0].involvement is Involvement.STRENGTHENS


def test_passing_through_a_loop_enters_it(sample_index):
    drug = calculate_drug_pathway("drug-z", [DrugTarget("a", TargetEffect.INHIBITS)], sample_index)
    (involvement,) = drug.loop_involvements
    assert involvement.involvement is Involvement.ENTERS
    assert involvement.node_in_loop == "b"


def test_modulating_a_loop_node_enters_it(sample_index):
    drug = calculate_drug_pathway("drug-m", [DrugTarget("d")], sample_index)
    assert drug.loop_involvements[0].involvement is Involvement.ENTERS
    assert drug.loop_involvements[0].node_in_loop == "d"


def test_loop_outside_pathway_is_ignored(sample_index):
    drug = calculate_drug_pathway("drug-a", [DrugTarget("a", TargetEffect.ACTIVATES)], sample_index, max_depth=1)
    assert drug.loop_involvements == ()


def test_inhibiting_reinforcing_loop_breaks_it(reinforcing_index):
    drug = calculate_drug_pathway("breaker", [DrugTarget("A", TargetEffect.INHIBITS)], reinforcing_index)
    assert drug.loop_involvements[0].involvement is Involvement.BREAKS
    assert pathway_stats(drug)["loops_breaking"] == 1


def test_pathway_stats(sample_index):
    drug = calculate_drug_pathway("drug-x", [DrugTarget("c", TargetEffect.INHIBITS)], sample_index)
    assert pathway_stats(drug) == {
        "total_nodes": 6,
        "upstream_count": 4,
        "target_count": 1,
        "downstream_count": 3,
        "edge_count": 6,
        "module_count": 3,
        "loop_count": 1,
        "loops_breaking": 0,
        "loops_weakening": 1,
        "loops_strengthening": 0,
    }


def test_drug_pathway_to_dict(sample_index):
    drug = calculate_drug_pathway("drug-x", [DrugTarget("c", TargetEffect.INHIBITS)], sample_index)
    data = drug.to_dict()
    assert data["drug_id"] == "drug-x"
    assert data["target_nodes"] == ["c"]
    assert data["relevant_loops"] == [{"loop_id": "loop1", "involvement": "weakens", "node_in_loop": "c"}]


def test_drug_target_conversion():
    assert DrugTarget.from_dict({"nodeId": "c", "effect": "inhibits"}) == DrugTarget("c", TargetEffect.INHIBITS)
    assert DrugTarget("c", TargetEffect.ACTIVATES).to_perturbation() == Perturbation("c", 1, 1.0)
    assert DrugTarget("c", TargetEffect.INHIBITS).to_perturbation(0.5) == Perturbation("c", -1, 0.5)
    with pytest.raises(InvalidPerturbationError):
        DrugTarget("c").to_perturbation()
    with pytest.raises(ValueError):
        DrugTarget.from_dict({"node_id": "c", "effect": "blocks"})


if __name__ == "__main__":
    pytest.main([__file__])
