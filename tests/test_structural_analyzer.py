import pytest

from engine.structural_analyzer import (
    UNKNOWN_MODULE,
    find_bridges,
    find_components,
    find_hubs,
    modules_without_edges,
)
from models.mechanism_graph import ConfidenceTier, GraphData


def _graph(edges, modules=None):
    modules = modules or {}
    ids = sorted({n for s, t in edges for n in (s, t)})
    return GraphData.from_dict({
        "nodes": [{"id": n, "category": "STATE", "moduleId": modules.get(n, "M")} for n in ids],
        "edges": [
            {"id": f"{s}{t}", "source": s, "target": t, "relation": "increases", "causalConfidence": "L2", "moduleId": "M"}
            for s, t in edges
        ],
    })


# -----------------------------------------------------------------------
#  Components
# -----------------------------------------------------------------------

def test_two_separate_pairs():
    graph = _graph([("A", "B"), ("C", "D")])
    components = find_components(graph.nodes, graph.edges)
    assert [c.node_ids for c in components] == [("A", "B"), ("C", "D")]
    assert [c.size for c in components] == [2, 2]


def test_components_partition_edge_endpoints(sample_graph):
    components = find_components(sample_graph.nodes, sample_graph.edges)
    assert len(components) == 1
    assert components[0].node_ids == ("a", "b", "c", "d", "e", "outcome", "risk")
    assert components[0].module_breakdown == {"M1": 3, "M2": 3, "M3": 1}


def test_components_include_isolated(sample_graph):
    components = find_components(sample_graph.nodes, sample_graph.edges, include_isolated=True)
    assert [c.size for c in components] == [7, 1]
    assert components[1].node_ids == ("iso",)


def test_components_tier_filter_splits_graph(sample_graph):
    components = find_components(sample_graph.nodes, sample_graph.edges, ConfidenceTier.L3)
    assert [c.node_ids for c in components] == [("a", "b", "c", "risk")]


def test_components_sorted_by_size_then_first_id():
    graph = _graph([("X", "Y"), ("A", "B"), ("P", "Q"), ("Q", "R")])
    components = find_components(graph.nodes, graph.edges)
    assert [c.node_ids for c in components] == [("P", "Q", "R"), ("A", "B"), ("X", "Y")]


def test_component_to_dict(sample_graph):
    data = find_components(sample_graph.nodes, sample_graph.edges)[0].to_dict()
    assert data["size"] == 7
    assert data["node_ids"][0] == "a"


# -----------------------------------------------------------------------
#  Hubs
# -----------------------------------------------------------------------

def test_hubs_count_distinct_neighbours(sample_graph):
    hubs = find_hubs(sample_graph.nodes, sample_graph.edges, threshold=3)
    assert [(h.node_id, h.degree) for h in hubs] == [("a", 3), ("b", 3), ("c", 3)]
    assert hubs[0].neighbor_ids == ("b", "e", "risk")


def test_hubs_ignore_parallel_edges_and_self_loops():
    graph = _graph([("A", "B"), ("B", "A"), ("A", "A"), ("A", "C")])
    hubs = find_hubs(graph.nodes, graph.edges, threshold=1)
    assert [(h.node_id, h.degree) for h in hubs] == [("A", 2), ("B", 1), ("C", 1)]


def test_hub_threshold_must_be_positive(sample_graph):
    with pytest.raises(ValueError):
        find_hubs(sample_graph.nodes, sample_graph.edges, threshold=0)


def test_no_hubs_above_threshold(sample_graph):
    assert find_hubs(sample_graph.nodes, sample_graph.edges, threshold=10) == []


# -----------------------------------------------------------------------
#  Bridges
# -----------------------------------------------------------------------

def test_bridges_group_by_unordered_module_pair(sample_graph):
    bridges = find_bridges(sample_graph.nodes, sample_graph.edges)
    assert [(b.module_pair, b.edge_ids) for b in bridges] == [
        (("M1", "M2"), ("e3", "e6", "e7")),
        (("M2", "M3"), ("e4",)),
    ]
    assert bridges[0].count == 3


def test_bridges_skip_unknown_modules():
    graph = _graph([("A", "B"), ("B", "C")], modules={"A": "M1", "B": "M2", "C": "M2"})
    bridges = find_bridges(graph.nodes[:1], graph.edges)
    assert bridges == []


def test_bridges_respect_tier_filter(sample_graph):
    bridges = find_bridges(sample_graph.nodes, sample_graph.edges, ConfidenceTier.L3)
    assert [(b.module_pair, b.edge_ids) for b in bridges] == [(("M1", "M2"), ("e3",))]


def test_modules_without_edges(sample_graph):
    assert modules_without_edges(["M1", "M2", "M3"], sample_graph.edges) == ["M3"]
    assert modules_without_edges(["M1", "M2", "M3"], sample_graph.edges, ConfidenceTier.L3) == ["M2", "M3"]


def test_unknown_module_label_for_edge_only_nodes():
    graph = _graph([("A", "B")])
    components = find_components(graph.nodes[:1], graph.edges)
    assert components[0].module_breakdown == {"M": 1, UNKNOWN_MODULE: 1}


if __name__ == "__main__":
    pytest.main([__file__])
