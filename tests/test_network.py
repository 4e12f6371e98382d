"""Tests for influence graphs and network reduction."""

import pandas as pd
import pytest

from xseq.network import InfluenceGraph, reduce_network, self_loop_graph


@pytest.fixture
def graph():
    edges = pd.DataFrame({
        "gene_a": ["TP53", "TP53", "MDM2", "KRAS", "MYC"],
        "gene_b": ["MDM2", "CDKN1A", "TP53", "BRAF", "MYC"],
        "weight": [0.9, 0.7, 0.4, 1.0, 1.0]})
    return InfluenceGraph.from_edges(edges)


@pytest.fixture
def weights():
    return pd.Series({
        "TP53": 0.99, "MDM2": 0.85, "CDKN1A": 0.6, "KRAS": 0.95,
        "BRAF": 0.81, "MYC": 0.3})


def test_neighbors_are_symmetric(graph):
    assert dict(graph.neighbors("CDKN1A")) == {"TP53": 0.7}
    # duplicated pair keeps the largest weight
    assert dict(graph.neighbors("MDM2")) == {"TP53": 0.9}
    assert dict(graph.neighbors("TP53")) == {"MDM2": 0.9, "CDKN1A": 0.7}
    assert graph.neighbors("UNKNOWN") == []


def test_self_loops_optional(graph):
    assert graph.neighbors("MYC") == [("MYC", 1.0)]
    assert graph.neighbors("MYC", include_self=False) == []


def test_counts(graph):
    assert graph.n_nodes == 6
    assert graph.n_edges == 4


def test_reduce_network(graph, weights):
    reduced = reduce_network(graph, weights, threshold=0.8)
    assert set(reduced.genes) == {"TP53", "MDM2", "KRAS", "BRAF"}
    assert dict(reduced.neighbors("TP53")) == {"MDM2": 0.9}
    assert "CDKN1A" not in reduced


def test_reduce_network_min_edge_weight(graph, weights):
    reduced = reduce_network(
        graph, weights, threshold=0.0, min_edge_weight=0.8)
    assert dict(reduced.neighbors("TP53")) == {"MDM2": 0.9}
    assert reduced.neighbors("CDKN1A") == []


@pytest.mark.parametrize("low,high", [(0.0, 0.5), (0.5, 0.8),
                                      (0.8, 0.9), (0.9, 1.0)])
def test_reducer_is_monotone(graph, weights, low, high):
    loose = reduce_network(graph, weights, threshold=low)
    strict = reduce_network(graph, weights, threshold=high)
    assert strict.n_nodes <= loose.n_nodes
    assert strict.n_edges <= loose.n_edges


def test_invalid_weights_raise(graph):
    with pytest.raises(ValueError):
        reduce_network(graph, pd.Series({"TP53": 1.5}))


def test_self_loop_graph():
    g = self_loop_graph(["A", "B", "A"])
    assert g.genes == ("A", "B")
    assert g.is_self_loop_only()
    assert g.neighbors("B") == [("B", 1.0)]


def test_from_mapping_round_trip():
    g = InfluenceGraph.from_mapping({"A": {"B": 0.5}, "C": {}})
    edges = g.to_edges()
    assert edges.values.tolist() == [["A", "B", 0.5]]
    assert not g.is_self_loop_only()
