from __future__ import annotations

import numpy as np
import pytest

from riverconn.config import FieldNames
from riverconn.errors import InvalidAttribute, InvalidParameter
from riverconn.network import link_table
from riverconn.structural import (
    lowest_common_ancestors,
    structural_matrix,
    traversal_factors,
)


def _assert_matches_reference(matrix, graph, ref, **kwargs) -> None:
    for source in graph.nodes:
        for target in graph.nodes:
            expected = ref.passability(source, target, **kwargs)
            assert matrix.loc[source, target] == pytest.approx(expected), (source, target)


def test_symmetric_structural_matches_path_products(tutorial_graph, reference) -> None:
    matrix = structural_matrix(tutorial_graph)

    assert np.allclose(np.diag(matrix.to_numpy()), 1.0)
    assert np.allclose(matrix.to_numpy(), matrix.to_numpy().T)
    assert matrix.loc["1", "2"] == pytest.approx(0.07)
    _assert_matches_reference(matrix, tutorial_graph, reference(tutorial_graph))


def test_asymmetric_structural_depends_on_direction(tutorial_graph, reference) -> None:
    matrix = structural_matrix(tutorial_graph, directionality="asymmetric")

    assert not np.allclose(matrix.to_numpy(), matrix.to_numpy().T)
    assert matrix.loc["1", "2"] == pytest.approx(0.7)
    assert matrix.loc["2", "1"] == pytest.approx(0.1)
    _assert_matches_reference(
        matrix, tutorial_graph, reference(tutorial_graph), symmetric=False
    )


def test_impassable_barrier_blocks_every_crossing_path(tutorial_graph) -> None:
    tutorial_graph.edges["14", "15"]["pass_u"] = 0.0

    matrix = structural_matrix(tutorial_graph)

    assert matrix.loc["1", "16"] == 0.0
    assert matrix.loc["16", "1"] == 0.0
    assert matrix.loc["15", "16"] == pytest.approx(1.0)
    assert matrix.loc["1", "14"] > 0.0


def test_impassable_barrier_in_one_direction(tutorial_graph) -> None:
    tutorial_graph.edges["14", "15"]["pass_u"] = 0.0

    matrix = structural_matrix(tutorial_graph, directionality="asymmetric")

    assert matrix.loc["16", "1"] == 0.0
    assert matrix.loc["1", "16"] > 0.0


@pytest.mark.parametrize("rule", ["per_traversal", "as_barrier"])
def test_confluence_passability(tutorial_graph, reference, rule) -> None:
    ref = reference(tutorial_graph)

    matrix = structural_matrix(tutorial_graph, pass_confluence=0.5, confluence_rule=rule)

    factor = 0.5 if rule == "per_traversal" else 0.25
    # 2 -> 5 crosses one confluence and nothing else.
    assert matrix.loc["2", "5"] == pytest.approx(factor)
    if rule == "per_traversal":
        _assert_matches_reference(matrix, tutorial_graph, ref, pass_confluence=0.5)


def test_confluence_rule_is_linear_in_asymmetric_mode(tutorial_graph) -> None:
    per_traversal = structural_matrix(
        tutorial_graph, directionality="asymmetric", pass_confluence=0.5
    )
    as_barrier = structural_matrix(
        tutorial_graph,
        directionality="asymmetric",
        pass_confluence=0.5,
        confluence_rule="as_barrier",
    )

    assert np.allclose(per_traversal.to_numpy(), as_barrier.to_numpy())


def test_pass_confluence_out_of_range(tutorial_graph) -> None:
    with pytest.raises(InvalidParameter, match="pass_confluence"):
        structural_matrix(tutorial_graph, pass_confluence=1.5)


def test_undirected_network_matches_directed_symmetric(tutorial_graph) -> None:
    directed = structural_matrix(tutorial_graph)
    undirected = structural_matrix(tutorial_graph.to_undirected())

    assert np.allclose(
        directed.to_numpy(),
        undirected.loc[directed.index, directed.columns].to_numpy(),
    )


def test_forest_has_no_cross_component_connectivity(tutorial_graph) -> None:
    tutorial_graph.remove_edge("12", "14")

    matrix = structural_matrix(tutorial_graph)
    lca = lowest_common_ancestors(tutorial_graph)
    nodes = list(tutorial_graph.nodes)

    assert matrix.loc["1", "16"] == 0.0
    assert matrix.loc["16", "1"] == 0.0
    assert lca[nodes.index("1"), nodes.index("16")] == -1
    assert matrix.loc["14", "16"] == pytest.approx(0.07)


def test_lowest_common_ancestor_of_reach_pairs(tutorial_graph) -> None:
    nodes = list(tutorial_graph.nodes)

    lca = lowest_common_ancestors(tutorial_graph)

    # Rooted at reach "1": "5" lies on the path from "3" to "16".
    assert nodes[lca[nodes.index("3"), nodes.index("16")]] == "5"
    assert nodes[lca[nodes.index("2"), nodes.index("4")]] == "2"
    assert np.array_equal(lca, lca.T)
    assert np.array_equal(np.diag(lca), np.arange(len(nodes)))


def test_shared_lca_gives_same_result(tutorial_graph) -> None:
    lca = lowest_common_ancestors(tutorial_graph)

    shared = structural_matrix(tutorial_graph, lca=lca)

    assert np.array_equal(shared.to_numpy(), structural_matrix(tutorial_graph).to_numpy())


def test_overrides_change_only_the_targeted_barrier(tutorial_graph) -> None:
    baseline = structural_matrix(tutorial_graph)

    restored = structural_matrix(tutorial_graph, overrides={"1": (1.0, 1.0)})

    assert restored.loc["1", "2"] == pytest.approx(1.0)
    assert restored.loc["3", "4"] == pytest.approx(baseline.loc["3", "4"])
    assert tutorial_graph.edges["1", "2"]["pass_u"] == pytest.approx(0.1)


def test_missing_passability_is_reported(tutorial_graph) -> None:
    del tutorial_graph.edges["9", "10"]["pass_u"]

    with pytest.raises(InvalidAttribute, match="pass_u"):
        structural_matrix(tutorial_graph)


def test_traversal_factors_per_direction(tutorial_graph) -> None:
    links = link_table(tutorial_graph, FieldNames())

    symmetric = traversal_factors(links, "symmetric", 0.8)
    asymmetric = traversal_factors(links, "asymmetric", 0.8)

    dam = symmetric["barrier_id"] == "1"
    assert symmetric.loc[dam, "along"].item() == pytest.approx(0.07)
    assert symmetric.loc[dam, "against"].item() == pytest.approx(0.07)
    assert asymmetric.loc[dam, "along"].item() == pytest.approx(0.7)
    assert asymmetric.loc[dam, "against"].item() == pytest.approx(0.1)
    joint = ~symmetric["is_barrier"].astype(bool)
    assert np.allclose(symmetric.loc[joint, "along"], 0.8)


def test_non_numeric_passability_is_reported(tutorial_graph) -> None:
    tutorial_graph.edges["1", "2"]["pass_u"] = "high"

    with pytest.raises(InvalidAttribute, match="numeric"):
        structural_matrix(tutorial_graph)
