"""Structural connectivity (c_ij): product of link passabilities along each path."""

from __future__ import annotations

import logging
import math
from typing import Any, Optional, Union

import networkx as nx
import numpy as np
import pandas as pd

from riverconn.config import ConfluenceRule, Directionality, FieldNames, coerce_enum
from riverconn.network import (
    Network,
    PassabilityOverrides,
    link_table,
    reach_ids,
    require_directed,
    validate_passability,
)

logger = logging.getLogger(__name__)


def traversal_factors(
    links: pd.DataFrame,
    directionality: Union[Directionality, str],
    pass_confluence: float,
    confluence_rule: Union[ConfluenceRule, str] = ConfluenceRule.PER_TRAVERSAL,
) -> pd.DataFrame:
    """Add ``along``/``against`` factors for crossing each link in either direction.

    ``along`` follows the link orientation (downstream in a network oriented
    towards its outlet), ``against`` goes the other way.
    """
    directionality = coerce_enum(Directionality, directionality, "dir_fragmentation")
    confluence_rule = coerce_enum(ConfluenceRule, confluence_rule, "confluence_rule")
    is_barrier = links["is_barrier"].astype(bool).to_numpy()
    pass_u = links["pass_u"].to_numpy(dtype=float)
    pass_d = links["pass_d"].to_numpy(dtype=float)

    if directionality is Directionality.SYMMETRIC:
        barrier_along = barrier_against = pass_u * pass_d
    else:
        barrier_along, barrier_against = pass_d, pass_u

    confluence = pass_confluence
    if (
        confluence_rule is ConfluenceRule.AS_BARRIER
        and directionality is Directionality.SYMMETRIC
    ):
        confluence = pass_confluence * pass_confluence

    factors = links.copy()
    factors["along"] = np.where(is_barrier, barrier_along, confluence)
    factors["against"] = np.where(is_barrier, barrier_against, confluence)
    return factors


def _log_factor(value: float) -> float:
    return math.log(value) if value > 0.0 else 0.0


def lowest_common_ancestors(graph: Network) -> np.ndarray:
    """Index of the lowest common ancestor of every reach pair, -1 across components.

    Each connected component is rooted at its first reach in node order.
    """
    nodes = reach_ids(graph)
    position = {node: idx for idx, node in enumerate(nodes)}
    lca = np.full((len(nodes), len(nodes)), -1, dtype=int)
    np.fill_diagonal(lca, np.arange(len(nodes)))
    undirected = graph.to_undirected(as_view=True) if graph.is_directed() else graph
    for component in nx.connected_components(undirected):
        if len(component) == 1:
            continue
        root = min(component, key=position.__getitem__)
        tree = nx.DiGraph(list(nx.bfs_edges(undirected, root)))
        for (left, right), ancestor in nx.tree_all_pairs_lowest_common_ancestor(tree, root=root):
            i, j = position[left], position[right]
            lca[i, j] = lca[j, i] = position[ancestor]
    return lca


def structural_matrix(
    graph: Network,
    *,
    fields: Optional[FieldNames] = None,
    directionality: Union[Directionality, str] = Directionality.SYMMETRIC,
    pass_confluence: float = 1.0,
    confluence_rule: Union[ConfluenceRule, str] = ConfluenceRule.PER_TRAVERSAL,
    overrides: Optional[PassabilityOverrides] = None,
    lca: Optional[np.ndarray] = None,
) -> pd.DataFrame:
    """Compute c_ij for every ordered reach pair (rows: origin, columns: destination).

    The network is acyclic, so each pair has a single path. Log-passabilities
    are accumulated from the root of each component for both traversal
    directions; the factor of the path ``i -> j`` is then the part of the
    ``i`` root path below the common ancestor (travelled towards the root)
    times the part of the ``j`` root path below it (travelled away from the
    root). Zero-passability links are counted separately so a fully
    blocking barrier yields exactly 0.
    """
    fields = fields or FieldNames()
    directionality = coerce_enum(Directionality, directionality, "dir_fragmentation")
    pass_confluence = validate_passability(pass_confluence, "pass_confluence")
    if directionality is Directionality.ASYMMETRIC:
        require_directed(graph, "dir_fragmentation")

    links = traversal_factors(
        link_table(graph, fields, overrides),
        directionality,
        pass_confluence,
        confluence_rule,
    )
    step: dict[tuple[Any, Any], float] = {}
    for source, target, along, against in zip(
        links["from"], links["to"], links["along"], links["against"]
    ):
        step[(source, target)] = float(along)
        step[(target, source)] = float(against)

    nodes = reach_ids(graph)
    position = {node: idx for idx, node in enumerate(nodes)}
    size = len(nodes)
    log_up = np.zeros(size)
    log_down = np.zeros(size)
    zero_up = np.zeros(size, dtype=int)
    zero_down = np.zeros(size, dtype=int)

    undirected = graph.to_undirected(as_view=True) if graph.is_directed() else graph
    for component in nx.connected_components(undirected):
        root = min(component, key=position.__getitem__)
        for parent, child in nx.bfs_edges(undirected, root):
            p, c = position[parent], position[child]
            toward = step[(child, parent)]
            away = step[(parent, child)]
            log_up[c] = log_up[p] + _log_factor(toward)
            log_down[c] = log_down[p] + _log_factor(away)
            zero_up[c] = zero_up[p] + (toward == 0.0)
            zero_down[c] = zero_down[p] + (away == 0.0)

    if lca is None:
        lca = lowest_common_ancestors(graph)
    connected = lca >= 0
    ancestor = np.where(connected, lca, 0)
    log_c = (log_up[:, None] - log_up[ancestor]) + (log_down[None, :] - log_down[ancestor])
    zeros = (zero_up[:, None] - zero_up[ancestor]) + (zero_down[None, :] - zero_down[ancestor])
    values = np.where(connected & (zeros == 0), np.exp(log_c), 0.0)

    logger.debug(
        "Built %s c_ij matrix for %d reaches (%d barrier links)",
        directionality.value,
        size,
        int(links["is_barrier"].sum()),
    )
    return pd.DataFrame(values, index=nodes, columns=nodes)


__all__ = [
    "lowest_common_ancestors",
    "structural_matrix",
    "traversal_factors",
]
