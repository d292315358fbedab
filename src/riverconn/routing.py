"""All-pairs shortest-path routing over edge tables."""

from __future__ import annotations

from collections.abc import Sequence
import logging
from typing import Any

import networkx as nx
import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


def shortest_path_distances(edges: pd.DataFrame, nodes: Sequence[Any]) -> pd.DataFrame:
    """Route every ``(from, to, distance)`` row and return an n x n distance frame.

    Rows are origins and columns destinations, both in ``nodes`` order.
    Unreachable pairs are ``inf``.
    """
    routing_graph = nx.DiGraph()
    routing_graph.add_nodes_from(nodes)
    for source, target, distance in edges[["from", "to", "distance"]].itertuples(index=False):
        previous = routing_graph.get_edge_data(source, target)
        if previous is not None and previous["distance"] <= distance:
            continue
        routing_graph.add_edge(source, target, distance=float(distance))

    position = {node: idx for idx, node in enumerate(nodes)}
    matrix = np.full((len(position), len(position)), np.inf, dtype=float)
    for source, lengths in nx.all_pairs_dijkstra_path_length(routing_graph, weight="distance"):
        row = position[source]
        for target, length in lengths.items():
            matrix[row, position[target]] = length
    logger.debug("Routed %d edges across %d reaches", len(edges), len(position))
    return pd.DataFrame(matrix, index=list(nodes), columns=list(nodes))


__all__ = ["shortest_path_distances"]
