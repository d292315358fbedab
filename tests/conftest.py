from __future__ import annotations

from itertools import pairwise
import sys
from pathlib import Path
from typing import Any, Callable

import networkx as nx
import pytest


def pytest_configure() -> None:
    src_root = Path(__file__).resolve().parents[1] / "src"
    src_path = str(src_root)
    if src_path not in sys.path:
        sys.path.insert(0, src_path)


# Reach order, lengths and habitat suitability of the 16-reach tutorial network.
TUTORIAL_REACHES = ["1", "2", "5", "3", "4", "6", "7", "10", "8", "9", "11", "12", "13", "14", "15", "16"]
TUTORIAL_LENGTHS = [1, 1, 2, 3, 4, 1, 5, 1, 7, 7, 3, 2, 4, 5, 6, 9]
TUTORIAL_HSI = [0.2, 0.1, 0.3, 0.4, 0.5, 0.5, 0.5, 0.6, 0.7, 0.8, 0.8, 0.8, 0.8, 0.8, 0.8, 0.8]
TUTORIAL_LINKS = [
    ("1", "2", "1"),
    ("2", "5", None),
    ("3", "4", "2"),
    ("4", "5", "3"),
    ("6", "7", None),
    ("7", "10", "4"),
    ("8", "9", None),
    ("9", "10", "5"),
    ("5", "11", "6"),
    ("11", "12", None),
    ("10", "13", None),
    ("13", "12", None),
    ("12", "14", None),
    ("14", "15", "7"),
    ("15", "16", None),
]


def build_tutorial_graph(pass_u: float = 0.1, pass_d: float = 0.7) -> nx.DiGraph:
    """Tree oriented towards outlet "16"; dams carry ``id_barrier``."""
    graph = nx.DiGraph()
    for reach, length, hsi in zip(TUTORIAL_REACHES, TUTORIAL_LENGTHS, TUTORIAL_HSI):
        graph.add_node(reach, length=float(length), HSI=hsi)
    for source, target, dam in TUTORIAL_LINKS:
        if dam is None:
            graph.add_edge(source, target, type="joint")
        else:
            graph.add_edge(
                source,
                target,
                type="dam",
                id_barrier=dam,
                pass_u=pass_u,
                pass_d=pass_d,
            )
    return graph


class PathReference:
    """Brute-force pairwise quantities from explicit path enumeration."""

    def __init__(self, graph: nx.Graph) -> None:
        self.graph = graph
        self.undirected = graph.to_undirected(as_view=True) if graph.is_directed() else graph

    def path(self, source: Any, target: Any) -> list[Any]:
        return nx.shortest_path(self.undirected, source, target)

    def _steps(self, source: Any, target: Any):
        for a, b in pairwise(self.path(source, target)):
            if self.graph.has_edge(a, b):
                yield a, b, self.graph.edges[a, b], True
            else:
                yield a, b, self.graph.edges[b, a], False

    def _midpoint(self, a: Any, b: Any, field: str) -> float:
        return (self.graph.nodes[a][field] + self.graph.nodes[b][field]) / 2.0

    def distance(self, source: Any, target: Any, field: str = "length") -> float:
        return sum(self._midpoint(a, b, field) for a, b, _, _ in self._steps(source, target))

    def directional_distance(
        self, source: Any, target: Any, field: str = "length"
    ) -> tuple[float, float]:
        upstream = downstream = 0.0
        for a, b, _, along in self._steps(source, target):
            if along:
                downstream += self._midpoint(a, b, field)
            else:
                upstream += self._midpoint(a, b, field)
        return upstream, downstream

    def passability(
        self,
        source: Any,
        target: Any,
        *,
        symmetric: bool = True,
        pass_confluence: float = 1.0,
    ) -> float:
        product = 1.0
        for _, _, data, along in self._steps(source, target):
            if data["type"] in ("joint", "confluence"):
                product *= pass_confluence
            elif symmetric:
                product *= data["pass_u"] * data["pass_d"]
            else:
                product *= data["pass_d"] if along else data["pass_u"]
        return product


@pytest.fixture
def tutorial_graph() -> nx.DiGraph:
    return build_tutorial_graph()


@pytest.fixture
def make_tutorial_graph() -> Callable[..., nx.DiGraph]:
    return build_tutorial_graph


@pytest.fixture
def reference() -> Callable[[nx.Graph], PathReference]:
    return PathReference
