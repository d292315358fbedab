"""Distance and passability extraction from river network graphs."""

from __future__ import annotations

from collections.abc import Mapping
import logging
import math
import numbers
from typing import Any, Optional, Union

import networkx as nx
import numpy as np
import pandas as pd

from riverconn.config import Directionality, FieldNames, coerce_enum
from riverconn.errors import (
    InvalidAttribute,
    InvalidConfiguration,
    InvalidParameter,
    ScenarioFailure,
)

logger = logging.getLogger(__name__)

UPSTREAM = "u"
DOWNSTREAM = "d"
ROUTING_COLUMNS = ("from", "to", "distance", "flag")
LINK_COLUMNS = ("from", "to", "link_type", "barrier_id", "is_barrier", "pass_u", "pass_d")

Network = Union[nx.Graph, nx.DiGraph]
PassabilityOverrides = Mapping[Any, tuple[float, float]]


def _is_missing(value: Any) -> bool:
    if value is None or value is pd.NA:
        return True
    return isinstance(value, float) and math.isnan(value)


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        return False
    return not math.isnan(float(value))


def _preview(items: list[Any], limit: int = 5) -> str:
    shown = ", ".join(repr(item) for item in items[:limit])
    if len(items) > limit:
        shown += f", ... ({len(items)} total)"
    return shown


def barrier_key(value: Any) -> Optional[str]:
    """Normalize a barrier identifier so ``1``, ``1.0`` and ``"1"`` match."""
    if _is_missing(value):
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def reach_ids(graph: Network) -> list[Any]:
    return list(graph.nodes)


def require_vertex_attribute(graph: Network, field: str, label: str = "field") -> None:
    if graph.number_of_nodes() == 0:
        raise InvalidAttribute("network has no reaches.", context={"field": field})
    missing = [node for node, data in graph.nodes(data=True) if field not in data]
    if missing:
        raise InvalidAttribute(
            f"'{label}' must be a valid vertex attribute in the network; "
            f"{field!r} is missing on reaches {_preview(missing)}.",
            context={"field": field},
        )
    invalid = [node for node, value in graph.nodes(data=field) if not _is_number(value)]
    if invalid:
        raise InvalidAttribute(
            f"vertex attribute {field!r} must be numeric; "
            f"invalid on reaches {_preview(invalid)}.",
            context={"field": field},
        )


def vertex_values(graph: Network, field: str) -> np.ndarray:
    require_vertex_attribute(graph, field)
    return np.asarray([float(value) for _, value in graph.nodes(data=field)], dtype=float)


def require_directed(graph: Network, label: str) -> None:
    if not graph.is_directed():
        raise InvalidConfiguration(
            f"{label} = 'asymmetric' requires a directed network oriented towards its outlet.",
            context={"field": label},
        )


def routing_edges(
    graph: Network,
    field: str,
    directionality: Union[Directionality, str] = Directionality.SYMMETRIC,
) -> pd.DataFrame:
    """Build the routing edge table with midpoint-to-midpoint distances.

    In asymmetric mode every edge ``a -> b`` (oriented downstream) yields a
    downstream-moving row ``(a, b, "d")`` and an upstream-moving row
    ``(b, a, "u")``.
    """
    directionality = coerce_enum(Directionality, directionality, "dir_distance")
    require_vertex_attribute(graph, field, "field_B")
    if directionality is Directionality.ASYMMETRIC:
        require_directed(graph, "dir_distance")

    lengths = dict(graph.nodes(data=field))
    negative = [node for node, value in lengths.items() if float(value) < 0.0]
    if negative:
        raise InvalidAttribute(
            f"vertex attribute {field!r} must be >= 0 for routing; "
            f"negative on reaches {_preview(negative)}.",
            context={"field": field},
        )
    rows: list[tuple[Any, Any, float, Optional[str]]] = []
    for source, target in graph.edges():
        distance = (float(lengths[source]) + float(lengths[target])) / 2.0
        if directionality is Directionality.SYMMETRIC:
            rows.append((source, target, distance, None))
            rows.append((target, source, distance, None))
        else:
            rows.append((source, target, distance, DOWNSTREAM))
            rows.append((target, source, distance, UPSTREAM))
    return pd.DataFrame(rows, columns=list(ROUTING_COLUMNS))


def _flagged_table(edges: pd.DataFrame, flag: str) -> pd.DataFrame:
    flagged = edges.loc[edges["flag"] == flag, ["from", "to", "distance"]]
    reverse = flagged.rename(columns={"from": "to", "to": "from"}).assign(distance=0.0)
    return pd.concat([flagged, reverse[["from", "to", "distance"]]], ignore_index=True)


def directional_edge_tables(edges: pd.DataFrame) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Split an asymmetric routing table into upstream and downstream tables.

    Each table keeps the rows with its flag and adds their reverse at zero
    cost, so a shortest path only accumulates the distance travelled in
    that direction.
    """
    if edges["flag"].isna().all():
        raise InvalidConfiguration(
            "routing table has no direction flags; build it with dir_distance = 'asymmetric'."
        )
    return _flagged_table(edges, UPSTREAM), _flagged_table(edges, DOWNSTREAM)


def validate_passability(value: Any, label: str) -> float:
    if not _is_number(value):
        raise InvalidParameter(
            f"'{label}' must be numeric; got {value!r}.",
            context={"field": label},
        )
    value = float(value)
    if not 0.0 <= value <= 1.0:
        raise InvalidParameter(
            f"'{label}' must be in [0, 1]; got {value!r}.",
            context={"field": label},
        )
    return value


def _edge_passability(data: Mapping[str, Any], field: str, source: Any, target: Any) -> float:
    value = data.get(field)
    if _is_missing(value):
        raise InvalidAttribute(
            f"barrier link ({source!r}, {target!r}) is missing passability attribute {field!r}.",
            context={"field": field, "link": (source, target)},
        )
    if not _is_number(value):
        raise InvalidAttribute(
            f"passability attribute {field!r} on barrier link ({source!r}, {target!r}) "
            f"must be numeric; got {value!r}.",
            context={"field": field, "link": (source, target)},
        )
    return validate_passability(value, f"{field} on link ({source!r}, {target!r})")


def _normalize_overrides(overrides: Optional[PassabilityOverrides]) -> dict[str, tuple[float, float]]:
    normalized: dict[str, tuple[float, float]] = {}
    if not overrides:
        return normalized
    for key, values in overrides.items():
        barrier = barrier_key(key)
        if barrier is None:
            raise ScenarioFailure("barrier override has an empty barrier id.")
        try:
            pass_u, pass_d = values
        except (TypeError, ValueError) as exc:
            raise InvalidParameter(
                f"override for barrier {barrier!r} must be a (pass_u, pass_d) pair.",
                context={"barrier_id": barrier},
            ) from exc
        normalized[barrier] = (
            validate_passability(pass_u, f"pass_u for barrier {barrier!r}"),
            validate_passability(pass_d, f"pass_d for barrier {barrier!r}"),
        )
    return normalized


def link_table(
    graph: Network,
    fields: FieldNames,
    overrides: Optional[PassabilityOverrides] = None,
) -> pd.DataFrame:
    """Collect link category and passability, applying barrier overrides.

    ``overrides`` maps a barrier id to ``(pass_u, pass_d)``; the graph itself
    is left untouched. Passability of confluences is undefined (NaN).
    """
    override_map = _normalize_overrides(overrides)
    applied: set[str] = set()
    rows: list[tuple[Any, ...]] = []
    for source, target, data in graph.edges(data=True):
        if fields.link_type not in data or _is_missing(data[fields.link_type]):
            raise InvalidAttribute(
                f"edge attribute {fields.link_type!r} is missing on link ({source!r}, {target!r}).",
                context={"field": fields.link_type, "link": (source, target)},
            )
        link_type = str(data[fields.link_type])
        is_barrier = link_type not in fields.confluence_types
        barrier = barrier_key(data.get(fields.barrier_id))
        if not is_barrier:
            rows.append((source, target, link_type, barrier, False, math.nan, math.nan))
            continue
        if barrier is not None and barrier in override_map:
            pass_u, pass_d = override_map[barrier]
            applied.add(barrier)
        else:
            pass_u = _edge_passability(data, fields.pass_u, source, target)
            pass_d = _edge_passability(data, fields.pass_d, source, target)
        rows.append((source, target, link_type, barrier, True, pass_u, pass_d))

    unknown = sorted(set(override_map) - applied)
    if unknown:
        raise ScenarioFailure(
            f"Barrier {unknown[0]!r} not found in the network.",
            context={"barrier_ids": unknown},
        )
    return pd.DataFrame(rows, columns=list(LINK_COLUMNS))


def barrier_ids(graph: Network, fields: FieldNames) -> list[str]:
    ids: list[str] = []
    for _, _, data in graph.edges(data=True):
        link_type = data.get(fields.link_type)
        if _is_missing(link_type) or str(link_type) in fields.confluence_types:
            continue
        barrier = barrier_key(data.get(fields.barrier_id))
        if barrier is not None and barrier not in ids:
            ids.append(barrier)
    return ids


__all__ = [
    "DOWNSTREAM",
    "LINK_COLUMNS",
    "Network",
    "PassabilityOverrides",
    "ROUTING_COLUMNS",
    "UPSTREAM",
    "barrier_ids",
    "barrier_key",
    "directional_edge_tables",
    "link_table",
    "reach_ids",
    "require_directed",
    "require_vertex_attribute",
    "routing_edges",
    "validate_passability",
    "vertex_values",
]
