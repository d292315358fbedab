"""Index aggregation: dispersal probability matrix to catchment/reach scores."""

from __future__ import annotations

from dataclasses import asdict, dataclass
import logging
from typing import Any, Optional, Union

import numpy as np
import pandas as pd

from riverconn.config import (
    Directionality,
    IndexConfig,
    IndexScale,
    ReachMode,
    coerce_enum,
)
from riverconn.errors import InvalidConfiguration, InvalidParameter
from riverconn.functional import functional_matrix, validate_kernel
from riverconn.network import (
    Network,
    PassabilityOverrides,
    barrier_key,
    link_table,
    reach_ids,
    require_directed,
    require_vertex_attribute,
    vertex_values,
)
from riverconn.structural import structural_matrix

logger = logging.getLogger(__name__)

REACH_COLUMNS = ("index", "numerator", "denominator")


@dataclass(frozen=True)
class CatchmentIndex:
    """Catchment-scale index with its numerator and denominator."""

    index: float
    numerator: float
    denominator: float
    barrier: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def validate_inputs(graph: Network, config: IndexConfig) -> Directionality:
    """Run every config/attribute/parameter check before any matrix is built.

    Returns the directionality used for B_ij after kernel resolution.
    """
    config.validate()
    fields = config.fields
    require_vertex_attribute(graph, fields.weight, "weight")
    dir_distance = config.dir_distance
    if config.b_ij:
        dir_distance = validate_kernel(config.kernel, config.dir_distance)
        require_vertex_attribute(graph, fields.distance, "field_B")
        if dir_distance is Directionality.ASYMMETRIC:
            require_directed(graph, "dir_distance")
    if config.c_ij:
        if config.dir_fragmentation is Directionality.ASYMMETRIC:
            require_directed(graph, "dir_fragmentation")
        link_table(graph, fields)
    return dir_distance


def base_functional_matrix(graph: Network, config: IndexConfig) -> Optional[pd.DataFrame]:
    if not config.b_ij:
        return None
    return functional_matrix(
        graph,
        config.kernel,
        field=config.fields.distance,
        directionality=config.dir_distance,
    )


def dispersal_matrix(
    graph: Network,
    config: IndexConfig,
    *,
    b_matrix: Optional[pd.DataFrame] = None,
    overrides: Optional[PassabilityOverrides] = None,
    lca: Optional[np.ndarray] = None,
) -> pd.DataFrame:
    """I = c_ij * B_ij elementwise, or the single enabled contribution."""
    config.validate()
    nodes = reach_ids(graph)
    values = np.ones((len(nodes), len(nodes)), dtype=float)
    if config.c_ij:
        c_matrix = structural_matrix(
            graph,
            fields=config.fields,
            directionality=config.dir_fragmentation,
            pass_confluence=config.pass_confluence,
            confluence_rule=config.confluence_rule,
            overrides=overrides,
            lca=lca,
        )
        values = values * c_matrix.to_numpy()
    if config.b_ij:
        if b_matrix is None:
            b_matrix = base_functional_matrix(graph, config)
        if b_matrix.shape != values.shape:
            raise InvalidConfiguration(
                f"precomputed B_ij has shape {b_matrix.shape}; expected {values.shape}."
            )
        values = values * b_matrix.to_numpy()
    return pd.DataFrame(values, index=nodes, columns=nodes)


def _weight_array(weights: Union[pd.Series, np.ndarray], size: int) -> np.ndarray:
    array = np.asarray(weights, dtype=float)
    if array.shape != (size,):
        raise InvalidParameter(
            f"weights must have one entry per reach ({size}); got shape {array.shape}.",
            context={"field": "weight"},
        )
    if array.sum() <= 0.0:
        raise InvalidParameter(
            "reach weights must sum to a positive value.",
            context={"field": "weight"},
        )
    return array


def catchment_index(
    matrix: pd.DataFrame,
    weights: Union[pd.Series, np.ndarray],
    *,
    barrier: Any = None,
) -> CatchmentIndex:
    """CCI = sum_ij I_ij w_i w_j / W^2."""
    w = _weight_array(weights, matrix.shape[0])
    numerator = float(w @ matrix.to_numpy() @ w)
    denominator = float(w.sum() ** 2)
    return CatchmentIndex(
        index=numerator / denominator,
        numerator=numerator,
        denominator=denominator,
        barrier=barrier_key(barrier),
    )


def reach_index(
    matrix: pd.DataFrame,
    weights: Union[pd.Series, np.ndarray],
    mode: Union[ReachMode, str] = ReachMode.TO,
) -> pd.DataFrame:
    """Per-reach index; ``to`` sums inbound connections, ``from`` outbound ones."""
    mode = coerce_enum(ReachMode, mode, "reach_mode")
    w = _weight_array(weights, matrix.shape[0])
    values = matrix.to_numpy()
    if mode is ReachMode.TO:
        numerator = values.T @ w
    else:
        numerator = values @ w
    denominator = float(w.sum())
    columns = (numerator / denominator, numerator, np.full(len(numerator), denominator))
    return pd.DataFrame(
        dict(zip(REACH_COLUMNS, columns)),
        index=pd.Index(matrix.index, name="reach"),
    )


def index_calculation(
    graph: Network,
    config: Optional[IndexConfig] = None,
    *,
    barrier: Any = None,
    b_matrix: Optional[pd.DataFrame] = None,
    overrides: Optional[PassabilityOverrides] = None,
    lca: Optional[np.ndarray] = None,
) -> Union[CatchmentIndex, pd.DataFrame]:
    """Compute the connectivity index at the scale selected in ``config``.

    ``full`` and ``sum`` return a :class:`CatchmentIndex` (``sum`` tags it
    with ``barrier``); ``reach`` returns a frame indexed by reach.
    """
    config = config or IndexConfig()
    validate_inputs(graph, config)
    matrix = dispersal_matrix(
        graph,
        config,
        b_matrix=b_matrix,
        overrides=overrides,
        lca=lca,
    )
    weights = vertex_values(graph, config.fields.weight)
    scale = coerce_enum(IndexScale, config.scale, "scale")
    if scale is IndexScale.REACH:
        return reach_index(matrix, weights, config.reach_mode)
    if scale is IndexScale.SUM:
        return catchment_index(matrix, weights, barrier=barrier)
    return catchment_index(matrix, weights)


__all__ = [
    "CatchmentIndex",
    "REACH_COLUMNS",
    "base_functional_matrix",
    "catchment_index",
    "dispersal_matrix",
    "index_calculation",
    "reach_index",
    "validate_inputs",
]
