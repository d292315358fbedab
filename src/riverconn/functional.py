"""Functional connectivity (B_ij): dispersal probability from network distance."""

from __future__ import annotations

from collections.abc import Callable
import logging
import math
from typing import Any, Optional, Union

import numpy as np
import pandas as pd
from scipy.stats import norm

from riverconn.config import Directionality, KernelParams, KernelType, coerce_enum
from riverconn.errors import InvalidParameter
from riverconn.network import Network, directional_edge_tables, reach_ids, routing_edges
from riverconn.routing import shortest_path_distances

logger = logging.getLogger(__name__)

LEPTOKURTIC_ARITY = 3


def exponential_kernel(distance: np.ndarray, base: float) -> np.ndarray:
    return np.power(base, distance)


def threshold_kernel(distance: np.ndarray, cutoff: float) -> np.ndarray:
    return (distance <= cutoff).astype(float)


def leptokurtic_kernel(
    distance: np.ndarray,
    sigma_stat: float,
    sigma_mob: float,
    p: float,
) -> np.ndarray:
    """Two zero-mean gaussian upper tails for the static and mobile fractions."""
    stat = norm.sf(distance, loc=0.0, scale=sigma_stat)
    mob = norm.sf(distance, loc=0.0, scale=sigma_mob)
    return 2.0 * (p * stat + (1.0 - p) * mob)


_PARAM_KERNELS: dict[KernelType, Callable[[np.ndarray, float], np.ndarray]] = {
    KernelType.EXPONENTIAL: exponential_kernel,
    KernelType.THRESHOLD: threshold_kernel,
}


def _is_unset(value: Optional[float]) -> bool:
    return value is None or math.isnan(value)


def _check_param(value: Optional[float], label: str, kernel: KernelType, mode: str) -> float:
    if _is_unset(value):
        raise InvalidParameter(
            f"'{label}' must be defined when dir_distance = '{mode}' "
            "(to ignore dispersal limitation, disable b_ij instead).",
            context={"field": label, "kernel": kernel.value},
        )
    if kernel is KernelType.EXPONENTIAL and not 0.0 < value <= 1.0:
        raise InvalidParameter(
            f"'{label}' must be in (0, 1] for kernel = 'exponential'; got {value!r}.",
            context={"field": label, "kernel": kernel.value},
        )
    if kernel is KernelType.THRESHOLD and value < 0.0:
        raise InvalidParameter(
            f"'{label}' must be >= 0 for kernel = 'threshold'; got {value!r}.",
            context={"field": label, "kernel": kernel.value},
        )
    return value


def _check_leptokurtic(param_l: Optional[tuple[float, ...]]) -> tuple[float, float, float]:
    if param_l is None:
        raise InvalidParameter(
            "'param_l' must be specified when kernel = 'leptokurtic'.",
            context={"field": "param_l"},
        )
    if len(param_l) != LEPTOKURTIC_ARITY:
        raise InvalidParameter(
            f"'param_l' must have exactly {LEPTOKURTIC_ARITY} entries "
            f"(sigma_stat, sigma_mob, p); got {len(param_l)}.",
            context={"field": "param_l"},
        )
    sigma_stat, sigma_mob, p = param_l
    for idx, sigma in enumerate((sigma_stat, sigma_mob)):
        if _is_unset(sigma) or sigma <= 0.0:
            raise InvalidParameter(
                f"'param_l[{idx}]' must be > 0 for kernel = 'leptokurtic'; got {sigma!r}.",
                context={"field": f"param_l[{idx}]"},
            )
    if _is_unset(p) or not 0.0 <= p <= 1.0:
        raise InvalidParameter(
            f"'param_l[2]' must be in [0, 1] for kernel = 'leptokurtic'; got {p!r}.",
            context={"field": "param_l[2]"},
        )
    return sigma_stat, sigma_mob, p


def validate_kernel(
    kernel: KernelParams,
    directionality: Union[Directionality, str] = Directionality.SYMMETRIC,
) -> Directionality:
    """Check kernel parameters and return the directionality actually used.

    The leptokurtic kernel is only defined for symmetric dispersal, so an
    asymmetric request resolves to symmetric.
    """
    directionality = coerce_enum(Directionality, directionality, "dir_distance")
    if kernel.kernel is KernelType.LEPTOKURTIC:
        _check_leptokurtic(kernel.param_l)
        if directionality is Directionality.ASYMMETRIC:
            logger.debug("Leptokurtic dispersal is symmetric; using dir_distance = 'symmetric'.")
        return Directionality.SYMMETRIC
    if directionality is Directionality.ASYMMETRIC:
        _check_param(kernel.param_u, "param_u", kernel.kernel, directionality.value)
        _check_param(kernel.param_d, "param_d", kernel.kernel, directionality.value)
    else:
        _check_param(kernel.param, "param", kernel.kernel, directionality.value)
    return directionality


def functional_matrix(
    graph: Network,
    kernel: KernelParams,
    *,
    field: str = "length",
    directionality: Union[Directionality, str] = Directionality.SYMMETRIC,
) -> pd.DataFrame:
    """Compute B_ij for every ordered reach pair (rows: origin, columns: destination)."""
    directionality = validate_kernel(kernel, directionality)
    edges = routing_edges(graph, field, directionality)
    nodes = reach_ids(graph)

    if directionality is Directionality.SYMMETRIC:
        distance = shortest_path_distances(edges, nodes).to_numpy()
        if kernel.kernel is KernelType.LEPTOKURTIC:
            sigma_stat, sigma_mob, p = kernel.param_l
            values = leptokurtic_kernel(distance, sigma_stat, sigma_mob, p)
        else:
            values = _PARAM_KERNELS[kernel.kernel](distance, kernel.param)
    else:
        upstream, downstream = directional_edge_tables(edges)
        distance_u = shortest_path_distances(upstream, nodes).to_numpy()
        distance_d = shortest_path_distances(downstream, nodes).to_numpy()
        apply = _PARAM_KERNELS[kernel.kernel]
        values = apply(distance_u, kernel.param_u) * apply(distance_d, kernel.param_d)

    logger.debug(
        "Built %s B_ij matrix (%s) for %d reaches",
        kernel.kernel.value,
        directionality.value,
        len(nodes),
    )
    return pd.DataFrame(values, index=nodes, columns=nodes)


def distance_matrices(
    graph: Network,
    *,
    field: str = "length",
    directionality: Union[Directionality, str] = Directionality.SYMMETRIC,
) -> dict[str, Any]:
    """Raw routing distances: ``{"distance": ...}`` or ``{"upstream": ..., "downstream": ...}``."""
    directionality = coerce_enum(Directionality, directionality, "dir_distance")
    edges = routing_edges(graph, field, directionality)
    nodes = reach_ids(graph)
    if directionality is Directionality.SYMMETRIC:
        return {"distance": shortest_path_distances(edges, nodes)}
    upstream, downstream = directional_edge_tables(edges)
    return {
        "upstream": shortest_path_distances(upstream, nodes),
        "downstream": shortest_path_distances(downstream, nodes),
    }


__all__ = [
    "LEPTOKURTIC_ARITY",
    "distance_matrices",
    "exponential_kernel",
    "functional_matrix",
    "leptokurtic_kernel",
    "threshold_kernel",
    "validate_kernel",
]
