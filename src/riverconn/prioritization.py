"""Barrier prioritization: index change under per-barrier passability scenarios."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
import logging
import math
from pathlib import Path
from typing import Any, Optional, Union

from joblib import Parallel, delayed
import numpy as np
import pandas as pd

from riverconn import __version__
from riverconn.config import IndexConfig, IndexScale, PrioritizationMode, coerce_enum
from riverconn.errors import (
    InvalidAttribute,
    InvalidConfiguration,
    RiverconnError,
    ScenarioFailure,
)
from riverconn.index import (
    CatchmentIndex,
    base_functional_matrix,
    catchment_index,
    dispersal_matrix,
    reach_index,
    validate_inputs,
)
from riverconn.io_utils import write_json_atomic, write_table
from riverconn.logging_utils import get_user_message, log_exception
from riverconn.network import (
    Network,
    barrier_ids,
    barrier_key,
    validate_passability,
    vertex_values,
)
from riverconn.structural import lowest_common_ancestors

logger = logging.getLogger(__name__)

DEFAULT_ID_COLUMN = "id_barrier"
DEFAULT_PASS_U_COLUMN = "pass_u_updated"
DEFAULT_PASS_D_COLUMN = "pass_d_updated"
STATUS_OK = "ok"
STATUS_FAILED = "failed"
RESULT_COLUMNS = (
    "barrier_id",
    "status",
    "index",
    "numerator",
    "denominator",
    "d_index",
    "rank",
    "reason",
)
REACH_RESULT_COLUMNS = (
    "barrier_id",
    "reach",
    "index",
    "numerator",
    "denominator",
    "d_index",
)


@dataclass(frozen=True)
class BarrierScenario:
    """Updated passability for one barrier."""

    barrier_id: Optional[str]
    pass_u: float
    pass_d: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "barrier_id", barrier_key(self.barrier_id))


@dataclass(frozen=True)
class ScenarioResult:
    barrier_id: Optional[str]
    status: str
    index: float = math.nan
    numerator: float = math.nan
    denominator: float = math.nan
    d_index: float = math.nan
    rank: Optional[int] = None
    reason: Optional[str] = None
    reach: Optional[pd.DataFrame] = field(default=None, compare=False, repr=False)

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK

    def to_row(self) -> dict[str, Any]:
        return {
            "barrier_id": self.barrier_id,
            "status": self.status,
            "index": self.index,
            "numerator": self.numerator,
            "denominator": self.denominator,
            "d_index": self.d_index,
            "rank": self.rank,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class PrioritizationResult:
    baseline: CatchmentIndex
    mode: PrioritizationMode
    scale: IndexScale
    scenarios: tuple[ScenarioResult, ...]
    baseline_reach: Optional[pd.DataFrame] = field(default=None, compare=False, repr=False)

    def to_frame(self) -> pd.DataFrame:
        frame = pd.DataFrame(
            [scenario.to_row() for scenario in self.scenarios],
            columns=list(RESULT_COLUMNS),
        )
        frame["rank"] = frame["rank"].astype("Int64")
        return frame

    def reach_frame(self) -> pd.DataFrame:
        if self.scale is not IndexScale.REACH:
            raise InvalidConfiguration(
                "reach-level results are only available for scale = 'reach'."
            )
        frames = []
        for scenario in self.scenarios:
            if not scenario.ok or scenario.reach is None:
                continue
            frame = scenario.reach.reset_index()
            frame.insert(0, "barrier_id", scenario.barrier_id)
            frames.append(frame)
        if not frames:
            return pd.DataFrame(columns=list(REACH_RESULT_COLUMNS))
        return pd.concat(frames, ignore_index=True)[list(REACH_RESULT_COLUMNS)]

    def failures(self) -> list[ScenarioResult]:
        return [scenario for scenario in self.scenarios if not scenario.ok]


@dataclass(frozen=True)
class _Outcome:
    catchment: Optional[CatchmentIndex] = None
    reach: Optional[pd.DataFrame] = None
    error: Optional[RiverconnError] = None


def _coerce_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def scenarios_from_frame(
    frame: pd.DataFrame,
    *,
    id_column: str = DEFAULT_ID_COLUMN,
    pass_u_column: str = DEFAULT_PASS_U_COLUMN,
    pass_d_column: str = DEFAULT_PASS_D_COLUMN,
) -> list[BarrierScenario]:
    """Read a barrier metadata table into scenarios, one per row."""
    missing = [
        column
        for column in (id_column, pass_u_column, pass_d_column)
        if column not in frame.columns
    ]
    if missing:
        raise InvalidAttribute(
            f"barrier metadata is missing columns {missing}.",
            context={"columns": list(frame.columns)},
        )
    return [
        BarrierScenario(
            barrier_id=barrier,
            pass_u=_coerce_float(pass_u),
            pass_d=_coerce_float(pass_d),
        )
        for barrier, pass_u, pass_d in zip(
            frame[id_column], frame[pass_u_column], frame[pass_d_column]
        )
    ]


def _check_scenario(scenario: BarrierScenario, known: set[str]) -> tuple[float, float]:
    if scenario.barrier_id is None:
        raise ScenarioFailure("scenario has an empty barrier id.")
    if scenario.barrier_id not in known:
        raise ScenarioFailure(
            f"Barrier {scenario.barrier_id!r} not found in the network.",
            context={"barrier_id": scenario.barrier_id},
        )
    return (
        validate_passability(scenario.pass_u, f"pass_u for barrier {scenario.barrier_id!r}"),
        validate_passability(scenario.pass_d, f"pass_d for barrier {scenario.barrier_id!r}"),
    )


def _evaluate(
    graph: Network,
    config: IndexConfig,
    b_matrix: Optional[pd.DataFrame],
    lca: Optional[np.ndarray],
    overrides: dict[str, tuple[float, float]],
    barrier: Optional[str],
) -> _Outcome:
    try:
        matrix = dispersal_matrix(
            graph,
            config,
            b_matrix=b_matrix,
            overrides=overrides,
            lca=lca,
        )
        weights = vertex_values(graph, config.fields.weight)
        catchment = catchment_index(matrix, weights, barrier=barrier)
        reach = None
        if config.scale is IndexScale.REACH:
            reach = reach_index(matrix, weights, config.reach_mode)
    except RiverconnError as exc:
        return _Outcome(error=exc)
    return _Outcome(catchment=catchment, reach=reach)


def _relative_change(
    baseline: Union[float, np.ndarray],
    value: Union[float, np.ndarray],
    mode: PrioritizationMode,
) -> Union[float, np.ndarray]:
    if mode is PrioritizationMode.LEAVE_ONE_OUT:
        delta = value - baseline
    else:
        delta = baseline - value
    with np.errstate(divide="ignore", invalid="ignore"):
        change = 100.0 * np.asarray(delta, dtype=float) / np.asarray(baseline, dtype=float)
    change = np.where(np.asarray(baseline) == 0.0, np.nan, change)
    if np.ndim(change) == 0:
        return float(change)
    return change


def _assign_ranks(rows: list[dict[str, Any]]) -> None:
    ranked = [
        (row["d_index"], position)
        for position, row in enumerate(rows)
        if row["status"] == STATUS_OK and not math.isnan(row["d_index"])
    ]
    ranked.sort(key=lambda item: item[0], reverse=True)
    for rank, (_, position) in enumerate(ranked, start=1):
        rows[position]["rank"] = rank


def _map_outcomes(
    tasks: Sequence[tuple[Any, ...]],
    n_jobs: Optional[int],
    backend: Optional[str],
) -> list[_Outcome]:
    if n_jobs is None or n_jobs == 1 or len(tasks) <= 1:
        return [_evaluate(*task) for task in tasks]
    return Parallel(n_jobs=n_jobs, backend=backend)(delayed(_evaluate)(*task) for task in tasks)


def d_index_calculation(
    graph: Network,
    scenarios: Union[Sequence[BarrierScenario], pd.DataFrame],
    config: Optional[IndexConfig] = None,
    *,
    mode: Union[PrioritizationMode, str] = PrioritizationMode.LEAVE_ONE_OUT,
    n_jobs: Optional[int] = 1,
    backend: Optional[str] = None,
) -> PrioritizationResult:
    """Recompute the index once per barrier scenario and report its change.

    ``leave_one_out`` applies each barrier's updated passability to the
    current network and reports the percentage gain. ``add_one`` starts
    from a network where every listed barrier has its updated passability
    and reports the percentage loss from restoring each barrier's original
    values. B_ij does not depend on passability and is computed once.

    A scenario that cannot be evaluated yields a ``failed`` row carrying the
    reason; the batch always returns one row per scenario in input order.
    """
    config = config or IndexConfig()
    mode = coerce_enum(PrioritizationMode, mode, "mode")
    if n_jobs is not None and (
        isinstance(n_jobs, bool) or not isinstance(n_jobs, int) or n_jobs == 0
    ):
        raise InvalidConfiguration(f"n_jobs must be a non-zero integer; got {n_jobs!r}.")
    if isinstance(scenarios, pd.DataFrame):
        scenarios = scenarios_from_frame(scenarios)
    scenarios = list(scenarios)
    validate_inputs(graph, config)
    if not config.c_ij:
        logger.warning("c_ij is disabled; barrier passability has no effect on the index.")

    known = set(barrier_ids(graph, config.fields))
    checked: list[Union[tuple[float, float], RiverconnError]] = []
    for scenario in scenarios:
        try:
            checked.append(_check_scenario(scenario, known))
        except RiverconnError as exc:
            checked.append(exc)

    base_overrides: dict[str, tuple[float, float]] = {}
    if mode is PrioritizationMode.ADD_ONE:
        for scenario, values in zip(scenarios, checked):
            if not isinstance(values, RiverconnError):
                base_overrides[scenario.barrier_id] = values

    b_matrix = base_functional_matrix(graph, config)
    lca = lowest_common_ancestors(graph) if config.c_ij else None
    baseline = _evaluate(graph, config, b_matrix, lca, base_overrides, None)
    if baseline.error is not None:
        raise baseline.error

    tasks = []
    pending = []
    for position, (scenario, values) in enumerate(zip(scenarios, checked)):
        if isinstance(values, RiverconnError):
            continue
        overrides = dict(base_overrides)
        if mode is PrioritizationMode.LEAVE_ONE_OUT:
            overrides[scenario.barrier_id] = values
        else:
            overrides.pop(scenario.barrier_id, None)
        tasks.append((graph, config, b_matrix, lca, overrides, scenario.barrier_id))
        pending.append(position)

    logger.info(
        "Evaluating %d barrier scenarios (%s, n_jobs=%s); baseline index %.6g",
        len(tasks),
        mode.value,
        n_jobs,
        baseline.catchment.index,
    )
    outcomes: list[Optional[_Outcome]] = [None] * len(scenarios)
    for position, outcome in zip(pending, _map_outcomes(tasks, n_jobs, backend)):
        outcomes[position] = outcome

    rows: list[dict[str, Any]] = []
    reaches: list[Optional[pd.DataFrame]] = []
    for scenario, values, outcome in zip(scenarios, checked, outcomes):
        error = values if isinstance(values, RiverconnError) else outcome.error
        if error is not None:
            failure = error if isinstance(error, ScenarioFailure) else ScenarioFailure(
                get_user_message(error), context=error.context
            )
            log_exception(logger, failure, level=logging.WARNING)
            rows.append(
                ScenarioResult(
                    barrier_id=scenario.barrier_id,
                    status=STATUS_FAILED,
                    reason=get_user_message(failure),
                ).to_row()
            )
            reaches.append(None)
            continue
        catchment = outcome.catchment
        rows.append(
            ScenarioResult(
                barrier_id=scenario.barrier_id,
                status=STATUS_OK,
                index=catchment.index,
                numerator=catchment.numerator,
                denominator=catchment.denominator,
                d_index=_relative_change(baseline.catchment.index, catchment.index, mode),
            ).to_row()
        )
        reach = None
        if outcome.reach is not None:
            reach = outcome.reach.copy()
            reach["d_index"] = _relative_change(
                baseline.reach["index"].to_numpy(), reach["index"].to_numpy(), mode
            )
        reaches.append(reach)

    _assign_ranks(rows)
    results = tuple(
        ScenarioResult(**row, reach=reach) for row, reach in zip(rows, reaches)
    )
    failed = sum(1 for result in results if not result.ok)
    if failed:
        logger.warning("%d of %d barrier scenarios failed", failed, len(results))
    return PrioritizationResult(
        baseline=baseline.catchment,
        mode=mode,
        scale=config.scale,
        scenarios=results,
        baseline_reach=baseline.reach,
    )


def write_prioritization(result: PrioritizationResult, out_dir: Union[str, Path]) -> Path:
    """Persist the scenario table (parquet) and a JSON summary."""
    out_dir = Path(out_dir)
    write_table(result.to_frame(), out_dir / "prioritization.parquet")
    if result.scale is IndexScale.REACH:
        write_table(result.reach_frame(), out_dir / "prioritization_reach.parquet")
    summary = {
        "version": __version__,
        "mode": result.mode.value,
        "scale": result.scale.value,
        "baseline": result.baseline.to_dict(),
        "scenarios": len(result.scenarios),
        "failed": len(result.failures()),
    }
    write_json_atomic(out_dir / "summary.json", summary)
    logger.info("Wrote prioritization results to %s", out_dir)
    return out_dir


__all__ = [
    "BarrierScenario",
    "DEFAULT_ID_COLUMN",
    "DEFAULT_PASS_D_COLUMN",
    "DEFAULT_PASS_U_COLUMN",
    "PrioritizationResult",
    "RESULT_COLUMNS",
    "ScenarioResult",
    "d_index_calculation",
    "scenarios_from_frame",
    "write_prioritization",
]
