"""Connectivity indices and barrier prioritization for river networks."""

__version__ = "0.1.0"

from riverconn.config import (
    ConfluenceRule,
    Directionality,
    FieldNames,
    IndexConfig,
    IndexScale,
    KernelParams,
    KernelType,
    PrioritizationMode,
    ReachMode,
    load_config,
)
from riverconn.errors import (
    InvalidAttribute,
    InvalidConfiguration,
    InvalidParameter,
    RiverconnError,
    ScenarioFailure,
)
from riverconn.functional import functional_matrix
from riverconn.index import CatchmentIndex, dispersal_matrix, index_calculation
from riverconn.prioritization import (
    BarrierScenario,
    PrioritizationResult,
    d_index_calculation,
    scenarios_from_frame,
    write_prioritization,
)
from riverconn.structural import structural_matrix

__all__ = [
    "__version__",
    "BarrierScenario",
    "CatchmentIndex",
    "ConfluenceRule",
    "Directionality",
    "FieldNames",
    "IndexConfig",
    "IndexScale",
    "InvalidAttribute",
    "InvalidConfiguration",
    "InvalidParameter",
    "KernelParams",
    "KernelType",
    "PrioritizationMode",
    "PrioritizationResult",
    "ReachMode",
    "RiverconnError",
    "ScenarioFailure",
    "d_index_calculation",
    "dispersal_matrix",
    "functional_matrix",
    "index_calculation",
    "load_config",
    "scenarios_from_frame",
    "structural_matrix",
    "write_prioritization",
]
