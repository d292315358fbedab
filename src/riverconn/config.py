"""Configuration structs and closed option enums for the index engine."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, fields as dataclass_fields, replace
from enum import Enum
import logging
from pathlib import Path
from typing import Any, Optional, TypeVar, Union

from riverconn.errors import InvalidConfiguration, InvalidParameter
from riverconn.io_utils import read_yaml_payload

logger = logging.getLogger(__name__)

_E = TypeVar("_E", bound=Enum)


class Directionality(str, Enum):
    SYMMETRIC = "symmetric"
    ASYMMETRIC = "asymmetric"


class KernelType(str, Enum):
    EXPONENTIAL = "exponential"
    THRESHOLD = "threshold"
    LEPTOKURTIC = "leptokurtic"


class IndexScale(str, Enum):
    FULL = "full"
    REACH = "reach"
    SUM = "sum"


class ReachMode(str, Enum):
    TO = "to"
    FROM = "from"


class ConfluenceRule(str, Enum):
    PER_TRAVERSAL = "per_traversal"
    AS_BARRIER = "as_barrier"


class PrioritizationMode(str, Enum):
    LEAVE_ONE_OUT = "leave_one_out"
    ADD_ONE = "add_one"


def coerce_enum(enum_cls: type[_E], value: Any, label: str) -> _E:
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower().replace("-", "_")
        for member in enum_cls:
            if member.value == normalized:
                return member
    options = ", ".join(repr(member.value) for member in enum_cls)
    raise InvalidConfiguration(
        f"{label} must be one of {options}; got {value!r}.",
        context={"field": label},
    )


def _coerce_optional_float(value: Any, label: str) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidParameter(f"'{label}' must be numeric.", context={"field": label})
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise InvalidParameter(
            f"'{label}' must be numeric; got {value!r}.",
            context={"field": label},
        ) from exc


@dataclass(frozen=True)
class FieldNames:
    """Attribute names read from the network."""

    weight: str = "length"
    distance: str = "length"
    pass_u: str = "pass_u"
    pass_d: str = "pass_d"
    link_type: str = "type"
    barrier_id: str = "id_barrier"
    confluence_types: tuple[str, ...] = ("confluence", "joint")

    def __post_init__(self) -> None:
        for name in ("weight", "distance", "pass_u", "pass_d", "link_type", "barrier_id"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise InvalidConfiguration(
                    f"fields.{name} must be a non-empty string.",
                    context={"field": f"fields.{name}"},
                )
        types = self.confluence_types
        if isinstance(types, str):
            types = (types,)
        object.__setattr__(self, "confluence_types", tuple(str(item) for item in types))


@dataclass(frozen=True)
class KernelParams:
    """Dispersal kernel selector and its parameters.

    ``param`` is used in symmetric mode, ``param_u``/``param_d`` in
    asymmetric mode, and ``param_l = (sigma_stat, sigma_mob, p)`` by the
    leptokurtic kernel. Range checks happen in
    :func:`riverconn.functional.validate_kernel`.
    """

    kernel: KernelType = KernelType.EXPONENTIAL
    param: Optional[float] = None
    param_u: Optional[float] = None
    param_d: Optional[float] = None
    param_l: Optional[tuple[float, ...]] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "kernel", coerce_enum(KernelType, self.kernel, "kernel"))
        for name in ("param", "param_u", "param_d"):
            object.__setattr__(self, name, _coerce_optional_float(getattr(self, name), name))
        if self.param_l is not None:
            if isinstance(self.param_l, (str, bytes)) or not isinstance(self.param_l, Sequence):
                raise InvalidParameter(
                    "'param_l' must be a sequence (sigma_stat, sigma_mob, p).",
                    context={"field": "param_l"},
                )
            values = tuple(
                _coerce_optional_float(item, f"param_l[{idx}]")
                for idx, item in enumerate(self.param_l)
            )
            object.__setattr__(self, "param_l", values)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "KernelParams":
        data = dict(payload)
        if "type" in data:
            data.setdefault("kernel", data.pop("type"))
        _reject_unknown(data, cls, "kernel")
        return cls(**data)


@dataclass(frozen=True)
class IndexConfig:
    """Everything an index computation needs besides the network itself."""

    fields: FieldNames = field(default_factory=FieldNames)
    kernel: KernelParams = field(default_factory=KernelParams)
    dir_distance: Directionality = Directionality.SYMMETRIC
    dir_fragmentation: Directionality = Directionality.SYMMETRIC
    pass_confluence: float = 1.0
    confluence_rule: ConfluenceRule = ConfluenceRule.PER_TRAVERSAL
    scale: IndexScale = IndexScale.FULL
    reach_mode: ReachMode = ReachMode.TO
    c_ij: bool = True
    b_ij: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "dir_distance", coerce_enum(Directionality, self.dir_distance, "dir_distance")
        )
        object.__setattr__(
            self,
            "dir_fragmentation",
            coerce_enum(Directionality, self.dir_fragmentation, "dir_fragmentation"),
        )
        object.__setattr__(
            self,
            "confluence_rule",
            coerce_enum(ConfluenceRule, self.confluence_rule, "confluence_rule"),
        )
        object.__setattr__(self, "scale", coerce_enum(IndexScale, self.scale, "scale"))
        object.__setattr__(
            self, "reach_mode", coerce_enum(ReachMode, self.reach_mode, "reach_mode")
        )
        object.__setattr__(
            self,
            "pass_confluence",
            _coerce_optional_float(self.pass_confluence, "pass_confluence"),
        )
        for name in ("c_ij", "b_ij"):
            if not isinstance(getattr(self, name), bool):
                raise InvalidConfiguration(
                    f"{name} must be a boolean; got {getattr(self, name)!r}.",
                    context={"field": name},
                )

    def validate(self) -> None:
        if not self.c_ij and not self.b_ij:
            raise InvalidConfiguration(
                "At least one of c_ij and b_ij must be enabled; "
                "an index without both contributions is undefined.",
                context={"c_ij": self.c_ij, "b_ij": self.b_ij},
            )
        if self.pass_confluence is None or not 0.0 <= self.pass_confluence <= 1.0:
            raise InvalidParameter(
                f"'pass_confluence' must be in [0, 1]; got {self.pass_confluence!r}.",
                context={"field": "pass_confluence"},
            )

    def with_updates(self, **changes: Any) -> "IndexConfig":
        return replace(self, **changes)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "IndexConfig":
        if not isinstance(payload, Mapping):
            raise InvalidConfiguration("index config must be a mapping.")
        data = dict(payload)
        if "index" in data and isinstance(data["index"], Mapping):
            data = dict(data["index"])
        _reject_unknown(data, cls, "index")
        fields_cfg = data.pop("fields", None)
        if fields_cfg is not None:
            if not isinstance(fields_cfg, Mapping):
                raise InvalidConfiguration("fields must be a mapping.")
            fields_cfg = dict(fields_cfg)
            _reject_unknown(fields_cfg, FieldNames, "fields")
            data["fields"] = FieldNames(**fields_cfg)
        kernel_cfg = data.pop("kernel", None)
        if kernel_cfg is not None:
            if isinstance(kernel_cfg, str):
                kernel_cfg = {"kernel": kernel_cfg}
            if not isinstance(kernel_cfg, Mapping):
                raise InvalidConfiguration("kernel must be a mapping or kernel name.")
            data["kernel"] = KernelParams.from_mapping(kernel_cfg)
        return cls(**data)


def _reject_unknown(data: Mapping[str, Any], cls: type, label: str) -> None:
    allowed = {item.name for item in dataclass_fields(cls)}
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise InvalidConfiguration(
            f"Unknown fields in {label} config: {unknown}.",
            context={"allowed": sorted(allowed)},
        )


def load_config(path: Union[str, Path]) -> IndexConfig:
    path = Path(path)
    if not path.exists():
        raise InvalidConfiguration(f"Config not found: {path}")
    try:
        payload = read_yaml_payload(path)
    except (OSError, ValueError) as exc:
        raise InvalidConfiguration(f"Failed to load config from {path}: {exc}") from exc
    logger.debug("Loaded index config from %s", path)
    return IndexConfig.from_mapping(payload)


__all__ = [
    "ConfluenceRule",
    "Directionality",
    "FieldNames",
    "IndexConfig",
    "IndexScale",
    "KernelParams",
    "KernelType",
    "PrioritizationMode",
    "ReachMode",
    "coerce_enum",
    "load_config",
]
