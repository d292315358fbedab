"""Error hierarchy for riverconn."""

from __future__ import annotations

from typing import Any, Mapping, Optional


class RiverconnError(Exception):
    """Base exception for riverconn failures."""

    def __init__(
        self,
        message: str,
        *,
        user_message: Optional[str] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.user_message = message if user_message is None else user_message
        self.context = dict(context) if context else {}

    def log_message(self) -> str:
        if not self.context:
            return str(self)
        return f"{self}: {self.context}"


class InvalidAttribute(RiverconnError):
    """A requested vertex or edge attribute is missing or has the wrong type."""


class InvalidParameter(RiverconnError):
    """A kernel or passability parameter is missing, out of range, or malformed."""


class InvalidConfiguration(RiverconnError):
    """Inconsistent combination of flags, modes, or config values."""


class ScenarioFailure(RiverconnError):
    """A single barrier scenario could not be evaluated."""


__all__ = [
    "RiverconnError",
    "InvalidAttribute",
    "InvalidParameter",
    "InvalidConfiguration",
    "ScenarioFailure",
]
