"""Violation models - rule failures reported by server-side validation."""

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, Field, model_validator

from cpq_client.models.common import ViolationSeverity, drop_none

BLOCKING_SEVERITIES = frozenset({ViolationSeverity.CRITICAL, ViolationSeverity.ERROR})


class Violation(BaseModel):
    """A rule failure found by the backend for the current selections.

    The backend does not always send a severity; a violation without one
    blocks the configuration, so it decodes as ``error``.
    """

    rule_id: str | None = None
    rule_name: str | None = None
    severity: ViolationSeverity = ViolationSeverity.ERROR
    message: str = ""
    affected_option_ids: list[str] = Field(default_factory=list)
    suggested_fix: str | None = None

    @model_validator(mode="before")
    @classmethod
    def normalize_payload(cls, data: Any) -> Any:
        """Lower-case severities and accept ``affected_options``."""
        if not isinstance(data, Mapping):
            return data
        normalized = drop_none(data)
        severity = normalized.get("severity")
        if isinstance(severity, str):
            severity = severity.strip().lower()
            if severity in ViolationSeverity._value2member_map_:
                normalized["severity"] = severity
            else:
                normalized.pop("severity")
        if "affected_option_ids" not in normalized and "affected_options" in normalized:
            normalized["affected_option_ids"] = normalized["affected_options"]
        if "suggested_fix" not in normalized and "suggestion" in normalized:
            normalized["suggested_fix"] = normalized["suggestion"]
        return normalized

    @property
    def is_blocking(self) -> bool:
        """Critical and error violations make the configuration unusable."""
        return self.severity in BLOCKING_SEVERITIES


class ValidationResult(BaseModel):
    """Outcome of a server-side validation run."""

    is_valid: bool
    violations: list[Violation] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def default_lists(cls, data: Any) -> Any:
        """Null lists come back from the backend when there is nothing to report."""
        if isinstance(data, Mapping):
            return drop_none(data)
        return data
