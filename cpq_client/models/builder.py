"""Model builder analysis results - rule checks, conflicts, impact, quality."""

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, Field, model_validator

from cpq_client.models.catalog import Rule
from cpq_client.models.common import drop_none


class RuleCheck(BaseModel):
    """Server verdict on a draft rule before it is saved."""

    is_valid: bool = False
    rule: Rule | None = None
    errors: list[str] = Field(default_factory=list)


class RuleConflict(BaseModel):
    """Two or more rules that cannot all hold, or that duplicate each other."""

    conflict_id: str = ""
    conflicting_rules: list[str] = Field(default_factory=list)
    conflict_type: str = ""
    affected_scenarios: list[str] = Field(default_factory=list)
    suggested_resolution: str = ""
    severity: str = "info"

    @model_validator(mode="before")
    @classmethod
    def drop_nulls(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        return drop_none(data)


class ConflictReport(BaseModel):
    """Result of a model-wide conflict scan.

    ``severity`` is the overall rating: ``none``, ``low``, ``medium`` or ``critical``.
    """

    conflicts: list[RuleConflict] = Field(default_factory=list)
    conflict_count: int = 0
    severity: str = "none"

    @model_validator(mode="before")
    @classmethod
    def fill_count(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        normalized = drop_none(data)
        if "conflict_count" not in normalized:
            conflicts = normalized.get("conflicts")
            normalized["conflict_count"] = normalized.get(
                "count", len(conflicts) if isinstance(conflicts, list) else 0
            )
        return normalized

    @property
    def has_critical(self) -> bool:
        return any(c.severity == "critical" for c in self.conflicts)


class ImpactReport(BaseModel):
    """How a proposed rule change affects existing configurations."""

    change_type: str = ""
    total_configurations: int = 0
    affected_configurations: int = 0
    recommended_actions: list[str] = Field(default_factory=list)
    summary: str = ""


class ModelIssue(BaseModel):
    """One finding of a model quality check."""

    id: str = ""
    type: str = ""
    severity: str = "warning"
    message: str = ""
    affected_ids: list[str] = Field(default_factory=list)
    suggestion: str = ""

    @model_validator(mode="before")
    @classmethod
    def accept_prefixed_keys(cls, data: Any) -> Any:
        """Errors arrive as ``error_id``/``error_type``, warnings as ``warning_*``."""
        if not isinstance(data, Mapping):
            return data
        normalized = drop_none(data)
        for prefix in ("error", "warning"):
            if "id" not in normalized and f"{prefix}_id" in normalized:
                normalized["id"] = normalized[f"{prefix}_id"]
            if "type" not in normalized and f"{prefix}_type" in normalized:
                normalized["type"] = normalized[f"{prefix}_type"]
        return normalized


class QualityReport(BaseModel):
    """Model quality score (0-100) with the findings behind it."""

    model_id: str = ""
    quality_score: int = 0
    is_valid: bool = True
    errors: list[ModelIssue] = Field(default_factory=list)
    warnings: list[ModelIssue] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class ModelStatistics(BaseModel):
    """Usage statistics of a model across configuration sessions."""

    configurations_count: int = 0
    success_rate: float = 0.0
    avg_config_time: float = 0.0
    popular_options: list[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def drop_nulls(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        return drop_none(data)


class PriorityReport(BaseModel):
    """Rule execution order after a priority update."""

    total_rules: int = 0
    execution_order: list[str] = Field(default_factory=list)
    conflicts_found: int = 0
    recommendations: list[str] = Field(default_factory=list)
    summary: str = ""
