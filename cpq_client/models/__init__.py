"""Models package - re-exports for convenience."""

from cpq_client.models.builder import (
    ConflictReport,
    ImpactReport,
    ModelIssue,
    ModelStatistics,
    PriorityReport,
    QualityReport,
    RuleCheck,
    RuleConflict,
)
from cpq_client.models.catalog import Group, Model, Option, PricingRule, Rule
from cpq_client.models.common import (
    GroupType,
    RuleType,
    Selection,
    SessionStatus,
    ViolationSeverity,
    normalize_selections,
)
from cpq_client.models.pricing import PriceAdjustment, PriceLine, PricingResult
from cpq_client.models.session import (
    AvailableOption,
    ConfigurationSession,
    SelectionUpdate,
    SessionCompletion,
    SessionExtension,
    SessionSummary,
)
from cpq_client.models.violations import ValidationResult, Violation

__all__ = [
    # Common
    "GroupType",
    "RuleType",
    "SessionStatus",
    "ViolationSeverity",
    "Selection",
    "normalize_selections",
    # Catalog
    "Model",
    "Group",
    "Option",
    "Rule",
    "PricingRule",
    # Validation
    "ValidationResult",
    "Violation",
    # Pricing
    "PricingResult",
    "PriceLine",
    "PriceAdjustment",
    # Session
    "ConfigurationSession",
    "AvailableOption",
    "SelectionUpdate",
    "SessionCompletion",
    "SessionExtension",
    "SessionSummary",
    # Model builder
    "RuleCheck",
    "RuleConflict",
    "ConflictReport",
    "ImpactReport",
    "ModelIssue",
    "QualityReport",
    "ModelStatistics",
    "PriorityReport",
]
