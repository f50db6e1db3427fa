"""Common types and enums shared across all models."""

from collections.abc import Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator


class GroupType(str, Enum):
    """Selection cardinality policy of an option group."""

    SINGLE_SELECT = "single_select"
    MULTI_SELECT = "multi_select"
    OPTIONAL = "optional"


# Spellings the backend and older model builders have used for group types
GROUP_TYPE_ALIASES: dict[str, GroupType] = {
    "single_select": GroupType.SINGLE_SELECT,
    "single-select": GroupType.SINGLE_SELECT,
    "single": GroupType.SINGLE_SELECT,
    "single_required": GroupType.SINGLE_SELECT,
    "radio": GroupType.SINGLE_SELECT,
    "dropdown": GroupType.SINGLE_SELECT,
    "multi_select": GroupType.MULTI_SELECT,
    "multi-select": GroupType.MULTI_SELECT,
    "multi": GroupType.MULTI_SELECT,
    "multiple": GroupType.MULTI_SELECT,
    "checkbox": GroupType.MULTI_SELECT,
    "optional": GroupType.OPTIONAL,
}


class RuleType(str, Enum):
    """Rule categories understood by the backend."""

    VALIDATION_RULE = "validation_rule"
    REQUIRES = "requires"
    EXCLUDES = "excludes"
    MUTUAL_EXCLUSIVE = "mutual_exclusive"
    GROUP_LIMIT = "group_limit"
    PRICING_RULE = "pricing_rule"


class SessionStatus(str, Enum):
    """Server-side lifecycle status of a configuration session."""

    DRAFT = "draft"
    VALIDATED = "validated"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class ViolationSeverity(str, Enum):
    """Severity levels reported for rule violations."""

    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


def drop_none(data: Mapping[str, Any]) -> dict[str, Any]:
    """Copy a payload without null values so field defaults apply."""
    return {key: value for key, value in data.items() if value is not None}


def _coerce_quantity(raw: Any) -> int:
    """Parse a quantity the way the backend echoes it; unparseable means 1."""
    if raw is None:
        return 1
    try:
        return int(raw)
    except (TypeError, ValueError):
        return 1


def normalize_selections(raw: Any) -> dict[str, int]:
    """Normalize any historical selections shape into an option_id -> quantity map.

    Accepts a list of ``{option_id, quantity}`` (or ``{OptionID, Quantity}``)
    items, or a plain ``{option_id: quantity}`` mapping. Entries with a
    quantity <= 0 are dropped.
    """
    result: dict[str, int] = {}
    if raw is None:
        return result

    if isinstance(raw, Mapping):
        items: list[tuple[Any, Any]] = list(raw.items())
    elif isinstance(raw, list):
        items = []
        for entry in raw:
            if isinstance(entry, Selection):
                items.append((entry.option_id, entry.quantity))
            elif isinstance(entry, Mapping):
                option_id = entry.get("option_id") or entry.get("OptionID")
                quantity = entry.get("quantity", entry.get("Quantity"))
                items.append((option_id, quantity))
    else:
        return result

    for option_id, quantity in items:
        if not option_id:
            continue
        qty = _coerce_quantity(quantity)
        if qty > 0:
            result[str(option_id)] = qty
    return result


class Selection(BaseModel):
    """A chosen option and its quantity within a session."""

    option_id: str
    quantity: int = Field(1, ge=0)

    @model_validator(mode="before")
    @classmethod
    def accept_legacy_keys(cls, data: Any) -> Any:
        """Accept the PascalCase keys some endpoints still emit."""
        if isinstance(data, Mapping) and "option_id" not in data and "OptionID" in data:
            return {
                "option_id": data["OptionID"],
                "quantity": _coerce_quantity(data.get("Quantity")),
            }
        return data
