"""Catalog models - model reference data (groups, options, rules)."""

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, Field, model_validator

from cpq_client.models.common import GROUP_TYPE_ALIASES, GroupType, RuleType, drop_none

# Shorthand rule type names found in older models
RULE_TYPE_ALIASES: dict[str, RuleType] = {
    "validation": RuleType.VALIDATION_RULE,
    "require": RuleType.REQUIRES,
    "exclude": RuleType.EXCLUDES,
    "mutex": RuleType.MUTUAL_EXCLUSIVE,
    "pricing": RuleType.PRICING_RULE,
    "price_rule": RuleType.PRICING_RULE,
}


class Option(BaseModel):
    """A selectable option belonging to exactly one group."""

    id: str
    group_id: str = ""
    name: str = ""
    description: str = ""
    base_price: float = 0.0
    attributes: dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True
    is_default: bool = False
    display_order: int = 0

    @model_validator(mode="before")
    @classmethod
    def normalize_payload(cls, data: Any) -> Any:
        """Older option payloads only carry ``price``."""
        if not isinstance(data, Mapping):
            return data
        normalized = drop_none(data)
        if "base_price" not in normalized and "price" in normalized:
            normalized["base_price"] = normalized["price"]
        return normalized


class Group(BaseModel):
    """A named collection of options with a selection-cardinality policy."""

    id: str
    name: str = ""
    description: str = ""
    type: GroupType = GroupType.MULTI_SELECT
    min_selections: int = 0
    max_selections: int | None = None
    display_order: int = 0
    is_active: bool = True
    is_required: bool = False
    default_option_id: str | None = None
    option_ids: list[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def normalize_type(cls, data: Any) -> Any:
        """Map every historical group type spelling onto GroupType."""
        if not isinstance(data, Mapping):
            return data
        normalized = drop_none(data)
        raw = normalized.get("type") or normalized.get("selection_type")
        if isinstance(raw, GroupType):
            normalized["type"] = raw
        elif isinstance(raw, str) and raw.strip().lower() in GROUP_TYPE_ALIASES:
            normalized["type"] = GROUP_TYPE_ALIASES[raw.strip().lower()]
        else:
            normalized.pop("type", None)
        if normalized.get("max_selections") == 0:
            # 0 is what the backend sends for "no upper bound"
            normalized["max_selections"] = None
        return normalized

    @property
    def is_single_select(self) -> bool:
        """Whether selecting one option clears its siblings."""
        return self.type == GroupType.SINGLE_SELECT


class Rule(BaseModel):
    """A constraint or pricing rule expressed in the backend's rule DSL.

    ``priority`` is carried through untouched; its ordering direction is not
    defined by the backend contract, so rules keep the order the server sent.
    """

    id: str
    name: str = ""
    type: str = RuleType.VALIDATION_RULE.value
    expression: str = ""
    message: str = ""
    priority: int = 0
    is_active: bool = True

    @model_validator(mode="before")
    @classmethod
    def normalize_type(cls, data: Any) -> Any:
        """Fold shorthand rule type names into the canonical values."""
        if not isinstance(data, Mapping):
            return data
        normalized = drop_none(data)
        raw = normalized.get("type")
        if isinstance(raw, RuleType):
            normalized["type"] = raw.value
        elif isinstance(raw, str) and raw.lower() in RULE_TYPE_ALIASES:
            normalized["type"] = RULE_TYPE_ALIASES[raw.lower()].value
        return normalized

    @property
    def rule_type(self) -> RuleType | None:
        """Canonical rule type, or None for types this client does not know."""
        try:
            return RuleType(self.type)
        except ValueError:
            return None


class PricingRule(BaseModel):
    """A price adjustment rule; ``expression`` is arithmetic in the rule DSL."""

    id: str
    name: str = ""
    type: str = ""
    expression: str = ""
    is_active: bool = True
    priority: int = 0

    @model_validator(mode="before")
    @classmethod
    def drop_nulls(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        return drop_none(data)


class Model(BaseModel):
    """A configurable product model."""

    id: str
    name: str = ""
    description: str = ""
    version: str | None = None
    is_active: bool = True
    groups: list[Group] = Field(default_factory=list)
    options: list[Option] = Field(default_factory=list)
    rules: list[Rule] = Field(default_factory=list)
    pricing_rules: list[PricingRule] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def accept_option_groups(cls, data: Any) -> Any:
        """``option_groups`` and ``price_rules`` are older names for ``groups`` and ``pricing_rules``."""
        if not isinstance(data, Mapping):
            return data
        normalized = drop_none(data)
        if not normalized.get("groups") and normalized.get("option_groups"):
            normalized["groups"] = normalized["option_groups"]
        if not normalized.get("pricing_rules") and normalized.get("price_rules"):
            normalized["pricing_rules"] = normalized["price_rules"]
        for key in ("groups", "options", "rules", "pricing_rules"):
            if not isinstance(normalized.get(key), list):
                normalized.pop(key, None)
        if "version" in normalized:
            normalized["version"] = str(normalized["version"])
        return normalized
