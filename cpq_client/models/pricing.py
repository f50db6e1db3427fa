"""Pricing models - totals and itemized breakdowns returned by the backend."""

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, Field, model_validator

from cpq_client.models.common import drop_none


class PriceLine(BaseModel):
    """One itemized line of a price breakdown."""

    category: str = ""
    option_id: str | None = None
    name: str = ""
    unit_price: float = 0.0
    quantity: int = 1
    discount: float = 0.0

    @model_validator(mode="before")
    @classmethod
    def normalize_payload(cls, data: Any) -> Any:
        if isinstance(data, Mapping):
            return drop_none(data)
        return data

    @property
    def subtotal(self) -> float:
        """Line total after its discount."""
        return self.unit_price * self.quantity - self.discount


class PriceAdjustment(BaseModel):
    """A discount, surcharge or tier adjustment applied by a pricing rule."""

    rule_id: str | None = None
    rule_name: str | None = None
    type: str = ""
    amount: float = 0.0
    description: str = ""

    @model_validator(mode="before")
    @classmethod
    def normalize_payload(cls, data: Any) -> Any:
        if isinstance(data, Mapping):
            return drop_none(data)
        return data


class PricingResult(BaseModel):
    """Total price plus its itemized breakdown."""

    total_price: float = 0.0
    base_price: float = 0.0
    currency: str = "USD"
    line_items: list[PriceLine] = Field(default_factory=list)
    adjustments: list[PriceAdjustment] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def normalize_payload(cls, data: Any) -> Any:
        """Accept ``items``/``lines`` and a bare ``total``."""
        if not isinstance(data, Mapping):
            return data
        normalized = drop_none(data)
        for key in ("items", "lines"):
            if "line_items" not in normalized and isinstance(normalized.get(key), list):
                normalized["line_items"] = normalized[key]
        if "total_price" not in normalized and "total" in normalized:
            normalized["total_price"] = normalized["total"]
        return normalized
