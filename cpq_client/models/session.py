"""Session models - server-tracked configuration sessions and their updates."""

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from cpq_client.models.catalog import Option
from cpq_client.models.common import SessionStatus, drop_none, normalize_selections
from cpq_client.models.pricing import PricingResult
from cpq_client.models.violations import ValidationResult


def _as_utc(value: datetime | None) -> datetime | None:
    """Naive timestamps from the backend are UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _first_present(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if data.get(key):
            return data[key]
    return None


class ConfigurationSession(BaseModel):
    """A configuration-in-progress tied to one model and one selection set."""

    session_id: str
    session_token: str | None = None
    model_id: str | None = None
    status: SessionStatus = SessionStatus.DRAFT
    expires_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    selections: dict[str, int] = Field(default_factory=dict)
    is_valid: bool | None = None
    total_price: float | None = None
    validation: ValidationResult | None = None
    pricing: PricingResult | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def normalize_payload(cls, data: Any) -> Any:
        """Fold the id aliases and cached-state keys into canonical fields."""
        if not isinstance(data, Mapping):
            return data
        normalized = drop_none(data)
        session_id = _first_present(normalized, "session_id", "id", "configuration_id")
        if session_id is not None:
            normalized["session_id"] = str(session_id)
        normalized["selections"] = normalize_selections(normalized.get("selections"))
        if "validation" not in normalized and isinstance(normalized.get("validation_state"), Mapping):
            normalized["validation"] = normalized["validation_state"]
        if "pricing" not in normalized and isinstance(normalized.get("pricing_state"), Mapping):
            normalized["pricing"] = normalized["pricing_state"]
        if "status" not in normalized and "session_status" in normalized:
            normalized["status"] = normalized["session_status"]
        return normalized

    @field_validator("expires_at", "created_at", "updated_at")
    @classmethod
    def ensure_utc(cls, v: datetime | None) -> datetime | None:
        return _as_utc(v)

    def is_expired(self, now: datetime | None = None) -> bool:
        """Whether ``expires_at`` has passed (sessions without one never expire)."""
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or datetime.now(UTC))

    def is_recoverable(self, now: datetime | None = None) -> bool:
        """A persisted session may be resumed unless abandoned or expired.

        A session without ``expires_at`` cannot be proven live, so it is not
        recoverable.
        """
        if self.status == SessionStatus.ABANDONED or self.expires_at is None:
            return False
        return not self.is_expired(now)


class AvailableOption(BaseModel):
    """Per-option selectability and impact metadata returned with an update."""

    option_id: str
    option: Option | None = None
    status: str | None = None
    is_selectable: bool = True
    can_select: bool | None = None
    selection_method: str | None = None
    requires_deselect: list[str] = Field(default_factory=list)
    impact: str | None = None
    helps_resolve: bool = False
    price: float | None = None
    reason: str | None = None

    @model_validator(mode="before")
    @classmethod
    def normalize_payload(cls, data: Any) -> Any:
        """Options come either nested under ``option`` or flattened."""
        if not isinstance(data, Mapping):
            return data
        normalized = drop_none(data)
        nested = normalized.get("option")
        if isinstance(nested, Mapping):
            normalized.setdefault("option_id", nested.get("id"))
        elif "option_id" not in normalized and "id" in normalized:
            normalized["option_id"] = normalized["id"]
            normalized["option"] = {
                key: value for key, value in normalized.items() if key in Option.model_fields
            }
        if "is_selectable" not in normalized and "can_select" in normalized:
            normalized["is_selectable"] = normalized["can_select"]
        if not isinstance(normalized.get("impact"), str | None):
            normalized["impact"] = str(normalized["impact"])
        return normalized


class SelectionUpdate(BaseModel):
    """Authoritative server state returned after selections change."""

    session_id: str | None = None
    selections: dict[str, int] | None = None
    is_valid: bool | None = None
    total_price: float | None = None
    validation: ValidationResult | None = None
    pricing: PricingResult | None = None
    available_options: list[AvailableOption] = Field(default_factory=list)
    session_status: SessionStatus | None = None
    expires_at: datetime | None = None

    @field_validator("expires_at")
    @classmethod
    def ensure_utc(cls, v: datetime | None) -> datetime | None:
        return _as_utc(v)


class SessionCompletion(BaseModel):
    """Result of finalizing a session."""

    session_id: str | None = None
    status: SessionStatus = SessionStatus.COMPLETED
    completed: bool = True


class SessionExtension(BaseModel):
    """Result of pushing a session's expiry out."""

    session_id: str | None = None
    extended: bool = True
    days: int | None = None
    expires_at: datetime | None = None

    @field_validator("expires_at")
    @classmethod
    def ensure_utc(cls, v: datetime | None) -> datetime | None:
        return _as_utc(v)


class SessionSummary(BaseModel):
    """One row of the current user's session listing."""

    session_id: str
    model_id: str | None = None
    status: SessionStatus = SessionStatus.DRAFT
    selection_count: int = 0
    total_price: float | None = None
    expires_at: datetime | None = None
    updated_at: datetime | None = None

    @model_validator(mode="before")
    @classmethod
    def normalize_payload(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        normalized = drop_none(data)
        session_id = _first_present(normalized, "session_id", "id", "configuration_id")
        if session_id is not None:
            normalized["session_id"] = str(session_id)
        if "status" not in normalized and "session_status" in normalized:
            normalized["status"] = normalized["session_status"]
        return normalized

    @field_validator("expires_at", "updated_at")
    @classmethod
    def ensure_utc(cls, v: datetime | None) -> datetime | None:
        return _as_utc(v)
