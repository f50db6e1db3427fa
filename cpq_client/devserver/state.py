"""In-memory session backend for the stub server.

Applies group cardinality and single-select exclusivity, prices as the sum of
``base_price * quantity`` and never evaluates rule expressions.
"""

import logging
import secrets
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import yaml

from cpq_client.models import (
    Group,
    Model,
    PriceLine,
    PricingResult,
    SessionStatus,
    ValidationResult,
    Violation,
    ViolationSeverity,
    normalize_selections,
)

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).parent / "fixtures" / "demo_model.yaml"

MAX_EXTEND_DAYS = 90


class BackendError(Exception):
    """Failure reported to clients as ``{success: false, error: {code, message}}``."""

    status_code = 400
    code = "BAD_REQUEST"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class SessionNotFoundError(BackendError):
    status_code = 404
    code = "SESSION_NOT_FOUND"


class ModelNotFoundError(BackendError):
    status_code = 404
    code = "MODEL_NOT_FOUND"


class InvalidSelectionError(BackendError):
    code = "INVALID_SELECTION"


class SessionClosedError(BackendError):
    status_code = 409
    code = "SESSION_CLOSED"


class SessionTokenMismatchError(BackendError):
    status_code = 403
    code = "INVALID_SESSION_TOKEN"


class EntityNotFoundError(BackendError):
    """A group, option or rule id that is not part of the model."""

    status_code = 404
    code = "NOT_FOUND"


class DuplicateEntityError(BackendError):
    status_code = 409
    code = "DUPLICATE_ID"


def load_catalog(path: str | Path | None = None) -> dict[str, Model]:
    """Load models from a YAML document with a top-level ``models`` list."""
    with open(path or DEFAULT_CATALOG_PATH) as f:
        data: dict[str, Any] = yaml.safe_load(f) or {}
    models = [Model.model_validate(item) for item in data.get("models") or []]
    return {model.id: model for model in models}


@dataclass
class StoredSession:
    """Server-side record of one configuration session."""

    session_id: str
    session_token: str
    model_id: str
    owner: str
    name: str
    description: str
    created_at: datetime
    updated_at: datetime
    expires_at: datetime
    status: SessionStatus = SessionStatus.DRAFT
    selections: dict[str, int] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)


class SessionBackend:
    """Holds the catalog and every session in memory."""

    def __init__(self, catalog: dict[str, Model], ttl_days: int = 30) -> None:
        self.catalog = catalog
        self.ttl_days = ttl_days
        self._sessions: dict[str, StoredSession] = {}

    # Catalog

    def get_model(self, model_id: str) -> Model:
        model = self.catalog.get(model_id)
        if model is None:
            raise ModelNotFoundError(f"Model {model_id} not found")
        return model

    @staticmethod
    def _group_of(model: Model, option_id: str) -> Group | None:
        option = next((o for o in model.options if o.id == option_id), None)
        if option is None:
            return None
        return next((g for g in model.groups if g.id == option.group_id), None)

    # Sessions

    def create_session(
        self,
        model_id: str,
        *,
        owner: str,
        name: str = "",
        description: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> StoredSession:
        """Create a session seeded with each group's default option."""
        model = self.get_model(model_id)
        now = datetime.now(UTC)
        self.prune(now)
        defaults = {g.default_option_id: 1 for g in model.groups if g.default_option_id}
        if not defaults:
            defaults = {o.id: 1 for o in model.options if o.is_default}

        session = StoredSession(
            session_id=str(uuid.uuid4()),
            session_token=secrets.token_urlsafe(24),
            model_id=model_id,
            owner=owner,
            name=name,
            description=description,
            created_at=now,
            updated_at=now,
            expires_at=now + timedelta(days=self.ttl_days),
            selections=defaults,
            metadata=dict(metadata or {}),
        )
        self._sessions[session.session_id] = session
        return session

    def get_session(self, session_id: str, session_token: str | None = None) -> StoredSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        if session_token and session_token != session.session_token:
            raise SessionTokenMismatchError("Session token does not match session")
        return session

    def delete_session(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None) is None:
            raise SessionNotFoundError(f"Session {session_id} not found")

    def user_sessions(self, owner: str) -> list[StoredSession]:
        return [s for s in self._sessions.values() if s.owner == owner]

    def sessions_for_model(self, model_id: str) -> list[StoredSession]:
        return [s for s in self._sessions.values() if s.model_id == model_id]

    def prune(self, now: datetime | None = None) -> int:
        """Drop abandoned sessions and unfinished sessions past their expiry.

        Completed sessions are kept for ``user_sessions``.

        Returns:
            Number of sessions removed
        """
        now = now or datetime.now(UTC)
        stale = [
            s.session_id
            for s in self._sessions.values()
            if s.status == SessionStatus.ABANDONED
            or (s.status != SessionStatus.COMPLETED and s.expires_at <= now)
        ]
        for session_id in stale:
            del self._sessions[session_id]
        if stale:
            logger.info(f"Pruned {len(stale)} stale sessions")
        return len(stale)

    def expire(self, session_id: str, at: datetime | None = None) -> StoredSession:
        """Force a session's expiry (dev helper for exercising recovery)."""
        session = self.get_session(session_id)
        session.expires_at = at or datetime.now(UTC) - timedelta(seconds=1)
        return session

    def resolve_selections(
        self, model: Model, current: dict[str, int], incoming: Any
    ) -> dict[str, int]:
        """Merge ``incoming`` onto ``current`` in order, enforcing single-select groups.

        Raises:
            InvalidSelectionError: An option is not part of the model.
        """
        resolved = dict(current)
        for option_id, quantity in normalize_selections(incoming).items():
            group = self._group_of(model, option_id)
            if group is None:
                raise InvalidSelectionError(f"Option {option_id} is not part of model {model.id}")
            if group.is_single_select:
                siblings = {o.id for o in model.options if o.group_id == group.id}
                for sibling in siblings - {option_id}:
                    resolved.pop(sibling, None)
            resolved[option_id] = quantity
        return resolved

    def set_selections(
        self, session_id: str, selections: Any, *, replace: bool, session_token: str | None = None
    ) -> StoredSession:
        session = self.get_session(session_id, session_token)
        if session.status in (SessionStatus.COMPLETED, SessionStatus.ABANDONED):
            raise SessionClosedError(f"Session {session_id} is {session.status.value}")
        model = self.get_model(session.model_id)
        base = {} if replace else session.selections
        session.selections = self.resolve_selections(model, base, selections)
        session.updated_at = datetime.now(UTC)
        return session

    def complete(self, session_id: str, session_token: str | None = None) -> StoredSession:
        session = self.get_session(session_id, session_token)
        if session.status == SessionStatus.ABANDONED:
            raise SessionClosedError(f"Session {session_id} is abandoned")
        session.status = SessionStatus.COMPLETED
        session.updated_at = datetime.now(UTC)
        return session

    def extend(self, session_id: str, days: int, session_token: str | None = None) -> StoredSession:
        if days <= 0 or days > MAX_EXTEND_DAYS:
            raise BackendError(f"Days must be between 1 and {MAX_EXTEND_DAYS}")
        session = self.get_session(session_id, session_token)
        base = max(session.expires_at, datetime.now(UTC))
        session.expires_at = base + timedelta(days=days)
        session.updated_at = datetime.now(UTC)
        return session

    # Evaluation

    def validate(self, model: Model, selections: dict[str, int]) -> ValidationResult:
        """Check group min/max cardinality only."""
        violations = []
        for group in model.groups:
            count = sum(
                1 for option in model.options if option.group_id == group.id and selections.get(option.id)
            )
            minimum = max(group.min_selections, 1 if group.is_required else 0)
            if count < minimum:
                violations.append(
                    Violation(
                        rule_id=f"group:{group.id}:min",
                        rule_name=f"{group.name} minimum",
                        severity=ViolationSeverity.ERROR,
                        message=f"{group.name} requires at least {minimum} selection(s)",
                        affected_option_ids=[o.id for o in model.options if o.group_id == group.id],
                        suggested_fix=f"Select an option from {group.name}",
                    )
                )
            if group.max_selections is not None and count > group.max_selections:
                violations.append(
                    Violation(
                        rule_id=f"group:{group.id}:max",
                        rule_name=f"{group.name} maximum",
                        severity=ViolationSeverity.ERROR,
                        message=f"{group.name} allows at most {group.max_selections} selection(s)",
                        affected_option_ids=[
                            o.id for o in model.options if o.group_id == group.id and selections.get(o.id)
                        ],
                    )
                )
        return ValidationResult(is_valid=not violations, violations=violations)

    def price(self, model: Model, selections: dict[str, int]) -> PricingResult:
        """Sum ``base_price * quantity`` over the selected options."""
        lines = []
        for option in model.options:
            quantity = selections.get(option.id, 0)
            if quantity <= 0:
                continue
            group = next((g for g in model.groups if g.id == option.group_id), None)
            lines.append(
                PriceLine(
                    category=group.name if group else "",
                    option_id=option.id,
                    name=option.name,
                    unit_price=option.base_price,
                    quantity=quantity,
                )
            )
        total = sum(line.subtotal for line in lines)
        return PricingResult(total_price=total, base_price=total, line_items=lines)

    def available_options(self, model: Model, selections: dict[str, int]) -> list[dict[str, Any]]:
        """Selectability of every option; single-select siblings of a selection need a swap."""
        available = []
        for option in model.options:
            group = next((g for g in model.groups if g.id == option.group_id), None)
            selected_siblings = [
                o.id
                for o in model.options
                if group and o.group_id == group.id and o.id != option.id and selections.get(o.id)
            ]
            single = bool(group and group.is_single_select)
            available.append(
                {
                    "option": option.model_dump(mode="json"),
                    "is_selectable": option.is_active,
                    "selection_method": "replace" if single and selected_siblings else "add",
                    "requires_deselect": selected_siblings if single else [],
                    "impact": "neutral",
                    "price": option.base_price,
                }
            )
        return available

    def stats(self) -> dict[str, int]:
        counts = {status.value: 0 for status in SessionStatus}
        for session in self._sessions.values():
            counts[session.status.value] += 1
        return {"total_sessions": len(self._sessions), **{f"{k}_sessions": v for k, v in counts.items()}}
