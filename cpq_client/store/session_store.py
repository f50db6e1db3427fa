"""Configuration session store - client-side state for one configurator.

Selections are updated optimistically, flushed to the backend after a
debounce window, and then overwritten by the server's authoritative set.
Each flush is numbered; a response is applied only if no newer flush was
issued and no newer local edit happened while it was in flight.

Failures never raise out of the store. They are captured in ``error`` as a
StoreError for the caller to surface.
"""

import logging
from datetime import UTC, datetime
from enum import Enum

from cpq_client.api.errors import ApiError, NotFoundError, StoreError
from cpq_client.api.session_client import SessionApiClient
from cpq_client.api.transport import RequestMetrics
from cpq_client.config import Settings, get_settings
from cpq_client.models import (
    AvailableOption,
    ConfigurationSession,
    Option,
    PricingResult,
    SelectionUpdate,
    SessionCompletion,
    SessionExtension,
    SessionStatus,
    ValidationResult,
    Violation,
)
from cpq_client.store.debounce import Debouncer
from cpq_client.store.model_loader import ModelReference, ModelReferenceLoader
from cpq_client.store.selection import apply_selection

logger = logging.getLogger(__name__)


class StoreState(str, Enum):
    """Lifecycle of a store instance."""

    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


_STATE_FOR_STATUS = {
    SessionStatus.COMPLETED: StoreState.COMPLETED,
    SessionStatus.ABANDONED: StoreState.ABANDONED,
}

_CLOSED_STATES = frozenset({StoreState.COMPLETED, StoreState.ABANDONED})


class ConfigurationSessionStore:
    """Session state for one configurator instance."""

    def __init__(
        self,
        api: SessionApiClient,
        *,
        loader: ModelReferenceLoader | None = None,
        debounce_seconds: float | None = None,
        metrics: RequestMetrics | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize store.

        Args:
            api: Session API client this store talks through
            loader: Reference data loader (default: one built on ``api``)
            debounce_seconds: Flush debounce window (default: settings.selection_debounce_ms)
            metrics: Metrics recorder (optional, defaults to no-op)
            settings: Settings override
        """
        self._settings = settings or get_settings()
        self._api = api
        self._loader = loader or ModelReferenceLoader(api)
        self._metrics = metrics or RequestMetrics()
        if debounce_seconds is None:
            debounce_seconds = self._settings.selection_debounce_ms / 1000
        self._debouncer = Debouncer(debounce_seconds, self.flush_selections)

        self.state = StoreState.UNINITIALIZED
        self.model_id: str | None = None
        self.session_id: str | None = None
        self.session_token: str | None = None
        self.session_status = SessionStatus.DRAFT
        self.expires_at: datetime | None = None
        self.configuration: ConfigurationSession | None = None

        self.reference: ModelReference | None = None
        self.selections: dict[str, int] = {}
        self.validation_result: ValidationResult | None = None
        self.pricing_result: PricingResult | None = None
        self.available_options: list[AvailableOption] = []

        self.is_loading = False
        self.is_dirty = False
        self.last_saved: datetime | None = None
        self.error: StoreError | None = None

        self._flush_seq = 0
        self._edit_version = 0
        self._saving = 0

    # Lifecycle

    async def initialize(self, model_id: str) -> None:
        """Resume the persisted session or start a new one, then load reference data."""
        self.model_id = model_id
        self._api.model_id = model_id
        if not await self.recover_session():
            await self.create_session()
        await self.load_model()

    async def create_session(self, *, keep_selections: bool = False) -> ConfigurationSession | None:
        """Create a session on the backend.

        Its default selections become local state unless ``keep_selections``
        is set, in which case the local selections as of the moment the
        session exists are kept.
        """
        self.is_loading = True
        try:
            session = await self._api.create_session(self.model_id)
        except ApiError as e:
            self._capture(e, "SESSION_CREATE_ERROR")
            return None
        finally:
            self.is_loading = False

        kept = dict(self.selections) if keep_selections else None
        self._apply_session(session)
        if kept is not None:
            self.selections = kept
        logger.info(
            f"Session {session.session_id} created",
            extra={
                "structured": {
                    "session_id": session.session_id,
                    "model_id": self.model_id,
                    "selections": len(self.selections),
                }
            },
        )
        return session

    async def recover_session(self) -> bool:
        """Adopt the persisted session if the backend still considers it live."""
        session = await self._api.recover_session()
        if session is None:
            return False
        if self.model_id and session.model_id and session.model_id != self.model_id:
            logger.info(
                f"Persisted session {session.session_id} belongs to model {session.model_id}, "
                f"not {self.model_id}"
            )
            self._api.clear_session()
            return False
        self._apply_session(session)
        logger.info(f"Session {session.session_id} recovered with {len(self.selections)} selections")
        return True

    async def load_model(self) -> ModelReference | None:
        if not self.model_id:
            return None
        self.is_loading = True
        try:
            self.reference = await self._loader.load(self.model_id)
        except ApiError as e:
            self._capture(e, "MODEL_LOAD_ERROR")
            return None
        finally:
            self.is_loading = False
        return self.reference

    def _apply_session(self, session: ConfigurationSession) -> None:
        self.session_id = session.session_id
        self.session_token = session.session_token or self._api.session_token
        self.session_status = session.status
        self.expires_at = session.expires_at
        self.configuration = session
        self.selections = dict(session.selections)
        self.validation_result = session.validation
        self.pricing_result = session.pricing
        self.state = _STATE_FOR_STATUS.get(session.status, StoreState.ACTIVE)

    # Selections

    def update_selection(self, option_id: str, quantity: int) -> bool:
        """Optimistically change one selection and schedule a debounced flush.

        Must be called from within the running event loop.

        Returns:
            False when the edit was ignored (session completed or abandoned,
            no reference data, or the option or its group is unknown)
        """
        if self.state in _CLOSED_STATES:
            logger.debug(f"Ignoring selection of {option_id}: session is {self.state.value}")
            return False
        if self.reference is None:
            return False
        updated = apply_selection(self.selections, self.reference, option_id, quantity)
        if updated is None:
            logger.debug(f"Ignoring selection of unknown option {option_id}")
            return False

        self.selections = updated
        self.is_dirty = True
        self._edit_version += 1
        self._debouncer.trigger()
        return True

    async def flush_selections(self) -> None:
        """Send the local selections now and adopt the server's answer."""
        await self._flush(allow_recreate=True)

    async def wait_for_sync(self) -> None:
        """Fire any pending debounced flush and wait for all flushes to finish."""
        await self._debouncer.flush()

    async def _flush(self, *, allow_recreate: bool) -> None:
        if not self.session_id:
            return

        self._flush_seq += 1
        seq = self._flush_seq
        edit_version = self._edit_version
        local = dict(self.selections)

        self._saving += 1
        try:
            update = await self._api.update_selections(local, session_id=self.session_id)
        except NotFoundError as e:
            if seq != self._flush_seq:
                logger.info(f"Dropping 404 from superseded flush #{seq}")
                return
            if allow_recreate:
                await self._recreate_session()
            else:
                self._capture(e, "UPDATE_ERROR")
            return
        except ApiError as e:
            if seq != self._flush_seq:
                logger.info(f"Dropping failure from superseded flush #{seq}: {e}")
                return
            self._capture(e, "UPDATE_ERROR")
            return
        finally:
            self._saving -= 1

        if seq != self._flush_seq or edit_version != self._edit_version:
            self._metrics.inc_stale_response()
            logger.info(
                f"Discarding stale response for flush #{seq}",
                extra={
                    "structured": {
                        "seq": seq,
                        "latest_seq": self._flush_seq,
                        "edit_version": edit_version,
                        "latest_edit_version": self._edit_version,
                    }
                },
            )
            return

        self._apply_update(update)

    async def _recreate_session(self) -> None:
        logger.warning(f"Session {self.session_id} no longer exists, starting a new one")
        self._api.clear_session()
        self.session_id = None
        self.session_token = None
        # Local edits, including those made while the failed flush was in flight,
        # are pushed to the new session once
        if await self.create_session(keep_selections=True) is None:
            return
        await self._flush(allow_recreate=False)

    def _apply_update(self, update: SelectionUpdate) -> None:
        if update.selections is not None:
            self.selections = dict(update.selections)
        if update.validation is not None:
            self.validation_result = update.validation
        if update.pricing is not None:
            self.pricing_result = update.pricing
        self.available_options = list(update.available_options)
        if update.session_status is not None:
            self.session_status = update.session_status
        if update.expires_at is not None:
            self.expires_at = update.expires_at
        self.last_saved = datetime.now(UTC)
        self.is_dirty = False
        logger.debug(f"Session {self.session_id} synced: {self.selections}")

    def deselect_unavailable(self, available_options: list[AvailableOption] | None = None) -> bool:
        """Drop selected options the server reports as not selectable.

        Returns:
            True when anything was removed (a flush is then scheduled)
        """
        candidates = available_options if available_options is not None else self.available_options
        removed = [
            item.option_id
            for item in candidates
            if not item.is_selectable and self.selections.get(item.option_id)
        ]
        if not removed:
            return False
        self.selections = {k: v for k, v in self.selections.items() if k not in removed}
        logger.info(f"Deselected unavailable options: {removed}")
        self.is_dirty = True
        self._edit_version += 1
        self._debouncer.trigger()
        return True

    # Session actions

    async def validate_configuration(self) -> ValidationResult | None:
        """Run server-side validation on the synced selections."""
        if not self.session_id:
            return None
        await self.wait_for_sync()
        try:
            result = await self._api.validate_session(self.session_id)
        except ApiError as e:
            self._capture(e, "VALIDATION_ERROR")
            return None
        self.validation_result = result
        return result

    async def calculate_pricing(self) -> PricingResult | None:
        if not self.session_id:
            return None
        await self.wait_for_sync()
        try:
            result = await self._api.calculate_price(self.session_id)
        except ApiError as e:
            self._capture(e, "PRICING_ERROR")
            return None
        self.pricing_result = result
        return result

    async def complete_session(self) -> SessionCompletion | None:
        if not self.session_id:
            return None
        await self.wait_for_sync()
        try:
            result = await self._api.complete_session(self.session_id)
        except ApiError as e:
            self._capture(e, "COMPLETE_ERROR")
            return None
        self.session_status = SessionStatus.COMPLETED
        self.state = StoreState.COMPLETED
        return result

    async def extend_session(self, days: int | None = None) -> SessionExtension | None:
        if not self.session_id:
            return None
        days = days if days is not None else self._settings.session_extend_days
        try:
            result = await self._api.extend_session(days, self.session_id)
        except ApiError as e:
            self._capture(e, "EXTEND_ERROR")
            return None
        if result.expires_at is not None:
            self.expires_at = result.expires_at
        return result

    def check_expiry(self, now: datetime | None = None) -> bool:
        """Move an active session to ``abandoned`` once ``expires_at`` has passed.

        Returns:
            True if the session expired on this check
        """
        if self.state != StoreState.ACTIVE or self.expires_at is None:
            return False
        if self.expires_at > (now or datetime.now(UTC)):
            return False
        self._debouncer.cancel()
        self._api.clear_session()
        self.session_status = SessionStatus.ABANDONED
        self.state = StoreState.ABANDONED
        logger.info(f"Session {self.session_id} expired at {self.expires_at.isoformat()}")
        return True

    # Derived values

    @property
    def is_saving(self) -> bool:
        return self._saving > 0

    @property
    def selected_options(self) -> list[Option]:
        """Options with quantity > 0 that exist in the loaded reference data."""
        if self.reference is None:
            return []
        options = (
            self.reference.option(option_id)
            for option_id, qty in self.selections.items()
            if qty > 0
        )
        return [option for option in options if option is not None]

    @property
    def selected_count(self) -> int:
        return sum(1 for qty in self.selections.values() if qty > 0)

    @property
    def total_price(self) -> float:
        if self.pricing_result is None:
            return 0.0
        return self.pricing_result.total_price

    @property
    def is_valid(self) -> bool:
        """Server verdict; before any validation, valid only with nothing selected."""
        if self.validation_result is not None:
            return self.validation_result.is_valid
        return self.selected_count == 0

    @property
    def violations(self) -> list[Violation]:
        if self.validation_result is None:
            return []
        return self.validation_result.violations

    @property
    def has_active_violations(self) -> bool:
        return any(v.is_blocking for v in self.violations)

    def session_time_remaining(self, now: datetime | None = None) -> str | None:
        """Human-readable time left: ``Expired``, ``N days`` or ``N hours``."""
        if self.expires_at is None:
            return None
        remaining = self.expires_at - (now or datetime.now(UTC))
        if remaining.total_seconds() <= 0:
            return "Expired"
        if remaining.days > 0:
            return f"{remaining.days} days"
        return f"{remaining.seconds // 3600} hours"

    # Utilities

    def _capture(self, error: ApiError, default_code: str) -> None:
        self.error = StoreError.from_exception(error, default_code)
        logger.error(
            f"{default_code}: {self.error.message}",
            extra={"structured": {"code": self.error.code, **self.error.details}},
        )

    def reset(self) -> None:
        """Forget selections and server results; in-flight responses become stale."""
        self._debouncer.cancel()
        self._edit_version += 1
        self.selections = {}
        self.validation_result = None
        self.pricing_result = None
        self.available_options = []
        self.is_dirty = False
        self.error = None

    def clear_error(self) -> None:
        self.error = None

    def clear_session(self) -> None:
        """Drop the session locally and from persistent storage."""
        self._api.clear_session()
        self.session_id = None
        self.session_token = None
        self.session_status = SessionStatus.DRAFT
        self.expires_at = None
        self.configuration = None
        self.state = StoreState.UNINITIALIZED
        self.reset()

    async def aclose(self) -> None:
        """Cancel the pending flush and wait for in-flight ones. The API client stays open."""
        self._debouncer.cancel()
        await self._debouncer.flush()
