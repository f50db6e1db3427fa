"""Session API client for the ``/api/v2`` configuration endpoints."""

import logging
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

import httpx

from cpq_client.api.decoders import (
    decode_completion,
    decode_extension,
    decode_groups,
    decode_model,
    decode_options,
    decode_pricing,
    decode_rules,
    decode_selection_update,
    decode_session,
    decode_session_list,
    decode_validation,
)
from cpq_client.api.envelope import unwrap_envelope
from cpq_client.api.errors import ApiError, MissingIdentifierError, NotFoundError
from cpq_client.api.transport import (
    BaseApiClient,
    RequestLogger,
    RequestMetrics,
    decode_json_body,
)
from cpq_client.config import Settings, get_settings
from cpq_client.models import (
    ConfigurationSession,
    Group,
    Model,
    Option,
    PricingResult,
    Rule,
    Selection,
    SelectionUpdate,
    SessionCompletion,
    SessionExtension,
    SessionSummary,
    ValidationResult,
)
from cpq_client.storage.redis_store import create_token_store
from cpq_client.storage.tokens import (
    AUTH_TOKEN_KEY,
    SESSION_ID_KEY,
    SESSION_TOKEN_KEY,
    TokenStore,
)

logger = logging.getLogger(__name__)

SelectionsInput = Mapping[str, int] | Sequence[Mapping[str, Any] | Selection]


def format_selections(selections: SelectionsInput) -> list[dict[str, Any]]:
    """Convert selections into the wire list of ``{option_id, quantity}``.

    Mappings drop entries with quantity <= 0; lists pass through as-is.
    """
    if isinstance(selections, Mapping):
        formatted = []
        for option_id, quantity in selections.items():
            try:
                qty = int(quantity)
            except (TypeError, ValueError):
                qty = 1
            if qty > 0:
                formatted.append({"option_id": option_id, "quantity": qty})
        return formatted
    return [
        item.model_dump() if isinstance(item, Selection) else dict(item) for item in selections
    ]


class SessionApiClient(BaseApiClient):
    """Client for session-based configuration against the v2 API.

    Keeps the current session id/token in memory and mirrors them into a
    TokenStore so a later process can recover the session.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        model_id: str | None = None,
        auth_token: str | None = None,
        session_token: str | None = None,
        session_id: str | None = None,
        timeout_ms: int | None = None,
        token_store: TokenStore | None = None,
        client: httpx.AsyncClient | None = None,
        metrics: RequestMetrics | None = None,
        request_logger: RequestLogger | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize session client.

        Explicit arguments win over persisted values, which win over settings.

        Args:
            base_url: v2 API base URL (default: settings.api_base_url)
            model_id: Model used when a call does not name one
            auth_token: Bearer token
            session_token: Session token sent as X-Session-Token
            session_id: Current session id
            timeout_ms: Request timeout (default: settings.request_timeout_ms)
            token_store: Persistence for auth/session identifiers (default: per settings.token_store)
            client: Optional httpx client (for testing with mocks)
            metrics: Metrics recorder
            request_logger: Structured request logger
            settings: Settings override (default: cached settings)
        """
        settings = settings or get_settings()
        super().__init__(
            base_url or settings.api_base_url,
            timeout_ms=timeout_ms or settings.request_timeout_ms,
            client=client,
            metrics=metrics,
            request_logger=request_logger,
        )
        self.token_store: TokenStore = (
            token_store if token_store is not None else create_token_store(settings)
        )
        self.model_id = model_id
        configured_auth = settings.auth_token.get_secret_value() if settings.auth_token else None
        self.auth_token = auth_token or self.token_store.get(AUTH_TOKEN_KEY) or configured_auth
        self.session_token = session_token or self.token_store.get(SESSION_TOKEN_KEY)
        self.session_id = session_id or self.token_store.get(SESSION_ID_KEY)

        logger.info(
            "Session API client initialized",
            extra={
                "structured": {
                    "base_url": self.base_url,
                    "model_id": self.model_id,
                    "has_auth": bool(self.auth_token),
                    "has_session": bool(self.session_id),
                }
            },
        )

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"
        if self.session_token:
            headers["X-Session-Token"] = self.session_token
        return headers

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Send a request and unwrap the ``{success, data}`` envelope.

        Args:
            method: HTTP method
            endpoint: Path below the base URL (e.g. ``/configurations``)
            json: JSON body
            headers: Extra headers

        Returns:
            ``data`` for enveloped bodies, the bare body otherwise, ``{}`` for no body

        Raises:
            NotFoundError: 404 from the backend
            HttpStatusError: Any other non-2xx status
            RequestTimeoutError: Timeout
            NetworkError: Transport failure
        """
        response = await self._send(method, endpoint, json_body=json, headers=headers)
        if not response.is_success:
            raise self._status_error(response, endpoint)
        result = decode_json_body(response)
        logger.debug(f"API response from {endpoint}: {result!r}")
        return unwrap_envelope(result)

    def _require_session_id(self, session_id: str | None) -> str:
        resolved = session_id or self.session_id
        if not resolved:
            raise MissingIdentifierError("Session ID required", code="SESSION_ID_REQUIRED")
        return resolved

    def _require_model_id(self, model_id: str | None) -> str:
        resolved = model_id or self.model_id
        if not resolved:
            raise MissingIdentifierError("Model ID required", code="MODEL_ID_REQUIRED")
        return resolved

    # Session management

    async def create_session(
        self,
        model_id: str | None = None,
        *,
        name: str | None = None,
        description: str | None = None,
    ) -> ConfigurationSession:
        """Create a configuration session and persist its id/token."""
        resolved_model = self._require_model_id(model_id)
        payload = await self.request(
            "POST",
            "/configurations",
            json={
                "model_id": resolved_model,
                "name": name or f"Configuration {datetime.now(UTC).isoformat()}",
                "description": description or "New configuration session",
            },
        )
        session = decode_session(payload)

        if session.session_id:
            self.session_id = session.session_id
            self.token_store.set(SESSION_ID_KEY, session.session_id)
        if session.session_token:
            self.session_token = session.session_token
            self.token_store.set(SESSION_TOKEN_KEY, session.session_token)

        return session

    async def get_session(self, session_id: str | None = None) -> ConfigurationSession:
        sid = self._require_session_id(session_id)
        return decode_session(await self.request("GET", f"/configurations/{sid}"))

    async def update_session(
        self, updates: Mapping[str, Any], session_id: str | None = None
    ) -> SelectionUpdate:
        """PUT arbitrary session fields (selections, metadata, action)."""
        sid = self._require_session_id(session_id)
        payload = await self.request("PUT", f"/configurations/{sid}", json=dict(updates))
        return decode_selection_update(payload)

    async def update_selections(
        self, selections: SelectionsInput, session_id: str | None = None
    ) -> SelectionUpdate:
        """Replace the session's selections."""
        sid = self._require_session_id(session_id)
        payload = await self.request(
            "PUT",
            f"/configurations/{sid}",
            json={"selections": self.format_selections(selections)},
        )
        return decode_selection_update(payload)

    async def add_selections(
        self, selections: SelectionsInput, session_id: str | None = None
    ) -> SelectionUpdate:
        """Append selections to the session."""
        sid = self._require_session_id(session_id)
        payload = await self.request(
            "POST",
            f"/configurations/{sid}/selections",
            json={"selections": self.format_selections(selections)},
        )
        return decode_selection_update(payload)

    async def validate_session(self, session_id: str | None = None) -> ValidationResult:
        sid = self._require_session_id(session_id)
        return decode_validation(await self.request("POST", f"/configurations/{sid}/validate"))

    async def calculate_price(self, session_id: str | None = None) -> PricingResult:
        sid = self._require_session_id(session_id)
        return decode_pricing(await self.request("POST", f"/configurations/{sid}/price"))

    async def complete_session(self, session_id: str | None = None) -> SessionCompletion:
        sid = self._require_session_id(session_id)
        return decode_completion(await self.request("POST", f"/configurations/{sid}/complete"))

    async def extend_session(
        self, days: int = 30, session_id: str | None = None
    ) -> SessionExtension:
        sid = self._require_session_id(session_id)
        payload = await self.request("POST", f"/configurations/{sid}/extend", json={"days": days})
        return decode_extension(payload)

    async def get_user_sessions(self) -> list[SessionSummary]:
        return decode_session_list(await self.request("GET", "/configurations/user-sessions"))

    # Model reference data

    async def get_model(self, model_id: str | None = None) -> Model:
        mid = self._require_model_id(model_id)
        return decode_model(await self.request("GET", f"/models/{mid}"))

    async def get_model_groups(self, model_id: str | None = None) -> list[Group]:
        mid = self._require_model_id(model_id)
        return decode_groups(await self.request("GET", f"/models/{mid}/groups"))

    async def get_model_options(self, model_id: str | None = None) -> list[Option]:
        mid = self._require_model_id(model_id)
        return decode_options(await self.request("GET", f"/models/{mid}/options"))

    async def get_model_rules(self, model_id: str | None = None) -> list[Rule]:
        mid = self._require_model_id(model_id)
        return decode_rules(await self.request("GET", f"/models/{mid}/rules"))

    # Utilities

    @staticmethod
    def format_selections(selections: SelectionsInput) -> list[dict[str, Any]]:
        return format_selections(selections)

    async def recover_session(self) -> ConfigurationSession | None:
        """Resume the persisted session if it is still live.

        Returns:
            The session when it exists, is not abandoned and has not expired;
            otherwise None, after clearing the persisted identifiers.
        """
        session_id = self.token_store.get(SESSION_ID_KEY)
        session_token = self.token_store.get(SESSION_TOKEN_KEY)

        if not session_id:
            return None

        try:
            session = await self.get_session(session_id)
            if session.is_recoverable():
                self.session_id = session_id
                self.session_token = session_token or session.session_token
                return session
            logger.info(f"Persisted session {session_id} is {session.status.value} or expired")
        except NotFoundError:
            logger.info("Session not found, will create new one")
        except ApiError as e:
            logger.error(f"Failed to recover session: {e}")

        self.clear_session()
        return None

    def clear_session(self) -> None:
        """Forget the current session in memory and in the token store."""
        self.session_id = None
        self.session_token = None
        self.token_store.delete(SESSION_ID_KEY)
        self.token_store.delete(SESSION_TOKEN_KEY)

    def set_auth_token(self, token: str | None) -> None:
        """Set (or clear) the bearer token and persist it."""
        self.auth_token = token
        if token:
            self.token_store.set(AUTH_TOKEN_KEY, token)
        else:
            self.token_store.delete(AUTH_TOKEN_KEY)

    # Health

    async def check_health(self) -> Any:
        return await self.request("GET", "/health")

    async def get_status(self) -> Any:
        return await self.request("GET", "/status")
