"""Client for the legacy ``/api/v1`` model and pricing endpoints.

Used by the embeddable widget. Unlike the session client it retries
transport failures and 5xx responses with exponential backoff, and keeps
the v1 convention of always returning a ``{"data": ...}`` mapping.
"""

import asyncio
import logging
import random
import string
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any
from urllib.parse import urlencode

import httpx

from cpq_client.api.errors import (
    ApiError,
    AuthenticationError,
    HttpStatusError,
    MissingIdentifierError,
    NetworkError,
    NotFoundError,
    RateLimitedError,
)
from cpq_client.api.session_client import SelectionsInput, format_selections
from cpq_client.api.transport import (
    BaseApiClient,
    RequestLogger,
    RequestMetrics,
    decode_json_body,
)
from cpq_client.config import Settings, get_settings

logger = logging.getLogger(__name__)


def generate_request_id() -> str:
    """Request id of the form ``<epoch ms>-<9 random base36 chars>``."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"{int(time.time() * 1000)}-{suffix}"


class LegacyApiClient(BaseApiClient):
    """Retrying client for the v1 API."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        model_id: str | None = None,
        auth_token: str | None = None,
        timeout_ms: int | None = None,
        retry_attempts: int | None = None,
        retry_delay_ms: int | None = None,
        client: httpx.AsyncClient | None = None,
        metrics: RequestMetrics | None = None,
        request_logger: RequestLogger | None = None,
        sleep_fn: Callable[[float], Awaitable[None]] | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize legacy client.

        Args:
            base_url: v1 API base URL (default: settings.legacy_api_base_url)
            model_id: Model every call operates on
            auth_token: Bearer token
            timeout_ms: Per-attempt timeout
            retry_attempts: Total attempts per request (default: settings)
            retry_delay_ms: Base backoff, doubled after each failed attempt
            client: Optional httpx client (for testing with mocks)
            metrics: Metrics recorder
            request_logger: Structured request logger
            sleep_fn: Injectable sleep function (default: asyncio.sleep)
            settings: Settings override
        """
        settings = settings or get_settings()
        super().__init__(
            base_url or settings.legacy_api_base_url,
            timeout_ms=timeout_ms or settings.request_timeout_ms,
            client=client,
            metrics=metrics,
            request_logger=request_logger,
        )
        self.model_id = model_id
        if auth_token is None and settings.auth_token:
            auth_token = settings.auth_token.get_secret_value()
        self.auth_token = auth_token
        self.retry_attempts = max(1, retry_attempts or settings.legacy_retry_attempts)
        self.retry_delay_ms = (
            retry_delay_ms if retry_delay_ms is not None else settings.legacy_retry_delay_ms
        )
        self._sleep = sleep_fn or asyncio.sleep

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        headers["X-Request-ID"] = generate_request_id()
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"
        return headers

    def _legacy_status_error(self, response: httpx.Response, endpoint: str) -> ApiError:
        status = response.status_code
        if status == 401:
            return AuthenticationError("Authentication required", status=status)
        if status == 404:
            return NotFoundError("Resource not found", status=status)
        if status == 429:
            retry_after = response.headers.get("Retry-After")
            return RateLimitedError(
                f"Rate limited. Retry after {retry_after}s", status=status, retry_after=retry_after
            )
        return self._status_error(response, endpoint)

    @staticmethod
    def _is_retryable(error: ApiError) -> bool:
        if isinstance(error, NetworkError):
            return True
        return isinstance(error, HttpStatusError) and error.status is not None and error.status >= 500

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Send a request with retries.

        Returns:
            The body when it already carries ``data``, else ``{"data": body}``

        Raises:
            AuthenticationError: 401
            NotFoundError: 404
            RateLimitedError: 429
            HttpStatusError: Other non-2xx after retries are exhausted (5xx) or at once (4xx)
            RequestTimeoutError: Timeout (never retried)
            NetworkError: Transport failure after retries are exhausted
        """
        last_error: ApiError | None = None
        for attempt in range(self.retry_attempts):
            try:
                response = await self._send(
                    method, endpoint, json_body=json, headers=headers, attempt=attempt + 1
                )
                if not response.is_success:
                    raise self._legacy_status_error(response, endpoint)
                body = decode_json_body(response)
                if isinstance(body, Mapping) and body.get("data") is not None:
                    return dict(body)
                return {"data": body}
            except ApiError as e:
                if not self._is_retryable(e):
                    raise
                last_error = e

            if attempt < self.retry_attempts - 1:
                delay_ms = self.retry_delay_ms * 2**attempt
                logger.warning(
                    f"Retrying {method} {endpoint} in {delay_ms}ms after: {last_error}",
                    extra={"structured": {"endpoint": endpoint, "attempt": attempt + 1}},
                )
                await self._sleep(delay_ms / 1000)

        assert last_error is not None
        raise last_error

    def _require_model_id(self) -> str:
        if not self.model_id:
            raise MissingIdentifierError("Model ID required", code="MODEL_ID_REQUIRED")
        return self.model_id

    # Model endpoints

    async def get_model(self) -> dict[str, Any]:
        return await self.request("GET", f"/models/{self._require_model_id()}")

    async def get_model_options(self) -> dict[str, Any]:
        return await self.request("GET", f"/models/{self._require_model_id()}/options")

    async def get_model_groups(self) -> dict[str, Any]:
        return await self.request("GET", f"/models/{self._require_model_id()}/groups")

    # Configuration endpoints

    def _selection_body(self, selections: SelectionsInput) -> dict[str, Any]:
        return {"model_id": self.model_id, "selections": format_selections(selections)}

    async def create_configuration(self, selections: SelectionsInput | None = None) -> dict[str, Any]:
        return await self.request("POST", "/configurations", json=self._selection_body(selections or {}))

    async def update_configuration(
        self, config_id: str, selections: SelectionsInput
    ) -> dict[str, Any]:
        return await self.request(
            "PUT", f"/configurations/{config_id}", json=self._selection_body(selections)
        )

    async def validate_configuration(self, selections: SelectionsInput) -> dict[str, Any]:
        return await self.request(
            "POST", "/configurations/validate-selection", json=self._selection_body(selections)
        )

    async def get_configuration(self, config_id: str) -> dict[str, Any]:
        return await self.request("GET", f"/configurations/{config_id}")

    async def delete_configuration(self, config_id: str) -> dict[str, Any]:
        return await self.request("DELETE", f"/configurations/{config_id}")

    # Pricing endpoints

    async def calculate_pricing(
        self, selections: SelectionsInput, context: Mapping[str, Any] | None = None
    ) -> dict[str, Any]:
        body = self._selection_body(selections)
        body["context"] = dict(context or {})
        return await self.request("POST", "/pricing/calculate", json=body)

    async def simulate_pricing(self, scenarios: Sequence[Mapping[str, Any]]) -> dict[str, Any]:
        """Price several selection scenarios in one call."""
        body = {
            "model_id": self.model_id,
            "scenarios": [
                {**scenario, "selections": format_selections(scenario.get("selections") or {})}
                for scenario in scenarios
            ],
        }
        return await self.request("POST", "/pricing/simulate", json=body)

    async def get_volume_tiers(self) -> dict[str, Any]:
        return await self.request("GET", f"/pricing/volume-tiers/{self._require_model_id()}")

    # Analytics endpoints

    async def get_configuration_analytics(self, time_range: str = "30d") -> dict[str, Any]:
        query = urlencode({"model_id": self.model_id or "", "range": time_range})
        return await self.request("GET", f"/analytics/configurations?{query}")

    async def get_pricing_analytics(self, time_range: str = "30d") -> dict[str, Any]:
        query = urlencode({"model_id": self.model_id or "", "range": time_range})
        return await self.request("GET", f"/analytics/pricing?{query}")

    def set_model_id(self, model_id: str) -> None:
        self.model_id = model_id

    def set_auth_token(self, token: str | None) -> None:
        self.auth_token = token
