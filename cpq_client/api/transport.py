"""Shared HTTP plumbing for the API clients: timeouts, error mapping, instrumentation."""

import json
import logging
import time
from typing import Any

import httpx

from cpq_client.api.envelope import api_error_code, api_error_message
from cpq_client.api.errors import (
    ApiError,
    HttpStatusError,
    NetworkError,
    NotFoundError,
    RequestTimeoutError,
)

logger = logging.getLogger(__name__)


# Metrics interface (implemented by utils.metrics.PrometheusRequestMetrics)
class RequestMetrics:
    """Interface for request metrics."""

    def record_latency(self, method: str, outcome: str, latency_ms: float) -> None:
        """Record request latency."""
        pass

    def inc_error(self, kind: str) -> None:
        """Increment error counter."""
        pass

    def inc_stale_response(self) -> None:
        """Count a discarded out-of-order sync response."""
        pass


# Logging interface (implemented by utils.logging.StructuredRequestLogger)
class RequestLogger:
    """Interface for structured request logging."""

    def log_attempt(
        self,
        method: str,
        endpoint: str,
        attempt: int,
        outcome: str,
        latency_ms: float,
        status: int | None = None,
        error_reason: str | None = None,
    ) -> None:
        """Log one request attempt."""
        pass


def decode_json_body(response: httpx.Response) -> Any:
    """Decode a JSON body; empty or non-JSON bodies decode to None."""
    if not response.content:
        return None
    try:
        return response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None


class BaseApiClient:
    """httpx-based client core shared by the session and legacy clients."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_ms: int,
        client: httpx.AsyncClient | None = None,
        metrics: RequestMetrics | None = None,
        request_logger: RequestLogger | None = None,
    ) -> None:
        """Initialize client core.

        Args:
            base_url: API base including the version prefix (e.g. ``.../api/v2``)
            timeout_ms: Per-request timeout in milliseconds
            client: Optional httpx client (for testing with mock transports)
            metrics: Metrics recorder (optional, defaults to no-op)
            request_logger: Structured logger (optional, defaults to no-op)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout_ms = timeout_ms
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient()
        self._metrics = metrics or RequestMetrics()
        self._request_logger = request_logger or RequestLogger()

    async def __aenter__(self) -> "BaseApiClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying httpx client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    def _url(self, endpoint: str) -> str:
        return f"{self.base_url}{endpoint}"

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    async def _send(
        self,
        method: str,
        endpoint: str,
        *,
        json_body: Any = None,
        headers: dict[str, str] | None = None,
        attempt: int = 1,
    ) -> httpx.Response:
        """Send one request, mapping transport failures onto the error taxonomy.

        Raises:
            RequestTimeoutError: The request exceeded ``timeout_ms``
            NetworkError: No HTTP response was received
        """
        merged_headers = {**self._headers(), **(headers or {})}
        logger.debug(f"API request: {method} {self._url(endpoint)}")
        start = time.monotonic()
        try:
            response = await self._client.request(
                method,
                self._url(endpoint),
                json=json_body,
                headers=merged_headers,
                timeout=self.timeout_ms / 1000,
            )
        except httpx.TimeoutException as e:
            elapsed_ms = (time.monotonic() - start) * 1000
            self._metrics.record_latency(method, "timeout", elapsed_ms)
            self._metrics.inc_error("timeout")
            self._request_logger.log_attempt(
                method, endpoint, attempt, "timeout", elapsed_ms, error_reason="timeout"
            )
            raise RequestTimeoutError("Request timeout") from e
        except httpx.TransportError as e:
            elapsed_ms = (time.monotonic() - start) * 1000
            self._metrics.record_latency(method, "network_error", elapsed_ms)
            self._metrics.inc_error("network")
            self._request_logger.log_attempt(
                method, endpoint, attempt, "network_error", elapsed_ms, error_reason=type(e).__name__
            )
            raise NetworkError(f"Network error calling {endpoint}: {e}") from e

        elapsed_ms = (time.monotonic() - start) * 1000
        outcome = "success" if response.is_success else "http_error"
        self._metrics.record_latency(method, outcome, elapsed_ms)
        self._request_logger.log_attempt(
            method, endpoint, attempt, outcome, elapsed_ms, status=response.status_code
        )
        return response

    def _status_error(self, response: httpx.Response, endpoint: str) -> ApiError:
        """Build the error for a non-2xx response, keeping the server's message."""
        body = decode_json_body(response)
        if body is None:
            body = {"message": response.reason_phrase}
        message = api_error_message(body, response.status_code)
        code = api_error_code(body)
        logger.error(
            f"API error response from {endpoint}: {response.status_code} {message}",
            extra={"structured": {"endpoint": endpoint, "status": response.status_code, "code": code}},
        )
        self._metrics.inc_error(f"http_{response.status_code}")
        error_cls = NotFoundError if response.status_code == 404 else HttpStatusError
        return error_cls(message, status=response.status_code, code=code, data=body)
