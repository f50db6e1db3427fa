"""Error taxonomy for calls against the configuration backend."""

from typing import Any

from pydantic import BaseModel, Field


class ApiError(Exception):
    """Base class for every failure surfaced by the API clients."""

    default_code: str | None = None

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        code: str | None = None,
        data: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code or self.default_code
        self.data = data


class HttpStatusError(ApiError):
    """Backend answered with a non-2xx status."""

    pass


class NotFoundError(HttpStatusError):
    """Resource (usually a stale session id) does not exist."""

    default_code = "NOT_FOUND"


class AuthenticationError(HttpStatusError):
    """Backend rejected the credentials."""

    default_code = "UNAUTHORIZED"


class RateLimitedError(HttpStatusError):
    """Backend throttled the client."""

    default_code = "RATE_LIMITED"

    def __init__(self, message: str, *, retry_after: str | None = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class RequestTimeoutError(ApiError):
    """Request exceeded the client-side timeout."""

    default_code = "TIMEOUT"


class NetworkError(ApiError):
    """Request never produced an HTTP response."""

    default_code = "NETWORK_ERROR"


class ResponseDecodeError(ApiError):
    """Response body does not match any known shape."""

    default_code = "DECODE_ERROR"


class MissingIdentifierError(ApiError):
    """A session or model id was needed but none is known."""

    default_code = "MISSING_IDENTIFIER"


class StoreError(BaseModel):
    """Structured error captured by the session store for display."""

    message: str
    code: str
    details: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_exception(cls, error: Exception, default_code: str) -> "StoreError":
        """Build a display error, preferring the code the failure carries."""
        if isinstance(error, ApiError):
            details: dict[str, Any] = {"kind": type(error).__name__}
            if error.status is not None:
                details["status"] = error.status
            if error.data is not None:
                details["data"] = error.data
            return cls(
                message=error.message or default_code,
                code=error.code or default_code,
                details=details,
            )
        return cls(
            message=str(error) or default_code,
            code=default_code,
            details={"kind": type(error).__name__},
        )
