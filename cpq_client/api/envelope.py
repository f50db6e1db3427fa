"""Response envelope handling shared by the API clients.

The backend wraps most responses as ``{"success": ..., "data": ...}`` but a
few endpoints still answer with the bare payload, and list endpoints have
used three different shapes over time. Everything here is tolerant of all
of them.
"""

from collections.abc import Mapping
from typing import Any


def unwrap_envelope(body: Any) -> Any:
    """Return ``data`` from a ``{success, data}`` envelope, else the body itself.

    Args:
        body: Decoded JSON body (``None`` for an empty response)

    Returns:
        The enveloped payload, the unchanged body, or ``{}`` for no body
    """
    if body is None:
        return {}
    if isinstance(body, Mapping) and "success" in body and "data" in body:
        return body["data"]
    return body


def ensure_array(value: Any, fallback: list[Any] | None = None) -> list[Any]:
    """Return ``value`` when it is a list, else ``fallback`` (default: a new empty list)."""
    if isinstance(value, list):
        return value
    return fallback if fallback is not None else []


def extract_list(payload: Any, key: str) -> list[Any]:
    """Pull a list out of a bare list, ``{key: [...]}`` or ``{"data": {key: [...]}}``."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, Mapping):
        direct = payload.get(key)
        if isinstance(direct, list):
            return direct
        nested = payload.get("data")
        if isinstance(nested, Mapping) and isinstance(nested.get(key), list):
            return nested[key]
        if isinstance(nested, list):
            return nested
    return []


def extract_api_data(response: Any, data_key: str | None = None) -> Any:
    """Extract the payload of an API response, optionally a named member of it.

    Args:
        response: Decoded response (enveloped, ``data``-wrapped or bare)
        data_key: Member to pull out (e.g. ``"options"``); ``None`` for the whole payload

    Returns:
        The requested member, ``[]`` when a key was requested but is missing,
        or the payload itself
    """
    if not response:
        return [] if data_key else None

    if isinstance(response, Mapping) and response.get("data"):
        data = response["data"]
        if data_key is None:
            return data
        if isinstance(data, Mapping) and data.get(data_key):
            return data[data_key]
        # Enveloped responses fall back to the payload itself
        return data if response.get("success") else []

    if data_key is None:
        return response
    if isinstance(response, Mapping) and response.get(data_key):
        return response[data_key]
    return []


def api_error_message(body: Any, status: int | None = None) -> str:
    """Best human-readable message from an error response body."""
    if isinstance(body, Mapping):
        message = body.get("message")
        if isinstance(message, str) and message:
            return message
        error = body.get("error")
        if isinstance(error, Mapping) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        data = body.get("data")
        if body.get("success") is False and isinstance(data, Mapping) and data.get("message"):
            return str(data["message"])
    if status is not None:
        return f"HTTP {status}"
    return "An unexpected error occurred"


def api_error_code(body: Any) -> str | None:
    """Machine-readable error code from ``{"error": {"code": ...}}``, if any."""
    if isinstance(body, Mapping):
        error = body.get("error")
        if isinstance(error, Mapping) and error.get("code"):
            return str(error["code"])
        if body.get("code"):
            return str(body["code"])
    return None
