"""Request dependencies and the response envelope for the stub server."""

from datetime import UTC, datetime
from typing import Annotated, Any

from fastapi import Header, Request

from cpq_client.devserver.state import SessionBackend, StoredSession
from cpq_client.models import Model

ANONYMOUS_OWNER = "default-user"


def envelope(data: Any) -> dict[str, Any]:
    """Wrap a payload as ``{success, data, timestamp}``."""
    return {"success": True, "data": data, "timestamp": datetime.now(UTC).isoformat()}


def error_envelope(code: str, message: str) -> dict[str, Any]:
    return {
        "success": False,
        "error": {"code": code, "message": message},
        "timestamp": datetime.now(UTC).isoformat(),
    }


def get_backend(request: Request) -> SessionBackend:
    backend: SessionBackend = request.app.state.backend
    return backend


async def get_owner(authorization: Annotated[str | None, Header()] = None) -> str:
    """Owner of new sessions: the bearer token, or a shared default user."""
    if authorization and authorization.startswith("Bearer ") and authorization[7:]:
        return authorization[7:]
    return ANONYMOUS_OWNER


def session_payload(
    backend: SessionBackend, session: StoredSession, *, include_token: bool = False
) -> dict[str, Any]:
    """Serialize a session with its cached validation and pricing state."""
    model: Model = backend.get_model(session.model_id)
    validation = backend.validate(model, session.selections)
    pricing = backend.price(model, session.selections)
    payload: dict[str, Any] = {
        "id": session.session_id,
        "session_id": session.session_id,
        "configuration_id": session.session_id,
        "model_id": session.model_id,
        "name": session.name,
        "description": session.description,
        "status": session.status.value,
        "selections": [
            {"option_id": option_id, "quantity": quantity}
            for option_id, quantity in session.selections.items()
        ],
        "is_valid": validation.is_valid,
        "total_price": pricing.total_price,
        "validation_state": validation.model_dump(mode="json"),
        "pricing_state": pricing.model_dump(mode="json"),
        "created_at": session.created_at.isoformat(),
        "updated_at": session.updated_at.isoformat(),
        "expires_at": session.expires_at.isoformat(),
        "metadata": session.metadata,
    }
    if include_token:
        payload["session_token"] = session.session_token
    return payload
