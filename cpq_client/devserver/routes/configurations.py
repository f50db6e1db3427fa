"""Session endpoints under ``/api/v2/configurations``."""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Header, status
from pydantic import BaseModel, Field

from cpq_client.devserver.deps import envelope, get_backend, get_owner, session_payload
from cpq_client.devserver.state import BackendError, SessionBackend, StoredSession

router = APIRouter(prefix="/configurations", tags=["configurations"])

Backend = Annotated[SessionBackend, Depends(get_backend)]
SessionToken = Annotated[str | None, Header(alias="X-Session-Token")]


class CreateSessionRequest(BaseModel):
    """Request body for POST /configurations."""

    model_id: str = ""
    name: str = ""
    description: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)


class UpdateSessionRequest(BaseModel):
    """Request body for PUT /configurations/{id}.

    ``action`` may be ``validate``, ``price`` or ``complete``; validation and
    pricing always run, so only ``complete`` changes anything.
    """

    selections: list[dict[str, Any]] | None = None
    metadata: dict[str, Any] | None = None
    action: str | None = None


class SelectionsRequest(BaseModel):
    selections: list[dict[str, Any]] = Field(default_factory=list)


class ExtendRequest(BaseModel):
    days: int = 30


def _update_result(backend: SessionBackend, session: StoredSession) -> dict[str, Any]:
    model = backend.get_model(session.model_id)
    return {
        "configuration": session_payload(backend, session),
        "validation_result": backend.validate(model, session.selections).model_dump(mode="json"),
        "price_breakdown": backend.price(model, session.selections).model_dump(mode="json"),
        "available_options": backend.available_options(model, session.selections),
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_configuration(
    request: CreateSessionRequest,
    backend: Backend,
    owner: Annotated[str, Depends(get_owner)],
) -> dict[str, Any]:
    """Create a session seeded with the model's default selections."""
    if not request.model_id:
        raise BackendError("Model ID is required")
    session = backend.create_session(
        request.model_id,
        owner=owner,
        name=request.name,
        description=request.description,
        metadata=request.metadata,
    )
    return envelope(session_payload(backend, session, include_token=True))


# Declared before /{session_id} so the literal path wins
@router.get("/user-sessions")
async def user_sessions(
    backend: Backend, owner: Annotated[str, Depends(get_owner)]
) -> dict[str, Any]:
    sessions = backend.user_sessions(owner)
    return envelope(
        {
            "sessions": [
                {
                    "id": s.session_id,
                    "model_id": s.model_id,
                    "status": s.status.value,
                    "selection_count": len(s.selections),
                    "created_at": s.created_at.isoformat(),
                    "updated_at": s.updated_at.isoformat(),
                    "expires_at": s.expires_at.isoformat(),
                }
                for s in sessions
            ],
            "count": len(sessions),
        }
    )


@router.get("/{session_id}")
async def get_configuration(
    session_id: str, backend: Backend, session_token: SessionToken = None
) -> dict[str, Any]:
    session = backend.get_session(session_id, session_token)
    return envelope(session_payload(backend, session))


@router.put("/{session_id}")
async def update_configuration(
    session_id: str,
    request: UpdateSessionRequest,
    backend: Backend,
    session_token: SessionToken = None,
) -> dict[str, Any]:
    """Replace selections (when given), then apply the optional action."""
    session = backend.get_session(session_id, session_token)
    if request.selections is not None:
        session = backend.set_selections(
            session_id, request.selections, replace=True, session_token=session_token
        )
    if request.metadata:
        session.metadata.update(request.metadata)
    if request.action == "complete":
        session = backend.complete(session_id, session_token)

    result = _update_result(backend, session)
    result.update(
        {
            "session_id": session.session_id,
            "session_status": session.status.value,
            "expires_at": session.expires_at.isoformat(),
        }
    )
    return envelope(result)


@router.post("/{session_id}/selections")
async def add_selections(
    session_id: str,
    request: SelectionsRequest,
    backend: Backend,
    session_token: SessionToken = None,
) -> dict[str, Any]:
    """Merge selections into the session; answers with the older ``updated_config`` shape."""
    session = backend.set_selections(
        session_id, request.selections, replace=False, session_token=session_token
    )
    result = _update_result(backend, session)
    result["updated_config"] = result.pop("configuration")
    return envelope(result)


@router.post("/{session_id}/validate")
async def validate_configuration(
    session_id: str, backend: Backend, session_token: SessionToken = None
) -> dict[str, Any]:
    session = backend.get_session(session_id, session_token)
    result = backend.validate(backend.get_model(session.model_id), session.selections)
    return envelope({"is_valid": result.is_valid, "result": result.model_dump(mode="json")})


@router.post("/{session_id}/price")
async def calculate_price(
    session_id: str, backend: Backend, session_token: SessionToken = None
) -> dict[str, Any]:
    session = backend.get_session(session_id, session_token)
    result = backend.price(backend.get_model(session.model_id), session.selections)
    return envelope(
        {
            "breakdown": result.model_dump(mode="json"),
            "total": result.total_price,
            "currency": result.currency,
        }
    )


@router.post("/{session_id}/complete")
async def complete_configuration(
    session_id: str, backend: Backend, session_token: SessionToken = None
) -> dict[str, Any]:
    session = backend.complete(session_id, session_token)
    return envelope(
        {"session_id": session.session_id, "status": session.status.value, "completed": True}
    )


@router.post("/{session_id}/extend")
async def extend_configuration(
    session_id: str,
    request: ExtendRequest,
    backend: Backend,
    session_token: SessionToken = None,
) -> dict[str, Any]:
    session = backend.extend(session_id, request.days, session_token)
    return envelope(
        {
            "session_id": session.session_id,
            "extended": True,
            "days": request.days,
            "expires_at": session.expires_at.isoformat(),
        }
    )
