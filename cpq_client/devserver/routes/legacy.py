"""Stateless v1 validation and pricing used by the embeddable widget."""

from typing import Annotated, Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from cpq_client.devserver.deps import envelope, get_backend
from cpq_client.devserver.state import BackendError, SessionBackend

router = APIRouter(tags=["legacy"])

Backend = Annotated[SessionBackend, Depends(get_backend)]


class LegacySelectionRequest(BaseModel):
    """Body shared by validate-selection and pricing/calculate."""

    model_id: str | None = None
    selections: list[dict[str, Any]] = Field(default_factory=list)
    context: dict[str, Any] = Field(default_factory=dict)


def _resolve(backend: SessionBackend, request: LegacySelectionRequest) -> tuple[Any, dict[str, int]]:
    if not request.model_id:
        raise BackendError("Model ID is required")
    model = backend.get_model(request.model_id)
    return model, backend.resolve_selections(model, {}, request.selections)


@router.post("/configurations/validate-selection")
async def validate_selection(request: LegacySelectionRequest, backend: Backend) -> dict[str, Any]:
    model, selections = _resolve(backend, request)
    return envelope(backend.validate(model, selections).model_dump(mode="json"))


@router.post("/pricing/calculate")
async def calculate_pricing(request: LegacySelectionRequest, backend: Backend) -> dict[str, Any]:
    model, selections = _resolve(backend, request)
    return envelope(backend.price(model, selections).model_dump(mode="json"))
