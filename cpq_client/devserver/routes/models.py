"""Model reference endpoints, served under both API versions."""

from typing import Annotated, Any

from fastapi import APIRouter, Depends

from cpq_client.devserver.deps import envelope, get_backend
from cpq_client.devserver.state import SessionBackend

router = APIRouter(prefix="/models", tags=["models"])

Backend = Annotated[SessionBackend, Depends(get_backend)]


@router.get("/{model_id}")
async def get_model(model_id: str, backend: Backend) -> dict[str, Any]:
    return envelope(backend.get_model(model_id).model_dump(mode="json"))


@router.get("/{model_id}/groups")
async def get_groups(model_id: str, backend: Backend) -> dict[str, Any]:
    model = backend.get_model(model_id)
    return envelope({"groups": [g.model_dump(mode="json") for g in model.groups]})


@router.get("/{model_id}/options")
async def get_options(model_id: str, backend: Backend) -> dict[str, Any]:
    model = backend.get_model(model_id)
    return envelope({"options": [o.model_dump(mode="json") for o in model.options]})


@router.get("/{model_id}/rules")
async def get_rules(model_id: str, backend: Backend) -> dict[str, Any]:
    model = backend.get_model(model_id)
    return envelope({"rules": [r.model_dump(mode="json") for r in model.rules]})
