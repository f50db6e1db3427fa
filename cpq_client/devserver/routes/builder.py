"""Model builder endpoints: catalog maintenance and rule analyses."""

import logging
import uuid
from typing import Annotated, Any, TypeVar

from fastapi import APIRouter, Body, Depends, status
from pydantic import BaseModel, Field, ValidationError

from cpq_client.devserver import analysis
from cpq_client.devserver.deps import envelope, get_backend
from cpq_client.devserver.state import (
    BackendError,
    DuplicateEntityError,
    EntityNotFoundError,
    SessionBackend,
)
from cpq_client.models import Group, Model, Option, PricingRule, Rule

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/models", tags=["model-builder"])

Backend = Annotated[SessionBackend, Depends(get_backend)]
JsonBody = Annotated[dict[str, Any], Body()]

E = TypeVar("E", bound=BaseModel)


class PrioritiesRequest(BaseModel):
    priorities: dict[str, int] = Field(default_factory=dict)


class ImpactRequest(BaseModel):
    change_type: str = ""
    old_rule: dict[str, Any] | None = None
    new_rule: dict[str, Any] | None = None


def _build(kind: type[E], data: dict[str, Any]) -> E:
    try:
        return kind.model_validate(data)
    except ValidationError as e:
        raise BackendError(f"Invalid {kind.__name__.lower()}: {e.errors()[0]['msg']}") from e


def _add(items: list[E], kind: type[E], data: dict[str, Any], prefix: str) -> E:
    data = {**data, "id": data.get("id") or f"{prefix}-{uuid.uuid4().hex[:8]}"}
    if any(getattr(item, "id") == data["id"] for item in items):
        raise DuplicateEntityError(f"{kind.__name__} {data['id']} already exists")
    entity = _build(kind, data)
    items.append(entity)
    return entity


def _index(items: list[E], entity_id: str, kind: type[E]) -> int:
    for i, item in enumerate(items):
        if getattr(item, "id") == entity_id:
            return i
    raise EntityNotFoundError(f"{kind.__name__} {entity_id} not found")


def _update(items: list[E], kind: type[E], entity_id: str, changes: dict[str, Any]) -> E:
    i = _index(items, entity_id, kind)
    merged = {**items[i].model_dump(), **changes, "id": entity_id}
    items[i] = _build(kind, merged)
    return items[i]


def _remove(items: list[E], kind: type[E], entity_id: str) -> E:
    return items.pop(_index(items, entity_id, kind))


def _require_group(model: Model, option: Option) -> None:
    if not any(g.id == option.group_id for g in model.groups):
        raise EntityNotFoundError(f"Group {option.group_id} not found")


# Groups


@router.post("/{model_id}/groups", status_code=status.HTTP_201_CREATED)
async def create_group(model_id: str, payload: JsonBody, backend: Backend) -> dict[str, Any]:
    model = backend.get_model(model_id)
    group = _add(model.groups, Group, payload, "grp")
    logger.info(f"Created group {group.id} on model {model_id}")
    return envelope({"model_id": model_id, "group": group.model_dump(mode="json"), "created": True})


@router.put("/{model_id}/groups/{group_id}")
async def update_group(
    model_id: str, group_id: str, payload: JsonBody, backend: Backend
) -> dict[str, Any]:
    model = backend.get_model(model_id)
    group = _update(model.groups, Group, group_id, payload)
    return envelope({"model_id": model_id, "group": group.model_dump(mode="json"), "updated": True})


@router.delete("/{model_id}/groups/{group_id}")
async def delete_group(model_id: str, group_id: str, backend: Backend) -> dict[str, Any]:
    """Delete a group together with its options."""
    model = backend.get_model(model_id)
    _remove(model.groups, Group, group_id)
    model.options[:] = [o for o in model.options if o.group_id != group_id]
    logger.info(f"Deleted group {group_id} on model {model_id}")
    return envelope({"model_id": model_id, "group_id": group_id, "deleted": True})


# Options


@router.post("/{model_id}/options", status_code=status.HTTP_201_CREATED)
async def create_option(model_id: str, payload: JsonBody, backend: Backend) -> dict[str, Any]:
    model = backend.get_model(model_id)
    _require_group(model, _build(Option, {"id": "-", **payload}))
    option = _add(model.options, Option, payload, "opt")
    return envelope({"model_id": model_id, "option": option.model_dump(mode="json"), "created": True})


@router.put("/{model_id}/options/{option_id}")
async def update_option(
    model_id: str, option_id: str, payload: JsonBody, backend: Backend
) -> dict[str, Any]:
    model = backend.get_model(model_id)
    option = _update(model.options, Option, option_id, payload)
    _require_group(model, option)
    return envelope({"model_id": model_id, "option": option.model_dump(mode="json"), "updated": True})


@router.delete("/{model_id}/options/{option_id}")
async def delete_option(model_id: str, option_id: str, backend: Backend) -> dict[str, Any]:
    model = backend.get_model(model_id)
    _remove(model.options, Option, option_id)
    return envelope({"model_id": model_id, "option_id": option_id, "deleted": True})


# Rules (fixed paths first so they are not captured by /rules/{rule_id})


@router.put("/{model_id}/rules/priorities")
async def update_rule_priorities(
    model_id: str, request: PrioritiesRequest, backend: Backend
) -> dict[str, Any]:
    model = backend.get_model(model_id)
    return envelope(analysis.apply_priorities(model, request.priorities))


@router.post("/{model_id}/rules/validate")
async def validate_rule(model_id: str, payload: JsonBody, backend: Backend) -> dict[str, Any]:
    model = backend.get_model(model_id)
    errors = analysis.check_rule(model, payload)
    return envelope({"is_valid": not errors, "rule": payload, "errors": errors})


@router.post("/{model_id}/rules", status_code=status.HTTP_201_CREATED)
async def add_rule(model_id: str, payload: JsonBody, backend: Backend) -> dict[str, Any]:
    model = backend.get_model(model_id)
    errors = analysis.check_rule(model, payload)
    if errors:
        raise BackendError(errors[0])
    rule = _add(model.rules, Rule, payload, "rule")
    logger.info(f"Added rule {rule.id} on model {model_id}")
    return envelope({"model_id": model_id, "rule": rule.model_dump(mode="json"), "added": True})


@router.put("/{model_id}/rules/{rule_id}")
async def update_rule(
    model_id: str, rule_id: str, payload: JsonBody, backend: Backend
) -> dict[str, Any]:
    model = backend.get_model(model_id)
    rule = _update(model.rules, Rule, rule_id, payload)
    return envelope({"model_id": model_id, "rule": rule.model_dump(mode="json"), "updated": True})


@router.delete("/{model_id}/rules/{rule_id}")
async def delete_rule(model_id: str, rule_id: str, backend: Backend) -> dict[str, Any]:
    model = backend.get_model(model_id)
    _remove(model.rules, Rule, rule_id)
    return envelope({"model_id": model_id, "rule_id": rule_id, "deleted": True})


# Pricing rules


@router.get("/{model_id}/pricing-rules")
async def get_pricing_rules(model_id: str, backend: Backend) -> dict[str, Any]:
    model = backend.get_model(model_id)
    rules = [r.model_dump(mode="json") for r in model.pricing_rules]
    return envelope({"pricing_rules": rules, "count": len(rules)})


@router.post("/{model_id}/pricing-rules", status_code=status.HTTP_201_CREATED)
async def create_pricing_rule(model_id: str, payload: JsonBody, backend: Backend) -> dict[str, Any]:
    model = backend.get_model(model_id)
    rule = _add(model.pricing_rules, PricingRule, payload, "price")
    return envelope(
        {"model_id": model_id, "pricing_rule": rule.model_dump(mode="json"), "created": True}
    )


@router.put("/{model_id}/pricing-rules/{rule_id}")
async def update_pricing_rule(
    model_id: str, rule_id: str, payload: JsonBody, backend: Backend
) -> dict[str, Any]:
    model = backend.get_model(model_id)
    rule = _update(model.pricing_rules, PricingRule, rule_id, payload)
    return envelope(
        {"model_id": model_id, "pricing_rule": rule.model_dump(mode="json"), "updated": True}
    )


@router.delete("/{model_id}/pricing-rules/{rule_id}")
async def delete_pricing_rule(model_id: str, rule_id: str, backend: Backend) -> dict[str, Any]:
    model = backend.get_model(model_id)
    _remove(model.pricing_rules, PricingRule, rule_id)
    return envelope({"model_id": model_id, "rule_id": rule_id, "deleted": True})


# Analysis


@router.post("/{model_id}/conflicts")
async def detect_conflicts(model_id: str, backend: Backend) -> dict[str, Any]:
    return envelope(analysis.detect_conflicts(backend.get_model(model_id)))


@router.post("/{model_id}/impact")
async def analyze_impact(model_id: str, request: ImpactRequest, backend: Backend) -> dict[str, Any]:
    model = backend.get_model(model_id)
    report = analysis.analyze_impact(
        model,
        backend.sessions_for_model(model_id),
        request.change_type,
        request.old_rule,
        request.new_rule,
    )
    return envelope(report)


@router.post("/{model_id}/quality")
async def get_model_quality(model_id: str, backend: Backend) -> dict[str, Any]:
    return envelope(analysis.assess_quality(backend.get_model(model_id)))


@router.get("/{model_id}/statistics")
async def get_model_statistics(model_id: str, backend: Backend) -> dict[str, Any]:
    backend.get_model(model_id)
    return envelope(analysis.model_statistics(backend.sessions_for_model(model_id)))
