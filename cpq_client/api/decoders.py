"""Normalizing decoders - every historical response shape in, one canonical model out.

The rest of the client only ever sees the canonical models; format drift on
the server side is absorbed here.
"""

from collections.abc import Callable, Mapping
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from cpq_client.api.envelope import ensure_array, extract_list
from cpq_client.api.errors import ResponseDecodeError
from cpq_client.models import (
    AvailableOption,
    ConfigurationSession,
    ConflictReport,
    Group,
    ImpactReport,
    Model,
    ModelStatistics,
    Option,
    PricingResult,
    PricingRule,
    PriorityReport,
    QualityReport,
    Rule,
    RuleCheck,
    SelectionUpdate,
    SessionCompletion,
    SessionExtension,
    SessionSummary,
    ValidationResult,
    normalize_selections,
)
from cpq_client.models.common import drop_none

M = TypeVar("M", bound=BaseModel)


def _validate(model: type[M], payload: Any) -> M:
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise ResponseDecodeError(
            f"Unexpected {model.__name__} response shape", data={"errors": e.errors()}
        ) from e


def _validate_list(model: type[M], items: list[Any]) -> list[M]:
    return [_validate(model, item) for item in items if isinstance(item, Mapping)]


def _as_mapping(payload: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(payload, Mapping):
        raise ResponseDecodeError(f"Expected an object for {what}, got {type(payload).__name__}")
    return payload


def decode_session(payload: Any) -> ConfigurationSession:
    """Decode create/get session responses."""
    return _validate(ConfigurationSession, _as_mapping(payload, "session"))


def decode_validation(payload: Any) -> ValidationResult:
    """Decode a bare ValidationResult or the ``{is_valid, result: {...}}`` wrapper."""
    data = _as_mapping(payload, "validation")
    inner = data.get("result")
    if isinstance(inner, Mapping):
        merged = dict(inner)
        merged.setdefault("is_valid", data.get("is_valid"))
        return _validate(ValidationResult, merged)
    return _validate(ValidationResult, data)


def decode_pricing(payload: Any) -> PricingResult:
    """Decode ``{breakdown: {...}}``, a bare PricingResult or ``{total: x}``."""
    data = _as_mapping(payload, "pricing")
    breakdown = data.get("breakdown")
    if isinstance(breakdown, Mapping):
        merged = dict(breakdown)
        if data.get("currency"):
            merged.setdefault("currency", data["currency"])
        if "total_price" not in merged and "total" in data:
            merged["total_price"] = data["total"]
        return _validate(PricingResult, merged)
    return _validate(PricingResult, data)


def _optional(decoder: Callable[[Any], M], payload: Any) -> M | None:
    if isinstance(payload, Mapping) and payload:
        return decoder(payload)
    return None


def decode_selection_update(payload: Any) -> SelectionUpdate:
    """Decode the response of PUT /configurations/{id} and POST .../selections.

    The authoritative selections live under ``configuration`` (or the older
    ``updated_config``); when neither is present, or the configuration carries
    no ``selections``, the field stays ``None`` so callers can tell "server
    did not echo" from "server cleared everything" (an empty list).
    """
    data = _as_mapping(payload, "selection update")
    config = data.get("configuration") or data.get("updated_config")
    selections = None
    is_valid = data.get("is_valid")
    total_price = None
    if isinstance(config, Mapping):
        if config.get("selections") is not None:
            selections = normalize_selections(config["selections"])
        if is_valid is None:
            is_valid = config.get("is_valid")
        total_price = config.get("total_price")

    pricing_payload = data.get("price_breakdown") or data.get("pricing_result")
    return _validate(
        SelectionUpdate,
        {
            "session_id": data.get("session_id"),
            "selections": selections,
            "is_valid": is_valid,
            "total_price": total_price,
            "validation": _optional(decode_validation, data.get("validation_result")),
            "pricing": _optional(decode_pricing, pricing_payload),
            "available_options": _validate_list(
                AvailableOption, ensure_array(data.get("available_options"))
            ),
            "session_status": data.get("session_status"),
            "expires_at": data.get("expires_at"),
        },
    )


def decode_completion(payload: Any) -> SessionCompletion:
    return _validate(SessionCompletion, _as_mapping(payload, "completion"))


def decode_extension(payload: Any) -> SessionExtension:
    return _validate(SessionExtension, _as_mapping(payload, "extension"))


def decode_session_list(payload: Any) -> list[SessionSummary]:
    """Decode the user session listing (``sessions`` or ``configurations`` key)."""
    items = extract_list(payload, "sessions") or extract_list(payload, "configurations")
    return _validate_list(SessionSummary, items)


def decode_model(payload: Any) -> Model:
    return _validate(Model, _as_mapping(payload, "model"))


def decode_groups(payload: Any) -> list[Group]:
    return _validate_list(Group, extract_list(payload, "groups"))


def decode_options(payload: Any) -> list[Option]:
    return _validate_list(Option, extract_list(payload, "options"))


def decode_rules(payload: Any) -> list[Rule]:
    return _validate_list(Rule, extract_list(payload, "rules"))


# Model builder


def _member(payload: Any, key: str, what: str) -> Mapping[str, Any]:
    """The ``key`` member of a mutation response (``{key: {...}, ...}``) or the bare entity."""
    data = _as_mapping(payload, what)
    inner = data.get(key)
    if isinstance(inner, Mapping):
        return inner
    return data


def decode_group(payload: Any) -> Group:
    return _validate(Group, _member(payload, "group", "group"))


def decode_option(payload: Any) -> Option:
    return _validate(Option, _member(payload, "option", "option"))


def decode_rule(payload: Any) -> Rule:
    return _validate(Rule, _member(payload, "rule", "rule"))


def decode_pricing_rule(payload: Any) -> PricingRule:
    return _validate(PricingRule, _member(payload, "pricing_rule", "pricing rule"))


def decode_pricing_rules(payload: Any) -> list[PricingRule]:
    items = extract_list(payload, "pricing_rules") or extract_list(payload, "price_rules")
    return _validate_list(PricingRule, items)


def decode_deleted(payload: Any) -> bool:
    """Whether a DELETE was acknowledged; an empty body counts as success."""
    if isinstance(payload, Mapping) and "deleted" in payload:
        return bool(payload["deleted"])
    return True


def decode_rule_check(payload: Any) -> RuleCheck:
    """Decode ``{is_valid, rule, errors}``; an echoed draft without an id is dropped."""
    data = dict(_as_mapping(payload, "rule validation"))
    rule = data.get("rule")
    if not (isinstance(rule, Mapping) and rule.get("id")):
        data.pop("rule", None)
    data["errors"] = [str(e) for e in ensure_array(data.get("errors"))]
    return _validate(RuleCheck, drop_none(data))


def decode_conflicts(payload: Any) -> ConflictReport:
    """Decode ``{conflicts, conflict_count, severity}`` or a bare conflict list."""
    if isinstance(payload, list):
        payload = {"conflicts": payload}
    return _validate(ConflictReport, _as_mapping(payload, "conflict report"))


def _flatten(payload: Any, key: str, what: str) -> dict[str, Any]:
    """Merge a ``{key: {...}, summary: "..."}`` wrapper into one flat mapping.

    Only a text ``summary`` is kept; the inner statistics object of that name is dropped.
    """
    data = _as_mapping(payload, what)
    inner = data.get(key)
    merged = dict(inner) if isinstance(inner, Mapping) else dict(data)
    if not isinstance(merged.get("summary"), str):
        merged.pop("summary", None)
        if isinstance(data.get("summary"), str):
            merged["summary"] = data["summary"]
    return merged


def decode_impact(payload: Any) -> ImpactReport:
    """Decode the ``{analysis: {...}, summary}`` impact response."""
    merged = _flatten(payload, "analysis", "impact analysis")
    change = merged.get("rule_change")
    if isinstance(change, Mapping) and not merged.get("change_type"):
        merged["change_type"] = change.get("type") or ""
    merged.pop("rule_change", None)
    return _validate(ImpactReport, drop_none(merged))


def decode_quality(payload: Any) -> QualityReport:
    """Decode ``{quality_score, validation: {is_valid, errors, warnings}, recommendations}``."""
    data = dict(_as_mapping(payload, "quality report"))
    validation = data.pop("validation", None)
    if isinstance(validation, Mapping):
        for key in ("is_valid", "errors", "warnings"):
            if key not in data and validation.get(key) is not None:
                data[key] = validation[key]
        if "quality_score" not in data and validation.get("quality_score") is not None:
            data["quality_score"] = validation["quality_score"]
    for key in ("errors", "warnings", "recommendations"):
        data[key] = ensure_array(data.get(key))
    return _validate(QualityReport, drop_none(data))


def decode_statistics(payload: Any) -> ModelStatistics:
    return _validate(ModelStatistics, _as_mapping(payload, "model statistics"))


def decode_priorities(payload: Any) -> PriorityReport:
    """Decode the ``{result: {...}, summary}`` priority response."""
    return _validate(PriorityReport, drop_none(_flatten(payload, "result", "priority report")))
