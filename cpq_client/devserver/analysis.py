"""Model builder analyses for the stub server.

These are heuristics over the catalog and stored sessions. Rule expressions
are only scanned for option ids, never evaluated.
"""

import re
from collections import Counter
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from itertools import combinations
from typing import Any

from cpq_client.devserver.state import BackendError, EntityNotFoundError, StoredSession
from cpq_client.models import Model, RuleType, SessionStatus

_TOKEN = re.compile(r"[A-Za-z0-9_.\-]+")

POPULAR_OPTION_LIMIT = 5


def referenced_options(model: Model, expression: str) -> set[str]:
    """Option ids of ``model`` that appear in ``expression``."""
    option_ids = {o.id for o in model.options}
    return {token for token in _TOKEN.findall(expression or "") if token in option_ids}


def check_rule(model: Model, rule: Mapping[str, Any]) -> list[str]:
    """Problems with a draft rule; empty when it can be saved."""
    errors = []
    expression = str(rule.get("expression") or "").strip()
    if not rule.get("type"):
        errors.append("Rule type is required")
    if not expression:
        errors.append("Rule expression is required")
    elif not referenced_options(model, expression):
        errors.append(f"Expression references no option of model {model.id}")
    return errors


def _overall_severity(conflicts: list[dict[str, Any]]) -> str:
    severities = {c["severity"] for c in conflicts}
    if not conflicts:
        return "none"
    if "critical" in severities:
        return "critical"
    if "warning" in severities:
        return "medium"
    return "low"


def detect_conflicts(model: Model) -> dict[str, Any]:
    """Duplicate expressions and requires/excludes pairs over the same options."""
    active = [r for r in model.rules if r.is_active]
    conflicts: list[dict[str, Any]] = []

    for first, second in combinations(active, 2):
        if "".join(first.expression.split()) == "".join(second.expression.split()):
            conflicts.append(
                {
                    "conflict_id": f"dup-{first.id}-{second.id}",
                    "conflicting_rules": [first.id, second.id],
                    "conflict_type": "duplicate_expression",
                    "affected_scenarios": sorted(referenced_options(model, first.expression)),
                    "suggested_resolution": f"Remove or merge {second.name or second.id}",
                    "severity": "warning",
                }
            )
            continue
        types = {first.rule_type, second.rule_type}
        shared = referenced_options(model, first.expression)
        if (
            types == {RuleType.REQUIRES, RuleType.EXCLUDES}
            and len(shared) >= 2
            and shared == referenced_options(model, second.expression)
        ):
            conflicts.append(
                {
                    "conflict_id": f"req-exc-{first.id}-{second.id}",
                    "conflicting_rules": [first.id, second.id],
                    "conflict_type": "requires_excludes",
                    "affected_scenarios": sorted(shared),
                    "suggested_resolution": "Deactivate one of the rules",
                    "severity": "critical",
                }
            )

    return {
        "conflicts": conflicts,
        "conflict_count": len(conflicts),
        "severity": _overall_severity(conflicts),
        "timestamp": datetime.now(UTC).isoformat(),
    }


def analyze_impact(
    model: Model,
    sessions: Iterable[StoredSession],
    change_type: str,
    old_rule: Mapping[str, Any] | None,
    new_rule: Mapping[str, Any] | None,
) -> dict[str, Any]:
    """Count sessions selecting any option the changed rule mentions."""
    if change_type not in ("add", "update", "delete"):
        raise BackendError("change_type must be add, update or delete")
    rule = new_rule or old_rule or {}
    touched: set[str] = set()
    for candidate in (old_rule, new_rule):
        if candidate:
            touched |= referenced_options(model, str(candidate.get("expression") or ""))

    sessions = list(sessions)
    affected = [s for s in sessions if touched & {k for k, v in s.selections.items() if v > 0}]
    if affected:
        actions = [
            f"Review {len(affected)} configuration(s) selecting {', '.join(sorted(touched))}"
        ]
    else:
        actions = ["No existing configurations are affected"]

    return {
        "analysis": {
            "rule_change": {
                "type": change_type,
                "rule_id": rule.get("id", ""),
                "rule_name": rule.get("name", ""),
            },
            "total_configurations": len(sessions),
            "affected_configurations": len(affected),
            "recommended_actions": actions,
        },
        "summary": (
            f"Impact analysis for {change_type} operation: "
            f"{len(sessions)} configurations tested, {len(affected)} affected"
        ),
        "timestamp": datetime.now(UTC).isoformat(),
    }


def assess_quality(model: Model) -> dict[str, Any]:
    """Structural checks; each error costs 20 points and each warning 5."""
    group_ids = {g.id for g in model.groups}
    errors: list[dict[str, Any]] = []
    warnings: list[dict[str, Any]] = []

    for group in model.groups:
        members = {o.id for o in model.options if o.group_id == group.id}
        if not members:
            errors.append(
                {
                    "error_id": f"empty-{group.id}",
                    "error_type": "empty_group",
                    "severity": "critical",
                    "message": f"Group {group.name or group.id} has no options",
                    "affected_ids": [group.id],
                    "suggestion": f"Add options to {group.name or group.id} or delete it",
                }
            )
        if group.default_option_id and group.default_option_id not in members:
            errors.append(
                {
                    "error_id": f"default-{group.id}",
                    "error_type": "invalid_default",
                    "severity": "critical",
                    "message": f"Default option {group.default_option_id} is not in group {group.id}",
                    "affected_ids": [group.id, group.default_option_id],
                    "suggestion": "Pick a default from the group's own options",
                }
            )
    for option in model.options:
        if option.group_id not in group_ids:
            errors.append(
                {
                    "error_id": f"orphan-{option.id}",
                    "error_type": "orphan_option",
                    "severity": "critical",
                    "message": f"Option {option.id} belongs to unknown group {option.group_id}",
                    "affected_ids": [option.id],
                    "suggestion": "Move the option into an existing group",
                }
            )
    for rule in model.rules:
        if not rule.is_active:
            warnings.append(
                {
                    "warning_id": f"inactive-{rule.id}",
                    "warning_type": "inactive_rule",
                    "message": f"Rule {rule.name or rule.id} is inactive",
                    "affected_ids": [rule.id],
                    "suggestion": "Activate or delete the rule",
                }
            )

    score = max(0, 100 - 20 * len(errors) - 5 * len(warnings))
    return {
        "model_id": model.id,
        "quality_score": score,
        "validation": {
            "is_valid": not errors,
            "errors": errors,
            "warnings": warnings,
            "quality_score": score,
        },
        "recommendations": [item["suggestion"] for item in errors + warnings],
        "timestamp": datetime.now(UTC).isoformat(),
    }


def model_statistics(sessions: Iterable[StoredSession]) -> dict[str, Any]:
    """Session count, completion rate, mean edit span in seconds and most selected options."""
    sessions = list(sessions)
    if not sessions:
        return {
            "configurations_count": 0,
            "success_rate": 0.0,
            "avg_config_time": 0.0,
            "popular_options": [],
        }
    completed = sum(1 for s in sessions if s.status == SessionStatus.COMPLETED)
    spans = [(s.updated_at - s.created_at).total_seconds() for s in sessions]
    counts: Counter[str] = Counter(
        option_id for s in sessions for option_id, qty in s.selections.items() if qty > 0
    )
    return {
        "configurations_count": len(sessions),
        "success_rate": completed / len(sessions),
        "avg_config_time": sum(spans) / len(spans),
        "popular_options": [option_id for option_id, _ in counts.most_common(POPULAR_OPTION_LIMIT)],
    }


def apply_priorities(model: Model, priorities: Mapping[str, int]) -> dict[str, Any]:
    """Set rule priorities and report the resulting order (ascending, ties by position).

    Raises:
        EntityNotFoundError: A rule id is not part of the model.
    """
    rules = {r.id: r for r in model.rules}
    unknown = sorted(set(priorities) - set(rules))
    if unknown:
        raise EntityNotFoundError(f"Unknown rules: {', '.join(unknown)}")
    for rule_id, priority in priorities.items():
        rules[rule_id].priority = int(priority)

    order = sorted(range(len(model.rules)), key=lambda i: (model.rules[i].priority, i))
    by_priority: dict[int, list[str]] = {}
    for rule in model.rules:
        by_priority.setdefault(rule.priority, []).append(rule.id)
    shared = {p: ids for p, ids in by_priority.items() if len(ids) > 1}

    return {
        "result": {
            "total_rules": len(model.rules),
            "execution_order": [model.rules[i].id for i in order],
            "conflicts_found": len(shared),
            "recommendations": [
                f"Rules {', '.join(ids)} share priority {p}" for p, ids in sorted(shared.items())
            ],
        },
        "summary": f"Priority management completed: {len(model.rules)} rules processed",
        "timestamp": datetime.now(UTC).isoformat(),
    }
