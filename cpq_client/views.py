"""View-model helpers - plain dicts and strings built from a session store."""

from datetime import datetime
from typing import Any

from cpq_client.store.session_store import ConfigurationSessionStore
from cpq_client.utils.format import format_currency, format_date


def build_selection_summary(store: ConfigurationSessionStore) -> dict[str, Any]:
    """Build the selection summary panel.

    Args:
        store: Session store

    Returns:
        Dict with count, items (one per selected option, grouped by name) and
        the formatted total
    """
    currency = store.pricing_result.currency if store.pricing_result else "USD"
    items = []
    for option in store.selected_options:
        group = store.reference.group_for_option(option.id) if store.reference else None
        quantity = store.selections.get(option.id, 0)
        items.append(
            {
                "option_id": option.id,
                "name": option.name or option.id,
                "group": group.name if group else "",
                "quantity": quantity,
                "unit_price": format_currency(option.base_price, currency),
                "line_total": format_currency(option.base_price * quantity, currency),
            }
        )
    items.sort(key=lambda item: (item["group"], item["name"]))

    return {
        "count": store.selected_count,
        "items": items,
        "total": format_currency(store.total_price, currency),
        "is_valid": store.is_valid,
    }


def build_violation_feed(store: ConfigurationSessionStore) -> list[str]:
    """One line per violation, blocking ones first."""
    ordered = sorted(store.violations, key=lambda v: not v.is_blocking)
    feed = []
    for violation in ordered:
        line = f"[{violation.severity.value}] {violation.message}"
        if violation.suggested_fix:
            line += f" (fix: {violation.suggested_fix})"
        feed.append(line)
    return feed


def build_session_banner(
    store: ConfigurationSessionStore, now: datetime | None = None
) -> dict[str, Any]:
    """Build the session status banner.

    Returns:
        Dict with state, status, session_id, time_remaining, sync label and
        the current error message (or None)
    """
    if store.is_saving:
        sync = "saving"
    elif store.is_dirty:
        sync = "unsaved changes"
    elif store.last_saved is not None:
        sync = f"saved {format_date(store.last_saved)}"
    else:
        sync = "up to date"

    return {
        "state": store.state.value,
        "status": store.session_status.value,
        "session_id": store.session_id,
        "time_remaining": store.session_time_remaining(now),
        "sync": sync,
        "error": store.error.message if store.error else None,
    }
