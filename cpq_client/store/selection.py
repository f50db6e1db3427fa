"""Local selection reconciliation against loaded reference data."""

from collections.abc import Mapping

from cpq_client.models import Group, normalize_selections
from cpq_client.store.model_loader import ModelReference

__all__ = ["apply_selection", "is_single_select", "normalize_selections"]


def is_single_select(group: Group) -> bool:
    """Whether selecting an option in ``group`` clears its siblings."""
    return group.is_single_select


def apply_selection(
    selections: Mapping[str, int],
    reference: ModelReference,
    option_id: str,
    quantity: int,
) -> dict[str, int] | None:
    """Apply one optimistic edit and return the new selections.

    Args:
        selections: Current option_id -> quantity map (not modified)
        reference: Loaded model reference data
        option_id: Option being edited
        quantity: New quantity; <= 0 removes the option

    Returns:
        New selections map, or None when the option or its group is unknown
        (the edit is ignored)
    """
    if not option_id or reference.option(option_id) is None:
        return None
    group = reference.group_for_option(option_id)
    if group is None:
        return None

    updated = dict(selections)
    if quantity > 0:
        if is_single_select(group):
            for sibling in reference.options_in_group(group.id):
                if sibling.id != option_id:
                    updated.pop(sibling.id, None)
        updated[option_id] = quantity
    else:
        updated.pop(option_id, None)
    return updated
