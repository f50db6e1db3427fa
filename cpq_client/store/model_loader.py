"""Model reference loader - read-only catalog data for local reconciliation."""

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Protocol

from cpq_client.models import Group, Model, Option, Rule

logger = logging.getLogger(__name__)


class ReferenceSource(Protocol):
    """The subset of SessionApiClient the loader needs."""

    async def get_model(self, model_id: str | None = None) -> Model: ...

    async def get_model_groups(self, model_id: str | None = None) -> list[Group]: ...

    async def get_model_options(self, model_id: str | None = None) -> list[Option]: ...

    async def get_model_rules(self, model_id: str | None = None) -> list[Rule]: ...


@dataclass(frozen=True)
class ModelReference:
    """Immutable snapshot of one model's groups, options and rules.

    Rules keep the order the server returned them in.
    """

    model: Model
    groups: tuple[Group, ...] = ()
    options: tuple[Option, ...] = ()
    rules: tuple[Rule, ...] = ()
    _options_by_id: Mapping[str, Option] = field(init=False, repr=False, compare=False)
    _groups_by_id: Mapping[str, Group] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "_options_by_id", MappingProxyType({o.id: o for o in self.options})
        )
        object.__setattr__(self, "_groups_by_id", MappingProxyType({g.id: g for g in self.groups}))

    @property
    def model_id(self) -> str:
        return self.model.id

    def option(self, option_id: str) -> Option | None:
        return self._options_by_id.get(option_id)

    def group(self, group_id: str) -> Group | None:
        return self._groups_by_id.get(group_id)

    def group_for_option(self, option_id: str) -> Group | None:
        """Group owning an option, by ``group_id`` or by the group's ``option_ids``."""
        option = self.option(option_id)
        if option is not None and option.group_id:
            return self.group(option.group_id)
        for group in self.groups:
            if option_id in group.option_ids:
                return group
        return None

    def options_in_group(self, group_id: str) -> tuple[Option, ...]:
        group = self.group(group_id)
        listed = set(group.option_ids) if group else set()
        return tuple(o for o in self.options if o.group_id == group_id or o.id in listed)


class ModelReferenceLoader:
    """Fetches a model's reference data in parallel, once per session initialization."""

    def __init__(self, api: ReferenceSource) -> None:
        self._api = api

    async def load(self, model_id: str) -> ModelReference:
        """Load model, groups, options and rules concurrently.

        Args:
            model_id: Model to load

        Returns:
            ModelReference snapshot

        Raises:
            ApiError: Any of the four requests failed
        """
        model, groups, options, rules = await asyncio.gather(
            self._api.get_model(model_id),
            self._api.get_model_groups(model_id),
            self._api.get_model_options(model_id),
            self._api.get_model_rules(model_id),
        )

        # Older backends only embed these in the model body
        groups = groups or model.groups
        options = options or model.options
        rules = rules or model.rules

        logger.info(
            f"Model {model_id} loaded",
            extra={
                "structured": {
                    "model_id": model_id,
                    "groups": len(groups),
                    "options": len(options),
                    "rules": len(rules),
                }
            },
        )
        return ModelReference(
            model=model, groups=tuple(groups), options=tuple(options), rules=tuple(rules)
        )
