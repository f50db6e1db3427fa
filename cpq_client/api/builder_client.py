"""Client for the model builder endpoints under ``/api/v1/models/{id}``.

Covers group, option, rule and pricing-rule maintenance plus the server-side
analyses (rule validation, conflict detection, impact analysis, quality and
usage statistics). Every response goes through the normalizing decoders.
"""

import logging
from collections.abc import Mapping
from typing import Any

import httpx
from pydantic import BaseModel

from cpq_client.api.decoders import (
    decode_conflicts,
    decode_deleted,
    decode_group,
    decode_groups,
    decode_impact,
    decode_option,
    decode_options,
    decode_pricing_rule,
    decode_pricing_rules,
    decode_priorities,
    decode_quality,
    decode_rule,
    decode_rule_check,
    decode_rules,
    decode_statistics,
)
from cpq_client.api.envelope import unwrap_envelope
from cpq_client.api.errors import MissingIdentifierError
from cpq_client.api.legacy_client import generate_request_id
from cpq_client.api.transport import (
    BaseApiClient,
    RequestLogger,
    RequestMetrics,
    decode_json_body,
)
from cpq_client.config import Settings, get_settings
from cpq_client.models import (
    ConflictReport,
    Group,
    ImpactReport,
    ModelStatistics,
    Option,
    PricingRule,
    PriorityReport,
    QualityReport,
    Rule,
    RuleCheck,
)

logger = logging.getLogger(__name__)

Payload = Mapping[str, Any] | BaseModel


def _body(data: Payload) -> dict[str, Any]:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json", exclude_none=True)
    return dict(data)


class ModelBuilderApiClient(BaseApiClient):
    """Model maintenance and analysis against the v1 API."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        model_id: str | None = None,
        auth_token: str | None = None,
        timeout_ms: int | None = None,
        client: httpx.AsyncClient | None = None,
        metrics: RequestMetrics | None = None,
        request_logger: RequestLogger | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize model builder client.

        Args:
            base_url: v1 API base URL (default: settings.legacy_api_base_url)
            model_id: Model used when a call does not name one
            auth_token: Bearer token (default: settings.auth_token)
            timeout_ms: Request timeout (default: settings.request_timeout_ms)
            client: Optional httpx client (for testing with mocks)
            metrics: Metrics recorder
            request_logger: Structured request logger
            settings: Settings override
        """
        settings = settings or get_settings()
        super().__init__(
            base_url or settings.legacy_api_base_url,
            timeout_ms=timeout_ms or settings.request_timeout_ms,
            client=client,
            metrics=metrics,
            request_logger=request_logger,
        )
        self.model_id = model_id
        if auth_token is None and settings.auth_token:
            auth_token = settings.auth_token.get_secret_value()
        self.auth_token = auth_token

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        headers["X-Request-ID"] = generate_request_id()
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"
        return headers

    async def request(self, method: str, endpoint: str, *, json: Any = None) -> Any:
        """Send one request and unwrap the envelope.

        Raises:
            NotFoundError: 404 (unknown model, group, option or rule)
            HttpStatusError: Any other non-2xx status
            RequestTimeoutError: Timeout
            NetworkError: Transport failure
        """
        response = await self._send(method, endpoint, json_body=json)
        if not response.is_success:
            raise self._status_error(response, endpoint)
        return unwrap_envelope(decode_json_body(response))

    def _model_path(self, model_id: str | None) -> str:
        resolved = model_id or self.model_id
        if not resolved:
            raise MissingIdentifierError("Model ID required", code="MODEL_ID_REQUIRED")
        return f"/models/{resolved}"

    # Groups

    async def get_groups(self, model_id: str | None = None) -> list[Group]:
        return decode_groups(await self.request("GET", f"{self._model_path(model_id)}/groups"))

    async def create_group(self, group: Payload, model_id: str | None = None) -> Group:
        path = f"{self._model_path(model_id)}/groups"
        created = decode_group(await self.request("POST", path, json=_body(group)))
        logger.info(f"Created group {created.id} on {path}")
        return created

    async def update_group(
        self, group_id: str, changes: Payload, model_id: str | None = None
    ) -> Group:
        path = f"{self._model_path(model_id)}/groups/{group_id}"
        return decode_group(await self.request("PUT", path, json=_body(changes)))

    async def delete_group(self, group_id: str, model_id: str | None = None) -> bool:
        path = f"{self._model_path(model_id)}/groups/{group_id}"
        return decode_deleted(await self.request("DELETE", path))

    # Options

    async def get_options(self, model_id: str | None = None) -> list[Option]:
        return decode_options(await self.request("GET", f"{self._model_path(model_id)}/options"))

    async def create_option(self, option: Payload, model_id: str | None = None) -> Option:
        path = f"{self._model_path(model_id)}/options"
        created = decode_option(await self.request("POST", path, json=_body(option)))
        logger.info(f"Created option {created.id} on {path}")
        return created

    async def update_option(
        self, option_id: str, changes: Payload, model_id: str | None = None
    ) -> Option:
        path = f"{self._model_path(model_id)}/options/{option_id}"
        return decode_option(await self.request("PUT", path, json=_body(changes)))

    async def delete_option(self, option_id: str, model_id: str | None = None) -> bool:
        path = f"{self._model_path(model_id)}/options/{option_id}"
        return decode_deleted(await self.request("DELETE", path))

    # Rules

    async def get_rules(self, model_id: str | None = None) -> list[Rule]:
        return decode_rules(await self.request("GET", f"{self._model_path(model_id)}/rules"))

    async def add_rule(self, rule: Payload, model_id: str | None = None) -> Rule:
        path = f"{self._model_path(model_id)}/rules"
        created = decode_rule(await self.request("POST", path, json=_body(rule)))
        logger.info(f"Added rule {created.id} on {path}")
        return created

    async def update_rule(self, rule_id: str, changes: Payload, model_id: str | None = None) -> Rule:
        """Partially update a rule; fields absent from ``changes`` keep their values."""
        path = f"{self._model_path(model_id)}/rules/{rule_id}"
        return decode_rule(await self.request("PUT", path, json=_body(changes)))

    async def delete_rule(self, rule_id: str, model_id: str | None = None) -> bool:
        path = f"{self._model_path(model_id)}/rules/{rule_id}"
        return decode_deleted(await self.request("DELETE", path))

    async def validate_rule(self, rule: Payload, model_id: str | None = None) -> RuleCheck:
        """Check a draft rule without saving it."""
        path = f"{self._model_path(model_id)}/rules/validate"
        return decode_rule_check(await self.request("POST", path, json=_body(rule)))

    async def update_rule_priorities(
        self, priorities: Mapping[str, int], model_id: str | None = None
    ) -> PriorityReport:
        """Set rule priorities by rule id and return the resulting execution order."""
        path = f"{self._model_path(model_id)}/rules/priorities"
        payload = await self.request("PUT", path, json={"priorities": dict(priorities)})
        return decode_priorities(payload)

    # Pricing rules

    async def get_pricing_rules(self, model_id: str | None = None) -> list[PricingRule]:
        path = f"{self._model_path(model_id)}/pricing-rules"
        return decode_pricing_rules(await self.request("GET", path))

    async def create_pricing_rule(
        self, rule: Payload, model_id: str | None = None
    ) -> PricingRule:
        path = f"{self._model_path(model_id)}/pricing-rules"
        return decode_pricing_rule(await self.request("POST", path, json=_body(rule)))

    async def update_pricing_rule(
        self, rule_id: str, changes: Payload, model_id: str | None = None
    ) -> PricingRule:
        path = f"{self._model_path(model_id)}/pricing-rules/{rule_id}"
        return decode_pricing_rule(await self.request("PUT", path, json=_body(changes)))

    async def delete_pricing_rule(self, rule_id: str, model_id: str | None = None) -> bool:
        path = f"{self._model_path(model_id)}/pricing-rules/{rule_id}"
        return decode_deleted(await self.request("DELETE", path))

    # Analysis

    async def detect_conflicts(self, model_id: str | None = None) -> ConflictReport:
        path = f"{self._model_path(model_id)}/conflicts"
        return decode_conflicts(await self.request("POST", path))

    async def analyze_impact(
        self,
        change_type: str,
        *,
        old_rule: Payload | None = None,
        new_rule: Payload | None = None,
        model_id: str | None = None,
    ) -> ImpactReport:
        """Estimate how adding, updating or deleting a rule affects existing configurations.

        Args:
            change_type: ``add``, ``update`` or ``delete``
            old_rule: Rule as it is now (update/delete)
            new_rule: Rule as it would be (add/update)
            model_id: Model override
        """
        body: dict[str, Any] = {"change_type": change_type}
        if old_rule is not None:
            body["old_rule"] = _body(old_rule)
        if new_rule is not None:
            body["new_rule"] = _body(new_rule)
        path = f"{self._model_path(model_id)}/impact"
        return decode_impact(await self.request("POST", path, json=body))

    async def get_model_quality(self, model_id: str | None = None) -> QualityReport:
        path = f"{self._model_path(model_id)}/quality"
        return decode_quality(await self.request("POST", path))

    async def get_model_statistics(self, model_id: str | None = None) -> ModelStatistics:
        path = f"{self._model_path(model_id)}/statistics"
        return decode_statistics(await self.request("GET", path))
