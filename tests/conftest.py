"""Shared pytest fixtures for all test suites."""

import inspect
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from cpq_client.api.session_client import SessionApiClient
from cpq_client.config import Settings
from cpq_client.models import Model
from cpq_client.storage.inmemory import InMemoryTokenStore
from cpq_client.store.model_loader import ModelReference

BASE_URL = "http://cpq.test/api/v2"

MODEL_PAYLOAD: dict[str, Any] = {
    "id": "m1",
    "name": "Widget",
    "version": 2,
    "groups": [
        {
            "id": "g1",
            "name": "Color",
            "type": "single_select",
            "min_selections": 1,
            "max_selections": 1,
            "default_option_id": "o1",
        },
        {"id": "g2", "name": "Extras", "type": "multi_select", "max_selections": 0},
    ],
    "options": [
        {"id": "o1", "group_id": "g1", "name": "Red", "base_price": 100.0},
        {"id": "o2", "group_id": "g1", "name": "Blue", "base_price": 150.0},
        {"id": "o3", "group_id": "g2", "name": "Stand", "base_price": 20.0},
        {"id": "o4", "group_id": "g2", "name": "Cable", "price": 30.0},
    ],
    "rules": [
        {"id": "r1", "name": "Blue needs stand", "type": "requires", "expression": "o2 -> o3"},
    ],
}


def enveloped(data: Any) -> dict[str, Any]:
    """Wrap a payload the way the v2 backend does."""
    return {"success": True, "data": data, "timestamp": "2025-01-01T00:00:00Z"}


class FakeApi:
    """MockTransport handler routing (method, path) to canned responses.

    A route is an httpx.Response or a callable (sync or async) taking the
    request and returning one. Every request is recorded.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Any] = {}
        self.requests: list[httpx.Request] = []

    def on(self, method: str, path: str, response: Any) -> None:
        self.routes[(method, path)] = response

    def on_json(self, method: str, path: str, data: Any, status: int = 200) -> None:
        self.routes[(method, path)] = httpx.Response(status, json=enveloped(data))

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(
                404,
                json={"success": False, "error": {"code": "NOT_FOUND", "message": "No such route"}},
            )
        if callable(route):
            result = route(request)
            if inspect.isawaitable(result):
                result = await result
            return result
        return route


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        api_base_url=BASE_URL,
        request_timeout_ms=1000,
        selection_debounce_ms=10,
        legacy_retry_delay_ms=1,
    )


@pytest.fixture
def model_payload() -> dict[str, Any]:
    return MODEL_PAYLOAD


@pytest.fixture
def reference() -> ModelReference:
    """Reference data for model m1 (single-select g1, multi-select g2)."""
    model = Model.model_validate(MODEL_PAYLOAD)
    return ModelReference(
        model=model,
        groups=tuple(model.groups),
        options=tuple(model.options),
        rules=tuple(model.rules),
    )


@pytest.fixture
def fake_api() -> FakeApi:
    return FakeApi()


@pytest.fixture
def token_store() -> InMemoryTokenStore:
    return InMemoryTokenStore()


@pytest.fixture
def make_client(
    fake_api: FakeApi, token_store: InMemoryTokenStore, settings: Settings
) -> Callable[..., SessionApiClient]:
    """Factory for SessionApiClient instances talking to ``fake_api``."""

    def _make(**kwargs: Any) -> SessionApiClient:
        kwargs.setdefault("model_id", "m1")
        kwargs.setdefault("token_store", token_store)
        return SessionApiClient(
            BASE_URL,
            client=httpx.AsyncClient(transport=httpx.MockTransport(fake_api)),
            settings=settings,
            **kwargs,
        )

    return _make


def register_model_routes(fake_api: FakeApi, payload: dict[str, Any] | None = None) -> None:
    """Serve the m1 reference endpoints in their current (enveloped, keyed) shapes."""
    payload = payload or MODEL_PAYLOAD
    fake_api.on_json("GET", "/api/v2/models/m1", payload)
    fake_api.on_json("GET", "/api/v2/models/m1/groups", {"groups": payload["groups"]})
    fake_api.on_json("GET", "/api/v2/models/m1/options", {"options": payload["options"]})
    fake_api.on_json("GET", "/api/v2/models/m1/rules", payload["rules"])


@pytest.fixture
def model_routes(fake_api: FakeApi) -> FakeApi:
    register_model_routes(fake_api)
    return fake_api
