"""Tests for the configuration session store.

The backend is a FakeApi served over httpx.MockTransport; debounce is 10ms.
"""

import asyncio
import json
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import pytest

from cpq_client.api.session_client import SessionApiClient
from cpq_client.api.transport import RequestMetrics
from cpq_client.config import Settings
from cpq_client.models import AvailableOption, SessionStatus, ValidationResult
from cpq_client.storage.inmemory import InMemoryTokenStore
from cpq_client.storage.tokens import SESSION_ID_KEY, SESSION_TOKEN_KEY
from cpq_client.store.session_store import ConfigurationSessionStore, StoreState

SESSIONS = "/api/v2/configurations"


def _ok(data: Any, status: int = 200) -> httpx.Response:
    return httpx.Response(status, json={"success": True, "data": data})


def _session(session_id: str = "s1", **overrides: Any) -> dict[str, Any]:
    payload = {
        "session_id": session_id,
        "session_token": f"token-{session_id}",
        "model_id": "m1",
        "status": "draft",
        "expires_at": (datetime.now(UTC) + timedelta(days=30)).isoformat(),
        "selections": [{"option_id": "o1", "quantity": 1}],
    }
    payload.update(overrides)
    return payload


class CountingMetrics(RequestMetrics):
    def __init__(self) -> None:
        self.stale = 0

    def inc_stale_response(self) -> None:
        self.stale += 1


class EchoBackend:
    """PUT handler echoing the submitted selections as the authoritative set.

    ``gates[i]`` (when present) holds the i-th request until it is set.
    """

    def __init__(self) -> None:
        self.bodies: list[dict[str, Any]] = []
        self.gates: list[asyncio.Event] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.bodies.append(body)
        index = len(self.bodies) - 1
        if index < len(self.gates):
            await self.gates[index].wait()
        return _ok({"configuration": {"selections": body["selections"]}})


@pytest.fixture
def make_store(
    model_routes: Any, make_client: Callable[..., SessionApiClient], settings: Settings
) -> Callable[..., ConfigurationSessionStore]:
    model_routes.on("POST", SESSIONS, _ok(_session(), status=201))

    def _make(**kwargs: Any) -> ConfigurationSessionStore:
        return ConfigurationSessionStore(make_client(), settings=settings, **kwargs)

    return _make


async def _ready(
    make_store: Callable[..., ConfigurationSessionStore], **kwargs: Any
) -> ConfigurationSessionStore:
    store = make_store(**kwargs)
    await store.initialize("m1")
    return store


class TestInitialize:
    """Test initialize, create and recovery."""

    @pytest.mark.asyncio
    async def test_creates_session_and_loads_model(
        self, make_store: Any, fake_api: Any, token_store: InMemoryTokenStore
    ) -> None:
        store = await _ready(make_store)

        assert store.state == StoreState.ACTIVE
        assert store.session_id == "s1"
        assert store.session_token == "token-s1"
        assert store.selections == {"o1": 1}
        assert store.reference is not None and store.reference.model_id == "m1"
        assert store.is_loading is False
        assert token_store.get(SESSION_ID_KEY) == "s1"
        assert len(fake_api.calls("POST", SESSIONS)) == 1

    @pytest.mark.asyncio
    async def test_created_selections_keep_server_quantity(
        self, make_store: Any, fake_api: Any
    ) -> None:
        fake_api.on(
            "POST",
            SESSIONS,
            _ok(
                {
                    "session_id": "s1",
                    "session_token": "t1",
                    "selections": [{"option_id": "o1", "quantity": 2}],
                },
                status=201,
            ),
        )

        store = await _ready(make_store)

        assert store.selections == {"o1": 2}
        assert store.session_id == "s1"
        assert store.state == StoreState.ACTIVE

    @pytest.mark.asyncio
    async def test_recovers_persisted_session(
        self, make_store: Any, fake_api: Any, token_store: InMemoryTokenStore
    ) -> None:
        token_store.set(SESSION_ID_KEY, "old")
        token_store.set(SESSION_TOKEN_KEY, "token-old")
        fake_api.on("GET", f"{SESSIONS}/old", _ok(_session("old", selections={"o2": 1, "o3": 2})))

        store = await _ready(make_store)

        assert store.session_id == "old"
        assert store.selections == {"o2": 1, "o3": 2}
        assert fake_api.calls("POST", SESSIONS) == []

    @pytest.mark.asyncio
    async def test_expired_persisted_session_replaced(
        self, make_store: Any, fake_api: Any, token_store: InMemoryTokenStore
    ) -> None:
        token_store.set(SESSION_ID_KEY, "old")
        expired = (datetime.now(UTC) - timedelta(minutes=1)).isoformat()
        fake_api.on("GET", f"{SESSIONS}/old", _ok(_session("old", expires_at=expired)))

        store = await _ready(make_store)

        assert store.session_id == "s1"
        assert token_store.get(SESSION_ID_KEY) == "s1"

    @pytest.mark.asyncio
    async def test_session_for_other_model_discarded(
        self, make_store: Any, fake_api: Any, token_store: InMemoryTokenStore
    ) -> None:
        token_store.set(SESSION_ID_KEY, "old")
        fake_api.on("GET", f"{SESSIONS}/old", _ok(_session("old", model_id="m9")))

        store = await _ready(make_store)

        assert store.session_id == "s1"
        assert token_store.get(SESSION_ID_KEY) == "s1"

    @pytest.mark.asyncio
    async def test_create_failure_captured(self, make_store: Any, fake_api: Any) -> None:
        fake_api.on("POST", SESSIONS, httpx.Response(500, json={"message": "db down"}))

        store = await _ready(make_store)

        assert store.state == StoreState.UNINITIALIZED
        assert store.session_id is None
        assert store.error is not None
        assert store.error.code == "SESSION_CREATE_ERROR"
        assert store.error.message == "db down"
        assert store.error.details["status"] == 500

    @pytest.mark.asyncio
    async def test_model_load_failure_captured(self, make_store: Any, fake_api: Any) -> None:
        fake_api.on("GET", "/api/v2/models/m1/rules", httpx.Response(503, json={}))

        store = await _ready(make_store)

        assert store.reference is None
        assert store.error is not None and store.error.code == "MODEL_LOAD_ERROR"

    @pytest.mark.asyncio
    async def test_completed_session_recovered_as_completed(
        self, make_store: Any, fake_api: Any, token_store: InMemoryTokenStore
    ) -> None:
        token_store.set(SESSION_ID_KEY, "done")
        fake_api.on("GET", f"{SESSIONS}/done", _ok(_session("done", status="completed")))

        store = await _ready(make_store)

        assert store.state == StoreState.COMPLETED


class TestSelectionSync:
    """Test optimistic updates, debounced flushes and authoritative overwrite."""

    @pytest.mark.asyncio
    async def test_update_is_optimistic_then_flushed(self, make_store: Any, fake_api: Any) -> None:
        backend = EchoBackend()
        fake_api.on("PUT", f"{SESSIONS}/s1", backend)
        store = await _ready(make_store)

        assert store.update_selection("o2", 1) is True
        assert store.selections == {"o2": 1}
        assert store.is_dirty

        await store.wait_for_sync()

        assert backend.bodies == [{"selections": [{"option_id": "o2", "quantity": 1}]}]
        assert store.is_dirty is False
        assert store.last_saved is not None

    @pytest.mark.asyncio
    async def test_rapid_edits_coalesce_into_one_flush(self, make_store: Any, fake_api: Any) -> None:
        backend = EchoBackend()
        fake_api.on("PUT", f"{SESSIONS}/s1", backend)
        store = await _ready(make_store)

        store.update_selection("o2", 1)
        store.update_selection("o3", 1)
        store.update_selection("o4", 2)
        await store.wait_for_sync()

        assert len(backend.bodies) == 1
        assert store.selections == {"o2": 1, "o3": 1, "o4": 2}

    @pytest.mark.asyncio
    async def test_server_selections_are_authoritative(self, make_store: Any, fake_api: Any) -> None:
        fake_api.on(
            "PUT",
            f"{SESSIONS}/s1",
            _ok(
                {
                    "configuration": {"selections": [{"option_id": "o2", "quantity": 1}]},
                    "validation_result": {"is_valid": False, "violations": [{"message": "Need stand"}]},
                    "price_breakdown": {"total_price": 150},
                    "session_status": "validated",
                }
            ),
        )
        store = await _ready(make_store)

        store.update_selection("o2", 1)
        store.update_selection("o4", 1)
        await store.wait_for_sync()

        assert store.selections == {"o2": 1}
        assert store.total_price == 150
        assert store.is_valid is False
        assert store.has_active_violations
        assert store.session_status == SessionStatus.VALIDATED

    @pytest.mark.asyncio
    async def test_missing_results_keep_previous_ones(self, make_store: Any, fake_api: Any) -> None:
        backend = EchoBackend()
        fake_api.on("PUT", f"{SESSIONS}/s1", backend)
        store = await _ready(make_store)
        store.validation_result = ValidationResult(is_valid=True)

        store.update_selection("o3", 1)
        await store.wait_for_sync()

        assert store.validation_result is not None and store.validation_result.is_valid

    @pytest.mark.asyncio
    async def test_stale_response_discarded(self, make_store: Any, fake_api: Any) -> None:
        backend = EchoBackend()
        backend.gates.append(asyncio.Event())
        fake_api.on("PUT", f"{SESSIONS}/s1", backend)
        metrics = CountingMetrics()
        store = await _ready(make_store, metrics=metrics)

        store.update_selection("o2", 1)
        await asyncio.sleep(0.05)
        assert len(backend.bodies) == 1
        assert store.is_saving

        store.update_selection("o3", 1)
        backend.gates[0].set()
        await store.wait_for_sync()

        assert len(backend.bodies) == 2
        assert store.selections == {"o2": 1, "o3": 1}
        assert metrics.stale == 1
        assert not store.is_saving

    @pytest.mark.asyncio
    async def test_stale_response_after_reset_ignored(self, make_store: Any, fake_api: Any) -> None:
        backend = EchoBackend()
        backend.gates.append(asyncio.Event())
        fake_api.on("PUT", f"{SESSIONS}/s1", backend)
        store = await _ready(make_store)

        store.update_selection("o2", 1)
        await asyncio.sleep(0.05)
        store.reset()
        backend.gates[0].set()
        await store.wait_for_sync()

        assert store.selections == {}

    @pytest.mark.asyncio
    async def test_failure_keeps_optimistic_state(self, make_store: Any, fake_api: Any) -> None:
        fake_api.on("PUT", f"{SESSIONS}/s1", httpx.Response(500, json={"message": "boom"}))
        store = await _ready(make_store)

        store.update_selection("o2", 1)
        await store.wait_for_sync()

        assert store.selections == {"o2": 1}
        assert store.is_dirty
        assert store.error is not None
        assert store.error.code == "UPDATE_ERROR"
        assert store.error.message == "boom"

    @pytest.mark.asyncio
    async def test_lost_session_recreated_with_local_edits(
        self, make_store: Any, fake_api: Any, token_store: InMemoryTokenStore
    ) -> None:
        created = iter([_session("s1"), _session("s2")])
        fake_api.on("POST", SESSIONS, lambda request: _ok(next(created), status=201))
        backend = EchoBackend()
        fake_api.on("PUT", f"{SESSIONS}/s2", backend)
        store = await _ready(make_store)

        store.update_selection("o2", 1)
        store.update_selection("o3", 1)
        await store.wait_for_sync()

        assert store.session_id == "s2"
        assert token_store.get(SESSION_ID_KEY) == "s2"
        assert backend.bodies[0]["selections"] == [
            {"option_id": "o2", "quantity": 1},
            {"option_id": "o3", "quantity": 1},
        ]
        assert store.selections == {"o2": 1, "o3": 1}
        assert store.error is None

    @pytest.mark.asyncio
    async def test_recreate_keeps_edit_made_while_flush_in_flight(
        self, make_store: Any, fake_api: Any
    ) -> None:
        created = iter([_session("s1"), _session("s2")])
        fake_api.on("POST", SESSIONS, lambda request: _ok(next(created), status=201))
        release = asyncio.Event()

        async def lost(request: httpx.Request) -> httpx.Response:
            await release.wait()
            return httpx.Response(404, json={"success": False, "error": {"code": "NOT_FOUND"}})

        fake_api.on("PUT", f"{SESSIONS}/s1", lost)
        backend = EchoBackend()
        fake_api.on("PUT", f"{SESSIONS}/s2", backend)
        store = await _ready(make_store, debounce_seconds=0.2)

        store.update_selection("o2", 1)
        flush = asyncio.create_task(store.flush_selections())
        await asyncio.sleep(0.02)
        store.update_selection("o3", 1)
        release.set()
        await flush
        await store.wait_for_sync()

        assert store.session_id == "s2"
        assert backend.bodies[0]["selections"] == [
            {"option_id": "o2", "quantity": 1},
            {"option_id": "o3", "quantity": 1},
        ]
        assert store.selections == {"o2": 1, "o3": 1}

    @pytest.mark.asyncio
    async def test_configuration_without_selections_keeps_local(
        self, make_store: Any, fake_api: Any
    ) -> None:
        fake_api.on_json("PUT", f"{SESSIONS}/s1", {"configuration": {"is_valid": True}})
        store = await _ready(make_store)

        store.update_selection("o3", 1)
        await store.wait_for_sync()

        assert store.selections == {"o1": 1, "o3": 1}
        assert store.is_dirty is False

    @pytest.mark.asyncio
    async def test_closed_session_ignores_edits(self, make_store: Any, fake_api: Any) -> None:
        backend = EchoBackend()
        fake_api.on("PUT", f"{SESSIONS}/s1", backend)
        store = await _ready(make_store)
        store.state = StoreState.COMPLETED

        assert store.update_selection("o3", 1) is False
        store.state = StoreState.ABANDONED
        assert store.update_selection("o3", 1) is False
        await store.wait_for_sync()

        assert store.selections == {"o1": 1}
        assert not store.is_dirty
        assert backend.bodies == []

    @pytest.mark.asyncio
    async def test_lost_session_recreated_only_once(self, make_store: Any, fake_api: Any) -> None:
        created = iter([_session("s1"), _session("s2")])
        fake_api.on("POST", SESSIONS, lambda request: _ok(next(created), status=201))
        store = await _ready(make_store)

        store.update_selection("o2", 1)
        await store.wait_for_sync()

        assert len(fake_api.calls("POST", SESSIONS)) == 2
        assert store.error is not None and store.error.code == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_unknown_option_ignored(self, make_store: Any, fake_api: Any) -> None:
        store = await _ready(make_store)

        assert store.update_selection("missing", 1) is False
        assert store.selections == {"o1": 1}
        assert not store.is_dirty

    def test_update_without_reference_ignored(self, make_client: Any, settings: Settings) -> None:
        store = ConfigurationSessionStore(make_client(), settings=settings)
        assert store.update_selection("o1", 1) is False

    @pytest.mark.asyncio
    async def test_deselect_unavailable(self, make_store: Any, fake_api: Any) -> None:
        backend = EchoBackend()
        fake_api.on("PUT", f"{SESSIONS}/s1", backend)
        store = await _ready(make_store)
        store.selections = {"o1": 1, "o3": 1}

        removed = store.deselect_unavailable(
            [
                AvailableOption(option_id="o3", is_selectable=False),
                AvailableOption(option_id="o4", is_selectable=False),
                AvailableOption(option_id="o1", is_selectable=True),
            ]
        )
        await store.wait_for_sync()

        assert removed is True
        assert store.selections == {"o1": 1}
        assert backend.bodies == [{"selections": [{"option_id": "o1", "quantity": 1}]}]
        assert store.deselect_unavailable([]) is False


class TestSessionActions:
    """Test validate, price, complete and extend."""

    @pytest.mark.asyncio
    async def test_actions_flush_pending_edits_first(self, make_store: Any, fake_api: Any) -> None:
        fake_api.on("PUT", f"{SESSIONS}/s1", EchoBackend())
        fake_api.on_json("POST", f"{SESSIONS}/s1/validate", {"is_valid": True, "result": {}})
        store = await _ready(make_store)

        store.update_selection("o2", 1)
        result = await store.validate_configuration()

        assert result is not None and result.is_valid
        methods = [(r.method, r.url.path) for r in fake_api.requests if r.url.path.startswith(SESSIONS)]
        assert methods[-2:] == [("PUT", f"{SESSIONS}/s1"), ("POST", f"{SESSIONS}/s1/validate")]

    @pytest.mark.asyncio
    async def test_calculate_pricing(self, make_store: Any, fake_api: Any) -> None:
        fake_api.on_json(
            "POST", f"{SESSIONS}/s1/price", {"breakdown": {"base_price": 100}, "total": 100}
        )
        store = await _ready(make_store)

        await store.calculate_pricing()

        assert store.total_price == 100

    @pytest.mark.asyncio
    async def test_complete(self, make_store: Any, fake_api: Any) -> None:
        fake_api.on_json("POST", f"{SESSIONS}/s1/complete", {"session_id": "s1", "status": "completed"})
        store = await _ready(make_store)

        await store.complete_session()

        assert store.state == StoreState.COMPLETED
        assert store.session_status == SessionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_extend_uses_configured_days(self, make_store: Any, fake_api: Any) -> None:
        new_expiry = datetime(2031, 1, 1, tzinfo=UTC)
        fake_api.on_json(
            "POST",
            f"{SESSIONS}/s1/extend",
            {"session_id": "s1", "extended": True, "expires_at": new_expiry.isoformat()},
        )
        store = await _ready(make_store)

        await store.extend_session()

        body = json.loads(fake_api.calls("POST", f"{SESSIONS}/s1/extend")[0].content)
        assert body == {"days": 30}
        assert store.expires_at == new_expiry

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("method_name", "path", "code"),
        [
            ("validate_configuration", "validate", "VALIDATION_ERROR"),
            ("calculate_pricing", "price", "PRICING_ERROR"),
            ("complete_session", "complete", "COMPLETE_ERROR"),
            ("extend_session", "extend", "EXTEND_ERROR"),
        ],
    )
    async def test_action_failures_captured(
        self, make_store: Any, fake_api: Any, method_name: str, path: str, code: str
    ) -> None:
        fake_api.on("POST", f"{SESSIONS}/s1/{path}", httpx.Response(500, json={}))
        store = await _ready(make_store)

        assert await getattr(store, method_name)() is None

        assert store.error is not None
        assert store.error.code == code
        assert store.state == StoreState.ACTIVE

    @pytest.mark.asyncio
    async def test_actions_without_session_are_noops(
        self, make_client: Any, settings: Settings, fake_api: Any
    ) -> None:
        store = ConfigurationSessionStore(make_client(), settings=settings)

        assert await store.validate_configuration() is None
        assert await store.calculate_pricing() is None
        assert await store.complete_session() is None
        assert await store.extend_session() is None
        assert fake_api.requests == []


class TestDerivedState:
    """Test derived values and expiry."""

    def _store(self, make_client: Any, settings: Settings) -> ConfigurationSessionStore:
        return ConfigurationSessionStore(make_client(), settings=settings)

    def test_defaults(self, make_client: Any, settings: Settings) -> None:
        store = self._store(make_client, settings)
        assert store.total_price == 0.0
        assert store.is_valid is True
        assert store.violations == []
        assert store.selected_count == 0
        assert store.session_time_remaining() is None

    def test_unvalidated_selection_is_not_valid(
        self, make_client: Any, settings: Settings, reference: Any
    ) -> None:
        store = self._store(make_client, settings)
        store.reference = reference
        store.selections = {"o2": 1, "o3": 2, "ghost": 1}

        assert store.is_valid is False
        assert store.selected_count == 3
        assert [o.id for o in store.selected_options] == ["o2", "o3"]

    def test_warnings_do_not_block(self, make_client: Any, settings: Settings) -> None:
        store = self._store(make_client, settings)
        store.validation_result = ValidationResult.model_validate(
            {"is_valid": True, "violations": [{"severity": "warning", "message": "Heavy"}]}
        )
        assert store.violations[0].message == "Heavy"
        assert store.has_active_violations is False

    def test_time_remaining(self, make_client: Any, settings: Settings) -> None:
        store = self._store(make_client, settings)
        store.expires_at = datetime(2030, 1, 3, 12, tzinfo=UTC)

        assert store.session_time_remaining(datetime(2030, 1, 1, tzinfo=UTC)) == "2 days"
        assert store.session_time_remaining(datetime(2030, 1, 3, 7, tzinfo=UTC)) == "5 hours"
        assert store.session_time_remaining(datetime(2030, 1, 4, tzinfo=UTC)) == "Expired"

    @pytest.mark.asyncio
    async def test_check_expiry(self, make_store: Any, token_store: InMemoryTokenStore) -> None:
        store = await _ready(make_store)
        assert store.expires_at is not None

        assert store.check_expiry() is False
        assert token_store.get(SESSION_ID_KEY) == "s1"
        assert store.check_expiry(store.expires_at + timedelta(seconds=1)) is True
        assert store.state == StoreState.ABANDONED
        assert store.session_status == SessionStatus.ABANDONED
        assert token_store.get(SESSION_ID_KEY) is None
        assert token_store.get(SESSION_TOKEN_KEY) is None
        assert store.check_expiry(store.expires_at + timedelta(days=1)) is False

    @pytest.mark.asyncio
    async def test_expiry_cancels_pending_flush(self, make_store: Any, fake_api: Any) -> None:
        backend = EchoBackend()
        fake_api.on("PUT", f"{SESSIONS}/s1", backend)
        store = await _ready(make_store)

        store.update_selection("o2", 1)
        store.check_expiry(datetime.now(UTC) + timedelta(days=365))
        await asyncio.sleep(0.03)

        assert backend.bodies == []

    @pytest.mark.asyncio
    async def test_clear_session(
        self, make_store: Any, token_store: InMemoryTokenStore
    ) -> None:
        store = await _ready(make_store)

        store.clear_session()

        assert store.session_id is None
        assert store.selections == {}
        assert store.state == StoreState.UNINITIALIZED
        assert token_store.get(SESSION_ID_KEY) is None

    @pytest.mark.asyncio
    async def test_aclose_drops_pending_flush(self, make_store: Any, fake_api: Any) -> None:
        backend = EchoBackend()
        fake_api.on("PUT", f"{SESSIONS}/s1", backend)
        store = await _ready(make_store)

        store.update_selection("o2", 1)
        await store.aclose()

        assert backend.bodies == []
