"""Tests for token stores and the persist/recover helpers."""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from cpq_client.config import Settings
from cpq_client.storage.inmemory import InMemoryTokenStore, JsonFileTokenStore
from cpq_client.storage.redis_store import RedisTokenStore, create_token_store
from cpq_client.storage.tokens import SESSION_ID_KEY, clear_storage, persist, recover


class TestInMemoryTokenStore:
    """Test InMemoryTokenStore."""

    def test_set_get_delete(self) -> None:
        store = InMemoryTokenStore({"a": "1"})
        store.set("b", "2")
        assert store.get("a") == "1"
        assert sorted(store.keys()) == ["a", "b"]
        store.delete("a")
        store.delete("missing")
        assert store.get("a") is None


class TestJsonFileTokenStore:
    """Test JsonFileTokenStore."""

    def test_values_survive_new_instance(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "session.json"
        JsonFileTokenStore(path).set(SESSION_ID_KEY, "s1")

        reopened = JsonFileTokenStore(path)
        assert reopened.get(SESSION_ID_KEY) == "s1"
        assert reopened.keys() == [SESSION_ID_KEY]

    def test_delete(self, tmp_path: Path) -> None:
        store = JsonFileTokenStore(tmp_path / "session.json")
        store.set("a", "1")
        store.delete("a")
        assert store.get("a") is None

    def test_corrupt_file_reads_empty(self, tmp_path: Path) -> None:
        path = tmp_path / "session.json"
        path.write_text("{not json")
        assert JsonFileTokenStore(path).get("a") is None

    def test_missing_file_reads_empty(self, tmp_path: Path) -> None:
        assert JsonFileTokenStore(tmp_path / "absent.json").keys() == []


class TestRedisTokenStore:
    """Test RedisTokenStore with a mocked client."""

    def test_namespaced_keys(self) -> None:
        client = MagicMock()
        client.get.return_value = b"s1"
        store = RedisTokenStore(client, namespace="cfg")

        store.set(SESSION_ID_KEY, "s1")
        assert store.get(SESSION_ID_KEY) == "s1"
        store.delete(SESSION_ID_KEY)

        client.set.assert_called_once_with("cfg:session_id", "s1")
        client.get.assert_called_once_with("cfg:session_id")
        client.delete.assert_called_once_with("cfg:session_id")

    def test_keys_strip_namespace(self) -> None:
        client = MagicMock()
        client.scan_iter.return_value = iter([b"cpq:session_id", "cpq:auth_token"])
        assert RedisTokenStore(client).keys() == ["session_id", "auth_token"]
        client.scan_iter.assert_called_once_with(match="cpq:*")

    def test_missing_value(self) -> None:
        client = MagicMock()
        client.get.return_value = None
        assert RedisTokenStore(client).get("x") is None


class TestCreateTokenStore:
    """Test create_token_store selection."""

    def test_memory_default(self) -> None:
        store = create_token_store(Settings(_env_file=None, token_store="memory"))  # type: ignore[call-arg]
        assert isinstance(store, InMemoryTokenStore)

    def test_file(self, tmp_path: Path) -> None:
        settings = Settings(
            _env_file=None,  # type: ignore[call-arg]
            token_store="file",
            token_store_path=str(tmp_path / "s.json"),
        )
        assert isinstance(create_token_store(settings), JsonFileTokenStore)

    def test_redis_requires_url(self) -> None:
        settings = Settings(_env_file=None, token_store="redis", redis_url=None)  # type: ignore[call-arg]
        with pytest.raises(ValueError, match="REDIS_URL"):
            create_token_store(settings)

    def test_redis(self) -> None:
        settings = Settings(
            _env_file=None,  # type: ignore[call-arg]
            token_store="redis",
            redis_url="redis://localhost:6379/0",
        )
        with patch("cpq_client.storage.redis_store.redis.from_url") as from_url:
            store = create_token_store(settings)

        assert isinstance(store, RedisTokenStore)
        from_url.assert_called_once_with("redis://localhost:6379/0", decode_responses=True)


class TestPersistHelpers:
    """Test persist, recover and clear_storage."""

    def test_round_trip_structured_value(self) -> None:
        store = InMemoryTokenStore()
        persist(store, "draft", {"selections": {"o1": 2}})
        assert store.get("cpq_draft") == '{"selections": {"o1": 2}}'
        assert recover(store, "draft") == {"selections": {"o1": 2}}

    def test_unserializable_value_not_stored(self) -> None:
        store = InMemoryTokenStore()
        persist(store, "draft", object())
        assert store.keys() == []

    def test_recover_missing_or_corrupt(self) -> None:
        store = InMemoryTokenStore({"cpq_bad": "{oops"})
        assert recover(store, "missing") is None
        assert recover(store, "bad") is None

    def test_clear_single_key(self) -> None:
        store = InMemoryTokenStore({"cpq_a": "1", "cpq_b": "2"})
        clear_storage(store, "a")
        assert store.keys() == ["cpq_b"]

    def test_clear_all_prefixed_keys(self) -> None:
        store = InMemoryTokenStore({"cpq_a": "1", "cpq_b": "2", "other": "3"})
        clear_storage(store)
        assert store.keys() == ["other"]
