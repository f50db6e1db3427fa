"""Redis-backed TokenStore for shared or server-side session state."""

import redis

from cpq_client.config import Settings
from cpq_client.storage.inmemory import InMemoryTokenStore, JsonFileTokenStore
from cpq_client.storage.tokens import TokenStore


class RedisTokenStore:
    """TokenStore keeping each key as a namespaced Redis string."""

    def __init__(self, redis_client: redis.Redis, namespace: str = "cpq") -> None:
        """Initialize store.

        Args:
            redis_client: Redis client (created with ``decode_responses=True``)
            namespace: Key namespace, so several configurators can share one Redis
        """
        self._redis = redis_client
        self._namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    def get(self, key: str) -> str | None:
        value = self._redis.get(self._key(key))
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def set(self, key: str, value: str) -> None:
        self._redis.set(self._key(key), value)

    def delete(self, key: str) -> None:
        self._redis.delete(self._key(key))

    def keys(self) -> list[str]:
        prefix = self._key("")
        keys = []
        for raw in self._redis.scan_iter(match=f"{prefix}*"):
            name = raw.decode("utf-8") if isinstance(raw, bytes) else raw
            keys.append(name[len(prefix):])
        return keys


def create_token_store(settings: Settings) -> TokenStore:
    """Build the TokenStore selected by settings.

    Raises:
        ValueError: If the redis store is selected without REDIS_URL.
    """
    if settings.token_store == "file":
        return JsonFileTokenStore(settings.token_store_path)
    if settings.token_store == "redis":
        if not settings.redis_url:
            raise ValueError("REDIS_URL must be set when TOKEN_STORE=redis")
        client = redis.from_url(settings.redis_url, decode_responses=True)  # type: ignore[no-untyped-call]
        return RedisTokenStore(client)
    return InMemoryTokenStore()
