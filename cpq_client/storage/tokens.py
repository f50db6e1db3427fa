"""Token storage protocol - persisted client state between runs."""

import json
import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)

AUTH_TOKEN_KEY = "auth_token"
SESSION_TOKEN_KEY = "session_token"
SESSION_ID_KEY = "session_id"

STORAGE_PREFIX = "cpq_"


class TokenStore(Protocol):
    """Key-value store for auth and session identifiers."""

    def get(self, key: str) -> str | None:
        """Get a stored value.

        Args:
            key: Storage key (e.g. ``session_id``)

        Returns:
            Stored string or None if absent
        """
        ...

    def set(self, key: str, value: str) -> None:
        """Store a value, replacing any previous one."""
        ...

    def delete(self, key: str) -> None:
        """Remove a value; missing keys are ignored."""
        ...

    def keys(self) -> list[str]:
        """List every stored key."""
        ...


def persist(store: TokenStore, key: str, data: Any, prefix: str = STORAGE_PREFIX) -> None:
    """Persist JSON-serializable data under a prefixed key; failures are only logged."""
    try:
        store.set(prefix + key, json.dumps(data))
    except (TypeError, ValueError, OSError) as e:
        logger.warning(f"Failed to persist data for {key}: {e}")


def recover(store: TokenStore, key: str, prefix: str = STORAGE_PREFIX) -> Any | None:
    """Recover data stored by ``persist``; unreadable entries yield None."""
    try:
        raw = store.get(prefix + key)
        return json.loads(raw) if raw else None
    except (ValueError, OSError) as e:
        logger.warning(f"Failed to recover data for {key}: {e}")
        return None


def clear_storage(store: TokenStore, key: str | None = None, prefix: str = STORAGE_PREFIX) -> None:
    """Remove one prefixed key, or every prefixed key when ``key`` is None."""
    try:
        if key:
            store.delete(prefix + key)
            return
        for stored_key in store.keys():
            if stored_key.startswith(prefix):
                store.delete(stored_key)
    except OSError as e:
        logger.warning(f"Failed to clear storage: {e}")
