"""In-memory and file-backed implementations of TokenStore."""

import json
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


class InMemoryTokenStore:
    """In-memory implementation of TokenStore."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def delete(self, key: str) -> None:
        self._values.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._values)


class JsonFileTokenStore:
    """TokenStore kept as a single JSON document on disk.

    The file is re-read on every access so separate processes sharing it see
    each other's writes.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path).expanduser()

    def _load(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8") or "{}")
        except ValueError:
            logger.warning(f"Token store at {self._path} is not valid JSON, starting empty")
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _save(self, values: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(values, indent=2, sort_keys=True), encoding="utf-8")

    def get(self, key: str) -> str | None:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        values = self._load()
        values[key] = value
        self._save(values)

    def delete(self, key: str) -> None:
        values = self._load()
        if key in values:
            del values[key]
            self._save(values)

    def keys(self) -> list[str]:
        return list(self._load())
