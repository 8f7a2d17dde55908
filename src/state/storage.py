from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Dict, Optional, Protocol, runtime_checkable

from common.errors import StorageError


logger = logging.getLogger(__name__)

# Durable keys
QUOTES_KEY = "quotes"
LAST_FILTER_KEY = "lastFilter"

# Session keys
LAST_QUOTE_TEXT_KEY = "lastQuoteText"
LAST_QUOTE_CATEGORY_KEY = "lastQuoteCategory"


@runtime_checkable
class KeyValueStorage(Protocol):
    """String key/value storage shared by the durable and session backends.

    Implementations raise `StorageError` when the underlying medium is
    unavailable, full, or holds unreadable data.
    """

    def get(self, key: str) -> Optional[str]:
        """Return the value stored under *key*, or ``None``."""
        ...

    def set(self, key: str, value: str) -> None:
        """Overwrite the value stored under *key*."""
        ...

    def delete(self, key: str) -> None:
        """Remove *key*; a missing key is not an error."""
        ...


class MemoryStorage:
    """Process-local storage; used for session state and in tests."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def snapshot(self) -> Dict[str, str]:
        return dict(self._data)


class JsonFileStorage:
    """
    Durable storage backed by a single JSON object file: { key: value, ... }.

    - The file is read lazily on first access and kept in memory afterwards.
    - Every `set`/`delete` rewrites the whole file through a temporary file
      and `os.replace`, so a crash never leaves a half-written document.
    - A missing file is an empty storage; an unreadable or malformed file
      raises `StorageError`.
    """

    def __init__(self, path: os.PathLike[str] | str) -> None:
        self._path = Path(path)
        self._data: Dict[str, str] = {}
        self._loaded = False

    @property
    def path(self) -> Path:
        return self._path

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        if not self._path.exists():
            self._loaded = True
            return
        try:
            with self._path.open("r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, ValueError) as exc:
            raise StorageError(f"Failed to read storage file {self._path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise StorageError(f"Storage file {self._path} does not hold a JSON object")
        self._data = {str(k): str(v) for k, v in raw.items() if isinstance(v, str)}
        self._loaded = True

    def _save(self, data: Dict[str, str]) -> None:
        tmp = self._path.with_name(self._path.name + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with tmp.open("w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True, ensure_ascii=False)
            os.replace(tmp, self._path)
        except OSError as exc:
            raise StorageError(f"Failed to write storage file {self._path}: {exc}") from exc

    def get(self, key: str) -> Optional[str]:
        self._ensure_loaded()
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._ensure_loaded()
        updated = {**self._data, key: value}
        self._save(updated)
        self._data = updated

    def delete(self, key: str) -> None:
        self._ensure_loaded()
        if key not in self._data:
            return
        updated = {k: v for k, v in self._data.items() if k != key}
        self._save(updated)
        self._data = updated


__all__ = [
    "KeyValueStorage",
    "MemoryStorage",
    "JsonFileStorage",
    "QUOTES_KEY",
    "LAST_FILTER_KEY",
    "LAST_QUOTE_TEXT_KEY",
    "LAST_QUOTE_CATEGORY_KEY",
]
