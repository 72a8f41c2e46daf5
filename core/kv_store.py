# core/kv_store.py
"""Pluggable key/value persistence for behaviour history.

Stores hold JSON-compatible values. Browser storage was one backend for this role; here the
process-local options are an in-memory store and a directory of JSON files. Every failure
surfaces as `StorageError`, and the behaviour tracker logs and swallows it.
"""

from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import structlog

from core.exceptions import handle_storage_error

logger = structlog.get_logger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


@runtime_checkable
class KVStore(Protocol):
    """Capability the behaviour tracker persists through."""

    def load(self, key: str) -> Any | None:
        """Return the stored JSON value, or None when the key was never saved."""
        ...

    def save(self, key: str, value: Any) -> None:
        """Persist a JSON-compatible value under `key`."""
        ...


class InMemoryKVStore:
    """Process-local store. Values are round-tripped through JSON like a real backend."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def load(self, key: str) -> Any | None:
        raw = self._data.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise handle_storage_error("load", exc, key=key) from exc

    def save(self, key: str, value: Any) -> None:
        try:
            self._data[key] = json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise handle_storage_error("save", exc, key=key) from exc


class JsonFileKVStore:
    """One JSON file per key inside `directory`."""

    def __init__(self, directory: str | os.PathLike[str]) -> None:
        self.directory = Path(directory)

    def path_for(self, key: str) -> Path:
        return self.directory / f"{_UNSAFE_KEY_CHARS.sub('_', key)}.json"

    def load(self, key: str) -> Any | None:
        path = self.path_for(key)
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise handle_storage_error("load", exc, key=key, path=str(path)) from exc

    def save(self, key: str, value: Any) -> None:
        path = self.path_for(key)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(value, f, ensure_ascii=False)
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as exc:
            raise handle_storage_error("save", exc, key=key, path=str(path)) from exc
        logger.debug("Saved key to file store", key=key, path=str(path))
