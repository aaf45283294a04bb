"""Key-value persistence for client-side state.

The offline queue, persisted cart, session and user cache store
JSON-serialisable documents under namespaced keys through this interface, so
the backend (memory, a JSON file, an embedded KV store) can change without
touching their logic.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from superapp_core.logging import log_error

JsonValue = Any
CORRUPT_SUFFIX = ".corrupt"
_logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    """Raised when persisted state cannot be read or written."""


class AbstractKeyValueStorage(ABC):
    """Abstract async key-value storage of JSON documents."""

    @abstractmethod
    async def get(self, key: str) -> JsonValue | None:
        """Return the document stored under ``key`` or ``None``."""

    @abstractmethod
    async def set(self, key: str, value: JsonValue) -> None:
        """Store ``value`` under ``key``, replacing any previous document."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove ``key``; missing keys are ignored."""

    @abstractmethod
    async def keys(self, prefix: str = "") -> list[str]:
        """Return stored keys starting with ``prefix`` in sorted order."""


def _encode(key: str, value: JsonValue) -> str:
    try:
        return json.dumps(value, separators=(",", ":"), sort_keys=True)
    except (TypeError, ValueError) as exc:
        raise StorageError(f"value for {key!r} is not JSON serialisable") from exc


class InMemoryKeyValueStorage(AbstractKeyValueStorage):
    """In-memory storage keeping encoded JSON so callers never share objects."""

    def __init__(self) -> None:
        self._documents: dict[str, str] = {}

    async def get(self, key: str) -> JsonValue | None:
        raw = self._documents.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: JsonValue) -> None:
        self._documents[key] = _encode(key, value)

    async def delete(self, key: str) -> None:
        self._documents.pop(key, None)

    async def keys(self, prefix: str = "") -> list[str]:
        return sorted(key for key in self._documents if key.startswith(prefix))


class JsonFileKeyValueStorage(AbstractKeyValueStorage):
    """Single JSON file holding every key, rewritten atomically on change."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        """Create a file-backed storage.

        Args:
            path: Location of the JSON document. Parent directories are
                created on first write.
        """
        self._path = Path(path)
        self._lock = asyncio.Lock()
        self._documents: dict[str, str] | None = None

    @property
    def path(self) -> Path:
        return self._path

    def _read_file(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            text = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"cannot read storage file {self._path}") from exc
        try:
            loaded = json.loads(text)
        except ValueError as exc:
            return self._set_aside(f"invalid JSON: {exc}")
        if not isinstance(loaded, dict):
            return self._set_aside("document is not a JSON object")
        return {str(key): json.dumps(value) for key, value in loaded.items()}

    def _set_aside(self, reason: str) -> dict[str, str]:
        """Move an undecodable file out of the way and start from empty."""
        backup = self._path.with_name(self._path.name + CORRUPT_SUFFIX)
        try:
            os.replace(self._path, backup)
        except OSError as exc:
            raise StorageError(f"cannot set aside storage file {self._path}") from exc
        log_error(
            _logger,
            "storage.corrupt_file_discarded",
            path=str(self._path),
            backup=str(backup),
            reason=reason,
        )
        return {}

    def _write_file(self, documents: dict[str, str]) -> None:
        payload = {key: json.loads(raw) for key, raw in documents.items()}
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.", dir=self._path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, sort_keys=True)
            os.replace(tmp_name, self._path)
        except OSError as exc:
            Path(tmp_name).unlink(missing_ok=True)
            raise StorageError(f"cannot write storage file {self._path}") from exc

    async def _load(self) -> dict[str, str]:
        if self._documents is None:
            self._documents = await asyncio.to_thread(self._read_file)
        return self._documents

    async def get(self, key: str) -> JsonValue | None:
        async with self._lock:
            documents = await self._load()
            raw = documents.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: JsonValue) -> None:
        encoded = _encode(key, value)
        async with self._lock:
            documents = dict(await self._load())
            documents[key] = encoded
            await asyncio.to_thread(self._write_file, documents)
            self._documents = documents

    async def delete(self, key: str) -> None:
        async with self._lock:
            documents = await self._load()
            if key not in documents:
                return
            remaining = {k: v for k, v in documents.items() if k != key}
            await asyncio.to_thread(self._write_file, remaining)
            self._documents = remaining

    async def keys(self, prefix: str = "") -> list[str]:
        async with self._lock:
            documents = await self._load()
            return sorted(key for key in documents if key.startswith(prefix))


def build_storage(path: str | None) -> AbstractKeyValueStorage:
    """Return file storage for ``path`` or in-memory storage when unset."""
    if path is None:
        return InMemoryKeyValueStorage()
    return JsonFileKeyValueStorage(path)
