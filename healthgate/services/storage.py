"""
Key/value persistence for preferences, profile layouts and sessions.

Values are JSON-compatible scalars or strings. Two implementations:
- InMemoryKeyValueStore: dict-backed, for development and tests
- JsonFileKeyValueStore: a single JSON document on disk, written atomically

File I/O runs in a worker thread so the event loop that owns application
state is never blocked by slow storage.
"""

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

from healthgate.domain.errors import PersistError, PersistErrorKind
from healthgate.services.common import logger

JsonValue = str | int | float | bool | None


class KeyValueStore(Protocol):
    """
    Protocol for the process-wide key/value storage medium.

    Implementations raise PersistError(WRITE_FAILURE) when a write cannot be
    committed and PersistError(DECODE_FAILURE) when stored data is unreadable.
    A missing key is not an error: `get` returns None.
    """

    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: JsonValue) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def contains(self, key: str) -> bool: ...


class InMemoryKeyValueStore:
    """Dict-backed store. State is lost when the process exits."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = dict(initial or {})
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Any | None:
        return self._data.get(key)

    async def set(self, key: str, value: JsonValue) -> None:
        async with self._lock:
            self._data[key] = value

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)

    async def contains(self, key: str) -> bool:
        return key in self._data

    def snapshot(self) -> dict[str, Any]:
        """Copy of the raw contents, for inspection in tests and tooling."""
        return dict(self._data)


class JsonFileKeyValueStore:
    """
    Stores every key in one JSON object on disk.

    Writes go to a temporary file in the same directory followed by
    `os.replace`, so readers never see a half-written document.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = asyncio.Lock()
        self.logger = logger.bind(component="json_file_store", path=str(self.path))

    def _read_document(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                document = json.load(fh)
        except (OSError, ValueError) as e:
            raise PersistError(PersistErrorKind.DECODE_FAILURE, f"cannot read {self.path}: {e}") from e
        if not isinstance(document, dict):
            raise PersistError(PersistErrorKind.DECODE_FAILURE, f"{self.path} is not a JSON object")
        return document

    def _write_document(self, document: dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(document, fh, indent=2, sort_keys=True)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except (OSError, TypeError, ValueError) as e:
            raise PersistError(PersistErrorKind.WRITE_FAILURE, f"cannot write {self.path}: {e}") from e

    def _quarantine_document(self) -> Path:
        """Move an unreadable document aside so its contents can be recovered by hand."""
        target = self.path.with_name(f"{self.path.name}.corrupt")
        try:
            os.replace(self.path, target)
        except OSError as e:
            raise PersistError(
                PersistErrorKind.WRITE_FAILURE, f"cannot move aside unreadable {self.path}: {e}"
            ) from e
        return target

    def _update(self, key: str, value: JsonValue, *, remove: bool = False) -> None:
        try:
            document = self._read_document()
        except PersistError:
            target = self._quarantine_document()
            self.logger.warning("store_document_unreadable_moved_aside", moved_to=str(target))
            document = {}
        if remove:
            document.pop(key, None)
        else:
            document[key] = value
        self._write_document(document)

    async def get(self, key: str) -> Any | None:
        document = await asyncio.to_thread(self._read_document)
        return document.get(key)

    async def set(self, key: str, value: JsonValue) -> None:
        async with self._lock:
            await asyncio.to_thread(self._update, key, value)

    async def delete(self, key: str) -> None:
        async with self._lock:
            await asyncio.to_thread(self._update, key, None, remove=True)

    async def contains(self, key: str) -> bool:
        document = await asyncio.to_thread(self._read_document)
        return key in document
