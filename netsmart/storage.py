# =============================================================================
# NetSmart -- Storage Backends
# =============================================================================
#
# Async key/value contract used for queue persistence, plus two reference
# backends.  Callers treat every storage failure as a no-op.
# =============================================================================

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Protocol, runtime_checkable

from .errors import StorageError


@runtime_checkable
class StorageBackend(Protocol):
    """String key/value store. All methods may raise; callers swallow."""

    async def get_item(self, key: str) -> str | None: ...

    async def set_item(self, key: str, value: str) -> None: ...

    async def remove_item(self, key: str) -> None: ...

    async def clear(self) -> None: ...


class MemoryStorage:
    """Process-local storage. Survives coordinator restarts, not process ones."""

    def __init__(self) -> None:
        self._items: dict[str, str] = {}

    async def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    async def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    async def clear(self) -> None:
        self._items.clear()


class JsonFileStorage:
    """All keys in a single JSON object on disk.

    File I/O runs in a worker thread so the event loop never blocks.

    Args:
        path: File to read and write. Parent directories are created.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    async def get_item(self, key: str) -> str | None:
        items = await asyncio.to_thread(self._read)
        return items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._update, key, value)

    async def remove_item(self, key: str) -> None:
        await asyncio.to_thread(self._update, key, None)

    async def clear(self) -> None:
        await asyncio.to_thread(self._write, {})

    def _read(self) -> dict[str, str]:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            raise StorageError(f"Cannot read {self._path}: {exc}") from exc
        try:
            data = json.loads(raw)
        except ValueError as exc:
            raise StorageError(f"Corrupt storage file {self._path}: {exc}") from exc
        if not isinstance(data, dict):
            raise StorageError(f"Corrupt storage file {self._path}: not an object")
        return data

    def _update(self, key: str, value: str | None) -> None:
        items = self._read()
        if value is None:
            items.pop(key, None)
        else:
            items[key] = value
        self._write(items)

    def _write(self, items: dict[str, str]) -> None:
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(items), encoding="utf-8")
            tmp.replace(self._path)
        except OSError as exc:
            raise StorageError(f"Cannot write {self._path}: {exc}") from exc
