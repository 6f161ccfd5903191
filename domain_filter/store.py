#!/usr/bin/env python3
"""
store.py - Asynchronous Key-Value Stores

The engine only needs two operations from its persistent store:

    await store.get(keys)     -> {key: value} for the keys that exist
    await store.set(mapping)  -> writes all keys of mapping together

Any object with those two coroutines works (a browser bridge, a database
row, ...). Two implementations ship here:

    MemoryStore    dict-backed, for tests and embedding
    JsonFileStore  one JSON document on disk, written atomically

Concurrency:
    Each set() is applied as a single write. Within one process an
    asyncio.Lock serialises file access; across processes the last writer
    wins.
"""
from __future__ import annotations

import asyncio
import copy
import json
import logging
import weakref
from pathlib import Path
from typing import Any, Iterable, Mapping, Protocol, runtime_checkable

import aiofiles


logger = logging.getLogger(__name__)


@runtime_checkable
class KeyValueStore(Protocol):
    """Minimal async store used by the source manager and matcher."""

    async def get(self, keys: Iterable[str]) -> dict[str, Any]:
        ...

    async def set(self, values: Mapping[str, Any]) -> None:
        ...


_write_locks: weakref.WeakKeyDictionary[Any, asyncio.Lock] = weakref.WeakKeyDictionary()


def write_lock(store: KeyValueStore) -> asyncio.Lock:
    """
    Lock shared by every read-modify-write sequence on ``store``.

    Settings edits and source changes both rebuild the filter cache from
    what they read, so they must not interleave on the same store.
    """
    lock = _write_locks.get(store)
    if lock is None:
        lock = _write_locks[store] = asyncio.Lock()
    return lock


class MemoryStore:
    """
    Dict-backed store.

    Values are deep-copied on the way in and out, so callers cannot mutate
    stored state by accident (matching what a serialising store would do).
    """

    def __init__(self, initial: Mapping[str, Any] | None = None):
        self._data: dict[str, Any] = copy.deepcopy(dict(initial or {}))
        self.writes = 0

    async def get(self, keys: Iterable[str]) -> dict[str, Any]:
        return {k: copy.deepcopy(self._data[k]) for k in keys if k in self._data}

    async def set(self, values: Mapping[str, Any]) -> None:
        self._data.update(copy.deepcopy(dict(values)))
        self.writes += 1

    def snapshot(self) -> dict[str, Any]:
        return copy.deepcopy(self._data)


class JsonFileStore:
    """
    Store persisted as a single JSON file.

    Writes go to a temporary sibling file which then replaces the target,
    so a crash mid-write never leaves a truncated document behind.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    async def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            async with aiofiles.open(self.path, encoding="utf-8") as f:
                data = json.loads(await f.read())
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Could not load store %s: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring non-object store document in %s", self.path)
            return {}
        return data

    async def get(self, keys: Iterable[str]) -> dict[str, Any]:
        async with self._lock:
            data = await self._load()
        return {k: data[k] for k in keys if k in data}

    async def set(self, values: Mapping[str, Any]) -> None:
        async with self._lock:
            data = await self._load()
            data.update(values)
            self.path.parent.mkdir(parents=True, exist_ok=True)
            temp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(data, indent=2))
            temp_path.replace(self.path)


__all__ = ["KeyValueStore", "write_lock", "MemoryStore", "JsonFileStore"]
