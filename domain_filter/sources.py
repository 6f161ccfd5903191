#!/usr/bin/env python3
"""
sources.py - Source Manager for Imported Filter Lists

Owns the list of imported sources (at most one manual source plus any number
of URL-backed ones) and keeps the merged policy in sync with it.

Every mutating operation follows the same read-merge-write sequence:
    1. Parse / fetch first; reject BEFORE touching the store
    2. Read the latest source list from the store
    3. Mutate the list
    4. Recompute the merged policy in full
    5. Persist sources + policy + format flag in ONE store write,
       regenerating the filter cache alongside

Storage Format:
    Sources keep flattened domain lists, not full Rule objects. This bounds
    the persisted size regardless of how verbose a filter list is; per-rule
    options are lost after the merge, which is fine because matching only
    needs domains.

Concurrency:
    Operations are serialised with the store's shared write lock, which
    settings edits (mode, domain lists) also take, so a source change can
    never rebuild the filter cache from a mode that is being replaced.
    Writers in other processes are not coordinated: the last write wins at
    the storage layer.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Literal, Mapping, NamedTuple

from domain_filter.builder import build_rules, ensure_importable
from domain_filter.errors import (
    DomainFilterError,
    ImmutableSourceError,
    InvalidIndexError,
    NetworkFetchError,
)
from domain_filter.fetcher import fetch_text, is_valid_url, read_filter_file
from domain_filter.merger import merge_sources
from domain_filter.settings import StorageKeys, write_settings
from domain_filter.store import KeyValueStore, write_lock


logger = logging.getLogger(__name__)

#: URL key of the hand-entered source
MANUAL_URL = "manual"

FetchFn = Callable[[str], Awaitable[str]]
Clock = Callable[[], float]


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass
class Source:
    """
    One imported origin of rules.

    Attributes:
        url: "manual" for hand-entered text, otherwise the fetch URL
        imported_at: Epoch seconds of the last (re)load
        rule_count: Rules contributed by the last (re)load
        block_domains: Domains of the block rules
        exception_domains: Domains of the exception rules
    """
    url: str
    imported_at: float
    rule_count: int
    block_domains: list[str] = field(default_factory=list)
    exception_domains: list[str] = field(default_factory=list)

    @property
    def is_manual(self) -> bool:
        return self.url == MANUAL_URL

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "importedAt": self.imported_at,
            "ruleCount": self.rule_count,
            "blockDomains": list(self.block_domains),
            "exceptionDomains": list(self.exception_domains),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Source":
        return cls(
            url=str(data.get("url") or MANUAL_URL),
            imported_at=float(data.get("importedAt") or 0.0),
            rule_count=int(data.get("ruleCount") or 0),
            block_domains=[str(d) for d in data.get("blockDomains") or []],
            exception_domains=[str(d) for d in data.get("exceptionDomains") or []],
        )


class SaveResult(NamedTuple):
    sources: list[Source]
    action: Literal["add", "update"]
    rule_count: int


class ReloadResult(NamedTuple):
    sources: list[Source]
    rule_count: int


# =============================================================================
# SOURCE MANAGER
# =============================================================================

class SourceManager:
    """
    Add, update, delete and reload filter sources.

    Args:
        store: Persistent key-value store (injected)
        fetch: Coroutine ``fetch(url) -> text`` for URL-backed sources;
            defaults to fetcher.fetch_text
        clock: Time source, injectable for tests
    """

    def __init__(
        self,
        store: KeyValueStore,
        fetch: FetchFn | None = None,
        clock: Clock = time.time,
    ):
        self.store = store
        self.fetch: FetchFn = fetch or fetch_text
        self.clock = clock
        self._lock = write_lock(store)

    # -------------------------------------------------------------------------
    # Persistence helpers
    # -------------------------------------------------------------------------

    async def _read_sources(self) -> list[Source]:
        data = await self.store.get([StorageKeys.UBLOCK_SOURCES])
        raw = data.get(StorageKeys.UBLOCK_SOURCES) or []
        return [Source.from_dict(item) for item in raw if isinstance(item, Mapping)]

    async def _write(self, sources: list[Source], format_enabled: bool | None) -> None:
        policy = merge_sources(sources, now=self.clock())
        values: dict[str, Any] = {
            StorageKeys.UBLOCK_SOURCES: [s.to_dict() for s in sources],
            StorageKeys.UBLOCK_RULES: policy.to_dict(),
        }
        if format_enabled is not None:
            values[StorageKeys.UBLOCK_FORMAT_ENABLED] = format_enabled
        await write_settings(self.store, values, self.clock)

    def _source_from_text(self, text: str, url: str) -> Source:
        rules = ensure_importable(build_rules(text))
        return Source(
            url=url,
            imported_at=self.clock(),
            rule_count=rules.rule_count,
            block_domains=rules.block_domains,
            exception_domains=rules.exception_domains,
        )

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def load(
        self, render: Callable[[list[Source]], Any] | None = None
    ) -> list[Source]:
        """Return the current sources, passing them to ``render`` if given."""
        sources = await self._read_sources()
        if render is not None:
            render(sources)
        return sources

    async def save(self, text: str, url: str | None = None) -> SaveResult:
        """
        Import filter text as a source.

        Args:
            text: Filter list text
            url: Origin URL; None (or empty) stores it as the manual source

        Returns:
            SaveResult with the new source list, "add" or "update", and the
            number of rules imported

        Raises:
            ParseSyntaxError: any line is malformed (nothing is written)
            EmptyPolicyError: no rules in ``text`` (nothing is written)
        """
        source_url = url or MANUAL_URL
        try:
            new_source = self._source_from_text(text, source_url)
        except DomainFilterError as e:
            logger.warning("Rejected import for %s: %s", source_url, e)
            raise

        async with self._lock:
            sources = await self._read_sources()
            existing = next((i for i, s in enumerate(sources) if s.url == source_url), None)
            if existing is None:
                sources.append(new_source)
                action: Literal["add", "update"] = "add"
            else:
                sources[existing] = new_source
                action = "update"
            await self._write(sources, format_enabled=True)

        logger.info("Source %s: %s (%d rules)", action, source_url, new_source.rule_count)
        return SaveResult(sources, action, new_source.rule_count)

    async def save_from_url(self, url: str) -> SaveResult:
        """Fetch ``url`` and import it as a URL-backed source."""
        if not is_valid_url(url):
            raise NetworkFetchError(url, f"Invalid URL: {url!r}")
        url = url.strip()
        text = await self.fetch(url)
        return await self.save(text, url)

    async def import_file(self, path: str | Path) -> SaveResult:
        """Read a local filter file and import it as the manual source."""
        text = await read_filter_file(path)
        return await self.save(text)

    async def delete(self, index: int) -> list[Source]:
        """
        Remove the source at ``index``.

        Out-of-range indexes are ignored and nothing is written.
        """
        async with self._lock:
            sources = await self._read_sources()
            if not 0 <= index < len(sources):
                return sources
            removed = sources.pop(index)
            await self._write(sources, format_enabled=bool(sources))

        logger.info("Source delete: %s", removed.url)
        return sources

    async def reload(self, index: int, fetch: FetchFn | None = None) -> ReloadResult:
        """
        Re-fetch a URL-backed source and replace its domains.

        Raises:
            InvalidIndexError: ``index`` outside the source list
            ImmutableSourceError: the source is the manual one (no fetch made)
            FetchError: fetching failed (state untouched)
            ParseSyntaxError / EmptyPolicyError: fetched text rejected
        """
        fetch = fetch or self.fetch
        sources = await self._read_sources()
        if not 0 <= index < len(sources):
            raise InvalidIndexError(index, len(sources))
        target = sources[index]
        if target.is_manual:
            raise ImmutableSourceError()

        text = await fetch(target.url)
        try:
            fresh = self._source_from_text(text, target.url)
        except DomainFilterError as e:
            logger.warning("Rejected reload for %s: %s", target.url, e)
            raise

        async with self._lock:
            # Re-read: the list may have changed while we were fetching
            sources = await self._read_sources()
            position = next((i for i, s in enumerate(sources) if s.url == target.url), None)
            if position is None:
                raise InvalidIndexError(index, len(sources))
            sources[position] = fresh
            await self._write(sources, format_enabled=None)

        logger.info("Source reload: %s (%d rules)", target.url, fresh.rule_count)
        return ReloadResult(sources, fresh.rule_count)

    # Mutation interface used by collaborators
    save_source = save
    delete_source = delete
    reload_source = reload
    list_sources = load


__all__ = [
    "MANUAL_URL",
    "Source",
    "SaveResult",
    "ReloadResult",
    "SourceManager",
]
