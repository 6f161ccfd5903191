#!/usr/bin/env python3
"""
merger.py - Policy Merger

Reduces all imported sources into one canonical policy: the deduplicated
union of every source's block domains and exception domains.

The merge is recomputed in full on every source change (add, update, delete,
reload). There is no incremental patching: merging a few thousand strings is
fast, and a full recompute is trivially idempotent.

Order is first-seen across sources, so the persisted policy stays stable
between rebuilds when nothing changed.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping


@dataclass
class MergedPolicy:
    """Deduplicated union of all sources."""
    block_domains: list[str] = field(default_factory=list)
    exception_domains: list[str] = field(default_factory=list)
    imported_at: float = 0.0

    @property
    def rule_count(self) -> int:
        return len(self.block_domains) + len(self.exception_domains)

    def is_empty(self) -> bool:
        return self.rule_count == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "blockDomains": list(self.block_domains),
            "exceptionDomains": list(self.exception_domains),
            "metadata": {
                "importedAt": self.imported_at,
                "ruleCount": self.rule_count,
            },
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "MergedPolicy":
        """Load a persisted policy; missing or malformed data gives an empty policy."""
        if not isinstance(data, Mapping):
            return cls()
        metadata = data.get("metadata") or {}
        return cls(
            block_domains=[str(d) for d in data.get("blockDomains") or []],
            exception_domains=[str(d) for d in data.get("exceptionDomains") or []],
            imported_at=float(metadata.get("importedAt") or 0.0),
        )


def _dedupe(groups: Iterable[Iterable[str]]) -> list[str]:
    # dict keeps insertion order, so this is an ordered set
    seen: dict[str, None] = {}
    for group in groups:
        for domain in group:
            seen.setdefault(domain, None)
    return list(seen)


def merge_sources(sources: Iterable[Any] | None, now: float | None = None) -> MergedPolicy:
    """
    Merge sources into one policy.

    Args:
        sources: Objects with ``block_domains`` and ``exception_domains``
            (None entries and a None list are tolerated)
        now: Timestamp for the policy metadata (defaults to time.time())

    Returns:
        MergedPolicy whose domain lists contain no duplicates
    """
    present = [s for s in (sources or []) if s is not None]
    return MergedPolicy(
        block_domains=_dedupe(s.block_domains or [] for s in present),
        exception_domains=_dedupe(s.exception_domains or [] for s in present),
        imported_at=time.time() if now is None else now,
    )


__all__ = ["MergedPolicy", "merge_sources"]
