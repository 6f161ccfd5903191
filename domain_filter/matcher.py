#!/usr/bin/env python3
"""
matcher.py - Cached and Authoritative URL Decisions

Answers one question for the content-injection gate: may this URL be
recorded?

Two paths:

    Cache path (fast)
        Reads the filter-cache snapshot written with every settings change.
        The snapshot is trusted only while fresh (TTL 5 minutes); stale and
        absent snapshots are a cache miss, never a guess.

    Authoritative path
        Reads the full settings: simple whitelist/blacklist plus the merged
        uBlock policy, where exception rules override block rules.

Cache State Machine:
    Absent -> Fresh -> Stale (by elapsed time, discovered lazily on read)
    Every settings write regenerates the snapshot (back to Fresh) and
    records the mode it was built for; a mode mismatch reads as Stale.

Fail-Closed:
    A URL whose hostname cannot be extracted is denied on both paths.
    A broken URL is never implicitly allowed.

Pattern Matching:
    "*.example.com"  -> anchored, case-insensitive regex  ^.*\\.example\\.com$
    "example.com"    -> case-insensitive equality
"""
from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Callable, Final, Iterable, Literal, Mapping, NamedTuple, Union
from urllib.parse import urlsplit

from domain_filter.errors import MalformedUrlError
from domain_filter.merger import MergedPolicy
from domain_filter.settings import (
    ALL_KEYS,
    FilterMode,
    StorageKeys,
    simple_format_enabled,
    ublock_format_enabled,
)
from domain_filter.store import KeyValueStore


logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS: Final[float] = 5 * 60

#: Keys read by the cache path
CACHE_KEYS: Final[tuple[str, ...]] = (
    StorageKeys.DOMAIN_FILTER_CACHE,
    StorageKeys.DOMAIN_FILTER_CACHE_TIMESTAMP,
    StorageKeys.DOMAIN_FILTER_CACHE_MODE,
    StorageKeys.DOMAIN_FILTER_MODE,
    StorageKeys.UBLOCK_FORMAT_ENABLED,
    StorageKeys.SIMPLE_FORMAT_ENABLED,
)


# =============================================================================
# HOSTNAMES AND PATTERNS
# =============================================================================

def extract_domain(url: str | None) -> str | None:
    """
    Extract the hostname of a URL, without a leading ``www.``.

    Returns:
        Lowercased hostname, or None if the URL is malformed or has no host

    Example:
        >>> extract_domain("https://www.Example.com/path?q=1")
        'example.com'
        >>> extract_domain("not a url") is None
        True
    """
    if not isinstance(url, str) or not url.strip():
        return None
    try:
        hostname = urlsplit(url.strip()).hostname
    except ValueError:
        return None
    if not hostname:
        return None
    if hostname.startswith("www."):
        hostname = hostname[4:]
    return hostname or None


@lru_cache(maxsize=4096)
def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Compile a ``*`` wildcard pattern to an anchored case-insensitive regex."""
    body = ".*".join(re.escape(part) for part in pattern.split("*"))
    return re.compile(f"^{body}$", re.IGNORECASE)


def matches_pattern(domain: str, pattern: str) -> bool:
    """
    Match a hostname against one pattern.

    Example:
        >>> matches_pattern("sub.example.com", "*.example.com")
        True
        >>> matches_pattern("Example.com", "example.COM")
        True
    """
    if "*" in pattern:
        return bool(compile_pattern(pattern).match(domain))
    return domain.lower() == pattern.lower()


def is_domain_in_list(domain: str, patterns: Iterable[str] | None) -> bool:
    if not patterns:
        return False
    return any(matches_pattern(domain, p) for p in patterns)


# =============================================================================
# DECISIONS
# =============================================================================

class Decision(NamedTuple):
    """
    Outcome for one URL.

    Attributes:
        allowed: True if content extraction may run
        source: "cache" or "authoritative"
        error: Set when the decision was a fail-closed denial
    """
    allowed: bool
    source: Literal["cache", "authoritative"]
    error: MalformedUrlError | None = None


class CacheMiss(NamedTuple):
    """The cache cannot decide; the caller must use the authoritative path."""
    reason: str


# -----------------------------------------------------------------------------
# Cache states
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class Fresh:
    domains: tuple[str, ...]
    mode: FilterMode
    rule_format_enabled: bool = False
    simple_format_enabled: bool = True


@dataclass(frozen=True)
class Stale:
    cached_at: float


@dataclass(frozen=True)
class Absent:
    pass


CacheState = Union[Fresh, Stale, Absent]


def cache_state(data: Mapping[str, Any], now: float) -> CacheState:
    """
    Classify raw cache keys read from the store.

    A snapshot built for another mode than the live one is Stale: its
    domains belong to the other list and must not be trusted.
    """
    cached_at = data.get(StorageKeys.DOMAIN_FILTER_CACHE_TIMESTAMP)
    cached_mode = data.get(StorageKeys.DOMAIN_FILTER_CACHE_MODE)
    if not isinstance(cached_at, (int, float)) or cached_at <= 0 or cached_mode is None:
        return Absent()
    if now - cached_at >= CACHE_TTL_SECONDS:
        return Stale(float(cached_at))
    mode = FilterMode.parse(cached_mode)
    if mode is not FilterMode.parse(data.get(StorageKeys.DOMAIN_FILTER_MODE)):
        return Stale(float(cached_at))
    return Fresh(
        domains=tuple(data.get(StorageKeys.DOMAIN_FILTER_CACHE) or ()),
        mode=mode,
        rule_format_enabled=ublock_format_enabled(data),
        simple_format_enabled=simple_format_enabled(data),
    )


async def read_cache(store: KeyValueStore, now: float) -> CacheState:
    return cache_state(await store.get(list(CACHE_KEYS)), now)


def evaluate_cache(state: CacheState, hostname: str) -> Decision | CacheMiss:
    """
    Decide from a cache state alone.

    Blacklist mode with the uBlock rule format active always misses: the
    snapshot holds no exception rules, so only the authoritative matcher can
    answer correctly.
    """
    if isinstance(state, Absent):
        return CacheMiss("absent")
    if isinstance(state, Stale):
        return CacheMiss("stale")

    if state.mode is FilterMode.DISABLED:
        return Decision(True, "cache")

    if not state.simple_format_enabled:
        return CacheMiss("simple format disabled")

    if state.mode is FilterMode.WHITELIST:
        return Decision(is_domain_in_list(hostname, state.domains), "cache")

    if state.rule_format_enabled:
        return CacheMiss("rule format active")
    return Decision(not is_domain_in_list(hostname, state.domains), "cache")


def _fail_closed(url: object, source: Literal["cache", "authoritative"]) -> Decision:
    logger.debug("Denying malformed URL %r", url)
    return Decision(False, source, MalformedUrlError(f"Cannot extract hostname from {url!r}"))


async def check_cache(url: str, store: KeyValueStore, now: float) -> Decision | CacheMiss:
    """Cache path: a Decision, or CacheMiss when the snapshot cannot decide."""
    hostname = extract_domain(url)
    if hostname is None:
        return _fail_closed(url, "cache")
    return evaluate_cache(await read_cache(store, now), hostname)


# =============================================================================
# AUTHORITATIVE MATCHING
# =============================================================================

@dataclass
class RuleIndex:
    """
    Lookup structure over a merged policy.

    Exact domains go into sets (O(1) lookup); wildcard patterns are scanned.
    Exception rules are checked first and win over block rules.
    """
    block_exact: set[str] = field(default_factory=set)
    block_wildcards: list[str] = field(default_factory=list)
    exception_exact: set[str] = field(default_factory=set)
    exception_wildcards: list[str] = field(default_factory=list)

    @classmethod
    def from_policy(cls, policy: MergedPolicy) -> "RuleIndex":
        index = cls()
        for domain in policy.block_domains:
            if "*" in domain:
                index.block_wildcards.append(domain)
            else:
                index.block_exact.add(domain.lower())
        for domain in policy.exception_domains:
            if "*" in domain:
                index.exception_wildcards.append(domain)
            else:
                index.exception_exact.add(domain.lower())
        return index

    def is_exception(self, domain: str) -> bool:
        return domain.lower() in self.exception_exact or is_domain_in_list(
            domain, self.exception_wildcards
        )

    def is_blocked(self, domain: str) -> bool:
        if self.is_exception(domain):
            return False
        return domain.lower() in self.block_exact or is_domain_in_list(
            domain, self.block_wildcards
        )


def is_url_blocked(url: str, policy: MergedPolicy, index: RuleIndex | None = None) -> bool:
    """True if the merged uBlock policy blocks ``url``; unparsable URLs are not blocked here."""
    domain = extract_domain(url)
    if domain is None:
        return False
    return (index or RuleIndex.from_policy(policy)).is_blocked(domain)


def is_domain_allowed(
    url: str,
    settings: Mapping[str, Any],
    index: RuleIndex | None = None,
) -> bool:
    """
    Authoritative decision from full settings.

    allowed = simple-list verdict AND NOT blocked by the uBlock policy
    """
    mode = FilterMode.parse(settings.get(StorageKeys.DOMAIN_FILTER_MODE))
    if mode is FilterMode.DISABLED:
        return True

    domain = extract_domain(url)
    if domain is None:
        return False

    simple_ok = True
    if simple_format_enabled(settings):
        if mode is FilterMode.WHITELIST:
            simple_ok = is_domain_in_list(domain, settings.get(StorageKeys.DOMAIN_WHITELIST))
        else:
            simple_ok = not is_domain_in_list(domain, settings.get(StorageKeys.DOMAIN_BLACKLIST))

    blocked = False
    if ublock_format_enabled(settings):
        policy = MergedPolicy.from_dict(settings.get(StorageKeys.UBLOCK_RULES))
        if not policy.is_empty():
            blocked = (index or RuleIndex.from_policy(policy)).is_blocked(domain)

    return simple_ok and not blocked


# =============================================================================
# QUERY INTERFACE
# =============================================================================

class DomainFilter:
    """
    Decision query used by the content-injection gate.

    Tries the cache first and falls back to the authoritative check on a
    miss. The rule index is rebuilt only when the stored policy changes.
    """

    def __init__(self, store: KeyValueStore, clock: Callable[[], float] = time.time):
        self.store = store
        self.clock = clock
        self._index_key: tuple | None = None
        self._index: RuleIndex | None = None

    def _index_for(self, settings: Mapping[str, Any]) -> RuleIndex:
        policy = MergedPolicy.from_dict(settings.get(StorageKeys.UBLOCK_RULES))
        key = (tuple(policy.block_domains), tuple(policy.exception_domains))
        if self._index is None or key != self._index_key:
            self._index = RuleIndex.from_policy(policy)
            self._index_key = key
        return self._index

    async def check_authoritative(self, url: str) -> Decision:
        if extract_domain(url) is None:
            return _fail_closed(url, "authoritative")
        settings = await self.store.get(list(ALL_KEYS))
        allowed = is_domain_allowed(url, settings, self._index_for(settings))
        return Decision(allowed, "authoritative")

    async def is_url_allowed(self, url: str) -> Decision:
        """
        Decide whether ``url`` may be recorded.

        Example:
            >>> decision = await DomainFilter(store).is_url_allowed("https://a.com")
            >>> decision.allowed, decision.source
            (True, 'cache')
        """
        result = await check_cache(url, self.store, self.clock())
        if isinstance(result, Decision):
            return result
        logger.debug("Cache miss for %s (%s)", url, result.reason)
        return await self.check_authoritative(url)


__all__ = [
    "CACHE_TTL_SECONDS",
    "extract_domain",
    "compile_pattern",
    "matches_pattern",
    "is_domain_in_list",
    "Decision",
    "CacheMiss",
    "Fresh",
    "Stale",
    "Absent",
    "CacheState",
    "cache_state",
    "read_cache",
    "evaluate_cache",
    "check_cache",
    "RuleIndex",
    "is_url_blocked",
    "is_domain_allowed",
    "DomainFilter",
]
