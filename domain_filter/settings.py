"""
settings.py - Persisted settings keys, filter mode and simple domain lists

Besides uBlock-style sources, the filter supports a "simple format": plain
whitelist / blacklist domain lists edited one domain per line. Which list
applies is decided by the filter mode.

Every settings write goes through save_settings(), which regenerates the
filter cache in the same step so the cache never outlives the settings it
was derived from.
"""
from __future__ import annotations

import re
import time
from enum import Enum
from typing import Any, Callable, Final, Iterable, Mapping

from domain_filter.errors import InvalidDomainListError
from domain_filter.store import KeyValueStore, write_lock


class StorageKeys:
    """Logical keys persisted by the engine."""
    UBLOCK_SOURCES: Final = "ublock_sources"
    UBLOCK_RULES: Final = "ublock_rules"
    UBLOCK_FORMAT_ENABLED: Final = "ublock_format_enabled"
    SIMPLE_FORMAT_ENABLED: Final = "simple_format_enabled"
    DOMAIN_FILTER_MODE: Final = "domain_filter_mode"
    DOMAIN_WHITELIST: Final = "domain_whitelist"
    DOMAIN_BLACKLIST: Final = "domain_blacklist"
    DOMAIN_FILTER_CACHE: Final = "domain_filter_cache"
    DOMAIN_FILTER_CACHE_TIMESTAMP: Final = "domain_filter_cache_timestamp"
    DOMAIN_FILTER_CACHE_MODE: Final = "domain_filter_cache_mode"


ALL_KEYS: Final[tuple[str, ...]] = tuple(
    v for k, v in vars(StorageKeys).items() if k.isupper()
)

#: Keys needed to (re)build the filter cache
CACHE_INPUT_KEYS: Final[tuple[str, ...]] = (
    StorageKeys.DOMAIN_FILTER_MODE,
    StorageKeys.SIMPLE_FORMAT_ENABLED,
    StorageKeys.DOMAIN_WHITELIST,
    StorageKeys.DOMAIN_BLACKLIST,
)

#: Plain domain or wildcard pattern such as *.example.com
VALID_DOMAIN_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^(\*\.)*[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(\.[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)


class FilterMode(str, Enum):
    DISABLED = "disabled"
    WHITELIST = "whitelist"
    BLACKLIST = "blacklist"

    @classmethod
    def parse(cls, value: object) -> "FilterMode":
        """Unknown or missing modes behave as disabled."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.DISABLED


# =============================================================================
# SIMPLE DOMAIN LISTS
# =============================================================================

def parse_domain_list(text: str | None) -> list[str]:
    """Split textarea content into trimmed, non-empty lines."""
    if not text:
        return []
    return [line.strip() for line in text.split("\n") if line.strip()]


def is_valid_domain(domain: object) -> bool:
    """
    Check a simple-list entry.

    Example:
        >>> is_valid_domain("*.example.com")
        True
        >>> is_valid_domain("exa mple.com")
        False
    """
    if not isinstance(domain, str) or not domain:
        return False
    return bool(VALID_DOMAIN_PATTERN.match(domain))


def validate_domain_list(domains: object) -> list[str]:
    """Return one message per invalid entry (empty list means valid)."""
    if not isinstance(domains, list):
        return ["Domain list has an invalid format"]
    return [
        f'Line {i}: "{d}" is not a valid domain'
        for i, d in enumerate(domains, start=1)
        if not is_valid_domain(d)
    ]


# =============================================================================
# SETTINGS I/O
# =============================================================================

def simple_format_enabled(settings: Mapping[str, Any]) -> bool:
    # Absent means enabled
    return settings.get(StorageKeys.SIMPLE_FORMAT_ENABLED) is not False


def ublock_format_enabled(settings: Mapping[str, Any]) -> bool:
    # Absent means disabled
    return settings.get(StorageKeys.UBLOCK_FORMAT_ENABLED) is True


def build_cache(settings: Mapping[str, Any]) -> list[str]:
    """
    Domains to snapshot for the fast read path.

    Whitelist mode caches the whitelist, blacklist mode the blacklist. The
    uBlock rule set is never cached; the matcher defers to the authoritative
    check whenever it would matter.
    """
    if not simple_format_enabled(settings):
        return []
    mode = FilterMode.parse(settings.get(StorageKeys.DOMAIN_FILTER_MODE))
    if mode is FilterMode.WHITELIST:
        return list(settings.get(StorageKeys.DOMAIN_WHITELIST) or [])
    if mode is FilterMode.BLACKLIST:
        return list(settings.get(StorageKeys.DOMAIN_BLACKLIST) or [])
    return []


async def get_settings(store: KeyValueStore, keys: Iterable[str] = ALL_KEYS) -> dict[str, Any]:
    return await store.get(list(keys))


async def write_settings(
    store: KeyValueStore,
    values: Mapping[str, Any],
    clock: Callable[[], float] = time.time,
) -> None:
    """
    Persist settings and regenerate the filter cache in one write.

    The cache is derived from the merged view of current and new values and
    records the mode it was built for. Callers must hold write_lock(store).
    """
    current = await store.get(list(CACHE_INPUT_KEYS))
    current.update(values)
    payload = dict(values)
    payload[StorageKeys.DOMAIN_FILTER_CACHE] = build_cache(current)
    payload[StorageKeys.DOMAIN_FILTER_CACHE_MODE] = FilterMode.parse(
        current.get(StorageKeys.DOMAIN_FILTER_MODE)
    ).value
    payload[StorageKeys.DOMAIN_FILTER_CACHE_TIMESTAMP] = clock()
    await store.set(payload)


async def save_settings(
    store: KeyValueStore,
    values: Mapping[str, Any],
    clock: Callable[[], float] = time.time,
) -> None:
    """Locked write_settings, for callers outside a source operation."""
    async with write_lock(store):
        await write_settings(store, values, clock)


async def set_mode(
    store: KeyValueStore,
    mode: FilterMode | str,
    clock: Callable[[], float] = time.time,
) -> FilterMode:
    parsed = FilterMode.parse(mode)
    await save_settings(store, {StorageKeys.DOMAIN_FILTER_MODE: parsed.value}, clock)
    return parsed


async def set_domain_list(
    store: KeyValueStore,
    mode: FilterMode | str,
    domains: list[str],
    clock: Callable[[], float] = time.time,
) -> list[str]:
    """
    Replace the whitelist or blacklist.

    Raises:
        InvalidDomainListError: any entry is not a valid domain pattern
        ValueError: ``mode`` is disabled (there is no list to set)
    """
    parsed = FilterMode.parse(mode)
    if parsed is FilterMode.DISABLED:
        raise ValueError("Domain lists exist only for whitelist and blacklist modes")
    problems = validate_domain_list(domains)
    if problems:
        raise InvalidDomainListError(problems)
    key = (
        StorageKeys.DOMAIN_WHITELIST
        if parsed is FilterMode.WHITELIST
        else StorageKeys.DOMAIN_BLACKLIST
    )
    await save_settings(store, {key: list(domains)}, clock)
    return list(domains)


__all__ = [
    "StorageKeys",
    "FilterMode",
    "parse_domain_list",
    "is_valid_domain",
    "validate_domain_list",
    "simple_format_enabled",
    "ublock_format_enabled",
    "build_cache",
    "get_settings",
    "write_settings",
    "save_settings",
    "set_mode",
    "set_domain_list",
]
