#!/usr/bin/env python3
"""
fetcher.py - Async Filter List Fetcher

Downloads the text of a URL-backed filter source with a bounded timeout and
retries with exponential backoff.

Errors are split so callers can tell them apart:
    NetworkFetchError      connection refused, DNS, timeout, HTTP >= 400
    ContentTypeFetchError  server answered with a non-text body, or nothing

Only http://, https:// and ftp:// URLs are accepted. Anything else
(javascript:, data:, file:, ...) is rejected before any I/O happens.
"""
from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path
from sys import version
from typing import Final, cast

import aiofiles
import aiohttp

from domain_filter import __version__
from domain_filter.errors import (
    ContentTypeFetchError,
    FetchError,
    NetworkFetchError,
)


logger = logging.getLogger(__name__)


# Default configuration
DEFAULT_TIMEOUT: Final[int] = 30
DEFAULT_RETRIES: Final[int] = 3

USER_AGENT: Final[str] = f"domain-filter/{__version__} Python/{version.split()[0]}"

#: Schemes allowed for URL-backed sources
URL_PATTERN: Final[re.Pattern[str]] = re.compile(r"^(https?://|ftp://)", re.IGNORECASE)

#: Content types accepted as filter text besides text/*
TEXT_LIKE_TYPES: Final[frozenset[str]] = frozenset({
    "application/octet-stream",
    "application/x-adblock",
})

#: Substrings that identify connection-level failures in error messages
NETWORK_MARKERS: Final[tuple[str, ...]] = (
    "networkerror",
    "failed to fetch",
    "cannot connect",
    "connection",
    "timeout",
    "timed out",
)


def is_valid_url(url: str | None) -> bool:
    """
    Check that a source URL uses an allowed scheme.

    Example:
        >>> is_valid_url("https://easylist.to/easylist/easylist.txt")
        True
        >>> is_valid_url("javascript:alert(1)")
        False
    """
    if not url:
        return False
    return bool(URL_PATTERN.match(url.strip()))


def normalize_fetch_message(url: str, error: BaseException) -> str:
    """
    Turn a low-level error into a user-facing message.

    Connection-level failures (network down, blocked by policy, timeout) get a
    hint to check the URL and connection; everything else is a load error.
    """
    detail = str(error) or type(error).__name__
    lowered = f"{type(error).__name__} {detail}".lower()
    if isinstance(error, (aiohttp.ClientConnectionError, asyncio.TimeoutError)) or any(
        marker in lowered for marker in NETWORK_MARKERS
    ):
        return (
            f"Network error or access blocked while loading {url} ({detail}). "
            "Check the URL and your internet connection."
        )
    return f"URL load error for {url}: {detail}"


def _is_text(content_type: str) -> bool:
    return not content_type or content_type.startswith("text/") or content_type in TEXT_LIKE_TYPES


async def fetch_text(
    url: str,
    timeout: float = DEFAULT_TIMEOUT,
    retries: int = DEFAULT_RETRIES,
    session: aiohttp.ClientSession | None = None,
) -> str:
    """
    Fetch a filter list as text.

    Args:
        url: Source URL (http, https or ftp)
        timeout: Total seconds allowed per attempt
        retries: Attempts before giving up (backoff 1s, 2s, 4s, ...)
        session: Optional shared session; a private one is created otherwise

    Returns:
        Decoded body text

    Raises:
        NetworkFetchError: invalid URL, connection failure, timeout, HTTP error
        ContentTypeFetchError: non-text or empty body
    """
    if not is_valid_url(url):
        raise NetworkFetchError(url, f"Invalid URL: {url!r}")

    if session is None:
        async with aiohttp.ClientSession(headers={"User-Agent": USER_AGENT}) as own:
            return await fetch_text(url, timeout, retries, own)

    last_error: BaseException | None = None
    for attempt in range(max(1, retries)):
        try:
            async with session.get(
                url,
                timeout=aiohttp.ClientTimeout(total=timeout),
                allow_redirects=True,
            ) as response:
                if response.status >= 400:
                    last_error = NetworkFetchError(url, f"HTTP {response.status} for {url}")
                    # 4xx will not fix itself
                    if response.status < 500:
                        raise last_error
                else:
                    content_type = response.content_type or ""
                    if not _is_text(content_type):
                        raise ContentTypeFetchError(
                            url, f"Expected text from {url}, got {content_type}"
                        )
                    text = await response.text(errors="replace")
                    if not text.strip():
                        raise ContentTypeFetchError(url, f"Empty response from {url}")
                    return text

        except FetchError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            last_error = e

        if attempt < retries - 1:
            logger.debug("Retrying %s after attempt %d: %s", url, attempt + 1, last_error)
            await asyncio.sleep(2 ** attempt)

    failure = cast(BaseException, last_error)
    if isinstance(failure, FetchError):
        raise failure
    raise NetworkFetchError(url, normalize_fetch_message(url, failure)) from failure


async def read_filter_file(path: str | Path) -> str:
    """Read a local filter list (UTF-8, BOM tolerated, bad bytes replaced)."""
    async with aiofiles.open(path, encoding="utf-8-sig", errors="replace") as f:
        return await f.read()


__all__ = [
    "DEFAULT_TIMEOUT",
    "DEFAULT_RETRIES",
    "is_valid_url",
    "normalize_fetch_message",
    "fetch_text",
    "read_filter_file",
]
