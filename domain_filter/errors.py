"""
errors.py - Exception taxonomy for the domain filter engine

Every failure the engine surfaces to a caller derives from DomainFilterError,
so callers can catch the whole family in one place (the CLI does).

Hierarchy:
    DomainFilterError
    ├── ParseSyntaxError        one or more malformed filter lines
    ├── EmptyPolicyError        zero valid rules after parsing
    ├── InvalidOptionsError     option segment is not a string
    ├── InvalidIndexError       source operation on an out-of-range index
    ├── ImmutableSourceError    reload attempted on the manual source
    ├── InvalidDomainListError  simple whitelist/blacklist contains bad entries
    ├── MalformedUrlError       hostname extraction failed
    └── FetchError              URL-backed source could not be retrieved
        ├── NetworkFetchError       connection, timeout, HTTP status
        └── ContentTypeFetchError   response was not text
"""
from __future__ import annotations

from typing import Sequence


class DomainFilterError(Exception):
    """Base class for all engine errors."""


class ParseSyntaxError(DomainFilterError):
    """
    Raised when an import contains malformed lines.

    Imports are all-or-nothing, so a single bad line rejects the whole text.

    Attributes:
        errors: The ParseError records collected by the rule builder
    """

    def __init__(self, errors: Sequence, message: str | None = None):
        self.errors = tuple(errors)
        if message is None:
            message = f"{len(self.errors)} invalid line(s) found, import rejected"
            if self.errors:
                first = self.errors[0]
                message += f" (line {first.line_number}: {first.message})"
        super().__init__(message)


class EmptyPolicyError(DomainFilterError):
    """Raised when filter text parses cleanly but yields no rules."""

    def __init__(self, message: str = "No valid rules found, import rejected"):
        super().__init__(message)


class InvalidOptionsError(DomainFilterError, TypeError):
    """Raised when the option parser receives something other than a string."""


class InvalidIndexError(DomainFilterError, IndexError):
    """Raised when a source index is outside [0, len(sources))."""

    def __init__(self, index: int, length: int):
        self.index = index
        self.length = length
        super().__init__(f"Invalid source index {index} (have {length} sources)")


class ImmutableSourceError(DomainFilterError):
    """Raised when reloading a manually entered source."""

    def __init__(self, message: str = "Manual sources cannot be reloaded"):
        super().__init__(message)


class InvalidDomainListError(DomainFilterError, ValueError):
    """
    Raised when a simple-format domain list contains invalid entries.

    Attributes:
        problems: One human-readable message per rejected entry
    """

    def __init__(self, problems: Sequence[str]):
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))


class MalformedUrlError(DomainFilterError, ValueError):
    """
    Hostname could not be extracted from a URL.

    The matcher never raises this; it records it on a fail-closed Decision.
    """


class FetchError(DomainFilterError):
    """A URL-backed source could not be retrieved."""

    def __init__(self, url: str, message: str):
        self.url = url
        super().__init__(message)


class NetworkFetchError(FetchError):
    """Connection failure, timeout, or HTTP error status."""


class ContentTypeFetchError(FetchError):
    """The server answered, but not with text."""


__all__ = [
    "DomainFilterError",
    "ParseSyntaxError",
    "EmptyPolicyError",
    "InvalidOptionsError",
    "InvalidIndexError",
    "ImmutableSourceError",
    "InvalidDomainListError",
    "MalformedUrlError",
    "FetchError",
    "NetworkFetchError",
    "ContentTypeFetchError",
]
