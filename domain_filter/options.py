#!/usr/bin/env python3
"""
options.py - Option Parsing for uBlock-style Domain Rules

Decodes the trailing ``$opt1,opt2,...`` segment of a filter rule.

Supported options:
    domain=a.com|b.com     Rule applies only on the listed page domains
    domain=~a.com|b.com    Leading ~ inside the value negates the list
    ~domain=a.com          Rule never applies on the listed page domains
    3p / 1p                Third-party / first-party requests only
    important / ~important Priority flag
    match-case / ~match-case

Forward Compatibility:
    Every token is classified into exactly one OptionToken variant. Anything
    not listed above becomes an UnknownToken and is skipped, so future uBlock
    syntax never breaks parsing of the fields we do understand.

    Example: ||ads.example.com^$3p,script,domain=news.com
    - 3p            -> FlagToken("third_party", True)
    - script        -> UnknownToken("script")       (ignored)
    - domain=...    -> DomainToken(("news.com",), negated=False)
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Final, Union

from domain_filter.errors import InvalidOptionsError


logger = logging.getLogger(__name__)


# =============================================================================
# SYNTAX
# =============================================================================

OPTION_SEPARATOR: Final[str] = ","
DOMAIN_SEPARATOR: Final[str] = "|"
DOMAIN_PREFIX: Final[str] = "domain="
NEGATION: Final[str] = "~"

#: Literal flag tokens -> (OptionSet field, value)
FLAG_TOKENS: Final[dict[str, tuple[str, bool]]] = {
    "3p": ("third_party", True),
    "1p": ("first_party", True),
    "important": ("important", True),
    "~important": ("important", False),
    "match-case": ("match_case", True),
    "~match-case": ("match_case", False),
}


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class OptionSet:
    """
    Structured option set of one rule.

    Fields left at None were not present in the source text.
    """
    domains: tuple[str, ...] | None = None
    negated_domains: tuple[str, ...] | None = None
    third_party: bool | None = None
    first_party: bool | None = None
    important: bool | None = None
    match_case: bool | None = None

    def is_empty(self) -> bool:
        return not self.as_dict()

    def as_dict(self) -> dict[str, object]:
        """Return only the options that were set, using the persisted key names."""
        out: dict[str, object] = {}
        if self.domains:
            out["domains"] = list(self.domains)
        if self.negated_domains:
            out["negatedDomains"] = list(self.negated_domains)
        if self.third_party is not None:
            out["thirdParty"] = self.third_party
        if self.first_party is not None:
            out["firstParty"] = self.first_party
        if self.important is not None:
            out["important"] = self.important
        if self.match_case is not None:
            out["matchCase"] = self.match_case
        return out


@dataclass(frozen=True)
class DomainToken:
    """``domain=`` / ``~domain=`` token with its parsed domain list."""
    domains: tuple[str, ...]
    negated: bool


@dataclass(frozen=True)
class FlagToken:
    """Boolean flag such as ``3p`` or ``~important``."""
    name: str
    value: bool


@dataclass(frozen=True)
class UnknownToken:
    """Any token we do not understand, kept verbatim."""
    raw: str


OptionToken = Union[DomainToken, FlagToken, UnknownToken]

EMPTY_OPTIONS: Final[OptionSet] = OptionSet()


# =============================================================================
# PARSING
# =============================================================================

def parse_domain_list(value: str) -> tuple[str, ...]:
    """
    Split a ``|``-separated domain list, dropping empty entries.

    Example:
        >>> parse_domain_list("a.com||b.com|")
        ('a.com', 'b.com')
    """
    return tuple(d for d in value.split(DOMAIN_SEPARATOR) if d != "")


def classify_token(token: str) -> OptionToken:
    """
    Classify one trimmed option token.

    Args:
        token: A single option, e.g. ``"3p"`` or ``"domain=a.com|b.com"``

    Returns:
        The matching OptionToken variant (UnknownToken if nothing matches)

    Example:
        >>> classify_token("~domain=a.com")
        DomainToken(domains=('a.com',), negated=True)
        >>> classify_token("popup")
        UnknownToken(raw='popup')
    """
    if token.startswith(DOMAIN_PREFIX):
        value = token[len(DOMAIN_PREFIX):]
        if value.startswith(NEGATION):
            return DomainToken(parse_domain_list(value[1:]), negated=True)
        return DomainToken(parse_domain_list(value), negated=False)

    if token.startswith(NEGATION + DOMAIN_PREFIX):
        value = token[len(NEGATION + DOMAIN_PREFIX):]
        return DomainToken(parse_domain_list(value), negated=True)

    flag = FLAG_TOKENS.get(token)
    if flag is not None:
        return FlagToken(*flag)

    return UnknownToken(token)


def apply_token(options: OptionSet, token: OptionToken) -> OptionSet:
    """Fold a classified token into an option set."""
    if isinstance(token, DomainToken):
        # Empty value (e.g. "domain=" or "domain=|") sets nothing
        if not token.domains:
            return options
        if token.negated:
            return replace(options, negated_domains=token.domains)
        return replace(options, domains=token.domains)
    if isinstance(token, FlagToken):
        return replace(options, **{token.name: token.value})
    logger.debug("Ignoring unknown option token %r", token.raw)
    return options


def parse_options(text: str) -> OptionSet:
    """
    Parse the text after the ``$`` option delimiter.

    Args:
        text: Comma-separated option tokens

    Returns:
        OptionSet; empty when ``text`` is empty or whitespace-only

    Raises:
        InvalidOptionsError: ``text`` is not a string (e.g. None)

    Example:
        >>> parse_options("domain=a.com|b.com,3p").as_dict()
        {'domains': ['a.com', 'b.com'], 'thirdParty': True}
    """
    if not isinstance(text, str):
        raise InvalidOptionsError(f"Option text must be a string, got {type(text).__name__}")

    options = EMPTY_OPTIONS
    for part in text.strip().split(OPTION_SEPARATOR):
        part = part.strip()
        if not part:
            continue
        options = apply_token(options, classify_token(part))
    return options


__all__ = [
    "OptionSet",
    "DomainToken",
    "FlagToken",
    "UnknownToken",
    "OptionToken",
    "EMPTY_OPTIONS",
    "parse_domain_list",
    "classify_token",
    "apply_token",
    "parse_options",
]
