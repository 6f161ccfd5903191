#!/usr/bin/env python3
"""
parser.py - Single-line Parser for uBlock-style Domain Rules

Turns one line of filter text into exactly one of:
    - Rule        a block (``||domain^``) or exception (``@@||domain^``) rule
    - ParseError  the line is neither blank, a comment, nor a valid rule
    - None        blank line or ``!`` comment, silently skipped

Accepted syntax (bit-exact):
    ||example.com^                 block rule
    @@||example.com^               exception rule
    ||*.example.com^$3p,important   wildcard domain with options
    ! comment                      comment

Design Decision - No Partial Rules:
    A line is a Rule only if it carries BOTH the ``||`` opener and the ``^``
    closer. ``||example.com`` (no caret) is a ParseError, never a guess.
    The rule builder rejects whole imports on any ParseError, so a broken
    list can never be installed half-way.
"""
from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from enum import Enum
from typing import Final, NamedTuple

from domain_filter.options import EMPTY_OPTIONS, OptionSet, parse_options


# =============================================================================
# SYNTAX
# =============================================================================

RULE_PREFIX: Final[str] = "||"
EXCEPTION_PREFIX: Final[str] = "@@||"
RULE_SUFFIX: Final[str] = "^"
OPTION_DELIMITER: Final[str] = "$"
COMMENT_MARKER: Final[str] = "!"

#: Pattern to detect a comment line (``!`` after optional whitespace)
COMMENT_PATTERN: Final[re.Pattern[str]] = re.compile(r"^\s*!")

#: Domain characters allowed inside ``||...^`` (wildcards and underscores included)
DOMAIN_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[a-z0-9_.*-]+$", re.IGNORECASE)

WHITESPACE_PATTERN: Final[re.Pattern[str]] = re.compile(r"\s+")


# =============================================================================
# DATA STRUCTURES
# =============================================================================

class RuleKind(str, Enum):
    """Kind of a parsed rule."""
    BLOCK = "block"
    EXCEPTION = "exception"


@dataclass(frozen=True)
class Rule:
    """
    One parsed filter line.

    Attributes:
        kind: BLOCK or EXCEPTION
        domain: Hostname pattern between the prefix and the ``^`` suffix
        options: Parsed ``$`` options (empty when absent)
        raw_line: Trimmed original text, kept for export
        line_number: 1-based position in the source text
        id: Deterministic id from kind + domain + line number
    """
    kind: RuleKind
    domain: str
    options: OptionSet
    raw_line: str
    line_number: int
    id: str


class ParseError(NamedTuple):
    """
    A line that is neither blank, a comment, nor a valid rule.

    Example:
        >>> ParseError(1, "invalid line", "missing rule prefix").line_number
        1
    """
    line_number: int
    line: str
    message: str


# =============================================================================
# LINE CLASSIFICATION
# =============================================================================

def is_empty_line(line: object) -> bool:
    """
    Check if a line is empty after trimming.

    Non-string input (None included) counts as empty so callers can skip it.

    Example:
        >>> is_empty_line("   ")
        True
        >>> is_empty_line(None)
        True
    """
    if not isinstance(line, str):
        return True
    return line.strip() == ""


def is_comment_line(line: object) -> bool:
    """
    Check if a line is a ``!`` comment.

    Example:
        >>> is_comment_line("! Title: My list")
        True
        >>> is_comment_line("||a.com^")
        False
    """
    if not isinstance(line, str):
        return False
    return bool(COMMENT_PATTERN.match(line))


def is_valid_rule_pattern(line: object) -> bool:
    """Check that a line has both the rule opener and the ``^`` closer."""
    if not isinstance(line, str):
        return False
    line = line.strip()
    if not line.startswith((RULE_PREFIX, EXCEPTION_PREFIX)):
        return False
    return line.split(OPTION_DELIMITER, 1)[0].endswith(RULE_SUFFIX)


def validate_domain(domain: str) -> bool:
    """Return True if ``domain`` is non-empty and uses only domain characters."""
    return bool(domain) and bool(DOMAIN_PATTERN.match(domain))


def generate_rule_id(kind: RuleKind, domain: str, line_number: int) -> str:
    """
    Derive a stable id for a rule.

    Re-parsing identical input yields identical ids, which keeps diffs and
    exports stable.
    """
    key = f"{kind.value}:{domain}:{line_number}"
    return hashlib.sha256(key.encode()).hexdigest()[:16]


# =============================================================================
# PARSING
# =============================================================================

def _split_kind(line: str) -> tuple[RuleKind, str]:
    """Strip the rule opener of a line that passed is_valid_rule_pattern."""
    if line.startswith(EXCEPTION_PREFIX):
        return RuleKind.EXCEPTION, line[len(EXCEPTION_PREFIX):]
    return RuleKind.BLOCK, line[len(RULE_PREFIX):]


def parse_line(line: str | None, line_number: int = 1) -> Rule | ParseError | None:
    """
    Parse one filter-list line.

    Args:
        line: Raw line (surrounding whitespace is ignored)
        line_number: 1-based position used in ids and diagnostics

    Returns:
        Rule for a valid rule, ParseError for a malformed line, None for
        blank and comment lines

    Example:
        >>> rule = parse_line("@@||cdn.example.com^$important")
        >>> rule.kind, rule.domain, rule.options.important
        (<RuleKind.EXCEPTION: 'exception'>, 'cdn.example.com', True)
        >>> parse_line("example.com").message
        'missing rule prefix (expected || or @@||)'
    """
    if not isinstance(line, str) or is_empty_line(line) or is_comment_line(line):
        return None

    trimmed = line.strip()
    if not is_valid_rule_pattern(trimmed):
        if trimmed.startswith((RULE_PREFIX, EXCEPTION_PREFIX)):
            message = "missing rule suffix (expected ^)"
        else:
            message = "missing rule prefix (expected || or @@||)"
        return ParseError(line_number, line, message)

    kind, rest = _split_kind(trimmed)

    # Domain ends at the first $; everything after it is options
    domain_part, has_options, option_text = rest.partition(OPTION_DELIMITER)

    domain = WHITESPACE_PATTERN.sub("", domain_part[:-len(RULE_SUFFIX)])
    if not validate_domain(domain):
        return ParseError(line_number, line, f"invalid domain {domain!r}")

    options = parse_options(option_text) if has_options else EMPTY_OPTIONS

    return Rule(
        kind=kind,
        domain=domain,
        options=options,
        raw_line=trimmed,
        line_number=line_number,
        id=generate_rule_id(kind, domain, line_number),
    )


__all__ = [
    "RuleKind",
    "Rule",
    "ParseError",
    "is_empty_line",
    "is_comment_line",
    "is_valid_rule_pattern",
    "validate_domain",
    "generate_rule_id",
    "parse_line",
]
