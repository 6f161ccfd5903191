#!/usr/bin/env python3
"""
builder.py - Rule Builder for Filter Lists

Runs every line of a filter text through the parser and collects block rules,
exception rules and parse errors independently.

Failure Policy (enforced by ensure_importable):
    - ANY parse error       -> ParseSyntaxError, the whole import is rejected
    - zero rules, no errors -> EmptyPolicyError (e.g. a comments-only file)

    Partially valid lists are never persisted. A list with one typo is
    rejected as a whole so the user fixes it, instead of silently losing rules.

Export:
    Persisted sources only keep flattened domain lists, so two exporters exist:
    export_text() renders parsed rules verbatim (options included) and
    export_domains() renders a merged policy back to plain ``||domain^`` lines.
"""
from __future__ import annotations

import time
from functools import lru_cache
from typing import NamedTuple

from domain_filter.errors import EmptyPolicyError, ParseSyntaxError
from domain_filter.parser import ParseError, Rule, RuleKind, parse_line


EXPORT_TITLE = "! Auto-exported by domain-filter"


# =============================================================================
# DATA STRUCTURES
# =============================================================================

class RuleSet(NamedTuple):
    """Parsed rules of one filter text."""
    block_rules: tuple[Rule, ...]
    exception_rules: tuple[Rule, ...]

    @property
    def rule_count(self) -> int:
        return len(self.block_rules) + len(self.exception_rules)

    @property
    def block_domains(self) -> list[str]:
        return [r.domain for r in self.block_rules]

    @property
    def exception_domains(self) -> list[str]:
        return [r.domain for r in self.exception_rules]


class BuildResult(NamedTuple):
    """
    Outcome of building one filter text.

    Attributes:
        rules: Accepted rules
        errors: One ParseError per malformed line, in line order
    """
    rules: RuleSet
    errors: tuple[ParseError, ...]


class Preview(NamedTuple):
    """Counts shown before the user confirms an import."""
    block_count: int
    exception_count: int
    error_count: int
    errors: tuple[ParseError, ...]


EMPTY_RESULT = BuildResult(RuleSet((), ()), ())


# =============================================================================
# BUILDING
# =============================================================================

@lru_cache(maxsize=4)
def _build_cached(text: str) -> BuildResult:
    block: list[Rule] = []
    exception: list[Rule] = []
    errors: list[ParseError] = []

    for number, line in enumerate(text.split("\n"), start=1):
        parsed = parse_line(line, number)
        if parsed is None:
            continue
        if isinstance(parsed, ParseError):
            errors.append(parsed)
        elif parsed.kind is RuleKind.EXCEPTION:
            exception.append(parsed)
        else:
            block.append(parsed)

    return BuildResult(RuleSet(tuple(block), tuple(exception)), tuple(errors))


def build_rules(text: str | None) -> BuildResult:
    """
    Parse a full filter text.

    The last few texts are memoised; results are immutable so sharing is safe.

    Args:
        text: Filter list, one rule per line (``\\n`` or ``\\r\\n``)

    Returns:
        BuildResult with rules and errors; empty for non-string input

    Example:
        >>> result = build_rules("||example.com^\\n||test.com^")
        >>> result.rules.rule_count, len(result.errors)
        (2, 0)
    """
    if not isinstance(text, str):
        return EMPTY_RESULT
    return _build_cached(text)


def ensure_importable(result: BuildResult) -> RuleSet:
    """
    Apply the all-or-nothing import policy.

    Returns:
        The rule set, when it may be persisted

    Raises:
        ParseSyntaxError: at least one line failed to parse
        EmptyPolicyError: no errors, but also no rules
    """
    if result.errors:
        raise ParseSyntaxError(result.errors)
    if result.rules.rule_count == 0:
        raise EmptyPolicyError()
    return result.rules


def preview(text: str | None) -> Preview:
    """Summarise what an import of ``text`` would contain."""
    result = build_rules(text)
    return Preview(
        block_count=len(result.rules.block_rules),
        exception_count=len(result.rules.exception_rules),
        error_count=len(result.errors),
        errors=result.errors,
    )


# =============================================================================
# EXPORT
# =============================================================================

def _header(total: int, now: float | None) -> list[str]:
    stamp = time.strftime(
        "%Y-%m-%dT%H:%M:%SZ", time.gmtime(time.time() if now is None else now)
    )
    return [EXPORT_TITLE, f"! Exported at: {stamp}", f"! Total rules: {total}", ""]


def export_text(rules: RuleSet, now: float | None = None) -> str:
    """
    Render parsed rules back to filter text.

    Exceptions come first, then blocks; each rule is written as its original
    line so options survive the round trip.
    """
    lines = _header(rules.rule_count, now)
    lines.extend(r.raw_line for r in rules.exception_rules)
    lines.extend(r.raw_line for r in rules.block_rules)
    return "\n".join(lines)


def export_domains(
    block_domains: list[str],
    exception_domains: list[str],
    now: float | None = None,
) -> str:
    """Render flattened domain lists (e.g. a merged policy) as filter text."""
    lines = _header(len(block_domains) + len(exception_domains), now)
    lines.extend(f"@@||{d}^" for d in exception_domains)
    lines.extend(f"||{d}^" for d in block_domains)
    return "\n".join(lines)


__all__ = [
    "RuleSet",
    "BuildResult",
    "Preview",
    "build_rules",
    "ensure_importable",
    "preview",
    "export_text",
    "export_domains",
]
