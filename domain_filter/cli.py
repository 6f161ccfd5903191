#!/usr/bin/env python3
"""
cli.py - Command line interface for the domain filter

Usage:
    python -m domain_filter [--store PATH] [--verbose] <command> ...

Commands:
    import FILE            Import a local filter list as the manual source
    import-url URL         Fetch and import a URL-backed source
    list                   Show imported sources
    delete INDEX           Remove a source
    reload INDEX           Re-fetch a URL-backed source
    export                 Print the merged policy as filter text
    mode MODE              Set the filter mode (disabled/whitelist/blacklist)
    set-list MODE FILE     Replace the whitelist or blacklist from a file
    check URL              Decide whether a URL is allowed
    preview FILE           Parse a filter list without importing it
"""
from __future__ import annotations

import argparse
import asyncio
import functools
import logging
import sys
import time
from typing import Final

from domain_filter.builder import export_domains, preview
from domain_filter.errors import DomainFilterError
from domain_filter.fetcher import DEFAULT_RETRIES, DEFAULT_TIMEOUT, fetch_text, read_filter_file
from domain_filter.matcher import DomainFilter
from domain_filter.merger import MergedPolicy
from domain_filter.settings import (
    FilterMode,
    StorageKeys,
    parse_domain_list,
    set_domain_list,
    set_mode,
)
from domain_filter.sources import Source, SourceManager
from domain_filter.store import JsonFileStore


DEFAULT_STORE: Final[str] = "domain_filter.json"

ACTIONS: Final[dict[str, str]] = {"add": "added", "update": "updated"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="domain_filter",
        description="Manage uBlock-style domain filter sources and check URLs",
    )
    parser.add_argument("--store", default=DEFAULT_STORE, help="Path to the JSON settings store")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("import", help="Import a local filter list as the manual source")
    p.add_argument("file")

    p = sub.add_parser("import-url", help="Fetch and import a URL-backed source")
    p.add_argument("url")
    p.add_argument("--timeout", type=int, default=DEFAULT_TIMEOUT, help="Request timeout in seconds")
    p.add_argument("--retries", type=int, default=DEFAULT_RETRIES, help="Number of retries per URL")

    sub.add_parser("list", help="Show imported sources")

    p = sub.add_parser("delete", help="Remove a source")
    p.add_argument("index", type=int)

    p = sub.add_parser("reload", help="Re-fetch a URL-backed source")
    p.add_argument("index", type=int)
    p.add_argument("--timeout", type=int, default=DEFAULT_TIMEOUT, help="Request timeout in seconds")
    p.add_argument("--retries", type=int, default=DEFAULT_RETRIES, help="Number of retries per URL")

    sub.add_parser("export", help="Print the merged policy as filter text")

    p = sub.add_parser("mode", help="Set the filter mode")
    p.add_argument("mode", choices=[m.value for m in FilterMode])

    p = sub.add_parser("set-list", help="Replace the whitelist or blacklist")
    p.add_argument("mode", choices=[FilterMode.WHITELIST.value, FilterMode.BLACKLIST.value])
    p.add_argument("file")

    p = sub.add_parser("check", help="Decide whether a URL is allowed")
    p.add_argument("url")

    p = sub.add_parser("preview", help="Parse a filter list without importing it")
    p.add_argument("file")

    return parser


def print_sources(sources: list[Source]) -> None:
    if not sources:
        print("📭 No sources imported")
        return
    print(f"📚 {len(sources)} source(s):")
    for i, source in enumerate(sources):
        stamp = time.strftime("%Y-%m-%d %H:%M", time.localtime(source.imported_at))
        print(f"   [{i}] {source.url:<50} {source.rule_count:>8,} rules  ({stamp})")


async def run(args: argparse.Namespace) -> int:
    """Dispatch one parsed command; returns the process exit code."""
    store = JsonFileStore(args.store)
    fetch = None
    if hasattr(args, "timeout"):
        fetch = functools.partial(fetch_text, timeout=args.timeout, retries=args.retries)
    manager = SourceManager(store, fetch=fetch)

    if args.command == "import":
        result = await manager.import_file(args.file)
        print(f"✅ Manual source {ACTIONS[result.action]}: {result.rule_count:,} rules")

    elif args.command == "import-url":
        result = await manager.save_from_url(args.url)
        print(f"✅ {args.url} {ACTIONS[result.action]}: {result.rule_count:,} rules")

    elif args.command == "list":
        await manager.load(render=print_sources)

    elif args.command == "delete":
        before = await manager.load()
        sources = await manager.delete(args.index)
        if len(sources) == len(before):
            print(f"⚠️  No source at index {args.index}, nothing deleted")
        else:
            print(f"🗑️  Deleted source {args.index}, {len(sources)} remaining")

    elif args.command == "reload":
        result = await manager.reload(args.index)
        print(f"🔄 Reloaded source {args.index}: {result.rule_count:,} rules")

    elif args.command == "export":
        data = await store.get([StorageKeys.UBLOCK_RULES])
        policy = MergedPolicy.from_dict(data.get(StorageKeys.UBLOCK_RULES))
        print(export_domains(policy.block_domains, policy.exception_domains))

    elif args.command == "mode":
        mode = await set_mode(store, args.mode)
        print(f"⚙️  Filter mode: {mode.value}")

    elif args.command == "set-list":
        domains = parse_domain_list(await read_filter_file(args.file))
        await set_domain_list(store, args.mode, domains)
        print(f"✅ {args.mode.capitalize()} updated: {len(domains):,} domains")

    elif args.command == "check":
        decision = await DomainFilter(store).is_url_allowed(args.url)
        verdict = "✅ allowed" if decision.allowed else "⛔ blocked"
        print(f"{verdict}: {args.url} (via {decision.source})")
        return 0 if decision.allowed else 3

    elif args.command == "preview":
        summary = preview(await read_filter_file(args.file))
        print(f"🔍 Block rules:     {summary.block_count:>8,}")
        print(f"   Exception rules: {summary.exception_count:>8,}")
        print(f"   Invalid lines:   {summary.error_count:>8,}")
        for error in summary.errors[:10]:
            print(f"   line {error.line_number}: {error.message}")
        return 0 if summary.error_count == 0 else 1

    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        return asyncio.run(run(args))
    except (DomainFilterError, OSError) as e:
        print(f"❌ ERROR: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
