"""
domain_filter package - Domain Filter & Rule Engine

Modules:
    parser: Parse one uBlock-style network rule line
    options: Parse the ``$option,...`` tail of a rule
    builder: Build rule sets from filter text, preview and export
    merger: Merge sources into one deduplicated policy
    store: Key-value persistence (in-memory and JSON file)
    fetcher: Download URL-backed filter lists
    settings: Filter mode, simple domain lists and cache regeneration
    sources: Add, update, delete and reload filter sources
    matcher: Cached and authoritative URL decisions
    cli: Command line interface
"""

__version__ = "1.0.0"
