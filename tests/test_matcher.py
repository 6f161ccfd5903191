"""Tests for domain_filter.matcher."""

# pylint: disable=missing-function-docstring
import asyncio

from pytest import mark

from domain_filter.errors import MalformedUrlError
from domain_filter.matcher import (
    CACHE_TTL_SECONDS,
    Absent,
    CacheMiss,
    Decision,
    DomainFilter,
    Fresh,
    RuleIndex,
    Stale,
    cache_state,
    check_cache,
    evaluate_cache,
    extract_domain,
    is_domain_allowed,
    is_url_blocked,
    matches_pattern,
)
from domain_filter.merger import MergedPolicy
from domain_filter.settings import FilterMode, StorageKeys, set_domain_list, set_mode
from domain_filter.sources import SourceManager
from domain_filter.store import JsonFileStore, MemoryStore


@mark.parametrize(
    "url, expected",
    [
        ("https://www.Example.com/path?q=1", "example.com"),
        ("http://sub.example.com:8080/", "sub.example.com"),
        ("https://www.sub.example.com", "sub.example.com"),
        ("not a url", None),
        ("", None),
        (None, None),
        ("http://[::1", None),
    ],
)
def test_extract_domain(url, expected):
    assert extract_domain(url) == expected


@mark.parametrize(
    "domain, pattern, expected",
    [
        ("sub.example.com", "*.example.com", True),
        ("a.b.example.com", "*.example.com", True),
        ("example.org", "*.example.com", False),
        ("example.com", "*.example.com", False),
        ("SUB.Example.com", "*.example.com", True),
        ("example.com", "EXAMPLE.com", True),
        ("examplexcom", "example.com", False),
        ("ads1.net", "ads*.net", True),
    ],
)
def test_matches_pattern(domain, pattern, expected):
    assert matches_pattern(domain, pattern) is expected


def test_cache_state_transitions():
    now = 1000.0
    fresh = {
        StorageKeys.DOMAIN_FILTER_CACHE_TIMESTAMP: now - CACHE_TTL_SECONDS + 1,
        StorageKeys.DOMAIN_FILTER_CACHE: ["a.com"],
        StorageKeys.DOMAIN_FILTER_CACHE_MODE: "whitelist",
        StorageKeys.DOMAIN_FILTER_MODE: "whitelist",
    }

    assert cache_state({}, now) == Absent()
    assert cache_state({StorageKeys.DOMAIN_FILTER_CACHE_TIMESTAMP: 0}, now) == Absent()
    assert cache_state(fresh, now) == Fresh(("a.com",), FilterMode.WHITELIST)
    assert isinstance(
        cache_state({StorageKeys.DOMAIN_FILTER_CACHE_TIMESTAMP: now - CACHE_TTL_SECONDS}, now),
        Stale,
    )


def test_evaluate_cache():
    whitelist = Fresh(("*.example.com",), FilterMode.WHITELIST)
    blacklist = Fresh(("bad.com",), FilterMode.BLACKLIST)

    assert evaluate_cache(Absent(), "a.com") == CacheMiss("absent")
    assert evaluate_cache(Stale(1.0), "a.com") == CacheMiss("stale")
    assert evaluate_cache(Fresh((), FilterMode.DISABLED), "a.com") == Decision(True, "cache")
    assert evaluate_cache(whitelist, "sub.example.com") == Decision(True, "cache")
    assert evaluate_cache(whitelist, "example.org") == Decision(False, "cache")
    assert evaluate_cache(blacklist, "bad.com") == Decision(False, "cache")
    assert evaluate_cache(blacklist, "good.com") == Decision(True, "cache")


def test_evaluate_cache_defers_when_it_cannot_know():
    simple_off = Fresh(("a.com",), FilterMode.WHITELIST, simple_format_enabled=False)
    rules_on = Fresh(("a.com",), FilterMode.BLACKLIST, rule_format_enabled=True)

    assert isinstance(evaluate_cache(simple_off, "a.com"), CacheMiss)
    assert isinstance(evaluate_cache(rules_on, "b.com"), CacheMiss)


def test_malformed_url_fails_closed_on_cache_path(store):
    decision = asyncio.run(check_cache("not a url", store, 0))

    assert decision.allowed is False
    assert decision.source == "cache"
    assert isinstance(decision.error, MalformedUrlError)


def test_rule_index_exceptions_win():
    index = RuleIndex.from_policy(
        MergedPolicy(["*.tracker.net", "ads.com"], ["safe.tracker.net"])
    )

    assert index.is_blocked("x.tracker.net")
    assert index.is_blocked("ADS.com")
    assert not index.is_blocked("safe.tracker.net")
    assert not index.is_blocked("sub.ads.com")


def test_is_url_blocked():
    policy = MergedPolicy(["ads.com"], ["ok.ads.com"])

    assert is_url_blocked("https://www.ads.com/banner", policy)
    assert not is_url_blocked("https://ok.ads.com", policy)
    assert not is_url_blocked("garbage", policy)


def settings(**values):
    return {getattr(StorageKeys, k.upper()): v for k, v in values.items()}


def test_is_domain_allowed_disabled_allows_everything():
    assert is_domain_allowed("https://a.com", settings(domain_filter_mode="disabled"))
    assert is_domain_allowed("https://a.com", {})


def test_is_domain_allowed_simple_lists():
    white = settings(domain_filter_mode="whitelist", domain_whitelist=["*.example.com"])
    black = settings(domain_filter_mode="blacklist", domain_blacklist=["bad.com"])

    assert is_domain_allowed("https://sub.example.com", white)
    assert not is_domain_allowed("https://example.org", white)
    assert not is_domain_allowed("https://bad.com", black)
    assert is_domain_allowed("https://good.com", black)
    assert not is_domain_allowed("not a url", black)


def test_is_domain_allowed_combines_simple_list_and_rules():
    rules = MergedPolicy(["ads.example.com"], []).to_dict()
    base = settings(
        domain_filter_mode="whitelist",
        domain_whitelist=["*.example.com"],
        ublock_format_enabled=True,
        ublock_rules=rules,
    )

    assert is_domain_allowed("https://news.example.com", base)
    assert not is_domain_allowed("https://ads.example.com", base)
    # rules are ignored while the rule format is off
    assert is_domain_allowed("https://ads.example.com", {**base, "ublock_format_enabled": False})
    # with the simple format off only the rules apply
    assert is_domain_allowed(
        "https://example.org", {**base, "simple_format_enabled": False}
    )


def test_whitelist_decisions_come_from_cache(store, clock):
    asyncio.run(set_domain_list(store, "whitelist", ["*.example.com"], clock))
    asyncio.run(set_mode(store, "whitelist", clock))
    domain_filter = DomainFilter(store, clock)

    assert asyncio.run(domain_filter.is_url_allowed("https://sub.example.com/a")) == Decision(
        True, "cache"
    )
    assert asyncio.run(domain_filter.is_url_allowed("https://example.org")) == Decision(
        False, "cache"
    )


def test_stale_cache_falls_back_to_authoritative(store, clock):
    asyncio.run(set_domain_list(store, "whitelist", ["*.example.com"], clock))
    asyncio.run(set_mode(store, "whitelist", clock))
    clock.advance(CACHE_TTL_SECONDS + 1)

    decision = asyncio.run(DomainFilter(store, clock).is_url_allowed("https://sub.example.com"))

    assert decision == Decision(True, "authoritative")


def test_absent_cache_falls_back_to_authoritative(clock):
    store = MemoryStore(settings(domain_filter_mode="blacklist", domain_blacklist=["bad.com"]))
    domain_filter = DomainFilter(store, clock)

    assert asyncio.run(domain_filter.is_url_allowed("https://bad.com")) == Decision(
        False, "authoritative"
    )


def test_disabled_mode_allows_from_cache(store, clock):
    asyncio.run(set_mode(store, "disabled", clock))

    decision = asyncio.run(DomainFilter(store, clock).is_url_allowed("https://anything.io"))

    assert decision == Decision(True, "cache")


def test_blacklist_with_rules_uses_authoritative_path(store, clock):
    asyncio.run(set_mode(store, "blacklist", clock))
    manager = SourceManager(store, clock=clock)
    asyncio.run(manager.save("||*.tracker.net^\n@@||safe.tracker.net^"))
    domain_filter = DomainFilter(store, clock)

    blocked = asyncio.run(domain_filter.is_url_allowed("https://x.tracker.net"))
    excepted = asyncio.run(domain_filter.is_url_allowed("https://safe.tracker.net"))

    assert blocked == Decision(False, "authoritative")
    assert excepted == Decision(True, "authoritative")


def test_rule_changes_are_picked_up(store, clock):
    asyncio.run(set_mode(store, "blacklist", clock))
    manager = SourceManager(store, clock=clock)
    domain_filter = DomainFilter(store, clock)

    asyncio.run(manager.save("||a.com^"))
    assert not asyncio.run(domain_filter.is_url_allowed("https://a.com")).allowed

    asyncio.run(manager.save("||b.com^"))
    assert asyncio.run(domain_filter.is_url_allowed("https://a.com")).allowed
    assert not asyncio.run(domain_filter.is_url_allowed("https://b.com")).allowed


def test_malformed_url_is_denied(store, clock):
    asyncio.run(set_mode(store, "blacklist", clock))

    decision = asyncio.run(DomainFilter(store, clock).is_url_allowed("::not-a-url::"))

    assert decision.allowed is False
    assert isinstance(decision.error, MalformedUrlError)


@mark.parametrize("mode", ["disabled", "whitelist", "blacklist"])
def test_stale_cache_is_a_miss_in_every_mode(mode, clock):
    store = MemoryStore(settings(
        domain_filter_mode=mode,
        domain_filter_cache=["a.com"],
        domain_filter_cache_mode=mode,
        domain_filter_cache_timestamp=clock.now - CACHE_TTL_SECONDS - 1,
    ))

    result = asyncio.run(check_cache("https://a.com", store, clock.now))

    assert result == CacheMiss("stale")


def test_cache_built_for_another_mode_is_not_trusted():
    now = 1000.0
    snapshot = {
        StorageKeys.DOMAIN_FILTER_CACHE_TIMESTAMP: now - 1,
        StorageKeys.DOMAIN_FILTER_CACHE: ["bad.com"],
        StorageKeys.DOMAIN_FILTER_CACHE_MODE: "blacklist",
        StorageKeys.DOMAIN_FILTER_MODE: "whitelist",
    }

    assert cache_state(snapshot, now) == Stale(now - 1)
    assert cache_state({**snapshot, StorageKeys.DOMAIN_FILTER_MODE: "blacklist"}, now) == Fresh(
        ("bad.com",), FilterMode.BLACKLIST
    )
    # snapshots that never recorded their mode are treated as missing
    del snapshot[StorageKeys.DOMAIN_FILTER_CACHE_MODE]
    assert cache_state(snapshot, now) == Absent()


def test_mode_switch_during_source_save_keeps_cache_consistent(tmp_path, clock):
    store = JsonFileStore(tmp_path / "store.json")
    manager = SourceManager(store, clock=clock)
    domain_filter = DomainFilter(store, clock)

    async def scenario():
        await set_domain_list(store, "blacklist", ["bad.com"], clock)
        await set_domain_list(store, "whitelist", ["good.com"], clock)
        await set_mode(store, "blacklist", clock)

        await asyncio.gather(manager.save("||ads.net^"), set_mode(store, "whitelist", clock))

        return (
            await domain_filter.is_url_allowed("https://bad.com"),
            await domain_filter.is_url_allowed("https://good.com"),
            await domain_filter.check_authoritative("https://bad.com"),
        )

    bad, good, authoritative = asyncio.run(scenario())

    assert bad == Decision(False, "cache")
    assert good == Decision(True, "cache")
    assert authoritative.allowed is bad.allowed
    snapshot = asyncio.run(store.get([StorageKeys.DOMAIN_FILTER_CACHE_MODE]))
    assert snapshot == {StorageKeys.DOMAIN_FILTER_CACHE_MODE: "whitelist"}
