"""Shared fixtures for the domain_filter tests."""

# pylint: disable=missing-function-docstring, redefined-outer-name
from pytest import fixture

from domain_filter.store import MemoryStore


class FakeClock:
    """Manually advanced clock, injected wherever the engine reads time."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeFetch:
    """Async fetch stand-in that records every requested URL."""

    def __init__(self, responses=None, error=None):
        self.responses = dict(responses or {})
        self.error = error
        self.calls = []

    async def __call__(self, url: str) -> str:
        self.calls.append(url)
        if self.error is not None:
            raise self.error
        return self.responses[url]


@fixture
def clock():
    return FakeClock()


@fixture
def store():
    return MemoryStore()
