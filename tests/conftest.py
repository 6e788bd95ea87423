"""Shared fixtures: a fault-injecting store, seeded profiles, a fast retry policy."""

import asyncio
import datetime as dt
import time
from typing import Callable, Dict, Type

import pytest

from gigmatch import MatchCore, MemoryStore, RetryPolicy, Role, Viewer
from gigmatch.errors import TransientStoreError


# ============================================================================
# Helpers
# ============================================================================

def run(coro):
    return asyncio.run(coro)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


class TickClock:
    """Each call is one second later than the previous one."""

    def __init__(self, start: dt.datetime = dt.datetime(2024, 5, 1, 12, 0, tzinfo=dt.timezone.utc)):
        self.now = start

    def __call__(self) -> dt.datetime:
        self.now = self.now + dt.timedelta(seconds=1)
        return self.now


# ============================================================================
# Flaky store
# ============================================================================

FLAKY_METHODS = (
    "get_profile", "list_profiles", "get_favorites", "merge_favorite", "delete_favorite",
    "create_match_if_absent", "get_match", "list_matches_for", "append_message",
    "list_messages", "stats",
)


def _flaky(name: str):
    async def method(self, *args, **kwargs):
        self.calls[name] = self.calls.get(name, 0) + 1
        remaining = self.failures.get(name, 0)
        if remaining:
            self.failures[name] = remaining - 1
            raise self.errors.get(name, TransientStoreError)(f"injected {name} failure")
        return await getattr(MemoryStore, name)(self, *args, **kwargs)
    method.__name__ = name
    return method


class FlakyStore(MemoryStore):
    """MemoryStore that fails chosen methods a set number of times.

    ``fail("merge_favorite", 2)`` makes the next two calls raise.
    ``calls`` counts every call, failed or not.
    """

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.failures: Dict[str, int] = {}
        self.errors: Dict[str, Type[BaseException]] = {}
        self.calls: Dict[str, int] = {}

    def fail(self, name: str, times: int = 1, exc: Type[BaseException] = TransientStoreError) -> None:
        self.failures[name] = times
        self.errors[name] = exc


for _name in FLAKY_METHODS:
    setattr(FlakyStore, _name, _flaky(_name))


# ============================================================================
# Fixtures
# ============================================================================

PROFILES = {
    "perf-ana": {"role": "performer", "name": "Ana", "genre": "jazz"},
    "perf-bo": {"role": "performer", "name": "Bo", "genre": "folk"},
    "perf-old": {"role": "artist", "name": "Old Account", "genre": "blues"},
    "venue-cellar": {"role": "venue", "name": "The Cellar", "venueType": "bar"},
    "venue-dome": {"role": "venue", "name": "Dome", "venueType": "hall"},
    "venue-loft": {"role": "venue", "name": "Loft", "venueType": "club"},
}


@pytest.fixture
def fast_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0)


@pytest.fixture
def clock() -> TickClock:
    return TickClock()


@pytest.fixture
def store(clock) -> FlakyStore:
    s = FlakyStore(clock=clock)
    for uid, doc in PROFILES.items():
        s._profiles[uid] = dict(doc)
    return s


@pytest.fixture
def core(store, fast_policy) -> MatchCore:
    return MatchCore.build(store, fast_policy, resubscribe_max_delay=0.0)


@pytest.fixture
def ana() -> Viewer:
    return Viewer(uid="perf-ana", role=Role.PERFORMER)


@pytest.fixture
def cellar() -> Viewer:
    return Viewer(uid="venue-cellar", role=Role.VENUE)
