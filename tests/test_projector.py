"""Match list: newest first, partial results when a profile is unavailable."""

import datetime as dt

from conftest import FlakyStore, run

from gigmatch.errors import TransientStoreError
from gigmatch.models import Match, MatchEntry, Profile, Role
from gigmatch.projector import MatchListProjector, sort_by_recency

VIEWER = "perf-ana"


def _entry(match_id, users, at):
    return MatchEntry(
        match=Match(id=match_id, users=tuple(sorted(users)), matched_at=at),
        counterpart=Profile(id=users[1], role=Role.VENUE),
    )


class TestListMatches:

    def test_most_recent_first(self, store, fast_policy):
        async def scenario():
            await store.create_match_if_absent("perf-ana_venue-cellar", [VIEWER, "venue-cellar"])  # t1
            await store.create_match_if_absent("perf-ana_venue-dome", [VIEWER, "venue-dome"])  # t2 > t1
            return await MatchListProjector(store, fast_policy).list_matches(VIEWER)

        entries = run(scenario())
        assert [e.id for e in entries] == ["perf-ana_venue-dome", "perf-ana_venue-cellar"]
        assert [e.counterpart.name for e in entries] == ["Dome", "The Cellar"]

    def test_other_peoples_matches_are_not_listed(self, store, fast_policy):
        async def scenario():
            await store.create_match_if_absent("perf-bo_venue-loft", ["perf-bo", "venue-loft"])
            return await MatchListProjector(store, fast_policy).list_matches(VIEWER)

        assert run(scenario()) == []

    def test_missing_profile_is_omitted(self, store, fast_policy):
        async def scenario():
            await store.create_match_if_absent("perf-ana_venue-cellar", [VIEWER, "venue-cellar"])
            await store.create_match_if_absent("perf-ana_venue-gone", [VIEWER, "venue-gone"])
            return await MatchListProjector(store, fast_policy).list_matches(VIEWER)

        assert [e.id for e in run(scenario())] == ["perf-ana_venue-cellar"]

    def test_unreadable_profile_is_omitted(self, store, fast_policy):
        class DomeDown(FlakyStore):
            async def get_profile(self, user_id):
                if user_id == "venue-dome":
                    raise TransientStoreError("profile shard down")
                return await super().get_profile(user_id)

        down = DomeDown(clock=store.clock)
        down._profiles = store._profiles

        async def scenario():
            await down.create_match_if_absent("perf-ana_venue-cellar", [VIEWER, "venue-cellar"])
            await down.create_match_if_absent("perf-ana_venue-dome", [VIEWER, "venue-dome"])
            return await MatchListProjector(down, fast_policy).list_matches(VIEWER)

        assert [e.id for e in run(scenario())] == ["perf-ana_venue-cellar"]

    def test_malformed_profile_is_omitted(self, store, fast_policy):
        store._profiles["venue-dome"] = {"name": "Dome"}  # no role

        async def scenario():
            await store.create_match_if_absent("perf-ana_venue-dome", [VIEWER, "venue-dome"])
            return await MatchListProjector(store, fast_policy).list_matches(VIEWER)

        assert run(scenario()) == []


def test_sort_by_recency_puts_missing_timestamps_last():
    t1 = dt.datetime(2024, 5, 1, tzinfo=dt.timezone.utc)
    t2 = t1 + dt.timedelta(hours=1)
    entries = [
        _entry("a_x", ["a", "x"], None),
        _entry("a_y", ["a", "y"], t1),
        _entry("a_z", ["a", "z"], t2),
        _entry("a_w", ["a", "w"], t1),
    ]
    assert [e.id for e in sort_by_recency(entries)] == ["a_z", "a_w", "a_y", "a_x"]


def test_list_favorites_in_like_order(store, fast_policy):
    async def scenario():
        await store.merge_favorite(VIEWER, "venue-loft")
        await store.merge_favorite(VIEWER, "venue-gone")
        await store.merge_favorite(VIEWER, "venue-cellar")
        return await MatchListProjector(store, fast_policy).list_favorites(VIEWER)

    assert [p.id for p in run(scenario())] == ["venue-loft", "venue-cellar"]
