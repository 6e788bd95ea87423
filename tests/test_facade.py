"""End-to-end flow through MatchCore on the in-process store."""

import pytest

from conftest import run, wait_until

from gigmatch import MatchOutcome, NotParticipantError, Role, StreamStatus, Viewer


def test_swipe_match_chat_flow(core, ana, cellar):
    async def scenario():
        deck_before = [e.profile.id for e in await core.deck(ana)]
        await core.swipe_right(cellar, ana.uid)
        res = await core.swipe_right(ana, cellar.uid)

        got, statuses = [], []
        sub = await core.open_chat(cellar, res.match_id, got.append,
                                   on_status=lambda s, e: statuses.append(s))
        await sub.wait_live(1)
        await core.send_message(ana, res.match_id, "free on friday?")
        await core.request_date(cellar, res.match_id, "2024-05-03")
        await wait_until(lambda: len(got) == 2)

        deck_after = [e.profile.id for e in await core.deck(ana)]
        matches = await core.matches(ana)
        await core.close()
        return deck_before, deck_after, res, got, statuses, matches, sub

    deck_before, deck_after, res, got, statuses, matches, sub = run(scenario())

    assert "venue-cellar" in deck_before and "venue-cellar" not in deck_after
    assert res.outcome is MatchOutcome.MATCHED
    assert [m.body for m in got] == ["free on friday?", "2024-05-03"]
    assert statuses == [StreamStatus.LIVE]
    assert sub.status is StreamStatus.CLOSED
    assert [(e.id, e.counterpart.name) for e in matches] == [(res.match_id, "The Cellar")]


def test_favorites_screen(core, ana):
    async def scenario():
        await core.toggle_favorite(ana, "venue-loft")
        await core.toggle_favorite(ana, "venue-dome")
        await core.toggle_favorite(ana, "venue-loft")
        return [p.id for p in await core.favorites(ana)], await core.is_favorited(ana, "venue-loft")

    favorites, loft = run(scenario())
    assert favorites == ["venue-dome"]
    assert loft is False


def test_unfavorite_after_match_keeps_chat_open(core, ana, cellar):
    async def scenario():
        await core.swipe_right(cellar, ana.uid)
        res = await core.swipe_right(ana, cellar.uid)
        await core.unfavorite(ana, cellar.uid)
        msg = await core.send_message(cellar, res.match_id, "still here")
        return await core.matches(ana), msg

    matches, msg = run(scenario())
    assert len(matches) == 1
    assert msg.body == "still here"


def test_outsider_cannot_open_someone_elses_chat(core, ana, cellar):
    bo = Viewer("perf-bo", Role.PERFORMER)

    async def scenario():
        await core.swipe_right(cellar, ana.uid)
        res = await core.swipe_right(ana, cellar.uid)
        await core.open_chat(bo, res.match_id, lambda m: None)

    with pytest.raises(NotParticipantError):
        run(scenario())
