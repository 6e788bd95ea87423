# gigmatch/match_core.py
# Candidate filter: which profiles a viewer gets to swipe on

from __future__ import annotations

import logging
from typing import Any, Callable, Collection, Dict, Iterable, List

from .errors import ValidationError
from .models import DeckEntry, Match, Profile, Role, Viewer

log = logging.getLogger("gigmatch.deck")

Filter = Callable[[Viewer, Profile], bool]


def opposite_role_filter() -> Filter:
    def _f(me: Viewer, cand: Profile) -> bool:
        return cand.role is me.role.opposite()
    return _f


def not_self_filter() -> Filter:
    def _f(me: Viewer, cand: Profile) -> bool:
        return cand.id != me.uid
    return _f


def exclude_ids_filter(excluded: Collection[str]) -> Filter:
    blocked = frozenset(excluded)

    def _f(me: Viewer, cand: Profile) -> bool:
        return cand.id not in blocked
    return _f


def default_filters(matched_ids: Collection[str]) -> List[Filter]:
    return [
        not_self_filter(),
        opposite_role_filter(),
        exclude_ids_filter(matched_ids),
    ]


def filter_candidates(viewer_id: str, viewer_role: Role | str, pool: Iterable[Profile],
                      matched_ids: Collection[str] = ()) -> List[Profile]:
    """Profiles of the opposite role, minus the viewer and everyone already matched.

    Pure: pool order is kept, so the same inputs always give the same deck.
    """
    me = Viewer(uid=viewer_id, role=Role.parse(viewer_role))
    filters = default_filters(matched_ids)
    return [cand for cand in pool if all(f(me, cand) for f in filters)]


def build_deck(viewer_id: str, viewer_role: Role | str, pool: Iterable[Profile],
               matched_ids: Collection[str] = ()) -> List[DeckEntry]:
    return [DeckEntry(index=i, profile=p)
            for i, p in enumerate(filter_candidates(viewer_id, viewer_role, pool, matched_ids))]


def profiles_from_docs(docs: Iterable[Dict[str, Any]]) -> List[Profile]:
    """Validate raw user documents; malformed ones are dropped, not propagated."""
    out: List[Profile] = []
    for doc in docs:
        try:
            out.append(Profile.from_doc(str(doc.get("id") or ""), doc))
        except ValidationError as e:
            log.warning("[deck] skipping profile: %s", e)
    return out


def matched_ids_for(viewer_id: str, matches: Iterable[Match]) -> List[str]:
    return [m.counterpart(viewer_id) for m in matches if m.has_member(viewer_id)]


async def load_deck(store: Any, viewer: Viewer) -> List[DeckEntry]:
    """Read the pool and the viewer's matches from the store, then filter."""
    pool = profiles_from_docs(await store.list_profiles())
    matches = []
    for doc in await store.list_matches_for(viewer.uid):
        try:
            matches.append(Match.from_doc(str(doc.get("id")), doc))
        except ValidationError as e:
            log.warning("[deck] skipping match: %s", e)
    deck = build_deck(viewer.uid, viewer.role, pool, matched_ids_for(viewer.uid, matches))
    log.info("[deck] %s (%s): %d of %d profiles", viewer.uid, viewer.role.value, len(deck), len(pool))
    return deck
