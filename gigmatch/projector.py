# gigmatch/projector.py — read-side views: a viewer's matches and favorites
import asyncio
import logging
from typing import Any, List, Optional

from .errors import StoreError, ValidationError
from .models import Match, MatchEntry, Profile
from .retry import RetryPolicy, retrying

log = logging.getLogger("gigmatch.projector")


def sort_by_recency(entries: List[MatchEntry]) -> List[MatchEntry]:
    """Newest match first; entries without a timestamp go last; ties by match id."""
    def key(entry: MatchEntry):
        at = entry.match.matched_at
        return (at is None, -at.timestamp() if at is not None else 0.0, entry.match.id)
    return sorted(entries, key=key)


class MatchListProjector:
    def __init__(self, store: Any, policy: Optional[RetryPolicy] = None):
        self.store = retrying(store, policy)

    async def _profile(self, user_id: str) -> Optional[Profile]:
        # partial results: a missing or unreadable profile drops the entry, not the list
        try:
            doc = await self.store.get_profile(user_id)
        except StoreError as e:
            log.warning("[projector] profile %s unavailable: %s", user_id, e)
            return None
        if doc is None:
            log.info("[projector] profile %s not found", user_id)
            return None
        try:
            return Profile.from_doc(user_id, doc)
        except ValidationError as e:
            log.warning("[projector] profile %s malformed: %s", user_id, e)
            return None

    async def list_matches(self, viewer_id: str) -> List[MatchEntry]:
        matches: List[Match] = []
        for doc in await self.store.list_matches_for(viewer_id):
            try:
                match = Match.from_doc(str(doc.get("id")), doc)
            except ValidationError as e:
                log.warning("[projector] skipping match: %s", e)
                continue
            if match.has_member(viewer_id):
                matches.append(match)
        profiles = await asyncio.gather(*(self._profile(m.counterpart(viewer_id)) for m in matches))
        entries = [MatchEntry(match=m, counterpart=p) for m, p in zip(matches, profiles) if p is not None]
        return sort_by_recency(entries)

    async def list_favorites(self, owner_id: str) -> List[Profile]:
        """Profiles ``owner_id`` has favorited, in the order they were liked."""
        favs = await self.store.get_favorites(owner_id)
        targets = [t for t, present in favs.items() if present]
        profiles = await asyncio.gather(*(self._profile(t) for t in targets))
        return [p for p in profiles if p is not None]
