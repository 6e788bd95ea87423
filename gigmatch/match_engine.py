"""
gigmatch/match_engine.py — turns one-sided favorites into a match.
Functions expected by the UI layer:
  - swipe_right(owner, target) -> Resolution
  - evaluate(owner, target)    -> Resolution   (reciprocity check + create, no favorite write)
  - unfavorite(owner, target)
  - toggle(owner, target)      -> Resolution | None
Notes:
  * Both members of a pair may resolve at the same time. The match write is a
    create-if-absent keyed by the canonical id, so concurrent resolutions
    converge on one record with identical content.
  * Once started, a resolution runs to completion even if the caller is
    cancelled; only the result delivery is dropped.
"""

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Any, Optional, Set

from .errors import MatchCreationError, StoreError, ValidationError
from .favorites import FavoriteLedger
from .models import Match, canonical_match_id
from .retry import RetryPolicy, retrying

log = logging.getLogger("gigmatch.match")


class MatchOutcome(str, enum.Enum):
    MATCHED = "matched"
    NOT_MATCHED = "not_matched"


@dataclass(frozen=True)
class Resolution:
    outcome: MatchOutcome
    match_id: str
    match: Optional[Match] = None
    created: bool = False  # False when the other side (or an earlier retry) wrote it first

    @property
    def matched(self) -> bool:
        return self.outcome is MatchOutcome.MATCHED


class MatchResolver:
    def __init__(self, store: Any, ledger: Optional[FavoriteLedger] = None,
                 policy: Optional[RetryPolicy] = None):
        self.store = retrying(store, policy)
        self.ledger = ledger or FavoriteLedger(self.store)
        self._inflight: Set[asyncio.Task] = set()

    async def swipe_right(self, owner: str, target: str, *, actor: Optional[str] = None) -> Resolution:
        """Favorite ``target`` for ``owner`` and create the match if it is now mutual.

        Raises FavoriteWriteError (nothing else was attempted) or
        MatchCreationError (safe to retry with ``evaluate``).
        """
        task = asyncio.ensure_future(self._resolve(owner, target, actor))
        self._inflight.add(task)
        task.add_done_callback(self._finished)
        return await asyncio.shield(task)

    def _finished(self, task: asyncio.Task) -> None:
        self._inflight.discard(task)
        if task.cancelled():
            return
        err = task.exception()
        if err is not None:
            log.debug("[match] resolution ended with %r", err)

    async def _resolve(self, owner: str, target: str, actor: Optional[str]) -> Resolution:
        canonical_match_id(owner, target)  # reject unmatchable ids before anything is written
        await self.ledger.add_favorite(owner, target, actor=actor)
        return await self.evaluate(owner, target)

    async def evaluate(self, owner: str, target: str) -> Resolution:
        """Check ``target -> owner`` and, if present, write the match.

        Precondition: ``owner -> target`` is recorded.
        """
        match_id = canonical_match_id(owner, target)
        try:
            theirs = await self.store.get_favorites(target)
        except StoreError as e:
            raise MatchCreationError(f"could not check whether {target!r} favorited {owner!r}", match_id) from e
        if not theirs.get(owner):
            log.info("[match] %s -> %s: not yet mutual", owner, target)
            return Resolution(MatchOutcome.NOT_MATCHED, match_id)

        try:
            doc, created = await self.store.create_match_if_absent(match_id, sorted((owner, target)))
        except StoreError as e:
            log.warning("[match] %s: write failed: %s", match_id, e)
            raise MatchCreationError(f"could not create match {match_id!r}", match_id) from e
        try:
            match = Match.from_doc(match_id, doc)
        except ValidationError as e:
            raise MatchCreationError(f"store returned a malformed match {match_id!r}", match_id) from e
        if set(match.users) != {owner, target}:
            log.warning("[match] %s: stored users %s are not %s/%s", match_id, match.users, owner, target)
            raise MatchCreationError(f"match {match_id!r} belongs to other users", match_id)
        log.info("[match] %s %s", match_id, "created" if created else "already existed")
        return Resolution(MatchOutcome.MATCHED, match_id, match, created)

    async def unfavorite(self, owner: str, target: str, *, actor: Optional[str] = None) -> None:
        await self.ledger.remove_favorite(owner, target, actor=actor)

    async def toggle(self, owner: str, target: str, *, actor: Optional[str] = None) -> Optional[Resolution]:
        """Flip the favorite. Returns the resolution when it was switched on, else None."""
        if await self.ledger.is_favorited(owner, target):
            await self.unfavorite(owner, target, actor=actor)
            return None
        return await self.swipe_right(owner, target, actor=actor)

    async def drain(self) -> None:
        """Wait for resolutions whose callers have gone away."""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
