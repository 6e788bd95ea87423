# gigmatch/favorites.py — per-user set of liked profile ids
import logging
from typing import Any, Optional, Set

from .errors import AuthorizationError, FavoriteWriteError, StoreError, ValidationError
from .retry import RetryPolicy, retrying

log = logging.getLogger("gigmatch.favorites")


def _check_pair(owner: str, target: str, actor: Optional[str]) -> None:
    if not owner or not target:
        raise ValidationError("owner and target ids are required")
    if owner == target:
        raise ValidationError("cannot favorite yourself")
    if actor is not None and actor != owner:
        raise AuthorizationError(f"{actor!r} cannot change favorites of {owner!r}")


class FavoriteLedger:
    """Favorites are only ever written by their owner; ``actor`` enforces that when given."""

    def __init__(self, store: Any, policy: Optional[RetryPolicy] = None):
        self.store = retrying(store, policy)

    async def add_favorite(self, owner: str, target: str, *, actor: Optional[str] = None) -> None:
        _check_pair(owner, target, actor)
        try:
            await self.store.merge_favorite(owner, target)
        except StoreError as e:
            log.warning("[fav] add %s -> %s failed: %s", owner, target, e)
            raise FavoriteWriteError(f"could not favorite {target!r} for {owner!r}") from e
        log.info("[fav] %s -> %s", owner, target)

    async def remove_favorite(self, owner: str, target: str, *, actor: Optional[str] = None) -> None:
        # never touches an existing match
        _check_pair(owner, target, actor)
        try:
            await self.store.delete_favorite(owner, target)
        except StoreError as e:
            log.warning("[fav] remove %s -> %s failed: %s", owner, target, e)
            raise FavoriteWriteError(f"could not unfavorite {target!r} for {owner!r}") from e
        log.info("[fav] %s -/-> %s", owner, target)

    async def is_favorited(self, owner: str, target: str) -> bool:
        # a failed read raises StoreError; it is never reported as "not favorited"
        favs = await self.store.get_favorites(owner)
        return bool(favs.get(target))

    async def favorites_of(self, owner: str) -> Set[str]:
        favs = await self.store.get_favorites(owner)
        return {target for target, present in favs.items() if present}
