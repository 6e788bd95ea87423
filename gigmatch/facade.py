# gigmatch/facade.py — one object the UI screens talk to
# Every call takes the acting Viewer explicitly; nothing reads ambient session state.
from dataclasses import dataclass
from typing import Any, List, Optional

from .chat_stream import ChatStream, OnMessage, OnStatus, Subscription
from .favorites import FavoriteLedger
from .match_core import load_deck
from .match_engine import MatchResolver, Resolution
from .models import DeckEntry, MatchEntry, Message, Profile, Viewer
from .projector import MatchListProjector
from .retry import RetryingStore, RetryPolicy, retrying


@dataclass
class MatchCore:
    store: RetryingStore
    ledger: FavoriteLedger
    resolver: MatchResolver
    chat: ChatStream
    projector: MatchListProjector

    @classmethod
    def build(cls, store: Any, policy: Optional[RetryPolicy] = None, *,
              resubscribe_max_delay: float = 30.0) -> "MatchCore":
        wrapped = retrying(store, policy)
        ledger = FavoriteLedger(wrapped)
        return cls(
            store=wrapped,
            ledger=ledger,
            resolver=MatchResolver(wrapped, ledger),
            chat=ChatStream(wrapped, resubscribe_max_delay=resubscribe_max_delay),
            projector=MatchListProjector(wrapped),
        )

    # swiping
    async def deck(self, viewer: Viewer) -> List[DeckEntry]:
        return await load_deck(self.store, viewer)

    async def swipe_right(self, viewer: Viewer, target_id: str) -> Resolution:
        return await self.resolver.swipe_right(viewer.uid, target_id, actor=viewer.uid)

    async def unfavorite(self, viewer: Viewer, target_id: str) -> None:
        await self.resolver.unfavorite(viewer.uid, target_id, actor=viewer.uid)

    async def toggle_favorite(self, viewer: Viewer, target_id: str) -> Optional[Resolution]:
        return await self.resolver.toggle(viewer.uid, target_id, actor=viewer.uid)

    async def is_favorited(self, viewer: Viewer, target_id: str) -> bool:
        return await self.ledger.is_favorited(viewer.uid, target_id)

    # lists
    async def matches(self, viewer: Viewer) -> List[MatchEntry]:
        return await self.projector.list_matches(viewer.uid)

    async def favorites(self, viewer: Viewer) -> List[Profile]:
        return await self.projector.list_favorites(viewer.uid)

    # chat
    async def send_message(self, viewer: Viewer, match_id: str, text: str) -> Message:
        return await self.chat.send_text(match_id, viewer.uid, text)

    async def request_date(self, viewer: Viewer, match_id: str, date: Any) -> Message:
        return await self.chat.request_date(match_id, viewer.uid, date)

    async def open_chat(self, viewer: Viewer, match_id: str, on_message: OnMessage,
                        on_status: Optional[OnStatus] = None) -> Subscription:
        return await self.chat.subscribe(match_id, on_message, viewer_id=viewer.uid, on_status=on_status)

    async def close(self) -> None:
        await self.chat.close()
        await self.resolver.drain()
        await self.store.close()


async def open_core(reset: bool = False) -> MatchCore:
    """Build a MatchCore on the configured database (see config.py)."""
    import config
    from .database import open_store

    store = await open_store(reset)
    return MatchCore.build(store, config.retry_policy(),
                           resubscribe_max_delay=config.CHAT_RESUBSCRIBE_MAX_DELAY)
