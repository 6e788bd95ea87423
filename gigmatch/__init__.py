"""Match formation and chat ordering core for the performer/venue swipe app."""

from .chat_stream import ChatStream, StreamStatus, Subscription
from .errors import (
    AuthorizationError,
    CoreError,
    FavoriteWriteError,
    MatchCreationError,
    NotFoundError,
    NotParticipantError,
    StoreError,
    TransientStoreError,
    ValidationError,
)
from .facade import MatchCore, open_core
from .favorites import FavoriteLedger
from .match_core import build_deck, filter_candidates, load_deck
from .match_engine import MatchOutcome, MatchResolver, Resolution
from .models import (
    DeckEntry,
    Match,
    MatchEntry,
    Message,
    MessageKind,
    Profile,
    Role,
    Viewer,
    canonical_match_id,
)
from .projector import MatchListProjector
from .retry import RetryingStore, RetryPolicy
from .store import DocumentStore, MemoryStore

__all__ = [
    "AuthorizationError",
    "ChatStream",
    "CoreError",
    "DeckEntry",
    "DocumentStore",
    "FavoriteLedger",
    "FavoriteWriteError",
    "Match",
    "MatchCore",
    "MatchCreationError",
    "MatchEntry",
    "MatchListProjector",
    "MatchOutcome",
    "MatchResolver",
    "MemoryStore",
    "Message",
    "MessageKind",
    "NotFoundError",
    "NotParticipantError",
    "Profile",
    "Resolution",
    "RetryPolicy",
    "RetryingStore",
    "Role",
    "StoreError",
    "StreamStatus",
    "Subscription",
    "TransientStoreError",
    "ValidationError",
    "Viewer",
    "build_deck",
    "canonical_match_id",
    "filter_candidates",
    "load_deck",
    "open_core",
]
