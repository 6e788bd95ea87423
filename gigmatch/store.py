# gigmatch/store.py — document-store port + in-process implementation
#
# Document shapes (shared by every backend):
#   users/{id}                       -> {"id", "role", "name", ...profile fields}
#   favorites/{ownerId}              -> {targetId: True, ...}
#   matches/{idA_idB}                -> {"id", "users": [idA, idB], "matchedAt": datetime}
#   matches/{id}/messages/{msgId}    -> {"id", "senderId", "kind", "text", "timestamp", "seq"}

from __future__ import annotations

import asyncio
import datetime as dt
import uuid
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Protocol, Sequence, Set, Tuple

from .errors import TransientStoreError


class DocumentStore(Protocol):
    async def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]: ...
    async def list_profiles(self) -> List[Dict[str, Any]]: ...
    async def put_profile(self, user_id: str, data: Dict[str, Any]) -> None: ...

    async def get_favorites(self, owner_id: str) -> Dict[str, bool]: ...
    async def merge_favorite(self, owner_id: str, target_id: str) -> None: ...
    async def delete_favorite(self, owner_id: str, target_id: str) -> None: ...

    async def create_match_if_absent(self, match_id: str, users: Sequence[str]) -> Tuple[Dict[str, Any], bool]: ...
    async def get_match(self, match_id: str) -> Optional[Dict[str, Any]]: ...
    async def list_matches_for(self, user_id: str) -> List[Dict[str, Any]]: ...

    async def append_message(self, match_id: str, data: Dict[str, Any]) -> Dict[str, Any]: ...
    async def list_messages(self, match_id: str) -> List[Dict[str, Any]]: ...
    def listen_messages(self, match_id: str) -> AsyncIterator[Dict[str, Any]]: ...

    async def stats(self) -> Dict[str, int]: ...
    async def close(self) -> None: ...


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def start_of_day(now: dt.datetime) -> dt.datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


class MemoryStore:
    """Single-process store. Every call yields to the loop once, like a network hop."""

    def __init__(self, clock: Callable[[], dt.datetime] = utcnow):
        self.clock = clock
        self._profiles: Dict[str, Dict[str, Any]] = {}
        self._favorites: Dict[str, Dict[str, bool]] = {}
        self._matches: Dict[str, Dict[str, Any]] = {}
        self._messages: Dict[str, List[Dict[str, Any]]] = {}
        self._listeners: Dict[str, Set[asyncio.Queue]] = {}
        self._seq = 0

    async def _hop(self) -> None:
        await asyncio.sleep(0)

    # users
    async def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        await self._hop()
        doc = self._profiles.get(user_id)
        return dict(doc, id=user_id) if doc is not None else None

    async def list_profiles(self) -> List[Dict[str, Any]]:
        await self._hop()
        return [dict(doc, id=uid) for uid, doc in sorted(self._profiles.items())]

    async def put_profile(self, user_id: str, data: Dict[str, Any]) -> None:
        await self._hop()
        self._profiles[user_id] = {k: v for k, v in data.items() if k != "id"}

    # favorites
    async def get_favorites(self, owner_id: str) -> Dict[str, bool]:
        await self._hop()
        return dict(self._favorites.get(owner_id, {}))

    async def merge_favorite(self, owner_id: str, target_id: str) -> None:
        await self._hop()
        self._favorites.setdefault(owner_id, {})[target_id] = True

    async def delete_favorite(self, owner_id: str, target_id: str) -> None:
        await self._hop()
        self._favorites.get(owner_id, {}).pop(target_id, None)

    # matches
    async def create_match_if_absent(self, match_id: str, users: Sequence[str]) -> Tuple[Dict[str, Any], bool]:
        await self._hop()
        existing = self._matches.get(match_id)
        if existing is not None:
            return dict(existing), False
        doc = {"id": match_id, "users": sorted(users), "matchedAt": self.clock()}
        self._matches[match_id] = doc
        return dict(doc), True

    async def get_match(self, match_id: str) -> Optional[Dict[str, Any]]:
        await self._hop()
        doc = self._matches.get(match_id)
        return dict(doc) if doc is not None else None

    async def list_matches_for(self, user_id: str) -> List[Dict[str, Any]]:
        await self._hop()
        return [dict(doc) for doc in self._matches.values() if user_id in doc["users"]]

    # messages
    async def append_message(self, match_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        await self._hop()
        log = self._messages.setdefault(match_id, [])
        message_id = data.get("id") or uuid.uuid4().hex
        for existing in log:
            if existing["id"] == message_id:
                return dict(existing)
        now = self.clock()
        if log and log[-1]["timestamp"] > now:
            now = log[-1]["timestamp"]
        self._seq += 1
        doc = dict(data, id=message_id, timestamp=now, seq=self._seq)
        log.append(doc)
        for queue in self._listeners.get(match_id, ()):
            queue.put_nowait(dict(doc))
        return dict(doc)

    async def list_messages(self, match_id: str) -> List[Dict[str, Any]]:
        await self._hop()
        return [dict(doc) for doc in self._messages.get(match_id, [])]

    async def listen_messages(self, match_id: str) -> AsyncIterator[Dict[str, Any]]:
        queue: asyncio.Queue = asyncio.Queue()
        # snapshot + register with no await in between: nothing falls into a gap
        history = [dict(doc) for doc in self._messages.get(match_id, [])]
        self._listeners.setdefault(match_id, set()).add(queue)
        try:
            for doc in history:
                yield doc
            while True:
                item = await queue.get()
                if isinstance(item, BaseException):
                    raise item
                yield item
        finally:
            self._listeners.get(match_id, set()).discard(queue)

    def drop_listeners(self, match_id: Optional[str] = None) -> int:
        """Break live feeds as a lost connection would. Returns how many were dropped."""
        dropped = 0
        for mid, queues in self._listeners.items():
            if match_id is not None and mid != match_id:
                continue
            for queue in list(queues):
                queue.put_nowait(TransientStoreError("realtime connection lost"))
                dropped += 1
        return dropped

    async def stats(self) -> Dict[str, int]:
        await self._hop()
        today = start_of_day(self.clock())
        return {
            "profiles_total": len(self._profiles),
            "favorites_total": sum(len(f) for f in self._favorites.values()),
            "matches_total": len(self._matches),
            "matches_today": sum(1 for m in self._matches.values() if m["matchedAt"] >= today),
            "messages_total": sum(len(m) for m in self._messages.values()),
        }

    async def close(self) -> None:
        self.drop_listeners()
