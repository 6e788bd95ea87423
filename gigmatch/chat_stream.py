# gigmatch/chat_stream.py — per-match ordered message log with live subscriptions
#
# Ordering comes from the store: every message carries a store-assigned
# timestamp plus an insertion sequence; the client clock is never consulted.

from __future__ import annotations

import asyncio
import enum
import inspect
import logging
import uuid
from typing import Any, Callable, List, Optional, Set

from .errors import AuthorizationError, NotFoundError, NotParticipantError, ValidationError
from .models import Match, Message, MessageKind, normalize_date_request, sort_messages
from .retry import RetryPolicy, retrying

log = logging.getLogger("gigmatch.chat")

OnMessage = Callable[[Message], Any]
OnStatus = Callable[["StreamStatus", Optional[BaseException]], Any]


class StreamStatus(str, enum.Enum):
    CONNECTING = "connecting"
    LIVE = "live"
    DEGRADED = "degraded"
    CLOSED = "closed"


async def _maybe_await(result: Any) -> None:
    if inspect.isawaitable(result):
        await result


class Subscription:
    """Handle returned by ``ChatStream.subscribe``; ``cancel()`` is the disposer.

    After ``cancel()`` no callback is invoked again, whatever is in flight.
    """

    def __init__(self, stream: "ChatStream", match_id: str, on_message: OnMessage,
                 on_status: Optional[OnStatus] = None):
        self.stream = stream
        self.match_id = match_id
        self.on_message = on_message
        self.on_status = on_status
        self.status = StreamStatus.CONNECTING
        self.error: Optional[BaseException] = None
        self.messages: List[Message] = []
        self._seen: Set[str] = set()
        self._cancelled = False
        self._live = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    def _start(self) -> None:
        self._task = asyncio.ensure_future(self._run())

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self.status = StreamStatus.CLOSED
        if self._task is not None:
            self._task.cancel()
        self.stream._forget(self)

    async def wait_closed(self) -> None:
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    async def wait_live(self, timeout: Optional[float] = None) -> None:
        await asyncio.wait_for(self._live.wait(), timeout)

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self.cancel()
        await self.wait_closed()

    async def _set_status(self, status: StreamStatus, error: Optional[BaseException] = None) -> None:
        if self._cancelled or (status is self.status and error is None):
            return
        self.status = status
        self.error = error
        if status is StreamStatus.LIVE:
            self._live.set()
        else:
            self._live.clear()
        if self.on_status is not None:
            try:
                await _maybe_await(self.on_status(status, error))
            except Exception:
                log.exception("[chat] %s: status callback failed", self.match_id)

    def _parse(self, doc: dict) -> Optional[Message]:
        try:
            return Message.from_doc(self.match_id, doc)
        except ValidationError as e:
            log.warning("[chat] %s: skipping malformed message: %s", self.match_id, e)
            return None

    async def _deliver(self, message: Optional[Message]) -> None:
        if self._cancelled or message is None:
            return
        if message.id in self._seen:
            return
        self._seen.add(message.id)
        self.messages.append(message)
        try:
            await _maybe_await(self.on_message(message))
        except Exception:
            log.exception("[chat] %s: message callback failed", self.match_id)

    async def _run(self) -> None:
        store = self.stream.store
        failures = 0
        while not self._cancelled:
            try:
                # (re)connect: full history first, then the live tail
                history = [self._parse(doc) for doc in await store.list_messages(self.match_id)]
                for message in sort_messages([m for m in history if m is not None]):
                    await self._deliver(message)
                feed = store.listen_messages(self.match_id)
                try:
                    await self._set_status(StreamStatus.LIVE)
                    failures = 0
                    async for doc in feed:
                        await self._deliver(self._parse(doc))
                finally:
                    aclose = getattr(feed, "aclose", None)
                    if aclose is not None:
                        await aclose()
                raise ConnectionError("message feed ended")
            except asyncio.CancelledError:
                raise
            except (AuthorizationError, NotFoundError) as e:
                log.warning("[chat] %s: subscription closed: %s", self.match_id, e)
                await self._set_status(StreamStatus.CLOSED, e)
                return
            except Exception as e:
                failures += 1
                delay = self.stream.backoff(failures)
                log.warning("[chat] %s: stream degraded (%s); resubscribing in %.2fs",
                            self.match_id, e, delay)
                await self._set_status(StreamStatus.DEGRADED, e)
                await asyncio.sleep(delay)


class ChatStream:
    def __init__(self, store: Any, policy: Optional[RetryPolicy] = None, *,
                 resubscribe_max_delay: float = 30.0):
        self.store = retrying(store, policy)
        self.policy = self.store.policy
        self.resubscribe_max_delay = resubscribe_max_delay
        self._subscriptions: Set[Subscription] = set()

    def backoff(self, failures: int) -> float:
        return min(self.resubscribe_max_delay, self.policy.base_delay * (2 ** (failures - 1)))

    async def participant_match(self, match_id: str, user_id: str) -> Match:
        """The match, if ``user_id`` is one of its two members; NotParticipantError otherwise."""
        doc = await self.store.get_match(match_id)
        if doc is None:
            raise NotParticipantError(match_id, user_id)
        match = Match.from_doc(match_id, doc)
        if not match.has_member(user_id):
            raise NotParticipantError(match_id, user_id)
        return match

    async def send(self, match_id: str, sender_id: str, kind: MessageKind | str, body: Any) -> Message:
        try:
            kind = MessageKind(kind)
        except ValueError:
            raise ValidationError(f"unknown message kind {kind!r}") from None
        if kind is MessageKind.DATE_REQUEST:
            text = normalize_date_request(body)
        else:
            text = str(body or "").strip()
            if not text:
                raise ValidationError("empty message")
        await self.participant_match(match_id, sender_id)
        doc = await self.store.append_message(match_id, {
            "id": uuid.uuid4().hex,
            "senderId": sender_id,
            "kind": kind.value,
            "text": text,
        })
        message = Message.from_doc(match_id, doc)
        log.info("[chat] %s: %s sent %s #%s", match_id, sender_id, kind.value, message.seq)
        return message

    async def send_text(self, match_id: str, sender_id: str, text: str) -> Message:
        return await self.send(match_id, sender_id, MessageKind.TEXT, text)

    async def request_date(self, match_id: str, sender_id: str, date: Any) -> Message:
        return await self.send(match_id, sender_id, MessageKind.DATE_REQUEST, date)

    async def history(self, match_id: str, viewer_id: Optional[str] = None) -> List[Message]:
        if viewer_id is not None:
            await self.participant_match(match_id, viewer_id)
        out = []
        for doc in await self.store.list_messages(match_id):
            try:
                out.append(Message.from_doc(match_id, doc))
            except ValidationError as e:
                log.warning("[chat] %s: skipping malformed message: %s", match_id, e)
        return sort_messages(out)

    async def subscribe(self, match_id: str, on_message: OnMessage, *,
                        viewer_id: Optional[str] = None,
                        on_status: Optional[OnStatus] = None) -> Subscription:
        """Replay history in order, then deliver new messages as they land.

        With ``viewer_id`` the caller must be a member of the match.
        """
        if viewer_id is not None:
            await self.participant_match(match_id, viewer_id)
        sub = Subscription(self, match_id, on_message, on_status)
        self._subscriptions.add(sub)
        sub._start()
        return sub

    def _forget(self, sub: Subscription) -> None:
        self._subscriptions.discard(sub)

    async def close(self) -> None:
        subs = list(self._subscriptions)
        for sub in subs:
            sub.cancel()
        for sub in subs:
            await sub.wait_closed()
