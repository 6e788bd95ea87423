"""Typed records for the documents the core reads and writes.

Store documents are loosely typed dicts. They are validated here, at the
store boundary, so the rest of the core only ever sees these records.
"""

from __future__ import annotations

import datetime as dt
import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Tuple

from .errors import ValidationError

MATCH_ID_SEPARATOR = "_"


class Role(str, enum.Enum):
    PERFORMER = "performer"
    VENUE = "venue"

    @classmethod
    def parse(cls, raw: Any) -> "Role":
        if isinstance(raw, cls):
            return raw
        value = (str(raw or "")).strip().lower()
        if value == "artist":  # older profiles
            value = cls.PERFORMER.value
        try:
            return cls(value)
        except ValueError:
            raise ValidationError(f"unknown role {raw!r}") from None

    def opposite(self) -> "Role":
        return Role.VENUE if self is Role.PERFORMER else Role.PERFORMER


class MessageKind(str, enum.Enum):
    TEXT = "text"
    DATE_REQUEST = "date_request"


def canonical_match_id(a: str, b: str) -> str:
    """Order-independent id for the pair: ``min_max``."""
    if not a or not b:
        raise ValidationError("match members must be non-empty ids")
    if MATCH_ID_SEPARATOR in a or MATCH_ID_SEPARATOR in b:
        raise ValidationError(f"user ids may not contain {MATCH_ID_SEPARATOR!r}: {a!r}, {b!r}")
    if a == b:
        raise ValidationError("a match needs two distinct users")
    lo, hi = sorted((a, b))
    return f"{lo}{MATCH_ID_SEPARATOR}{hi}"


def to_utc(value: Any) -> Optional[dt.datetime]:
    """Coerce a store timestamp (datetime, epoch seconds, ISO string) to aware UTC."""
    if value is None:
        return None
    if isinstance(value, dt.datetime):
        return value if value.tzinfo else value.replace(tzinfo=dt.timezone.utc)
    if isinstance(value, (int, float)):
        return dt.datetime.fromtimestamp(float(value), tz=dt.timezone.utc)
    if isinstance(value, str):
        try:
            return to_utc(dt.datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            return None
    return None


@dataclass(frozen=True)
class Profile:
    id: str
    role: Role
    name: str = ""
    bio: str = ""
    genre: str = ""
    venue_type: str = ""
    profile_image: Optional[str] = None
    header_images: Tuple[str, ...] = ()
    extra: Dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_doc(cls, doc_id: str, data: Dict[str, Any]) -> "Profile":
        if not doc_id:
            raise ValidationError("profile document without id")
        if not isinstance(data, dict):
            raise ValidationError(f"profile {doc_id!r} is not a document")
        known = {"id", "role", "name", "bio", "genre", "venueType", "profileImage", "headerImages"}
        headers = data.get("headerImages") or ()
        if isinstance(headers, str):
            headers = (headers,)
        return cls(
            id=str(doc_id),
            role=Role.parse(data.get("role")),
            name=str(data.get("name") or ""),
            bio=str(data.get("bio") or ""),
            genre=str(data.get("genre") or ""),
            venue_type=str(data.get("venueType") or ""),
            profile_image=data.get("profileImage") or None,
            header_images=tuple(str(h) for h in headers if h),
            extra={k: v for k, v in data.items() if k not in known},
        )

    def to_doc(self) -> Dict[str, Any]:
        doc: Dict[str, Any] = dict(self.extra)
        doc.update({
            "role": self.role.value,
            "name": self.name,
            "bio": self.bio,
            "genre": self.genre,
            "venueType": self.venue_type,
            "profileImage": self.profile_image,
            "headerImages": list(self.header_images),
        })
        return doc


@dataclass(frozen=True)
class Match:
    id: str
    users: Tuple[str, str]
    matched_at: Optional[dt.datetime] = None

    @classmethod
    def from_doc(cls, doc_id: str, data: Dict[str, Any]) -> "Match":
        users = data.get("users") if isinstance(data, dict) else None
        if not isinstance(users, (list, tuple)) or len(users) != 2:
            raise ValidationError(f"match {doc_id!r} must have exactly two users")
        a, b = (str(u) for u in users)
        if canonical_match_id(a, b) != doc_id:
            raise ValidationError(f"match id {doc_id!r} does not match its users {users!r}")
        return cls(id=doc_id, users=tuple(sorted((a, b))), matched_at=to_utc(data.get("matchedAt")))

    def has_member(self, user_id: str) -> bool:
        return user_id in self.users

    def counterpart(self, user_id: str) -> str:
        a, b = self.users
        if user_id == a:
            return b
        if user_id == b:
            return a
        raise ValueError(f"{user_id!r} is not a member of {self.id!r}")


@dataclass(frozen=True)
class Message:
    id: str
    match_id: str
    sender_id: str
    kind: MessageKind
    body: str
    timestamp: dt.datetime
    seq: int = 0

    @property
    def order_key(self) -> Tuple[dt.datetime, int]:
        return (self.timestamp, self.seq)

    @classmethod
    def from_doc(cls, match_id: str, data: Dict[str, Any]) -> "Message":
        if not isinstance(data, dict) or not data.get("id"):
            raise ValidationError(f"message in {match_id!r} without id")
        raw_kind = data.get("kind") or data.get("type") or MessageKind.TEXT.value
        try:
            kind = MessageKind(raw_kind)
        except ValueError:
            raise ValidationError(f"message {data['id']!r} has unknown kind {raw_kind!r}") from None
        ts = to_utc(data.get("timestamp"))
        if ts is None:
            raise ValidationError(f"message {data['id']!r} has no store timestamp yet")
        sender = data.get("senderId")
        if not sender:
            raise ValidationError(f"message {data['id']!r} has no sender")
        return cls(
            id=str(data["id"]),
            match_id=match_id,
            sender_id=str(sender),
            kind=kind,
            body=str(data.get("text") or ""),
            timestamp=ts,
            seq=int(data.get("seq") or 0),
        )


@dataclass(frozen=True)
class DeckEntry:
    index: int
    profile: Profile


@dataclass(frozen=True)
class MatchEntry:
    match: Match
    counterpart: Profile

    @property
    def id(self) -> str:
        return self.match.id


class IdentityPort(Protocol):
    def current_user_id(self) -> Optional[str]: ...
    def current_user_role(self) -> Optional[str]: ...


@dataclass(frozen=True)
class Viewer:
    """Explicit "who is acting" context passed into every core operation."""
    uid: str
    role: Role

    @classmethod
    def from_identity(cls, identity: IdentityPort) -> "Viewer":
        uid = identity.current_user_id()
        if not uid:
            raise ValidationError("no authenticated user")
        return cls(uid=uid, role=Role.parse(identity.current_user_role()))


def normalize_date_request(value: Any) -> str:
    """Calendar date for a date_request message, as ``YYYY-MM-DD``."""
    if isinstance(value, dt.datetime):
        return value.date().isoformat()
    if isinstance(value, dt.date):
        return value.isoformat()
    text = str(value or "").strip()
    try:
        return dt.date.fromisoformat(text).isoformat()
    except ValueError:
        pass
    for fmt in ("%a %b %d %Y", "%b %d %Y"):
        try:
            return dt.datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue
    raise ValidationError(f"not a calendar date: {value!r}")


def sort_messages(messages: List[Message]) -> List[Message]:
    return sorted(messages, key=lambda m: m.order_key)
