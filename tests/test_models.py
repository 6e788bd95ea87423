"""Record validation at the store boundary."""

import datetime as dt

import pytest

from gigmatch.errors import ValidationError
from gigmatch.models import (
    Match,
    Message,
    MessageKind,
    Profile,
    Role,
    Viewer,
    canonical_match_id,
    normalize_date_request,
    to_utc,
)


class TestCanonicalMatchId:

    def test_order_independent(self):
        assert canonical_match_id("venue-dome", "perf-bo") == canonical_match_id("perf-bo", "venue-dome")

    def test_sorted_and_joined(self):
        assert canonical_match_id("b", "a") == "a_b"

    def test_rejects_self_pair(self):
        with pytest.raises(ValidationError):
            canonical_match_id("a", "a")

    def test_rejects_empty_id(self):
        with pytest.raises(ValidationError):
            canonical_match_id("", "a")


class TestRole:

    def test_parse_and_opposite(self):
        assert Role.parse("Venue") is Role.VENUE
        assert Role.PERFORMER.opposite() is Role.VENUE
        assert Role.VENUE.opposite() is Role.PERFORMER

    def test_legacy_artist_alias(self):
        assert Role.parse("artist") is Role.PERFORMER

    def test_unknown_role(self):
        with pytest.raises(ValidationError):
            Role.parse("promoter")


class TestProfile:

    def test_from_doc(self):
        p = Profile.from_doc("v1", {"role": "venue", "name": "Dome", "venueType": "hall",
                                    "headerImages": ["a.jpg", ""], "publicId": "dome"})
        assert p.role is Role.VENUE
        assert p.venue_type == "hall"
        assert p.header_images == ("a.jpg",)
        assert p.extra == {"publicId": "dome"}

    def test_missing_role_is_rejected(self):
        with pytest.raises(ValidationError):
            Profile.from_doc("x", {"name": "No Role"})

    def test_to_doc_keeps_extra_fields(self):
        p = Profile.from_doc("p1", {"role": "performer", "name": "Ana", "publicId": "ana"})
        doc = p.to_doc()
        assert doc["role"] == "performer"
        assert doc["publicId"] == "ana"


class TestMatch:

    def test_from_doc_sorts_users(self):
        m = Match.from_doc("a_b", {"users": ["b", "a"], "matchedAt": 0})
        assert m.users == ("a", "b")
        assert m.matched_at == dt.datetime(1970, 1, 1, tzinfo=dt.timezone.utc)

    def test_id_must_be_canonical(self):
        with pytest.raises(ValidationError):
            Match.from_doc("b_a", {"users": ["a", "b"]})

    def test_missing_timestamp_is_allowed(self):
        assert Match.from_doc("a_b", {"users": ["a", "b"]}).matched_at is None

    def test_counterpart(self):
        m = Match.from_doc("a_b", {"users": ["a", "b"]})
        assert m.counterpart("a") == "b"
        with pytest.raises(ValueError):
            m.counterpart("c")


class TestMessage:

    def test_legacy_type_field(self):
        msg = Message.from_doc("a_b", {"id": "m1", "senderId": "a", "type": "date_request",
                                       "text": "2024-05-01", "timestamp": 10})
        assert msg.kind is MessageKind.DATE_REQUEST

    def test_default_kind_is_text(self):
        msg = Message.from_doc("a_b", {"id": "m1", "senderId": "a", "text": "hi", "timestamp": 10})
        assert msg.kind is MessageKind.TEXT

    def test_pending_timestamp_is_rejected(self):
        with pytest.raises(ValidationError):
            Message.from_doc("a_b", {"id": "m1", "senderId": "a", "text": "hi", "timestamp": None})

    def test_unknown_kind_is_rejected(self):
        with pytest.raises(ValidationError):
            Message.from_doc("a_b", {"id": "m1", "senderId": "a", "kind": "poll", "timestamp": 1})


class TestDates:

    def test_normalize_date_request(self):
        assert normalize_date_request("2024-05-01") == "2024-05-01"
        assert normalize_date_request(dt.date(2024, 5, 1)) == "2024-05-01"
        assert normalize_date_request("Wed May 01 2024") == "2024-05-01"

    def test_not_a_date(self):
        with pytest.raises(ValidationError):
            normalize_date_request("next friday")

    def test_to_utc(self):
        assert to_utc("2024-05-01T10:00:00Z") == dt.datetime(2024, 5, 1, 10, tzinfo=dt.timezone.utc)
        assert to_utc(None) is None
        assert to_utc("garbage") is None


class _Identity:
    def __init__(self, uid, role):
        self.uid, self.role = uid, role

    def current_user_id(self):
        return self.uid

    def current_user_role(self):
        return self.role


def test_viewer_from_identity():
    assert Viewer.from_identity(_Identity("perf-ana", "artist")) == Viewer("perf-ana", Role.PERFORMER)
    with pytest.raises(ValidationError):
        Viewer.from_identity(_Identity(None, "venue"))


def test_role_parse_accepts_a_role():
    assert Role.parse(Role.VENUE) is Role.VENUE
    assert Role.parse(Role.PERFORMER).opposite() is Role.VENUE


@pytest.mark.parametrize("a,b", [("a_b", "c"), ("a", "b_c")])
def test_ids_containing_the_separator_cannot_match(a, b):
    with pytest.raises(ValidationError):
        canonical_match_id(a, b)
