from __future__ import annotations

import json

import pytest
from sqlalchemy.exc import OperationalError

from gather import ledger
from gather.crud import update_event
from gather.errors import (
    AlreadyWaitlisted,
    CapacityExceeded,
    DuplicateRegistration,
    EventUnavailable,
    InvalidToken,
    NotFound,
)
from gather.ledger import (
    active_attendee_count,
    cancel,
    join_waitlist,
    promote_next,
    register,
)
from gather.models import WaitlistEntry


def test_register_creates_attendee_with_qr_payload(session, make_event):
    event = make_event()
    result = register(session, event, name="Ada Lovelace", email="ada@example.com")

    attendee = result.attendee
    assert result.reactivated is False
    assert attendee.event_id == event.id
    assert attendee.checked_in is False
    assert attendee.checked_in_at is None
    assert attendee.cancelled is False
    assert attendee.cancel_token
    assert json.loads(attendee.qr_payload) == {
        "attendeeId": attendee.id,
        "eventId": event.id,
        "name": "Ada Lovelace",
        "email": "ada@example.com",
    }
    assert attendee.qr_code.startswith("data:image/png;base64,")


def test_register_normalizes_email(session, make_event):
    event = make_event()
    result = register(session, event, name=" Ada ", email="  Ada@Example.COM ")
    assert result.attendee.name == "Ada"
    assert result.attendee.email == "ada@example.com"


def test_register_requires_name_and_email(session, make_event):
    event = make_event()
    with pytest.raises(ValueError):
        register(session, event, name="  ", email="ada@example.com")


def test_duplicate_registration_rejected(session, make_event):
    event = make_event()
    register(session, event, name="Ada", email="ada@example.com")
    with pytest.raises(DuplicateRegistration):
        register(session, event, name="Ada again", email="ADA@example.com")
    assert active_attendee_count(session, event.id) == 1


def test_same_email_can_register_for_different_events(session, make_event):
    first = make_event(title="First")
    second = make_event(title="Second")
    register(session, first, name="Ada", email="ada@example.com")
    result = register(session, second, name="Ada", email="ada@example.com")
    assert result.attendee.event_id == second.id


@pytest.mark.parametrize("status", ["draft", "cancelled"])
def test_register_rejected_unless_published(session, make_event, status):
    event = make_event(status=status)
    with pytest.raises(EventUnavailable):
        register(session, event, name="Ada", email="ada@example.com")


def test_capacity_never_exceeded_by_fresh_registrations(session, make_event):
    event = make_event(capacity=2)
    register(session, event, name="A", email="a@example.com")
    register(session, event, name="B", email="b@example.com")
    with pytest.raises(CapacityExceeded):
        register(session, event, name="C", email="c@example.com")
    assert active_attendee_count(session, event.id) == 2


def test_zero_capacity_event_is_always_full(session, make_event):
    event = make_event(capacity=0)
    with pytest.raises(CapacityExceeded):
        register(session, event, name="A", email="a@example.com")


def test_cancelled_seat_is_freed_for_new_registration(session, make_event):
    event = make_event(capacity=1)
    first = register(session, event, name="A", email="a@example.com").attendee
    cancel(session, first.id, first.cancel_token)
    second = register(session, event, name="B", email="b@example.com")
    assert second.reactivated is False
    assert active_attendee_count(session, event.id) == 1


def test_cancel_then_reregister_reactivates(session, make_event):
    event = make_event()
    original = register(session, event, name="Ada", email="ada@example.com").attendee
    original_id = original.id
    original_token = original.cancel_token
    original_payload = original.qr_payload

    cancel(session, original.id, original.cancel_token)
    result = register(session, event, name="Ada Byron", email="ada@example.com")

    attendee = result.attendee
    assert result.reactivated is True
    assert attendee.id == original_id
    assert attendee.cancel_token == original_token
    assert attendee.cancelled is False
    assert attendee.checked_in is False
    assert attendee.checked_in_at is None
    assert attendee.name == "Ada Byron"
    assert attendee.qr_payload != original_payload
    assert json.loads(attendee.qr_payload)["name"] == "Ada Byron"


def test_reactivation_resets_check_in(session, make_event):
    from gather.checkin import check_in

    event = make_event()
    attendee = register(session, event, name="Ada", email="ada@example.com").attendee
    check_in(session, attendee.id)
    cancel(session, attendee.id, attendee.cancel_token)

    result = register(session, event, name="Ada", email="ada@example.com")
    assert result.attendee.checked_in is False
    assert result.attendee.checked_in_at is None


def test_reactivation_may_exceed_capacity(session, make_event):
    event = make_event(capacity=1)
    first = register(session, event, name="A", email="a@example.com").attendee
    cancel(session, first.id, first.cancel_token)
    register(session, event, name="B", email="b@example.com")

    result = register(session, event, name="A", email="a@example.com")
    assert result.reactivated is True
    assert active_attendee_count(session, event.id) == 2


def test_cancel_unknown_attendee(session):
    with pytest.raises(NotFound):
        cancel(session, "missing", "token")


def test_cancel_with_wrong_token(session, make_event):
    event = make_event()
    attendee = register(session, event, name="Ada", email="ada@example.com").attendee
    with pytest.raises(InvalidToken):
        cancel(session, attendee.id, "not-the-token")
    with pytest.raises(InvalidToken):
        cancel(session, attendee.id, "")
    assert attendee.cancelled is False


def test_waitlist_positions_follow_join_order(session, make_event):
    event = make_event(capacity=0)
    positions = [
        join_waitlist(session, event, name=f"Guest {n}", email=f"g{n}@example.com").position
        for n in range(1, 5)
    ]
    assert positions == [1, 2, 3, 4]


def test_waitlist_rejects_duplicate_email(session, make_event):
    event = make_event(capacity=0)
    join_waitlist(session, event, name="Ada", email="ada@example.com")
    with pytest.raises(AlreadyWaitlisted):
        join_waitlist(session, event, name="Ada", email="Ada@example.com ")


def test_waitlist_join_does_not_check_capacity(session, make_event):
    event = make_event(capacity=5)
    result = join_waitlist(session, event, name="Ada", email="ada@example.com")
    assert result.position == 1


def test_cancellation_notifies_oldest_waitlist_entry_once(session, make_event):
    event = make_event(capacity=2)
    a = register(session, event, name="A", email="a@example.com").attendee
    b = register(session, event, name="B", email="b@example.com").attendee
    first = join_waitlist(session, event, name="W1", email="w1@example.com").entry
    second = join_waitlist(session, event, name="W2", email="w2@example.com").entry

    cancel(session, a.id, a.cancel_token)
    session.refresh(first)
    session.refresh(second)
    assert first.notified is True
    assert first.notified_at is not None
    assert second.notified is False

    cancel(session, b.id, b.cancel_token)
    session.refresh(first)
    session.refresh(second)
    assert first.notified is True
    assert second.notified is True


def test_repeat_cancellation_does_not_notify_again(session, make_event):
    event = make_event(capacity=1)
    a = register(session, event, name="A", email="a@example.com").attendee
    join_waitlist(session, event, name="W1", email="w1@example.com")
    second = join_waitlist(session, event, name="W2", email="w2@example.com").entry

    cancel(session, a.id, a.cancel_token)
    cancel(session, a.id, a.cancel_token)

    session.refresh(second)
    assert second.notified is False


def test_promotion_never_creates_attendees_or_removes_entries(session, make_event):
    event = make_event(capacity=1)
    a = register(session, event, name="A", email="a@example.com").attendee
    join_waitlist(session, event, name="W1", email="w1@example.com")

    cancel(session, a.id, a.cancel_token)

    assert active_attendee_count(session, event.id) == 0
    assert session.query(WaitlistEntry).filter_by(event_id=event.id).count() == 1


def test_promote_next_with_empty_waitlist(session, make_event):
    event = make_event()
    assert promote_next(session, event.id) is None


def test_promotion_failure_does_not_fail_cancellation(session, make_event, monkeypatch):
    event = make_event(capacity=1)
    a = register(session, event, name="A", email="a@example.com").attendee
    entry = join_waitlist(session, event, name="W1", email="w1@example.com").entry

    def _broken_promotion(*args, **kwargs):
        raise OperationalError("UPDATE waitlist_entries", {}, Exception("disk I/O error"))

    monkeypatch.setattr(ledger, "promote_next", _broken_promotion)
    cancelled = cancel(session, a.id, a.cancel_token)

    session.refresh(cancelled)
    session.refresh(entry)
    assert cancelled.cancelled is True
    assert entry.notified is False


def test_draft_event_can_be_published_then_registered(session, make_event):
    event = make_event(status="draft")
    update_event(session, event, status="published")
    session.commit()
    result = register(session, event, name="Ada", email="ada@example.com")
    assert result.attendee.event_id == event.id


def test_promotion_query_skips_rows_locked_by_another_promotion():
    from sqlalchemy.dialects import postgresql

    stmt = ledger.next_unnotified_entry_stmt("event-1")
    sql = str(stmt.compile(dialect=postgresql.dialect()))
    assert "FOR UPDATE SKIP LOCKED" in sql
    assert "LIMIT" in sql


def test_promotion_locks_event_before_picking_entry(session, make_event, monkeypatch):
    event = make_event(capacity=1)
    join_waitlist(session, event, name="W1", email="w1@example.com")
    calls = []
    real_lock = ledger._lock_event

    def _recording_lock(db, event_id):
        calls.append(event_id)
        real_lock(db, event_id)

    monkeypatch.setattr(ledger, "_lock_event", _recording_lock)
    entry = promote_next(session, event.id)
    session.commit()

    assert calls == [event.id]
    assert entry.notified is True
