from __future__ import annotations

import pytest

from gather import crud
from gather.crud import (
    create_event,
    delete_event,
    get_event_by_slug,
    list_owned_events,
    list_published_events,
    require_event,
    require_owner,
    update_event,
)
from gather.errors import Forbidden, NotFound, SlugTaken
from gather.ledger import join_waitlist, register
from gather.models import Attendee, WaitlistEntry


def _create(session, **overrides):
    fields = {
        "title": "Summer BBQ",
        "date": "2030-07-04",
        "start_time": "12:00",
        "end_time": "16:00",
        "location": "Riverside Park",
    }
    fields.update(overrides)
    event = create_event(session, **fields)
    session.commit()
    return event


def test_create_event_applies_defaults(session):
    event = _create(session)
    assert event.slug.startswith("summer-bbq-")
    assert event.capacity == 50
    assert event.price == 0.0
    assert event.ticket_type == "free"
    assert event.status == "published"
    assert event.owner_id is None
    assert event.created_at is not None


def test_create_event_rejects_bad_status_and_capacity(session):
    with pytest.raises(ValueError):
        _create(session, status="archived")
    with pytest.raises(ValueError):
        _create(session, capacity=-5)


def test_requested_slug_is_slugified_and_unique(session):
    event = _create(session, slug="  Summer BBQ 2030! ")
    assert event.slug == "summer-bbq-2030"
    with pytest.raises(SlugTaken):
        _create(session, slug="summer-bbq-2030")


def test_slug_generation_gives_up_after_repeated_collisions(session, monkeypatch):
    _create(session, slug="fixed")
    monkeypatch.setattr(crud, "generate_slug", lambda title, max_length: "fixed")
    with pytest.raises(RuntimeError):
        _create(session)


def test_get_event_by_slug_is_case_insensitive(session):
    event = _create(session, slug="mixer")
    assert get_event_by_slug(session, " MIXER ").id == event.id
    assert get_event_by_slug(session, "") is None
    with pytest.raises(NotFound):
        require_event(session, "nope")


def test_update_event_changes_editable_fields_only(session):
    event = _create(session)
    original_slug = event.slug
    update_event(
        session,
        event,
        title="Winter BBQ",
        capacity=12,
        status="Cancelled",
        slug="ignored",
        owner_id="someone",
    )
    assert event.title == "Winter BBQ"
    assert event.capacity == 12
    assert event.status == "cancelled"
    assert event.slug == original_slug
    assert event.owner_id is None


def test_require_owner(session):
    owned = _create(session, owner_id="owner-1")
    require_owner(owned, "owner-1")
    with pytest.raises(Forbidden):
        require_owner(owned, "owner-2")
    with pytest.raises(Forbidden):
        require_owner(owned, None)
    require_owner(_create(session), None)


def test_list_published_events_sorted(session):
    _create(session, title="Late", date="2030-09-01")
    _create(session, title="Early evening", date="2030-08-01", start_time="18:00")
    _create(session, title="Early morning", date="2030-08-01", start_time="08:00")
    _create(session, title="Draft", status="draft")

    titles = [e.title for e in list_published_events(session)]
    assert titles == ["Early morning", "Early evening", "Late"]


def test_list_owned_events_includes_drafts(session):
    _create(session, title="Mine", owner_id="owner-1", status="draft")
    _create(session, title="Other", owner_id="owner-2")
    assert [e.title for e in list_owned_events(session, "owner-1")] == ["Mine"]


def test_delete_event_removes_attendees_and_waitlist(session):
    event = _create(session)
    register(session, event, name="Ada", email="ada@example.com")
    join_waitlist(session, event, name="Bo", email="bo@example.com")

    delete_event(session, event)
    session.commit()

    assert session.query(Attendee).count() == 0
    assert session.query(WaitlistEntry).count() == 0
    assert get_event_by_slug(session, event.slug) is None


def test_update_event_refuses_to_clear_required_fields(session):
    event = _create(session, capacity=3)
    with pytest.raises(ValueError, match="capacity, title"):
        update_event(session, event, title=None, capacity=None, description="kept?")
    assert event.title == "Summer BBQ"
    assert event.capacity == 3
    assert event.description == ""


def test_update_event_allows_clearing_optional_fields(session):
    event = _create(session, cover_image="https://example.com/cover.png")
    update_event(session, event, cover_image=None, host_name=None)
    assert event.cover_image is None
    assert event.host_name is None
