"""CRUD helpers for events."""

from __future__ import annotations

from typing import Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from .config import settings
from .errors import Forbidden, NotFound, SlugTaken
from .models import EVENT_STATUSES, Event
from .utils import generate_slug, slugify

SLUG_ATTEMPTS = 10
EDITABLE_EVENT_FIELDS = (
    "title",
    "description",
    "date",
    "start_time",
    "end_time",
    "location",
    "capacity",
    "price",
    "ticket_type",
    "cover_image",
    "host_name",
    "host_email",
    "status",
)
REQUIRED_EVENT_FIELDS = frozenset(
    {
        "title",
        "date",
        "start_time",
        "end_time",
        "location",
        "capacity",
        "price",
        "ticket_type",
        "status",
    }
)


def _normalize_status(status: str | None) -> str:
    normalized = (status or "published").strip().lower()
    if normalized not in EVENT_STATUSES:
        raise ValueError("Invalid event status")
    return normalized


def _normalize_capacity(capacity: int | None) -> int:
    if capacity is None:
        return settings.default_capacity
    value = int(capacity)
    if value < 0:
        raise ValueError("Capacity must be zero or greater")
    return value


def get_event_by_slug(session: Session, slug: str) -> Event | None:
    normalized = (slug or "").strip().lower()
    if not normalized:
        return None
    stmt = select(Event).where(Event.slug == normalized)
    return session.scalars(stmt).first()


def require_event(session: Session, slug: str) -> Event:
    event = get_event_by_slug(session, slug)
    if not event:
        raise NotFound("Event not found")
    return event


def require_owner(event: Event, requester_id: str | None) -> None:
    """Allow the owner, or anyone when the event has no owner."""
    if event.owner_id is None:
        return
    if requester_id != event.owner_id:
        raise Forbidden()


def _unique_slug(session: Session, title: str, requested: str | None) -> str:
    if requested:
        slug = slugify(requested)
        if not slug:
            raise ValueError("Invalid event slug")
        if get_event_by_slug(session, slug):
            raise SlugTaken()
        return slug
    for _ in range(SLUG_ATTEMPTS):
        slug = generate_slug(title, max_length=settings.slug_max_length)
        if not get_event_by_slug(session, slug):
            return slug
    raise RuntimeError("Failed to generate a unique event slug")


def list_published_events(session: Session) -> Sequence[Event]:
    stmt = (
        select(Event)
        .where(Event.status == "published")
        .order_by(Event.date.asc(), Event.start_time.asc())
    )
    return session.scalars(stmt).all()


def list_owned_events(session: Session, owner_id: str) -> Sequence[Event]:
    stmt = (
        select(Event)
        .where(Event.owner_id == owner_id)
        .order_by(Event.date.asc(), Event.start_time.asc())
    )
    return session.scalars(stmt).all()


def create_event(
    session: Session,
    *,
    title: str,
    date: str,
    start_time: str,
    end_time: str,
    location: str,
    description: str | None = None,
    capacity: int | None = None,
    price: float | None = None,
    ticket_type: str | None = None,
    cover_image: str | None = None,
    host_name: str | None = None,
    host_email: str | None = None,
    status: str | None = None,
    owner_id: str | None = None,
    slug: str | None = None,
) -> Event:
    """Create and persist a new event."""
    event = Event(
        slug=_unique_slug(session, title, slug),
        title=title,
        description=description or "",
        date=date,
        start_time=start_time,
        end_time=end_time,
        location=location,
        capacity=_normalize_capacity(capacity),
        price=price or 0.0,
        ticket_type=ticket_type or "free",
        cover_image=cover_image,
        host_name=host_name or "",
        host_email=host_email or "",
        status=_normalize_status(status),
        owner_id=owner_id,
    )
    session.add(event)
    session.flush()
    return event


def update_event(session: Session, event: Event, **changes) -> Event:
    """Apply the given field changes; unknown fields are ignored.

    Raises ``ValueError`` when a required field is set to ``None``.
    """
    cleared = sorted(
        f for f in REQUIRED_EVENT_FIELDS if f in changes and changes[f] is None
    )
    if cleared:
        raise ValueError(f"Cannot clear required fields: {', '.join(cleared)}")
    for field in EDITABLE_EVENT_FIELDS:
        if field not in changes:
            continue
        value = changes[field]
        if field == "status":
            value = _normalize_status(value)
        elif field == "capacity":
            value = _normalize_capacity(value)
        setattr(event, field, value)
    session.add(event)
    session.flush()
    return event


def delete_event(session: Session, event: Event) -> None:
    """Delete an event together with its attendees and waitlist."""
    session.delete(event)
    session.flush()
