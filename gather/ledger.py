"""Registration ledger: capacity arbitration, cancellation and the waitlist.

Every public operation here is one short transaction that commits before it
returns. Registration serializes the capacity count with the insert through
``_lock_event``; on SQLite the engine already opens each transaction with
``BEGIN IMMEDIATE`` (see ``database.enable_sqlite_write_locks``), elsewhere
the ``SELECT ... FOR UPDATE`` on the event row does the work.
"""

from __future__ import annotations

import logging
import secrets
import uuid
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import (
    AlreadyWaitlisted,
    CapacityExceeded,
    DuplicateRegistration,
    EventUnavailable,
    InvalidToken,
    NotFound,
)
from .models import Attendee, Event, WaitlistEntry
from .qr import build_payload, render_data_url
from .utils import utcnow

logger = logging.getLogger("uvicorn.error")


@dataclass
class RegistrationResult:
    attendee: Attendee
    reactivated: bool = False


@dataclass
class WaitlistResult:
    entry: WaitlistEntry
    position: int


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def _clean_identity(name: str | None, email: str | None) -> tuple[str, str]:
    cleaned_name = (name or "").strip()
    cleaned_email = normalize_email(email)
    if not cleaned_name or not cleaned_email:
        raise ValueError("Name and email are required")
    return cleaned_name, cleaned_email


def _lock_event(session: Session, event_id: str) -> None:
    session.execute(select(Event.id).where(Event.id == event_id).with_for_update())


def active_attendee_count(session: Session, event_id: str) -> int:
    stmt = (
        select(func.count())
        .select_from(Attendee)
        .where(Attendee.event_id == event_id, Attendee.cancelled.is_(False))
    )
    return session.scalar(stmt) or 0


def find_attendee(session: Session, event_id: str, email: str) -> Attendee | None:
    """Return the attendee for (event, email), preferring an active record."""
    stmt = (
        select(Attendee)
        .where(Attendee.event_id == event_id, Attendee.email == normalize_email(email))
        .order_by(Attendee.cancelled.asc(), Attendee.created_at.desc())
    )
    return session.scalars(stmt).first()


def _issue_qr(attendee: Attendee, event: Event) -> None:
    attendee.qr_payload = build_payload(
        attendee_id=attendee.id,
        event_id=event.id,
        name=attendee.name,
        email=attendee.email,
    )
    attendee.qr_code = render_data_url(attendee.qr_payload)


def register(
    session: Session, event: Event, *, name: str, email: str
) -> RegistrationResult:
    """Register ``email`` for ``event``, reactivating a cancelled record.

    Raises ``EventUnavailable`` for draft or cancelled events,
    ``DuplicateRegistration`` when an active record exists and
    ``CapacityExceeded`` when a fresh registration would overfill the event.
    Reactivation skips the capacity check, so an event may end up slightly
    over capacity after a cancel/re-register cycle.
    """
    if not event.is_open:
        raise EventUnavailable()
    name, email = _clean_identity(name, email)

    _lock_event(session, event.id)
    existing = find_attendee(session, event.id, email)
    if existing and not existing.cancelled:
        raise DuplicateRegistration()

    if existing:
        existing.cancelled = False
        existing.checked_in = False
        existing.checked_in_at = None
        existing.name = name
        _issue_qr(existing, event)
        session.add(existing)
        session.commit()
        logger.info(
            "Reactivated attendee %s for event %s (%s)",
            existing.id,
            event.id,
            event.slug,
        )
        return RegistrationResult(attendee=existing, reactivated=True)

    if active_attendee_count(session, event.id) >= event.capacity:
        raise CapacityExceeded()

    attendee = Attendee(
        id=str(uuid.uuid4()),
        event=event,
        name=name,
        email=email,
        cancel_token=secrets.token_urlsafe(32),
        checked_in=False,
        cancelled=False,
        created_at=utcnow(),
    )
    _issue_qr(attendee, event)
    session.add(attendee)
    try:
        session.flush()
    except IntegrityError as exc:
        session.rollback()
        raise DuplicateRegistration() from exc
    session.commit()
    logger.info(
        "Registered attendee %s for event %s (%s)", attendee.id, event.id, event.slug
    )
    return RegistrationResult(attendee=attendee)


def cancel(session: Session, attendee_id: str, cancel_token: str | None) -> Attendee:
    """Cancel a registration with its self-service token.

    Cancelling an already-cancelled registration changes nothing and does not
    notify the waitlist again.
    """
    attendee = session.get(Attendee, attendee_id)
    if not attendee:
        raise NotFound("Attendee not found")
    if not cancel_token or not secrets.compare_digest(
        attendee.cancel_token.encode(), cancel_token.encode()
    ):
        raise InvalidToken()
    if attendee.cancelled:
        return attendee

    attendee.cancelled = True
    session.add(attendee)
    session.commit()
    logger.info("Cancelled attendee %s for event %s", attendee.id, attendee.event_id)

    _promote_after_cancel(session, attendee.event_id)
    return attendee


def _promote_after_cancel(session: Session, event_id: str) -> None:
    try:
        promote_next(session, event_id)
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Waitlist promotion failed for event %s", event_id)


def next_unnotified_entry_stmt(event_id: str):
    return (
        select(WaitlistEntry)
        .where(
            WaitlistEntry.event_id == event_id,
            WaitlistEntry.notified.is_(False),
        )
        .order_by(WaitlistEntry.created_at.asc(), WaitlistEntry.id.asc())
        .limit(1)
        .with_for_update(skip_locked=True)
    )


def promote_next(session: Session, event_id: str) -> WaitlistEntry | None:
    """Mark the oldest unnotified waitlist entry as notified.

    Promotion is advisory: the entry stays on the waitlist and no seat is
    reserved for it. The event row lock makes concurrent cancellations of one
    event promote one after the other, each seeing the previous commit.
    """
    _lock_event(session, event_id)
    entry = session.scalars(next_unnotified_entry_stmt(event_id)).first()
    if not entry:
        return None
    entry.notified = True
    entry.notified_at = utcnow()
    session.add(entry)
    session.flush()
    logger.info(
        "Waitlist entry %s notified of an open spot for event %s", entry.id, event_id
    )
    return entry


def waitlist_position(session: Session, entry: WaitlistEntry) -> int:
    stmt = (
        select(func.count())
        .select_from(WaitlistEntry)
        .where(
            WaitlistEntry.event_id == entry.event_id,
            WaitlistEntry.created_at <= entry.created_at,
        )
    )
    return session.scalar(stmt) or 0


def join_waitlist(
    session: Session, event: Event, *, name: str, email: str
) -> WaitlistResult:
    """Queue ``email`` for ``event``.

    Capacity is not consulted: joining is allowed even while a spot is free.
    """
    name, email = _clean_identity(name, email)
    stmt = select(WaitlistEntry.id).where(
        WaitlistEntry.event_id == event.id, WaitlistEntry.email == email
    )
    if session.scalars(stmt).first():
        raise AlreadyWaitlisted()

    entry = WaitlistEntry(
        id=str(uuid.uuid4()),
        event=event,
        name=name,
        email=email,
        notified=False,
        created_at=utcnow(),
    )
    session.add(entry)
    try:
        session.flush()
    except IntegrityError as exc:
        session.rollback()
        raise AlreadyWaitlisted() from exc
    position = waitlist_position(session, entry)
    session.commit()
    logger.info(
        "Waitlist entry %s joined event %s at position %d", entry.id, event.id, position
    )
    return WaitlistResult(entry=entry, position=position)
