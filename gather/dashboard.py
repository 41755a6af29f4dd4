"""Organizer dashboard aggregation and CSV export."""

from __future__ import annotations

import csv
from dataclasses import dataclass, field
from datetime import datetime
from io import StringIO

from sqlalchemy import select
from sqlalchemy.orm import Session

from .crud import require_owner
from .models import Attendee, Event, WaitlistEntry
from .utils import isoformat_or_none

EXPORT_COLUMNS = (
    "name",
    "email",
    "status",
    "checked_in",
    "checked_in_at",
    "registered_at",
)


@dataclass
class Dashboard:
    event: Event
    attendees: list[Attendee] = field(default_factory=list)
    waitlist: list[WaitlistEntry] = field(default_factory=list)
    checkin_times: list[datetime] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.attendees)

    @property
    def checked_in(self) -> int:
        return sum(1 for a in self.attendees if a.checked_in)

    @property
    def waitlist_count(self) -> int:
        return len(self.waitlist)


def _active_attendees(session: Session, event: Event) -> list[Attendee]:
    stmt = (
        select(Attendee)
        .where(Attendee.event_id == event.id, Attendee.cancelled.is_(False))
        .order_by(Attendee.created_at.desc())
    )
    return list(session.scalars(stmt).all())


def _waitlist(session: Session, event: Event) -> list[WaitlistEntry]:
    stmt = (
        select(WaitlistEntry)
        .where(WaitlistEntry.event_id == event.id)
        .order_by(WaitlistEntry.created_at.asc(), WaitlistEntry.id.asc())
    )
    return list(session.scalars(stmt).all())


def build_dashboard(
    session: Session, event: Event, requester_id: str | None
) -> Dashboard:
    """Summarize an event for its owner; cancelled registrations are left out."""
    require_owner(event, requester_id)
    attendees = _active_attendees(session, event)
    checkin_times = sorted(
        a.checked_in_at for a in attendees if a.checked_in and a.checked_in_at
    )
    return Dashboard(
        event=event,
        attendees=attendees,
        waitlist=_waitlist(session, event),
        checkin_times=checkin_times,
    )


def export_rows(session: Session, event: Event) -> list[dict[str, str]]:
    stmt = (
        select(Attendee)
        .where(Attendee.event_id == event.id)
        .order_by(Attendee.created_at.asc())
    )
    rows = []
    for attendee in session.scalars(stmt):
        rows.append(
            {
                "name": attendee.name,
                "email": attendee.email,
                "status": attendee.status,
                "checked_in": "yes" if attendee.checked_in else "no",
                "checked_in_at": isoformat_or_none(attendee.checked_in_at) or "",
                "registered_at": attendee.created_at.isoformat(),
            }
        )
    return rows


def export_csv(
    session: Session, event: Event, requester_id: str | None, *, check_owner: bool = True
) -> str:
    """Render every registration, cancelled ones included, as CSV text."""
    if check_owner:
        require_owner(event, requester_id)
    buffer = StringIO()
    writer = csv.DictWriter(buffer, fieldnames=EXPORT_COLUMNS, lineterminator="\n")
    writer.writeheader()
    writer.writerows(export_rows(session, event))
    return buffer.getvalue()
