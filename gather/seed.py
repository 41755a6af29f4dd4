"""Development helpers for populating fake events, attendees and waitlists."""

from __future__ import annotations

import random
from datetime import date, timedelta

from faker import Faker
from sqlalchemy.orm import Session

from .checkin import check_in
from .crud import create_event
from .database import get_session
from .errors import AlreadyWaitlisted, CapacityExceeded, DuplicateRegistration
from .ledger import cancel, join_waitlist, register
from .models import Event
from .storage import init_db

_event_types = [
    "Mixer",
    "Hangout",
    "Workshop",
    "Field Trip",
    "Meet & Greet",
    "Dinner",
    "Book Club",
    "Launch Party",
]
_ticket_types = ["free", "free", "free", "paid"]


def seed_fake_data(
    *,
    event_count: int = 5,
    max_attendees_per_event: int = 8,
    max_waitlist_per_event: int = 3,
) -> dict[str, int]:
    """Populate the database with synthetic events run through the ledger."""
    if event_count < 0:
        raise ValueError("event_count must be >= 0")
    if max_attendees_per_event < 0:
        raise ValueError("max_attendees_per_event must be >= 0")
    if max_waitlist_per_event < 0:
        raise ValueError("max_waitlist_per_event must be >= 0")

    init_db()
    fake = Faker()
    stats = {"events": 0, "attendees": 0, "waitlist": 0}

    with get_session() as session:
        for _ in range(event_count):
            event = _create_event(session, fake, max_attendees_per_event)
            stats["events"] += 1
            stats["attendees"] += _create_attendees(
                session, fake, event, max_attendees_per_event
            )
            stats["waitlist"] += _create_waitlist(
                session, fake, event, max_waitlist_per_event
            )

    return stats


def _create_event(session: Session, fake: Faker, max_attendees: int) -> Event:
    start_hour = random.randint(9, 20)
    ticket_type = random.choice(_ticket_types)
    event = create_event(
        session,
        title=f"{fake.city()} {random.choice(_event_types)}",
        description="\n\n".join(fake.paragraphs(nb=2)),
        date=(date.today() + timedelta(days=random.randint(1, 60))).isoformat(),
        start_time=f"{start_hour:02d}:00",
        end_time=f"{min(start_hour + random.randint(1, 3), 23):02d}:00",
        location=fake.address().replace("\n", ", "),
        capacity=random.randint(max(max_attendees // 2, 1), max(max_attendees, 1)),
        price=0.0 if ticket_type == "free" else float(random.randint(5, 40)),
        ticket_type=ticket_type,
        host_name=fake.name_nonbinary(),
        host_email=fake.email(),
    )
    session.commit()
    return event


def _create_attendees(
    session: Session, fake: Faker, event: Event, max_attendees: int
) -> int:
    created = 0
    for _ in range(random.randint(0, max_attendees)):
        try:
            result = register(
                session, event, name=fake.name_nonbinary(), email=fake.unique.email()
            )
        except (CapacityExceeded, DuplicateRegistration):
            continue
        created += 1
        roll = random.random()
        if roll < 0.3:
            check_in(session, result.attendee.id)
        elif roll < 0.4:
            cancel(session, result.attendee.id, result.attendee.cancel_token)
    return created


def _create_waitlist(session: Session, fake: Faker, event: Event, max_entries: int) -> int:
    created = 0
    for _ in range(random.randint(0, max_entries)):
        try:
            join_waitlist(
                session, event, name=fake.name_nonbinary(), email=fake.unique.email()
            )
        except AlreadyWaitlisted:
            continue
        created += 1
    return created
