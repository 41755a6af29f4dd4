"""Door check-in, by attendee id or by scanned QR payload."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from .errors import NotFound, RsvpCancelled
from .models import Attendee
from .qr import parse_payload
from .utils import utcnow

logger = logging.getLogger("uvicorn.error")


@dataclass
class CheckInResult:
    attendee: Attendee
    already_checked_in: bool


def _mark_checked_in(session: Session, attendee: Attendee) -> CheckInResult:
    if attendee.checked_in:
        return CheckInResult(attendee=attendee, already_checked_in=True)
    attendee.checked_in = True
    attendee.checked_in_at = utcnow()
    session.add(attendee)
    session.commit()
    logger.info("Checked in attendee %s for event %s", attendee.id, attendee.event_id)
    return CheckInResult(attendee=attendee, already_checked_in=False)


def check_in(session: Session, attendee_id: str) -> CheckInResult:
    """Check an attendee in by id.

    Idempotent. The cancelled flag is not consulted on this path; only
    ``check_in_by_qr`` rejects cancelled registrations.
    """
    attendee = session.get(Attendee, attendee_id)
    if not attendee:
        raise NotFound("Attendee not found")
    return _mark_checked_in(session, attendee)


def check_in_by_qr(session: Session, payload: str | None) -> CheckInResult:
    data = parse_payload(payload)
    attendee = session.get(Attendee, data["attendeeId"])
    if not attendee:
        raise NotFound("Attendee not found")
    if attendee.cancelled:
        raise RsvpCancelled()
    return _mark_checked_in(session, attendee)
