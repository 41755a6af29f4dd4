"""Domain errors raised by the registration ledger and its consumers."""

from __future__ import annotations


class GatherError(Exception):
    """Base class for user-displayable failures.

    ``code`` is the stable machine-readable identifier returned to API clients
    and ``status_code`` the HTTP status the API maps it to.
    """

    code = "GatherError"
    status_code = 400
    default_message = "Something went wrong."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def as_dict(self) -> dict[str, str]:
        return {"error": self.code, "message": self.message}


class NotFound(GatherError):
    code = "NotFound"
    status_code = 404
    default_message = "Not found."


class Forbidden(GatherError):
    code = "Forbidden"
    status_code = 403
    default_message = "You do not have access to this event."


class EventUnavailable(GatherError):
    code = "EventUnavailable"
    status_code = 403
    default_message = "This event is not open for registration."


class DuplicateRegistration(GatherError):
    code = "DuplicateRegistration"
    status_code = 409
    default_message = "This email is already registered for this event."


class CapacityExceeded(GatherError):
    code = "CapacityExceeded"
    status_code = 400
    default_message = "This event has reached full capacity."


class AlreadyWaitlisted(GatherError):
    code = "AlreadyWaitlisted"
    status_code = 409
    default_message = "This email is already on the waitlist for this event."


class InvalidToken(GatherError):
    code = "InvalidToken"
    status_code = 403
    default_message = "Invalid cancellation link."


class InvalidPayload(GatherError):
    code = "InvalidPayload"
    status_code = 400
    default_message = "Invalid QR code."


class RsvpCancelled(GatherError):
    code = "RsvpCancelled"
    status_code = 409
    default_message = "This RSVP has been cancelled."


class SlugTaken(GatherError):
    code = "SlugTaken"
    status_code = 409
    default_message = "That event link is already in use."
