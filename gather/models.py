"""SQLAlchemy models for Gather."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import declarative_base, relationship

from .utils import utcnow

Base = declarative_base()

EVENT_STATUSES = ("draft", "published", "cancelled")


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return utcnow()


class Event(Base):
    __tablename__ = "events"

    id = Column(String(36), primary_key=True, default=_uuid)
    slug = Column(String(128), nullable=False, unique=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    date = Column(String(10), nullable=False)
    start_time = Column(String(5), nullable=False)
    end_time = Column(String(5), nullable=False)
    location = Column(String(255), nullable=False)
    capacity = Column(Integer, nullable=False, default=50)
    price = Column(Float, nullable=False, default=0.0)
    ticket_type = Column(String(32), nullable=False, default="free")
    cover_image = Column(Text, nullable=True)
    host_name = Column(String(120), nullable=True)
    host_email = Column(String(255), nullable=True)
    status = Column(String(16), nullable=False, default="published")
    owner_id = Column(String(36), nullable=True, index=True)
    created_at = Column(DateTime, default=_now, nullable=False)

    attendees = relationship(
        "Attendee",
        back_populates="event",
        cascade="all, delete-orphan",
    )
    waitlist_entries = relationship(
        "WaitlistEntry",
        back_populates="event",
        cascade="all, delete-orphan",
        order_by="WaitlistEntry.created_at",
    )

    @property
    def active_attendees(self) -> list["Attendee"]:
        return [a for a in self.attendees if not a.cancelled]

    @property
    def rsvp_count(self) -> int:
        """Return the number of non-cancelled registrations."""
        return len(self.active_attendees)

    @property
    def is_open(self) -> bool:
        return self.status == "published"


class Attendee(Base):
    __tablename__ = "attendees"
    __table_args__ = (
        Index(
            "uq_attendees_event_email_active",
            "event_id",
            "email",
            unique=True,
            sqlite_where=text("cancelled = 0"),
            postgresql_where=text("cancelled = false"),
        ),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(
        String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    name = Column(String(120), nullable=False)
    email = Column(String(255), nullable=False)
    qr_payload = Column(Text, nullable=True)
    qr_code = Column(Text, nullable=True)
    checked_in = Column(Boolean, default=False, nullable=False)
    checked_in_at = Column(DateTime, nullable=True)
    cancelled = Column(Boolean, default=False, nullable=False)
    cancel_token = Column(String(128), nullable=False, unique=True)
    created_at = Column(DateTime, default=_now, nullable=False)

    event = relationship("Event", back_populates="attendees")

    @property
    def status(self) -> str:
        if self.cancelled:
            return "cancelled"
        if self.checked_in:
            return "checked_in"
        return "registered"


class WaitlistEntry(Base):
    __tablename__ = "waitlist_entries"
    __table_args__ = (
        UniqueConstraint("event_id", "email", name="uq_waitlist_event_email"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(
        String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    name = Column(String(120), nullable=False)
    email = Column(String(255), nullable=False)
    notified = Column(Boolean, default=False, nullable=False)
    notified_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)

    event = relationship("Event", back_populates="waitlist_entries")
