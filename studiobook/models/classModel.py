"""
Course, session and booking models for the studio booking engine
"""
from datetime import datetime
from typing import Any, Dict, Optional, List, TYPE_CHECKING
from sqlalchemy import (
    ForeignKey, Integer, BigInteger, String, Text, JSON,
    CheckConstraint, UniqueConstraint, Index, text
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import TIMESTAMP

from studiobook.core.conversions import utcnow
from studiobook.db.postgresql import Base, BigIntPK

if TYPE_CHECKING:
    from studiobook.models.ticketModel import Ticket


class SessionStatus:
    SCHEDULED = "scheduled"
    CANCELED = "canceled"
    COMPLETED = "completed"


class BookingStatus:
    CONFIRMED = "CONFIRMED"
    CHECKED_IN = "CHECKED_IN"
    CHECKED_OUT = "CHECKED_OUT"
    CANCELLED = "CANCELLED"
    REBOOKED = "REBOOKED"

    # Rows in these states no longer hold a seat
    RELEASED = (CANCELLED, REBOOKED)


class BookingSource:
    CLIENT = "client"
    STAFF = "staff"
    WAITLIST = "waitlist"
    FIXED_PLAN = "fixed_plan"
    REBOOK = "rebook"


class WaitlistStatus:
    PENDING = "PENDING"
    PROMOTED = "PROMOTED"
    CANCELLED = "CANCELLED"


class BookingEventType:
    CREATED = "CREATED"
    CANCELLED = "CANCELLED"
    REBOOKED = "REBOOKED"
    CHECKED_IN = "CHECKED_IN"
    CHECKED_OUT = "CHECKED_OUT"


class Course(Base):
    """Catalog course; sessions of a course share booking rules"""

    __tablename__ = "courses"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(60))
    # Booking opens at the start of the day this many days before a session
    booking_window_days: Mapped[Optional[int]] = mapped_column(Integer)
    # Cancelling later than this before start forfeits the credit
    cancellation_window_hours: Mapped[Optional[int]] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)

    sessions: Mapped[List["ClassSession"]] = relationship(back_populates="course")

    __table_args__ = (
        CheckConstraint("booking_window_days IS NULL OR booking_window_days >= 0", name="ck_course_booking_window"),
        CheckConstraint("cancellation_window_hours IS NULL OR cancellation_window_hours >= 0", name="ck_course_cancel_window"),
    )


class ClassSession(Base):
    """Individual class instance with a fixed seat capacity"""

    __tablename__ = "sessions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    course_id: Mapped[Optional[int]] = mapped_column(BigInteger, ForeignKey("courses.id"))
    name: Mapped[Optional[str]] = mapped_column(String(120))
    start_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    end_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=SessionStatus.SCHEDULED)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)

    course: Mapped[Optional["Course"]] = relationship(back_populates="sessions")
    bookings: Mapped[List["Booking"]] = relationship(back_populates="session")

    __table_args__ = (
        CheckConstraint("capacity > 0", name="ck_session_capacity"),
        CheckConstraint("end_at > start_at", name="ck_session_time_order"),
        CheckConstraint("status IN ('scheduled','canceled','completed')", name="ck_session_status"),
        Index("idx_sessions_course_start", "course_id", "start_at"),
    )


class Booking(Base):
    """A client's seat in a session"""

    __tablename__ = "bookings"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    session_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False)
    client_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=BookingStatus.CONFIRMED)
    reserved_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)
    plan_purchase_id: Mapped[Optional[int]] = mapped_column(BigInteger, ForeignKey("plan_purchases.id"))
    rebooked_from_booking_id: Mapped[Optional[int]] = mapped_column(BigInteger, ForeignKey("bookings.id"))
    source: Mapped[str] = mapped_column(String(20), nullable=False, default=BookingSource.CLIENT)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))
    checked_in_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))
    checked_out_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)

    session: Mapped["ClassSession"] = relationship(back_populates="bookings")
    ticket: Mapped[Optional["Ticket"]] = relationship(back_populates="booking")
    events: Mapped[List["BookingEvent"]] = relationship(back_populates="booking")

    __table_args__ = (
        CheckConstraint(
            "status IN ('CONFIRMED','CHECKED_IN','CHECKED_OUT','CANCELLED','REBOOKED')",
            name="ck_booking_status",
        ),
        CheckConstraint(
            "source IN ('client','staff','waitlist','fixed_plan','rebook')",
            name="ck_booking_source",
        ),
        # One seat-holding booking per client and session
        Index(
            "uq_bookings_active_client", "session_id", "client_id", unique=True,
            postgresql_where=text("status NOT IN ('CANCELLED','REBOOKED')"),
            sqlite_where=text("status NOT IN ('CANCELLED','REBOOKED')"),
        ),
        Index("idx_bookings_session_status", "session_id", "status"),
        Index("idx_bookings_client", "client_id", "reserved_at"),
    )


class WaitlistEntry(Base):
    """Queued request for a seat in a full session"""

    __tablename__ = "waitlist_entries"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    session_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False)
    client_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=WaitlistStatus.PENDING)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)
    # Ordering key; reset when a cancelled entry rejoins
    queued_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)
    promoted_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))
    booking_id: Mapped[Optional[int]] = mapped_column(BigInteger, ForeignKey("bookings.id", ondelete="SET NULL"))
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("session_id", "client_id", name="uq_waitlist_session_client"),
        CheckConstraint("position > 0", name="ck_waitlist_position"),
        CheckConstraint("status IN ('PENDING','PROMOTED','CANCELLED')", name="ck_waitlist_status"),
        Index("idx_waitlist_session_status", "session_id", "status", "position"),
    )


class BookingEvent(Base):
    """Append-only audit trail of booking transitions"""

    __tablename__ = "booking_events"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    booking_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False)
    actor_role: Mapped[str] = mapped_column(String(20), nullable=False)
    actor_id: Mapped[Optional[int]] = mapped_column(BigInteger)
    event_type: Mapped[str] = mapped_column(String(20), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    # "metadata" is reserved on declarative classes
    event_metadata: Mapped[Dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)

    booking: Mapped["Booking"] = relationship(back_populates="events")

    __table_args__ = (
        CheckConstraint(
            "event_type IN ('CREATED','CANCELLED','REBOOKED','CHECKED_IN','CHECKED_OUT')",
            name="ck_booking_event_type",
        ),
        Index("idx_booking_events_booking", "booking_id", "created_at"),
    )
