"""
Seat allocation shared by direct booking, waitlist promotion and rebooking.

Callers hold the session lock and own the transaction; nothing here
commits.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from studiobook.auth.actor import Actor
from studiobook.core.conversions import as_utc, utcnow
from studiobook.core.exceptions import (
    BookingWindowClosedError, CapacityExceededError, SessionNotBookableError
)
from studiobook.crud.bookingEventsCrud import log_booking_event
from studiobook.crud.capacityCrud import occupancy
from studiobook.crud.planCreditsCrud import debit, resolve_active_plan
from studiobook.crud.ticketsCrud import issue_ticket, get_ticket_for_booking
from studiobook.models import (
    Booking, BookingEventType, BookingSource, BookingStatus, ClassSession,
    Course, PlanPurchase, SessionStatus
)


@dataclass
class BookingResult:
    """Outcome of a booking request"""
    booking: Booking
    duplicated: bool = False
    plan_purchase_id: Optional[int] = None
    remaining_classes: Optional[int] = None
    ticket_token: Optional[str] = None
    ticket_expires_at: Optional[datetime] = None
    usage_id: Optional[int] = None
    event_ids: List[int] = field(default_factory=list)


async def find_active_booking(db: AsyncSession, session_id: int, client_id: int) -> Optional[Booking]:
    result = await db.execute(
        select(Booking).where(
            Booking.session_id == session_id,
            Booking.client_id == client_id,
            Booking.status.notin_(BookingStatus.RELEASED),
        )
    )
    return result.scalars().first()


async def duplicate_result(db: AsyncSession, booking: Booking) -> BookingResult:
    ticket = await get_ticket_for_booking(db, booking.id)
    return BookingResult(
        booking=booking,
        duplicated=True,
        plan_purchase_id=booking.plan_purchase_id,
        ticket_token=ticket.token if ticket else None,
        ticket_expires_at=as_utc(ticket.expires_at) if ticket else None,
    )


def booking_opens_at(session: ClassSession, course: Optional[Course]) -> Optional[datetime]:
    """Start of the day booking_window_days before the session, if the course limits it"""
    if course is None or course.booking_window_days is None:
        return None
    opens = as_utc(session.start_at) - timedelta(days=course.booking_window_days)
    return opens.replace(hour=0, minute=0, second=0, microsecond=0)


async def ensure_bookable(
    db: AsyncSession,
    session: ClassSession,
    now: datetime,
    *,
    actor: Optional[Actor] = None,
) -> Optional[Course]:
    if session.status != SessionStatus.SCHEDULED:
        raise SessionNotBookableError(
            f"Session is {session.status}",
            details={"session_id": session.id, "status": session.status},
        )
    if as_utc(session.start_at) <= now:
        raise SessionNotBookableError(
            "Cannot book a session that has already started",
            details={"session_id": session.id},
        )

    course = await db.get(Course, session.course_id) if session.course_id else None
    opens_at = booking_opens_at(session, course)
    # Staff may place clients ahead of the public window
    if opens_at is not None and now < opens_at and not (actor and actor.is_staff):
        raise BookingWindowClosedError(
            f"Booking opens {course.booking_window_days} days before the class",
            details={"session_id": session.id, "opens_at": opens_at.isoformat()},
        )
    return course


async def ensure_seat_available(db: AsyncSession, session: ClassSession) -> int:
    taken = await occupancy(db, session.id)
    if taken >= session.capacity:
        raise CapacityExceededError(
            "Session is full",
            details={"session_id": session.id, "capacity": session.capacity, "occupancy": taken},
        )
    return taken


async def insert_booking(
    db: AsyncSession,
    session: ClassSession,
    client_id: int,
    *,
    source: str,
    plan_purchase_id: Optional[int],
    now: datetime,
    rebooked_from_booking_id: Optional[int] = None,
) -> Booking:
    booking = Booking(
        session_id=session.id,
        client_id=client_id,
        status=BookingStatus.CONFIRMED,
        reserved_at=now,
        plan_purchase_id=plan_purchase_id,
        rebooked_from_booking_id=rebooked_from_booking_id,
        source=source,
        updated_at=now,
    )
    db.add(booking)
    await db.flush()
    return booking


async def allocate_seat(
    db: AsyncSession,
    session: ClassSession,
    client_id: int,
    *,
    actor: Actor,
    source: str = BookingSource.CLIENT,
    preferred_plan_id: Optional[int] = None,
    strict_plan: bool = True,
    carried_plan: Optional[PlanPurchase] = None,
    rebooked_from_booking_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> BookingResult:
    """
    Book one seat: capacity check, plan debit, ticket and CREATED event.

    ``carried_plan`` moves an already paid allotment onto the new booking
    without touching the ledger.
    """
    now = now or utcnow()
    await ensure_bookable(db, session, now, actor=actor)

    existing = await find_active_booking(db, session.id, client_id)
    if existing is not None:
        return await duplicate_result(db, existing)

    await ensure_seat_available(db, session)

    if carried_plan is not None:
        plan = carried_plan
    else:
        plan = await resolve_active_plan(
            db,
            client_id,
            session,
            preferred_plan_id=preferred_plan_id,
            actor=actor,
            strict=strict_plan,
            today=now.date(),
        )

    booking = await insert_booking(
        db,
        session,
        client_id,
        source=source,
        plan_purchase_id=plan.id if plan else None,
        now=now,
        rebooked_from_booking_id=rebooked_from_booking_id,
    )

    usage = None
    if plan is not None and carried_plan is None:
        usage = await debit(db, plan, booking.id, session.id)

    ticket = await issue_ticket(db, booking.id, session.start_at)

    event_metadata = {
        "sessionId": session.id,
        "source": source,
        "planPurchaseId": plan.id if plan else None,
        "creditDebited": usage is not None,
    }
    if rebooked_from_booking_id is not None:
        event_metadata["rebookedFrom"] = rebooked_from_booking_id
    if carried_plan is not None:
        event_metadata["carriedPlan"] = True
    event_metadata.update(metadata or {})
    event = await log_booking_event(db, booking.id, BookingEventType.CREATED, actor, metadata=event_metadata)

    return BookingResult(
        booking=booking,
        duplicated=False,
        plan_purchase_id=plan.id if plan else None,
        remaining_classes=(None if plan is None or plan.is_unlimited else plan.remaining_classes),
        ticket_token=ticket.token,
        ticket_expires_at=as_utc(ticket.expires_at),
        usage_id=usage.id if usage else None,
        event_ids=[event.id],
    )
