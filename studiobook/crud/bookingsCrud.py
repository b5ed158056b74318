"""
Booking lifecycle: create, cancel, rebook, check-in and check-out.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from studiobook.auth.actor import Actor
from studiobook.core.conversions import as_utc, utcnow
from studiobook.core.exceptions import (
    BookingEngineError, CapacityExceededError, DuplicateBookingError,
    InvalidTransitionError, NotFoundError, ValidationError
)
from studiobook.core.logging_config import get_logger
from studiobook.crud.allocationCrud import (
    BookingResult, allocate_seat, duplicate_result, find_active_booking
)
from studiobook.crud.bookingEventsCrud import log_booking_event
from studiobook.crud.planCreditsCrud import credit
from studiobook.crud.ticketsCrud import (
    get_ticket_for_booking, mark_ticket_used, verify_ticket
)
from studiobook.crud.waitlistCrud import PromotionResult, promote_from_waitlist
from studiobook.db.locks import lock_session_row, lock_session_rows, session_locks
from studiobook.models import (
    Booking, BookingEventType, BookingSource, BookingStatus, ClassSession,
    Course, PlanModality, PlanPurchase, Ticket
)

logger = get_logger("crud.bookings")


@dataclass
class BookingData:
    """Booking with its session and ticket details"""
    id: int
    session_id: int
    client_id: int
    status: str
    reserved_at: datetime
    source: str
    plan_purchase_id: Optional[int] = None
    rebooked_from_booking_id: Optional[int] = None
    cancelled_at: Optional[datetime] = None
    checked_in_at: Optional[datetime] = None
    checked_out_at: Optional[datetime] = None

    # Related data
    session_name: Optional[str] = None
    session_start: Optional[datetime] = None
    session_end: Optional[datetime] = None
    ticket_token: Optional[str] = None
    ticket_expires_at: Optional[datetime] = None


@dataclass
class CancellationResult:
    booking: Booking
    already_cancelled: bool = False
    refunded_credit: bool = False
    promotion: Optional[PromotionResult] = None


def _to_booking_data(
    booking: Booking,
    session: Optional[ClassSession] = None,
    ticket: Optional[Ticket] = None,
) -> BookingData:
    return BookingData(
        id=booking.id,
        session_id=booking.session_id,
        client_id=booking.client_id,
        status=booking.status,
        reserved_at=as_utc(booking.reserved_at),
        source=booking.source,
        plan_purchase_id=booking.plan_purchase_id,
        rebooked_from_booking_id=booking.rebooked_from_booking_id,
        cancelled_at=as_utc(booking.cancelled_at),
        checked_in_at=as_utc(booking.checked_in_at),
        checked_out_at=as_utc(booking.checked_out_at),
        session_name=session.name if session else None,
        session_start=as_utc(session.start_at) if session else None,
        session_end=as_utc(session.end_at) if session else None,
        ticket_token=ticket.token if ticket else None,
        ticket_expires_at=as_utc(ticket.expires_at) if ticket else None,
    )


def _booking_query():
    return (
        select(Booking, ClassSession, Ticket)
        .join(ClassSession, ClassSession.id == Booking.session_id)
        .outerjoin(Ticket, Ticket.booking_id == Booking.id)
    )


async def _load_booking(db: AsyncSession, booking_id: int, *, refresh: bool = False) -> Booking:
    booking = await db.get(Booking, booking_id, populate_existing=refresh)
    if booking is None:
        raise NotFoundError(f"Booking {booking_id} not found", details={"booking_id": booking_id})
    return booking


async def get_booking_by_id(db: AsyncSession, booking_id: int) -> Optional[BookingData]:
    result = await db.execute(_booking_query().where(Booking.id == booking_id))
    row = result.first()
    if row is None:
        return None
    booking, session, ticket = row
    return _to_booking_data(booking, session, ticket)


async def get_client_bookings(
    db: AsyncSession,
    client_id: int,
    include_past: bool = False,
    include_cancelled: bool = False,
    limit: int = 100,
) -> List[BookingData]:
    stmt = _booking_query().where(Booking.client_id == client_id)
    if not include_past:
        stmt = stmt.where(ClassSession.start_at >= utcnow())
    if not include_cancelled:
        stmt = stmt.where(Booking.status.notin_(BookingStatus.RELEASED))
    stmt = stmt.order_by(ClassSession.start_at, Booking.id).limit(limit)
    result = await db.execute(stmt)
    return [_to_booking_data(b, s, t) for b, s, t in result.all()]


async def get_session_bookings(
    db: AsyncSession,
    session_id: int,
    include_cancelled: bool = False,
) -> List[BookingData]:
    stmt = _booking_query().where(Booking.session_id == session_id)
    if not include_cancelled:
        stmt = stmt.where(Booking.status.notin_(BookingStatus.RELEASED))
    result = await db.execute(stmt.order_by(Booking.reserved_at, Booking.id))
    return [_to_booking_data(b, s, t) for b, s, t in result.all()]


async def create_booking(
    db: AsyncSession,
    *,
    session_id: int,
    client_id: int,
    actor: Actor,
    preferred_plan_id: Optional[int] = None,
) -> BookingResult:
    """
    Reserve a seat for a client.

    Returns the existing booking flagged ``duplicated`` when the client
    already holds a seat. Capacity check, plan debit, ticket and event
    commit together while the session lock is held.
    """
    source = BookingSource.STAFF if actor.is_staff else BookingSource.CLIENT

    async with session_locks.hold(session_id):
        session = await lock_session_row(db, session_id)
        if session is None:
            raise NotFoundError(f"Session {session_id} not found", details={"session_id": session_id})
        try:
            result = await allocate_seat(
                db,
                session,
                client_id,
                actor=actor,
                source=source,
                preferred_plan_id=preferred_plan_id,
            )
            await db.commit()
        except IntegrityError:
            # Another writer got the seat-holding row in first
            await db.rollback()
            existing = await find_active_booking(db, session_id, client_id)
            if existing is not None:
                return await duplicate_result(db, existing)
            raise CapacityExceededError("Session is full", details={"session_id": session_id})
        except BookingEngineError as e:
            await db.rollback()
            logger.info("Booking rejected session=%s client=%s: %s", session_id, client_id, e.code)
            raise

    if result.duplicated:
        logger.info("Duplicate booking request session=%s client=%s -> %s", session_id, client_id, result.booking.id)
    else:
        logger.info(
            "Booking %s created session=%s client=%s plan=%s",
            result.booking.id, session_id, client_id, result.plan_purchase_id,
        )
    return result


def refund_allowed(
    session: ClassSession,
    course: Optional[Course],
    now: datetime,
    force_refund: bool = False,
) -> bool:
    """Late cancellations forfeit the credit when the course sets a window"""
    if force_refund:
        return True
    if course is None or course.cancellation_window_hours is None:
        return True
    hours_before = (as_utc(session.start_at) - now).total_seconds() / 3600
    return hours_before >= course.cancellation_window_hours


async def cancel_booking(
    db: AsyncSession,
    booking_id: int,
    *,
    actor: Actor,
    notes: Optional[str] = None,
    force_refund: bool = False,
) -> CancellationResult:
    """Cancel a confirmed booking, refund its credit and promote the waitlist"""
    booking = await _load_booking(db, booking_id)
    session_id = booking.session_id

    async with session_locks.hold(session_id):
        session = await lock_session_row(db, session_id)
        booking = await _load_booking(db, booking_id, refresh=True)

        if booking.status == BookingStatus.CANCELLED:
            await db.commit()
            return CancellationResult(booking=booking, already_cancelled=True)
        if booking.status != BookingStatus.CONFIRMED:
            await db.rollback()
            raise InvalidTransitionError(
                f"Cannot cancel a booking in status {booking.status}",
                details={"booking_id": booking_id, "status": booking.status},
            )

        try:
            now = utcnow()
            booking.status = BookingStatus.CANCELLED
            booking.cancelled_at = now
            booking.updated_at = now
            await db.flush()

            refunded = False
            window_hours = None
            if booking.plan_purchase_id is not None:
                plan = await db.get(PlanPurchase, booking.plan_purchase_id)
                course = await db.get(Course, session.course_id) if session.course_id else None
                window_hours = course.cancellation_window_hours if course else None
                if plan is not None and plan.modality == PlanModality.FLEXIBLE and refund_allowed(
                    session, course, now, force_refund
                ):
                    usage = await credit(db, plan, booking.id, session_id, notes="Cancellation refund")
                    refunded = usage is not None

            await log_booking_event(
                db,
                booking.id,
                BookingEventType.CANCELLED,
                actor,
                notes=notes,
                metadata={
                    "planPurchaseId": booking.plan_purchase_id,
                    "refundedCredit": refunded,
                    "forceRefund": force_refund,
                    "cancellationWindowHours": window_hours,
                },
            )
            await db.commit()
        except BookingEngineError:
            await db.rollback()
            raise

    logger.info("Booking %s cancelled refunded=%s", booking_id, refunded)
    promotion = await promote_from_waitlist(db, session_id)
    # Skipped promotion candidates roll back, which expires loaded rows
    await db.refresh(booking)
    return CancellationResult(booking=booking, refunded_credit=refunded, promotion=promotion)


async def rebook_booking(
    db: AsyncSession,
    booking_id: int,
    new_session_id: int,
    *,
    actor: Actor,
    preferred_plan_id: Optional[int] = None,
    notes: Optional[str] = None,
) -> BookingResult:
    """
    Move a confirmed booking to another session in one transaction.

    The old booking becomes REBOOKED and its credit returns; the new one
    is booked preferring the same plan. Any failure leaves the old booking
    untouched.
    """
    original = await _load_booking(db, booking_id)
    old_session_id = original.session_id
    if new_session_id == old_session_id:
        raise ValidationError("Booking is already in that session", details={"session_id": new_session_id})

    async with session_locks.hold(old_session_id, new_session_id):
        old_session, new_session = await lock_session_rows(db, old_session_id, new_session_id)
        if new_session is None:
            await db.rollback()
            raise NotFoundError(f"Session {new_session_id} not found", details={"session_id": new_session_id})

        original = await _load_booking(db, booking_id, refresh=True)
        if original.status != BookingStatus.CONFIRMED:
            await db.rollback()
            raise InvalidTransitionError(
                f"Cannot rebook a booking in status {original.status}",
                details={"booking_id": booking_id, "status": original.status},
            )

        try:
            now = utcnow()
            original.status = BookingStatus.REBOOKED
            original.updated_at = now
            await db.flush()

            plan = None
            if original.plan_purchase_id is not None:
                plan = await db.get(PlanPurchase, original.plan_purchase_id)
            carried_plan = plan if plan is not None and plan.modality == PlanModality.FIXED else None
            if plan is not None and carried_plan is None:
                await credit(db, plan, original.id, old_session_id, notes="Rebook release")

            result = await allocate_seat(
                db,
                new_session,
                original.client_id,
                actor=actor,
                source=BookingSource.REBOOK,
                preferred_plan_id=preferred_plan_id or original.plan_purchase_id,
                strict_plan=preferred_plan_id is not None,
                carried_plan=carried_plan,
                rebooked_from_booking_id=original.id,
                now=now,
            )
            if result.duplicated:
                raise DuplicateBookingError(
                    "Client already holds a seat in the target session",
                    details={"session_id": new_session_id, "booking_id": result.booking.id},
                )

            await log_booking_event(
                db,
                original.id,
                BookingEventType.REBOOKED,
                actor,
                notes=notes,
                metadata={
                    "rebookedTo": result.booking.id,
                    "fromSessionId": old_session_id,
                    "toSessionId": new_session_id,
                    "planPurchaseId": result.plan_purchase_id,
                },
            )
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise CapacityExceededError("Target session is full", details={"session_id": new_session_id})
        except BookingEngineError as e:
            await db.rollback()
            logger.info("Rebook of booking %s to session %s rejected: %s", booking_id, new_session_id, e.code)
            raise

    logger.info("Booking %s rebooked to %s in session %s", booking_id, result.booking.id, new_session_id)
    await promote_from_waitlist(db, old_session_id)
    await db.refresh(result.booking)
    return result


async def check_in_booking(
    db: AsyncSession,
    *,
    actor: Actor,
    booking_id: Optional[int] = None,
    token: Optional[str] = None,
    source: str = "manual",
) -> Booking:
    """Check a client in by booking id or by scanning the ticket token"""
    if booking_id is None and not token:
        raise ValidationError("Provide booking_id or token")

    try:
        if token:
            token_booking_id = await verify_ticket(db, token)
            if booking_id is not None and booking_id != token_booking_id:
                raise ValidationError("Ticket does not belong to this booking")
            booking_id = token_booking_id

        booking = await _load_booking(db, booking_id, refresh=True)
        now = utcnow()
        ticket = await get_ticket_for_booking(db, booking_id)
        if token and ticket is not None:
            # A scanned ticket admits once
            await mark_ticket_used(db, ticket, now)

        if booking.status != BookingStatus.CONFIRMED:
            raise InvalidTransitionError(
                f"Cannot check in a booking in status {booking.status}",
                details={"booking_id": booking_id, "status": booking.status},
            )
        if not token and ticket is not None and ticket.used_at is None:
            ticket.used_at = now

        booking.status = BookingStatus.CHECKED_IN
        booking.checked_in_at = now
        booking.updated_at = now
        await log_booking_event(
            db,
            booking.id,
            BookingEventType.CHECKED_IN,
            actor,
            metadata={"source": "qr" if token else source},
        )
        await db.commit()
    except BookingEngineError:
        await db.rollback()
        raise

    logger.info("Booking %s checked in", booking_id)
    return booking


async def check_out_booking(db: AsyncSession, booking_id: int, *, actor: Actor) -> Booking:
    try:
        booking = await _load_booking(db, booking_id, refresh=True)
        if booking.status != BookingStatus.CHECKED_IN:
            raise InvalidTransitionError(
                f"Cannot check out a booking in status {booking.status}",
                details={"booking_id": booking_id, "status": booking.status},
            )
        now = utcnow()
        booking.status = BookingStatus.CHECKED_OUT
        booking.checked_out_at = now
        booking.updated_at = now
        await log_booking_event(db, booking.id, BookingEventType.CHECKED_OUT, actor)
        await db.commit()
    except BookingEngineError:
        await db.rollback()
        raise

    logger.info("Booking %s checked out", booking_id)
    return booking
