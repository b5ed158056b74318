"""
Fixed-plan auto-scheduler.

Books a client into the next N sessions of a course when a fixed plan is
bought. Every session is booked in its own committed step; when a later
step fails, the steps already committed are undone in reverse order so
the purchase leaves nothing behind.
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Awaitable, Callable, List

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from studiobook.auth.actor import Actor
from studiobook.core.conversions import as_utc, utcnow
from studiobook.core.exceptions import (
    CapacityExceededError, CompensationError, DuplicateBookingError,
    InsufficientSessionsError, NotFoundError, PlanNotApplicableError
)
from studiobook.core.logging_config import get_logger
from studiobook.crud.allocationCrud import (
    BookingResult, ensure_bookable, ensure_seat_available, find_active_booking, insert_booking
)
from studiobook.crud.bookingEventsCrud import delete_booking_events, log_booking_event
from studiobook.crud.capacityCrud import occupancy_by_session
from studiobook.crud.planCreditsCrud import (
    consume_fixed_allotment, get_plan_purchase, restore_fixed_allotment
)
from studiobook.crud.ticketsCrud import delete_ticket, issue_ticket
from studiobook.db.locks import lock_session_row, session_locks
from studiobook.models import (
    Booking, BookingEventType, BookingSource, ClassSession,
    PlanModality, SessionStatus
)

logger = get_logger("services.fixed_plan_scheduler")


@dataclass
class CompensationStep:
    label: str
    undo: Callable[[AsyncSession], Awaitable[None]]


class ScheduleSaga:
    """Ordered record of committed side effects with a reverse-order compensator"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self._steps: List[CompensationStep] = []

    def record(self, label: str, undo: Callable[[AsyncSession], Awaitable[None]]) -> None:
        self._steps.append(CompensationStep(label, undo))

    @property
    def labels(self) -> List[str]:
        return [step.label for step in self._steps]

    async def compensate(self) -> None:
        await self.db.rollback()
        if not self._steps:
            return
        logger.warning("Compensating %d scheduled steps", len(self._steps))
        try:
            for step in reversed(self._steps):
                await step.undo(self.db)
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error("Compensation failed after steps %s: %s", self.labels, exc)
            raise CompensationError(
                "Could not undo partially scheduled bookings",
                details={"steps": self.labels},
            ) from exc
        self._steps.clear()


class FixedPlanScheduler:
    """Service that turns a fixed plan into concrete bookings"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def select_sessions(
        self,
        course_id: int,
        from_date: date,
        class_count: int,
    ) -> List[ClassSession]:
        """The first ``class_count`` scheduled sessions of the course from the start date on"""
        start = datetime.combine(from_date, time.min, tzinfo=timezone.utc)
        start = max(start, utcnow())
        result = await self.db.execute(
            select(ClassSession)
            .where(
                ClassSession.course_id == course_id,
                ClassSession.status == SessionStatus.SCHEDULED,
                ClassSession.start_at >= start,
            )
            .order_by(ClassSession.start_at, ClassSession.id)
            .limit(class_count)
        )
        return list(result.scalars().all())

    async def check_preconditions(self, sessions: List[ClassSession], client_id: int) -> None:
        """Reject the whole plan before any write if a session cannot take the client"""
        counts = await occupancy_by_session(self.db, [s.id for s in sessions])
        for session in sessions:
            if await find_active_booking(self.db, session.id, client_id) is not None:
                raise DuplicateBookingError(
                    "Client already holds a seat in a scheduled session",
                    details={"session_id": session.id},
                )
            if counts.get(session.id, 0) >= session.capacity:
                raise CapacityExceededError(
                    "A session of the plan is already full",
                    details={"session_id": session.id},
                )

    async def generate_fixed_plan_bookings(
        self,
        plan_purchase_id: int,
        client_id: int,
        class_count: int,
        course_id: int,
        from_date: date,
        *,
        actor: Actor,
    ) -> List[BookingResult]:
        """
        Book every session of a fixed plan or none of them.

        Raises after compensation; the caller removes the purchase.
        """
        plan = await get_plan_purchase(self.db, plan_purchase_id)
        if plan.modality != PlanModality.FIXED:
            raise PlanNotApplicableError("Plan is not a fixed plan", details={"plan_purchase_id": plan.id})

        sessions = await self.select_sessions(course_id, from_date, class_count)
        if len(sessions) < class_count:
            raise InsufficientSessionsError(
                f"Only {len(sessions)} upcoming sessions available for {class_count} classes",
                details={"course_id": course_id, "available": len(sessions), "required": class_count},
            )
        await self.check_preconditions(sessions, client_id)
        # Release the read transaction before the per-session steps
        await self.db.commit()

        logger.info(
            "Scheduling fixed plan %s for client %s into sessions %s",
            plan_purchase_id, client_id, [s.id for s in sessions],
        )

        saga = ScheduleSaga(self.db)
        results: List[BookingResult] = []
        try:
            for session in sessions:
                results.append(await self._book_session(saga, plan_purchase_id, session.id, client_id, actor))
        except IntegrityError as exc:
            logger.warning("Fixed plan %s hit a storage conflict: %s", plan_purchase_id, exc)
            await saga.compensate()
            raise CapacityExceededError(
                "A session of the plan filled up while scheduling",
                details={"plan_purchase_id": plan_purchase_id},
            ) from exc
        except Exception:
            logger.warning("Fixed plan %s failed after %d bookings; rolling back", plan_purchase_id, len(results))
            await saga.compensate()
            raise

        return results

    async def _book_session(
        self,
        saga: ScheduleSaga,
        plan_purchase_id: int,
        session_id: int,
        client_id: int,
        actor: Actor,
    ) -> BookingResult:
        db = self.db
        async with session_locks.hold(session_id):
            session = await lock_session_row(db, session_id)
            if session is None:
                raise NotFoundError(f"Session {session_id} not found", details={"session_id": session_id})

            now = utcnow()
            await ensure_bookable(db, session, now, actor=actor)
            if await find_active_booking(db, session_id, client_id) is not None:
                raise DuplicateBookingError(
                    "Client already holds a seat in a scheduled session",
                    details={"session_id": session_id},
                )
            await ensure_seat_available(db, session)

            plan = await get_plan_purchase(db, plan_purchase_id)
            booking = await insert_booking(
                db,
                session,
                client_id,
                source=BookingSource.FIXED_PLAN,
                plan_purchase_id=plan_purchase_id,
                now=now,
            )
            usage = await consume_fixed_allotment(db, plan, booking.id, session_id)
            ticket = await issue_ticket(db, booking.id, session.start_at)
            event = await log_booking_event(
                db,
                booking.id,
                BookingEventType.CREATED,
                actor,
                metadata={
                    "sessionId": session_id,
                    "source": BookingSource.FIXED_PLAN,
                    "planPurchaseId": plan_purchase_id,
                    "creditDebited": True,
                },
            )
            await db.commit()

        booking_id, usage_id, event_id = booking.id, usage.id, event.id
        saga.record(f"booking:{booking_id}", _delete_booking(booking_id))
        saga.record(f"usage:{usage_id}", _restore_usage(usage_id))
        saga.record(f"ticket:{booking_id}", _delete_ticket(booking_id))
        saga.record(f"event:{event_id}", _delete_event(event_id))

        return BookingResult(
            booking=booking,
            plan_purchase_id=plan_purchase_id,
            remaining_classes=plan.remaining_classes,
            ticket_token=ticket.token,
            ticket_expires_at=as_utc(ticket.expires_at),
            usage_id=usage_id,
            event_ids=[event_id],
        )


def _delete_event(event_id: int):
    async def undo(db: AsyncSession) -> None:
        await delete_booking_events(db, [event_id])
    return undo


def _delete_ticket(booking_id: int):
    async def undo(db: AsyncSession) -> None:
        await delete_ticket(db, booking_id)
    return undo


def _restore_usage(usage_id: int):
    async def undo(db: AsyncSession) -> None:
        await restore_fixed_allotment(db, usage_id)
    return undo


def _delete_booking(booking_id: int):
    async def undo(db: AsyncSession) -> None:
        await db.execute(delete(Booking).where(Booking.id == booking_id))
    return undo
