"""
GraphQL mutations for bookings.
"""
from typing import Optional
import strawberry
from strawberry.types import Info
from sqlalchemy.ext.asyncio import AsyncSession

from studiobook.core.exceptions import NotFoundError
from studiobook.crud.bookingsCrud import (
    cancel_booking,
    check_in_booking,
    check_out_booking,
    create_booking,
    get_booking_by_id,
    rebook_booking,
)
from studiobook.graphql.auth.permissions import IsAuthenticated, IsStaff, ensure_can_act_for
from studiobook.graphql.bookings.types import (
    Booking,
    BookingResponse,
    CancelBookingResponse,
    CheckInInput,
    CheckInResponse,
    RebookInput,
    ReserveInput,
)
from studiobook.graphql.errors import failure


async def _booking(db: AsyncSession, booking_id: int) -> Optional[Booking]:
    data = await get_booking_by_id(db, booking_id)
    return Booking.from_data(data) if data else None


async def _owned_booking(info, booking_id: int):
    """Load a booking and make sure the actor may touch it"""
    data = await get_booking_by_id(info.context.db, booking_id)
    if data is None:
        raise NotFoundError(f"Booking {booking_id} not found", details={"booking_id": booking_id})
    ensure_can_act_for(info.context.actor, data.client_id)
    return data


@strawberry.type
class BookingMutation:
    """Booking mutations"""

    @strawberry.mutation(permission_classes=[IsAuthenticated])
    async def reserve(self, info: Info, input: ReserveInput) -> BookingResponse:
        """Reserve a seat in a session"""
        db: AsyncSession = info.context.db
        actor = info.context.actor

        try:
            ensure_can_act_for(actor, input.client_id)
            result = await create_booking(
                db,
                session_id=input.session_id,
                client_id=input.client_id,
                actor=actor,
                preferred_plan_id=input.preferred_plan_id if actor.is_staff else None,
            )
            return BookingResponse(
                success=True,
                booking=await _booking(db, result.booking.id),
                message="Booking already exists" if result.duplicated else "Booking created successfully",
                duplicated=result.duplicated,
                plan_purchase_id=result.plan_purchase_id,
                remaining_classes=result.remaining_classes,
                ticket_token=result.ticket_token,
            )
        except Exception as e:
            await db.rollback()
            return BookingResponse(success=False, booking=None, **failure(e))

    @strawberry.mutation(permission_classes=[IsAuthenticated])
    async def cancel_booking(
        self,
        info: Info,
        booking_id: int,
        notes: Optional[str] = None,
        force_refund: bool = False,
    ) -> CancelBookingResponse:
        """Cancel a booking; staff may force the credit refund"""
        db: AsyncSession = info.context.db
        actor = info.context.actor

        try:
            await _owned_booking(info, booking_id)
            result = await cancel_booking(
                db,
                booking_id,
                actor=actor,
                notes=notes,
                force_refund=force_refund and actor.is_staff,
            )
            promotion = result.promotion
            return CancelBookingResponse(
                success=True,
                booking=await _booking(db, booking_id),
                message="Booking was already cancelled" if result.already_cancelled else "Booking cancelled successfully",
                refunded_credit=result.refunded_credit,
                already_cancelled=result.already_cancelled,
                promoted_client_id=promotion.client_id if promotion else None,
                promoted_booking_id=promotion.booking_id if promotion else None,
            )
        except Exception as e:
            await db.rollback()
            return CancelBookingResponse(success=False, booking=None, **failure(e))

    @strawberry.mutation(permission_classes=[IsAuthenticated])
    async def rebook_booking(self, info: Info, input: RebookInput) -> BookingResponse:
        """Move a booking to another session"""
        db: AsyncSession = info.context.db
        actor = info.context.actor

        try:
            await _owned_booking(info, input.booking_id)
            result = await rebook_booking(
                db,
                input.booking_id,
                input.new_session_id,
                actor=actor,
                preferred_plan_id=input.preferred_plan_id if actor.is_staff else None,
                notes=input.notes,
            )
            return BookingResponse(
                success=True,
                booking=await _booking(db, result.booking.id),
                message="Booking rebooked successfully",
                plan_purchase_id=result.plan_purchase_id,
                remaining_classes=result.remaining_classes,
                ticket_token=result.ticket_token,
            )
        except Exception as e:
            await db.rollback()
            return BookingResponse(success=False, booking=None, **failure(e))

    @strawberry.mutation(permission_classes=[IsStaff])
    async def check_in(self, info: Info, input: CheckInInput) -> CheckInResponse:
        """Check a client in at the front desk"""
        db: AsyncSession = info.context.db

        try:
            booking = await check_in_booking(
                db,
                actor=info.context.actor,
                booking_id=input.booking_id,
                token=input.token,
            )
            return CheckInResponse(
                success=True,
                booking=await _booking(db, booking.id),
                message="Client checked in successfully",
            )
        except Exception as e:
            await db.rollback()
            return CheckInResponse(success=False, booking=None, **failure(e))

    @strawberry.mutation(permission_classes=[IsStaff])
    async def check_out(self, info: Info, booking_id: int) -> CheckInResponse:
        """Check a client out"""
        db: AsyncSession = info.context.db

        try:
            booking = await check_out_booking(db, booking_id, actor=info.context.actor)
            return CheckInResponse(
                success=True,
                booking=await _booking(db, booking.id),
                message="Client checked out successfully",
            )
        except Exception as e:
            await db.rollback()
            return CheckInResponse(success=False, booking=None, **failure(e))
