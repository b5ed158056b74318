"""
GraphQL mutations for plan purchases.
"""
from typing import List, Optional
import strawberry
from strawberry.types import Info
from sqlalchemy.ext.asyncio import AsyncSession

from studiobook.crud.bookingsCrud import get_booking_by_id
from studiobook.crud.planPurchasesCrud import (
    PaymentConfirmation,
    PlanPurchaseResult,
    purchase_plan,
)
from studiobook.graphql.auth.permissions import IsAuthenticated, ensure_staff
from studiobook.graphql.bookings.types import Booking
from studiobook.graphql.errors import failure
from studiobook.graphql.plans.types import (
    PaymentInput,
    PlanPurchase,
    PlanPurchaseResponse,
    PurchaseFixedPlanInput,
    PurchasePlanInput,
)
from studiobook.models import PlanModality


def _payment(payment: Optional[PaymentInput]) -> Optional[PaymentConfirmation]:
    if payment is None:
        return None
    return PaymentConfirmation(
        amount=payment.amount,
        currency=payment.currency,
        status=payment.status,
        provider=payment.provider,
        provider_ref=payment.provider_ref,
        paid_at=payment.paid_at,
    )


async def _response(db: AsyncSession, result: PlanPurchaseResult) -> PlanPurchaseResponse:
    bookings: List[Booking] = []
    for item in result.bookings:
        data = await get_booking_by_id(db, item.booking.id)
        if data:
            bookings.append(Booking.from_data(data))
    return PlanPurchaseResponse(
        success=True,
        plan_purchase=PlanPurchase.from_data(result.plan_purchase),
        message="Payment already processed" if result.replayed else "Plan purchased successfully",
        bookings=bookings,
        replayed=result.replayed,
    )


@strawberry.type
class PlanMutation:
    """Plan purchase mutations"""

    @strawberry.mutation(permission_classes=[IsAuthenticated])
    async def purchase_plan(self, info: Info, input: PurchasePlanInput) -> PlanPurchaseResponse:
        """Staff record a paid plan for a client; fixed plans are scheduled immediately"""
        db: AsyncSession = info.context.db

        try:
            ensure_staff(info.context.actor)
            result = await purchase_plan(
                db,
                client_id=input.client_id,
                plan_type_id=input.plan_type_id,
                actor=info.context.actor,
                modality=input.modality.upper(),
                course_id=input.course_id,
                start_date=input.start_date,
                payment=_payment(input.payment),
                notes=input.notes,
            )
            return await _response(db, result)
        except Exception as e:
            await db.rollback()
            return PlanPurchaseResponse(success=False, plan_purchase=None, **failure(e))

    @strawberry.mutation(permission_classes=[IsAuthenticated])
    async def purchase_fixed_plan(self, info: Info, input: PurchaseFixedPlanInput) -> PlanPurchaseResponse:
        """Buy a fixed plan and book all of its sessions, or none"""
        db: AsyncSession = info.context.db

        try:
            ensure_staff(info.context.actor)
            result = await purchase_plan(
                db,
                client_id=input.client_id,
                plan_type_id=input.plan_type_id,
                actor=info.context.actor,
                modality=PlanModality.FIXED,
                course_id=input.course_id,
                start_date=input.start_date,
                payment=_payment(input.payment),
            )
            return await _response(db, result)
        except Exception as e:
            await db.rollback()
            return PlanPurchaseResponse(success=False, plan_purchase=None, **failure(e))
