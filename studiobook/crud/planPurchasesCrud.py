"""
Plan purchases created from confirmed payments.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from studiobook.auth.actor import Actor
from studiobook.core.conversions import utc_today, utcnow
from studiobook.core.exceptions import (
    CompensationError, ForbiddenError, NotFoundError, ValidationError
)
from studiobook.core.logging_config import get_logger
from studiobook.crud.allocationCrud import BookingResult
from studiobook.crud.planCreditsCrud import PlanPurchaseData, to_plan_data
from studiobook.models import (
    Booking, BookingStatus, Course, PlanModality, PlanPayment, PlanPurchase,
    PlanStatus, PlanType
)
from studiobook.services.fixed_plan_scheduler import FixedPlanScheduler

logger = get_logger("crud.plan_purchases")

PAYMENT_SUCCESS = "SUCCESS"


@dataclass
class PaymentConfirmation:
    """Payment fact handed over by the payment integration"""
    amount: Decimal
    currency: str = "MXN"
    status: str = PAYMENT_SUCCESS
    provider: Optional[str] = None
    provider_ref: Optional[str] = None
    paid_at: Optional[datetime] = None


@dataclass
class PlanPurchaseResult:
    plan_purchase: PlanPurchaseData
    bookings: List[BookingResult] = field(default_factory=list)
    # True when the payment reference was already processed
    replayed: bool = False


async def _find_payment(db: AsyncSession, provider_ref: str) -> Optional[PlanPayment]:
    result = await db.execute(select(PlanPayment).where(PlanPayment.provider_ref == provider_ref))
    return result.scalar_one_or_none()


async def _replay(db: AsyncSession, payment: PlanPayment) -> PlanPurchaseResult:
    plan = await db.get(PlanPurchase, payment.plan_purchase_id)
    plan_type = await db.get(PlanType, plan.plan_type_id)
    result = await db.execute(
        select(Booking)
        .where(
            Booking.plan_purchase_id == plan.id,
            Booking.status.notin_(BookingStatus.RELEASED),
        )
        .order_by(Booking.reserved_at, Booking.id)
    )
    bookings = [
        BookingResult(booking=booking, duplicated=True, plan_purchase_id=plan.id)
        for booking in result.scalars().all()
    ]
    logger.info("Payment %s already processed; returning plan %s", payment.id, plan.id)
    return PlanPurchaseResult(plan_purchase=to_plan_data(plan, plan_type), bookings=bookings, replayed=True)


async def _discard_purchase(db: AsyncSession, plan_purchase_id: int) -> None:
    await db.rollback()
    await db.execute(delete(PlanPayment).where(PlanPayment.plan_purchase_id == plan_purchase_id))
    await db.execute(delete(PlanPurchase).where(PlanPurchase.id == plan_purchase_id))
    await db.commit()
    logger.info("Discarded plan purchase %s", plan_purchase_id)


async def purchase_plan(
    db: AsyncSession,
    *,
    client_id: int,
    plan_type_id: int,
    actor: Actor,
    modality: str = PlanModality.FLEXIBLE,
    course_id: Optional[int] = None,
    start_date: Optional[date] = None,
    payment: Optional[PaymentConfirmation] = None,
    notes: Optional[str] = None,
) -> PlanPurchaseResult:
    """
    Create a plan purchase for a client.

    FIXED plans are scheduled right away and the purchase is removed
    again if scheduling fails. A payment reference already on record
    returns the original purchase.
    """
    if modality not in (PlanModality.FLEXIBLE, PlanModality.FIXED):
        raise ValidationError(f"Unknown plan modality {modality!r}")
    if payment is None and not (actor.is_staff or actor.is_system):
        raise ForbiddenError(
            "Only staff may record a plan without a confirmed payment",
            details={"client_id": client_id},
        )
    if payment is not None and payment.status != PAYMENT_SUCCESS:
        raise ValidationError("Payment is not confirmed", details={"status": payment.status})

    if payment is not None and payment.provider_ref:
        existing = await _find_payment(db, payment.provider_ref)
        if existing is not None:
            return await _replay(db, existing)

    plan_type = await db.get(PlanType, plan_type_id)
    if plan_type is None:
        raise NotFoundError(f"Plan type {plan_type_id} not found", details={"plan_type_id": plan_type_id})

    if modality == PlanModality.FIXED:
        if course_id is None:
            raise ValidationError("Fixed plans require a course")
        if plan_type.class_count is None:
            raise ValidationError("Fixed plans require a class count")
        if await db.get(Course, course_id) is None:
            raise NotFoundError(f"Course {course_id} not found", details={"course_id": course_id})

    start = start_date or utc_today()
    expires_at = None
    if modality == PlanModality.FLEXIBLE and plan_type.validity_days:
        expires_at = start + timedelta(days=plan_type.validity_days)

    now = utcnow()
    plan = PlanPurchase(
        client_id=client_id,
        plan_type_id=plan_type.id,
        modality=modality,
        status=PlanStatus.ACTIVE,
        initial_classes=plan_type.class_count,
        remaining_classes=plan_type.class_count or 0,
        start_date=start,
        expires_at=expires_at,
        course_id=course_id,
        purchased_at=now,
        updated_at=now,
        notes=notes,
    )
    db.add(plan)
    try:
        await db.flush()
        if payment is not None:
            db.add(PlanPayment(
                plan_purchase_id=plan.id,
                amount=payment.amount,
                currency=payment.currency,
                status=payment.status,
                provider=payment.provider,
                provider_ref=payment.provider_ref,
                paid_at=payment.paid_at or now,
            ))
        await db.commit()
    except IntegrityError:
        await db.rollback()
        if payment is not None and payment.provider_ref:
            existing = await _find_payment(db, payment.provider_ref)
            if existing is not None:
                return await _replay(db, existing)
        raise

    plan_id = plan.id
    bookings: List[BookingResult] = []
    if modality == PlanModality.FIXED:
        try:
            bookings = await FixedPlanScheduler(db).generate_fixed_plan_bookings(
                plan_id,
                client_id,
                plan_type.class_count,
                course_id,
                start,
                actor=actor,
            )
        except CompensationError:
            # Surviving bookings still reference the purchase
            logger.error("Plan purchase %s kept after failed compensation", plan_id)
            raise
        except Exception:
            await _discard_purchase(db, plan_id)
            raise
        await db.refresh(plan)

    logger.info(
        "Plan purchase %s created client=%s modality=%s bookings=%d",
        plan.id, client_id, modality, len(bookings),
    )
    return PlanPurchaseResult(plan_purchase=to_plan_data(plan, plan_type), bookings=bookings)


async def purchase_fixed_plan(
    db: AsyncSession,
    *,
    client_id: int,
    plan_type_id: int,
    course_id: int,
    actor: Actor,
    start_date: Optional[date] = None,
    payment: Optional[PaymentConfirmation] = None,
) -> PlanPurchaseResult:
    return await purchase_plan(
        db,
        client_id=client_id,
        plan_type_id=plan_type_id,
        actor=actor,
        modality=PlanModality.FIXED,
        course_id=course_id,
        start_date=start_date,
        payment=payment,
    )
