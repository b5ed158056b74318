"""
Plan credit ledger: plan resolution, debit and refund of class credits.

Every balance change is a single conditional UPDATE so concurrent
bookings against the same plan can never lose an update, and every
change writes a PlanUsage audit row.
"""
from dataclasses import dataclass
from datetime import date, datetime
from typing import List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from studiobook.auth.actor import Actor
from studiobook.core.config import settings
from studiobook.core.conversions import as_utc, utc_today, utcnow
from studiobook.core.exceptions import (
    NotFoundError, NoActivePlanError, PlanExhaustedError,
    PlanExpiredError, PlanNotApplicableError
)
from studiobook.core.logging_config import get_logger
from studiobook.models import (
    ClassSession, Course, PlanPurchase, PlanType, PlanUsage, PlanModality, PlanStatus
)

logger = get_logger("crud.plan_credits")


@dataclass
class PlanPurchaseData:
    """Plan purchase with its catalog details"""
    id: int
    client_id: int
    plan_type_id: int
    plan_name: str
    modality: str
    status: str
    initial_classes: Optional[int]
    remaining_classes: int
    start_date: date
    expires_at: Optional[date]
    course_id: Optional[int]
    purchased_at: datetime
    category: Optional[str] = None
    app_only: bool = False

    @property
    def is_unlimited(self) -> bool:
        return self.initial_classes is None


def to_plan_data(plan: PlanPurchase, plan_type: PlanType) -> PlanPurchaseData:
    return PlanPurchaseData(
        id=plan.id,
        client_id=plan.client_id,
        plan_type_id=plan.plan_type_id,
        plan_name=plan_type.name,
        modality=plan.modality,
        status=plan.status,
        initial_classes=plan.initial_classes,
        remaining_classes=plan.remaining_classes,
        start_date=plan.start_date,
        expires_at=plan.expires_at,
        course_id=plan.course_id,
        purchased_at=as_utc(plan.purchased_at),
        category=plan_type.category,
        app_only=plan_type.app_only,
    )


def is_plan_expired(plan: PlanPurchase, today: date) -> bool:
    if plan.status == PlanStatus.EXPIRED:
        return True
    return plan.expires_at is not None and plan.expires_at < today


def _rejection(
    plan: PlanPurchase,
    plan_type: PlanType,
    course: Optional[Course],
    actor: Optional[Actor],
    today: date,
) -> Optional[Exception]:
    """Why a plan cannot pay for a session, or None when it can"""
    if plan.status == PlanStatus.CANCELLED:
        return PlanNotApplicableError("Plan was cancelled", details={"plan_purchase_id": plan.id})
    if is_plan_expired(plan, today):
        return PlanExpiredError("Plan has expired", details={"plan_purchase_id": plan.id})
    if plan.start_date > today:
        return PlanNotApplicableError("Plan has not started yet", details={"plan_purchase_id": plan.id})
    if plan.modality == PlanModality.FIXED:
        return PlanExhaustedError(
            "Fixed plans are scheduled at purchase and cannot pay for other bookings",
            details={"plan_purchase_id": plan.id},
        )
    if plan_type.category and course is not None and course.category and plan_type.category != course.category:
        return PlanNotApplicableError(
            "Plan does not cover this class category",
            details={"plan_purchase_id": plan.id, "category": course.category},
        )
    if plan_type.app_only and actor is not None and actor.is_staff:
        return PlanNotApplicableError(
            "App-only plans must be booked by the client",
            details={"plan_purchase_id": plan.id},
        )
    if not plan.is_unlimited and plan.remaining_classes <= 0:
        return PlanExhaustedError("Plan has no remaining classes", details={"plan_purchase_id": plan.id})
    return None


async def get_plan_purchase(db: AsyncSession, plan_purchase_id: int) -> PlanPurchase:
    plan = await db.get(PlanPurchase, plan_purchase_id)
    if plan is None:
        raise NotFoundError(
            f"Plan purchase {plan_purchase_id} not found",
            details={"plan_purchase_id": plan_purchase_id},
        )
    return plan


async def _session_course(db: AsyncSession, session: ClassSession) -> Optional[Course]:
    if session.course_id is None:
        return None
    return await db.get(Course, session.course_id)


async def _client_plans(
    db: AsyncSession,
    client_id: int,
    *,
    modality: Optional[str] = None,
) -> List[Tuple[PlanPurchase, PlanType]]:
    stmt = (
        select(PlanPurchase, PlanType)
        .join(PlanType, PlanType.id == PlanPurchase.plan_type_id)
        .where(PlanPurchase.client_id == client_id)
        # Soonest expiry first, open-ended plans last, then oldest purchase
        .order_by(
            PlanPurchase.expires_at.is_(None),
            PlanPurchase.expires_at,
            PlanPurchase.purchased_at,
            PlanPurchase.id,
        )
    )
    if modality:
        stmt = stmt.where(PlanPurchase.modality == modality)
    result = await db.execute(stmt)
    return [(plan, plan_type) for plan, plan_type in result.all()]


async def resolve_active_plan(
    db: AsyncSession,
    client_id: int,
    session: ClassSession,
    *,
    preferred_plan_id: Optional[int] = None,
    actor: Optional[Actor] = None,
    strict: bool = True,
    today: Optional[date] = None,
) -> Optional[PlanPurchase]:
    """
    Pick the plan that pays for a booking.

    An explicit preferred plan must be usable when ``strict`` is set;
    otherwise it is only tried first. Without a usable plan the most
    specific reason is raised, unless plan-less booking is enabled.
    """
    today = today or utc_today()
    course = await _session_course(db, session)

    if preferred_plan_id is not None:
        result = await db.execute(
            select(PlanPurchase, PlanType)
            .join(PlanType, PlanType.id == PlanPurchase.plan_type_id)
            .where(PlanPurchase.id == preferred_plan_id, PlanPurchase.client_id == client_id)
        )
        row = result.first()
        if row is None:
            if strict:
                raise NotFoundError(
                    "Selected plan not found for this client",
                    details={"plan_purchase_id": preferred_plan_id},
                )
        else:
            plan, plan_type = row
            reason = _rejection(plan, plan_type, course, actor, today)
            if reason is None:
                return plan
            if strict:
                raise reason

    saw_expired = False
    saw_exhausted = False
    for plan, plan_type in await _client_plans(db, client_id, modality=PlanModality.FLEXIBLE):
        reason = _rejection(plan, plan_type, course, actor, today)
        if reason is None:
            return plan
        saw_expired = saw_expired or isinstance(reason, PlanExpiredError)
        saw_exhausted = saw_exhausted or isinstance(reason, PlanExhaustedError)

    for plan, _ in await _client_plans(db, client_id, modality=PlanModality.FIXED):
        if plan.status == PlanStatus.ACTIVE and not is_plan_expired(plan, today):
            raise PlanExhaustedError(
                "Client has a fixed plan; its sessions are assigned automatically",
                details={"plan_purchase_id": plan.id},
            )

    if saw_exhausted:
        raise PlanExhaustedError("No plan with remaining classes", details={"client_id": client_id})
    if saw_expired:
        raise PlanExpiredError("All plans have expired", details={"client_id": client_id})
    if settings.ALLOW_BOOKING_WITHOUT_PLAN:
        return None
    raise NoActivePlanError("Client has no active plan", details={"client_id": client_id})


async def _record_usage(
    db: AsyncSession,
    plan: PlanPurchase,
    booking_id: Optional[int],
    session_id: int,
    delta: int,
    notes: Optional[str],
) -> PlanUsage:
    usage = PlanUsage(
        plan_purchase_id=plan.id,
        booking_id=booking_id,
        session_id=session_id,
        credit_delta=delta,
        notes=notes,
        created_at=utcnow(),
    )
    db.add(usage)
    await db.flush()
    return usage


async def _decrement(db: AsyncSession, plan: PlanPurchase) -> bool:
    result = await db.execute(
        update(PlanPurchase)
        .where(PlanPurchase.id == plan.id, PlanPurchase.remaining_classes > 0)
        .values(remaining_classes=PlanPurchase.remaining_classes - 1, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.refresh(plan)
    return result.rowcount == 1


async def debit(
    db: AsyncSession,
    plan: PlanPurchase,
    booking_id: int,
    session_id: int,
) -> Optional[PlanUsage]:
    """Consume one credit of a FLEXIBLE plan; unlimited plans are not debited"""
    if plan.modality == PlanModality.FIXED:
        raise PlanExhaustedError(
            "Fixed plans are only debited by the scheduler",
            details={"plan_purchase_id": plan.id},
        )
    if plan.is_unlimited:
        return None
    if not await _decrement(db, plan):
        raise PlanExhaustedError("Plan has no remaining classes", details={"plan_purchase_id": plan.id})
    return await _record_usage(db, plan, booking_id, session_id, -1, "Booking debit")


async def consume_fixed_allotment(
    db: AsyncSession,
    plan: PlanPurchase,
    booking_id: int,
    session_id: int,
) -> PlanUsage:
    """Scheduler-only debit of a FIXED plan"""
    if plan.modality != PlanModality.FIXED:
        raise PlanNotApplicableError("Plan is not a fixed plan", details={"plan_purchase_id": plan.id})
    if not await _decrement(db, plan):
        raise PlanExhaustedError("Fixed plan allotment exhausted", details={"plan_purchase_id": plan.id})
    return await _record_usage(db, plan, booking_id, session_id, -1, "Fixed plan allotment")


async def restore_fixed_allotment(db: AsyncSession, usage_id: int) -> None:
    """Undo one consume_fixed_allotment; compensation only"""
    usage = await db.get(PlanUsage, usage_id)
    if usage is None:
        return
    await db.execute(
        update(PlanPurchase)
        .where(PlanPurchase.id == usage.plan_purchase_id)
        .values(remaining_classes=PlanPurchase.remaining_classes + 1, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.delete(usage)
    await db.flush()


async def credit(
    db: AsyncSession,
    plan: PlanPurchase,
    booking_id: Optional[int],
    session_id: int,
    notes: Optional[str] = None,
) -> Optional[PlanUsage]:
    """
    Give back one credit of a FLEXIBLE plan.

    The balance never rises above initial_classes; at the cap only the
    audit row is written.
    """
    if plan.modality == PlanModality.FIXED or plan.is_unlimited:
        return None

    result = await db.execute(
        update(PlanPurchase)
        .where(
            PlanPurchase.id == plan.id,
            PlanPurchase.remaining_classes < PlanPurchase.initial_classes,
        )
        .values(remaining_classes=PlanPurchase.remaining_classes + 1, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.refresh(plan)
    if result.rowcount == 0:
        logger.warning("Refund on plan %s clamped at %s classes", plan.id, plan.initial_classes)
        notes = f"{notes or 'Refund'} (clamped)"
    return await _record_usage(db, plan, booking_id, session_id, 1, notes or "Refund")


async def derive_remaining_classes(db: AsyncSession, plan_purchase_id: int) -> Optional[int]:
    """Replay the usage history of a plan; None for unlimited plans"""
    plan = await get_plan_purchase(db, plan_purchase_id)
    if plan.is_unlimited:
        return None
    result = await db.execute(
        select(PlanUsage.credit_delta)
        .where(PlanUsage.plan_purchase_id == plan_purchase_id)
        .order_by(PlanUsage.id)
    )
    remaining = plan.initial_classes
    for delta in result.scalars().all():
        remaining = min(plan.initial_classes, max(0, remaining + delta))
    return remaining


async def get_client_plans(
    db: AsyncSession,
    client_id: int,
    include_inactive: bool = False,
) -> List[PlanPurchaseData]:
    today = utc_today()
    plans = []
    for plan, plan_type in await _client_plans(db, client_id):
        if not include_inactive and (plan.status != PlanStatus.ACTIVE or is_plan_expired(plan, today)):
            continue
        plans.append(to_plan_data(plan, plan_type))
    return plans


async def get_eligible_plans(
    db: AsyncSession,
    client_id: int,
    session_id: int,
    *,
    actor: Optional[Actor] = None,
) -> List[PlanPurchaseData]:
    """Plans of a client that could pay for the given session right now"""
    session = await db.get(ClassSession, session_id)
    if session is None:
        raise NotFoundError(f"Session {session_id} not found", details={"session_id": session_id})
    course = await _session_course(db, session)
    today = utc_today()
    return [
        to_plan_data(plan, plan_type)
        for plan, plan_type in await _client_plans(db, client_id, modality=PlanModality.FLEXIBLE)
        if _rejection(plan, plan_type, course, actor, today) is None
    ]
