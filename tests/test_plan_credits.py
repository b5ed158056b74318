from __future__ import annotations

from datetime import timedelta

import pytest

from studiobook.auth.actor import Actor
from studiobook.core.exceptions import (
    NoActivePlanError, NotFoundError, PlanExhaustedError, PlanNotApplicableError
)
from studiobook.crud.bookingsCrud import create_booking
from studiobook.crud.planCreditsCrud import (
    credit, debit, derive_remaining_classes, get_client_plans, get_eligible_plans,
    get_plan_purchase, resolve_active_plan
)
from studiobook.models import PlanModality, PlanUsage

from helpers import count_rows, fetch_all, fetch_remaining

CLIENT = 11


@pytest.mark.asyncio
async def test_soonest_expiring_plan_pays_first(db, factory):
    session = await factory.class_session()
    await factory.plan(CLIENT, expires_in_days=None, purchased_ago=timedelta(days=30))
    await factory.plan(CLIENT, expires_in_days=10)
    soonest = await factory.plan(CLIENT, expires_in_days=5)

    plan = await resolve_active_plan(db, CLIENT, session)

    assert plan.id == soonest.id


@pytest.mark.asyncio
async def test_open_ended_plans_are_used_last(db, factory):
    session = await factory.class_session()
    open_ended = await factory.plan(CLIENT, expires_in_days=None)
    await factory.plan(CLIENT, expires_in_days=3, remaining=0)

    plan = await resolve_active_plan(db, CLIENT, session)

    assert plan.id == open_ended.id


@pytest.mark.asyncio
async def test_preferred_plan_strict_and_lenient(db, factory):
    session = await factory.class_session()
    empty = await factory.plan(CLIENT, expires_in_days=40, remaining=0)
    fallback = await factory.plan(CLIENT, expires_in_days=20)

    with pytest.raises(PlanExhaustedError):
        await resolve_active_plan(db, CLIENT, session, preferred_plan_id=empty.id)

    plan = await resolve_active_plan(db, CLIENT, session, preferred_plan_id=empty.id, strict=False)
    assert plan.id == fallback.id

    with pytest.raises(NotFoundError):
        await resolve_active_plan(db, CLIENT, session, preferred_plan_id=99999)


@pytest.mark.asyncio
async def test_category_restricted_plans(db, factory):
    course = await factory.course(category="yoga")
    session = await factory.class_session(course=course)
    await factory.plan(CLIENT, category="pilates", expires_in_days=5)
    yoga = await factory.plan(CLIENT, category="yoga", expires_in_days=25)

    eligible = await get_eligible_plans(db, CLIENT, session.id)
    assert [p.id for p in eligible] == [yoga.id]

    plan = await resolve_active_plan(db, CLIENT, session)
    assert plan.id == yoga.id


@pytest.mark.asyncio
async def test_plan_for_other_category_is_not_applicable(db, factory):
    course = await factory.course(category="yoga")
    session = await factory.class_session(course=course)
    pilates = await factory.plan(CLIENT, category="pilates")

    with pytest.raises(PlanNotApplicableError):
        await resolve_active_plan(db, CLIENT, session, preferred_plan_id=pilates.id)
    with pytest.raises(NoActivePlanError):
        await resolve_active_plan(db, CLIENT, session)


@pytest.mark.asyncio
async def test_app_only_plan_cannot_be_used_by_staff(db, factory, staff):
    session = await factory.class_session()
    plan = await factory.plan(CLIENT, app_only=True)

    with pytest.raises(NoActivePlanError):
        await create_booking(db, session_id=session.id, client_id=CLIENT, actor=staff)

    result = await create_booking(db, session_id=session.id, client_id=CLIENT, actor=Actor.client(CLIENT))
    assert result.plan_purchase_id == plan.id


@pytest.mark.asyncio
async def test_client_with_only_fixed_plan_cannot_self_book(db, factory):
    course = await factory.course()
    session = await factory.class_session(course=course)
    await factory.plan(CLIENT, modality=PlanModality.FIXED, course_id=course.id, expires_in_days=None)

    with pytest.raises(PlanExhaustedError):
        await create_booking(db, session_id=session.id, client_id=CLIENT, actor=Actor.client(CLIENT))


@pytest.mark.asyncio
async def test_fixed_plan_is_never_debited_directly(db, factory):
    course = await factory.course()
    session = await factory.class_session(course=course)
    plan = await factory.plan(CLIENT, modality=PlanModality.FIXED, course_id=course.id)

    with pytest.raises(PlanExhaustedError):
        await debit(db, plan, None, session.id)


@pytest.mark.asyncio
async def test_unlimited_plan_is_not_debited(db, factory, session_factory):
    session = await factory.class_session()
    plan = await factory.plan(CLIENT, classes=None)

    result = await create_booking(db, session_id=session.id, client_id=CLIENT, actor=Actor.client(CLIENT))

    assert result.plan_purchase_id == plan.id
    assert result.remaining_classes is None
    assert result.usage_id is None
    assert await count_rows(session_factory, PlanUsage) == 0


@pytest.mark.asyncio
async def test_refund_is_clamped_at_initial_classes(db, factory, session_factory):
    session = await factory.class_session()
    plan = await factory.plan(CLIENT, classes=3)
    loaded = await get_plan_purchase(db, plan.id)

    usage = await credit(db, loaded, None, session.id, notes="Goodwill")
    await db.commit()

    assert usage.credit_delta == 1
    assert "clamped" in usage.notes
    assert await fetch_remaining(session_factory, plan.id) == 3
    assert await derive_remaining_classes(db, plan.id) == 3


@pytest.mark.asyncio
async def test_derived_balance_matches_stored_balance(db, factory, session_factory):
    first = await factory.class_session()
    second = await factory.class_session(starts_in=timedelta(days=3))
    plan = await factory.plan(CLIENT, classes=5)

    await create_booking(db, session_id=first.id, client_id=CLIENT, actor=Actor.client(CLIENT))
    await create_booking(db, session_id=second.id, client_id=CLIENT, actor=Actor.client(CLIENT))

    usages = await fetch_all(session_factory, PlanUsage, PlanUsage.plan_purchase_id == plan.id)
    assert sum(u.credit_delta for u in usages) == -2
    assert await derive_remaining_classes(db, plan.id) == 3
    assert await fetch_remaining(session_factory, plan.id) == 3


@pytest.mark.asyncio
async def test_client_plans_hide_expired_by_default(db, factory):
    active = await factory.plan(CLIENT)
    expired = await factory.plan(CLIENT, expires_in_days=-2)

    current = await get_client_plans(db, CLIENT)
    everything = await get_client_plans(db, CLIENT, include_inactive=True)

    assert [p.id for p in current] == [active.id]
    assert {p.id for p in everything} == {active.id, expired.id}
