from __future__ import annotations

import random

import pytest
from sqlalchemy import update

from studiobook.auth.actor import Actor
from studiobook.core.exceptions import (
    DuplicateBookingError, NotFoundError, ValidationError, WaitlistNotNeededError
)
from studiobook.crud.bookingsCrud import cancel_booking, create_booking, rebook_booking
from studiobook.crud.capacityCrud import occupancy
from studiobook.crud.waitlistCrud import (
    get_session_waitlist, join_waitlist, leave_waitlist, promote_from_waitlist
)
from studiobook.models import Booking, BookingStatus, WaitlistEntry, WaitlistStatus

from helpers import count_rows, fetch_one, fetch_remaining

CLIENT_A = 1
CLIENT_B = 2
CLIENT_C = 3


async def _assert_dense(db, session_id):
    entries = await get_session_waitlist(db, session_id)
    assert [e.position for e in entries] == list(range(1, len(entries) + 1))
    assert [e.queued_at for e in entries] == sorted(e.queued_at for e in entries)
    return entries


@pytest.mark.asyncio
async def test_cancellation_promotes_head_of_waitlist(db, factory, session_factory):
    session = await factory.class_session(capacity=1)
    await factory.plan(CLIENT_A, classes=5)
    plan_b = await factory.plan(CLIENT_B, classes=5)

    booked = await create_booking(db, session_id=session.id, client_id=CLIENT_A, actor=Actor.client(CLIENT_A))
    joined = await join_waitlist(db, session.id, CLIENT_B)
    assert joined.created is True
    assert joined.entry.position == 1
    assert joined.waitlist_count == 1

    result = await cancel_booking(db, booked.booking.id, actor=Actor.client(CLIENT_A))

    assert result.promotion is not None
    assert result.promotion.client_id == CLIENT_B
    assert result.promotion.skipped_entry_ids == []

    promoted = await fetch_one(session_factory, Booking, Booking.id == result.promotion.booking_id)
    assert promoted.status == BookingStatus.CONFIRMED
    assert promoted.source == "waitlist"
    assert promoted.plan_purchase_id == plan_b.id
    assert await fetch_remaining(session_factory, plan_b.id) == 4

    entry = await fetch_one(session_factory, WaitlistEntry, WaitlistEntry.id == joined.entry.id)
    assert entry.status == WaitlistStatus.PROMOTED
    assert entry.booking_id == promoted.id
    assert await get_session_waitlist(db, session.id) == []


@pytest.mark.asyncio
async def test_join_is_idempotent_while_pending(db, factory):
    session = await factory.class_session(capacity=1)
    await factory.booking(session, CLIENT_A)

    first = await join_waitlist(db, session.id, CLIENT_B)
    second = await join_waitlist(db, session.id, CLIENT_B)

    assert second.created is False
    assert second.entry.id == first.entry.id
    assert second.waitlist_count == 1


@pytest.mark.asyncio
async def test_join_rejected_when_seats_are_free(db, factory):
    session = await factory.class_session(capacity=2)
    await factory.booking(session, CLIENT_A)

    with pytest.raises(WaitlistNotNeededError):
        await join_waitlist(db, session.id, CLIENT_B)


@pytest.mark.asyncio
async def test_join_rejected_for_seat_holder(db, factory):
    session = await factory.class_session(capacity=1)
    await factory.booking(session, CLIENT_A)

    with pytest.raises(DuplicateBookingError):
        await join_waitlist(db, session.id, CLIENT_A)


@pytest.mark.asyncio
async def test_join_unknown_session(db):
    with pytest.raises(NotFoundError):
        await join_waitlist(db, 4242, CLIENT_A)


@pytest.mark.asyncio
async def test_leave_closes_gap_and_rejoin_goes_to_back(db, factory):
    session = await factory.class_session(capacity=1)
    await factory.booking(session, CLIENT_A)

    b = await join_waitlist(db, session.id, CLIENT_B)
    await join_waitlist(db, session.id, CLIENT_C)
    await join_waitlist(db, session.id, 4)

    left = await leave_waitlist(db, session_id=session.id, client_id=CLIENT_B)
    assert left.removed is True
    assert left.waitlist_count == 2

    entries = await _assert_dense(db, session.id)
    assert [e.client_id for e in entries] == [CLIENT_C, 4]

    rejoined = await join_waitlist(db, session.id, CLIENT_B)
    assert rejoined.created is True
    assert rejoined.entry.id == b.entry.id
    assert rejoined.entry.position == 3

    entries = await _assert_dense(db, session.id)
    assert [e.client_id for e in entries] == [CLIENT_C, 4, CLIENT_B]


@pytest.mark.asyncio
async def test_leave_by_entry_id_is_idempotent(db, factory):
    session = await factory.class_session(capacity=1)
    await factory.booking(session, CLIENT_A)
    joined = await join_waitlist(db, session.id, CLIENT_B)

    first = await leave_waitlist(db, entry_id=joined.entry.id)
    second = await leave_waitlist(db, entry_id=joined.entry.id)

    assert first.waitlist_count == 0
    assert second.removed is True
    assert second.entry.status == WaitlistStatus.CANCELLED


@pytest.mark.asyncio
async def test_leave_requires_identifiers(db):
    with pytest.raises(ValidationError):
        await leave_waitlist(db, session_id=1)
    with pytest.raises(NotFoundError):
        await leave_waitlist(db, entry_id=999)


@pytest.mark.asyncio
async def test_positions_stay_dense_under_random_joins_and_leaves(db, factory):
    session = await factory.class_session(capacity=1)
    await factory.booking(session, CLIENT_A)
    rng = random.Random(20240611)
    queued = set()

    for _ in range(40):
        client_id = rng.randint(10, 22)
        if client_id in queued and rng.random() < 0.6:
            await leave_waitlist(db, session_id=session.id, client_id=client_id)
            queued.discard(client_id)
        else:
            await join_waitlist(db, session.id, client_id)
            queued.add(client_id)

        entries = await _assert_dense(db, session.id)
        assert {e.client_id for e in entries} == queued


@pytest.mark.asyncio
async def test_promotion_skips_candidates_who_cannot_book(db, factory, staff, session_factory):
    session = await factory.class_session(capacity=1)
    seat = await factory.booking(session, CLIENT_A)
    plan_c = await factory.plan(CLIENT_C, classes=3)

    b = await join_waitlist(db, session.id, CLIENT_B)
    c = await join_waitlist(db, session.id, CLIENT_C)

    result = await cancel_booking(db, seat.id, actor=staff)

    assert result.promotion.client_id == CLIENT_C
    assert result.promotion.skipped_entry_ids == [b.entry.id]
    assert result.promotion.entry.id == c.entry.id
    assert await fetch_remaining(session_factory, plan_c.id) == 2

    skipped = await fetch_one(session_factory, WaitlistEntry, WaitlistEntry.id == b.entry.id)
    assert skipped.status == WaitlistStatus.CANCELLED


@pytest.mark.asyncio
async def test_promotion_without_free_seat_does_nothing(db, factory):
    session = await factory.class_session(capacity=1)
    await factory.booking(session, CLIENT_A)
    await factory.plan(CLIENT_B)
    await join_waitlist(db, session.id, CLIENT_B)

    assert await promote_from_waitlist(db, session.id) is None
    entries = await get_session_waitlist(db, session.id)
    assert [e.client_id for e in entries] == [CLIENT_B]


@pytest.mark.asyncio
async def test_rebook_frees_seat_for_waitlist(db, factory, session_factory):
    source = await factory.class_session(capacity=1)
    target = await factory.class_session(capacity=5)
    await factory.plan(CLIENT_A, classes=5)
    await factory.plan(CLIENT_B, classes=5)

    booked = await create_booking(db, session_id=source.id, client_id=CLIENT_A, actor=Actor.client(CLIENT_A))
    joined = await join_waitlist(db, source.id, CLIENT_B)

    await rebook_booking(db, booked.booking.id, target.id, actor=Actor.client(CLIENT_A))

    entry = await fetch_one(session_factory, WaitlistEntry, WaitlistEntry.id == joined.entry.id)
    assert entry.status == WaitlistStatus.PROMOTED
    promoted = await fetch_one(session_factory, Booking, Booking.id == entry.booking_id)
    assert promoted.session_id == source.id
    assert promoted.client_id == CLIENT_B


async def _release_seats(session_factory, *booking_ids):
    """Free seats without running promotion, as a concurrent writer would"""
    async with session_factory() as session:
        await session.execute(
            update(Booking).where(Booking.id.in_(booking_ids)).values(status=BookingStatus.CANCELLED)
        )
        await session.commit()


@pytest.mark.asyncio
async def test_promoted_client_can_rejoin_after_releasing_seat(db, factory):
    session = await factory.class_session(capacity=1)
    for client_id in (CLIENT_A, CLIENT_B, CLIENT_C):
        await factory.plan(client_id, classes=5)

    booked = await create_booking(db, session_id=session.id, client_id=CLIENT_A, actor=Actor.client(CLIENT_A))
    joined = await join_waitlist(db, session.id, CLIENT_B)
    cancelled = await cancel_booking(db, booked.booking.id, actor=Actor.client(CLIENT_A))
    promoted_booking_id = cancelled.promotion.booking_id

    while_seated = await join_waitlist(db, session.id, CLIENT_B)
    assert while_seated.created is False
    assert while_seated.entry.status == WaitlistStatus.PROMOTED

    await cancel_booking(db, promoted_booking_id, actor=Actor.client(CLIENT_B))
    await create_booking(db, session_id=session.id, client_id=CLIENT_C, actor=Actor.client(CLIENT_C))

    rejoined = await join_waitlist(db, session.id, CLIENT_B)

    assert rejoined.created is True
    assert rejoined.entry.id == joined.entry.id
    assert rejoined.entry.status == WaitlistStatus.PENDING
    assert rejoined.entry.position == 1
    assert rejoined.entry.booking_id is None
    assert rejoined.entry.promoted_at is None
    assert rejoined.entry.queued_at > joined.entry.queued_at
    entries = await _assert_dense(db, session.id)
    assert [e.client_id for e in entries] == [CLIENT_B]


@pytest.mark.asyncio
async def test_promotion_drops_candidate_who_already_took_the_seat(db, factory, session_factory):
    session = await factory.class_session(capacity=2)
    first = await factory.booking(session, CLIENT_A)
    second = await factory.booking(session, 5)
    await factory.plan(CLIENT_B, classes=5)
    plan_c = await factory.plan(CLIENT_C, classes=5)

    b = await join_waitlist(db, session.id, CLIENT_B)
    c = await join_waitlist(db, session.id, CLIENT_C)

    await _release_seats(session_factory, first.id, second.id)
    direct = await create_booking(db, session_id=session.id, client_id=CLIENT_B, actor=Actor.client(CLIENT_B))

    result = await promote_from_waitlist(db, session.id)

    assert result.client_id == CLIENT_C
    assert result.entry.id == c.entry.id
    assert result.skipped_entry_ids == [b.entry.id]
    assert await fetch_remaining(session_factory, plan_c.id) == 4

    dropped = await fetch_one(session_factory, WaitlistEntry, WaitlistEntry.id == b.entry.id)
    assert dropped.status == WaitlistStatus.CANCELLED
    assert dropped.booking_id is None
    assert await count_rows(
        session_factory,
        Booking,
        Booking.client_id == CLIENT_B,
        Booking.status == BookingStatus.CONFIRMED,
    ) == 1
    assert (await fetch_one(session_factory, Booking, Booking.id == direct.booking.id)).status == BookingStatus.CONFIRMED
    assert await occupancy(db, session.id) == 2
    assert await get_session_waitlist(db, session.id) == []
