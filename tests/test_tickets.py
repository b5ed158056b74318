from __future__ import annotations

import re
from datetime import timedelta

import pytest

from studiobook.auth.actor import Actor
from studiobook.core.conversions import utcnow
from studiobook.core.exceptions import (
    ConflictError, TicketExpiredError, TicketNotFoundError, ValidationError
)
from studiobook.crud.bookingsCrud import create_booking
from studiobook.crud.ticketVerificationCrud import get_ticket_verification
from studiobook.crud.ticketsCrud import (
    generate_token, get_ticket_for_booking, issue_ticket, normalize_token, ticket_expiry, verify_ticket
)

CLIENT = 31


def test_tokens_use_unambiguous_alphabet():
    for _ in range(200):
        token = generate_token()
        assert re.fullmatch(r"[2-9A-HJ-NP-Z]{10}", token)


def test_normalize_token():
    assert normalize_token("  abcd23xyzq ") == "ABCD23XYZQ"
    assert normalize_token(None) == ""


def test_expiry_is_six_hours_after_start():
    start = utcnow()
    assert ticket_expiry(start) == start + timedelta(hours=6)


@pytest.mark.asyncio
async def test_verify_resolves_booking_until_expiry(db, factory):
    session = await factory.class_session()
    await factory.plan(CLIENT)
    booked = await create_booking(db, session_id=session.id, client_id=CLIENT, actor=Actor.client(CLIENT))

    assert await verify_ticket(db, booked.ticket_token) == booked.booking.id
    assert await verify_ticket(db, f" {booked.ticket_token.lower()} ") == booked.booking.id

    after_expiry = booked.ticket_expires_at + timedelta(seconds=1)
    with pytest.raises(TicketExpiredError):
        await verify_ticket(db, booked.ticket_token, now=after_expiry)


@pytest.mark.asyncio
async def test_unknown_and_blank_tokens(db):
    with pytest.raises(TicketNotFoundError):
        await verify_ticket(db, "ZZZZZZZZZZ")
    with pytest.raises(ValidationError):
        await verify_ticket(db, "   ")


@pytest.mark.asyncio
async def test_booking_has_exactly_one_ticket(db, factory):
    session = await factory.class_session()
    await factory.plan(CLIENT)
    booked = await create_booking(db, session_id=session.id, client_id=CLIENT, actor=Actor.client(CLIENT))

    with pytest.raises(ConflictError):
        await issue_ticket(db, booked.booking.id, session.start_at)
    await db.rollback()

    ticket = await get_ticket_for_booking(db, booked.booking.id)
    assert ticket.token == booked.ticket_token


@pytest.mark.asyncio
async def test_verification_payload(db, factory):
    session = await factory.class_session(name="Evening flow")
    await factory.plan(CLIENT)
    booked = await create_booking(db, session_id=session.id, client_id=CLIENT, actor=Actor.client(CLIENT))

    verification = await get_ticket_verification(db, booked.ticket_token)
    payload = verification.to_dict()

    assert payload["bookingId"] == booked.booking.id
    assert payload["clientId"] == CLIENT
    assert payload["sessionName"] == "Evening flow"
    assert payload["bookingStatus"] == "CONFIRMED"
    assert payload["usedAt"] is None
