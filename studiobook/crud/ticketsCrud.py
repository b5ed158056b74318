"""
Ticket issuer: single-use check-in tokens bound to one booking.
"""
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from studiobook.core.config import settings
from studiobook.core.conversions import as_utc, utcnow
from studiobook.core.exceptions import (
    ConflictError, InfrastructureError, TicketExpiredError,
    TicketNotFoundError, TicketAlreadyUsedError, ValidationError
)
from studiobook.core.logging_config import get_logger
from studiobook.models import Ticket

logger = get_logger("crud.tickets")

# No 0/O or 1/I so tokens survive being read aloud or typed
TOKEN_ALPHABET = "23456789ABCDEFGHJKLMNPQRSTUVWXYZ"
MAX_TOKEN_ATTEMPTS = 10


@dataclass
class TicketData:
    booking_id: int
    token: str
    expires_at: datetime
    issued_at: datetime
    used_at: Optional[datetime] = None


def to_ticket_data(ticket: Ticket) -> TicketData:
    return TicketData(
        booking_id=ticket.booking_id,
        token=ticket.token,
        expires_at=as_utc(ticket.expires_at),
        issued_at=as_utc(ticket.issued_at),
        used_at=as_utc(ticket.used_at),
    )


def generate_token(length: Optional[int] = None) -> str:
    length = length or settings.TICKET_TOKEN_LENGTH
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


def normalize_token(token: str) -> str:
    return (token or "").strip().upper()


def ticket_expiry(session_start: datetime) -> datetime:
    return as_utc(session_start) + timedelta(hours=settings.TICKET_EXPIRY_BUFFER_HOURS)


async def get_ticket_by_token(db: AsyncSession, token: str) -> Optional[Ticket]:
    result = await db.execute(select(Ticket).where(Ticket.token == normalize_token(token)))
    return result.scalar_one_or_none()


async def get_ticket_for_booking(db: AsyncSession, booking_id: int) -> Optional[Ticket]:
    return await db.get(Ticket, booking_id, populate_existing=True)


async def issue_ticket(db: AsyncSession, booking_id: int, session_start: datetime) -> Ticket:
    """Issue the one ticket of a booking inside the caller's transaction"""
    if await get_ticket_for_booking(db, booking_id) is not None:
        raise ConflictError(
            f"Booking {booking_id} already has a ticket",
            details={"booking_id": booking_id},
        )

    for _ in range(MAX_TOKEN_ATTEMPTS):
        token = generate_token()
        if await get_ticket_by_token(db, token) is None:
            break
    else:
        raise InfrastructureError("Could not generate a unique ticket token")

    ticket = Ticket(
        booking_id=booking_id,
        token=token,
        expires_at=ticket_expiry(session_start),
        issued_at=utcnow(),
    )
    db.add(ticket)
    await db.flush()
    return ticket


async def verify_ticket(db: AsyncSession, token: str, now: Optional[datetime] = None) -> int:
    """Return the booking id a token admits to"""
    cleaned = normalize_token(token)
    if not cleaned:
        raise ValidationError("Ticket token is required")

    ticket = await get_ticket_by_token(db, cleaned)
    if ticket is None:
        raise TicketNotFoundError("Ticket not found")

    now = now or utcnow()
    if as_utc(ticket.expires_at) < now:
        logger.info("Rejected expired ticket for booking %s", ticket.booking_id)
        raise TicketExpiredError(
            "Ticket expired",
            details={"booking_id": ticket.booking_id, "expires_at": as_utc(ticket.expires_at).isoformat()},
        )
    return ticket.booking_id


async def mark_ticket_used(db: AsyncSession, ticket: Ticket, when: Optional[datetime] = None) -> Ticket:
    if ticket.used_at is not None:
        raise TicketAlreadyUsedError(
            "Ticket has already been used",
            details={"booking_id": ticket.booking_id},
        )
    ticket.used_at = when or utcnow()
    await db.flush()
    return ticket


async def delete_ticket(db: AsyncSession, booking_id: int) -> int:
    """Remove a ticket; only compensating rollbacks may call this"""
    result = await db.execute(delete(Ticket).where(Ticket.booking_id == booking_id))
    return result.rowcount
