"""
Check-in verification payload shown when a ticket is scanned.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from studiobook.core.conversions import as_utc
from studiobook.crud.ticketsCrud import verify_ticket
from studiobook.models import Booking, ClassSession, Ticket


@dataclass
class TicketVerification:
    booking_id: int
    client_id: int
    session_id: int
    booking_status: str
    session_name: Optional[str]
    session_start: datetime
    session_end: datetime
    token: str
    expires_at: datetime
    used_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "bookingId": self.booking_id,
            "clientId": self.client_id,
            "sessionId": self.session_id,
            "bookingStatus": self.booking_status,
            "sessionName": self.session_name,
            "sessionStart": self.session_start.isoformat(),
            "sessionEnd": self.session_end.isoformat(),
            "token": self.token,
            "expiresAt": self.expires_at.isoformat(),
            "usedAt": self.used_at.isoformat() if self.used_at else None,
        }


async def get_ticket_verification(db: AsyncSession, token: str) -> TicketVerification:
    """Resolve a scanned token; raises when unknown or expired"""
    booking_id = await verify_ticket(db, token)
    result = await db.execute(
        select(Booking, ClassSession, Ticket)
        .join(ClassSession, ClassSession.id == Booking.session_id)
        .join(Ticket, Ticket.booking_id == Booking.id)
        .where(Booking.id == booking_id)
    )
    booking, session, ticket = result.one()
    return TicketVerification(
        booking_id=booking.id,
        client_id=booking.client_id,
        session_id=session.id,
        booking_status=booking.status,
        session_name=session.name,
        session_start=as_utc(session.start_at),
        session_end=as_utc(session.end_at),
        token=ticket.token,
        expires_at=as_utc(ticket.expires_at),
        used_at=as_utc(ticket.used_at),
    )
