"""
GraphQL types for tickets.
"""
from datetime import datetime
from typing import Optional
import strawberry

from studiobook.crud.ticketVerificationCrud import TicketVerification as TicketVerificationData


@strawberry.type
class TicketVerification:
    """What the front desk sees after scanning a ticket"""
    booking_id: int
    client_id: int
    session_id: int
    booking_status: str
    session_name: Optional[str]
    session_start: datetime
    session_end: datetime
    expires_at: datetime
    used_at: Optional[datetime]

    @classmethod
    def from_data(cls, data: TicketVerificationData) -> "TicketVerification":
        return cls(
            booking_id=data.booking_id,
            client_id=data.client_id,
            session_id=data.session_id,
            booking_status=data.booking_status,
            session_name=data.session_name,
            session_start=data.session_start,
            session_end=data.session_end,
            expires_at=data.expires_at,
            used_at=data.used_at,
        )


@strawberry.type
class TicketVerificationResponse:
    success: bool
    verification: Optional[TicketVerification]
    message: str
    code: Optional[str] = None
