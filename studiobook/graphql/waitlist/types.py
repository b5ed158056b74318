"""
GraphQL types for waitlists.
"""
from datetime import datetime
from typing import Optional
import strawberry

from studiobook.crud.waitlistCrud import WaitlistEntryData


@strawberry.type
class WaitlistEntry:
    id: int
    session_id: int
    client_id: int
    position: int
    status: str
    created_at: datetime
    promoted_at: Optional[datetime]
    booking_id: Optional[int]

    @classmethod
    def from_data(cls, data: WaitlistEntryData) -> "WaitlistEntry":
        return cls(
            id=data.id,
            session_id=data.session_id,
            client_id=data.client_id,
            position=data.position,
            status=data.status,
            created_at=data.created_at,
            promoted_at=data.promoted_at,
            booking_id=data.booking_id,
        )


@strawberry.input
class JoinWaitlistInput:
    session_id: int
    client_id: int


@strawberry.input
class LeaveWaitlistInput:
    """Identify the entry by id or by session and client"""
    entry_id: Optional[int] = None
    session_id: Optional[int] = None
    client_id: Optional[int] = None


@strawberry.type
class WaitlistJoinResponse:
    success: bool
    entry: Optional[WaitlistEntry]
    message: str
    code: Optional[str] = None
    waitlist_count: int = 0


@strawberry.type
class WaitlistLeaveResponse:
    success: bool
    removed: bool
    message: str
    code: Optional[str] = None
    waitlist_count: int = 0
