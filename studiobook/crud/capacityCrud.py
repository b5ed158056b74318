"""
Session capacity ledger: occupancy is always derived from booking rows.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from studiobook.core.conversions import as_utc
from studiobook.core.exceptions import NotFoundError
from studiobook.models import ClassSession, Booking, BookingStatus, WaitlistEntry, WaitlistStatus


@dataclass
class SessionAvailability:
    """Capacity snapshot of one session"""
    session_id: int
    name: Optional[str]
    start_at: datetime
    end_at: datetime
    status: str
    capacity: int
    occupancy: int
    available_spots: int
    waitlist_count: int

    @property
    def is_full(self) -> bool:
        return self.available_spots <= 0


def _seat_holding():
    return Booking.status.notin_(BookingStatus.RELEASED)


async def get_session(db: AsyncSession, session_id: int) -> ClassSession:
    session = await db.get(ClassSession, session_id)
    if session is None:
        raise NotFoundError(f"Session {session_id} not found", details={"session_id": session_id})
    return session


async def occupancy(db: AsyncSession, session_id: int) -> int:
    """Number of bookings currently holding a seat in the session"""
    result = await db.execute(
        select(func.count(Booking.id)).where(
            Booking.session_id == session_id,
            _seat_holding(),
        )
    )
    return result.scalar_one()


async def has_free_seat(db: AsyncSession, session_id: int) -> bool:
    session = await get_session(db, session_id)
    return await occupancy(db, session_id) < session.capacity


async def occupancy_by_session(db: AsyncSession, session_ids: Iterable[int]) -> Dict[int, int]:
    ids = list(set(session_ids))
    if not ids:
        return {}
    result = await db.execute(
        select(Booking.session_id, func.count(Booking.id))
        .where(Booking.session_id.in_(ids), _seat_holding())
        .group_by(Booking.session_id)
    )
    counts = {session_id: 0 for session_id in ids}
    counts.update({session_id: count for session_id, count in result.all()})
    return counts


async def get_session_availability(db: AsyncSession, session_id: int) -> SessionAvailability:
    session = await get_session(db, session_id)
    taken = await occupancy(db, session_id)
    waitlist_result = await db.execute(
        select(func.count(WaitlistEntry.id)).where(
            WaitlistEntry.session_id == session_id,
            WaitlistEntry.status == WaitlistStatus.PENDING,
        )
    )
    return SessionAvailability(
        session_id=session.id,
        name=session.name,
        start_at=as_utc(session.start_at),
        end_at=as_utc(session.end_at),
        status=session.status,
        capacity=session.capacity,
        occupancy=taken,
        available_spots=max(0, session.capacity - taken),
        waitlist_count=waitlist_result.scalar_one(),
    )
