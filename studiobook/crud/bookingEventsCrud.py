"""
Append-only booking event log.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from studiobook.auth.actor import Actor
from studiobook.core.conversions import as_utc, utcnow
from studiobook.core.logging_config import log_booking_transition
from studiobook.models import BookingEvent


@dataclass
class BookingEventData:
    id: int
    booking_id: int
    event_type: str
    actor_role: str
    actor_id: Optional[int]
    created_at: datetime
    notes: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


def _to_data(event: BookingEvent) -> BookingEventData:
    return BookingEventData(
        id=event.id,
        booking_id=event.booking_id,
        event_type=event.event_type,
        actor_role=event.actor_role,
        actor_id=event.actor_id,
        created_at=as_utc(event.created_at),
        notes=event.notes,
        metadata=dict(event.event_metadata or {}),
    )


async def log_booking_event(
    db: AsyncSession,
    booking_id: int,
    event_type: str,
    actor: Actor,
    *,
    notes: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> BookingEvent:
    """Append an event inside the caller's transaction"""
    event = BookingEvent(
        booking_id=booking_id,
        event_type=event_type,
        actor_role=actor.role,
        actor_id=actor.id,
        notes=notes,
        event_metadata=metadata or {},
        created_at=utcnow(),
    )
    db.add(event)
    await db.flush()
    log_booking_transition(event_type, booking_id, actor.role, actor.id)
    return event


async def get_booking_events(db: AsyncSession, booking_id: int) -> List[BookingEventData]:
    result = await db.execute(
        select(BookingEvent)
        .where(BookingEvent.booking_id == booking_id)
        .order_by(BookingEvent.created_at, BookingEvent.id)
    )
    return [_to_data(event) for event in result.scalars().all()]


async def delete_booking_events(db: AsyncSession, event_ids: Iterable[int]) -> int:
    """Remove events; only compensating rollbacks may call this"""
    ids = list(event_ids)
    if not ids:
        return 0
    result = await db.execute(delete(BookingEvent).where(BookingEvent.id.in_(ids)))
    return result.rowcount
