"""
Waitlist allocator: dense FIFO queue per session plus promotion into
freed seats.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from studiobook.auth.actor import Actor
from studiobook.core.conversions import as_utc, utcnow
from studiobook.core.exceptions import (
    BookingEngineError, DuplicateBookingError, NotFoundError,
    ValidationError, WaitlistNotNeededError
)
from studiobook.core.logging_config import get_logger
from studiobook.crud.allocationCrud import allocate_seat, ensure_bookable, find_active_booking
from studiobook.crud.capacityCrud import occupancy
from studiobook.db.locks import lock_session_row, session_locks
from studiobook.models import (
    Booking, BookingSource, BookingStatus, WaitlistEntry, WaitlistStatus
)

logger = get_logger("crud.waitlist")


@dataclass
class WaitlistEntryData:
    id: int
    session_id: int
    client_id: int
    position: int
    status: str
    created_at: datetime
    queued_at: datetime
    promoted_at: Optional[datetime] = None
    booking_id: Optional[int] = None


@dataclass
class WaitlistJoinResult:
    entry: WaitlistEntryData
    waitlist_count: int
    created: bool


@dataclass
class WaitlistLeaveResult:
    removed: bool
    waitlist_count: int
    entry: Optional[WaitlistEntryData] = None


@dataclass
class PromotionResult:
    entry: WaitlistEntryData
    booking_id: int
    client_id: int
    skipped_entry_ids: List[int]


def to_entry_data(entry: WaitlistEntry) -> WaitlistEntryData:
    return WaitlistEntryData(
        id=entry.id,
        session_id=entry.session_id,
        client_id=entry.client_id,
        position=entry.position,
        status=entry.status,
        created_at=as_utc(entry.created_at),
        queued_at=as_utc(entry.queued_at),
        promoted_at=as_utc(entry.promoted_at),
        booking_id=entry.booking_id,
    )


async def count_pending(db: AsyncSession, session_id: int) -> int:
    result = await db.execute(
        select(func.count(WaitlistEntry.id)).where(
            WaitlistEntry.session_id == session_id,
            WaitlistEntry.status == WaitlistStatus.PENDING,
        )
    )
    return result.scalar_one()


async def _pending_entries(db: AsyncSession, session_id: int) -> List[WaitlistEntry]:
    result = await db.execute(
        select(WaitlistEntry)
        .where(
            WaitlistEntry.session_id == session_id,
            WaitlistEntry.status == WaitlistStatus.PENDING,
        )
        .order_by(WaitlistEntry.queued_at, WaitlistEntry.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def resequence(db: AsyncSession, session_id: int) -> List[WaitlistEntry]:
    """
    Renumber PENDING entries 1..N by queue time.

    The only writer of positions after insert; runs inside the caller's
    transaction while the session lock is held.
    """
    entries = await _pending_entries(db, session_id)
    now = utcnow()
    for index, entry in enumerate(entries, start=1):
        if entry.position != index:
            entry.position = index
            entry.updated_at = now
    await db.flush()
    return entries


async def _get_entry(db: AsyncSession, session_id: int, client_id: int) -> Optional[WaitlistEntry]:
    result = await db.execute(
        select(WaitlistEntry)
        .where(WaitlistEntry.session_id == session_id, WaitlistEntry.client_id == client_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _entry_is_live(db: AsyncSession, entry: WaitlistEntry) -> bool:
    """PENDING entries, and PROMOTED ones whose booking still holds the seat"""
    if entry.status == WaitlistStatus.PENDING:
        return True
    if entry.status != WaitlistStatus.PROMOTED or entry.booking_id is None:
        return False
    booking = await db.get(Booking, entry.booking_id, populate_existing=True)
    return booking is not None and booking.status not in BookingStatus.RELEASED


async def join_waitlist(db: AsyncSession, session_id: int, client_id: int) -> WaitlistJoinResult:
    """Queue a client for a full session; idempotent while the entry is live"""
    async with session_locks.hold(session_id):
        session = await lock_session_row(db, session_id)
        if session is None:
            raise NotFoundError(f"Session {session_id} not found", details={"session_id": session_id})

        try:
            entry = await _get_entry(db, session_id, client_id)
            if entry is not None and await _entry_is_live(db, entry):
                count = await count_pending(db, session_id)
                await db.commit()
                return WaitlistJoinResult(entry=to_entry_data(entry), waitlist_count=count, created=False)

            if await find_active_booking(db, session_id, client_id) is not None:
                raise DuplicateBookingError(
                    "Client already holds a seat in this session",
                    details={"session_id": session_id, "client_id": client_id},
                )
            if await occupancy(db, session_id) < session.capacity:
                raise WaitlistNotNeededError(
                    "Session still has free seats",
                    details={"session_id": session_id},
                )

            now = utcnow()
            position = await count_pending(db, session_id) + 1
            if entry is None:
                entry = WaitlistEntry(
                    session_id=session_id,
                    client_id=client_id,
                    position=position,
                    status=WaitlistStatus.PENDING,
                    created_at=now,
                    queued_at=now,
                    updated_at=now,
                )
                db.add(entry)
            else:
                entry.status = WaitlistStatus.PENDING
                entry.position = position
                entry.queued_at = now
                entry.promoted_at = None
                entry.booking_id = None
                entry.updated_at = now
            await db.flush()
            await resequence(db, session_id)
            count = await count_pending(db, session_id)
            await db.commit()
        except BookingEngineError:
            await db.rollback()
            raise

    logger.info(
        "Client %s joined waitlist of session %s at position %s",
        client_id, session_id, entry.position,
    )
    return WaitlistJoinResult(entry=to_entry_data(entry), waitlist_count=count, created=True)


async def leave_waitlist(
    db: AsyncSession,
    *,
    entry_id: Optional[int] = None,
    session_id: Optional[int] = None,
    client_id: Optional[int] = None,
) -> WaitlistLeaveResult:
    """Withdraw from a waitlist by entry id or by (session, client)"""
    if entry_id is None and (session_id is None or client_id is None):
        raise ValidationError("Provide entry_id or both session_id and client_id")

    if entry_id is not None:
        entry = await db.get(WaitlistEntry, entry_id)
        if entry is None:
            raise NotFoundError("Waitlist entry not found", details={"entry_id": entry_id})
        session_id, client_id = entry.session_id, entry.client_id

    async with session_locks.hold(session_id):
        await lock_session_row(db, session_id)
        entry = await _get_entry(db, session_id, client_id)
        if entry is None:
            await db.rollback()
            raise NotFoundError(
                "Waitlist entry not found",
                details={"session_id": session_id, "client_id": client_id},
            )

        if entry.status == WaitlistStatus.CANCELLED:
            count = await count_pending(db, session_id)
            await db.commit()
            return WaitlistLeaveResult(removed=True, waitlist_count=count, entry=to_entry_data(entry))

        entry.status = WaitlistStatus.CANCELLED
        entry.updated_at = utcnow()
        await db.flush()
        await resequence(db, session_id)
        count = await count_pending(db, session_id)
        await db.commit()

    logger.info("Client %s left waitlist of session %s", client_id, session_id)
    return WaitlistLeaveResult(removed=True, waitlist_count=count, entry=to_entry_data(entry))


async def get_session_waitlist(
    db: AsyncSession,
    session_id: int,
    include_inactive: bool = False,
) -> List[WaitlistEntryData]:
    stmt = select(WaitlistEntry).where(WaitlistEntry.session_id == session_id)
    if not include_inactive:
        stmt = stmt.where(WaitlistEntry.status == WaitlistStatus.PENDING)
    stmt = stmt.order_by(
        (WaitlistEntry.status != WaitlistStatus.PENDING),
        WaitlistEntry.position,
        WaitlistEntry.queued_at,
        WaitlistEntry.id,
    )
    result = await db.execute(stmt)
    return [to_entry_data(entry) for entry in result.scalars().all()]


async def _drop_candidate(db: AsyncSession, session_id: int, entry_id: int) -> None:
    """Cancel an entry whose promotion failed and close the gap"""
    # The failed attempt rolled back, which released the row lock
    await lock_session_row(db, session_id)
    entry = await db.get(WaitlistEntry, entry_id, populate_existing=True)
    if entry is not None and entry.status == WaitlistStatus.PENDING:
        entry.status = WaitlistStatus.CANCELLED
        entry.updated_at = utcnow()
        await db.flush()
    await resequence(db, session_id)
    await db.commit()


async def promote_from_waitlist(
    db: AsyncSession,
    session_id: int,
    *,
    actor: Optional[Actor] = None,
) -> Optional[PromotionResult]:
    """
    Fill a freed seat from the head of the queue.

    The head entry is booked on the client's behalf. When that booking
    fails the entry is cancelled and the next one is tried, until a
    booking succeeds, the queue empties or no seat is left.
    """
    actor = actor or Actor.system()
    skipped: List[int] = []

    while True:
        async with session_locks.hold(session_id):
            session = await lock_session_row(db, session_id)
            if session is None:
                await db.rollback()
                return None
            if await occupancy(db, session_id) >= session.capacity:
                await db.commit()
                return None
            try:
                await ensure_bookable(db, session, utcnow(), actor=actor)
            except BookingEngineError as exc:
                # Queue stays intact; nobody could be booked into this session
                await db.commit()
                logger.info("No promotion for session %s: %s", session_id, exc.message)
                return None

            pending = await _pending_entries(db, session_id)
            if not pending:
                await db.commit()
                return None
            candidate = pending[0]
            candidate_id = candidate.id
            client_id = candidate.client_id

            try:
                result = await allocate_seat(
                    db,
                    session,
                    client_id,
                    actor=actor,
                    source=BookingSource.WAITLIST,
                    metadata={"waitlistEntryId": candidate_id},
                )
                if result.duplicated:
                    raise DuplicateBookingError("Client already holds a seat in this session")
            except (BookingEngineError, IntegrityError) as exc:
                await db.rollback()
                logger.info(
                    "Skipping waitlist entry %s for session %s: %s",
                    candidate_id, session_id, getattr(exc, "message", str(exc)),
                )
                await _drop_candidate(db, session_id, candidate_id)
                skipped.append(candidate_id)
                continue

            now = utcnow()
            candidate.status = WaitlistStatus.PROMOTED
            candidate.promoted_at = now
            candidate.booking_id = result.booking.id
            candidate.updated_at = now
            await db.flush()
            await resequence(db, session_id)
            await db.commit()

        logger.info(
            "Promoted client %s from waitlist of session %s into booking %s",
            client_id, session_id, result.booking.id,
        )
        return PromotionResult(
            entry=to_entry_data(candidate),
            booking_id=result.booking.id,
            client_id=client_id,
            skipped_entry_ids=skipped,
        )
