"""
GraphQL queries for bookings and session capacity.
"""
import strawberry
from strawberry.types import Info
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional, List

from studiobook.core.exceptions import BookingEngineError
from studiobook.crud.bookingEventsCrud import get_booking_events
from studiobook.crud.bookingsCrud import (
    get_booking_by_id,
    get_client_bookings,
    get_session_bookings,
)
from studiobook.crud.capacityCrud import get_session_availability
from studiobook.graphql.auth.permissions import IsAuthenticated, IsStaff
from studiobook.graphql.bookings.types import (
    Booking,
    BookingEvent,
    BookingsResponse,
    SessionAvailability,
)
from studiobook.graphql.errors import logger


@strawberry.type
class BookingQuery:
    """Booking queries"""

    @strawberry.field(permission_classes=[IsAuthenticated])
    async def booking(self, info: Info, id: int) -> Optional[Booking]:
        """Get a booking by ID"""
        db: AsyncSession = info.context.db
        data = await get_booking_by_id(db, id)
        if data is None or not info.context.actor.can_act_for(data.client_id):
            return None
        return Booking.from_data(data)

    @strawberry.field(permission_classes=[IsAuthenticated])
    async def client_bookings(
        self,
        info: Info,
        client_id: int,
        include_past: bool = False,
        include_cancelled: bool = False,
        limit: int = 100
    ) -> BookingsResponse:
        """Get bookings of a client"""
        db: AsyncSession = info.context.db
        if not info.context.actor.can_act_for(client_id):
            return BookingsResponse(bookings=[], total_count=0)

        bookings_data = await get_client_bookings(
            db,
            client_id,
            include_past=include_past,
            include_cancelled=include_cancelled,
            limit=limit,
        )
        bookings = [Booking.from_data(data) for data in bookings_data]
        return BookingsResponse(bookings=bookings, total_count=len(bookings))

    @strawberry.field(permission_classes=[IsStaff])
    async def session_bookings(
        self,
        info: Info,
        session_id: int,
        include_cancelled: bool = False
    ) -> List[Booking]:
        """Roster of a session"""
        db: AsyncSession = info.context.db
        bookings_data = await get_session_bookings(db, session_id, include_cancelled=include_cancelled)
        return [Booking.from_data(data) for data in bookings_data]

    @strawberry.field(permission_classes=[IsAuthenticated])
    async def booking_events(self, info: Info, booking_id: int) -> List[BookingEvent]:
        """Audit trail of a booking"""
        db: AsyncSession = info.context.db
        data = await get_booking_by_id(db, booking_id)
        if data is None or not info.context.actor.can_act_for(data.client_id):
            return []
        return [BookingEvent.from_data(event) for event in await get_booking_events(db, booking_id)]

    @strawberry.field(permission_classes=[IsAuthenticated])
    async def session_availability(self, info: Info, session_id: int) -> Optional[SessionAvailability]:
        """Capacity, occupancy and waitlist length of a session"""
        db: AsyncSession = info.context.db
        try:
            return SessionAvailability.from_data(await get_session_availability(db, session_id))
        except BookingEngineError as e:
            logger.info("Availability lookup failed for session %s: %s", session_id, e.message)
            return None
