"""
GraphQL types for bookings.
"""
from datetime import datetime
from typing import Optional, List
import strawberry
from strawberry.scalars import JSON

from studiobook.crud.bookingsCrud import BookingData
from studiobook.crud.bookingEventsCrud import BookingEventData
from studiobook.crud.capacityCrud import SessionAvailability as SessionAvailabilityData


@strawberry.type
class Booking:
    """Booking GraphQL type"""
    id: int
    session_id: int
    client_id: int
    status: str
    reserved_at: datetime
    source: str
    plan_purchase_id: Optional[int]
    rebooked_from_booking_id: Optional[int]
    cancelled_at: Optional[datetime]
    checked_in_at: Optional[datetime]
    checked_out_at: Optional[datetime]

    # Related data
    session_name: Optional[str]
    session_start: Optional[datetime]
    session_end: Optional[datetime]
    ticket_token: Optional[str]
    ticket_expires_at: Optional[datetime]

    @classmethod
    def from_data(cls, data: BookingData) -> "Booking":
        return cls(
            id=data.id,
            session_id=data.session_id,
            client_id=data.client_id,
            status=data.status,
            reserved_at=data.reserved_at,
            source=data.source,
            plan_purchase_id=data.plan_purchase_id,
            rebooked_from_booking_id=data.rebooked_from_booking_id,
            cancelled_at=data.cancelled_at,
            checked_in_at=data.checked_in_at,
            checked_out_at=data.checked_out_at,
            session_name=data.session_name,
            session_start=data.session_start,
            session_end=data.session_end,
            ticket_token=data.ticket_token,
            ticket_expires_at=data.ticket_expires_at,
        )


@strawberry.type
class BookingEvent:
    id: int
    booking_id: int
    event_type: str
    actor_role: str
    actor_id: Optional[int]
    notes: Optional[str]
    metadata: JSON
    created_at: datetime

    @classmethod
    def from_data(cls, data: BookingEventData) -> "BookingEvent":
        return cls(
            id=data.id,
            booking_id=data.booking_id,
            event_type=data.event_type,
            actor_role=data.actor_role,
            actor_id=data.actor_id,
            notes=data.notes,
            metadata=data.metadata,
            created_at=data.created_at,
        )


@strawberry.type
class SessionAvailability:
    """Capacity snapshot of a session"""
    session_id: int
    name: Optional[str]
    start_at: datetime
    end_at: datetime
    status: str
    capacity: int
    occupancy: int
    available_spots: int
    waitlist_count: int

    @classmethod
    def from_data(cls, data: SessionAvailabilityData) -> "SessionAvailability":
        return cls(
            session_id=data.session_id,
            name=data.name,
            start_at=data.start_at,
            end_at=data.end_at,
            status=data.status,
            capacity=data.capacity,
            occupancy=data.occupancy,
            available_spots=data.available_spots,
            waitlist_count=data.waitlist_count,
        )


# Input types for mutations
@strawberry.input
class ReserveInput:
    """Input for reserving a seat"""
    session_id: int
    client_id: int
    # Staff may pick the plan to charge
    preferred_plan_id: Optional[int] = None


@strawberry.input
class RebookInput:
    booking_id: int
    new_session_id: int
    preferred_plan_id: Optional[int] = None
    notes: Optional[str] = None


@strawberry.input
class CheckInInput:
    """Check in by booking id or by the scanned ticket token"""
    booking_id: Optional[int] = None
    token: Optional[str] = None


# Response types
@strawberry.type
class BookingResponse:
    """Response for reserve and rebook"""
    success: bool
    booking: Optional[Booking]
    message: str
    code: Optional[str] = None
    duplicated: bool = False
    plan_purchase_id: Optional[int] = None
    remaining_classes: Optional[int] = None
    ticket_token: Optional[str] = None


@strawberry.type
class CancelBookingResponse:
    success: bool
    booking: Optional[Booking]
    message: str
    code: Optional[str] = None
    refunded_credit: bool = False
    already_cancelled: bool = False
    promoted_client_id: Optional[int] = None
    promoted_booking_id: Optional[int] = None


@strawberry.type
class CheckInResponse:
    """Response for check-in and check-out"""
    success: bool
    booking: Optional[Booking]
    message: str
    code: Optional[str] = None


@strawberry.type
class BookingsResponse:
    bookings: List[Booking]
    total_count: int
