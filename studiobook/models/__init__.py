# Booking engine models
from studiobook.models.classModel import (
    Course, ClassSession, Booking, WaitlistEntry, BookingEvent,
    SessionStatus, BookingStatus, BookingSource, WaitlistStatus, BookingEventType
)
from studiobook.models.planModel import (
    PlanType, PlanPurchase, PlanUsage, PlanPayment, PlanModality, PlanStatus
)
from studiobook.models.ticketModel import Ticket

__all__ = [
    "Course", "ClassSession", "Booking", "WaitlistEntry", "BookingEvent",
    "SessionStatus", "BookingStatus", "BookingSource", "WaitlistStatus", "BookingEventType",
    "PlanType", "PlanPurchase", "PlanUsage", "PlanPayment", "PlanModality", "PlanStatus",
    "Ticket",
]
