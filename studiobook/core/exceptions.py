"""
Domain exceptions for the booking engine.

CRUD functions raise these; the GraphQL layer turns them into failed
responses carrying ``code`` and the REST layer into HTTP errors.
"""
from typing import Any, Dict, Optional

from fastapi import HTTPException


class BookingEngineError(Exception):
    """Base exception for all booking engine errors."""

    code = "ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        if code:
            self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


# Validation

class ValidationError(BookingEngineError):
    """Malformed input or a missing required field."""

    code = "VALIDATION"
    status_code = 400


class ForbiddenError(BookingEngineError):
    """The actor may not perform the operation for this client."""

    code = "FORBIDDEN"
    status_code = 403


# Not found

class NotFoundError(BookingEngineError):
    code = "NOT_FOUND"
    status_code = 404


class TicketNotFoundError(NotFoundError):
    code = "TICKET_NOT_FOUND"


# Conflicts: the request may succeed if retried against fresh state

class ConflictError(BookingEngineError):
    code = "CONFLICT"
    status_code = 409


class CapacityExceededError(ConflictError):
    code = "CAPACITY_EXCEEDED"


class DuplicateBookingError(ConflictError):
    code = "DUPLICATE"


class InvalidTransitionError(ConflictError):
    """Booking status does not allow the requested transition."""

    code = "INVALID_TRANSITION"


class TicketAlreadyUsedError(ConflictError):
    code = "TICKET_ALREADY_USED"


# Business rules: retrying without changing the request will not help

class BusinessRuleError(BookingEngineError):
    code = "BUSINESS_RULE"
    status_code = 422


class PlanExhaustedError(BusinessRuleError):
    code = "PLAN_EXHAUSTED"
    status_code = 402


class PlanExpiredError(BusinessRuleError):
    code = "PLAN_EXPIRED"
    status_code = 402


class NoActivePlanError(BusinessRuleError):
    code = "NO_ACTIVE_PLAN"
    status_code = 402


class PlanNotApplicableError(BusinessRuleError):
    """The plan exists but cannot pay for this session or actor."""

    code = "PLAN_NOT_APPLICABLE"
    status_code = 403


class BookingWindowClosedError(BusinessRuleError):
    code = "BOOKING_WINDOW_CLOSED"
    status_code = 403


class SessionNotBookableError(BusinessRuleError):
    """Session already started or is not scheduled."""

    code = "SESSION_NOT_BOOKABLE"


class InsufficientSessionsError(BusinessRuleError):
    code = "INSUFFICIENT_SESSIONS"


class WaitlistNotNeededError(BusinessRuleError):
    code = "WAITLIST_NOT_NEEDED"


class TicketExpiredError(BusinessRuleError):
    code = "TICKET_EXPIRED"
    status_code = 410


# Infrastructure

class InfrastructureError(BookingEngineError):
    """Storage unavailable."""

    code = "INFRASTRUCTURE"
    status_code = 503


class CompensationError(InfrastructureError):
    """Undoing a partly applied workflow failed; some of its rows remain."""
