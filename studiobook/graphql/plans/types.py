"""
GraphQL types for plan purchases.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List
import strawberry

from studiobook.crud.planCreditsCrud import PlanPurchaseData
from studiobook.graphql.bookings.types import Booking


@strawberry.type
class PlanPurchase:
    id: int
    client_id: int
    plan_type_id: int
    plan_name: str
    modality: str
    status: str
    initial_classes: Optional[int]
    remaining_classes: int
    unlimited: bool
    start_date: date
    expires_at: Optional[date]
    course_id: Optional[int]
    purchased_at: datetime
    category: Optional[str]

    @classmethod
    def from_data(cls, data: PlanPurchaseData) -> "PlanPurchase":
        return cls(
            id=data.id,
            client_id=data.client_id,
            plan_type_id=data.plan_type_id,
            plan_name=data.plan_name,
            modality=data.modality,
            status=data.status,
            initial_classes=data.initial_classes,
            remaining_classes=data.remaining_classes,
            unlimited=data.is_unlimited,
            start_date=data.start_date,
            expires_at=data.expires_at,
            course_id=data.course_id,
            purchased_at=data.purchased_at,
            category=data.category,
        )


@strawberry.input
class PaymentInput:
    """Confirmed payment reported by the payment integration"""
    amount: Decimal
    currency: str = "MXN"
    status: str = "SUCCESS"
    provider: Optional[str] = None
    provider_ref: Optional[str] = None
    paid_at: Optional[datetime] = None


@strawberry.input
class PurchasePlanInput:
    client_id: int
    plan_type_id: int
    modality: str = "FLEXIBLE"
    course_id: Optional[int] = None
    start_date: Optional[date] = None
    payment: Optional[PaymentInput] = None
    notes: Optional[str] = None


@strawberry.input
class PurchaseFixedPlanInput:
    client_id: int
    plan_type_id: int
    course_id: int
    start_date: Optional[date] = None
    payment: Optional[PaymentInput] = None


@strawberry.type
class PlanPurchaseResponse:
    success: bool
    plan_purchase: Optional[PlanPurchase]
    message: str
    code: Optional[str] = None
    bookings: List[Booking] = strawberry.field(default_factory=list)
    replayed: bool = False
