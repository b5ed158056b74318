"""
Plan catalog, purchases, credit usages and payments
"""
from datetime import datetime, date
from decimal import Decimal
from typing import Optional
from sqlalchemy import (
    Date, ForeignKey, Integer, BigInteger, String, Text, Numeric,
    Boolean, CheckConstraint, Index
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import TIMESTAMP

from studiobook.core.conversions import utcnow
from studiobook.db.postgresql import Base, BigIntPK


class PlanModality:
    FLEXIBLE = "FLEXIBLE"
    FIXED = "FIXED"


class PlanStatus:
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class PlanType(Base):
    """Sellable plan definition"""

    __tablename__ = "plan_types"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    # NULL means unlimited classes
    class_count: Mapped[Optional[int]] = mapped_column(Integer)
    validity_days: Mapped[Optional[int]] = mapped_column(Integer)
    category: Mapped[Optional[str]] = mapped_column(String(60))
    app_only: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="MXN")
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("class_count IS NULL OR class_count > 0", name="ck_plan_type_class_count"),
        CheckConstraint("validity_days IS NULL OR validity_days > 0", name="ck_plan_type_validity"),
    )


class PlanPurchase(Base):
    """A client's purchased plan and its remaining credits"""

    __tablename__ = "plan_purchases"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    client_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    plan_type_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("plan_types.id"), nullable=False)
    modality: Mapped[str] = mapped_column(String(10), nullable=False, default=PlanModality.FLEXIBLE)
    status: Mapped[str] = mapped_column(String(10), nullable=False, default=PlanStatus.ACTIVE)
    # NULL means unlimited; remaining_classes is then ignored
    initial_classes: Mapped[Optional[int]] = mapped_column(Integer)
    remaining_classes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    expires_at: Mapped[Optional[date]] = mapped_column(Date)
    course_id: Mapped[Optional[int]] = mapped_column(BigInteger, ForeignKey("courses.id"))
    purchased_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)

    @property
    def is_unlimited(self) -> bool:
        return self.initial_classes is None

    __table_args__ = (
        CheckConstraint("modality IN ('FLEXIBLE','FIXED')", name="ck_plan_purchase_modality"),
        CheckConstraint("status IN ('ACTIVE','EXPIRED','CANCELLED')", name="ck_plan_purchase_status"),
        CheckConstraint("remaining_classes >= 0", name="ck_plan_purchase_remaining_floor"),
        CheckConstraint(
            "initial_classes IS NULL OR remaining_classes <= initial_classes",
            name="ck_plan_purchase_remaining_cap",
        ),
        CheckConstraint("modality <> 'FIXED' OR course_id IS NOT NULL", name="ck_plan_purchase_fixed_course"),
        Index("idx_plan_purchases_client", "client_id", "status", "expires_at"),
    )


class PlanUsage(Base):
    """One row per credit movement on a plan"""

    __tablename__ = "plan_usages"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    plan_purchase_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("plan_purchases.id", ondelete="CASCADE"), nullable=False)
    booking_id: Mapped[Optional[int]] = mapped_column(BigInteger, ForeignKey("bookings.id", ondelete="SET NULL"))
    session_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("sessions.id"), nullable=False)
    # -1 debit, +1 refund
    credit_delta: Mapped[int] = mapped_column(Integer, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("credit_delta IN (-1, 1)", name="ck_plan_usage_delta"),
        Index("idx_plan_usages_plan", "plan_purchase_id", "id"),
        Index("idx_plan_usages_booking", "booking_id"),
    )


class PlanPayment(Base):
    """Confirmed payment fact received from the payment provider"""

    __tablename__ = "plan_payments"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    plan_purchase_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("plan_purchases.id", ondelete="CASCADE"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="MXN")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="SUCCESS")
    provider: Mapped[Optional[str]] = mapped_column(String(40))
    provider_ref: Mapped[Optional[str]] = mapped_column(String(120), unique=True)
    paid_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_plan_payment_amount"),
    )
