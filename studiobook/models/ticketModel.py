"""
Check-in ticket model
"""
from datetime import datetime
from typing import Optional, TYPE_CHECKING
from sqlalchemy import ForeignKey, BigInteger, String, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import TIMESTAMP

from studiobook.core.conversions import utcnow
from studiobook.db.postgresql import Base

if TYPE_CHECKING:
    from studiobook.models.classModel import Booking


class Ticket(Base):
    """Single-use access token for one booking"""

    __tablename__ = "tickets"

    booking_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("bookings.id", ondelete="CASCADE"), primary_key=True, autoincrement=False
    )
    token: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    expires_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    issued_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)
    used_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))

    booking: Mapped["Booking"] = relationship(back_populates="ticket")

    __table_args__ = (
        Index("idx_tickets_expires", "expires_at"),
    )
