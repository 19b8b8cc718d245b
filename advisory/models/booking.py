from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from advisory.models.base import Base

BOOKING_STATUSES = ("confirmed", "completed", "refunded", "cancelled")


class Booking(Base):
    """Ledger entry for a confirmed advisory session."""

    __tablename__ = "bookings"
    __table_args__ = (
        UniqueConstraint("user_id", "request_id", name="uq_bookings_user_request"),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    scheduled_at = Column(DateTime(timezone=True), nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    consultation_type = Column(String(16), nullable=False, default="video")
    intake_text = Column(Text)
    is_retainer_session = Column(Boolean, nullable=False, default=False)
    price_paid = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="usd")
    stripe_payment_id = Column(String(255), unique=True)
    request_id = Column(String(64))
    status = Column(
        Enum(*BOOKING_STATUSES, name="booking_status"),
        nullable=False,
        default="confirmed",
    )
    actual_duration_minutes = Column(Integer)
    refund_amount = Column(Integer)
    stripe_refund_id = Column(String(255))
    created_at = Column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )


__all__ = ["Booking", "BOOKING_STATUSES"]
