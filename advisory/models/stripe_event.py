from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String

from .base import Base


class StripeEvent(Base):
    """Stripe webhook event already applied; redeliveries are dropped."""

    __tablename__ = "stripe_events"

    id = Column(String(255), primary_key=True)
    type = Column(String(128), nullable=False)
    received_at = Column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )


__all__ = ["StripeEvent"]
