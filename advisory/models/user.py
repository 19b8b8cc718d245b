from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String

from advisory.models.base import Base


class User(Base):
    """Subscriber profile; the ``retainer_*`` columns form the entitlement record."""

    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    email = Column(String(320), index=True)
    stripe_customer_id = Column(String(255), index=True)

    # Chat subscription
    is_subscribed = Column(Boolean, nullable=False, default=False)
    subscription_expires_at = Column(DateTime(timezone=True))

    # Retainer entitlement
    retainer_active = Column(Boolean, nullable=False, default=False)
    retainer_period_start = Column(DateTime(timezone=True))
    retainer_period_end = Column(DateTime(timezone=True))
    retainer_sessions_used = Column(Integer, nullable=False, default=0)
    retainer_sessions_this_week = Column(Integer, nullable=False, default=0)
    retainer_last_session_week = Column(String(8))  # YYYY-Www (ISO week format)
    retainer_version = Column(Integer, nullable=False)

    created_at = Column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    __mapper_args__ = {"version_id_col": retainer_version}


__all__ = ["User"]
