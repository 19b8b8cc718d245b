"""Retainer session booking.

The entitlement row is read, evaluated and written back in one transaction
together with the new ledger entry. ``users.retainer_version`` is the
optimistic-concurrency token: a concurrent writer makes the UPDATE match no
row, SQLAlchemy raises ``StaleDataError`` and the whole attempt is replayed.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from advisory.metrics import (
    booking_admit_total,
    booking_latency_seconds,
    booking_reject_total,
    entitlement_conflict_total,
)
from advisory.models import Booking, Event, User
from advisory.services import quota
from advisory.services.quota import (
    DEFAULT_LIMITS,
    EntitlementState,
    QuotaLimits,
    QuotaSummary,
    RejectReason,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3


class BookingError(Exception):
    """Base class for booking failures."""


class SubscriberNotFound(BookingError):
    pass


class EntitlementRejected(BookingError):
    def __init__(self, reason: RejectReason, message: str):
        super().__init__(message)
        self.reason = reason
        self.message = message


class EntitlementConflict(BookingError):
    """Concurrent writers kept invalidating the entitlement row."""


@dataclass
class BookingResult:
    booking: Booking
    summary: QuotaSummary
    duplicate: bool = False


def book_retainer_session(
    session_factory: sessionmaker,
    *,
    user_id: str,
    scheduled_at: datetime,
    duration_minutes: int,
    consultation_type: str = "video",
    intake_text: str | None = None,
    request_id: str | None = None,
    now: datetime | None = None,
    limits: QuotaLimits = DEFAULT_LIMITS,
    max_retries: int = DEFAULT_MAX_RETRIES,
) -> BookingResult:
    """Admit and record one retainer session, or raise ``BookingError``."""
    start = time.perf_counter()
    for attempt in range(1, max_retries + 1):
        try:
            with session_factory() as db:
                result = _book_once(
                    db,
                    user_id=user_id,
                    scheduled_at=scheduled_at,
                    duration_minutes=duration_minutes,
                    consultation_type=consultation_type,
                    intake_text=intake_text,
                    request_id=request_id,
                    now=now or datetime.now(timezone.utc),
                    limits=limits,
                )
                db.commit()
        except StaleDataError:
            entitlement_conflict_total.inc()
            logger.warning(
                "entitlement conflict for user %s (attempt %d/%d)",
                user_id,
                attempt,
                max_retries,
            )
            continue
        except IntegrityError:
            # Same request_id committed by a concurrent attempt
            if request_id is None:
                raise
            logger.info("duplicate booking request %s for user %s", request_id, user_id)
            continue

        booking_latency_seconds.observe(time.perf_counter() - start)
        if not result.duplicate:
            booking_admit_total.inc()
            logger.info(
                "retainer session %s booked for user %s (%d used)",
                result.booking.id,
                user_id,
                result.summary.sessions_used,
            )
        return result

    raise EntitlementConflict(
        f"entitlement for user {user_id} changed concurrently {max_retries} times"
    )


def _book_once(
    db: Session,
    *,
    user_id: str,
    scheduled_at: datetime,
    duration_minutes: int,
    consultation_type: str,
    intake_text: str | None,
    request_id: str | None,
    now: datetime,
    limits: QuotaLimits,
) -> BookingResult:
    user = db.query(User).filter_by(id=user_id).with_for_update().first()
    if user is None:
        raise SubscriberNotFound(user_id)

    state = EntitlementState.from_user(user)
    if request_id is not None:
        existing = (
            db.query(Booking).filter_by(user_id=user_id, request_id=request_id).first()
        )
        if existing is not None:
            return BookingResult(
                existing, quota.summarize(state, now, limits), duplicate=True
            )

    decision = quota.evaluate(state, now, limits)
    if isinstance(decision, quota.Reject):
        booking_reject_total.labels(reason=decision.reason.value).inc()
        logger.info("retainer session rejected for user %s: %s", user_id, decision.reason.value)
        raise EntitlementRejected(decision.reason, decision.message)

    booking = Booking(
        user_id=user_id,
        scheduled_at=quota.as_utc(scheduled_at),
        duration_minutes=duration_minutes,
        consultation_type=consultation_type,
        intake_text=intake_text,
        is_retainer_session=True,
        price_paid=0,
        stripe_payment_id=f"retainer_{uuid4().hex}",
        request_id=request_id,
        status="confirmed",
    )
    db.add(booking)
    decision.state.apply_to(user)
    db.add(user)
    db.add(Event(user_id=user_id, event="retainer_session_booked"))
    db.flush()
    return BookingResult(booking, quota.summarize(decision.state, now, limits))


def get_quota_status(
    session_factory: sessionmaker,
    user_id: str,
    *,
    now: datetime | None = None,
    limits: QuotaLimits = DEFAULT_LIMITS,
) -> tuple[EntitlementState, QuotaSummary]:
    with session_factory() as db:
        user = db.get(User, user_id)
        if user is None:
            raise SubscriberNotFound(user_id)
        state = EntitlementState.from_user(user)
    return state, quota.summarize(state, now or datetime.now(timezone.utc), limits)


__all__ = [
    "BookingError",
    "SubscriberNotFound",
    "EntitlementRejected",
    "EntitlementConflict",
    "BookingResult",
    "book_retainer_session",
    "get_quota_status",
]
