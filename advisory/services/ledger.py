"""Booking ledger status transitions and refunds."""
from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session, sessionmaker

from advisory.metrics import refund_total
from advisory.models import Booking, Event
from advisory.services.pricing import PRICE_PER_BLOCK, refund_for_unused_time

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "confirmed": frozenset({"completed", "cancelled", "refunded"}),
    "completed": frozenset({"refunded"}),
    "refunded": frozenset(),
    "cancelled": frozenset(),
}


class LedgerError(Exception):
    """Base class for ledger failures."""


class BookingNotFound(LedgerError):
    pass


class InvalidTransition(LedgerError):
    def __init__(self, current: str, target: str):
        super().__init__(f"cannot move booking from {current} to {target}")
        self.current = current
        self.target = target


class NoRefundApplicable(LedgerError):
    pass


def get_booking(
    db: Session, booking_id: int, user_id: str | None = None, *, lock: bool = False
) -> Booking:
    query = db.query(Booking).filter_by(id=booking_id)
    if user_id is not None:
        query = query.filter_by(user_id=user_id)
    if lock:
        query = query.with_for_update()
    booking = query.first()
    if booking is None:
        raise BookingNotFound(booking_id)
    return booking


def transition(booking: Booking, target: str) -> None:
    if target not in ALLOWED_TRANSITIONS.get(booking.status, frozenset()):
        raise InvalidTransition(booking.status, target)
    booking.status = target
    booking.updated_at = datetime.now(timezone.utc)


def quote_refund(
    booking: Booking,
    actual_duration_minutes: int,
    price_per_block: int = PRICE_PER_BLOCK,
) -> int:
    """Refund owed for unused blocks, never more than what was paid."""
    amount = refund_for_unused_time(
        booking.duration_minutes, actual_duration_minutes, price_per_block
    )
    return min(amount, booking.price_paid or 0)


def change_status(
    session_factory: sessionmaker, booking_id: int, user_id: str, target: str
) -> Booking:
    with session_factory() as db:
        booking = get_booking(db, booking_id, user_id, lock=True)
        transition(booking, target)
        db.add(Event(user_id=user_id, event=f"booking_{target}"))
        db.commit()
        return booking


def refund_booking(
    session_factory: sessionmaker,
    gateway,
    *,
    booking_id: int,
    user_id: str,
    actual_duration_minutes: int,
    price_per_block: int = PRICE_PER_BLOCK,
) -> Booking:
    """Refund the unused part of a paid session through the payment provider.

    The provider call sits outside the DB transaction; its idempotency key is
    derived from the booking id so a retried refund cannot pay out twice.
    """
    with session_factory() as db:
        booking = get_booking(db, booking_id, user_id)
        if "refunded" not in ALLOWED_TRANSITIONS.get(booking.status, frozenset()):
            raise InvalidTransition(booking.status, "refunded")
        amount = quote_refund(booking, actual_duration_minutes, price_per_block)
        payment_id = booking.stripe_payment_id

    if amount <= 0:
        raise NoRefundApplicable(f"no refund applicable for booking {booking_id}")

    refund_id = gateway.create_refund(
        payment_id, amount, idempotency_key=f"refund-{booking_id}"
    )

    # Money has moved: the refund is recorded even if the status changed meanwhile
    with session_factory() as db:
        booking = get_booking(db, booking_id, user_id, lock=True)
        try:
            transition(booking, "refunded")
        except InvalidTransition:
            logger.error(
                "audit: refund %s issued for booking %s but status is now %s",
                refund_id,
                booking_id,
                booking.status,
                extra={"booking_id": booking_id, "user_id": user_id, "refund_id": refund_id},
            )
        booking.actual_duration_minutes = actual_duration_minutes
        booking.refund_amount = amount
        booking.stripe_refund_id = refund_id
        db.add(Event(user_id=user_id, event="booking_refunded"))
        db.commit()

    refund_total.inc()
    logger.info(
        "refunded %d for booking %s (refund %s)",
        amount,
        booking_id,
        refund_id,
        extra={"booking_id": booking_id, "user_id": user_id, "refund_id": refund_id},
    )
    return booking


__all__ = [
    "ALLOWED_TRANSITIONS",
    "LedgerError",
    "BookingNotFound",
    "InvalidTransition",
    "NoRefundApplicable",
    "get_booking",
    "transition",
    "quote_refund",
    "change_status",
    "refund_booking",
]
