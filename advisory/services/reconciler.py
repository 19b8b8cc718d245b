"""Apply billing lifecycle events to subscriber state.

Events arrive at least once and in any order. Redeliveries are dropped by
event id; a retainer activation or renewal for a period that ends before the
stored one is discarded so late events cannot roll the period back.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from advisory.metrics import entitlement_conflict_total, webhook_dropped_total
from advisory.models import Booking, Event, StripeEvent, User
from advisory.services.quota import EntitlementState, as_utc

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3


@dataclass(frozen=True)
class RetainerActivated:
    customer_id: str
    user_id: str
    period_start: datetime
    period_end: datetime


@dataclass(frozen=True)
class RetainerRenewed:
    customer_id: str
    period_start: datetime
    period_end: datetime


@dataclass(frozen=True)
class RetainerCancelled:
    customer_id: str


@dataclass(frozen=True)
class ChatSubscriptionActivated:
    customer_id: str
    email: str
    period_end: datetime


@dataclass(frozen=True)
class ChatSubscriptionUpdated:
    customer_id: str
    active: bool
    period_end: datetime | None


@dataclass(frozen=True)
class PaidSessionPurchased:
    user_id: str
    payment_id: str
    amount: int
    currency: str
    duration_minutes: int
    scheduled_at: datetime
    consultation_type: str = "video"
    intake_text: str | None = None


BillingEvent = Union[
    RetainerActivated,
    RetainerRenewed,
    RetainerCancelled,
    ChatSubscriptionActivated,
    ChatSubscriptionUpdated,
    PaidSessionPurchased,
]


class Outcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    STALE = "stale"
    UNMATCHED = "unmatched"


class ReconcileConflict(Exception):
    """Entitlement row kept changing while an event was applied."""


def _stale(user: User, period_end: datetime) -> bool:
    stored = as_utc(user.retainer_period_end)
    return stored is not None and as_utc(period_end) < stored


def _start_period(user: User, period_start: datetime, period_end: datetime) -> bool:
    """Open a new billing period with fresh counters.

    Returns False when ``period_end`` is the one already stored; usage is
    kept and only the active flag is set.
    """
    if as_utc(user.retainer_period_end) == as_utc(period_end):
        user.retainer_active = True
        return False
    EntitlementState(
        retainer_active=True,
        period_start=as_utc(period_start),
        period_end=as_utc(period_end),
    ).apply_to(user)
    return True


class BillingReconciler:
    """Applies billing events, one transaction per event."""

    def __init__(self, session_factory: sessionmaker, *, max_retries: int = DEFAULT_MAX_RETRIES):
        self._session_factory = session_factory
        self._max_retries = max_retries
        self._handlers: dict[type, Callable[[Session, object], Outcome]] = {
            RetainerActivated: self._retainer_activated,
            RetainerRenewed: self._retainer_renewed,
            RetainerCancelled: self._retainer_cancelled,
            ChatSubscriptionActivated: self._chat_activated,
            ChatSubscriptionUpdated: self._chat_updated,
            PaidSessionPurchased: self._paid_session,
        }

    def apply(
        self,
        event: BillingEvent,
        *,
        event_id: str | None = None,
        event_type: str | None = None,
    ) -> Outcome:
        handler = self._handlers[type(event)]
        for attempt in range(1, self._max_retries + 1):
            try:
                with self._session_factory() as db:
                    if event_id is not None and db.get(StripeEvent, event_id) is not None:
                        outcome = Outcome.DUPLICATE
                    else:
                        outcome = handler(db, event)
                        if event_id is not None:
                            db.add(
                                StripeEvent(
                                    id=event_id,
                                    type=event_type or type(event).__name__,
                                )
                            )
                        db.commit()
            except StaleDataError:
                entitlement_conflict_total.inc()
                logger.warning(
                    "entitlement conflict applying %s (attempt %d/%d)",
                    type(event).__name__,
                    attempt,
                    self._max_retries,
                )
                continue
            except IntegrityError:
                if event_id is None:
                    raise
                # A concurrent delivery of the same event committed first
                outcome = Outcome.DUPLICATE

            if outcome is not Outcome.APPLIED:
                webhook_dropped_total.labels(reason=outcome.value).inc()
                logger.info(
                    "billing event %s (%s) dropped: %s",
                    event_id,
                    type(event).__name__,
                    outcome.value,
                )
            return outcome

        raise ReconcileConflict(f"could not apply {type(event).__name__} {event_id}")

    @staticmethod
    def _by_customer(db: Session, customer_id: str) -> User | None:
        return (
            db.query(User)
            .filter_by(stripe_customer_id=customer_id)
            .with_for_update()
            .first()
        )

    def _retainer_activated(self, db: Session, event: RetainerActivated) -> Outcome:
        user = db.query(User).filter_by(id=event.user_id).with_for_update().first()
        if user is None:
            logger.warning("retainer activation for unknown user %s", event.user_id)
            return Outcome.UNMATCHED
        if _stale(user, event.period_end):
            logger.warning(
                "audit: stale retainer activation for user %s ignored", user.id
            )
            return Outcome.STALE
        _start_period(user, event.period_start, event.period_end)
        user.stripe_customer_id = event.customer_id
        db.add(Event(user_id=user.id, event="retainer_activated"))
        return Outcome.APPLIED

    def _retainer_renewed(self, db: Session, event: RetainerRenewed) -> Outcome:
        user = self._by_customer(db, event.customer_id)
        if user is None:
            logger.warning("retainer renewal for unknown customer %s", event.customer_id)
            return Outcome.UNMATCHED
        if _stale(user, event.period_end):
            logger.warning(
                "audit: stale retainer renewal for user %s ignored", user.id
            )
            return Outcome.STALE
        if _start_period(user, event.period_start, event.period_end):
            db.add(Event(user_id=user.id, event="retainer_renewed"))
        return Outcome.APPLIED

    def _retainer_cancelled(self, db: Session, event: RetainerCancelled) -> Outcome:
        user = self._by_customer(db, event.customer_id)
        if user is None:
            logger.warning(
                "retainer cancellation for unknown customer %s", event.customer_id
            )
            return Outcome.UNMATCHED
        user.retainer_active = False
        db.add(Event(user_id=user.id, event="retainer_cancelled"))
        return Outcome.APPLIED

    def _chat_activated(self, db: Session, event: ChatSubscriptionActivated) -> Outcome:
        user = db.query(User).filter_by(email=event.email).first()
        if user is None:
            logger.warning("chat subscription for unknown email")
            return Outcome.UNMATCHED
        user.is_subscribed = True
        user.subscription_expires_at = as_utc(event.period_end)
        user.stripe_customer_id = event.customer_id
        db.add(Event(user_id=user.id, event="chat_subscription_activated"))
        return Outcome.APPLIED

    def _chat_updated(self, db: Session, event: ChatSubscriptionUpdated) -> Outcome:
        user = self._by_customer(db, event.customer_id)
        if user is None:
            logger.warning("chat subscription update for unknown customer %s", event.customer_id)
            return Outcome.UNMATCHED
        user.is_subscribed = event.active
        user.subscription_expires_at = as_utc(event.period_end) if event.active else None
        db.add(
            Event(
                user_id=user.id,
                event="chat_subscription_renewed" if event.active else "chat_subscription_cancelled",
            )
        )
        return Outcome.APPLIED

    def _paid_session(self, db: Session, event: PaidSessionPurchased) -> Outcome:
        if db.query(Booking).filter_by(stripe_payment_id=event.payment_id).first():
            return Outcome.DUPLICATE
        if db.get(User, event.user_id) is None:
            logger.warning("paid session for unknown user %s", event.user_id)
            return Outcome.UNMATCHED
        db.add(
            Booking(
                user_id=event.user_id,
                scheduled_at=as_utc(event.scheduled_at),
                duration_minutes=event.duration_minutes,
                consultation_type=event.consultation_type,
                intake_text=event.intake_text,
                is_retainer_session=False,
                price_paid=event.amount,
                currency=event.currency,
                stripe_payment_id=event.payment_id,
                status="confirmed",
            )
        )
        db.add(Event(user_id=event.user_id, event="paid_session_booked"))
        return Outcome.APPLIED


__all__ = [
    "RetainerActivated",
    "RetainerRenewed",
    "RetainerCancelled",
    "ChatSubscriptionActivated",
    "ChatSubscriptionUpdated",
    "PaidSessionPurchased",
    "BillingEvent",
    "Outcome",
    "ReconcileConflict",
    "BillingReconciler",
]
