"""Translate Stripe webhook events into billing events."""
from __future__ import annotations

import logging
from datetime import datetime, timezone

from advisory.services.reconciler import (
    BillingEvent,
    ChatSubscriptionActivated,
    ChatSubscriptionUpdated,
    PaidSessionPurchased,
    RetainerActivated,
    RetainerCancelled,
    RetainerRenewed,
)

logger = logging.getLogger(__name__)

RETAINER_MARKER = "Retainer"
PAID_SESSION_TYPES = {"booking", "advisory_session"}


class MalformedEvent(ValueError):
    """A verified event is missing fields needed to apply it."""


def _ts(value) -> datetime:
    return datetime.fromtimestamp(int(value), timezone.utc)


def _items(subscription: dict) -> list[dict]:
    return (subscription.get("items") or {}).get("data") or []


def subscription_period(subscription: dict) -> tuple[datetime, datetime]:
    """Current period bounds; newer API versions carry them on the items."""
    start = subscription.get("current_period_start")
    end = subscription.get("current_period_end")
    if start is None or end is None:
        for item in _items(subscription):
            start = start or item.get("current_period_start")
            end = end or item.get("current_period_end")
    if start is None or end is None:
        raise MalformedEvent(f"subscription {subscription.get('id')} has no period")
    return _ts(start), _ts(end)


def is_retainer(subscription: dict) -> bool:
    if (subscription.get("metadata") or {}).get("type") == "retainer":
        return True
    for item in _items(subscription):
        product = (item.get("price") or {}).get("product")
        if isinstance(product, dict) and RETAINER_MARKER in (product.get("name") or ""):
            return True
    return False


def _require(obj: dict, key: str):
    value = obj.get(key)
    if not value:
        raise MalformedEvent(f"{obj.get('object', 'object')} {obj.get('id')} missing {key}")
    return value


def _checkout_completed(session: dict, gateway) -> BillingEvent | None:
    metadata = session.get("metadata") or {}
    kind = metadata.get("type")

    if kind == "retainer":
        subscription = gateway.retrieve_subscription(_require(session, "subscription"))
        start, end = subscription_period(subscription)
        user_id = session.get("client_reference_id") or metadata.get("userId")
        if not user_id:
            raise MalformedEvent(f"checkout {session.get('id')} has no user reference")
        return RetainerActivated(
            customer_id=_require(session, "customer"),
            user_id=user_id,
            period_start=start,
            period_end=end,
        )

    if kind == "subscription":
        subscription = gateway.retrieve_subscription(_require(session, "subscription"))
        _, end = subscription_period(subscription)
        email = session.get("customer_email") or (
            session.get("customer_details") or {}
        ).get("email")
        if not email:
            raise MalformedEvent(f"checkout {session.get('id')} has no customer email")
        return ChatSubscriptionActivated(
            customer_id=_require(session, "customer"),
            email=email,
            period_end=end,
        )

    if kind in PAID_SESSION_TYPES:
        try:
            duration = int(metadata["durationMinutes"])
            scheduled_at = datetime.fromisoformat(metadata["scheduledAt"])
        except (KeyError, TypeError, ValueError) as exc:
            raise MalformedEvent(f"checkout {session.get('id')} has bad metadata") from exc
        return PaidSessionPurchased(
            user_id=_require(session, "client_reference_id"),
            payment_id=_require(session, "payment_intent"),
            amount=int(session.get("amount_total") or 0),
            currency=session.get("currency") or "usd",
            duration_minutes=duration,
            scheduled_at=scheduled_at,
            consultation_type=metadata.get("consultationType") or "video",
            intake_text=metadata.get("intakeText") or None,
        )

    logger.info("checkout %s with unhandled type %r", session.get("id"), kind)
    return None


def _subscription_changed(subscription: dict) -> BillingEvent:
    customer_id = _require(subscription, "customer")
    active = subscription.get("status") == "active"
    if is_retainer(subscription):
        if not active:
            return RetainerCancelled(customer_id=customer_id)
        start, end = subscription_period(subscription)
        return RetainerRenewed(customer_id=customer_id, period_start=start, period_end=end)
    period_end = subscription_period(subscription)[1] if active else None
    return ChatSubscriptionUpdated(customer_id=customer_id, active=active, period_end=period_end)


def _invoice_subscription_id(invoice: dict) -> str | None:
    if invoice.get("subscription"):
        return invoice["subscription"]
    details = (invoice.get("parent") or {}).get("subscription_details") or {}
    return details.get("subscription")


def _invoice_paid(invoice: dict, gateway) -> BillingEvent | None:
    if invoice.get("billing_reason") != "subscription_cycle":
        return None
    subscription_id = _invoice_subscription_id(invoice)
    if not subscription_id:
        return None
    subscription = gateway.retrieve_subscription(subscription_id)
    if not is_retainer(subscription):
        return None
    start, end = subscription_period(subscription)
    return RetainerRenewed(
        customer_id=_require(subscription, "customer"),
        period_start=start,
        period_end=end,
    )


def translate(event: dict, gateway) -> BillingEvent | None:
    """Map a verified Stripe event to a billing event, or ``None`` to ignore it."""
    event_type = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}

    if event_type == "checkout.session.completed":
        return _checkout_completed(obj, gateway)
    if event_type in ("customer.subscription.updated", "customer.subscription.deleted"):
        return _subscription_changed(obj)
    if event_type == "invoice.payment_succeeded":
        return _invoice_paid(obj, gateway)
    if event_type == "invoice.payment_failed":
        logger.warning("payment failed for customer %s", obj.get("customer"))
        return None
    return None


__all__ = [
    "MalformedEvent",
    "subscription_period",
    "is_retainer",
    "translate",
]
