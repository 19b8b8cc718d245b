import asyncio
import logging

import stripe
from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.exc import SQLAlchemyError

from advisory.dependencies import (
    ErrorResponse,
    error,
    get_session_factory,
    get_stripe_gateway,
)
from advisory.metrics import webhook_events_total, webhook_forbidden_total
from advisory.models import ErrorCode
from advisory.services.reconciler import BillingReconciler, ReconcileConflict
from advisory.services.stripe_events import MalformedEvent, translate
from advisory.services.stripe_gateway import WebhookVerificationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/stripe")


def get_reconciler(session_factory=Depends(get_session_factory)) -> BillingReconciler:
    return BillingReconciler(session_factory)


@router.post(
    "/webhook",
    status_code=200,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(None, alias="Stripe-Signature"),
    gateway=Depends(get_stripe_gateway),
    reconciler: BillingReconciler = Depends(get_reconciler),
):
    raw_body = await request.body()
    try:
        event = gateway.verify_webhook(raw_body, stripe_signature)
    except WebhookVerificationError as exc:
        webhook_forbidden_total.inc()
        logger.warning("audit: invalid webhook signature: %s", exc)
        raise error(400, ErrorCode.BAD_REQUEST, f"Webhook Error: {exc}") from exc

    event_id = event.get("id")
    event_type = event["type"]
    webhook_events_total.labels(type=event_type).inc()

    try:
        billing_event = await asyncio.to_thread(translate, event, gateway)
    except MalformedEvent as exc:
        logger.warning("webhook %s (%s) not applicable: %s", event_id, event_type, exc)
        return {"received": True}
    except stripe.StripeError as exc:
        # Non-2xx makes Stripe redeliver once the API is reachable again
        logger.exception("stripe lookup failed for webhook %s", event_id)
        raise error(
            500, ErrorCode.PAYMENT_PROVIDER_ERROR, "Subscription lookup failed"
        ) from exc

    if billing_event is None:
        logger.info("webhook %s (%s) ignored", event_id, event_type)
        return {"received": True}

    try:
        outcome = await asyncio.to_thread(
            reconciler.apply, billing_event, event_id=event_id, event_type=event_type
        )
    except (ReconcileConflict, SQLAlchemyError) as exc:
        logger.exception("failed to apply webhook %s (%s)", event_id, event_type)
        raise error(
            500, ErrorCode.SERVICE_UNAVAILABLE, "Webhook could not be applied"
        ) from exc

    logger.info(
        "webhook %s (%s) %s",
        event_id,
        event_type,
        outcome.value,
        extra={"event_id": event_id, "event_type": event_type},
    )
    return {"received": True}
