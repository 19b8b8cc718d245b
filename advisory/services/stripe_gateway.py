"""Stripe API access.

The gateway is built once per process from ``Settings`` and passed to the
handlers that need it; every request carries its own API key and version
instead of mutating the ``stripe`` module globals.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, NamedTuple

import stripe

from advisory.config import Settings
from advisory.services.pricing import price_for_duration, time_slot_label

logger = logging.getLogger(__name__)

# Stripe metadata values are limited to 500 characters
METADATA_VALUE_MAX = 500
RETAINER_PRODUCT_NAME = "Monthly Advisory Retainer"
CHAT_PRODUCT_NAME = "Advisory Chat Subscription"


class WebhookVerificationError(Exception):
    """Webhook payload or signature could not be verified."""


class CheckoutSession(NamedTuple):
    session_id: str
    url: str | None


class StripeGateway:
    def __init__(
        self,
        api_key: str,
        webhook_secret: str,
        *,
        api_version: str | None = None,
        site_url: str = "http://localhost:8888",
        currency: str = "usd",
        price_per_block: int = 2500,
        retainer_price: int = 100000,
        chat_subscription_price: int = 1400,
        webhook_tolerance: int = 300,
    ):
        self._api_key = api_key
        self._webhook_secret = webhook_secret
        self._api_version = api_version
        self.site_url = site_url.rstrip("/")
        self.currency = currency
        self.price_per_block = price_per_block
        self.retainer_price = retainer_price
        self.chat_subscription_price = chat_subscription_price
        self._webhook_tolerance = webhook_tolerance

    @classmethod
    def from_settings(cls, cfg: Settings) -> "StripeGateway":
        return cls(
            cfg.stripe_secret_key,
            cfg.stripe_webhook_secret,
            api_version=cfg.stripe_api_version,
            site_url=cfg.site_url,
            currency=cfg.currency,
            price_per_block=cfg.price_per_block,
            retainer_price=cfg.retainer_price,
            chat_subscription_price=cfg.chat_subscription_price,
            webhook_tolerance=cfg.stripe_webhook_tolerance_s,
        )

    def _request_opts(self) -> dict[str, Any]:
        opts: dict[str, Any] = {"api_key": self._api_key}
        if self._api_version:
            opts["stripe_version"] = self._api_version
        return opts

    def verify_webhook(self, payload: bytes, sig_header: str | None) -> dict:
        """Check the ``Stripe-Signature`` header and return the decoded event."""
        body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        try:
            stripe.WebhookSignature.verify_header(
                body,
                sig_header or "",
                self._webhook_secret,
                self._webhook_tolerance,
            )
        except stripe.SignatureVerificationError as exc:
            raise WebhookVerificationError(str(exc)) from exc
        try:
            event = json.loads(body)
        except json.JSONDecodeError as exc:
            raise WebhookVerificationError("Malformed JSON body") from exc
        if not isinstance(event, dict) or "type" not in event:
            raise WebhookVerificationError("Payload is not a Stripe event")
        return event

    def create_booking_checkout(
        self,
        *,
        user_id: str,
        email: str | None,
        duration_minutes: int,
        scheduled_at: datetime,
        consultation_type: str = "video",
        intake_text: str | None = None,
    ) -> CheckoutSession:
        amount = price_for_duration(duration_minutes, self.price_per_block)
        channel = "Phone" if consultation_type == "phone" else "Video"
        session = stripe.checkout.Session.create(
            payment_method_types=["card"],
            line_items=[
                {
                    "price_data": {
                        "currency": self.currency,
                        "product_data": {
                            "name": f"Advisory Session - {time_slot_label(duration_minutes)}",
                            "description": f"{channel} consultation on {scheduled_at.date().isoformat()}",
                        },
                        "unit_amount": amount,
                    },
                    "quantity": 1,
                }
            ],
            mode="payment",
            success_url=f"{self.site_url}/dashboard?booking=success",
            cancel_url=f"{self.site_url}/book?cancelled=true",
            customer_email=email,
            client_reference_id=user_id,
            metadata={
                "type": "advisory_session",
                "durationMinutes": str(duration_minutes),
                "scheduledAt": scheduled_at.isoformat(),
                "consultationType": consultation_type,
                "intakeText": (intake_text or "")[:METADATA_VALUE_MAX],
            },
            **self._request_opts(),
        )
        return CheckoutSession(session["id"], session["url"])

    def _subscription_checkout(
        self,
        *,
        kind: str,
        user_id: str,
        email: str | None,
        amount: int,
        product: dict[str, str],
        result_param: str,
    ) -> CheckoutSession:
        price = stripe.Price.create(
            unit_amount=amount,
            currency=self.currency,
            recurring={"interval": "month"},
            product_data=product,
            **self._request_opts(),
        )
        session = stripe.checkout.Session.create(
            payment_method_types=["card"],
            line_items=[{"price": price["id"], "quantity": 1}],
            mode="subscription",
            success_url=f"{self.site_url}/dashboard?{result_param}=success",
            cancel_url=f"{self.site_url}/pricing?cancelled=true",
            customer_email=email,
            client_reference_id=user_id,
            metadata={"type": kind, "userId": user_id},
            subscription_data={"metadata": {"type": kind, "userId": user_id}},
            **self._request_opts(),
        )
        return CheckoutSession(session["id"], session["url"])

    def create_retainer_checkout(self, *, user_id: str, email: str | None) -> CheckoutSession:
        return self._subscription_checkout(
            kind="retainer",
            user_id=user_id,
            email=email,
            amount=self.retainer_price,
            product={"name": RETAINER_PRODUCT_NAME},
            result_param="retainer",
        )

    def create_subscription_checkout(self, *, user_id: str, email: str | None) -> CheckoutSession:
        return self._subscription_checkout(
            kind="subscription",
            user_id=user_id,
            email=email,
            amount=self.chat_subscription_price,
            product={"name": CHAT_PRODUCT_NAME},
            result_param="subscription",
        )

    def retrieve_subscription(self, subscription_id: str) -> dict:
        subscription = stripe.Subscription.retrieve(
            subscription_id,
            expand=["items.data.price.product"],
            **self._request_opts(),
        )
        # str() of a StripeObject is its JSON form; webhook payloads are plain dicts too
        return json.loads(str(subscription))

    def create_refund(
        self, payment_intent: str, amount: int, *, idempotency_key: str | None = None
    ) -> str:
        opts = self._request_opts()
        if idempotency_key:
            opts["idempotency_key"] = idempotency_key
        refund = stripe.Refund.create(
            payment_intent=payment_intent,
            amount=amount,
            reason="requested_by_customer",
            **opts,
        )
        logger.info("stripe refund %s created for %s", refund["id"], payment_intent)
        return refund["id"]


__all__ = [
    "CheckoutSession",
    "StripeGateway",
    "WebhookVerificationError",
    "RETAINER_PRODUCT_NAME",
    "CHAT_PRODUCT_NAME",
]
