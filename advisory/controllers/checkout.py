import asyncio
import json
import logging
from datetime import datetime
from typing import Literal

import stripe
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field, ValidationError

from advisory.dependencies import ErrorResponse, error, get_stripe_gateway, rate_limit
from advisory.models import ErrorCode
from advisory.services.pricing import price_for_duration

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/checkout")


class BookingCheckoutRequest(BaseModel):
    user_id: str
    email: str | None = None
    duration_minutes: int = Field(gt=0)
    scheduled_at: datetime
    consultation_type: Literal["phone", "video"] = "video"
    intake_text: str | None = None


class SubscriptionCheckoutRequest(BaseModel):
    user_id: str
    email: str = Field(min_length=3)


class CheckoutResponse(BaseModel):
    session_id: str
    url: str | None = None
    amount: int | None = None


async def _parse_checkout(request: Request, user_id: str, model: type[BaseModel]):
    try:
        payload = await request.json()
    except json.JSONDecodeError as exc:
        raise error(400, ErrorCode.BAD_REQUEST, "Invalid JSON payload") from exc
    try:
        body = model.model_validate(payload)
    except ValidationError as exc:
        raise error(400, ErrorCode.BAD_REQUEST, "Missing required fields") from exc
    if body.user_id != user_id:
        raise error(401, ErrorCode.UNAUTHORIZED, "User ID mismatch")
    return body


async def _create(func, **kwargs):
    try:
        return await asyncio.to_thread(func, **kwargs)
    except stripe.StripeError as exc:
        logger.exception("stripe checkout creation failed")
        raise error(
            502, ErrorCode.PAYMENT_PROVIDER_ERROR, "Checkout could not be created"
        ) from exc


_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
}


@router.post("/booking", response_model=CheckoutResponse, responses=_RESPONSES)
async def booking_checkout(
    request: Request,
    user_id: str = Depends(rate_limit),
    gateway=Depends(get_stripe_gateway),
):
    body = await _parse_checkout(request, user_id, BookingCheckoutRequest)
    session = await _create(
        gateway.create_booking_checkout,
        user_id=user_id,
        email=body.email,
        duration_minutes=body.duration_minutes,
        scheduled_at=body.scheduled_at,
        consultation_type=body.consultation_type,
        intake_text=body.intake_text,
    )
    return CheckoutResponse(
        session_id=session.session_id,
        url=session.url,
        amount=price_for_duration(body.duration_minutes, gateway.price_per_block),
    )


@router.post("/retainer", response_model=CheckoutResponse, responses=_RESPONSES)
async def retainer_checkout(
    request: Request,
    user_id: str = Depends(rate_limit),
    gateway=Depends(get_stripe_gateway),
):
    body = await _parse_checkout(request, user_id, SubscriptionCheckoutRequest)
    session = await _create(
        gateway.create_retainer_checkout, user_id=user_id, email=body.email
    )
    return CheckoutResponse(
        session_id=session.session_id, url=session.url, amount=gateway.retainer_price
    )


@router.post("/subscription", response_model=CheckoutResponse, responses=_RESPONSES)
async def subscription_checkout(
    request: Request,
    user_id: str = Depends(rate_limit),
    gateway=Depends(get_stripe_gateway),
):
    body = await _parse_checkout(request, user_id, SubscriptionCheckoutRequest)
    session = await _create(
        gateway.create_subscription_checkout, user_id=user_id, email=body.email
    )
    return CheckoutResponse(
        session_id=session.session_id,
        url=session.url,
        amount=gateway.chat_subscription_price,
    )


__all__ = ["router", "CheckoutResponse"]
