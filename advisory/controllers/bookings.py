import asyncio
import json
import logging
from datetime import datetime
from typing import Literal

import stripe
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy.exc import SQLAlchemyError

from advisory.config import Settings
from advisory.dependencies import (
    ErrorResponse,
    error,
    get_session_factory,
    get_stripe_gateway,
    rate_limit,
)
from advisory.models import ErrorCode
from advisory.services import ledger
from advisory.services.booking import (
    EntitlementConflict,
    EntitlementRejected,
    SubscriberNotFound,
    book_retainer_session,
    get_quota_status,
)
from advisory.services.quota import QuotaLimits

settings = Settings()
logger = logging.getLogger(__name__)

router = APIRouter()


class RetainerBookingRequest(BaseModel):
    user_id: str
    scheduled_at: datetime
    duration_minutes: int = Field(gt=0)
    consultation_type: Literal["phone", "video"] = "video"
    intake_text: str | None = Field(default=None, max_length=5000)
    request_id: str | None = Field(default=None, min_length=1, max_length=64)


class BookingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    scheduled_at: datetime
    duration_minutes: int
    consultation_type: str
    intake_text: str | None = None
    is_retainer_session: bool
    price_paid: int
    currency: str
    status: str
    actual_duration_minutes: int | None = None
    refund_amount: int | None = None
    created_at: datetime | None = None


class RetainerStatus(BaseModel):
    sessions_used: int
    sessions_remaining: int
    sessions_this_week: int


class RetainerBookingResponse(BaseModel):
    booking: BookingOut
    retainer_status: RetainerStatus


class RetainerOverview(RetainerStatus):
    retainer_active: bool
    period_start: datetime | None = None
    period_end: datetime | None = None
    monthly_limit: int
    weekly_limit: int


class RefundRequest(BaseModel):
    actual_duration_minutes: int = Field(ge=0)


class RefundResponse(BaseModel):
    booking: BookingOut
    refund_amount: int


def _limits() -> QuotaLimits:
    return QuotaLimits(
        monthly=settings.retainer_monthly_limit,
        weekly=settings.retainer_weekly_limit,
    )


async def _parse_body(request: Request, model: type[BaseModel], message: str):
    try:
        payload = await request.json()
    except json.JSONDecodeError as exc:
        raise error(400, ErrorCode.BAD_REQUEST, "Invalid JSON payload") from exc
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise error(400, ErrorCode.BAD_REQUEST, message) from exc


@router.post(
    "/bookings/retainer",
    response_model=RetainerBookingResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def book_retainer(
    request: Request,
    user_id: str = Depends(rate_limit),
    session_factory=Depends(get_session_factory),
):
    body = await _parse_body(request, RetainerBookingRequest, "Invalid booking data")

    if body.user_id != user_id:
        raise error(401, ErrorCode.UNAUTHORIZED, "User ID mismatch")

    if body.duration_minutes > settings.retainer_max_minutes:
        raise error(
            400,
            ErrorCode.BAD_REQUEST,
            f"Maximum session duration is {settings.retainer_max_minutes} "
            "minutes for retainer users",
        )

    try:
        result = await asyncio.to_thread(
            book_retainer_session,
            session_factory,
            user_id=user_id,
            scheduled_at=body.scheduled_at,
            duration_minutes=body.duration_minutes,
            consultation_type=body.consultation_type,
            intake_text=body.intake_text,
            request_id=body.request_id,
            limits=_limits(),
            max_retries=settings.booking_max_retries,
        )
    except SubscriberNotFound as exc:
        raise error(404, ErrorCode.NOT_FOUND, "User not found") from exc
    except EntitlementRejected as exc:
        raise error(403, exc.reason.value, exc.message) from exc
    except EntitlementConflict as exc:
        logger.error("booking for user %s gave up: %s", user_id, exc)
        raise error(
            503, ErrorCode.SERVICE_UNAVAILABLE, "Booking could not be completed, retry"
        ) from exc
    except SQLAlchemyError as exc:
        logger.exception("booking store failure for user %s", user_id)
        raise error(
            503, ErrorCode.SERVICE_UNAVAILABLE, "Booking store unavailable"
        ) from exc

    return RetainerBookingResponse(
        booking=BookingOut.model_validate(result.booking),
        retainer_status=RetainerStatus(**result.summary._asdict()),
    )


@router.get(
    "/retainer/status",
    response_model=RetainerOverview,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def retainer_status(
    user_id: str = Depends(rate_limit),
    session_factory=Depends(get_session_factory),
):
    limits = _limits()
    try:
        state, summary = await asyncio.to_thread(
            get_quota_status, session_factory, user_id, limits=limits
        )
    except SubscriberNotFound as exc:
        raise error(404, ErrorCode.NOT_FOUND, "User not found") from exc
    return RetainerOverview(
        **summary._asdict(),
        retainer_active=state.retainer_active,
        period_start=state.period_start,
        period_end=state.period_end,
        monthly_limit=limits.monthly,
        weekly_limit=limits.weekly,
    )


@router.get(
    "/bookings/{booking_id}",
    response_model=BookingOut,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def get_booking(
    booking_id: int,
    user_id: str = Depends(rate_limit),
    session_factory=Depends(get_session_factory),
):
    def _db_call():
        with session_factory() as db:
            return BookingOut.model_validate(ledger.get_booking(db, booking_id, user_id))

    try:
        return await asyncio.to_thread(_db_call)
    except ledger.BookingNotFound as exc:
        raise error(404, ErrorCode.NOT_FOUND, "Booking not found") from exc


async def _change_status(session_factory, booking_id: int, user_id: str, target: str):
    try:
        booking = await asyncio.to_thread(
            ledger.change_status, session_factory, booking_id, user_id, target
        )
    except ledger.BookingNotFound as exc:
        raise error(404, ErrorCode.NOT_FOUND, "Booking not found") from exc
    except ledger.InvalidTransition as exc:
        raise error(409, ErrorCode.CONFLICT, str(exc)) from exc
    return BookingOut.model_validate(booking)


_STATUS_RESPONSES = {
    401: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


@router.post(
    "/bookings/{booking_id}/cancel",
    response_model=BookingOut,
    responses=_STATUS_RESPONSES,
)
async def cancel_booking(
    booking_id: int,
    user_id: str = Depends(rate_limit),
    session_factory=Depends(get_session_factory),
):
    return await _change_status(session_factory, booking_id, user_id, "cancelled")


@router.post(
    "/bookings/{booking_id}/complete",
    response_model=BookingOut,
    responses=_STATUS_RESPONSES,
)
async def complete_booking(
    booking_id: int,
    user_id: str = Depends(rate_limit),
    session_factory=Depends(get_session_factory),
):
    return await _change_status(session_factory, booking_id, user_id, "completed")


@router.post(
    "/bookings/{booking_id}/refund",
    response_model=RefundResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
)
async def refund_booking(
    booking_id: int,
    request: Request,
    user_id: str = Depends(rate_limit),
    session_factory=Depends(get_session_factory),
    gateway=Depends(get_stripe_gateway),
):
    body = await _parse_body(request, RefundRequest, "Invalid refund request")
    try:
        booking = await asyncio.to_thread(
            ledger.refund_booking,
            session_factory,
            gateway,
            booking_id=booking_id,
            user_id=user_id,
            actual_duration_minutes=body.actual_duration_minutes,
            price_per_block=settings.price_per_block,
        )
    except ledger.BookingNotFound as exc:
        raise error(404, ErrorCode.NOT_FOUND, "Booking not found") from exc
    except ledger.NoRefundApplicable as exc:
        raise error(400, ErrorCode.NO_REFUND_APPLICABLE, "No refund applicable") from exc
    except ledger.InvalidTransition as exc:
        raise error(409, ErrorCode.CONFLICT, str(exc)) from exc
    except stripe.StripeError as exc:
        logger.exception("stripe refund failed for booking %s", booking_id)
        raise error(
            502, ErrorCode.PAYMENT_PROVIDER_ERROR, "Refund could not be processed"
        ) from exc
    return RefundResponse(
        booking=BookingOut.model_validate(booking), refund_amount=booking.refund_amount
    )
