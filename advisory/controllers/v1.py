from fastapi import APIRouter

from . import bookings, checkout, webhooks

router = APIRouter(prefix="/v1")
router.include_router(bookings.router)
router.include_router(checkout.router)
# Stripe calls this one directly; it is authenticated by signature, not API key
router.include_router(webhooks.router)
