from enum import Enum


class ErrorCode(str, Enum):
    """Machine-readable codes returned in ``ErrorResponse.code``."""

    BAD_REQUEST = "BAD_REQUEST"
    UNAUTHORIZED = "UNAUTHORIZED"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    TOO_MANY_REQUESTS = "TOO_MANY_REQUESTS"
    UPGRADE_REQUIRED = "UPGRADE_REQUIRED"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    PAYMENT_PROVIDER_ERROR = "PAYMENT_PROVIDER_ERROR"
    NO_REFUND_APPLICABLE = "NO_REFUND_APPLICABLE"
    # Entitlement rejections
    NO_ACTIVE_RETAINER = "NO_ACTIVE_RETAINER"
    PERIOD_EXPIRED = "PERIOD_EXPIRED"
    MONTHLY_LIMIT_REACHED = "MONTHLY_LIMIT_REACHED"
    WEEKLY_LIMIT_REACHED = "WEEKLY_LIMIT_REACHED"


__all__ = ["ErrorCode"]
