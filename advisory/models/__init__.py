from .base import Base
from .booking import Booking
from .error_code import ErrorCode
from .event import Event
from .stripe_event import StripeEvent
from .user import User

__all__ = [
    "Base",
    "Booking",
    "ErrorCode",
    "Event",
    "StripeEvent",
    "User",
]
