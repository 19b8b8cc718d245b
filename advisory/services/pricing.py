"""Pricing for advisory sessions.

All durations are billed in whole 15-minute blocks, rounded up. Amounts are
integers in minor currency units.
"""
from __future__ import annotations

import math

BLOCK_MINUTES = 15
PRICE_PER_BLOCK = 2500  # $25 per 15 minutes
TIME_SLOTS = (15, 30, 45, 60)

_CURRENCY_SYMBOLS = {"usd": "$", "eur": "€", "gbp": "£"}


def blocks_for(minutes: int) -> int:
    """Number of billable blocks for ``minutes``."""
    if minutes < 0:
        raise ValueError("minutes must not be negative")
    return math.ceil(minutes / BLOCK_MINUTES)


def price_for_duration(minutes: int, price_per_block: int = PRICE_PER_BLOCK) -> int:
    """Return the price of a session lasting ``minutes``.

    >>> price_for_duration(16)
    5000
    """
    if minutes <= 0:
        raise ValueError("minutes must be positive")
    return blocks_for(minutes) * price_per_block


def refund_for_unused_time(
    booked_minutes: int,
    used_minutes: int,
    price_per_block: int = PRICE_PER_BLOCK,
) -> int:
    """Return the refund for whole blocks booked but not used.

    Using as much time as booked, or more, gives no refund.
    """
    unused_blocks = blocks_for(booked_minutes) - blocks_for(max(used_minutes, 0))
    if unused_blocks <= 0:
        return 0
    return unused_blocks * price_per_block


def format_price(cents: int, currency: str = "usd") -> str:
    symbol = _CURRENCY_SYMBOLS.get(currency.lower())
    amount = f"{cents / 100:,.2f}"
    if symbol is None:
        return f"{amount} {currency.upper()}"
    return f"{symbol}{amount}"


def time_slot_label(minutes: int) -> str:
    if minutes < 60:
        return f"{minutes} minutes"
    hours, remaining = divmod(minutes, 60)
    if remaining == 0:
        return f"{hours} hour{'s' if hours > 1 else ''}"
    return f"{hours}h {remaining}m"


__all__ = [
    "BLOCK_MINUTES",
    "PRICE_PER_BLOCK",
    "TIME_SLOTS",
    "blocks_for",
    "price_for_duration",
    "refund_for_unused_time",
    "format_price",
    "time_slot_label",
]
