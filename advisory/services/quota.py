"""Retainer quota evaluation.

A retainer covers a monthly allowance of sessions with a weekly sub-allowance.
The weekly counter is never reset by a job: it is tagged with the ISO week it
belongs to, and any read in a later week treats it as zero.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import NamedTuple, Union

MONTHLY_LIMIT = 8
WEEKLY_LIMIT = 2


class RejectReason(str, Enum):
    NO_ACTIVE_RETAINER = "NO_ACTIVE_RETAINER"
    PERIOD_EXPIRED = "PERIOD_EXPIRED"
    MONTHLY_LIMIT_REACHED = "MONTHLY_LIMIT_REACHED"
    WEEKLY_LIMIT_REACHED = "WEEKLY_LIMIT_REACHED"


REJECT_MESSAGES = {
    RejectReason.NO_ACTIVE_RETAINER: "No active retainer subscription",
    RejectReason.PERIOD_EXPIRED: "Retainer period has expired",
    RejectReason.MONTHLY_LIMIT_REACHED: "Monthly session limit reached",
    RejectReason.WEEKLY_LIMIT_REACHED: "Weekly session limit reached",
}


@dataclass(frozen=True)
class QuotaLimits:
    monthly: int = MONTHLY_LIMIT
    weekly: int = WEEKLY_LIMIT


DEFAULT_LIMITS = QuotaLimits()


def as_utc(value: datetime | str | None) -> datetime | None:
    """Normalize DB values; SQLite hands back naive datetimes."""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def iso_week_key(dt: datetime | None = None) -> str:
    """Get ISO week key in format YYYY-Www (e.g., 2026-W01)."""
    if dt is None:
        dt = datetime.now(timezone.utc)
    iso_cal = as_utc(dt).astimezone(timezone.utc).isocalendar()
    return f"{iso_cal.year}-W{iso_cal.week:02d}"


@dataclass(frozen=True)
class EntitlementState:
    """Snapshot of a subscriber's retainer entitlement."""

    retainer_active: bool = False
    period_start: datetime | None = None
    period_end: datetime | None = None
    sessions_used_in_period: int = 0
    sessions_used_in_week: int = 0
    last_session_week_key: str | None = None

    @classmethod
    def from_user(cls, user) -> "EntitlementState":
        return cls(
            retainer_active=bool(user.retainer_active),
            period_start=as_utc(user.retainer_period_start),
            period_end=as_utc(user.retainer_period_end),
            sessions_used_in_period=user.retainer_sessions_used or 0,
            sessions_used_in_week=user.retainer_sessions_this_week or 0,
            last_session_week_key=user.retainer_last_session_week,
        )

    def apply_to(self, user) -> None:
        user.retainer_active = self.retainer_active
        user.retainer_period_start = self.period_start
        user.retainer_period_end = self.period_end
        user.retainer_sessions_used = self.sessions_used_in_period
        user.retainer_sessions_this_week = self.sessions_used_in_week
        user.retainer_last_session_week = self.last_session_week_key

    def effective_weekly_usage(self, now: datetime) -> int:
        if self.last_session_week_key != iso_week_key(now):
            return 0
        return self.sessions_used_in_week


@dataclass(frozen=True)
class Admit:
    state: EntitlementState


@dataclass(frozen=True)
class Reject:
    reason: RejectReason

    @property
    def message(self) -> str:
        return REJECT_MESSAGES[self.reason]


Decision = Union[Admit, Reject]


def evaluate(
    state: EntitlementState,
    now: datetime,
    limits: QuotaLimits = DEFAULT_LIMITS,
) -> Decision:
    """Decide whether one more retainer session may be booked at ``now``."""
    now = as_utc(now)
    if not state.retainer_active or state.period_end is None:
        return Reject(RejectReason.NO_ACTIVE_RETAINER)
    if now > state.period_end:
        return Reject(RejectReason.PERIOD_EXPIRED)
    if state.sessions_used_in_period >= limits.monthly:
        return Reject(RejectReason.MONTHLY_LIMIT_REACHED)

    week_key = iso_week_key(now)
    weekly_used = state.effective_weekly_usage(now)
    if weekly_used >= limits.weekly:
        return Reject(RejectReason.WEEKLY_LIMIT_REACHED)

    return Admit(
        replace(
            state,
            sessions_used_in_period=state.sessions_used_in_period + 1,
            sessions_used_in_week=weekly_used + 1,
            last_session_week_key=week_key,
        )
    )


class QuotaSummary(NamedTuple):
    """Usage figures reported back to the client."""

    sessions_used: int
    sessions_remaining: int
    sessions_this_week: int


def summarize(
    state: EntitlementState,
    now: datetime,
    limits: QuotaLimits = DEFAULT_LIMITS,
) -> QuotaSummary:
    used = state.sessions_used_in_period
    return QuotaSummary(
        sessions_used=used,
        sessions_remaining=max(limits.monthly - used, 0),
        sessions_this_week=state.effective_weekly_usage(as_utc(now)),
    )


__all__ = [
    "MONTHLY_LIMIT",
    "WEEKLY_LIMIT",
    "RejectReason",
    "QuotaLimits",
    "DEFAULT_LIMITS",
    "EntitlementState",
    "Admit",
    "Reject",
    "Decision",
    "as_utc",
    "iso_week_key",
    "evaluate",
    "QuotaSummary",
    "summarize",
]
