from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from advisory.services.quota import (
    Admit,
    EntitlementState,
    QuotaLimits,
    Reject,
    RejectReason,
    evaluate,
    iso_week_key,
    summarize,
)

# Monday, ISO week 10 of 2026
MONDAY = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)


def _state(**overrides) -> EntitlementState:
    base = EntitlementState(
        retainer_active=True,
        period_start=MONDAY - timedelta(days=1),
        period_end=MONDAY + timedelta(days=40),
    )
    return replace(base, **overrides)


def test_iso_week_key_format():
    assert iso_week_key(MONDAY) == "2026-W10"
    # 2027-01-01 is a Friday that belongs to the last ISO week of 2026
    assert iso_week_key(datetime(2027, 1, 1, tzinfo=timezone.utc)) == "2026-W53"


def test_iso_week_key_uses_utc():
    late_sunday_ny = datetime(2026, 3, 1, 23, 30, tzinfo=timezone(timedelta(hours=-5)))
    assert iso_week_key(late_sunday_ny) == "2026-W10"


def test_inactive_retainer_rejected():
    decision = evaluate(_state(retainer_active=False), MONDAY)
    assert decision == Reject(RejectReason.NO_ACTIVE_RETAINER)


def test_missing_period_end_rejected():
    decision = evaluate(_state(period_end=None), MONDAY)
    assert decision == Reject(RejectReason.NO_ACTIVE_RETAINER)


def test_expired_period_rejected():
    decision = evaluate(_state(period_end=MONDAY - timedelta(seconds=1)), MONDAY)
    assert decision == Reject(RejectReason.PERIOD_EXPIRED)


@pytest.mark.parametrize("weekly, week_key", [(0, None), (1, "2026-W10"), (2, "2026-W09")])
def test_monthly_cap_wins_regardless_of_weekly(weekly, week_key):
    state = _state(
        sessions_used_in_period=8,
        sessions_used_in_week=weekly,
        last_session_week_key=week_key,
    )
    assert evaluate(state, MONDAY) == Reject(RejectReason.MONTHLY_LIMIT_REACHED)


def test_stale_week_key_counts_as_zero():
    state = _state(
        sessions_used_in_period=3,
        sessions_used_in_week=2,
        last_session_week_key="2026-W09",
    )
    assert state.effective_weekly_usage(MONDAY) == 0
    decision = evaluate(state, MONDAY)
    assert isinstance(decision, Admit)
    assert decision.state.sessions_used_in_week == 1
    assert decision.state.last_session_week_key == "2026-W10"


def test_current_week_limit_rejects():
    state = _state(
        sessions_used_in_period=2,
        sessions_used_in_week=2,
        last_session_week_key="2026-W10",
    )
    assert evaluate(state, MONDAY) == Reject(RejectReason.WEEKLY_LIMIT_REACHED)


def test_admit_does_not_touch_period_or_flag():
    state = _state()
    decision = evaluate(state, MONDAY)
    assert isinstance(decision, Admit)
    assert decision.state.retainer_active is True
    assert decision.state.period_end == state.period_end
    assert decision.state.sessions_used_in_period == 1
    # original snapshot is untouched
    assert state.sessions_used_in_period == 0


def test_sequential_admits_across_weeks_reach_monthly_cap():
    state = _state()
    admitted = 0
    for week in range(5):
        now = MONDAY + timedelta(weeks=week)
        for attempt in range(8):
            decision = evaluate(state, now + timedelta(minutes=attempt))
            if week < 4 and attempt < 2:
                assert isinstance(decision, Admit)
                state = decision.state
                admitted += 1
            elif admitted < 8:
                assert decision == Reject(RejectReason.WEEKLY_LIMIT_REACHED)
            else:
                # monthly cap is checked before the weekly one
                assert decision == Reject(RejectReason.MONTHLY_LIMIT_REACHED)
    assert admitted == 8
    assert state.sessions_used_in_period == 8


def test_custom_limits():
    limits = QuotaLimits(monthly=1, weekly=1)
    decision = evaluate(_state(), MONDAY, limits)
    assert isinstance(decision, Admit)
    assert evaluate(decision.state, MONDAY + timedelta(weeks=1), limits) == Reject(
        RejectReason.MONTHLY_LIMIT_REACHED
    )


def test_summary_uses_effective_weekly_usage():
    state = _state(
        sessions_used_in_period=5,
        sessions_used_in_week=2,
        last_session_week_key="2026-W09",
    )
    summary = summarize(state, MONDAY)
    assert summary.sessions_used == 5
    assert summary.sessions_remaining == 3
    assert summary.sessions_this_week == 0


def test_reject_message():
    assert Reject(RejectReason.WEEKLY_LIMIT_REACHED).message.startswith("Weekly")
