import itertools
import threading
from datetime import datetime, timedelta, timezone

import pytest

from advisory.models import Booking, Event, User
from advisory.services import quota
from advisory.services.booking import (
    EntitlementConflict,
    EntitlementRejected,
    SubscriberNotFound,
    book_retainer_session,
)
from advisory.services.quota import RejectReason

NOW = datetime.now(timezone.utc)
SLOT = NOW + timedelta(days=2)


def _book(session_factory, user_id="user-1", **kwargs):
    kwargs.setdefault("scheduled_at", SLOT)
    kwargs.setdefault("duration_minutes", 60)
    return book_retainer_session(session_factory, user_id=user_id, **kwargs)


def test_admit_writes_booking_and_entitlement(session_factory, make_user, load_user):
    make_user()
    result = _book(session_factory, intake_text="pricing strategy", consultation_type="phone")

    assert result.duplicate is False
    assert result.summary == quota.QuotaSummary(1, 7, 1)
    assert result.booking.id is not None
    assert result.booking.price_paid == 0
    assert result.booking.is_retainer_session is True
    assert result.booking.stripe_payment_id.startswith("retainer_")

    user = load_user()
    assert user.retainer_sessions_used == 1
    assert user.retainer_sessions_this_week == 1
    assert user.retainer_last_session_week == quota.iso_week_key()
    with session_factory() as db:
        assert db.query(Event).filter_by(event="retainer_session_booked").count() == 1


def test_rejection_leaves_state_untouched(session_factory, make_user, load_user):
    make_user(
        retainer_sessions_used=3,
        retainer_sessions_this_week=2,
        retainer_last_session_week=quota.iso_week_key(),
    )
    with pytest.raises(EntitlementRejected) as exc_info:
        _book(session_factory)

    assert exc_info.value.reason is RejectReason.WEEKLY_LIMIT_REACHED
    user = load_user()
    assert user.retainer_sessions_used == 3
    assert user.retainer_sessions_this_week == 2
    with session_factory() as db:
        assert db.query(Booking).count() == 0


def test_stale_weekly_counter_is_reset_on_admit(session_factory, make_user, load_user):
    make_user(
        retainer_sessions_used=4,
        retainer_sessions_this_week=2,
        retainer_last_session_week="2001-W01",
    )
    result = _book(session_factory)
    assert result.summary.sessions_this_week == 1
    assert load_user().retainer_sessions_this_week == 1


def test_cancelled_retainer_rejected(session_factory, make_user):
    make_user(retainer_active=False)
    with pytest.raises(EntitlementRejected) as exc_info:
        _book(session_factory)
    assert exc_info.value.reason is RejectReason.NO_ACTIVE_RETAINER


def test_unknown_subscriber(session_factory):
    with pytest.raises(SubscriberNotFound):
        _book(session_factory, user_id="nobody")


def test_same_request_id_admits_once(session_factory, make_user, load_user):
    make_user()
    first = _book(session_factory, request_id="req-1")
    second = _book(session_factory, request_id="req-1")

    assert second.duplicate is True
    assert second.booking.id == first.booking.id
    assert load_user().retainer_sessions_used == 1
    with session_factory() as db:
        assert db.query(Booking).count() == 1


def test_concurrent_admits_from_seven_only_one_wins(
    session_factory, make_user, load_user, monkeypatch
):
    make_user(retainer_sessions_used=7)
    barrier = threading.Barrier(2)
    calls = itertools.count()
    real_evaluate = quota.evaluate

    def evaluate_then_wait(state, now, limits=quota.DEFAULT_LIMITS):
        decision = real_evaluate(state, now, limits)
        # Hold both first attempts until each has read sessions_used == 7
        if next(calls) < 2:
            try:
                barrier.wait(timeout=5)
            except threading.BrokenBarrierError:
                pass
        return decision

    monkeypatch.setattr(quota, "evaluate", evaluate_then_wait)

    results, errors = [], []

    def worker():
        try:
            results.append(_book(session_factory))
        except EntitlementRejected as exc:
            errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert len(results) == 1
    assert len(errors) == 1
    assert errors[0].reason is RejectReason.MONTHLY_LIMIT_REACHED
    assert results[0].summary.sessions_used == 8
    assert load_user().retainer_sessions_used == 8
    with session_factory() as db:
        assert db.query(Booking).count() == 1


def test_conflict_budget_exhausted(session_factory, make_user, load_user, monkeypatch):
    make_user()
    real_evaluate = quota.evaluate
    bumps = itertools.count()

    def evaluate_while_another_writer_commits(state, now, limits=quota.DEFAULT_LIMITS):
        with session_factory() as other:
            user = other.get(User, "user-1")
            user.email = f"changed-{next(bumps)}@example.com"
            other.commit()
        return real_evaluate(state, now, limits)

    monkeypatch.setattr(quota, "evaluate", evaluate_while_another_writer_commits)

    with pytest.raises(EntitlementConflict):
        _book(session_factory, max_retries=2)
    assert load_user().retainer_sessions_used == 0
    with session_factory() as db:
        assert db.query(Booking).count() == 0
