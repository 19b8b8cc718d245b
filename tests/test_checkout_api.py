from datetime import datetime, timedelta, timezone

import stripe

from tests.utils.auth import HEADERS

SLOT = datetime.now(timezone.utc) + timedelta(days=2)


def test_booking_checkout(client, fake_gateway):
    resp = client.post(
        "/v1/checkout/booking",
        headers=HEADERS,
        json={
            "user_id": "user-1",
            "email": "founder@example.com",
            "duration_minutes": 45,
            "scheduled_at": SLOT.isoformat(),
            "consultation_type": "phone",
        },
    )
    assert resp.status_code == 200
    assert resp.json() == {
        "session_id": "cs_test_booking",
        "url": "https://checkout.stripe.test/booking",
        "amount": 7500,
    }
    kind, kwargs = fake_gateway.checkouts[0]
    assert kind == "booking"
    assert kwargs["user_id"] == "user-1"
    assert kwargs["duration_minutes"] == 45


def test_retainer_checkout(client, fake_gateway):
    resp = client.post(
        "/v1/checkout/retainer",
        headers=HEADERS,
        json={"user_id": "user-1", "email": "founder@example.com"},
    )
    assert resp.status_code == 200
    assert resp.json()["amount"] == 100000
    assert fake_gateway.checkouts == [
        ("retainer", {"user_id": "user-1", "email": "founder@example.com"})
    ]


def test_subscription_checkout(client, fake_gateway):
    resp = client.post(
        "/v1/checkout/subscription",
        headers=HEADERS,
        json={"user_id": "user-1", "email": "founder@example.com"},
    )
    assert resp.status_code == 200
    assert resp.json()["session_id"] == "cs_test_chat"
    assert resp.json()["amount"] == 1400


def test_checkout_missing_fields(client, fake_gateway):
    resp = client.post(
        "/v1/checkout/booking",
        headers=HEADERS,
        json={"user_id": "user-1", "duration_minutes": 30},
    )
    assert resp.status_code == 400
    assert resp.json()["detail"]["message"] == "Missing required fields"
    assert fake_gateway.checkouts == []


def test_checkout_user_mismatch(client, fake_gateway):
    resp = client.post(
        "/v1/checkout/retainer",
        headers=HEADERS,
        json={"user_id": "someone-else", "email": "x@example.com"},
    )
    assert resp.status_code == 401


def test_checkout_provider_failure(client, fake_gateway, monkeypatch):
    def fail(**kwargs):
        raise stripe.APIConnectionError("network down")

    monkeypatch.setattr(fake_gateway, "create_retainer_checkout", fail)
    resp = client.post(
        "/v1/checkout/retainer",
        headers=HEADERS,
        json={"user_id": "user-1", "email": "founder@example.com"},
    )
    assert resp.status_code == 502
    assert resp.json()["detail"]["code"] == "PAYMENT_PROVIDER_ERROR"
