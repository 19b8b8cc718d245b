from __future__ import annotations

import pytest
from redis.exceptions import RedisError

from advisory import dependencies
from advisory.main import app
from tests.utils.auth import HEADERS

STATUS_URL = "/v1/retainer/status"


@pytest.fixture(autouse=True)
def subscriber(make_user):
    make_user()


def test_rate_limit_ip(client):
    headers = HEADERS.copy()
    headers["X-Forwarded-For"] = "1.1.1.1"
    for _ in range(30):
        resp = client.get(STATUS_URL, headers=headers)
        assert resp.status_code == 200
    resp = client.get(STATUS_URL, headers=headers)
    assert resp.status_code == 429
    assert resp.json()["detail"]["code"] == "TOO_MANY_REQUESTS"


def test_rate_limit_user(client):
    headers = HEADERS.copy()
    for i in range(120):
        headers["X-Forwarded-For"] = f"10.0.0.{i//30}"
        resp = client.get(STATUS_URL, headers=headers)
        assert resp.status_code == 200
    headers["X-Forwarded-For"] = "10.0.0.4"
    resp = client.get(STATUS_URL, headers=headers)
    assert resp.status_code == 429


def test_rate_limit_redis_unavailable(client):
    class _RedisFail:
        def pipeline(self):
            raise RedisError

    app.dependency_overrides[dependencies.get_redis] = lambda: _RedisFail()
    resp = client.get(STATUS_URL, headers=HEADERS)
    assert resp.status_code == 503
    assert resp.json()["detail"]["code"] == "SERVICE_UNAVAILABLE"


def test_rate_limit_untrusted_proxy(client, monkeypatch):
    headers = HEADERS.copy()
    monkeypatch.setattr(dependencies.settings, "trusted_proxies", ["127.0.0.1"])
    for i in range(30):
        headers["X-Forwarded-For"] = f"1.1.1.{i}"
        resp = client.get(STATUS_URL, headers=headers)
        assert resp.status_code == 200
    headers["X-Forwarded-For"] = "1.1.1.30"
    resp = client.get(STATUS_URL, headers=headers)
    assert resp.status_code == 429


@pytest.mark.parametrize("xff", ["", "   "])
def test_rate_limit_empty_x_forwarded_for(client, xff):
    headers = HEADERS.copy()
    headers["X-Forwarded-For"] = xff
    for _ in range(30):
        resp = client.get(STATUS_URL, headers=headers)
        assert resp.status_code == 200
    resp = client.get(STATUS_URL, headers=headers)
    assert resp.status_code == 429
