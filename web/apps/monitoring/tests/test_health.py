import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from apps.monitoring import api


@pytest.mark.django_db
def test_health_reports_db(client):
    r = client.get("/api/health/")
    assert r.status_code == 200
    assert r.json() == {"ok": True, "components": {"db": {"ok": True}}}


@pytest.mark.django_db
def test_health_includes_redis_when_configured(client, settings, monkeypatch):
    settings.REDIS_URL = "redis://localhost:6379/0"

    class Down:
        def ping(self):
            raise RedisConnectionError("refused")

    monkeypatch.setattr(api, "get_redis", lambda: Down())

    r = client.get("/api/health/")

    assert r.status_code == 503
    body = r.json()
    assert body["ok"] is False
    assert body["components"]["redis"] == {"ok": False}
    assert body["components"]["db"] == {"ok": True}


@pytest.mark.django_db
def test_request_id_header_is_generated(client):
    r = client.get("/api/health/")
    assert len(r.headers["X-Request-ID"]) == 36


@pytest.mark.django_db
def test_oversized_api_payload_is_rejected(client, monkeypatch):
    monkeypatch.setattr("gateway.middleware.MAX_API_BYTES", 10)
    r = client.post("/api/orders/checkout/", data={"x": "y" * 100}, content_type="application/json")
    assert r.status_code == 413
    assert r.json()["detail"] == "PAYLOAD_TOO_LARGE"
