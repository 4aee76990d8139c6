from decimal import Decimal

import httpx
import pytest

from apps.notifications.notifiers import TelegramDeliveryError, TelegramNotifier
from apps.orders.domain import OrderStatus, StatusNotification
from gateway.middleware import REQUEST_ID_CTX


def notification(**overrides):
    data = dict(
        order_id="o-1",
        order_number="#000001",
        store_id="s-1",
        store_name="Coffee Beans",
        status=OrderStatus.PAID,
        message="Payment confirmed",
        total_amount=Decimal("10.00"),
        currency="USD",
        chat_id="777000",
        bot_token="123:abc",
    )
    data.update(overrides)
    return StatusNotification(**data)


class FakeResponse:
    def __init__(self, status_code, payload=None):
        self.status_code = status_code
        self._payload = payload or {}

    def json(self):
        return self._payload


@pytest.fixture
def no_sleep(monkeypatch):
    sleeps = []
    monkeypatch.setattr("time.sleep", lambda s: sleeps.append(s), raising=True)
    return sleeps


def test_sends_message_with_store_bot_token(monkeypatch, no_sleep):
    calls = []

    def fake_post(self, url, json=None, headers=None, **kwargs):
        calls.append((url, json, headers))
        return FakeResponse(200, {"ok": True})

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    token = REQUEST_ID_CTX.set("req-7")
    try:
        sent = TelegramNotifier(api_base="http://tg").send(notification())
    finally:
        REQUEST_ID_CTX.reset(token)

    assert sent is True
    url, payload, headers = calls[0]
    assert url == "http://tg/bot123:abc/sendMessage"
    assert payload == {"chat_id": "777000", "text": "Payment confirmed"}
    assert headers["X-Request-ID"] == "req-7"
    assert no_sleep == []


def test_stops_after_three_attempts_on_5xx(monkeypatch, no_sleep):
    calls = {"n": 0}

    def fake_post(self, url, json=None, headers=None, **kwargs):
        calls["n"] += 1
        return FakeResponse(502)

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)

    with pytest.raises(TelegramDeliveryError):
        TelegramNotifier(api_base="http://tg", max_attempts=3).send(notification())

    assert calls["n"] == 3
    assert len(no_sleep) == 2


def test_retries_transport_errors_then_succeeds(monkeypatch, no_sleep):
    calls = {"n": 0}

    def fake_post(self, url, json=None, headers=None, **kwargs):
        calls["n"] += 1
        if calls["n"] < 3:
            raise httpx.ConnectError("connection refused")
        return FakeResponse(200)

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)

    assert TelegramNotifier(api_base="http://tg").send(notification()) is True
    assert calls["n"] == 3


def test_no_retry_on_400(monkeypatch, no_sleep):
    calls = {"n": 0}

    def fake_post(self, url, json=None, headers=None, **kwargs):
        calls["n"] += 1
        return FakeResponse(400, {"ok": False, "description": "Bad Request: chat not found"})

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)

    with pytest.raises(TelegramDeliveryError) as exc:
        TelegramNotifier(api_base="http://tg").send(notification())

    assert calls["n"] == 1
    assert no_sleep == []
    assert "123:abc" not in str(exc.value)


def test_rate_limit_honours_retry_after(monkeypatch, no_sleep, settings):
    settings.TELEGRAM_BACKOFF_MAX_SLEEP = 5.0
    responses = [FakeResponse(429, {"ok": False, "parameters": {"retry_after": 3}}), FakeResponse(200)]

    def fake_post(self, url, json=None, headers=None, **kwargs):
        return responses.pop(0)

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)

    assert TelegramNotifier(api_base="http://tg", backoff_base=0).send(notification()) is True
    assert no_sleep == [3.0]


def test_skipped_without_chat_id_or_bot_token(monkeypatch):
    def fail_post(self, *a, **k):
        raise AssertionError("must not call Telegram")

    monkeypatch.setattr(httpx.Client, "post", fail_post, raising=True)

    notifier = TelegramNotifier(api_base="http://tg")
    assert notifier.send(notification(chat_id=None)) is False
    assert notifier.send(notification(bot_token=None)) is False


def test_retries_stop_when_time_budget_is_spent(monkeypatch, no_sleep):
    clock = {"now": 100.0}
    timeouts = []

    def fake_post(self, url, json=None, headers=None, timeout=None, **kwargs):
        timeouts.append(timeout)
        clock["now"] += 3.0
        return FakeResponse(503)

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    monkeypatch.setattr("time.monotonic", lambda: clock["now"], raising=True)

    notifier = TelegramNotifier(api_base="http://tg", timeout=4, max_attempts=3, backoff_base=0.5, budget=5)
    with pytest.raises(TelegramDeliveryError) as exc:
        notifier.send(notification())

    assert "time budget" in str(exc.value)
    assert len(timeouts) == 2
    assert timeouts == [4, 2.0]
