"""Delivery channels for order status notifications.

- ``TelegramNotifier`` calls the Bot API ``sendMessage`` method with the
  store's bot token through ``httpx``. It retries transport errors, 5xx and
  429 responses with exponential backoff and propagates ``X-Request-ID``.
  Other 4xx responses fail at once.
- ``DashboardNotifier`` publishes a JSON event on the store's Redis channel,
  which the dashboard WebSocket gateway relays to connected admins.
- ``EmailNotifier`` sends the message with Django's mail framework.

Notifiers run on dispatcher worker threads and only use the data carried by
the ``StatusNotification``. ``send`` returns True when delivered, False when
there was nothing to deliver, and raises otherwise.
"""

import json
import logging
import time
from typing import Optional, Protocol

import httpx
import redis
from django.conf import settings
from django.core.mail import send_mail

from apps.orders.domain import StatusNotification
from gateway.middleware import REQUEST_ID_CTX

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    name: str

    def send(self, notification: StatusNotification) -> bool:
        raise NotImplementedError()


class TelegramDeliveryError(RuntimeError):
    """Telegram did not accept the message."""


# ---------------- Helpers ---------------- #

def _request_headers(extra: Optional[dict] = None) -> dict:
    """Base headers for outbound calls, with ``X-Request-ID`` when known."""
    headers: dict[str, str] = {}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    if extra:
        headers.update(extra)
    return headers


def _should_retry(resp: Optional[httpx.Response], exc: Optional[Exception]) -> bool:
    """Retry transport errors, 5xx and 429 (rate limited)."""
    if exc is not None:
        return True
    if resp is not None and (resp.status_code == 429 or 500 <= resp.status_code < 600):
        return True
    return False


def _retry_after(resp) -> float:
    """Seconds Telegram asks us to wait on 429, or 0."""
    if resp is None or resp.status_code != 429:
        return 0.0
    try:
        params = resp.json().get("parameters") or {}
        return float(params.get("retry_after") or 0)
    except (ValueError, TypeError, AttributeError):
        return 0.0


# ---------------- Telegram ---------------- #

class TelegramNotifier:
    """Customer notification through the store's Telegram bot."""

    name = "telegram"

    def __init__(
        self,
        api_base: str | None = None,
        timeout: float | None = None,
        max_attempts: int | None = None,
        backoff_base: float | None = None,
        budget: float | None = None,
    ):
        self.api_base = (api_base or getattr(settings, "TELEGRAM_API_BASE", "https://api.telegram.org")).rstrip("/")
        self.timeout = timeout or getattr(settings, "HTTP_TIMEOUT_SECS", 4)
        self.max_attempts = max_attempts or getattr(settings, "TELEGRAM_MAX_ATTEMPTS", 3)
        self.backoff_base = (
            backoff_base if backoff_base is not None else getattr(settings, "TELEGRAM_BACKOFF_BASE", 0.5)
        )
        # Total time for all attempts; matches the dispatcher's per-notifier deadline
        self.budget = budget or getattr(settings, "NOTIFICATION_TIMEOUT_SECS", 5)

    def send(self, notification: StatusNotification) -> bool:
        """Send ``notification.message`` to the customer's chat.

        Returns:
            bool: True when Telegram accepted the message, False when the
            customer has no chat id or the store has no bot token.

        Raises:
            TelegramDeliveryError: On a non-retriable response, when all
                attempts failed or when the time budget ran out.
        """
        if not notification.chat_id or not notification.bot_token:
            return False

        # The token is part of the URL; never log the URL itself.
        url = f"{self.api_base}/bot{notification.bot_token}/sendMessage"
        payload = {"chat_id": notification.chat_id, "text": notification.message}
        headers = _request_headers()
        cap = getattr(settings, "TELEGRAM_BACKOFF_MAX_SLEEP", 2.0)
        tries = 0
        deadline = time.monotonic() + self.budget

        with httpx.Client(timeout=self.timeout) as client:
            while True:
                resp = None
                exc = None
                try:
                    remaining = max(deadline - time.monotonic(), 0.1)
                    resp = client.post(
                        url, json=payload, headers=headers or None, timeout=min(self.timeout, remaining)
                    )
                    if 200 <= resp.status_code < 300:
                        if tries:
                            logger.info(
                                "telegram message delivered after retry",
                                extra={"order_id": notification.order_id, "attempts": tries + 1},
                            )
                        return True
                    if not _should_retry(resp, None):
                        raise TelegramDeliveryError(f"telegram responded {resp.status_code}")
                except httpx.RequestError as e:
                    exc = e

                tries += 1
                if tries >= self.max_attempts:
                    if exc is not None:
                        raise TelegramDeliveryError(f"transport error: {type(exc).__name__}") from exc
                    raise TelegramDeliveryError(
                        f"telegram responded {resp.status_code} after {tries} attempts"
                    )

                sleep_s = min(max(self.backoff_base * (2 ** (tries - 1)), _retry_after(resp)), cap)
                if time.monotonic() + sleep_s >= deadline:
                    raise TelegramDeliveryError(f"gave up after {tries} attempts, time budget exhausted")
                time.sleep(sleep_s)


# ---------------- Dashboard (Redis pub/sub) ---------------- #

_redis: redis.Redis | None = None


def get_redis() -> redis.Redis:
    global _redis
    if _redis is None:
        _redis = redis.Redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_timeout=getattr(settings, "HTTP_TIMEOUT_SECS", 4),
        )
    return _redis


def dashboard_channel(store_id) -> str:
    return f"store:{store_id}:orders"


class DashboardNotifier:
    """Real-time event for the store's dashboard sessions."""

    name = "dashboard"

    def __init__(self, client: redis.Redis | None = None):
        self._client = client

    @property
    def client(self) -> redis.Redis:
        return self._client if self._client is not None else get_redis()

    def send(self, notification: StatusNotification) -> bool:
        event = {
            "type": "order.status_changed",
            "order_id": notification.order_id,
            "order_number": notification.order_number,
            "status": notification.status.value,
            "total_amount": str(notification.total_amount),
            "currency": notification.currency,
            "message": notification.message,
            "request_id": REQUEST_ID_CTX.get(),
        }
        self.client.publish(dashboard_channel(notification.store_id), json.dumps(event))
        return True


# ---------------- Email ---------------- #

class EmailNotifier:
    """Email copy of the status message for customers with an address."""

    name = "email"

    def send(self, notification: StatusNotification) -> bool:
        if not notification.email:
            return False
        send_mail(
            subject=f"{notification.store_name}: order {notification.order_number} {notification.status.value.lower()}",
            message=notification.message,
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[notification.email],
            fail_silently=False,
        )
        return True
