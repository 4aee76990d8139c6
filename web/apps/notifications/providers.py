"""Wiring of the notification dispatcher from settings.

``NOTIFICATION_CHANNELS`` lists the notifiers to enable, in order. Known
names are ``telegram``, ``dashboard``, ``email`` and ``log``. The dashboard
channel needs ``REDIS_URL``; without it the channel is left out with a
warning instead of failing every dispatch.
"""

import logging

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

from .adapters import LogNotifier
from .config import NotificationConfig
from .dispatcher import NotificationDispatcher
from .notifiers import DashboardNotifier, EmailNotifier, TelegramNotifier

logger = logging.getLogger(__name__)

NOTIFIER_FACTORIES = {
    "telegram": TelegramNotifier,
    "dashboard": DashboardNotifier,
    "email": EmailNotifier,
    "log": LogNotifier,
}


def configured_channels() -> list[str]:
    channels = getattr(settings, "NOTIFICATION_CHANNELS", ["log"])
    if isinstance(channels, str):
        channels = channels.split(",")
    return [c.strip().lower() for c in channels if c and c.strip()]


def get_dispatcher() -> NotificationDispatcher:
    """Return a ``NotificationDispatcher`` with the configured notifiers.

    Raises:
        ImproperlyConfigured: If a channel name is unknown.
    """
    notifiers = []
    for name in configured_channels():
        factory = NOTIFIER_FACTORIES.get(name)
        if factory is None:
            raise ImproperlyConfigured(f"Unknown notification channel: {name}")
        if name == "dashboard" and not getattr(settings, "REDIS_URL", ""):
            logger.warning("dashboard notifications disabled, REDIS_URL is not set")
            continue
        notifiers.append(factory())
    return NotificationDispatcher(notifiers, NotificationConfig.from_settings())
