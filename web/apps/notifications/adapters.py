"""In-process notifier for local development and tests.

``LogNotifier`` delivers nothing over the network: it writes the rendered
notification to the log and reports success, which keeps the dispatcher's
fan-out path exercised without Telegram, Redis or SMTP.
"""

import logging

from apps.orders.domain import StatusNotification

logger = logging.getLogger(__name__)


class LogNotifier:
    """Notifier that logs the message at INFO and always succeeds."""

    name = "log"

    def send(self, notification: StatusNotification) -> bool:
        logger.info(
            "order notification",
            extra={
                "order_id": notification.order_id,
                "store_id": notification.store_id,
                "status": notification.status.value,
                "text": notification.message,
            },
        )
        return True
