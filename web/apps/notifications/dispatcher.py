"""Fan-out of order status notifications.

``NotificationDispatcher`` implements the orders ``DispatcherPort``. It
renders a ``StatusNotification`` in the calling thread (the only place that
reads the order and its relations), then hands it to every configured
notifier concurrently. Each notifier gets ``notifier_timeout`` seconds and
the whole fan-out never waits longer than ``dispatch_timeout``. Failures
and timeouts are logged as ``NOTIFICATION_DELIVERY_FAILED`` and reported,
never raised.
"""

import contextvars
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout

from apps.orders.domain import (
    NOTIFICATION_DELIVERY_FAILED,
    DispatcherPort,
    DispatchReport,
    OrderStatus,
    StatusNotification,
    TransitionExtras,
)

from .config import NotificationConfig

logger = logging.getLogger(__name__)


class _Placeholders(dict):
    # Unknown placeholders in store templates are left as they are.
    def __missing__(self, key):
        return "{" + key + "}"


class NotificationDispatcher(DispatcherPort):
    """Render once, deliver through many channels.

    Args:
        notifiers: Objects with a ``name`` attribute and a
            ``send(StatusNotification) -> bool`` method. ``send`` returns
            False when it had nothing to deliver (for example no chat id)
            and raises on delivery failure.
        config: Templates and timeouts; ``NotificationConfig()`` if None.
    """

    def __init__(self, notifiers, config: NotificationConfig | None = None):
        self.notifiers = list(notifiers)
        self.config = config or NotificationConfig()

    def template_for(self, store, status: OrderStatus) -> str:
        overrides = getattr(store, "notification_templates", None) or {}
        custom = overrides.get(status.value)
        if isinstance(custom, str) and custom.strip():
            return custom
        return self.config.templates[status]

    def render(self, order, status: OrderStatus, extras: TransitionExtras | None = None) -> StatusNotification:
        """Build the notification for ``order`` entering ``status``."""
        status = OrderStatus(status)
        extras = extras or TransitionExtras()
        store = order.store
        customer = order.customer

        reason = extras.reason or order.rejection_reason or order.cancellation_reason or None
        tracking_number = extras.tracking_number or order.tracking_number or None
        carrier = extras.carrier or order.carrier or None

        values = _Placeholders(
            order_number=order.order_number,
            store_name=store.name,
            status=status.value,
            total_amount=order.total_amount,
            currency=order.currency,
            reason=reason or "-",
            tracking_number=tracking_number or "-",
            carrier=carrier or "-",
        )
        template = self.template_for(store, status)
        try:
            message = template.format_map(values)
        except (IndexError, KeyError, TypeError, ValueError, AttributeError):
            logger.warning(
                "invalid store notification template, using default",
                extra={"store_id": str(store.id), "status": status.value},
            )
            message = self.config.templates[status].format_map(values)

        return StatusNotification(
            order_id=str(order.id),
            order_number=order.order_number,
            store_id=str(store.id),
            store_name=store.name,
            status=status,
            message=message,
            total_amount=order.total_amount,
            currency=order.currency,
            chat_id=customer.telegram_id or None,
            bot_token=store.bot_token or None,
            email=customer.email or None,
            reason=reason,
            tracking_number=tracking_number,
            carrier=carrier,
        )

    def dispatch(self, order, status: OrderStatus, extras: TransitionExtras | None = None) -> DispatchReport:
        """Send the status change through every notifier.

        Returns:
            DispatchReport listing channels by outcome.
        """
        report = DispatchReport()
        if not self.notifiers:
            return report

        notification = self.render(order, status, extras)
        return self.deliver(notification, report)

    def deliver(self, notification: StatusNotification, report: DispatchReport | None = None) -> DispatchReport:
        report = report or DispatchReport()
        cfg = self.config

        executor = ThreadPoolExecutor(max_workers=len(self.notifiers), thread_name_prefix="notify")
        try:
            started = time.monotonic()
            futures = []
            for notifier in self.notifiers:
                # Each worker runs in a copy of the caller's context so the
                # request id reaches log records and outbound headers.
                ctx = contextvars.copy_context()
                futures.append((notifier, executor.submit(ctx.run, notifier.send, notification)))

            hard_deadline = started + cfg.dispatch_timeout
            for notifier, future in futures:
                deadline = min(started + cfg.notifier_timeout, hard_deadline)
                try:
                    sent = future.result(timeout=max(0.0, deadline - time.monotonic()))
                except FuturesTimeout:
                    self._failed(report, notifier, notification, "timeout")
                except Exception as exc:
                    self._failed(report, notifier, notification, f"{type(exc).__name__}: {exc}")
                else:
                    if sent is False:
                        report.skipped.append(notifier.name)
                    else:
                        report.delivered.append(notifier.name)
        finally:
            # Do not block on slow notifiers; their threads finish on their own.
            executor.shutdown(wait=False, cancel_futures=True)

        return report

    def _failed(self, report: DispatchReport, notifier, notification: StatusNotification, cause: str):
        report.failed.append(notifier.name)
        logger.warning(
            NOTIFICATION_DELIVERY_FAILED,
            extra={
                "channel": notifier.name,
                "order_id": notification.order_id,
                "status": notification.status.value,
                "cause": cause,
            },
        )
