"""Notification configuration: default message templates and timeouts."""

from dataclasses import dataclass, field

from django.conf import settings

from apps.orders.domain import OrderStatus


# Placeholders available to templates: order_number, store_name, status,
# total_amount, currency, reason, tracking_number, carrier.
DEFAULT_TEMPLATES: dict[OrderStatus, str] = {
    OrderStatus.PENDING_ADMIN: "Order {order_number} received by {store_name}. We are checking your payment.",
    OrderStatus.PAID: "Payment for order {order_number} confirmed. Total: {total_amount} {currency}.",
    OrderStatus.REJECTED: "Order {order_number} was rejected. Reason: {reason}",
    OrderStatus.SHIPPED: "Order {order_number} has shipped. Tracking: {tracking_number} ({carrier}).",
    OrderStatus.DELIVERED: "Order {order_number} was delivered. Thank you for shopping at {store_name}!",
    OrderStatus.CANCELLED: "Order {order_number} was cancelled. Reason: {reason}",
}


@dataclass(frozen=True)
class NotificationConfig:
    """Settings consumed by ``NotificationDispatcher``.

    Attributes:
        templates: Default message template per status. A store can override
            any of them through ``Store.notification_templates``.
        notifier_timeout: Seconds each notifier gets to finish.
        dispatch_timeout: Upper bound in seconds for the whole fan-out.
    """

    templates: dict = field(default_factory=lambda: dict(DEFAULT_TEMPLATES))
    notifier_timeout: float = 5.0
    dispatch_timeout: float = 8.0

    @classmethod
    def from_settings(cls) -> "NotificationConfig":
        return cls(
            notifier_timeout=float(getattr(settings, "NOTIFICATION_TIMEOUT_SECS", 5)),
            dispatch_timeout=float(getattr(settings, "NOTIFICATION_DISPATCH_TIMEOUT", 8)),
        )
