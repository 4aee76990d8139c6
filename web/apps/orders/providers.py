"""Service provider helpers for wiring the order services with their ports.

``get_transition_service`` returns an ``OrderTransitionService`` backed by the
ORM inventory adjuster, store-role authorization and the notification
dispatcher configured from ``NOTIFICATION_CHANNELS``. Views call these
factories per request so settings overrides (for example in tests) are picked
up without restarting the process.
"""

from apps.notifications.providers import get_dispatcher

from .authorization import StoreRoleAuthorization
from .inventory import InventoryAdjuster
from .service import CheckoutService, OrderTransitionService


def get_transition_service() -> OrderTransitionService:
    """Return a configured OrderTransitionService instance."""
    return OrderTransitionService(
        authorization=StoreRoleAuthorization(),
        inventory=InventoryAdjuster(),
        dispatcher=get_dispatcher(),
    )


def get_checkout_service() -> CheckoutService:
    return CheckoutService()
