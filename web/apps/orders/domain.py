"""Domain types, transition rules and ports for orders.

This module contains the order status enumeration, the allowed-transition
table with its pure validator, small dataclasses used as DTOs between the
service and its collaborators, the ``OrderError`` raised by the service, and
protocol definitions (ports) for inventory, authorization and notification
dispatch. Nothing here touches the database or the network.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, List, Optional, Protocol


# ---- Enums ----
class OrderStatus(str, Enum):
    """Lifecycle states of an order.

    Orders are created as PENDING_ADMIN when a customer checks out through the
    bot and end in DELIVERED, REJECTED or CANCELLED.
    """

    PENDING_ADMIN = "PENDING_ADMIN"
    PAID = "PAID"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


# ---- Error codes ----
NOT_FOUND = "NOT_FOUND"
FORBIDDEN = "FORBIDDEN"
INVALID_TRANSITION = "INVALID_TRANSITION"
INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
NOTIFICATION_DELIVERY_FAILED = "NOTIFICATION_DELIVERY_FAILED"


class OrderError(ValueError):
    """Business error raised by the order service.

    ``str(err)`` is the error code so callers can keep matching on the message
    the same way they match plain ``ValueError("CODE")``.
    """

    def __init__(self, code: str, detail: str | None = None):
        super().__init__(code)
        self.code = code
        self.detail = detail


# ---- Transition table ----
ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING_ADMIN: frozenset({OrderStatus.PAID, OrderStatus.REJECTED}),
    OrderStatus.PAID: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.REJECTED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


@dataclass(frozen=True)
class TransitionCheck:
    """Outcome of validating a requested status change.

    Attributes:
        allowed: True when the transition is in the allowed table.
        reason: ``INVALID_TRANSITION`` on denial, None otherwise.
    """

    allowed: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed


def validate_transition(current: OrderStatus | str, target: OrderStatus | str) -> TransitionCheck:
    """Check whether an order may move from ``current`` to ``target``.

    Same-status requests and backward moves are denied. A denial is returned,
    not raised; unknown status strings raise ``ValueError`` while parsing.

    Args:
        current: Status the order is in.
        target: Requested status.

    Returns:
        TransitionCheck with ``allowed`` set and, on denial, the reason code.
    """
    current, target = OrderStatus(current), OrderStatus(target)
    if target in ALLOWED_TRANSITIONS[current]:
        return TransitionCheck(True)
    return TransitionCheck(False, INVALID_TRANSITION)


def is_allowed_transition(current: OrderStatus | str, target: OrderStatus | str) -> bool:
    return validate_transition(current, target).allowed


def available_transitions(current: OrderStatus | str) -> List[OrderStatus]:
    """Targets reachable from ``current``, in declaration order."""
    allowed = ALLOWED_TRANSITIONS[OrderStatus(current)]
    return [s for s in OrderStatus if s in allowed]


def is_terminal(status: OrderStatus | str) -> bool:
    return not ALLOWED_TRANSITIONS[OrderStatus(status)]


# ---- DTOs ----
@dataclass(frozen=True)
class CheckoutLine:
    """A line requested at checkout, before prices are snapshotted."""

    product_id: Any
    quantity: int
    variant_id: Any = None


@dataclass(frozen=True)
class StockAdjustment:
    """Stock applied for one order line.

    Attributes:
        item_id: Order item primary key.
        product_id: Product whose counter (or whose variant's) moved.
        variant_id: Variant whose own counter moved, or None.
        delta: Signed amount applied (negative for decrements).
    """

    item_id: int
    product_id: Any
    variant_id: Any
    delta: int


@dataclass
class InventoryReport:
    """Lines adjusted and lines skipped by an inventory operation."""

    adjusted: List[StockAdjustment] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "adjusted": [
                {
                    "item_id": a.item_id,
                    "product_id": str(a.product_id),
                    "variant_id": str(a.variant_id) if a.variant_id else None,
                    "delta": a.delta,
                }
                for a in self.adjusted
            ],
            "skipped": list(self.skipped),
        }


@dataclass(frozen=True)
class TransitionExtras:
    """Optional data that travels with a transition request."""

    reason: Optional[str] = None
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    payment_proof: Optional[str] = None


@dataclass(frozen=True)
class StatusNotification:
    """Everything a notifier needs, rendered before fan-out.

    Notifiers run on worker threads and never read the database, so the
    dispatcher resolves the customer, the store credentials and the message
    text up front.
    """

    order_id: str
    order_number: str
    store_id: str
    store_name: str
    status: OrderStatus
    message: str
    total_amount: Decimal
    currency: str
    chat_id: Optional[str] = None
    bot_token: Optional[str] = None
    email: Optional[str] = None
    reason: Optional[str] = None
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None


@dataclass
class DispatchReport:
    """Per-channel outcome of a notification fan-out."""

    delivered: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def delayed(self) -> bool:
        return bool(self.failed)

    def as_dict(self) -> dict:
        return {
            "delivered": list(self.delivered),
            "failed": list(self.failed),
            "skipped": list(self.skipped),
            "delayed": self.delayed,
        }


# ---- Ports (DIP) ----
class InventoryPort(Protocol):
    """Port describing stock operations used by the transition service."""

    def decrement(self, order) -> InventoryReport:
        """Remove each line's quantity from stock.

        Raises:
            OrderError: ``INSUFFICIENT_STOCK`` when a line cannot be covered.
        """
        raise NotImplementedError()

    def restore(self, order) -> InventoryReport:
        """Add back whatever a previous ``decrement`` removed for the order."""
        raise NotImplementedError()


class AuthorizationPort(Protocol):
    """Port deciding whether a caller may move an order of a store."""

    def can_transition(self, caller, store, order) -> bool:
        raise NotImplementedError()


class DispatcherPort(Protocol):
    """Port fanning out a status change to customer and admin channels."""

    def dispatch(self, order, status: OrderStatus, extras: TransitionExtras) -> DispatchReport:
        raise NotImplementedError()
