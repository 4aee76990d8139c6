"""Order services: checkout from the bot and status transitions.

``OrderTransitionService`` is the payment verification handler. It checks the
caller's authority over the order's store, then in a single database
transaction locks the order row, re-validates the requested transition,
adjusts inventory and persists the new status. Notifications are dispatched
only after the transaction committed; their failure is reported, never
raised.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from django.db import IntegrityError, transaction
from django.utils import timezone

from apps.stores.models import Customer, Product, ProductVariant, Store

from .domain import (
    FORBIDDEN,
    INSUFFICIENT_STOCK,
    INVALID_TRANSITION,
    NOT_FOUND,
    NOTIFICATION_DELIVERY_FAILED,
    AuthorizationPort,
    CheckoutLine,
    DispatcherPort,
    DispatchReport,
    InventoryPort,
    InventoryReport,
    OrderError,
    OrderStatus,
    TransitionExtras,
    validate_transition,
)
from .models import OrderModel
from .repository import OrderRepository

logger = logging.getLogger(__name__)

EMPTY_ORDER = "EMPTY_ORDER"
INVALID_ITEM = "INVALID_ITEM"
ORDER_NOT_PENDING = "ORDER_NOT_PENDING"


@dataclass
class TransitionResult:
    order: OrderModel
    previous_status: OrderStatus
    inventory: InventoryReport = field(default_factory=InventoryReport)
    notifications: DispatchReport = field(default_factory=DispatchReport)


def _lifecycle_fields(target: OrderStatus, extras: TransitionExtras, now) -> dict:
    """Columns written together with the status for each target."""
    if target is OrderStatus.PAID:
        fields = {"paid_at": now}
        if extras.payment_proof:
            fields["payment_proof"] = extras.payment_proof
        return fields
    if target is OrderStatus.REJECTED:
        return {"rejected_at": now, "rejection_reason": extras.reason or ""}
    if target is OrderStatus.SHIPPED:
        return {
            "shipped_at": now,
            "tracking_number": extras.tracking_number or "",
            "carrier": extras.carrier or "",
        }
    if target is OrderStatus.DELIVERED:
        return {"delivered_at": now}
    if target is OrderStatus.CANCELLED:
        return {"cancelled_at": now, "cancellation_reason": extras.reason or ""}
    return {}


class OrderTransitionService:
    """Move orders through their lifecycle on behalf of store administrators.

    Args:
        authorization: Decides whether a caller may act on a store's order.
        inventory: Decrements stock on payment, restores it on cancellation.
        dispatcher: Fans out notifications after commit.
        repository: Order persistence; a default ``OrderRepository`` if None.
    """

    def __init__(
        self,
        authorization: AuthorizationPort,
        inventory: InventoryPort,
        dispatcher: DispatcherPort,
        repository: OrderRepository | None = None,
    ):
        self.authorization = authorization
        self.inventory = inventory
        self.dispatcher = dispatcher
        self.repository = repository or OrderRepository()

    def transition(self, order_id, target, caller, extras: TransitionExtras | None = None) -> TransitionResult:
        """Apply a status change to an order.

        Args:
            order_id: Order UUID (or its string form).
            target: Requested ``OrderStatus`` (or its value).
            caller: Authenticated user performing the action.
            extras: Reason, tracking data or payment proof.

        Returns:
            TransitionResult with the reloaded order, the inventory report and
            the notification report.

        Raises:
            OrderError: With one of the following codes.
                'NOT_FOUND' if the order does not exist.
                'FORBIDDEN' if the caller has no authority over the store.
                'INVALID_TRANSITION' if the table denies the change, including
                when a concurrent request already moved the order.
                'INSUFFICIENT_STOCK' if a line cannot be covered on PAID.
        """
        target = OrderStatus(target)
        extras = extras or TransitionExtras()

        order = self.repository.get(order_id)
        if order is None:
            raise OrderError(NOT_FOUND)
        if not self.authorization.can_transition(caller, order.store, order):
            raise OrderError(FORBIDDEN)

        with transaction.atomic():
            locked = self.repository.lock(order.id)
            if locked is None:
                raise OrderError(NOT_FOUND)
            current = OrderStatus(locked.status)

            check = validate_transition(current, target)
            if not check:
                raise OrderError(check.reason, f"{current.value} -> {target.value}")

            inventory = InventoryReport()
            if target is OrderStatus.PAID:
                inventory = self.inventory.decrement(locked)
            elif target is OrderStatus.CANCELLED and current is OrderStatus.PAID:
                inventory = self.inventory.restore(locked)

            fields = _lifecycle_fields(target, extras, timezone.now())
            if not self.repository.compare_and_set_status(locked.id, current, target, fields):
                raise OrderError(INVALID_TRANSITION, "order changed concurrently")
            self.repository.log_transition(locked, current, target, caller, extras.reason)

        order = self.repository.get(order.id)
        logger.info(
            "order status changed",
            extra={
                "order_id": str(order.id),
                "store_id": str(order.store_id),
                "from_status": current.value,
                "to_status": target.value,
                "actor_id": getattr(caller, "pk", None),
                "skipped_lines": inventory.skipped,
            },
        )

        notifications = self._notify(order, target, extras)
        return TransitionResult(order, current, inventory, notifications)

    def _notify(self, order, target: OrderStatus, extras: TransitionExtras) -> DispatchReport:
        # The status change is committed; nothing here may undo or fail it.
        try:
            return self.dispatcher.dispatch(order, target, extras)
        except Exception:
            logger.exception(
                NOTIFICATION_DELIVERY_FAILED,
                extra={"order_id": str(order.id), "channel": "dispatcher", "status": target.value},
            )
            return DispatchReport(failed=["dispatcher"])


class CheckoutService:
    """Create ``PENDING_ADMIN`` orders for customers checking out in the bot.

    Prices are snapshotted from the catalog at this point and stock is only
    checked, not reserved: it is decremented when an administrator confirms
    the payment.
    """

    def __init__(self, repository: OrderRepository | None = None):
        self.repository = repository or OrderRepository()

    def checkout(self, store_id, customer: dict, lines: list[CheckoutLine], notes=None, client_request_id=None):
        """Validate lines, snapshot prices and persist the order.

        Args:
            store_id: Store UUID.
            customer: Telegram identity fields (``telegram_id`` required).
            lines: Requested ``CheckoutLine`` items.
            notes: Optional customer note.
            client_request_id: Optional bot-side dedup id.

        Returns:
            tuple[OrderModel, bool]: The order and whether it was created by
            this call (False when ``client_request_id`` matched an order).

        Raises:
            OrderError: 'NOT_FOUND' (store), 'EMPTY_ORDER', 'INVALID_ITEM'
                (unknown product/variant or inactive product) or
                'INSUFFICIENT_STOCK'.
        """
        store = Store.objects.filter(id=store_id).first()
        if store is None:
            raise OrderError(NOT_FOUND, "store")
        if not lines:
            raise OrderError(EMPTY_ORDER)

        if client_request_id:
            existing = self.repository.find_by_client_request(store, client_request_id)
            if existing is not None:
                return existing, False

        resolved = []
        total = Decimal("0")
        for line in lines:
            product = Product.objects.filter(id=line.product_id, store=store, is_active=True).first()
            if product is None:
                raise OrderError(INVALID_ITEM, f"product {line.product_id}")
            variant = None
            if line.variant_id is not None:
                variant = ProductVariant.objects.filter(id=line.variant_id, product=product).first()
                if variant is None:
                    raise OrderError(INVALID_ITEM, f"variant {line.variant_id}")

            if product.track_stock:
                available = variant.stock if variant is not None and variant.stock is not None else product.stock
                if available < line.quantity:
                    raise OrderError(
                        INSUFFICIENT_STOCK,
                        f"{product.name}: available {available}, requested {line.quantity}",
                    )

            unit_price = variant.effective_price if variant is not None else product.price
            total += unit_price * line.quantity
            resolved.append((product, variant, line.quantity, unit_price))

        try:
            order = self._persist(store, customer, resolved, total, notes, client_request_id)
        except IntegrityError:
            # A concurrent checkout with the same client_request_id won the insert.
            if not client_request_id:
                raise
            existing = self.repository.find_by_client_request(store, client_request_id)
            if existing is None:
                raise
            return existing, False

        logger.info(
            "order created",
            extra={"order_id": str(order.id), "store_id": str(store.id), "total": str(total)},
        )
        return self.repository.get(order.id), True

    @transaction.atomic
    def _persist(self, store, customer, resolved, total, notes, client_request_id):
        """Upsert the customer and insert the order with its lines."""
        buyer, _ = Customer.objects.get_or_create(telegram_id=customer["telegram_id"])
        changed = []
        for name in ("username", "first_name", "last_name", "email"):
            value = customer.get(name)
            if value and getattr(buyer, name) != value:
                setattr(buyer, name, value)
                changed.append(name)
        if changed:
            buyer.save(update_fields=changed)

        return self.repository.create(
            store, buyer, resolved, total, notes=notes, client_request_id=client_request_id
        )

    def attach_payment_proof(self, order_id, telegram_id: str, reference: str) -> OrderModel:
        """Record the customer's payment proof on a pending order.

        Raises:
            OrderError: 'NOT_FOUND', 'FORBIDDEN' (order of another customer)
                or 'ORDER_NOT_PENDING'.
        """
        order = self.repository.get(order_id)
        if order is None:
            raise OrderError(NOT_FOUND)
        if order.customer.telegram_id != str(telegram_id):
            raise OrderError(FORBIDDEN)
        if not self.repository.set_payment_proof(order.id, reference):
            raise OrderError(ORDER_NOT_PENDING)
        logger.info("payment proof attached", extra={"order_id": str(order.id)})
        return self.repository.get(order.id)
