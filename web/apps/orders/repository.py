"""Repository layer for persisting orders.

This module keeps the Django ORM details of reading, locking and updating
orders out of the services. Status changes go through
``compare_and_set_status`` only: the update is conditioned on the status the
caller read, so a concurrent writer that got there first makes it a no-op.
"""

import uuid
from decimal import Decimal

from django.utils import timezone

from .domain import OrderStatus, available_transitions
from .models import OrderItemModel, OrderModel, OrderStatusLog
from .schemas import OrderItemReadDTO, OrderReadDTO


def _as_uuid(value):
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


class OrderRepository:
    """Repository that reads and writes ``OrderModel`` rows."""

    def get(self, order_id) -> OrderModel | None:
        """Fetch an order with its store and customer, or None."""
        oid = _as_uuid(order_id)
        if oid is None:
            return None
        return OrderModel.objects.select_related("store", "customer").filter(id=oid).first()

    def lock(self, order_id) -> OrderModel | None:
        """Fetch an order holding its row lock until the transaction ends.

        Must be called inside ``transaction.atomic()``.
        """
        oid = _as_uuid(order_id)
        if oid is None:
            return None
        return OrderModel.objects.select_for_update().filter(id=oid).first()

    def compare_and_set_status(
        self, order_id, expected: OrderStatus, target: OrderStatus, fields: dict | None = None
    ) -> bool:
        """Move the order to ``target`` if it is still in ``expected``.

        Args:
            order_id: Order primary key.
            expected: Status the caller validated against.
            target: New status.
            fields: Extra columns to write alongside the status.

        Returns:
            True when exactly one row was updated.
        """
        updated = OrderModel.objects.filter(id=order_id, status=expected.value).update(
            status=target.value, updated_at=timezone.now(), **(fields or {})
        )
        return updated == 1

    def log_transition(self, order, from_status: OrderStatus, to_status: OrderStatus, actor, reason=None):
        return OrderStatusLog.objects.create(
            order=order,
            from_status=from_status.value,
            to_status=to_status.value,
            actor=actor if getattr(actor, "pk", None) else None,
            reason=reason or "",
        )

    def find_by_client_request(self, store, client_request_id: str) -> OrderModel | None:
        return (
            OrderModel.objects.select_related("store", "customer")
            .filter(store=store, client_request_id=client_request_id)
            .first()
        )

    def create(self, store, customer, lines, total_amount: Decimal, notes="", client_request_id=None):
        """Persist a new ``PENDING_ADMIN`` order and its snapshotted lines.

        Args:
            store: Owning ``Store``.
            customer: Ordering ``Customer``.
            lines: Iterable of ``(product, variant, quantity, unit_price)``.
            total_amount: Order total computed from the snapshots.
            notes: Free text from the customer.
            client_request_id: Optional bot-side request id for dedup.

        Returns:
            The created ``OrderModel``.
        """
        order = OrderModel.objects.create(
            store=store,
            customer=customer,
            status=OrderStatus.PENDING_ADMIN.value,
            total_amount=total_amount,
            currency=store.currency,
            notes=notes or "",
            client_request_id=client_request_id,
        )
        OrderItemModel.objects.bulk_create(
            [
                OrderItemModel(
                    order=order,
                    product=product,
                    variant=variant,
                    variant_ref=variant.pk if variant is not None else None,
                    product_name=str(variant) if variant is not None else product.name,
                    quantity=quantity,
                    unit_price=unit_price,
                )
                for product, variant, quantity, unit_price in lines
            ]
        )
        return order

    def set_payment_proof(self, order_id, reference: str) -> bool:
        updated = OrderModel.objects.filter(
            id=order_id, status=OrderStatus.PENDING_ADMIN.value
        ).update(payment_proof=reference, updated_at=timezone.now())
        return updated == 1

    def to_read_dto(self, order: OrderModel, with_items: bool = True) -> OrderReadDTO:
        """Map an ``OrderModel`` into the API read schema."""
        items = []
        if with_items:
            items = [
                OrderItemReadDTO(
                    id=i.id,
                    product_id=i.product_id,
                    variant_id=i.variant_id,
                    product_name=i.product_name,
                    quantity=i.quantity,
                    unit_price=i.unit_price,
                )
                for i in order.items.order_by("id")
            ]
        return OrderReadDTO(
            id=order.id,
            order_number=order.order_number,
            store_id=order.store_id,
            customer_telegram_id=order.customer.telegram_id,
            status=order.status,
            total_amount=order.total_amount,
            currency=order.currency,
            payment_proof=order.payment_proof or None,
            rejection_reason=order.rejection_reason or None,
            cancellation_reason=order.cancellation_reason or None,
            tracking_number=order.tracking_number or None,
            carrier=order.carrier or None,
            created_at=order.created_at,
            updated_at=order.updated_at,
            paid_at=order.paid_at,
            rejected_at=order.rejected_at,
            shipped_at=order.shipped_at,
            delivered_at=order.delivered_at,
            cancelled_at=order.cancelled_at,
            items=items,
            available_transitions=available_transitions(order.status),
        )