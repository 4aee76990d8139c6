"""Stock adjustments applied when orders are paid or cancelled.

``InventoryAdjuster`` implements ``InventoryPort`` on top of the Django ORM.
It must run inside the caller's transaction: every counter row is locked with
``SELECT ... FOR UPDATE`` before it is read, the change itself is an
``F()`` expression, and each applied delta is written to the
``StockMovement`` ledger so a cancellation can add back exactly what a
payment removed.
"""

import logging

from django.conf import settings
from django.db.models import F

from apps.stores.models import Product, ProductVariant

from .domain import INSUFFICIENT_STOCK, InventoryPort, InventoryReport, OrderError, StockAdjustment
from .models import StockMovement

logger = logging.getLogger(__name__)


def _counter_for(item):
    """Return the (model, pk) whose ``stock`` backs an order line.

    Returns None when the product is gone or does not track stock.
    """
    product = item.product
    if product is None or not product.track_stock:
        return None
    variant = item.variant
    if variant is not None and variant.stock is not None:
        return ProductVariant, variant.pk
    return Product, product.pk


class InventoryAdjuster(InventoryPort):
    """ORM-backed inventory port.

    Args:
        strict: Refuse to decrement below zero (raise ``INSUFFICIENT_STOCK``)
            instead of clamping at zero. Defaults to
            ``settings.ORDERS_INVENTORY_STRICT``.
    """

    def __init__(self, strict: bool | None = None):
        self.strict = strict

    def _is_strict(self) -> bool:
        if self.strict is not None:
            return self.strict
        return getattr(settings, "ORDERS_INVENTORY_STRICT", True)

    def decrement(self, order) -> InventoryReport:
        """Remove each line's quantity from its stock counter.

        Lines whose product or variant was deleted since checkout are skipped and
        reported. Products with ``track_stock=False`` are ignored.

        Args:
            order: ``OrderModel`` being confirmed, locked by the caller.

        Returns:
            InventoryReport with one adjustment per decremented line.

        Raises:
            OrderError: ``INSUFFICIENT_STOCK`` in strict mode when a counter
                holds less than the line quantity. The caller's transaction
                must roll back.
        """
        report = InventoryReport()
        strict = self._is_strict()

        lines = []
        for item in order.items.select_related("product", "variant").order_by("id"):
            if item.product_id is None:
                logger.warning(
                    "product deleted, skipping stock decrement",
                    extra={"order_id": str(order.id), "item_id": item.id, "product": item.product_name},
                )
                report.skipped.append(item.id)
                continue
            if item.variant_ref is not None and item.variant_id is None:
                logger.warning(
                    "variant deleted, skipping stock decrement",
                    extra={"order_id": str(order.id), "item_id": item.id, "product": item.product_name},
                )
                report.skipped.append(item.id)
                continue
            counter = _counter_for(item)
            if counter is not None:
                lines.append((counter, item))

        # Lock counters in a stable order so concurrent orders on the same
        # products cannot deadlock.
        lines.sort(key=lambda entry: (entry[0][0].__name__, str(entry[0][1])))

        for (model, pk), item in lines:
            current = (
                model.objects.select_for_update()
                .filter(pk=pk)
                .values_list("stock", flat=True)
                .first()
            )
            if current is None:
                logger.warning(
                    "stock counter vanished, skipping stock decrement",
                    extra={"order_id": str(order.id), "item_id": item.id},
                )
                report.skipped.append(item.id)
                continue

            if current < item.quantity:
                if strict:
                    raise OrderError(
                        INSUFFICIENT_STOCK,
                        f"{item.product_name}: available {current}, requested {item.quantity}",
                    )
                logger.warning(
                    "stock clamped at zero",
                    extra={"order_id": str(order.id), "item_id": item.id,
                           "available": current, "requested": item.quantity},
                )
            removed = min(current, item.quantity)
            if removed:
                model.objects.filter(pk=pk).update(stock=F("stock") - removed)

            variant_id = pk if model is ProductVariant else None
            StockMovement.objects.create(
                order=order,
                item=item,
                product_id=item.product_id,
                variant_id=variant_id,
                variant_ref=variant_id,
                delta=-removed,
                reason=StockMovement.Reason.ORDER_PAID,
            )
            report.adjusted.append(StockAdjustment(item.id, item.product_id, variant_id, -removed))

        return report

    def restore(self, order) -> InventoryReport:
        """Add back the stock a previous ``decrement`` removed for ``order``.

        The amount comes from the ledger, not from the current counter: the
        add-back is blind and does not re-read stock edits made in between.
        Counters deleted since the decrement are skipped and reported.
        """
        report = InventoryReport()
        already = order.stock_movements.filter(reason=StockMovement.Reason.ORDER_CANCELLED).exists()
        if already:
            logger.warning("stock already restored for order", extra={"order_id": str(order.id)})
            return report

        movements = order.stock_movements.filter(reason=StockMovement.Reason.ORDER_PAID).order_by(
            "product_id", "variant_id", "id"
        )
        for mv in movements:
            amount = -mv.delta
            if mv.product_id is None:
                logger.warning(
                    "product deleted, skipping stock restore",
                    extra={"order_id": str(order.id), "item_id": mv.item_id},
                )
                if mv.item_id is not None:
                    report.skipped.append(mv.item_id)
                continue

            if mv.variant_ref is not None:
                counter = ProductVariant.objects.filter(pk=mv.variant_ref, stock__isnull=False)
            else:
                counter = Product.objects.filter(pk=mv.product_id)
            if amount and not counter.update(stock=F("stock") + amount):
                logger.warning(
                    "stock counter deleted, skipping stock restore",
                    extra={"order_id": str(order.id), "item_id": mv.item_id},
                )
                if mv.item_id is not None:
                    report.skipped.append(mv.item_id)
                continue

            StockMovement.objects.create(
                order=order,
                item_id=mv.item_id,
                product_id=mv.product_id,
                variant_id=mv.variant_id,
                variant_ref=mv.variant_ref,
                delta=amount,
                reason=StockMovement.Reason.ORDER_CANCELLED,
            )
            report.adjusted.append(StockAdjustment(mv.item_id, mv.product_id, mv.variant_id, amount))

        return report
