import uuid

from django.conf import settings
from django.db import models, transaction

from apps.stores.models import Customer, Product, ProductVariant, Store


class OrderModel(models.Model):
    # UUID PK exposed in the API
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Internal incremental counter, rendered as the order number
    internal_id = models.BigIntegerField(unique=True, editable=False, null=True)

    class Status(models.TextChoices):
        PENDING_ADMIN = "PENDING_ADMIN"
        PAID = "PAID"
        SHIPPED = "SHIPPED"
        DELIVERED = "DELIVERED"
        REJECTED = "REJECTED"
        CANCELLED = "CANCELLED"

    store = models.ForeignKey(Store, on_delete=models.PROTECT, related_name="orders")
    customer = models.ForeignKey(Customer, on_delete=models.PROTECT, related_name="orders")
    status = models.CharField(max_length=32, choices=Status.choices, default=Status.PENDING_ADMIN)
    total_amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3, default="USD")
    notes = models.TextField(blank=True, default="")

    payment_proof = models.CharField(max_length=500, blank=True, default="")
    rejection_reason = models.TextField(blank=True, default="")
    cancellation_reason = models.TextField(blank=True, default="")
    tracking_number = models.CharField(max_length=100, blank=True, default="")
    carrier = models.CharField(max_length=100, blank=True, default="")
    client_request_id = models.CharField(max_length=200, null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    rejected_at = models.DateTimeField(null=True, blank=True)
    shipped_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "orders"
        ordering = ["-internal_id"]
        constraints = [
            models.UniqueConstraint(
                fields=["store", "client_request_id"], name="ux_order_client_request"
            ),
        ]

    def save(self, *args, **kwargs):
        # Assign incremental `internal_id` only on creation
        if self.internal_id is None:
            with transaction.atomic():
                last = (
                    OrderModel.objects.select_for_update()
                    .exclude(internal_id=None)
                    .order_by("-internal_id")
                    .first()
                )
                self.internal_id = 1 if not last else last.internal_id + 1
                super().save(*args, **kwargs)
            return

        super().save(*args, **kwargs)

    @property
    def order_number(self) -> str:
        return f"#{self.internal_id or 0:06d}"


class OrderItemModel(models.Model):
    """A line of an order with its price snapshotted at checkout.

    Product and variant references survive catalog deletions as NULL so the
    order history stays intact; ``product_name`` keeps what the customer saw.
    """

    order = models.ForeignKey(OrderModel, on_delete=models.CASCADE, related_name="items")
    product = models.ForeignKey(
        Product, on_delete=models.SET_NULL, null=True, blank=True, related_name="order_items"
    )
    variant = models.ForeignKey(
        ProductVariant, on_delete=models.SET_NULL, null=True, blank=True, related_name="order_items"
    )
    # Variant id at checkout; stays set after the variant row is deleted
    variant_ref = models.UUIDField(null=True, blank=True, editable=False)
    product_name = models.CharField(max_length=300)
    quantity = models.PositiveIntegerField()
    unit_price = models.DecimalField(max_digits=12, decimal_places=2)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "order_items"
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity__gt=0), name="ck_order_item_quantity_positive"
            ),
        ]

    def save(self, *args, **kwargs):
        if self.variant_ref is None and self.variant_id is not None:
            self.variant_ref = self.variant_id
        super().save(*args, **kwargs)


class StockMovement(models.Model):
    """Ledger of stock deltas applied on behalf of orders."""

    class Reason(models.TextChoices):
        ORDER_PAID = "ORDER_PAID"
        ORDER_CANCELLED = "ORDER_CANCELLED"

    order = models.ForeignKey(OrderModel, on_delete=models.CASCADE, related_name="stock_movements")
    item = models.ForeignKey(
        OrderItemModel, on_delete=models.SET_NULL, null=True, related_name="stock_movements"
    )
    product = models.ForeignKey(
        Product, on_delete=models.SET_NULL, null=True, related_name="stock_movements"
    )
    variant = models.ForeignKey(
        ProductVariant, on_delete=models.SET_NULL, null=True, related_name="stock_movements"
    )
    # Variant whose counter was adjusted; None when the product counter was used
    variant_ref = models.UUIDField(null=True, blank=True)
    delta = models.IntegerField()
    reason = models.CharField(max_length=32, choices=Reason.choices)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "stock_movements"
        ordering = ["id"]


class OrderStatusLog(models.Model):
    """Audit trail of status changes and who made them."""

    order = models.ForeignKey(OrderModel, on_delete=models.CASCADE, related_name="status_logs")
    from_status = models.CharField(max_length=32)
    to_status = models.CharField(max_length=32)
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, related_name="+"
    )
    reason = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "order_status_logs"
        ordering = ["id"]


class IdempotencyKey(models.Model):
    """Stored response of a checkout request keyed by ``Idempotency-Key``."""

    key = models.CharField(max_length=200, unique=True)
    request_hash = models.CharField(max_length=64)
    response_status = models.PositiveSmallIntegerField(default=0)
    response_body = models.JSONField(default=dict)
    order = models.ForeignKey(OrderModel, on_delete=models.SET_NULL, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "idempotency_keys"
