"""Tenant models: stores, their administrators, customers and catalog.

A ``Store`` is the tenant boundary. It owns products and orders, carries the
Telegram bot credentials used to reach its customers and may override the
default notification templates per order status.
"""

import uuid

from django.conf import settings
from django.db import models


class Store(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=200)
    slug = models.SlugField(max_length=100, unique=True)
    currency = models.CharField(max_length=3, default="USD")
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="owned_stores"
    )

    bot_token = models.CharField(max_length=200, blank=True, default="")
    bot_username = models.CharField(max_length=100, blank=True, default="")
    # {"PAID": "Payment for order {order_number} confirmed", ...}
    notification_templates = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "stores"
        ordering = ["name"]

    def __str__(self):
        return self.name


class StoreAdmin(models.Model):
    """Membership granting a user administrative rights over a store."""

    store = models.ForeignKey(Store, on_delete=models.CASCADE, related_name="admins")
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="store_memberships"
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "store_admins"
        constraints = [
            models.UniqueConstraint(fields=["store", "user"], name="ux_store_admin"),
        ]


class Customer(models.Model):
    """A Telegram user who buys through a store bot."""

    telegram_id = models.CharField(max_length=64, unique=True)
    username = models.CharField(max_length=100, blank=True, default="")
    first_name = models.CharField(max_length=100, blank=True, default="")
    last_name = models.CharField(max_length=100, blank=True, default="")
    email = models.EmailField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "customers"

    def __str__(self):
        return self.username or self.telegram_id


class Product(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    store = models.ForeignKey(Store, on_delete=models.CASCADE, related_name="products")
    name = models.CharField(max_length=200)
    sku = models.CharField(max_length=64, blank=True, default="")
    price = models.DecimalField(max_digits=12, decimal_places=2)
    stock = models.PositiveIntegerField(default=0)
    track_stock = models.BooleanField(default=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "products"

    def __str__(self):
        return self.name


class ProductVariant(models.Model):
    """A purchasable variation of a product.

    ``stock`` is ``None`` when the variant shares its product's counter and
    ``price`` is ``None`` when it sells at the product price.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name="variants")
    name = models.CharField(max_length=100)
    value = models.CharField(max_length=100)
    price = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    stock = models.PositiveIntegerField(null=True, blank=True)
    sku = models.CharField(max_length=64, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "product_variants"

    def __str__(self):
        return f"{self.product.name} ({self.name}: {self.value})"

    @property
    def effective_price(self):
        return self.price if self.price is not None else self.product.price
