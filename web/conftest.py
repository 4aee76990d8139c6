from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model


@pytest.fixture(autouse=True)
def notification_defaults(settings):
    # Offline defaults: no Telegram/Redis/SMTP, no retry sleeps.
    settings.NOTIFICATION_CHANNELS = ["log"]
    settings.REDIS_URL = ""
    settings.TELEGRAM_BACKOFF_BASE = 0
    settings.BOT_API_KEY = "test-bot-key"
    settings.ORDERS_INVENTORY_STRICT = True
    settings.EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"


@pytest.fixture
def owner(db):
    return get_user_model().objects.create_user(username="owner", password="pw")


@pytest.fixture
def store_admin(db, store):
    from apps.stores.models import StoreAdmin

    user = get_user_model().objects.create_user(username="admin", password="pw")
    StoreAdmin.objects.create(store=store, user=user)
    return user


@pytest.fixture
def outsider(db):
    return get_user_model().objects.create_user(username="outsider", password="pw")


@pytest.fixture
def store(db, owner):
    from apps.stores.models import Store

    return Store.objects.create(
        name="Coffee Beans", slug="coffee-beans", currency="USD", owner=owner, bot_token="123:abc"
    )


@pytest.fixture
def customer(db):
    from apps.stores.models import Customer

    return Customer.objects.create(telegram_id="777000", username="buyer", email="buyer@example.com")


@pytest.fixture
def product_a(store):
    from apps.stores.models import Product

    return Product.objects.create(store=store, name="Espresso", sku="ESP", price=Decimal("10.00"), stock=10)


@pytest.fixture
def product_b(store):
    from apps.stores.models import Product

    return Product.objects.create(store=store, name="Filter", sku="FIL", price=Decimal("7.50"), stock=5)


@pytest.fixture
def make_order(store, customer):
    """Create an order with ``lines`` of ``(product, quantity)`` or
    ``(product, variant, quantity)`` in the given status."""
    from apps.orders.models import OrderItemModel, OrderModel

    def _make(lines, status="PENDING_ADMIN", **fields):
        total = Decimal("0")
        rows = []
        for line in lines:
            product, variant, qty = line if len(line) == 3 else (line[0], None, line[1])
            price = variant.effective_price if variant is not None else product.price
            total += price * qty
            rows.append((product, variant, qty, price))
        order = OrderModel.objects.create(
            store=store, customer=customer, status=status, total_amount=total, currency=store.currency, **fields
        )
        for product, variant, qty, price in rows:
            OrderItemModel.objects.create(
                order=order,
                product=product,
                variant=variant,
                product_name=product.name,
                quantity=qty,
                unit_price=price,
            )
        return order

    return _make
