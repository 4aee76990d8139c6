import uuid

import pytest

from apps.orders.authorization import StoreRoleAuthorization
from apps.orders.domain import (
    FORBIDDEN,
    INSUFFICIENT_STOCK,
    INVALID_TRANSITION,
    NOT_FOUND,
    DispatchReport,
    OrderError,
    OrderStatus,
    TransitionExtras,
)
from apps.orders.inventory import InventoryAdjuster
from apps.orders.models import OrderModel, OrderStatusLog, StockMovement
from apps.orders.repository import OrderRepository
from apps.orders.service import OrderTransitionService


class RecordingDispatcher:
    def __init__(self):
        self.calls = []

    def dispatch(self, order, status, extras):
        self.calls.append((order.id, status, extras))
        return DispatchReport(delivered=["log"])


class BrokenDispatcher:
    def dispatch(self, order, status, extras):
        raise RuntimeError("telegram down")


def make_service(dispatcher=None, repository=None):
    return OrderTransitionService(
        authorization=StoreRoleAuthorization(),
        inventory=InventoryAdjuster(),
        dispatcher=dispatcher or RecordingDispatcher(),
        repository=repository,
    )


def stock_of(product):
    product.refresh_from_db()
    return product.stock


@pytest.mark.django_db
def test_confirm_payment_decrements_each_line(owner, make_order, product_a, product_b):
    order = make_order([(product_a, 2), (product_b, 1)])
    dispatcher = RecordingDispatcher()

    result = make_service(dispatcher).transition(order.id, OrderStatus.PAID, owner)

    assert result.order.status == "PAID"
    assert result.previous_status is OrderStatus.PENDING_ADMIN
    assert result.order.paid_at is not None
    assert stock_of(product_a) == 8
    assert stock_of(product_b) == 4
    assert sorted(a.delta for a in result.inventory.adjusted) == [-2, -1]
    assert dispatcher.calls == [(order.id, OrderStatus.PAID, TransitionExtras())]

    log = OrderStatusLog.objects.get(order=order)
    assert (log.from_status, log.to_status, log.actor_id) == ("PENDING_ADMIN", "PAID", owner.pk)


@pytest.mark.django_db
def test_insufficient_stock_rolls_back_everything(owner, make_order, product_a, product_b):
    order = make_order([(product_a, 2), (product_b, 6)])
    dispatcher = RecordingDispatcher()

    with pytest.raises(OrderError) as exc:
        make_service(dispatcher).transition(order.id, "PAID", owner)

    assert exc.value.code == INSUFFICIENT_STOCK
    assert stock_of(product_a) == 10
    assert stock_of(product_b) == 5
    order.refresh_from_db()
    assert order.status == "PENDING_ADMIN"
    assert order.paid_at is None
    assert not StockMovement.objects.filter(order=order).exists()
    assert dispatcher.calls == []


@pytest.mark.django_db
def test_reject_leaves_stock_untouched(owner, make_order, product_a):
    order = make_order([(product_a, 3)])

    result = make_service().transition(
        order.id, OrderStatus.REJECTED, owner, TransitionExtras(reason="Payment not received")
    )

    assert result.order.status == "REJECTED"
    assert result.order.rejection_reason == "Payment not received"
    assert result.order.rejected_at is not None
    assert stock_of(product_a) == 10
    assert result.inventory.adjusted == []


@pytest.mark.django_db
def test_cancel_after_payment_restores_exact_quantities(owner, make_order, product_a, product_b):
    order = make_order([(product_a, 2), (product_b, 1)])
    service = make_service()

    service.transition(order.id, OrderStatus.PAID, owner)
    result = service.transition(order.id, OrderStatus.CANCELLED, owner, TransitionExtras(reason="Out of beans"))

    assert result.order.status == "CANCELLED"
    assert result.order.cancellation_reason == "Out of beans"
    assert stock_of(product_a) == 10
    assert stock_of(product_b) == 5
    reasons = list(StockMovement.objects.filter(order=order).values_list("reason", "delta"))
    assert sorted(reasons) == sorted(
        [("ORDER_PAID", -2), ("ORDER_PAID", -1), ("ORDER_CANCELLED", 2), ("ORDER_CANCELLED", 1)]
    )


@pytest.mark.django_db
def test_confirming_twice_decrements_once(owner, make_order, product_a):
    order = make_order([(product_a, 4)])
    service = make_service()

    service.transition(order.id, OrderStatus.PAID, owner)
    with pytest.raises(OrderError) as exc:
        service.transition(order.id, OrderStatus.PAID, owner)

    assert exc.value.code == INVALID_TRANSITION
    assert stock_of(product_a) == 6


@pytest.mark.django_db
def test_terminal_order_cannot_move(owner, make_order, product_a):
    order = make_order([(product_a, 1)], status="DELIVERED")

    for target in OrderStatus:
        with pytest.raises(OrderError) as exc:
            make_service().transition(order.id, target, owner)
        assert str(exc.value) == INVALID_TRANSITION


@pytest.mark.django_db
def test_lost_race_is_reported_as_invalid_transition(owner, make_order, product_a):
    class RacingRepository(OrderRepository):
        def lock(self, order_id):
            snapshot = super().lock(order_id)
            # Another admin rejects the order right after our read.
            OrderModel.objects.filter(id=order_id).update(status="REJECTED")
            return snapshot

    order = make_order([(product_a, 2)])

    with pytest.raises(OrderError) as exc:
        make_service(repository=RacingRepository()).transition(order.id, OrderStatus.PAID, owner)

    assert exc.value.code == INVALID_TRANSITION
    assert stock_of(product_a) == 10
    assert not StockMovement.objects.filter(order=order).exists()


@pytest.mark.django_db
def test_deleted_product_line_is_skipped(owner, make_order, product_a, product_b):
    order = make_order([(product_a, 2), (product_b, 1)])
    skipped_item = order.items.get(product=product_b)
    product_b.delete()

    result = make_service().transition(order.id, OrderStatus.PAID, owner)

    assert result.order.status == "PAID"
    assert result.inventory.skipped == [skipped_item.id]
    assert [a.delta for a in result.inventory.adjusted] == [-2]
    assert stock_of(product_a) == 8


@pytest.mark.django_db
def test_shipping_records_tracking_data(owner, make_order, product_a):
    order = make_order([(product_a, 1)], status="PAID")

    result = make_service().transition(
        order.id, "SHIPPED", owner, TransitionExtras(tracking_number="TRK-1", carrier="DHL")
    )
    assert result.order.status == "SHIPPED"
    assert (result.order.tracking_number, result.order.carrier) == ("TRK-1", "DHL")
    assert result.order.shipped_at is not None

    result = make_service().transition(order.id, "DELIVERED", owner)
    assert result.order.delivered_at is not None
    # Stock is only touched on PAID and on cancelling a paid order.
    assert stock_of(product_a) == 10


@pytest.mark.django_db
def test_store_admin_may_transition(store_admin, make_order, product_a):
    order = make_order([(product_a, 1)])
    result = make_service().transition(order.id, OrderStatus.PAID, store_admin)
    assert result.order.status == "PAID"


@pytest.mark.django_db
def test_outsider_is_forbidden(outsider, make_order, product_a):
    order = make_order([(product_a, 1)])

    with pytest.raises(OrderError) as exc:
        make_service().transition(order.id, OrderStatus.PAID, outsider)

    assert exc.value.code == FORBIDDEN
    order.refresh_from_db()
    assert order.status == "PENDING_ADMIN"
    assert stock_of(product_a) == 10


@pytest.mark.django_db
def test_unknown_order_is_not_found(owner):
    with pytest.raises(OrderError) as exc:
        make_service().transition(uuid.uuid4(), OrderStatus.PAID, owner)
    assert exc.value.code == NOT_FOUND


@pytest.mark.django_db
def test_notification_failure_does_not_undo_transition(owner, make_order, product_a):
    order = make_order([(product_a, 1)])

    result = make_service(BrokenDispatcher()).transition(order.id, OrderStatus.PAID, owner)

    assert result.order.status == "PAID"
    assert result.notifications.failed == ["dispatcher"]
    assert result.notifications.delayed is True
    order.refresh_from_db()
    assert order.status == "PAID"
