import pytest
from uuid import uuid4

from apps.stores.models import Customer, Store

DETAIL_URL = "/api/orders/{oid}/"
LIST_URL = "/api/orders/"


@pytest.mark.django_db
def test_get_order_by_id_returns_200_and_payload(client, owner, make_order, product_a):
    client.force_login(owner)
    o = make_order([(product_a, 2)])

    r = client.get(DETAIL_URL.format(oid=str(o.id)))

    assert r.status_code == 200
    body = r.json()
    assert body["id"] == str(o.id)
    assert body["status"] == "PENDING_ADMIN"
    assert body["total_amount"] == "20.00"
    assert body["currency"] == "USD"
    assert body["customer_telegram_id"] == "777000"
    assert body["available_transitions"] == ["PAID", "REJECTED"]
    assert len(body["items"]) == 1


@pytest.mark.django_db
def test_get_order_not_found_returns_404(client, owner):
    client.force_login(owner)
    r = client.get(DETAIL_URL.format(oid=str(uuid4())))
    assert r.status_code == 404
    assert r.json()["detail"] == "NOT_FOUND"


@pytest.mark.django_db
def test_order_of_another_store_is_forbidden(client, outsider, make_order, product_a):
    client.force_login(outsider)
    o = make_order([(product_a, 1)])
    r = client.get(DETAIL_URL.format(oid=str(o.id)))
    assert r.status_code == 403


@pytest.mark.django_db
def test_list_orders_returns_paginated_array(client, owner, make_order, product_a):
    client.force_login(owner)
    make_order([(product_a, 1)])
    make_order([(product_a, 1)], status="PAID")

    r = client.get(LIST_URL)

    assert r.status_code == 200
    body = r.json()
    assert isinstance(body, dict) and "results" in body
    assert body["count"] == 2
    assert all({"id", "status", "total_amount", "order_number"} <= set(x.keys()) for x in body["results"])


@pytest.mark.django_db
def test_list_is_scoped_to_administered_stores(client, owner, outsider, make_order, product_a):
    from apps.orders.models import OrderModel

    make_order([(product_a, 1)])
    other_store = Store.objects.create(name="Tea", slug="tea", owner=outsider)
    OrderModel.objects.create(
        store=other_store,
        customer=Customer.objects.create(telegram_id="42"),
        total_amount="1.00",
    )

    client.force_login(owner)
    assert client.get(LIST_URL).json()["count"] == 1
    client.force_login(outsider)
    assert client.get(LIST_URL).json()["count"] == 1


@pytest.mark.django_db
def test_list_filters_by_status_and_store(client, owner, store, make_order, product_a):
    client.force_login(owner)
    make_order([(product_a, 1)])
    paid = make_order([(product_a, 1)], status="PAID")

    body = client.get(LIST_URL, {"status": "paid"}).json()
    assert [x["id"] for x in body["results"]] == [str(paid.id)]

    assert client.get(LIST_URL, {"store": str(store.id)}).json()["count"] == 2
    assert client.get(LIST_URL, {"store": str(uuid4())}).json()["count"] == 0
    assert client.get(LIST_URL, {"status": "LOST"}).status_code == 400


@pytest.mark.django_db
def test_list_requires_authentication(client):
    assert client.get(LIST_URL).status_code in (401, 403)


@pytest.mark.django_db
def test_ping_is_public(client):
    r = client.get("/api/orders/ping/")
    assert r.status_code == 200
    assert r.json() == {"ok": True}
