import pytest

PROOF_URL = "/api/orders/{oid}/payment-proof/"
BOT = {"HTTP_X_API_KEY": "test-bot-key"}


def post_proof(client, order_id, payload, **headers):
    return client.post(
        PROOF_URL.format(oid=order_id), data=payload, content_type="application/json", **{**BOT, **headers}
    )


@pytest.mark.django_db
def test_customer_attaches_proof_to_pending_order(client, make_order, product_a):
    order = make_order([(product_a, 1)])

    r = post_proof(client, order.id, {"telegram_id": "777000", "reference": "  IBAN transfer 991  "})

    assert r.status_code == 200
    assert r.json()["payment_proof"] == "IBAN transfer 991"
    order.refresh_from_db()
    assert order.payment_proof == "IBAN transfer 991"
    assert order.status == "PENDING_ADMIN"


@pytest.mark.django_db
def test_other_customer_cannot_attach_proof(client, make_order, product_a):
    order = make_order([(product_a, 1)])
    r = post_proof(client, order.id, {"telegram_id": "123", "reference": "x"})
    assert r.status_code == 403
    assert r.json()["detail"] == "FORBIDDEN"


@pytest.mark.django_db
def test_proof_only_for_pending_orders(client, make_order, product_a):
    order = make_order([(product_a, 1)], status="PAID")
    r = post_proof(client, order.id, {"telegram_id": "777000", "reference": "late"})
    assert r.status_code == 409
    assert r.json()["detail"] == "ORDER_NOT_PENDING"


@pytest.mark.django_db
def test_proof_requires_bot_key(client, make_order, product_a):
    order = make_order([(product_a, 1)])
    r = client.post(
        PROOF_URL.format(oid=order.id),
        data={"telegram_id": "777000", "reference": "x"},
        content_type="application/json",
    )
    assert r.status_code == 403
