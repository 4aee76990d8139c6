import pytest
from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser

from apps.orders.authorization import StoreRoleAuthorization
from apps.stores.models import Store


@pytest.mark.django_db
def test_owner_admin_and_superuser_may_manage(store, owner, store_admin, make_order, product_a):
    order = make_order([(product_a, 1)])
    root = get_user_model().objects.create_superuser(username="root", password="pw")
    auth = StoreRoleAuthorization()

    assert auth.can_transition(owner, store, order)
    assert auth.can_transition(store_admin, store, order)
    assert auth.can_transition(root, store, order)


@pytest.mark.django_db
def test_outsider_inactive_and_anonymous_may_not(store, outsider, store_admin, make_order, product_a):
    order = make_order([(product_a, 1)])
    auth = StoreRoleAuthorization()

    assert not auth.can_transition(outsider, store, order)
    assert not auth.can_transition(AnonymousUser(), store, order)
    assert not auth.can_transition(None, store, order)

    store_admin.is_active = False
    store_admin.save()
    assert not auth.can_transition(store_admin, store, order)


@pytest.mark.django_db
def test_visible_stores(store, owner, store_admin, outsider):
    other = Store.objects.create(name="Tea", slug="tea", owner=outsider)
    auth = StoreRoleAuthorization()

    assert auth.visible_store_ids(owner) == {store.id}
    assert auth.visible_store_ids(store_admin) == {store.id}
    assert auth.visible_store_ids(outsider) == {other.id}
    root = get_user_model().objects.create_superuser(username="root", password="pw")
    assert auth.visible_store_ids(root) is None
