from django.urls import path

from .views import (
    CheckoutView,
    OrdersCollectionView,
    OrdersPingView,
    PaymentProofView,
    RetrieveOrderView,
    TransitionOrderView,
)

app_name = "orders"

urlpatterns = [
    path("ping/", OrdersPingView.as_view(), name="ping"),
    path("", OrdersCollectionView.as_view(), name="orders-collection"),
    path("checkout/", CheckoutView.as_view(), name="orders-checkout"),
    path("<uuid:oid>/", RetrieveOrderView.as_view(), name="orders-detail"),
    path("<uuid:oid>/transition/", TransitionOrderView.as_view(), name="orders-transition"),
    path("<uuid:oid>/payment-proof/", PaymentProofView.as_view(), name="orders-payment-proof"),
]
