"""HTTP views for the orders app.

Views are kept intentionally small: they validate requests (via Pydantic),
map them to service calls, and turn ``OrderError`` codes into HTTP statuses
through ``ERROR_STATUS``.

Two kinds of callers use this API:

- Store administrators from the dashboard (session or basic auth) list and
  read orders and drive them through their lifecycle with the transition
  endpoint.
- The Telegram bot (``X-API-KEY``) creates orders at checkout and attaches
  payment proofs.

Idempotency: when an ``Idempotency-Key`` header is provided, checkout stores
the first response and returns it again for retries with the same payload,
with the ``Idempotent-Replay: true`` header. Reusing a key with a different
payload returns HTTP 409 (conflict).
"""

import uuid

from django.core.paginator import Paginator
from pydantic import ValidationError
from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from .authorization import StoreRoleAuthorization
from .domain import (
    FORBIDDEN,
    INSUFFICIENT_STOCK,
    INVALID_TRANSITION,
    NOT_FOUND,
    CheckoutLine,
    OrderError,
    OrderStatus,
    TransitionExtras,
)
from .idempotency import (
    IDEMPOTENCY_CONFLICT,
    IDEMPOTENCY_IN_PROGRESS,
    IdempotencyError,
    claim,
    complete,
    release,
)
from .models import OrderModel
from .permissions import HasBotApiKey
from .providers import get_checkout_service, get_transition_service
from .repository import OrderRepository
from .schemas import CheckoutDTO, PaymentProofDTO, TransitionDTO
from .service import EMPTY_ORDER, INVALID_ITEM, ORDER_NOT_PENDING

ERROR_STATUS = {
    NOT_FOUND: status.HTTP_404_NOT_FOUND,
    FORBIDDEN: status.HTTP_403_FORBIDDEN,
    INVALID_TRANSITION: status.HTTP_409_CONFLICT,
    INSUFFICIENT_STOCK: status.HTTP_422_UNPROCESSABLE_ENTITY,
    INVALID_ITEM: status.HTTP_400_BAD_REQUEST,
    EMPTY_ORDER: status.HTTP_400_BAD_REQUEST,
    ORDER_NOT_PENDING: status.HTTP_409_CONFLICT,
    IDEMPOTENCY_CONFLICT: status.HTTP_409_CONFLICT,
    IDEMPOTENCY_IN_PROGRESS: status.HTTP_409_CONFLICT,
}

MAX_PAGE_SIZE = 100


def _error_response(err: OrderError) -> Response:
    body = {"detail": err.code}
    if err.detail:
        body["reason"] = err.detail
    return Response(body, status=ERROR_STATUS.get(err.code, status.HTTP_400_BAD_REQUEST))


def _validation_response(err: ValidationError) -> Response:
    return Response({"detail": str(err)}, status=status.HTTP_400_BAD_REQUEST)


def _int_param(request, name: str, default: int) -> int:
    try:
        return int(request.GET.get(name, default))
    except (TypeError, ValueError):
        return default


class OrdersPingView(APIView):
    """Simple health-check endpoint for the orders module.

    This view returns a minimal JSON payload used by liveness/health
    checks and by automated smoke-tests.
    """

    authentication_classes = []
    permission_classes = [AllowAny]

    def get(self, request):
        return Response({"ok": True})


class OrdersCollectionView(APIView):
    """Paginated list of the orders the caller may manage.

    Query parameters:
        status: Only orders in this status.
        store: Only orders of this store id.
        page, page_size: Pagination (``page_size`` capped at 100).
    """

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_list"

    def get(self, request):
        qs = OrderModel.objects.select_related("customer").order_by("-created_at", "-internal_id")

        visible = StoreRoleAuthorization().visible_store_ids(request.user)
        if visible is not None:
            qs = qs.filter(store_id__in=visible)

        status_filter = request.GET.get("status")
        if status_filter:
            try:
                qs = qs.filter(status=OrderStatus(status_filter.strip().upper()).value)
            except ValueError:
                return Response({"detail": "INVALID_STATUS"}, status=status.HTTP_400_BAD_REQUEST)

        store_filter = request.GET.get("store")
        if store_filter:
            try:
                qs = qs.filter(store_id=uuid.UUID(store_filter))
            except ValueError:
                return Response({"detail": "INVALID_STORE"}, status=status.HTTP_400_BAD_REQUEST)

        page = _int_param(request, "page", 1)
        page_size = min(max(_int_param(request, "page_size", 20), 1), MAX_PAGE_SIZE)
        p = Paginator(qs, page_size)
        page_obj = p.get_page(page)

        repo = OrderRepository()
        results = [
            repo.to_read_dto(o, with_items=False).model_dump(mode="json")
            for o in page_obj.object_list
        ]
        return Response(
            {
                "count": p.count,
                "page": page_obj.number,
                "page_size": page_size,
                "results": results,
            },
            status=200,
        )


class RetrieveOrderView(APIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_detail"

    def get(self, request, oid):
        repo = OrderRepository()
        order = repo.get(oid)
        if order is None:
            return Response({"detail": NOT_FOUND}, status=status.HTTP_404_NOT_FOUND)
        if not StoreRoleAuthorization().can_transition(request.user, order.store, order):
            return Response({"detail": FORBIDDEN}, status=status.HTTP_403_FORBIDDEN)
        return Response(repo.to_read_dto(order).model_dump(mode="json"), status=200)


class TransitionOrderView(APIView):
    """Verification / transition endpoint used by store administrators.

    Body: ``{"status": "PAID", "reason": ..., "tracking_number": ...,
    "carrier": ..., "payment_proof": ...}``.

    Returns:
        Response: One of the following responses.
        - 200 with {order, inventory, notifications, message}. A notifier
          failure does not change the status code; it shows up as
          ``notifications.delayed = true``.
        - 400 for body validation errors.
        - 403 with {detail: "FORBIDDEN"} for callers outside the store.
        - 404 with {detail: "NOT_FOUND"}.
        - 409 with {detail: "INVALID_TRANSITION"} when the move is not
          allowed from the current status, including a lost race.
        - 422 with {detail: "INSUFFICIENT_STOCK"} when confirming a payment
          cannot be covered by stock.
    """

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_transition"

    def post(self, request, oid):
        try:
            dto = TransitionDTO.model_validate(request.data)
        except ValidationError as e:
            return _validation_response(e)

        extras = TransitionExtras(
            reason=dto.reason,
            tracking_number=dto.tracking_number,
            carrier=dto.carrier,
            payment_proof=dto.payment_proof,
        )
        try:
            result = get_transition_service().transition(oid, dto.status, request.user, extras)
        except OrderError as e:
            return _error_response(e)

        order = result.order
        message = f"Order {order.order_number} moved from {result.previous_status.value} to {order.status}"
        if result.notifications.delayed:
            message += "; customer notification may be delayed"

        body = {
            "order": OrderRepository().to_read_dto(order).model_dump(mode="json"),
            "inventory": result.inventory.as_dict(),
            "notifications": result.notifications.as_dict(),
            "message": message,
        }
        return Response(body, status=200)


class CheckoutView(APIView):
    """Create a ``PENDING_ADMIN`` order for a bot customer.

    Returns:
        Response: One of the following responses.
        - 201 with the order when it is created.
        - 200 with the existing order when ``client_request_id`` matched one.
        - The stored status and body, with ``Idempotent-Replay: true``, when
          an ``Idempotency-Key`` is retried with the same payload.
        - 409 with {detail: "IDEMPOTENCY_CONFLICT"} for a reused key with a
          different payload.
        - 400 for validation errors, unknown or inactive items.
        - 404 with {detail: "NOT_FOUND"} for an unknown store.
        - 422 with {detail: "INSUFFICIENT_STOCK"}.
    """

    authentication_classes = []
    permission_classes = [HasBotApiKey]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_checkout"

    def post(self, request):
        idem_key = request.headers.get("Idempotency-Key")

        try:
            dto = CheckoutDTO.model_validate(request.data)
        except ValidationError as e:
            return _validation_response(e)

        rec = None
        if idem_key:
            try:
                replay, rec = claim(idem_key, request.data)
            except IdempotencyError as e:
                return Response({"detail": str(e)}, status=status.HTTP_409_CONFLICT)
            if replay:
                resp = Response(rec.response_body, status=rec.response_status)
                resp["Idempotent-Replay"] = "true"
                return resp

        lines = [
            CheckoutLine(product_id=i.product_id, quantity=i.quantity, variant_id=i.variant_id)
            for i in dto.items
        ]
        try:
            order, created = get_checkout_service().checkout(
                dto.store_id,
                dto.customer.model_dump(),
                lines,
                notes=dto.notes,
                client_request_id=dto.client_request_id,
            )
        except OrderError as e:
            resp = _error_response(e)
            if rec:
                complete(rec, resp.status_code, resp.data)
            return resp
        except Exception:
            if rec:
                release(rec)
            raise

        body = OrderRepository().to_read_dto(order).model_dump(mode="json")
        code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
        if rec:
            complete(rec, code, body, order=order)
        return Response(body, status=code)


class PaymentProofView(APIView):
    """Attach the customer's payment proof reference to a pending order."""

    authentication_classes = []
    permission_classes = [HasBotApiKey]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_checkout"

    def post(self, request, oid):
        try:
            dto = PaymentProofDTO.model_validate(request.data)
        except ValidationError as e:
            return _validation_response(e)

        try:
            order = get_checkout_service().attach_payment_proof(oid, dto.telegram_id, dto.reference)
        except OrderError as e:
            return _error_response(e)

        return Response(OrderRepository().to_read_dto(order).model_dump(mode="json"), status=200)
