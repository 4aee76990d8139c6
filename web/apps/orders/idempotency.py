"""Idempotency records for bot checkout requests.

The bot may retry a checkout after a timeout without knowing whether the
first attempt created the order. When it sends an ``Idempotency-Key`` header
the first request claims the key together with a hash of its payload and,
once handled, stores the response. A retry with the same key and payload
gets that stored response back; the same key with a different payload is a
conflict.
"""

import hashlib
import json

from django.db import IntegrityError, transaction

from .models import IdempotencyKey

IDEMPOTENCY_CONFLICT = "IDEMPOTENCY_CONFLICT"
IDEMPOTENCY_IN_PROGRESS = "IDEMPOTENCY_IN_PROGRESS"


class IdempotencyError(ValueError):
    """The key cannot be used for this request; ``str(err)`` is the code."""


def request_hash(payload) -> str:
    """Stable SHA-256 of a JSON-serializable payload (sorted keys, compact)."""
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


@transaction.atomic
def claim(key: str, payload) -> tuple[bool, IdempotencyKey]:
    """Claim ``key`` for this request or find the stored response.

    Args:
        key: Client-provided idempotency key.
        payload: Request body the key is bound to.

    Returns:
        tuple[bool, IdempotencyKey]: ``(replay, rec)``. ``replay`` is True
        when ``rec`` holds a finished response for the same payload; False
        when the key was claimed by this call and must be completed with
        ``complete`` or given back with ``release``.

    Raises:
        IdempotencyError: ``IDEMPOTENCY_CONFLICT`` when the key was used with
            another payload, ``IDEMPOTENCY_IN_PROGRESS`` when the first
            request holding it has not finished yet.
    """
    digest = request_hash(payload)
    try:
        # Savepoint so a duplicate key only rolls back this insert.
        with transaction.atomic():
            rec = IdempotencyKey.objects.create(key=key, request_hash=digest)
            return False, rec
    except IntegrityError:
        rec = IdempotencyKey.objects.select_for_update().get(key=key)

    if rec.request_hash != digest:
        raise IdempotencyError(IDEMPOTENCY_CONFLICT)
    if not rec.response_status:
        raise IdempotencyError(IDEMPOTENCY_IN_PROGRESS)
    return True, rec


def complete(rec: IdempotencyKey, status_code: int, body: dict, order=None):
    """Store the response a replay of ``rec`` will return."""
    rec.response_status = status_code
    rec.response_body = body
    rec.order = order
    rec.save(update_fields=["response_status", "response_body", "order"])


def release(rec: IdempotencyKey):
    """Give a claimed key back after an unexpected failure so it can be retried."""
    IdempotencyKey.objects.filter(pk=rec.pk, response_status=0).delete()
