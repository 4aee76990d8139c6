"""Liveness of the backing services: database always, Redis when configured."""

import logging

from django.conf import settings
from django.db import DatabaseError, connection
from django.http import JsonResponse
from redis.exceptions import RedisError

from apps.notifications.notifiers import get_redis

logger = logging.getLogger(__name__)


def _check_db() -> bool:
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1;")
        return True
    except DatabaseError:
        logger.exception("health check: database unavailable")
        return False


def _check_redis() -> bool:
    try:
        return bool(get_redis().ping())
    except RedisError:
        logger.exception("health check: redis unavailable")
        return False


def health_view(_request):
    components = {"db": {"ok": _check_db()}}
    if getattr(settings, "REDIS_URL", ""):
        components["redis"] = {"ok": _check_redis()}

    ok = all(c["ok"] for c in components.values())
    code = 200 if ok else 503
    return JsonResponse({"ok": ok, "components": components}, status=code)
