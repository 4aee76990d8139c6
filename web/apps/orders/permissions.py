"""DRF permissions for callers that are not dashboard users."""

import hmac

from django.conf import settings
from rest_framework.permissions import BasePermission


class HasBotApiKey(BasePermission):
    """Allow requests carrying the shared bot key in ``X-API-KEY``.

    Denies everything while ``BOT_API_KEY`` is empty.
    """

    message = "INVALID_API_KEY"

    def has_permission(self, request, view) -> bool:
        expected = getattr(settings, "BOT_API_KEY", "")
        provided = request.headers.get("X-API-KEY", "")
        if not expected or not provided:
            return False
        return hmac.compare_digest(provided.encode(), expected.encode())
