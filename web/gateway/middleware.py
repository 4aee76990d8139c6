"""Gateway middleware: request correlation and API payload limits.

``RequestIdMiddleware`` gives every request an identifier, either the
client's ``X-Request-Id`` header (when it looks like an id) or a new UUIDv4.
The id is stored on ``request.request_id`` and in ``REQUEST_ID_CTX`` so log
records, notifier threads and outbound Telegram calls can carry it, and it is
echoed back in the ``X-Request-ID`` response header.

``ApiSizeLimitMiddleware`` rejects ``/api/`` requests whose declared body is
larger than ``API_MAX_BYTES`` with 413 before any view parses them.
"""

import contextvars
import os
import re
import uuid

from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")
MAX_API_BYTES = int(os.getenv("API_MAX_BYTES", str(1 * 1024 * 1024)))

# Client ids end up in JSON logs and outbound headers.
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


class RequestIdMiddleware(MiddlewareMixin):
    """Set a per-request identifier and return it on the response.

    Attributes:
        HEADER (str): Incoming header as found in ``request.META``.
        RESPONSE_HEADER (str): Header added to outgoing responses.
    """

    HEADER = "HTTP_X_REQUEST_ID"
    RESPONSE_HEADER = "X-Request-ID"

    def process_request(self, request):
        rid = request.META.get(self.HEADER, "")
        if not _REQUEST_ID_RE.match(rid):
            rid = str(uuid.uuid4())
        request.request_id = rid
        request._request_id_token = REQUEST_ID_CTX.set(rid)

    def process_response(self, request, response):
        """Add ``X-Request-ID`` and restore the context for the next request.

        Worker threads are reused across requests, so the context var is
        reset to what it held before ``process_request``.
        """
        rid = getattr(request, "request_id", REQUEST_ID_CTX.get())
        response[self.RESPONSE_HEADER] = rid
        token = getattr(request, "_request_id_token", None)
        if token is not None:
            REQUEST_ID_CTX.reset(token)
            request._request_id_token = None
        return response


class ApiSizeLimitMiddleware(MiddlewareMixin):
    def process_request(self, request):
        if request.path.startswith("/api/"):
            clen = request.META.get("CONTENT_LENGTH")
            if clen and clen.isdigit() and int(clen) > MAX_API_BYTES:
                return JsonResponse({"detail": "PAYLOAD_TOO_LARGE"}, status=413)
