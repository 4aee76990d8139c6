"""Logging filter that stamps records with the current request id.

Add it to a handler so the JSON formatter can always reference
``%(request_id)s``. Outside of a request (management commands, notifier
threads started without a copied context) the id is ``"-"``.
"""

from logging import Filter, LogRecord

from .middleware import REQUEST_ID_CTX


class RequestIdFilter(Filter):
    """Attach ``request_id`` from ``REQUEST_ID_CTX`` to every record."""

    def filter(self, record: LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = REQUEST_ID_CTX.get()
        return True
