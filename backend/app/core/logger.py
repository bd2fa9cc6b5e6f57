# app/core/logger.py
"""
Process-wide logging setup.

Modules either import the shared ``logger`` from here or take a module
logger with ``logging.getLogger(__name__)``; both end up on the same
stdout handler configured below.
"""
import contextvars
import logging
import sys

from app.core.config import settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s [%(correlation_id)s]: %(message)s"

# Set per request by CorrelationMiddleware
correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("correlation_id", default="-")


class CorrelationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get()
        return True


def configure_logging() -> None:
    root = logging.getLogger()
    if getattr(root, "_evidence_review_configured", False):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(CorrelationIdFilter())
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)

    # Vendor SDKs are chatty at DEBUG
    for noisy in ("httpx", "httpcore", "openai", "botocore", "neo4j"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    root._evidence_review_configured = True


configure_logging()

logger = logging.getLogger("app")
