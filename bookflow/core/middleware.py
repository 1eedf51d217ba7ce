# bookflow/core/middleware.py
"""Correlation ids and access logging for HTTP requests"""
import logging
import time
import uuid

from starlette.requests import Request

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"

# Provider retries hit these often; one line per call is enough
WEBHOOK_PREFIX = "/webhooks/"


async def correlation_id_middleware(request: Request, call_next):
    """
    Reuse the caller's correlation id or mint one.

    Webhook handlers pass it on to Celery tasks, so a payment can be followed
    from the notification to the WhatsApp confirmation.
    """
    correlation_id = request.headers.get(CORRELATION_HEADER) or uuid.uuid4().hex
    request.state.correlation_id = correlation_id

    response = await call_next(request)
    response.headers[CORRELATION_HEADER] = correlation_id
    return response


async def request_logging_middleware(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000

    path = request.url.path
    if path.startswith("/health"):
        return response

    level = logging.WARNING if response.status_code >= 500 else logging.INFO
    source = "webhook" if path.startswith(WEBHOOK_PREFIX) else "api"
    logger.log(
        level,
        f"{source} {request.method} {path} -> {response.status_code} in {elapsed_ms:.1f} ms",
        extra={"correlation_id": getattr(request.state, "correlation_id", "-")},
    )
    return response
