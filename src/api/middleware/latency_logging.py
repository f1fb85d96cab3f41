"""Request latency logging middleware."""

import logging
import time
from typing import Callable

from fastapi import Request, Response

logger = logging.getLogger(__name__)

# Thresholds for log levels (in milliseconds)
SLOW_REQUEST_THRESHOLD_MS = 1000
VERY_SLOW_REQUEST_THRESHOLD_MS = 3000
SLOW_HEALTH_THRESHOLD_MS = 100

HEALTH_PATHS = ("/health", "/health/ready")

CHECKOUT_PREFIX = "/api/v1/checkout/"

# Checkout sub-paths that are not quote ids
CHECKOUT_STATIC_SEGMENTS = ("payment",)


def _quote_id_from_path(path: str) -> str | None:
    """Extract the quote id from /api/v1/checkout/{quote_id}/... paths."""
    if not path.startswith(CHECKOUT_PREFIX):
        return None
    segment = path[len(CHECKOUT_PREFIX):].split("/", 1)[0]
    if not segment or segment in CHECKOUT_STATIC_SEGMENTS:
        return None
    return segment


def _log_level(path: str, status_code: int, latency_ms: float, failed: bool) -> tuple[int, str]:
    """Pick the log level and message prefix for one request."""
    if path in HEALTH_PATHS:
        if latency_ms > SLOW_HEALTH_THRESHOLD_MS:
            return logging.DEBUG, "SLOW HEALTH CHECK: "
        return logging.NOTSET, ""
    if failed or status_code >= 500:
        return logging.ERROR, ""
    if latency_ms > VERY_SLOW_REQUEST_THRESHOLD_MS:
        return logging.ERROR, "VERY SLOW REQUEST: "
    if latency_ms > SLOW_REQUEST_THRESHOLD_MS:
        return logging.WARNING, "SLOW REQUEST: "
    if status_code >= 400:
        return logging.WARNING, ""
    return logging.INFO, ""


async def latency_logging_middleware(request: Request, call_next: Callable) -> Response:
    """Log method, path, status and latency of every request.

    Checkout requests carry their quote id in the log record; health
    checks are only logged when slow.

    Args:
        request: The incoming request.
        call_next: The next middleware/handler in the chain.

    Returns:
        Response: The response from the handler.
    """
    start_time = time.perf_counter()
    path = request.url.path
    response = None
    failed = False

    try:
        response = await call_next(request)
        return response
    except Exception:
        failed = True
        raise
    finally:
        latency_ms = (time.perf_counter() - start_time) * 1000
        status_code = response.status_code if response is not None else 500
        level, prefix = _log_level(path, status_code, latency_ms, failed)

        if level != logging.NOTSET:
            extra = {
                "method": request.method,
                "path": path,
                "status_code": status_code,
                "latency_ms": round(latency_ms, 2),
                "error": failed,
            }
            quote_id = _quote_id_from_path(path)
            if quote_id:
                extra["quote_id"] = quote_id
            logger.log(
                level,
                "%s%s %s - %s - %.2fms",
                prefix,
                request.method,
                path,
                status_code,
                latency_ms,
                extra=extra,
            )
