"""Request latency logging middleware."""

import logging
import time
from typing import Callable

from fastapi import Request, Response

logger = logging.getLogger(__name__)

SLOW_REQUEST_THRESHOLD_MS = 1000
VERY_SLOW_REQUEST_THRESHOLD_MS = 3000

HEALTH_PATHS = ("/health", "/health/ready")


async def latency_logging_middleware(request: Request, call_next: Callable) -> Response:
    """Log method, path, status and latency of every request.

    Slow requests are logged as warnings (over 1s) or errors (over 3s);
    health probes only at debug level.
    """
    start_time = time.perf_counter()
    method = request.method
    path = request.url.path
    is_health_check = path in HEALTH_PATHS

    response = None
    try:
        response = await call_next(request)
        return response
    finally:
        latency_ms = (time.perf_counter() - start_time) * 1000
        status_code = response.status_code if response else 500

        if is_health_check:
            logger.debug("%s %s - %d - %.2fms", method, path, status_code, latency_ms)
        else:
            if status_code >= 500:
                logger.error("%s %s - %d - %.2fms", method, path, status_code, latency_ms)
            elif latency_ms > VERY_SLOW_REQUEST_THRESHOLD_MS:
                logger.error("VERY SLOW REQUEST: %s %s - %d - %.2fms", method, path, status_code, latency_ms)
            elif latency_ms > SLOW_REQUEST_THRESHOLD_MS:
                logger.warning("SLOW REQUEST: %s %s - %d - %.2fms", method, path, status_code, latency_ms)
            elif status_code >= 400:
                logger.warning("%s %s - %d - %.2fms", method, path, status_code, latency_ms)
            else:
                logger.info("%s %s - %d - %.2fms", method, path, status_code, latency_ms)
