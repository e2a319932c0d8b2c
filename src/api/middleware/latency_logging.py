"""Request latency logging middleware."""

import logging
import time
from typing import Callable

from fastapi import Request, Response

logger = logging.getLogger(__name__)

SLOW_REQUEST_THRESHOLD_MS = 1000
VERY_SLOW_REQUEST_THRESHOLD_MS = 3000

# Paths too noisy to log at INFO
QUIET_PATHS = ("/health", "/health/ready")


async def latency_logging_middleware(request: Request, call_next: Callable) -> Response:
    """Log method, path, status code and latency for each request.

    Args:
        request: The incoming request.
        call_next: The next middleware/handler in the chain.

    Returns:
        Response: The response from the handler.
    """
    start_time = time.perf_counter()
    response = None

    try:
        response = await call_next(request)
        return response
    finally:
        latency_ms = (time.perf_counter() - start_time) * 1000
        status_code = response.status_code if response else 500
        path = request.url.path
        args = (request.method, path, status_code, latency_ms)

        if latency_ms >= VERY_SLOW_REQUEST_THRESHOLD_MS:
            logger.error("Very slow request: %s %s -> %d (%.1fms)", *args)
        elif latency_ms >= SLOW_REQUEST_THRESHOLD_MS:
            logger.warning("Slow request: %s %s -> %d (%.1fms)", *args)
        elif path in QUIET_PATHS:
            logger.debug("%s %s -> %d (%.1fms)", *args)
        else:
            logger.info("%s %s -> %d (%.1fms)", *args)
