"""
Middleware for performance monitoring and observability.
"""

import time
import uuid
import logging
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from consortium_api.cache import config_cache

# Configure structured logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("consortium_api")


class PerformanceMiddleware(BaseHTTPMiddleware):
    """
    Middleware to track request performance and add request IDs.

    Features:
    - Adds X-Request-ID header (uses provided value, the idempotency key, or a UUID)
    - Tracks request duration
    - Logs request/response details
    - Warns when consortium writes exceed the configured threshold
    """

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.threshold_ms = config_cache.slow_request_threshold_ms
        self.watched_suffixes = tuple(config_cache.slow_request_paths)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID")
        if not request_id:
            request_id = request.headers.get("X-Idempotency-Key") or str(uuid.uuid4())

        # Store request ID in request state for access by endpoints
        request.state.request_id = request_id

        start_time = time.time()

        logger.info(
            f"Request started | "
            f"request_id={request_id} | "
            f"method={request.method} | "
            f"path={request.url.path} | "
            f"client={request.client.host if request.client else 'unknown'}"
        )

        try:
            response = await call_next(request)

            duration_ms = (time.time() - start_time) * 1000

            logger.info(
                f"Request completed | "
                f"request_id={request_id} | "
                f"method={request.method} | "
                f"path={request.url.path} | "
                f"status={response.status_code} | "
                f"duration_ms={duration_ms:.2f}"
            )

            response.headers["X-Request-ID"] = request_id
            response.headers["X-Response-Time-Ms"] = f"{duration_ms:.2f}"

            if (
                duration_ms > self.threshold_ms
                and request.method == "POST"
                and request.url.path.endswith(self.watched_suffixes)
            ):
                logger.warning(
                    f"Slow consortium request | "
                    f"request_id={request_id} | "
                    f"path={request.url.path} | "
                    f"duration_ms={duration_ms:.2f} | "
                    f"threshold_ms={self.threshold_ms:.0f}"
                )

            return response

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000

            logger.error(
                f"Request failed | "
                f"request_id={request_id} | "
                f"method={request.method} | "
                f"path={request.url.path} | "
                f"duration_ms={duration_ms:.2f} | "
                f"error={str(e)}"
            )
            raise
