"""
Request/response logging middleware.

Logs every request with its status and processing time, and adds the
``X-Process-Time`` header to responses.
"""

import logging
import time
from datetime import datetime
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

_QUIET_PATHS = {"/api/v1/health", "/favicon.ico"}


class LoggingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, enable_detailed_logging: bool = False):
        """
        Args:
            app: FastAPI application instance
            enable_detailed_logging: Log request headers at DEBUG level
        """
        super().__init__(app)
        self.enable_detailed_logging = enable_detailed_logging

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        client_ip = request.client.host if request.client else None
        quiet = request.url.path in _QUIET_PATHS

        if not quiet:
            logger.info(f"📥 {request.method} {request.url.path} - {client_ip}")
        if self.enable_detailed_logging:
            sensitive = {"authorization", "cookie", "x-api-key", "x-hub-signature-256"}
            headers = {k: v for k, v in request.headers.items() if k.lower() not in sensitive}
            logger.debug(f"📋 Request headers: {headers}")

        try:
            response = await call_next(request)
        except Exception as e:
            process_time = time.time() - start_time
            logger.error(f"💥 {request.method} {request.url.path} - ERROR - {process_time:.3f}s - {e}")
            raise

        process_time = time.time() - start_time
        if not quiet:
            logger.info(
                f"📤 {request.method} {request.url.path} - {response.status_code} - {process_time:.3f}s"
            )
        response.headers["X-Process-Time"] = str(process_time)
        response.headers["X-Timestamp"] = datetime.now().isoformat()
        return response
