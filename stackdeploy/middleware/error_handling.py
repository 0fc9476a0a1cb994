"""
Error handling middleware.

Turns orchestrator errors and unexpected exceptions raised by route handlers
into ``ErrorResponse`` JSON bodies with a matching status code.
"""

import logging
import traceback
from typing import Callable

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from stackdeploy.domain.errors import (
    BuildError,
    DeployError,
    OrchestratorError,
    PipelineBusyError,
    RollbackNoPriorStateError,
    SourceFetchError,
    UnknownJobError,
)
from stackdeploy.schemas import ErrorResponse

logger = logging.getLogger(__name__)

STATUS_BY_ERROR = [
    (UnknownJobError, status.HTTP_404_NOT_FOUND),
    (PipelineBusyError, status.HTTP_409_CONFLICT),
    (RollbackNoPriorStateError, status.HTTP_409_CONFLICT),
    (SourceFetchError, status.HTTP_502_BAD_GATEWAY),
    (DeployError, status.HTTP_502_BAD_GATEWAY),
    (BuildError, status.HTTP_422_UNPROCESSABLE_ENTITY),
]


def status_for(exc: OrchestratorError) -> int:
    for error_type, code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, enable_error_logging: bool = True):
        """
        Args:
            app: FastAPI application instance
            enable_error_logging: Log full tracebacks for unexpected errors
        """
        super().__init__(app)
        self.enable_error_logging = enable_error_logging

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except OrchestratorError as e:
            return self._handle_orchestrator_error(request, e)
        except Exception as e:
            return self._handle_unexpected_exception(request, e)

    def _handle_orchestrator_error(self, request: Request, exc: OrchestratorError) -> JSONResponse:
        status_code = status_for(exc)
        logger.warning(f"🚨 {exc.error_code} for {request.method} {request.url.path}: {exc.message}")
        error_response = ErrorResponse(
            error=exc.message,
            error_code=exc.error_code,
            details={"path": str(request.url.path), "method": request.method, "status_code": status_code},
        )
        return JSONResponse(status_code=status_code, content=error_response.model_dump(mode="json"))

    def _handle_unexpected_exception(self, request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"💥 Unexpected error for {request.method} {request.url.path}: {exc}")
        if self.enable_error_logging:
            logger.error(f"📋 Full traceback:\n{traceback.format_exc()}")

        error_response = ErrorResponse(
            error="Internal server error",
            error_code="INTERNAL_ERROR",
            details={
                "path": str(request.url.path),
                "method": request.method,
                "error_type": type(exc).__name__,
            },
        )
        return JSONResponse(status_code=500, content=error_response.model_dump(mode="json"))
