"""Middleware for error handling and request logging."""

import time
import uuid
from datetime import datetime
from typing import Callable
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .exceptions import (
    ConflictError,
    EvaluationError,
    ForbiddenError,
    IllegalStateError,
    InvalidArgumentError,
    NotFoundError,
    RecordflowError,
    TransitionValidationError,
    create_error_response,
)
from .logging import get_logger, set_logging_context, clear_logging_context


logger = get_logger(__name__)


def status_code_for_error(error: RecordflowError) -> int:
    """Determine the HTTP status code for a recordflow error."""
    if isinstance(error, NotFoundError):
        return 404
    elif isinstance(error, InvalidArgumentError):
        return 400
    elif isinstance(error, ForbiddenError):
        return 403
    elif isinstance(error, TransitionValidationError):
        return 422
    elif isinstance(error, (IllegalStateError, ConflictError)):
        return 409
    elif isinstance(error, EvaluationError):
        return 422
    else:
        return 500


def error_response(error: RecordflowError, request_id: str = None) -> JSONResponse:
    """Build the JSON response for a recordflow error."""
    headers = {"X-Request-ID": request_id} if request_id else None
    return JSONResponse(
        status_code=status_code_for_error(error),
        content=create_error_response(error),
        headers=headers
    )


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Middleware for request tracing and error handling."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request with error handling."""
        # Generate request ID for tracing
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        start_time = time.time()

        set_logging_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else "unknown"
        )

        try:
            logger.info(f"Request started: {request.method} {request.url.path}")

            response = await call_next(request)

            duration = time.time() - start_time
            logger.info(
                f"Request completed: {request.method} {request.url.path} - "
                f"Status: {response.status_code} - Duration: {duration:.3f}s"
            )

            response.headers["X-Request-ID"] = request_id
            return response

        except RecordflowError as e:
            duration = time.time() - start_time
            logger.warning(
                f"Recordflow error: {request.method} {request.url.path} - "
                f"Error: {e.error_code} - Duration: {duration:.3f}s",
                extra={"extra_fields": {"error_details": e.to_dict()}}
            )
            return error_response(e, request_id)

        except Exception as e:
            duration = time.time() - start_time
            logger.error(
                f"Unexpected error: {request.method} {request.url.path} - "
                f"Error: {str(e)} - Duration: {duration:.3f}s",
                exc_info=True
            )

            return JSONResponse(
                status_code=500,
                content={
                    "error": "InternalServerError",
                    "message": "An unexpected error occurred",
                    "details": {
                        "error_type": type(e).__name__,
                        "timestamp": datetime.utcnow().isoformat()
                    },
                    "request_id": request_id
                },
                headers={"X-Request-ID": request_id}
            )

        finally:
            clear_logging_context()


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for detailed request/response logging."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Log request and response details."""
        start_time = time.time()

        logger.debug(
            f"Request details: {request.method} {request.url} - "
            f"Query params: {dict(request.query_params)}"
        )

        response = await call_next(request)

        duration = time.time() - start_time
        logger.debug(
            f"Response details: Status {response.status_code} - "
            f"Duration: {duration:.3f}s"
        )
        response.headers["X-Response-Time"] = f"{duration:.3f}s"

        return response
