"""Exception handlers for standardized error responses."""
import logging
from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException
from models import ErrorResponse
from config import DEBUG
from utils.errors import (
    InvalidRange, LocationNotFound, StoreReadFailure, UpstreamFailure, UpstreamRateLimited
)

logger = logging.getLogger(__name__)

# Error code mappings
ERROR_CODES = {
    400: "BAD_REQUEST",
    404: "NOT_FOUND",
    422: "VALIDATION_ERROR",
    429: "RATE_LIMIT_EXCEEDED",
    500: "INTERNAL_SERVER_ERROR",
    502: "BAD_GATEWAY",
    503: "SERVICE_UNAVAILABLE",
}


def _error_response(request: Request, status_code: int, message: str, code: str = None, details=None) -> JSONResponse:
    code = code or ERROR_CODES.get(status_code, "UNKNOWN_ERROR")
    error_response = ErrorResponse(
        error=code,
        message=message,
        code=code,
        details=details,
        path=request.url.path,
        method=request.method,
        request_id=getattr(request.state, 'request_id', None),
    )
    return JSONResponse(status_code=status_code, content=error_response.model_dump())


def register_exception_handlers(app):
    """Register all exception handlers with the FastAPI app."""

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle request validation errors with standardized error format."""
        error_details = []
        for error in exc.errors():
            error_details.append({
                "field": " -> ".join(str(loc) for loc in error['loc']),
                "message": error['msg'],
                "type": error['type'],
            })
        logger.warning(f"❌ VALIDATION ERROR: {error_details} | Path={request.url.path}")
        return _error_response(request, 422, "Request data validation failed", details=error_details)

    @app.exception_handler(InvalidRange)
    async def invalid_range_handler(request: Request, exc: InvalidRange):
        return _error_response(request, 400, str(exc), code="INVALID_RANGE")

    @app.exception_handler(LocationNotFound)
    async def location_not_found_handler(request: Request, exc: LocationNotFound):
        return _error_response(request, 404, str(exc), code="LOCATION_NOT_FOUND")

    @app.exception_handler(UpstreamFailure)
    async def upstream_failure_handler(request: Request, exc: UpstreamFailure):
        logger.error(f"❌ UPSTREAM FAILURE: {exc} | Path={request.url.path}")
        if isinstance(exc, UpstreamRateLimited):
            return _error_response(request, 429, "Upstream weather provider is rate limiting requests")
        return _error_response(
            request,
            502,
            "Upstream weather provider failed",
            code="UPSTREAM_FAILURE",
            details={"status": exc.status} if exc.status else None,
        )

    @app.exception_handler(StoreReadFailure)
    async def store_read_failure_handler(request: Request, exc: StoreReadFailure):
        logger.error(f"❌ STORE READ FAILURE: {exc} | Path={request.url.path}")
        return _error_response(request, 503, "Temperature store is unavailable")

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Handle HTTPException with standardized error format."""
        if isinstance(exc.detail, dict):
            message = exc.detail.get("message", "An error occurred")
            return _error_response(request, exc.status_code, message, exc.detail.get("code"), exc.detail.get("details"))
        message = str(exc.detail) if exc.detail else "An error occurred"
        return _error_response(request, exc.status_code, message)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unhandled exceptions with standardized error format."""
        request_id = getattr(request.state, 'request_id', None)
        logger.error(
            f"❌ UNHANDLED EXCEPTION: {type(exc).__name__}: {str(exc)} | Path={request.url.path} | Request-ID={request_id}",
            exc_info=True,
        )
        return _error_response(
            request,
            500,
            "An internal server error occurred" if not DEBUG else str(exc),
            details={"type": type(exc).__name__} if DEBUG else None,
        )
