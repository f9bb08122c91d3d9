"""Request logging middleware."""
import time
import logging
from fastapi import Request
from config import DEBUG, LOG_VERBOSITY
from utils.validation import sanitize_for_logging

logger = logging.getLogger(__name__)

_QUIET_PATHS = {"/", "/docs", "/openapi.json", "/redoc", "/health"}


async def log_requests_middleware(request: Request, call_next):
    """Log requests and response timings when DEBUG is enabled or verbosity is verbose."""
    if not (DEBUG or LOG_VERBOSITY == "verbose") or request.url.path in _QUIET_PATHS:
        return await call_next(request)

    start_time = time.time()
    request_id = getattr(request.state, "request_id", None)
    logger.debug(
        f"🌐 REQUEST: {request.method} {sanitize_for_logging(request.url.path, max_length=200)} | Request-ID: {request_id}"
    )

    response = await call_next(request)

    process_time = time.time() - start_time
    logger.debug(
        f"✅ RESPONSE: {response.status_code} | {request.method} {request.url.path} | {process_time:.3f}s | Request-ID: {request_id}"
    )
    return response
