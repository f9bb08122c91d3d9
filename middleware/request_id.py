"""Request ID middleware for tracing."""
import uuid
from fastapi import Request


async def request_id_middleware(request: Request, call_next):
    """Attach a request ID, reusing the caller's X-Request-ID when present."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id

    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id

    return response
