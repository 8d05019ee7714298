"""Request tracking middleware and client identity."""

import uuid

from fastapi import Request
from loguru import logger

SESSION_HEADER = "X-Session-Token"


async def add_request_id(request: Request, call_next):
    """Add request ID to context for tracking.

    Args:
        request: Incoming FastAPI request.
        call_next: Next middleware or handler in chain.

    Returns:
        Response with X-Request-ID header.

    """
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id

    with logger.contextualize(request_id=request_id):
        logger.debug(
            f"Request started: {request.method} {request.url.path} "
            f"from {request.client.host if request.client else None}"
        )

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        logger.debug(f"Request completed: {response.status_code}")

        return response


def get_client_identity(request: Request) -> str:
    """Derive the rate-limit subject for a request.

    The first ``X-Forwarded-For`` hop wins over the socket peer, and an
    ``X-Session-Token`` header, when present, narrows the identity further.
    """
    forwarded = request.headers.get("X-Forwarded-For", "")
    host = forwarded.split(",")[0].strip() if forwarded else ""
    if not host:
        host = request.client.host if request.client else "unknown"

    session = request.headers.get(SESSION_HEADER, "").strip()
    return f"{host}|{session[:64]}" if session else host
