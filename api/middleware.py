# ============================================================================
# File: api/middleware.py
# ============================================================================

import time
import uuid
import logging
from typing import Optional
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

logger = logging.getLogger(__name__)

ACTOR_HEADER = "X-Actor"


def request_actor(request: Request, explicit: Optional[str] = None) -> Optional[str]:
    """Actor for a mutating call: explicit value, else the X-Actor header"""
    return explicit or getattr(request.state, "actor", None)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Per-request context for the import API.

    Sets on request.state:
    - request_id: incoming X-Request-ID, or a new UUID
    - actor: X-Actor header, recorded on runs and clinics when the body
      names no actor

    Adds X-Request-ID and X-API-Latency-ms to every response.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        request.state.actor = (request.headers.get(ACTOR_HEADER) or "").strip() or None

        started = time.perf_counter()
        response: Response = await call_next(request)
        latency_ms = int((time.perf_counter() - started) * 1000)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-API-Latency-ms"] = str(latency_ms)

        logger.info(
            f"[{request_id}] {request.method} {request.url.path} -> {response.status_code} "
            f"({latency_ms}ms, actor={request.state.actor or '-'})"
        )
        return response
