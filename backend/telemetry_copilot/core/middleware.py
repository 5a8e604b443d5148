"""
Custom middleware – request-id propagation and request timing.
"""

from __future__ import annotations

import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from telemetry_copilot.core.logging import get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-Id"
ELAPSED_HEADER = "X-Elapsed-Ms"


class RequestIdMiddleware(BaseHTTPMiddleware):
    """
    Assigns a unique ``X-Request-Id`` to every request and reports how
    long the request took.

    * A client-supplied id is reused.
    * The id is stored on ``request.state`` so handlers can pass it to
      loggers, and echoed back with ``X-Elapsed-Ms``.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id

        t0 = time.perf_counter()
        response: Response = await call_next(request)
        elapsed_ms = round((time.perf_counter() - t0) * 1000)

        logger.info(
            "%s %s -> %d (%d ms)",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
            extra={"request_id": request_id},
        )

        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers[ELAPSED_HEADER] = str(elapsed_ms)
        return response
