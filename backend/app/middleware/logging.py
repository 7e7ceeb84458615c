from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from uuid import uuid4

from fastapi import Request
from fastapi.responses import Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp, Scope

from ..metrics import REQUEST_COUNT, REQUEST_ERRORS, REQUEST_LATENCY

REQUEST_ID_HEADER = "X-Request-ID"
UNMATCHED_PATH = "unmatched"


def route_label(scope: Scope) -> str:
    """Route template for metrics and logs.

    Requests that never reached a route (unknown paths, requests stopped by
    the rate-limit gate) share one label so the label space stays bounded.
    """

    path = getattr(scope.get("route"), "path", None)
    return str(path) if path else UNMATCHED_PATH


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id, log its outcome as JSON and record metrics."""

    def __init__(self, app: ASGIApp, *, logger_name: str = "confessions.request") -> None:
        super().__init__(app)
        self._logger = logging.getLogger(logger_name)
        if self._logger.level == logging.NOTSET:
            self._logger.setLevel(logging.INFO)

    async def dispatch(  # type: ignore[override]
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
        request.state.request_id = request_id
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            self._record(request, request_id, 500, started, failed=True)
            raise

        self._record(request, request_id, response.status_code, started)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response

    def _record(
        self,
        request: Request,
        request_id: str,
        status: int,
        started: float,
        *,
        failed: bool = False,
    ) -> None:
        duration_ms = (time.perf_counter() - started) * 1000
        path = route_label(request.scope)

        REQUEST_COUNT.labels(method=request.method, path=path, status=str(status)).inc()
        REQUEST_LATENCY.labels(method=request.method, path=path).observe(duration_ms / 1000)
        if status >= 500:
            REQUEST_ERRORS.labels(method=request.method, path=path, status=str(status)).inc()

        fields = {
            "request_id": request_id,
            "path": path,
            "method": request.method,
            "status": status,
            "duration_ms": round(duration_ms, 3),
        }
        if failed:
            self._logger.error("request error", extra=fields, exc_info=True)
        else:
            self._logger.info("request complete", extra=fields)


__all__ = [
    "REQUEST_ID_HEADER",
    "UNMATCHED_PATH",
    "RequestLoggingMiddleware",
    "route_label",
]
