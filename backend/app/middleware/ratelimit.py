from __future__ import annotations

import logging
import math
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from fastapi import Request
from fastapi.responses import PlainTextResponse, Response
from starlette.middleware.base import BaseHTTPMiddleware

from ..core.config import Settings
from ..core.security import apply_security_headers, client_identifier, hash_client_key
from ..metrics import RATE_LIMIT_DECISIONS
from ..services.ratelimit import RateLimiter, RateLimitResult

API_PREFIX = "/api/"
RETRY_AFTER_SECONDS = "60"

# Static files and images are served without gating
_UNGATED_PATH = re.compile(
    r"^/(static/|favicon\.ico$)|\.(svg|png|jpg|jpeg|gif|webp|ico)$",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class RateLimitPolicy:
    api_limit: int = 30
    page_limit: int = 90
    window_ms: int = 60 * 1000

    @classmethod
    def from_settings(cls, settings: Settings) -> RateLimitPolicy:
        return cls(
            api_limit=settings.rate_limit_api,
            page_limit=settings.rate_limit_pages,
            window_ms=settings.rate_limit_window_seconds * 1000,
        )

    def limit_for(self, is_api: bool) -> int:
        return self.api_limit if is_api else self.page_limit


def is_gated_path(path: str) -> bool:
    return _UNGATED_PATH.search(path) is None


def _apply_rate_limit_headers(response: Response, limit: int, result: RateLimitResult) -> None:
    response.headers["X-RateLimit-Limit"] = str(limit)
    response.headers["X-RateLimit-Remaining"] = str(result.remaining)
    response.headers["X-RateLimit-Reset"] = str(math.ceil(result.reset_at / 1000))


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Gate every page and API request through the shared fixed-window limiter.

    The limiter and its policy are read from ``app.state`` on each request so
    they follow the application lifespan.
    """

    def __init__(self, app) -> None:
        super().__init__(app)
        self._logger = logging.getLogger("confessions.ratelimit")

    async def dispatch(  # type: ignore[override]
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        path = request.url.path
        if not is_gated_path(path):
            return await call_next(request)

        is_api = path.startswith(API_PREFIX)
        surface = "api" if is_api else "page"

        if is_api and request.method != "GET":
            RATE_LIMIT_DECISIONS.labels(surface=surface, result="method_not_allowed").inc()
            response: Response = PlainTextResponse("Method Not Allowed", status_code=405)
            response.headers["Allow"] = "GET"
            apply_security_headers(response.headers)
            return response

        limiter: RateLimiter = request.app.state.rate_limiter
        policy: RateLimitPolicy = request.app.state.rate_limit_policy
        limit = policy.limit_for(is_api)
        key = client_identifier(request.headers)
        result = limiter.check(key, limit, policy.window_ms)

        if not result.allowed:
            RATE_LIMIT_DECISIONS.labels(surface=surface, result="rejected").inc()
            self._logger.warning(
                "request throttled",
                extra={
                    "path": path,
                    "method": request.method,
                    "status": 429,
                    "client": hash_client_key(key),
                    "surface": surface,
                    "limit": limit,
                },
            )
            response = PlainTextResponse("Too Many Requests", status_code=429)
            response.headers["Retry-After"] = RETRY_AFTER_SECONDS
            _apply_rate_limit_headers(response, limit, result)
            apply_security_headers(response.headers)
            return response

        RATE_LIMIT_DECISIONS.labels(surface=surface, result="allowed").inc()
        response = await call_next(request)
        _apply_rate_limit_headers(response, limit, result)
        apply_security_headers(response.headers)
        return response


__all__ = [
    "RateLimitMiddleware",
    "RateLimitPolicy",
    "is_gated_path",
]
