from .logging import RequestLoggingMiddleware
from .ratelimit import RateLimitMiddleware, RateLimitPolicy

__all__ = ["RateLimitMiddleware", "RateLimitPolicy", "RequestLoggingMiddleware"]
