from __future__ import annotations

from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "confessions_requests_total",
    "Total HTTP requests processed",
    ("method", "path", "status"),
)

REQUEST_LATENCY = Histogram(
    "confessions_request_latency_seconds",
    "HTTP request latency in seconds",
    ("method", "path"),
)

REQUEST_ERRORS = Counter(
    "confessions_request_errors_total",
    "HTTP requests resulting in server errors",
    ("method", "path", "status"),
)

RATE_LIMIT_DECISIONS = Counter(
    "confessions_rate_limit_decisions_total",
    "Edge gating decisions by path class",
    ("surface", "result"),
)

BACKEND_CALLS = Counter(
    "confessions_backend_calls_total",
    "Calls made to the hosted backend",
    ("operation", "result"),
)

__all__ = [
    "BACKEND_CALLS",
    "RATE_LIMIT_DECISIONS",
    "REQUEST_COUNT",
    "REQUEST_ERRORS",
    "REQUEST_LATENCY",
]
