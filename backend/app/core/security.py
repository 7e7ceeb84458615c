from __future__ import annotations

import hashlib
import re
from collections.abc import Mapping

from fastapi import Cookie, HTTPException, Request, Response, status
from starlette.datastructures import MutableHeaders

from ..schemas.confession import AnonymousSession
from ..services.supabase import BackendError

ANONYMOUS_CLIENT = "anonymous"
USER_AGENT_PREFIX = 64

SESSION_COOKIE = "uc_session"
TOKEN_COOKIE = "uc_token"
SESSION_MAX_AGE = 365 * 24 * 3600

_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

CONTENT_SECURITY_POLICY = (
    "default-src 'self'; "
    "script-src 'self' 'unsafe-inline' 'unsafe-eval'; "
    "style-src 'self' 'unsafe-inline'; "
    "img-src 'self' data: https: blob:; "
    "font-src 'self' data:; "
    "connect-src 'self' https://*.supabase.co wss://*.supabase.co "
    "https://*.tile.openstreetmap.org https://cdnjs.cloudflare.com; "
    "frame-ancestors 'none'; base-uri 'self'; form-action 'self';"
)

SECURITY_HEADERS: dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
    "Content-Security-Policy": CONTENT_SECURITY_POLICY,
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains; preload",
}


def client_identifier(headers: Mapping[str, str]) -> str:
    """Group requests by forwarded address and user-agent prefix.

    The key is a coarse grouping hint, not a trusted identity: nothing is
    validated and distinct clients may collide.
    """

    forwarded = headers.get("x-forwarded-for") or ""
    address = forwarded.split(",")[0].strip()
    if not address:
        address = headers.get("x-real-ip") or ANONYMOUS_CLIENT
    user_agent = headers.get("user-agent") or ""
    return f"{address}-{user_agent[:USER_AGENT_PREFIX]}"


def hash_client_key(key: str) -> str:
    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:12]


def apply_security_headers(headers: MutableHeaders) -> None:
    for name, value in SECURITY_HEADERS.items():
        headers[name] = value


def is_valid_uuid(value: object) -> bool:
    return isinstance(value, str) and _UUID_RE.match(value) is not None


def set_session_cookies(response: Response, session: AnonymousSession) -> None:
    response.set_cookie(
        SESSION_COOKIE,
        session.user_id,
        httponly=True,
        secure=False,
        max_age=SESSION_MAX_AGE,
        samesite="lax",
    )
    if session.access_token:
        response.set_cookie(
            TOKEN_COOKIE,
            session.access_token,
            httponly=True,
            secure=False,
            max_age=SESSION_MAX_AGE,
            samesite="lax",
        )


def optional_visitor(
    session_id: str | None = Cookie(default=None, alias=SESSION_COOKIE),
    access_token: str | None = Cookie(default=None, alias=TOKEN_COOKIE),
) -> AnonymousSession | None:
    """Visitor session from cookies, ``None`` when absent or malformed."""

    if not is_valid_uuid(session_id):
        return None
    return AnonymousSession(user_id=session_id, access_token=access_token or None)


async def ensure_visitor(
    request: Request,
    response: Response,
    session_id: str | None = Cookie(default=None, alias=SESSION_COOKIE),
    access_token: str | None = Cookie(default=None, alias=TOKEN_COOKIE),
) -> AnonymousSession:
    """Resolve the visitor session, signing in anonymously when it is missing."""

    existing = optional_visitor(session_id, access_token)
    if existing is not None:
        return existing

    service = request.app.state.confession_service
    try:
        session = await service.start_session()
    except BackendError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Couldn't start an anonymous session.",
        ) from exc
    set_session_cookies(response, session)
    return session


__all__ = [
    "SECURITY_HEADERS",
    "SESSION_COOKIE",
    "TOKEN_COOKIE",
    "apply_security_headers",
    "client_identifier",
    "ensure_visitor",
    "hash_client_key",
    "is_valid_uuid",
    "optional_visitor",
    "set_session_cookies",
]
