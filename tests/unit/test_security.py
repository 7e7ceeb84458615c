from __future__ import annotations

from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
from starlette.datastructures import Headers, MutableHeaders

from backend.app.core.security import (
    SECURITY_HEADERS,
    SESSION_COOKIE,
    TOKEN_COOKIE,
    apply_security_headers,
    client_identifier,
    ensure_visitor,
    hash_client_key,
    is_valid_uuid,
)
from backend.app.schemas.confession import AnonymousSession
from backend.app.services.supabase import BackendError

VISITOR_ID = "3f2b8c1e-5d4a-4b6c-9e7f-0a1b2c3d4e5f"


def test_client_identifier_uses_first_forwarded_address() -> None:
    headers = Headers(
        {
            "x-forwarded-for": " 203.0.113.7 , 10.0.0.1",
            "x-real-ip": "198.51.100.2",
            "user-agent": "Mozilla/5.0",
        }
    )
    assert client_identifier(headers) == "203.0.113.7-Mozilla/5.0"


def test_client_identifier_falls_back_to_real_ip() -> None:
    headers = Headers({"x-real-ip": "198.51.100.2", "user-agent": "curl/8"})
    assert client_identifier(headers) == "198.51.100.2-curl/8"


def test_client_identifier_blank_forwarded_header_falls_back() -> None:
    headers = Headers({"x-forwarded-for": " , 10.0.0.1", "x-real-ip": "198.51.100.2"})
    assert client_identifier(headers) == "198.51.100.2-"


def test_client_identifier_sentinel_without_address() -> None:
    assert client_identifier({}) == "anonymous-"


def test_client_identifier_truncates_user_agent() -> None:
    agent = "A" * 100
    key = client_identifier({"user-agent": agent})
    assert key == "anonymous-" + "A" * 64


def test_hash_client_key_is_stable_and_short() -> None:
    assert hash_client_key("k") == hash_client_key("k")
    assert len(hash_client_key("k")) == 12
    assert hash_client_key("k") != hash_client_key("j")


def test_is_valid_uuid() -> None:
    assert is_valid_uuid(VISITOR_ID)
    assert is_valid_uuid(VISITOR_ID.upper())
    assert not is_valid_uuid("not-a-uuid")
    assert not is_valid_uuid("3f2b8c1e-5d4a-6b6c-9e7f-0a1b2c3d4e5f")
    assert not is_valid_uuid(None)


def test_apply_security_headers_sets_baseline() -> None:
    headers = MutableHeaders()
    apply_security_headers(headers)
    for name, value in SECURITY_HEADERS.items():
        assert headers[name] == value
    assert headers["X-Frame-Options"] == "DENY"


class _StubService:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.sessions = 0

    async def start_session(self) -> AnonymousSession:
        if self.fail:
            raise BackendError("auth:anonymous: disabled", status_code=422)
        self.sessions += 1
        return AnonymousSession(user_id=VISITOR_ID, access_token="jwt-token")


def _app_with_visitor(service: _StubService) -> FastAPI:
    app = FastAPI()
    app.state.confession_service = service

    @app.get("/whoami")
    async def whoami(visitor: AnonymousSession = Depends(ensure_visitor)) -> dict[str, str | None]:
        return {"user": visitor.user_id, "token": visitor.access_token}

    return app


def test_ensure_visitor_reuses_cookie() -> None:
    service = _StubService()
    with TestClient(_app_with_visitor(service)) as client:
        client.cookies.set(SESSION_COOKIE, VISITOR_ID)
        client.cookies.set(TOKEN_COOKIE, "existing")
        response = client.get("/whoami")

    assert response.status_code == 200
    assert response.json() == {"user": VISITOR_ID, "token": "existing"}
    assert service.sessions == 0


def test_ensure_visitor_signs_in_when_cookie_missing() -> None:
    service = _StubService()
    with TestClient(_app_with_visitor(service)) as client:
        response = client.get("/whoami")

    assert response.status_code == 200
    assert response.json()["user"] == VISITOR_ID
    assert service.sessions == 1
    assert response.cookies.get(SESSION_COOKIE) == VISITOR_ID
    assert response.cookies.get(TOKEN_COOKIE) == "jwt-token"


def test_ensure_visitor_ignores_malformed_cookie() -> None:
    service = _StubService()
    with TestClient(_app_with_visitor(service)) as client:
        client.cookies.set(SESSION_COOKIE, "garbage")
        response = client.get("/whoami")

    assert response.status_code == 200
    assert service.sessions == 1


def test_ensure_visitor_backend_failure_is_bad_gateway() -> None:
    service = _StubService(fail=True)
    with TestClient(_app_with_visitor(service)) as client:
        response = client.get("/whoami")

    assert response.status_code == 502
