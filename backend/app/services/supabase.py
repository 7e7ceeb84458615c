from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

import httpx

from ..core.schools import DEFAULT_SCHOOL_ID
from ..metrics import BACKEND_CALLS
from ..schemas.confession import AnonymousSession, ConfessionModel, FeedSort
from ..utils.timeouts import retry_async

logger = logging.getLogger(__name__)

CONFESSIONS_TABLE = "confessions"
LIKES_TABLE = "confession_likes"

CONFESSION_COLUMNS = "id,created_at,body,school_id,views_count,likes_count"
# Deployments created before likes were added lack the likes_count column
LEGACY_CONFESSION_COLUMNS = "id,created_at,body,school_id,views_count"

UNIQUE_VIOLATION = "23505"


class BackendError(Exception):
    """Raised when the hosted backend rejects a call or cannot be reached."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


def _error_from_response(operation: str, response: httpx.Response) -> BackendError:
    message = response.text or response.reason_phrase
    code: str | None = None
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        message = str(payload.get("message") or payload.get("msg") or payload.get("error") or message)
        raw_code = payload.get("code") or payload.get("error_code")
        code = str(raw_code) if raw_code is not None else None
    return BackendError(
        f"{operation}: {message}",
        status_code=response.status_code,
        code=code,
    )


def _order_param(order: Sequence[tuple[str, bool]]) -> str:
    return ",".join(f"{column}.{'asc' if ascending else 'desc'}" for column, ascending in order)


class SupabaseClient:
    """Minimal PostgREST/GoTrue client for the hosted backend."""

    def __init__(
        self,
        url: str,
        anon_key: str,
        *,
        timeout: float = 10.0,
        retries: int = 3,
        retry_delay: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._anon_key = anon_key
        self._retries = retries
        self._retry_delay = retry_delay
        self._client = httpx.AsyncClient(
            base_url=url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={"apikey": anon_key},
        )

    def _auth_headers(self, access_token: str | None) -> dict[str, str]:
        return {"Authorization": f"Bearer {access_token or self._anon_key}"}

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        params: Mapping[str, str] | None = None,
        json: Any = None,
        headers: Mapping[str, str] | None = None,
        access_token: str | None = None,
        idempotent: bool = False,
    ) -> Any:
        request_headers = self._auth_headers(access_token)
        if headers:
            request_headers.update(headers)

        async def _send() -> httpx.Response:
            return await self._client.request(
                method,
                path,
                params=params,
                json=json,
                headers=request_headers,
            )

        try:
            if idempotent:
                response = await retry_async(
                    _send,
                    attempts=self._retries,
                    delay=self._retry_delay,
                    retry_on=(httpx.TransportError,),
                )
            else:
                response = await _send()
        except httpx.HTTPError as exc:
            BACKEND_CALLS.labels(operation=operation, result="error").inc()
            raise BackendError(f"{operation}: {exc}") from exc

        if response.status_code >= 400:
            BACKEND_CALLS.labels(operation=operation, result="error").inc()
            raise _error_from_response(operation, response)

        BACKEND_CALLS.labels(operation=operation, result="ok").inc()
        if not response.content:
            return None
        return response.json()

    @staticmethod
    def _filter_params(
        filters: Mapping[str, str] | None,
        in_filters: Mapping[str, Iterable[str]] | None = None,
    ) -> dict[str, str]:
        params = {column: f"eq.{value}" for column, value in (filters or {}).items()}
        for column, values in (in_filters or {}).items():
            params[column] = f"in.({','.join(values)})"
        return params

    async def select(
        self,
        table: str,
        columns: str,
        *,
        filters: Mapping[str, str] | None = None,
        in_filters: Mapping[str, Iterable[str]] | None = None,
        order: Sequence[tuple[str, bool]] = (),
        offset: int | None = None,
        limit: int | None = None,
        access_token: str | None = None,
    ) -> list[dict[str, Any]]:
        params = {"select": columns, **self._filter_params(filters, in_filters)}
        if order:
            params["order"] = _order_param(order)
        if offset:
            params["offset"] = str(offset)
        if limit is not None:
            params["limit"] = str(limit)
        rows = await self._request(
            f"select:{table}",
            "GET",
            f"/rest/v1/{table}",
            params=params,
            access_token=access_token,
            idempotent=True,
        )
        return list(rows or [])

    async def insert(
        self,
        table: str,
        row: Mapping[str, Any],
        *,
        returning: str = "*",
        access_token: str | None = None,
    ) -> list[dict[str, Any]]:
        rows = await self._request(
            f"insert:{table}",
            "POST",
            f"/rest/v1/{table}",
            params={"select": returning},
            json=dict(row),
            headers={"Prefer": "return=representation"},
            access_token=access_token,
        )
        return list(rows or [])

    async def update(
        self,
        table: str,
        values: Mapping[str, Any],
        *,
        filters: Mapping[str, str],
        access_token: str | None = None,
    ) -> list[dict[str, Any]]:
        rows = await self._request(
            f"update:{table}",
            "PATCH",
            f"/rest/v1/{table}",
            params=self._filter_params(filters),
            json=dict(values),
            headers={"Prefer": "return=representation"},
            access_token=access_token,
        )
        return list(rows or [])

    async def delete(
        self,
        table: str,
        *,
        filters: Mapping[str, str],
        access_token: str | None = None,
    ) -> list[dict[str, Any]]:
        if not filters:
            raise ValueError("refusing to delete without filters")
        rows = await self._request(
            f"delete:{table}",
            "DELETE",
            f"/rest/v1/{table}",
            params=self._filter_params(filters),
            headers={"Prefer": "return=representation"},
            access_token=access_token,
        )
        return list(rows or [])

    async def rpc(
        self,
        name: str,
        params: Mapping[str, Any],
        *,
        access_token: str | None = None,
    ) -> Any:
        return await self._request(
            f"rpc:{name}",
            "POST",
            f"/rest/v1/rpc/{name}",
            json=dict(params),
            access_token=access_token,
        )

    async def sign_in_anonymously(self) -> AnonymousSession:
        payload = await self._request("auth:anonymous", "POST", "/auth/v1/signup", json={})
        user = (payload or {}).get("user") or {}
        user_id = user.get("id")
        if not user_id:
            raise BackendError("auth:anonymous: no user returned")
        return AnonymousSession(user_id=str(user_id), access_token=payload.get("access_token"))

    async def close(self) -> None:
        await self._client.aclose()


def _row_to_confession(row: Mapping[str, Any]) -> ConfessionModel:
    return ConfessionModel(
        id=str(row["id"]),
        created_at=row["created_at"],
        body=row.get("body") or "",
        school_id=row.get("school_id") or DEFAULT_SCHOOL_ID,
        views=row.get("views_count") or 0,
        likes=row.get("likes_count") or 0,
    )


def _feed_order(sort: FeedSort, *, with_likes: bool = True) -> list[tuple[str, bool]]:
    if sort == FeedSort.OLD:
        return [("created_at", True)]
    if sort == FeedSort.TOP and with_likes:
        return [("likes_count", False), ("created_at", False)]
    return [("created_at", False)]


class SupabaseConfessionStore:
    """Confession persistence backed by the hosted row store and RPCs."""

    backend_name = "supabase"

    def __init__(self, client: SupabaseClient) -> None:
        self._client = client

    async def healthcheck(self) -> None:
        await self._client.select(CONFESSIONS_TABLE, "id", limit=1)

    async def _select_confessions(
        self,
        *,
        sort: FeedSort = FeedSort.NEW,
        **kwargs: Any,
    ) -> list[dict[str, Any]]:
        try:
            return await self._client.select(
                CONFESSIONS_TABLE,
                CONFESSION_COLUMNS,
                order=_feed_order(sort),
                **kwargs,
            )
        except BackendError as exc:
            if "likes_count" not in exc.message:
                raise
            logger.warning("likes_count column missing, reading without likes")
            return await self._client.select(
                CONFESSIONS_TABLE,
                LEGACY_CONFESSION_COLUMNS,
                order=_feed_order(sort, with_likes=False),
                **kwargs,
            )

    async def list_confessions(
        self,
        *,
        sort: FeedSort,
        school_id: str | None,
        offset: int,
        limit: int,
    ) -> list[ConfessionModel]:
        filters = {"school_id": school_id} if school_id else None
        rows = await self._select_confessions(
            sort=sort,
            filters=filters,
            offset=offset,
            limit=limit,
        )
        return [_row_to_confession(row) for row in rows]

    async def get_confession(self, confession_id: str) -> ConfessionModel | None:
        rows = await self._select_confessions(filters={"id": confession_id}, limit=1)
        return _row_to_confession(rows[0]) if rows else None

    async def add_confession(
        self,
        body: str,
        school_id: str,
        *,
        access_token: str | None = None,
    ) -> ConfessionModel:
        rows = await self._client.insert(
            CONFESSIONS_TABLE,
            {"body": body, "school_id": school_id},
            returning=CONFESSION_COLUMNS,
            access_token=access_token,
        )
        if not rows:
            raise BackendError("insert:confessions: no row returned")
        return _row_to_confession(rows[0])

    async def add_like(
        self,
        confession_id: str,
        user_id: str,
        *,
        access_token: str | None = None,
    ) -> bool:
        try:
            await self._client.insert(
                LIKES_TABLE,
                {"confession_id": confession_id, "user_id": user_id},
                returning="confession_id",
                access_token=access_token,
            )
        except BackendError as exc:
            if exc.code == UNIQUE_VIOLATION or exc.status_code == 409:
                return False
            raise
        await self._adjust_likes(confession_id, 1, access_token=access_token)
        return True

    async def remove_like(
        self,
        confession_id: str,
        user_id: str,
        *,
        access_token: str | None = None,
    ) -> bool:
        removed = await self._client.delete(
            LIKES_TABLE,
            filters={"confession_id": confession_id, "user_id": user_id},
            access_token=access_token,
        )
        if not removed:
            return False
        await self._adjust_likes(confession_id, -1, access_token=access_token)
        return True

    async def _adjust_likes(
        self,
        confession_id: str,
        delta: int,
        *,
        access_token: str | None = None,
    ) -> None:
        try:
            await self._client.rpc(
                "increment_confession_likes",
                {"p_confession_id": confession_id, "p_delta": delta},
                access_token=access_token,
            )
            return
        except BackendError as exc:
            logger.warning(
                "increment_confession_likes failed, updating counter directly: %s",
                exc.message,
            )
        # Not atomic: concurrent likes may be lost
        current = await self.get_confession(confession_id)
        likes = current.likes if current else 0
        await self._client.update(
            CONFESSIONS_TABLE,
            {"likes_count": max(0, likes + delta)},
            filters={"id": confession_id},
            access_token=access_token,
        )

    async def liked_ids(self, user_id: str, confession_ids: Sequence[str]) -> set[str]:
        if not confession_ids:
            return set()
        rows = await self._client.select(
            LIKES_TABLE,
            "confession_id",
            filters={"user_id": user_id},
            in_filters={"confession_id": confession_ids},
        )
        return {str(row["confession_id"]) for row in rows}

    async def increment_views(self, confession_id: str) -> None:
        await self._client.rpc(
            "increment_confession_views",
            {"p_confession_id": confession_id},
        )

    async def school_ids(self, limit: int) -> list[str]:
        rows = await self._client.select(CONFESSIONS_TABLE, "school_id", limit=limit)
        return [str(row.get("school_id")) for row in rows]

    async def create_session(self) -> AnonymousSession:
        return await self._client.sign_in_anonymously()

    async def close(self) -> None:
        await self._client.close()


__all__ = [
    "BackendError",
    "SupabaseClient",
    "SupabaseConfessionStore",
]
