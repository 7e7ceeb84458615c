from __future__ import annotations

import logging
from typing import Any, Protocol

from ..core.schools import empty_counts, is_valid_school_id
from ..core.security import is_valid_uuid
from ..schemas.confession import (
    AnonymousSession,
    ConfessionModel,
    FeedPage,
    FeedSort,
    LikeState,
)
from .modes import ModeManager
from .supabase import BackendError

logger = logging.getLogger(__name__)

MAX_ROWS_FOR_COUNTS = 100_000


class ConfessionStore(Protocol):
    backend_name: str

    async def healthcheck(self) -> None: ...

    async def list_confessions(
        self, *, sort: FeedSort, school_id: str | None, offset: int, limit: int
    ) -> list[ConfessionModel]: ...

    async def get_confession(self, confession_id: str) -> ConfessionModel | None: ...

    async def add_confession(
        self, body: str, school_id: str, *, access_token: str | None = None
    ) -> ConfessionModel: ...

    async def add_like(
        self, confession_id: str, user_id: str, *, access_token: str | None = None
    ) -> bool: ...

    async def remove_like(
        self, confession_id: str, user_id: str, *, access_token: str | None = None
    ) -> bool: ...

    async def liked_ids(self, user_id: str, confession_ids: list[str]) -> set[str]: ...

    async def increment_views(self, confession_id: str) -> None: ...

    async def school_ids(self, limit: int) -> list[str]: ...

    async def create_session(self) -> AnonymousSession: ...

    async def close(self) -> None: ...


class ConfessionNotFound(LookupError):
    """Raised when a like targets a confession that does not exist."""


class ConfessionService:
    """Board operations on top of the hosted backend or the local store."""

    def __init__(
        self,
        store: ConfessionStore,
        mode_manager: ModeManager,
        *,
        page_size: int = 10,
        max_rows_for_counts: int = MAX_ROWS_FOR_COUNTS,
    ) -> None:
        self._store = store
        self._mode_manager = mode_manager
        self._page_size = page_size
        self._max_rows_for_counts = max_rows_for_counts

    @property
    def backend_name(self) -> str:
        return self._store.backend_name

    @property
    def page_size(self) -> int:
        return self._page_size

    async def _call(self, operation: str, coro: Any) -> Any:
        try:
            result = await coro
        except BackendError as exc:
            logger.warning(
                "Backend call failed: %s",
                exc.message,
                extra={"operation": operation, "status": exc.status_code},
            )
            await self._mode_manager.backend_failed(f"{operation} failed")
            raise
        await self._mode_manager.backend_succeeded()
        return result

    async def healthcheck(self) -> None:
        await self._call("healthcheck", self._store.healthcheck())

    async def list_feed(
        self,
        *,
        sort: FeedSort = FeedSort.NEW,
        school_id: str | None = None,
        offset: int = 0,
        limit: int | None = None,
        user_id: str | None = None,
    ) -> FeedPage:
        size = limit or self._page_size
        offset = max(offset, 0)
        if school_id is not None and not is_valid_school_id(school_id):
            return FeedPage(items=[], has_more=False)

        # one extra row tells whether another page exists
        rows = await self._call(
            "list_feed",
            self._store.list_confessions(
                sort=sort,
                school_id=school_id,
                offset=offset,
                limit=size + 1,
            ),
        )
        has_more = len(rows) > size
        items = await self._mark_liked(rows[:size], user_id)
        return FeedPage(
            items=items,
            has_more=has_more,
            next_offset=offset + size if has_more else None,
        )

    async def _mark_liked(
        self,
        items: list[ConfessionModel],
        user_id: str | None,
    ) -> list[ConfessionModel]:
        if not user_id or not items:
            return items
        liked = await self._call(
            "liked_ids",
            self._store.liked_ids(user_id, [item.id for item in items]),
        )
        return [item.model_copy(update={"liked": item.id in liked}) for item in items]

    async def get_confession(
        self,
        confession_id: str,
        *,
        user_id: str | None = None,
    ) -> ConfessionModel | None:
        if not is_valid_uuid(confession_id):
            return None
        confession = await self._call("get", self._store.get_confession(confession_id))
        if confession is None:
            return None
        marked = await self._mark_liked([confession], user_id)
        return marked[0]

    async def open_confession(
        self,
        confession_id: str,
        *,
        user_id: str | None = None,
    ) -> ConfessionModel | None:
        """Fetch a confession for display and count the view best-effort."""

        confession = await self.get_confession(confession_id, user_id=user_id)
        if confession is None:
            return None
        if await self.record_view(confession.id):
            confession = confession.model_copy(update={"views": confession.views + 1})
        return confession

    async def record_view(self, confession_id: str) -> bool:
        try:
            await self._call("increment_views", self._store.increment_views(confession_id))
        except BackendError:
            return False
        return True

    async def post_confession(
        self,
        body: str,
        school_id: str,
        *,
        access_token: str | None = None,
    ) -> ConfessionModel:
        created = await self._call(
            "post",
            self._store.add_confession(body, school_id, access_token=access_token),
        )
        logger.info(
            "Confession posted",
            extra={"operation": "post", "path": f"/confession/{created.id}"},
        )
        return created

    async def like(self, confession_id: str, session: AnonymousSession) -> LikeState:
        await self._require(confession_id)
        await self._call(
            "like",
            self._store.add_like(
                confession_id, session.user_id, access_token=session.access_token
            ),
        )
        return await self._like_state(confession_id, liked=True)

    async def unlike(self, confession_id: str, session: AnonymousSession) -> LikeState:
        await self._require(confession_id)
        await self._call(
            "unlike",
            self._store.remove_like(
                confession_id, session.user_id, access_token=session.access_token
            ),
        )
        return await self._like_state(confession_id, liked=False)

    async def _require(self, confession_id: str) -> None:
        if await self.get_confession(confession_id) is None:
            raise ConfessionNotFound(confession_id)

    async def _like_state(self, confession_id: str, *, liked: bool) -> LikeState:
        current = await self._call("get", self._store.get_confession(confession_id))
        likes = current.likes if current else 0
        return LikeState(id=confession_id, liked=liked, likes=max(0, likes))

    async def school_counts(self) -> tuple[dict[str, int], bool]:
        """Posts per known school; ``False`` second item when the store failed."""

        counts = empty_counts()
        try:
            school_ids = await self._call(
                "school_counts",
                self._store.school_ids(self._max_rows_for_counts),
            )
        except BackendError:
            return counts, False
        for school_id in school_ids:
            if school_id in counts:
                counts[school_id] += 1
        return counts, True

    async def start_session(self) -> AnonymousSession:
        return await self._call("session", self._store.create_session())

    async def close(self) -> None:
        await self._store.close()


__all__ = [
    "ConfessionNotFound",
    "ConfessionService",
    "ConfessionStore",
]
