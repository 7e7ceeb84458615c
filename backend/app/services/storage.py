from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime
from uuid import uuid4

from sqlalchemy import case, delete, select, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..db.models import Confession, ConfessionLike
from ..schemas.confession import AnonymousSession, ConfessionModel, FeedSort


def _to_model(row: Confession) -> ConfessionModel:
    created_at = row.created_at
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=UTC)
    return ConfessionModel(
        id=row.id,
        created_at=created_at,
        body=row.body,
        school_id=row.school_id,
        views=row.views_count,
        likes=row.likes_count,
    )


class StorageService:
    """Keep confessions in the local database when no hosted backend is configured."""

    backend_name = "local"

    def __init__(self, session_factory: async_sessionmaker, *, max_confessions: int = 500) -> None:
        self._session_factory = session_factory
        self._max_confessions = max(max_confessions, 1)

    async def healthcheck(self) -> None:
        async with self._session_factory() as session:
            await session.execute(text("SELECT 1"))

    async def list_confessions(
        self,
        *,
        sort: FeedSort,
        school_id: str | None,
        offset: int,
        limit: int,
    ) -> list[ConfessionModel]:
        stmt = select(Confession)
        if school_id:
            stmt = stmt.where(Confession.school_id == school_id)
        if sort == FeedSort.OLD:
            stmt = stmt.order_by(Confession.created_at.asc(), Confession.pk.asc())
        elif sort == FeedSort.TOP:
            stmt = stmt.order_by(
                Confession.likes_count.desc(),
                Confession.created_at.desc(),
                Confession.pk.desc(),
            )
        else:
            stmt = stmt.order_by(Confession.created_at.desc(), Confession.pk.desc())
        stmt = stmt.offset(offset).limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [_to_model(row) for row in result.scalars()]

    async def get_confession(self, confession_id: str) -> ConfessionModel | None:
        async with self._session_factory() as session:
            row = await session.scalar(select(Confession).where(Confession.id == confession_id))
            return _to_model(row) if row else None

    async def add_confession(
        self,
        body: str,
        school_id: str,
        *,
        access_token: str | None = None,
    ) -> ConfessionModel:
        entry = Confession(
            id=str(uuid4()),
            created_at=datetime.now(UTC),
            body=body,
            school_id=school_id,
            views_count=0,
            likes_count=0,
        )
        async with self._session_factory() as session:
            session.add(entry)
            await session.flush()
            newest = (
                select(Confession.pk)
                .order_by(Confession.pk.desc())
                .limit(self._max_confessions)
            )
            await session.execute(
                delete(Confession)
                .where(Confession.pk.not_in(newest))
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            await session.refresh(entry)
            return _to_model(entry)

    async def add_like(
        self,
        confession_id: str,
        user_id: str,
        *,
        access_token: str | None = None,
    ) -> bool:
        async with self._session_factory() as session:
            session.add(ConfessionLike(confession_id=confession_id, user_id=user_id))
            try:
                await session.flush()
            except IntegrityError:
                await session.rollback()
                return False
            await session.execute(
                update(Confession)
                .where(Confession.id == confession_id)
                .values(likes_count=Confession.likes_count + 1)
            )
            await session.commit()
            return True

    async def remove_like(
        self,
        confession_id: str,
        user_id: str,
        *,
        access_token: str | None = None,
    ) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(ConfessionLike).where(
                    ConfessionLike.confession_id == confession_id,
                    ConfessionLike.user_id == user_id,
                )
            )
            if not result.rowcount:
                await session.rollback()
                return False
            await session.execute(
                update(Confession)
                .where(Confession.id == confession_id)
                .values(
                    likes_count=case(
                        (Confession.likes_count > 0, Confession.likes_count - 1),
                        else_=0,
                    )
                )
            )
            await session.commit()
            return True

    async def liked_ids(self, user_id: str, confession_ids: Sequence[str]) -> set[str]:
        if not confession_ids:
            return set()
        async with self._session_factory() as session:
            result = await session.execute(
                select(ConfessionLike.confession_id).where(
                    ConfessionLike.user_id == user_id,
                    ConfessionLike.confession_id.in_(list(confession_ids)),
                )
            )
            return set(result.scalars())

    async def increment_views(self, confession_id: str) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(Confession)
                .where(Confession.id == confession_id)
                .values(views_count=Confession.views_count + 1)
            )
            await session.commit()

    async def school_ids(self, limit: int) -> list[str]:
        async with self._session_factory() as session:
            result = await session.execute(select(Confession.school_id).limit(limit))
            return list(result.scalars())

    async def create_session(self) -> AnonymousSession:
        return AnonymousSession(user_id=str(uuid4()))

    async def close(self) -> None:
        return None


__all__ = ["StorageService"]
