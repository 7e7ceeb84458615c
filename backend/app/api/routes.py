from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse

from ..core.schools import SCHOOL_TAGS
from ..core.security import optional_visitor
from ..schemas.confession import (
    AnonymousSession,
    ConfessionModel,
    FeedPage,
    FeedSort,
    SchoolTagModel,
)
from ..schemas.mode import ModeResponse
from ..services.confessions import ConfessionService
from ..services.modes import ModeManager
from ..services.supabase import BackendError

router = APIRouter(prefix="/api", tags=["board"])

COUNTS_CACHE_CONTROL = "public, s-maxage=30, stale-while-revalidate=60"
COUNTS_STALE_CACHE_CONTROL = "public, s-maxage=10, stale-while-revalidate=30"
LOAD_ERROR = "Couldn't load posts from the server."


def get_confession_service(request: Request) -> ConfessionService:
    return request.app.state.confession_service


def get_mode_manager(request: Request) -> ModeManager:
    return request.app.state.mode_manager


def _visitor_id(visitor: AnonymousSession | None) -> str | None:
    return visitor.user_id if visitor else None


@router.get("/confession-counts")
async def confession_counts(
    service: ConfessionService = Depends(get_confession_service),
) -> JSONResponse:
    counts, fresh = await service.school_counts()
    cache_control = COUNTS_CACHE_CONTROL if fresh else COUNTS_STALE_CACHE_CONTROL
    return JSONResponse(counts, headers={"Cache-Control": cache_control})


@router.get("/confessions", response_model=FeedPage)
async def list_confessions(
    sort: FeedSort = Query(default=FeedSort.NEW),
    school: str | None = Query(default=None),
    offset: int = Query(default=0, ge=0),
    limit: int | None = Query(default=None, ge=1, le=50),
    service: ConfessionService = Depends(get_confession_service),
    visitor: AnonymousSession | None = Depends(optional_visitor),
) -> FeedPage:
    try:
        return await service.list_feed(
            sort=sort,
            school_id=school,
            offset=offset,
            limit=limit,
            user_id=_visitor_id(visitor),
        )
    except BackendError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=LOAD_ERROR) from exc


@router.get("/confessions/{confession_id}", response_model=ConfessionModel)
async def read_confession(
    confession_id: str,
    response: Response,
    service: ConfessionService = Depends(get_confession_service),
    visitor: AnonymousSession | None = Depends(optional_visitor),
) -> ConfessionModel:
    try:
        confession = await service.open_confession(confession_id, user_id=_visitor_id(visitor))
    except BackendError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=LOAD_ERROR) from exc
    if confession is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="confession not found")
    response.headers["Cache-Control"] = "no-store"
    return confession


@router.get("/schools", response_model=list[SchoolTagModel])
async def list_schools() -> list[SchoolTagModel]:
    return [SchoolTagModel.model_validate(tag) for tag in SCHOOL_TAGS]


@router.get("/mode", response_model=ModeResponse)
async def read_mode(
    mode_manager: ModeManager = Depends(get_mode_manager),
    service: ConfessionService = Depends(get_confession_service),
) -> ModeResponse:
    status_obj = await mode_manager.get_status()
    return ModeResponse(
        mode=status_obj.state,
        online=status_obj.online,
        backend=service.backend_name,
        reason=status_obj.reason,
    )
