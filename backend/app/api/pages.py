from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from html import escape

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from fastapi.responses import HTMLResponse

from ..core.schools import SCHOOL_TAGS, is_valid_school_id, school_id_to_label
from ..core.security import ensure_visitor, optional_visitor, set_session_cookies
from ..schemas.confession import (
    AnonymousSession,
    MAX_BODY_LENGTH,
    ConfessionCreate,
    ConfessionModel,
    FeedSort,
    LikeState,
    SessionResponse,
)
from ..services.confessions import ConfessionNotFound, ConfessionService
from ..services.supabase import BackendError
from .routes import LOAD_ERROR, get_confession_service

router = APIRouter(tags=["pages"])

POST_ERROR = "Couldn't post right now. Try again."
LIKE_ERROR = "Couldn't update the like right now."

_COMPACT_UNITS = ((1_000, "K"), (1_000_000, "M"), (1_000_000_000, "B"), (1_000_000_000_000, "T"))

_PAGE_TEMPLATE = """<!doctype html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>{title}</title>
</head>
<body>
<header><a href="/">uc-confessions</a></header>
<main>
{content}
</main>
<footer>Anonymous. Be kind.</footer>
</body>
</html>
"""

_POST_FORM = """<section id="post">
<form id="post-form">
<textarea name="body" rows="3" maxlength="{max_length}" placeholder="What's on your mind?"></textarea>
<select name="school_id">{options}</select>
<button type="submit">Share</button>
</form>
<script>
document.getElementById("post-form").addEventListener("submit", async (event) => {{
  event.preventDefault();
  const form = event.target;
  const response = await fetch("/confessions", {{
    method: "POST",
    headers: {{"Content-Type": "application/json"}},
    body: JSON.stringify({{body: form.body.value, school_id: form.school_id.value}}),
  }});
  if (response.ok) window.location.reload();
}});
</script>
</section>"""


def format_count(value: int) -> str:
    """Compact notation: 950 -> "950", 1234 -> "1.2K", 999999 -> "1M".

    One decimal below 10 of a unit, whole numbers above; rounds half up and
    carries into the next unit when rounding reaches 1000.
    """

    if value < _COMPACT_UNITS[0][0]:
        return str(value)
    index = max(i for i, (threshold, _) in enumerate(_COMPACT_UNITS) if value >= threshold)
    while True:
        threshold, suffix = _COMPACT_UNITS[index]
        scaled = Decimal(value) / threshold
        step = Decimal("0.1") if scaled < 10 else Decimal("1")
        rounded = scaled.quantize(step, rounding=ROUND_HALF_UP)
        if rounded < 1000 or index == len(_COMPACT_UNITS) - 1:
            return f"{rounded.normalize():f}{suffix}"
        index += 1


def _render_page(title: str, content: str, *, status_code: int = 200) -> HTMLResponse:
    return HTMLResponse(
        _PAGE_TEMPLATE.format(title=escape(title), content=content),
        status_code=status_code,
    )


def _render_card(confession: ConfessionModel) -> str:
    return (
        f'<article class="confession" id="c-{escape(confession.id)}">'
        f"<p>{escape(confession.body)}</p>"
        f"<span>{escape(school_id_to_label(confession.school_id))}</span> "
        f"<time datetime=\"{confession.created_at.isoformat()}\">"
        f"{confession.created_at:%Y-%m-%d %H:%M}</time> "
        f"<span>{format_count(confession.views)} views</span> "
        f"<span>{format_count(confession.likes)} likes{' (liked)' if confession.liked else ''}</span> "
        f'<a href="/confession/{escape(confession.id)}">open</a>'
        "</article>"
    )


def _school_options(selected: str | None) -> str:
    return "".join(
        f'<option value="{tag.id}"{" selected" if tag.id == selected else ""}>{tag.label}</option>'
        for tag in SCHOOL_TAGS
    )


@router.get("/", response_class=HTMLResponse)
async def feed_page(
    school: str | None = Query(default=None),
    sort: FeedSort = Query(default=FeedSort.NEW),
    offset: int = Query(default=0, ge=0),
    service: ConfessionService = Depends(get_confession_service),
    visitor: AnonymousSession | None = Depends(optional_visitor),
) -> HTMLResponse:
    school_id = school if is_valid_school_id(school) else None
    try:
        page = await service.list_feed(
            sort=sort,
            school_id=school_id,
            offset=offset,
            user_id=visitor.user_id if visitor else None,
        )
    except BackendError:
        return _render_page(
            "uc-confessions",
            f'<p class="error">{escape(LOAD_ERROR)}</p>',
            status_code=status.HTTP_502_BAD_GATEWAY,
        )

    count = len(page.items)
    heading = f"{count} confession{'' if count == 1 else 's'}"
    if school_id:
        heading += f" · {school_id_to_label(school_id)}"
    sort_links = " | ".join(
        f'<a href="/?sort={option.value}{f"&school={school_id}" if school_id else ""}">{option.value}</a>'
        for option in FeedSort
    )
    parts = [
        _POST_FORM.format(options=_school_options(school_id), max_length=MAX_BODY_LENGTH),
        f'<section id="feed"><h2>{escape(heading)}</h2><nav>{sort_links}</nav>',
        *(_render_card(item) for item in page.items),
    ]
    if page.has_more and page.next_offset is not None:
        more = f"/?sort={sort.value}&offset={page.next_offset}"
        if school_id:
            more += f"&school={school_id}"
        parts.append(f'<a class="more" href="{more}">Load more</a>')
    parts.append("</section>")
    return _render_page("uc-confessions", "\n".join(parts))


@router.get("/confession/{confession_id}", response_class=HTMLResponse)
async def confession_page(
    confession_id: str,
    service: ConfessionService = Depends(get_confession_service),
    visitor: AnonymousSession | None = Depends(optional_visitor),
) -> HTMLResponse:
    try:
        confession = await service.open_confession(
            confession_id,
            user_id=visitor.user_id if visitor else None,
        )
    except BackendError:
        return _render_page(
            "uc-confessions",
            f'<p class="error">{escape(LOAD_ERROR)}</p>',
            status_code=status.HTTP_502_BAD_GATEWAY,
        )
    if confession is None:
        return _render_page(
            "Not found",
            "<p>This confession doesn't exist or was removed.</p>",
            status_code=status.HTTP_404_NOT_FOUND,
        )
    return _render_page(
        f"{school_id_to_label(confession.school_id)} confession",
        _render_card(confession),
    )


@router.post("/session", response_model=SessionResponse)
async def start_session(
    response: Response,
    service: ConfessionService = Depends(get_confession_service),
) -> SessionResponse:
    try:
        session = await service.start_session()
    except BackendError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Couldn't start an anonymous session.",
        ) from exc
    set_session_cookies(response, session)
    return SessionResponse(user_id=session.user_id)


@router.post(
    "/confessions",
    response_model=ConfessionModel,
    status_code=status.HTTP_201_CREATED,
)
async def post_confession(
    payload: ConfessionCreate,
    service: ConfessionService = Depends(get_confession_service),
    visitor: AnonymousSession | None = Depends(optional_visitor),
) -> ConfessionModel:
    try:
        return await service.post_confession(
            payload.body,
            payload.school_id,
            access_token=visitor.access_token if visitor else None,
        )
    except BackendError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=POST_ERROR) from exc


@router.put("/confessions/{confession_id}/like", response_model=LikeState)
async def like_confession(
    confession_id: str,
    service: ConfessionService = Depends(get_confession_service),
    visitor: AnonymousSession = Depends(ensure_visitor),
) -> LikeState:
    try:
        return await service.like(confession_id, visitor)
    except ConfessionNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="confession not found") from exc
    except BackendError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=LIKE_ERROR) from exc


@router.delete("/confessions/{confession_id}/like", response_model=LikeState)
async def unlike_confession(
    confession_id: str,
    service: ConfessionService = Depends(get_confession_service),
    visitor: AnonymousSession = Depends(ensure_visitor),
) -> LikeState:
    try:
        return await service.unlike(confession_id, visitor)
    except ConfessionNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="confession not found") from exc
    except BackendError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=LIKE_ERROR) from exc
