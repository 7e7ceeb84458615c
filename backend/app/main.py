from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import Depends, FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from backend.db import create_engine, create_session_factory, init_db

from .api.pages import router as pages_router
from .api.routes import router as api_router
from .core.config import Settings, get_settings
from .core.logging import configure_logging
from .middleware import RateLimitMiddleware, RateLimitPolicy, RequestLoggingMiddleware
from .services.confessions import ConfessionService, ConfessionStore
from .services.modes import ModeManager
from .services.ratelimit import RateLimiter
from .services.storage import StorageService
from .services.supabase import BackendError, SupabaseClient, SupabaseConfessionStore

logger = logging.getLogger(__name__)
STATIC_DIR = Path(__file__).resolve().parents[2] / "static"


async def _build_store(app: FastAPI, settings: Settings) -> ConfessionStore:
    if settings.backend_configured:
        client = SupabaseClient(
            settings.supabase_url or "",
            settings.supabase_anon_key or "",
            timeout=settings.request_timeout_seconds,
            retries=settings.retry_attempts,
        )
        return SupabaseConfessionStore(client)

    engine = create_engine(settings.database_url)
    session_factory = create_session_factory(engine)
    await init_db(engine, session_factory, settings.version)
    app.state.db_engine = engine
    return StorageService(session_factory, max_confessions=settings.local_max_confessions)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Wire the limiter, storage backend and mode manager for the app lifetime."""

    configure_logging()
    settings: Settings = get_settings()
    mode_manager = ModeManager()

    app.state.settings = settings
    app.state.db_engine = None
    app.state.rate_limiter = RateLimiter(
        cleanup_interval_ms=settings.rate_limit_cleanup_seconds * 1000,
    )
    app.state.rate_limit_policy = RateLimitPolicy.from_settings(settings)

    store = await _build_store(app, settings)
    confession_service = ConfessionService(
        store,
        mode_manager,
        page_size=settings.feed_page_size,
        max_rows_for_counts=settings.max_rows_for_counts,
    )
    app.state.mode_manager = mode_manager
    app.state.confession_service = confession_service

    if settings.backend_configured:
        await mode_manager.set_online("backend configured")
        try:
            await confession_service.healthcheck()
        except BackendError as exc:
            logger.warning("Backend unreachable at startup: %s", exc.message)
    else:
        await mode_manager.set_offline("backend not configured, using local storage")

    snapshot = await mode_manager.get_status()
    logger.info(
        "Confessions board started version=%s backend=%s mode=%s",
        settings.version,
        confession_service.backend_name,
        snapshot.state.value,
    )

    try:
        yield
    finally:
        await confession_service.close()
        if app.state.db_engine is not None:
            await app.state.db_engine.dispose()


app = FastAPI(title="uc-confessions", version=get_settings().version, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["GET"],
    allow_headers=["*"],
)
# last added runs first: logging wraps the gate so throttled requests are logged too
app.add_middleware(RateLimitMiddleware)
app.add_middleware(RequestLoggingMiddleware)

if STATIC_DIR.exists():
    app.mount("/static", StaticFiles(directory=STATIC_DIR, html=False), name="static")

app.include_router(api_router)
app.include_router(pages_router)


@app.get("/healthz")
async def healthz(request: Request, settings: Settings = Depends(get_settings)) -> dict[str, str]:
    mode_manager: ModeManager = request.app.state.mode_manager
    status_obj = await mode_manager.get_status()
    return {
        "status": "ok",
        "mode": status_obj.state.value,
        "version": settings.version,
    }


@app.get("/readyz")
async def readyz(request: Request) -> dict[str, Any]:
    service: ConfessionService = request.app.state.confession_service

    ok = True
    detail = "ok"
    try:
        await service.healthcheck()
    except BackendError as exc:
        ok = False
        detail = exc.message
    except Exception as exc:  # pragma: no cover
        logger.exception("Storage readiness check failed: %s", exc)
        ok = False
        detail = "unexpected"

    return {
        "ready": ok,
        "storage": {"ok": ok, "backend": service.backend_name, "detail": detail},
    }


@app.get("/metrics")
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
