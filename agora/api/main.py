"""
agora.api.main — FastAPI application entry point
=================================================

Run with::

    uvicorn agora.api.main:app --reload --port 8000

or ``python -m agora.api``.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.staticfiles import StaticFiles

load_dotenv()

from agora.api.deps import get_engine, get_manager  # noqa: E402
from agora.api.routes.admin import router as admin_router  # noqa: E402
from agora.api.routes.bounties import router as bounties_router  # noqa: E402
from agora.api.routes.chats import router as chats_router  # noqa: E402
from agora.api.routes.discussions import router as discussions_router  # noqa: E402
from agora.api.routes.functions import router as functions_router  # noqa: E402
from agora.api.routes.profiles import router as profiles_router  # noqa: E402
from agora.api.routes.realtime import router as realtime_router  # noqa: E402
from agora.api.routes.rpc import router as rpc_router  # noqa: E402
from agora.errors import AgoraError  # noqa: E402
from agora.realtime.notify import PgChangeListener, attach_manager, detach_manager  # noqa: E402
from agora.services.storage_service import DEFAULT_STORAGE_DIR  # noqa: E402

logger = logging.getLogger(__name__)

STORAGE_DIR = os.getenv("AGORA_STORAGE_DIR", DEFAULT_STORAGE_DIR)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env with safe defaults.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — wire change capture to the realtime layer."""
    os.makedirs(STORAGE_DIR, exist_ok=True)

    engine = get_engine()
    manager = get_manager()
    attach_manager(engine, manager)

    listener = None
    if engine.dialect.name == "postgresql":
        listener = PgChangeListener(engine, manager)
        listener.start()

    logger.info("Agora API started — engine ready (%s)", engine.url.database)
    yield
    if listener is not None:
        listener.stop()
    detach_manager(engine, manager)
    manager.close()
    logger.info("Agora API shutting down")


app = FastAPI(
    title="Agora API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AgoraError)
async def agora_error_handler(request: Request, exc: AgoraError) -> JSONResponse:
    """Map domain errors onto their HTTP status codes."""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse({"detail": str(exc)}, status_code=exc.status_code)


# Mount routers
app.include_router(discussions_router, prefix="/api")
app.include_router(bounties_router, prefix="/api")
app.include_router(chats_router, prefix="/api")
app.include_router(profiles_router, prefix="/api")
app.include_router(admin_router, prefix="/api")
app.include_router(rpc_router, prefix="/api")
app.include_router(functions_router, prefix="/api")
app.include_router(realtime_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}


# Serve stored objects (avatars, banners, chat files) as static assets
app.mount(
    "/api/storage",
    StaticFiles(directory=STORAGE_DIR, check_dir=False),
    name="storage",
)
