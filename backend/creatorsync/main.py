from __future__ import annotations

import logging
from urllib.parse import urlparse

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from fastapi.staticfiles import StaticFiles

from .routes_sync import router as sync_router
from .services.scheduler import get_scheduler
from .settings import get_settings

logger = logging.getLogger("app")

settings = get_settings()
app = FastAPI(title=settings.app_name)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url)
    return PlainTextResponse("Internal Server Error", status_code=500)


@app.get("/ping")
async def ping():
    return {"status": "ok"}


app.include_router(sync_router)

if settings.media_backend.lower() == "local":
    # LocalMediaStore uploads are served at MEDIA_PUBLIC_BASE_URL
    media_path = urlparse(settings.media_public_base_url).path.rstrip("/") or "/media"
    app.mount(media_path, StaticFiles(directory=settings.media_local_dir, check_dir=False), name="media")


@app.on_event("startup")
async def startup_event():
    """Start scheduler on app startup."""
    get_scheduler().start()


@app.on_event("shutdown")
async def shutdown_event():
    """Stop scheduler on app shutdown."""
    get_scheduler().stop()
