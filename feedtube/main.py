from __future__ import annotations

import logging
import os
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api.deps import close_feed_source
from .api.search import router as search_router
from .api.settings import router as settings_router
from .api.subscriptions import router as subscriptions_router
from .api.videos import router as videos_router
from .config import get_settings
from .db import dispose_engine, init_db
from .errors import Conflict, ListFailed, NotFound, ProviderError, ProviderTimeout
from .logging_config import setup_logging
from .poller import BackgroundPoller

logger = logging.getLogger(__name__)

app = FastAPI(title="feedtube", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

poller: Optional[BackgroundPoller] = None


def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return _error(404, exc)


@app.exception_handler(Conflict)
async def conflict_handler(request: Request, exc: Conflict):
    return _error(409, exc)


@app.exception_handler(ListFailed)
async def list_failed_handler(request: Request, exc: ListFailed):
    logger.warning("Sync aborted: %s", exc)
    return _error(502, exc)


@app.exception_handler(ProviderTimeout)
async def provider_timeout_handler(request: Request, exc: ProviderTimeout):
    return _error(504, exc)


@app.exception_handler(ProviderError)
async def provider_error_handler(request: Request, exc: ProviderError):
    logger.warning("Provider call failed: %s", exc)
    return _error(502, exc)


@app.on_event("startup")
async def startup_event():
    global poller
    settings = get_settings()
    setup_logging(settings.log_level, structured=settings.log_structured)
    if os.getenv("BOOTSTRAP_DB", "1") == "1":
        await init_db()
    if os.getenv("DISABLE_POLLER", "0") != "1":
        poller = BackgroundPoller()
        await poller.start()


@app.on_event("shutdown")
async def shutdown_event():
    global poller
    if poller is not None:
        await poller.stop()
        poller = None
    await close_feed_source()
    await dispose_engine()


app.include_router(subscriptions_router)
app.include_router(videos_router)
app.include_router(search_router)
app.include_router(settings_router)


def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run("feedtube.main:app", host=settings.app_host, port=settings.app_port)
