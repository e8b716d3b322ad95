# -*- coding: utf-8 -*-
"""
main.py
HTTP surface: catalog, manifest resolution and the stream relay.

The module uses package-relative imports, so start it as a module:

    python -m pahe_api.main
    uvicorn pahe_api.main:APP --port 3000
"""
from __future__ import annotations

import logging

from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import BaseModel
from starlette.background import BackgroundTask

from . import settings
from .catalog import CatalogClient
from .errors import PaheError
from .fetcher import RemoteFetcher
from .proxy import CORS_HEADERS, MANIFEST, StreamProxy
from .resolver import ScriptResolver

# configure logging at application level
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Pipeline objects (stateless, shared across requests)
# -----------------------------------------------------------------------------
FETCHER = RemoteFetcher(base_url=settings.PAHE_BASE_URL, timeout=settings.FETCH_TIMEOUT)
CATALOG = CatalogClient(FETCHER)
RESOLVER = ScriptResolver(FETCHER, timeout=settings.KWIK_TIMEOUT)
PROXY = StreamProxy(
    prefix=settings.PROXY_PREFIX,
    timeout=settings.RELAY_TIMEOUT,
    max_redirects=settings.RELAY_MAX_REDIRECTS,
)

# -----------------------------------------------------------------------------
# FastAPI app
# -----------------------------------------------------------------------------
APP = FastAPI(title="Animepahe Stream Resolver", version="1.0.0")


@APP.middleware("http")
async def log_requests(request: Request, call_next):
    logger.info("HTTP %s %s", request.method, str(request.url))
    return await call_next(request)


APP.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@APP.exception_handler(PaheError)
async def pahe_error_handler(request: Request, exc: PaheError):
    logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    headers = CORS_HEADERS if request.url.path == settings.PROXY_PREFIX else None
    return JSONResponse(exc.to_dict(), status_code=exc.status_code, headers=headers)


@APP.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse({"error": "Internal server error", "message": str(exc)}, status_code=500)


@APP.get("/")
def home():
    return {
        "message": "Welcome to Animepahe API",
        "endpoints": {
            "search": "/search?q=naruto",
            "episodes": "/episodes?session=anime-session-id",
            "sources": "/sources?anime_session=xxx&episode_session=yyy",
            "m3u8": "/m3u8?url=kwik-url",
            "proxy": f"{settings.PROXY_PREFIX}?url=m3u8-or-ts-url (Use this to play videos)",
            "health": "/health",
        },
        "usage": {
            "note": "Use /proxy endpoint to stream videos through the server to bypass CORS and referrer restrictions",
            "example": "Get M3U8 URL from /m3u8, then use /proxy?url=<m3u8-url> in your video player",
        },
    }


class HealthOut(BaseModel):
    status: str
    message: str


class M3u8Out(BaseModel):
    m3u8: str


@APP.get("/health", response_model=HealthOut)
def health():
    return {"status": "ok", "message": "Animepahe API is alive!"}


# -----------------------------------------------------------------------------
# ENDPOINTS: catalog pipeline (sync: FastAPI runs them in its threadpool)
# -----------------------------------------------------------------------------
@APP.get("/search")
def search(q: str = Query(..., min_length=1)):
    return CATALOG.search(q)


@APP.get("/episodes")
def episodes(session: str = Query(..., min_length=1)):
    return CATALOG.list_episodes(session)


@APP.get("/sources")
def sources(anime_session: str = Query(..., min_length=1), episode_session: str = Query(..., min_length=1)):
    return CATALOG.get_sources(anime_session, episode_session)


@APP.get("/m3u8", response_model=M3u8Out)
def m3u8(url: str = Query(..., min_length=1)):
    return {"m3u8": RESOLVER.resolve(url)}


# -----------------------------------------------------------------------------
# ENDPOINTS: relay
# -----------------------------------------------------------------------------
@APP.get(settings.PROXY_PREFIX)
async def proxy(request: Request, url: str = Query(..., min_length=1)):
    result = await PROXY.relay(url, range_header=request.headers.get("range"))
    if result.kind == MANIFEST:
        return Response(content=result.body, status_code=result.status_code, headers=result.headers)
    return StreamingResponse(
        result.stream,
        status_code=result.status_code,
        headers=result.headers,
        background=BackgroundTask(result.aclose),
    )


@APP.options(settings.PROXY_PREFIX)
def proxy_preflight():
    return Response(status_code=200, headers=CORS_HEADERS)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(APP, host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL.lower())
