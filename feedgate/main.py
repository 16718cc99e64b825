"""
feedgate/main.py: RSS caching gateway
Builds the KV store, allowlist, feed cache and outbound client once per
process and hands them to the routers through app.state.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Callable, Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from feedgate.core.allowlist import AllowlistRegistry
from feedgate.core.cache import CacheStore
from feedgate.core.config import FRESHNESS_WINDOW_S, Settings
from feedgate.core.errors import GatewayError
from feedgate.core.http_client import build_client
from feedgate.core.kv import KVStore, open_kv
from feedgate.core.negotiate import error_response, wants_json
from feedgate.routers import content, rss

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
log = logging.getLogger("main")

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info(f"🚀 feedgate {VERSION} starting (base URL {app.state.settings.public_base_url})")
    yield
    log.info("🛑 Shutting down...")
    await app.state.http.aclose()
    await app.state.kv.close()


def create_app(
    settings: Optional[Settings] = None,
    kv: Optional[KVStore] = None,
    http: Optional[httpx.AsyncClient] = None,
    clock: Callable[[], float] = time.time,
) -> FastAPI:
    settings = settings or Settings()
    kv = kv or open_kv(settings.kv_path)

    app = FastAPI(
        title="feedgate",
        description=(
            "Caching RSS gateway. Item links are rewritten to /content/ and only "
            "URLs from a live rewritten feed can be fetched through it."
        ),
        version=VERSION,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.clock = clock
    app.state.kv = kv
    app.state.allowlist = AllowlistRegistry(kv, clock=clock)
    app.state.cache = CacheStore(kv, settings, allowlist=app.state.allowlist, clock=clock)
    app.state.http = http or build_client(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    # ── Routers ──────────────────────────────────────────────────────────────
    app.include_router(rss.router)
    app.include_router(content.router)

    # ── Error mapping ────────────────────────────────────────────────────────
    @app.exception_handler(GatewayError)
    async def gateway_error(request: Request, ex: GatewayError):
        level = logging.ERROR if ex.status_code >= 500 else logging.INFO
        log.log(level, f"{request.method} {request.url.path} → {ex.status_code} {type(ex).__name__}: {ex.detail}")
        return error_response(ex.public_message, ex.status_code, as_json=wants_json(request.headers.get("accept")))

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, ex: StarletteHTTPException):
        return error_response(str(ex.detail), ex.status_code, as_json=wants_json(request.headers.get("accept")))

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, ex: Exception):
        log.exception(f"Unhandled error on {request.method} {request.url.path}")
        return error_response("Internal Server Error", 500, as_json=wants_json(request.headers.get("accept")))

    # ── Meta ─────────────────────────────────────────────────────────────────
    @app.get("/", tags=["meta"])
    async def root():
        return {
            "status":  "online",
            "version": VERSION,
            "freshness_window_s": FRESHNESS_WINDOW_S,
            "endpoints": {
                "feed":    "/rss/?feedURL={url}",
                "content": "/content/?contentURL={url}",
                "health":  "/health",
                "docs":    "/docs",
            },
        }

    @app.get("/health", tags=["meta"])
    async def health():
        """Liveness plus cache numbers. Safe to expose: no keys or URLs."""
        stats = await app.state.cache.stats()
        return {
            "status":            "healthy",
            "cache":             stats.as_dict(),
            "allowlist_entries": await app.state.allowlist.count(),
        }

    return app


app = create_app()
