"""
FastAPI application assembly.

Requests are offered to each layer in this order, and the first layer that
claims a request owns the response:

1. global rate limiter (middleware, sees every request)
2. /health
3. plugin routes, in plugin load order
4. proxy rules, in config document order, each behind its own limiter
5. static files
6. SPA fallback (index.html, or a JSON 404)

Layers 3-6 are attached in the lifespan handler because plugin registration
and reading the proxy config may suspend.
"""

import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.concurrency import run_in_threadpool

from frontdoor import __version__
from frontdoor.api import PLUGIN_DIR
from frontdoor.api.loader import PluginRegistry
from frontdoor.config import PluginConfig
from frontdoor.errors import RateLimitExceeded
from frontdoor.router.connection_pool import create_http_client
from frontdoor.router.proxy import ProxyHooks, ProxyRuleEngine
from frontdoor.router.proxy_config import load_proxy_rules
from frontdoor.router.rate_limit import (
    GLOBAL_SCOPE,
    FixedWindowRateLimiter,
    client_identity,
    enforce,
    make_global_limiter,
    rate_limit_headers,
    rate_limited_response,
)
from frontdoor.router.responses import internal_error_response
from frontdoor.router.static import SPAStaticFiles

logger = logging.getLogger("frontdoor.router")

LOG_REQUESTS = os.getenv("FRONTDOOR_LOG_REQUESTS", "").lower() in {"1", "true", "yes", "on"}


def create_app(
    config: PluginConfig,
    *,
    plugin_dir: Path | str | None = None,
    http_client: httpx.AsyncClient | None = None,
    hooks: ProxyHooks | None = None,
    global_limiter: FixedWindowRateLimiter | None = None,
    clock=None,
) -> FastAPI:
    """
    Create the frontdoor application.

    Args:
        config: startup configuration shared with plugins
        plugin_dir: directory to load plugins from (the bundled api/ package by default)
        http_client: client used for proxying; created and closed with the app when omitted
        hooks: extra proxy observers applied to every rule after the built-in logging
        global_limiter: limiter applied to every request (15 minutes / 1000 by default)
        clock: monotonic clock for the rate limiters

    Returns:
        FastAPI app; routes beyond /health are attached when its lifespan starts
    """
    owns_client = http_client is None
    if global_limiter is None:
        global_limiter = make_global_limiter(clock) if clock is not None else make_global_limiter()
    registry = PluginRegistry()

    async def compose_routes(app: FastAPI) -> None:
        await registry.load(plugin_dir or PLUGIN_DIR, app, config)

        rules = await run_in_threadpool(load_proxy_rules, config.proxy_config_file)
        engine = ProxyRuleEngine(lambda: app.state.http_client, hooks=hooks, clock=clock)
        app.state.proxy_handlers = engine.mount(app.router, rules)

        app.mount("/", SPAStaticFiles(config.static_path, index_path=config.index_file), name="static")
        app.state.routes_composed = True
        logger.info("Serving static files from: %s", config.static_dir)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.http_client is None:
            app.state.http_client = create_http_client()
        if not app.state.routes_composed:
            await compose_routes(app)
        yield
        if owns_client and app.state.http_client is not None:
            await app.state.http_client.aclose()
            app.state.http_client = None
            logger.info("HTTP client closed")

    app = FastAPI(
        title="frontdoor",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.config = config
    app.state.http_client = http_client
    app.state.global_limiter = global_limiter
    app.state.plugin_registry = registry
    app.state.proxy_handlers = []
    app.state.routes_composed = False

    @app.middleware("http")
    async def global_rate_limit(request: Request, call_next):
        try:
            decision = enforce(global_limiter, request, GLOBAL_SCOPE)
        except RateLimitExceeded as exc:
            logger.warning("Global rate limit exceeded for %s", client_identity(request))
            return rate_limited_response(exc)
        response = await call_next(request)
        for name, value in rate_limit_headers(decision).items():
            response.headers.setdefault(name, value)
        return response

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = str(uuid.uuid4())[:8]
        request.state.request_id = request_id
        start = time.time()
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        if LOG_REQUESTS:
            duration_ms = int((time.time() - start) * 1000)
            logger.info(
                "[%s] %s %s -> %d (%dms)",
                request_id,
                request.method,
                request.url.path or "/",
                response.status_code,
                duration_ms,
            )
        return response

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.error("Unhandled error for %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        return internal_error_response(request)

    # Added last so it wraps everything, 429s included
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])

    @app.get("/health")
    async def health():
        """Liveness check."""
        return {"status": "OK", "timestamp": datetime.now(timezone.utc).isoformat()}

    return app
