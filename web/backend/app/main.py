"""FastAPI application for the xRegistry bridge.

Exposes one consolidated xRegistry over every configured backend:
- Root-level documents (registry root, model, capabilities)
- Pass-through and two-step filtered access below ``/{groupType}``
- Health, status and administrative endpoints
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from xbridge import __version__
from xbridge.bridge import FILTER_HEADERS, Bridge
from xbridge.config import ConfigError
from xbridge.errors import AuthError, BridgeError

from web.backend.app.routers import admin, proxy, registry

logger = logging.getLogger(__name__)


def create_app(bridge: Optional[Bridge] = None, background_refresh: bool = True) -> FastAPI:
    """Build the application around *bridge* (read from the environment if omitted)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.bridge is None:
            app.state.bridge = Bridge.from_env()
        await app.state.bridge.startup(background=background_refresh)
        try:
            yield
        finally:
            await app.state.bridge.shutdown()

    app = FastAPI(
        title="xRegistry Bridge",
        description=(
            "Unified xRegistry facade over independently operated package "
            "registries, with two-step attribute filtering."
        ),
        version=__version__,
        lifespan=lifespan,
    )
    app.state.bridge = bridge

    # -----------------------------------------------------------------------
    # CORS middleware
    # -----------------------------------------------------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Link", *FILTER_HEADERS],
    )

    # -----------------------------------------------------------------------
    # Error rendering
    # -----------------------------------------------------------------------

    @app.exception_handler(BridgeError)
    async def bridge_error_handler(request: Request, exc: BridgeError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthError) else None
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)

    @app.exception_handler(ConfigError)
    async def config_error_handler(request: Request, exc: ConfigError):
        return JSONResponse(status_code=400, content={"error": "invalid_config", "message": str(exc)})

    # -----------------------------------------------------------------------
    # Include routers (the catch-all proxy last)
    # -----------------------------------------------------------------------
    app.include_router(registry.router)
    app.include_router(admin.router)
    app.include_router(proxy.router)

    return app


app = create_app()
