from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError

from ctxfetch.api.errors import APIError, api_error_handler, unhandled_error_handler, validation_error_handler
from ctxfetch.config.load_config import env_bool, load_app_config
from ctxfetch.utils.cancel import CancellationToken

from .routers.fetch import router as fetch_router
from .routers.health import router as health_router


logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):  # noqa: ANN202
        app.state.config = load_app_config()
        # Process-wide root: every per-request token is derived from it.
        root = CancellationToken()
        app.state.root_token = root
        try:
            yield
        finally:
            logger.info("Shutting down; cancelling in-flight outbound requests")
            root.request_cancel()

    app = FastAPI(title="ctxfetch API", version="0.1.0", lifespan=lifespan)

    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(health_router, prefix="/api/v1", tags=["system"])
    app.include_router(fetch_router, prefix="/api/v1", tags=["fetch"])

    if env_bool("CTXFETCH_ENABLE_DEBUG_ENDPOINTS", False):
        @app.get("/api/v1/_debug/config", include_in_schema=False)
        def debug_config() -> dict[str, Any]:
            cfg = app.state.config
            return {
                "target_url": cfg.fetch.target_url,
                "method": cfg.fetch.method,
                "local_timeout_ms": cfg.fetch.local_timeout_ms,
                "transport_timeout_s": cfg.fetch.transport_timeout_s,
                "disconnect_poll_interval_ms": cfg.server.disconnect_poll_interval_ms,
            }

    return app


app = create_app()
