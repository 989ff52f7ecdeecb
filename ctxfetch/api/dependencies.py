from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import AsyncIterator

from fastapi import Request

from ctxfetch.config.load_config import AppConfig, load_app_config
from ctxfetch.utils.cancel import CancellationToken


logger = logging.getLogger(__name__)


def get_app_config(request: Request) -> AppConfig:
    """FastAPI dependency: the config loaded at startup (falls back to loading it now)."""
    cfg = getattr(request.app.state, "config", None)
    if isinstance(cfg, AppConfig):
        return cfg
    cfg = load_app_config()
    request.app.state.config = cfg
    return cfg


async def _watch_disconnect(request: Request, token: CancellationToken, *, interval_s: float) -> None:
    while not token.cancelled:
        if await request.is_disconnected():
            logger.info("Client disconnected from %s; cancelling outbound work", request.url.path)
            token.request_cancel()
            return
        await asyncio.sleep(interval_s)


async def request_token(request: Request) -> AsyncIterator[CancellationToken]:
    """FastAPI dependency: a token bound to the lifetime of the inbound request.

    The token is derived from the process root token (cancelled on shutdown) and is
    fired when the client disconnects. It is released once the handler finishes.
    """
    root = getattr(request.app.state, "root_token", None)
    token = root.child() if isinstance(root, CancellationToken) else CancellationToken()
    cfg = get_app_config(request)

    watcher = asyncio.ensure_future(
        _watch_disconnect(request, token, interval_s=cfg.server.disconnect_poll_interval_ms / 1000.0)
    )
    try:
        yield token
    finally:
        watcher.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await watcher
        token.release()
