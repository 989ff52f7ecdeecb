from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from ctxfetch.api.dependencies import get_app_config, request_token
from ctxfetch.api.errors import APIError, api_error_from_outcome
from ctxfetch.config.load_config import AppConfig
from ctxfetch.tools.fetch import FetchOutcome, InvalidRequestError, execute, new_request
from ctxfetch.utils.cancel import CancellationToken


logger = logging.getLogger(__name__)

router = APIRouter()


class FetchResponse(BaseModel):
    url: str
    status: str
    n_bytes: int
    status_code: int | None = None
    elapsed_s: float
    timeout_ms: int | None = None


async def _fetch(
    *,
    cfg: AppConfig,
    url: str | None,
    token: CancellationToken,
    timeout_ms: int | None = None,
) -> FetchResponse:
    target = (url or "").strip() or cfg.fetch.target_url
    try:
        desc = new_request(cfg.fetch.method, target, token=token)
    except InvalidRequestError as e:
        raise APIError(status_code=400, code="invalid_argument", message=str(e)) from e

    outcome: FetchOutcome = await execute(desc, transport_timeout_s=cfg.fetch.transport_timeout)
    if not outcome.ok:
        logger.warning("Outbound fetch failed: %s (%s)", outcome.status, outcome.error)
        raise api_error_from_outcome(outcome)

    logger.info("Fetched %s: %d bytes in %.3fs", target, outcome.n_bytes or 0, outcome.elapsed_s)
    return FetchResponse(
        url=target,
        status=outcome.status,
        n_bytes=int(outcome.n_bytes or 0),
        status_code=outcome.status_code,
        elapsed_s=outcome.elapsed_s,
        timeout_ms=timeout_ms,
    )


@router.get("/fetch")
async def fetch(
    url: str | None = Query(default=None, description="Target URL (defaults to fetch.target_url)."),
    token: CancellationToken = Depends(request_token),
    cfg: AppConfig = Depends(get_app_config),
) -> FetchResponse:
    """Fetch bound to the inbound request: cancelled when the client disconnects."""
    return await _fetch(cfg=cfg, url=url, token=token)


@router.get("/fetch_with_timeout")
async def fetch_with_timeout(
    url: str | None = Query(default=None, description="Target URL (defaults to fetch.target_url)."),
    timeout_ms: int | None = Query(default=None, ge=1, le=600_000),
    token: CancellationToken = Depends(request_token),
    cfg: AppConfig = Depends(get_app_config),
) -> FetchResponse:
    """Same as /fetch, with the request token narrowed by a local timeout."""
    if timeout_ms is not None:
        effective_ms, timeout_s = int(timeout_ms), timeout_ms / 1000.0
    else:
        effective_ms, timeout_s = cfg.fetch.local_timeout_ms, cfg.fetch.local_timeout_s
    if timeout_s is None:
        return await _fetch(cfg=cfg, url=url, token=token)

    with token.with_timeout(timeout_s) as narrowed:
        return await _fetch(cfg=cfg, url=url, token=narrowed, timeout_ms=effective_ms)
