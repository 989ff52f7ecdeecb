from __future__ import annotations

import importlib.metadata
import time
from typing import Any

from fastapi import APIRouter
from fastapi import Request

from ctxfetch.utils.cancel import CancellationToken


router = APIRouter()


def _pkg_version(name: str) -> str | None:
    try:
        return str(importlib.metadata.version(name))
    except importlib.metadata.PackageNotFoundError:
        return None


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/version")
def version(request: Request) -> dict[str, Any]:
    root = getattr(request.app.state, "root_token", None)
    return {
        "service": "ctxfetch",
        "api": "v1",
        "deps": {
            "fastapi": _pkg_version("fastapi"),
            "uvicorn": _pkg_version("uvicorn"),
            "httpx": _pkg_version("httpx"),
        },
        "shutting_down": bool(root.cancelled) if isinstance(root, CancellationToken) else False,
        "ts": time.time(),
    }
