from __future__ import annotations

import asyncio
import re
import time
import urllib.parse
from dataclasses import dataclass, field, replace
from typing import Mapping

import httpx

from ctxfetch.utils.cancel import (
    CAUSE_CANCELLED,
    CAUSE_DEADLINE_EXCEEDED,
    CancellationToken,
    CancelledError,
    DeadlineExceededError,
)


STATUS_OK = "ok"
STATUS_TRANSPORT_ERROR = "transport_error"

# RFC 9110 token characters; the method must be a non-empty token.
_METHOD_RE = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")


class FetchError(RuntimeError):
    status = "error"


class InvalidRequestError(FetchError):
    status = "invalid_request"


class TransportError(FetchError):
    status = STATUS_TRANSPORT_ERROR


@dataclass(frozen=True)
class RequestDescriptor:
    method: str
    url: str
    body: bytes | None = None
    headers: tuple[tuple[str, str], ...] = ()
    token: CancellationToken | None = field(default=None, compare=False)

    def with_token(self, token: CancellationToken | None) -> RequestDescriptor:
        return replace(self, token=token)

    def validate(self) -> None:
        if not isinstance(self.method, str) or not _METHOD_RE.match(self.method):
            raise InvalidRequestError(f"Invalid method: {self.method!r}")
        try:
            parts = urllib.parse.urlsplit(self.url)
            _ = parts.port
        except (TypeError, ValueError) as e:
            raise InvalidRequestError(f"Invalid URL {self.url!r}: {e}") from e
        if parts.scheme.lower() not in {"http", "https"}:
            raise InvalidRequestError(f"Unsupported URL scheme in {self.url!r}")
        if not parts.hostname:
            raise InvalidRequestError(f"Missing host in URL {self.url!r}")
        try:
            httpx.URL(self.url)
        except httpx.InvalidURL as e:
            raise InvalidRequestError(f"Invalid URL {self.url!r}: {e}") from e


@dataclass(frozen=True)
class FetchOutcome:
    status: str  # ok|transport_error|deadline_exceeded|cancelled
    n_bytes: int | None = None
    status_code: int | None = None
    error: str | None = None
    elapsed_s: float = 0.0
    exc: BaseException | None = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.status == STATUS_OK:
            if self.n_bytes is None or self.error is not None:
                raise ValueError("ok outcome needs n_bytes and no error")
        elif self.error is None or self.n_bytes is not None:
            raise ValueError(f"{self.status} outcome needs an error and no n_bytes")

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK

    def raise_for_failure(self) -> None:
        if self.ok:
            return
        if self.status == CAUSE_DEADLINE_EXCEEDED:
            raise DeadlineExceededError(self.error or "Deadline exceeded")
        if self.status == CAUSE_CANCELLED:
            raise CancelledError(self.error or "Cancelled")
        raise TransportError(self.error or "Transport error") from self.exc


def new_request(
    method: str,
    url: str,
    *,
    body: bytes | None = None,
    headers: Mapping[str, str] | None = None,
    token: CancellationToken | None = None,
) -> RequestDescriptor:
    """Build and validate a descriptor; raises InvalidRequestError before any I/O."""
    desc = RequestDescriptor(
        method=method,
        url=url,
        body=body,
        headers=tuple((str(k), str(v)) for k, v in (headers or {}).items()),
        token=token,
    )
    desc.validate()
    return desc


def _signal_outcome(desc: RequestDescriptor, cause: str, started: float) -> FetchOutcome:
    msg = "context deadline exceeded" if cause == CAUSE_DEADLINE_EXCEEDED else "context canceled"
    return FetchOutcome(
        status=cause,
        error=f"{desc.method} {desc.url}: {msg}",
        elapsed_s=time.monotonic() - started,
    )


async def _perform(client: httpx.AsyncClient, desc: RequestDescriptor, started: float) -> FetchOutcome:
    try:
        async with client.stream(
            desc.method,
            desc.url,
            content=desc.body,
            headers=list(desc.headers) or None,
        ) as resp:
            n = 0
            async for chunk in resp.aiter_bytes():
                n += len(chunk)
            return FetchOutcome(
                status=STATUS_OK,
                n_bytes=n,
                status_code=resp.status_code,
                elapsed_s=time.monotonic() - started,
            )
    except httpx.RequestError as e:
        return FetchOutcome(
            status=STATUS_TRANSPORT_ERROR,
            error=f"{desc.method} {desc.url}: {type(e).__name__}: {e}",
            elapsed_s=time.monotonic() - started,
            exc=e,
        )


async def _race(
    client: httpx.AsyncClient,
    desc: RequestDescriptor,
    token: CancellationToken,
    started: float,
) -> FetchOutcome:
    loop = asyncio.get_running_loop()
    fired = asyncio.Event()
    unregister = token.add_callback(lambda: loop.call_soon_threadsafe(fired.set))

    io_task = asyncio.ensure_future(_perform(client, desc, started))
    signal_task = asyncio.ensure_future(fired.wait())
    try:
        while not token.cancelled:
            done, _ = await asyncio.wait(
                {io_task, signal_task},
                timeout=token.remaining(),
                return_when=asyncio.FIRST_COMPLETED,
            )
            if io_task in done:
                return io_task.result()
    except asyncio.CancelledError:
        io_task.cancel()
        await asyncio.gather(io_task, return_exceptions=True)
        raise
    finally:
        unregister()
        signal_task.cancel()

    # Signal won: abort the in-flight call and wait for the stream to be closed.
    io_task.cancel()
    await asyncio.gather(io_task, return_exceptions=True)
    return _signal_outcome(desc, token.cause or CAUSE_CANCELLED, started)


async def execute(
    desc: RequestDescriptor,
    token: CancellationToken | None = None,
    *,
    client: httpx.AsyncClient | None = None,
    transport_timeout_s: float | None = None,
) -> FetchOutcome:
    """Execute `desc`, aborting early when the token fires.

    The token defaults to the one attached to the descriptor; with neither, the call
    is never cancelled. Transport and signal failures are returned as outcomes;
    only a malformed descriptor raises (InvalidRequestError, before any I/O).
    The response stream, and the client when created here, are closed on every path.
    """
    desc.validate()
    started = time.monotonic()
    signal = token if token is not None else desc.token

    if signal is not None and signal.cancelled:
        return _signal_outcome(desc, signal.cause or CAUSE_CANCELLED, started)

    if client is None:
        async with httpx.AsyncClient(timeout=transport_timeout_s) as own_client:
            return await _execute_with(own_client, desc, signal, started)
    return await _execute_with(client, desc, signal, started)


async def _execute_with(
    client: httpx.AsyncClient,
    desc: RequestDescriptor,
    signal: CancellationToken | None,
    started: float,
) -> FetchOutcome:
    if signal is None:
        return await _perform(client, desc, started)
    return await _race(client, desc, signal, started)


def execute_sync(
    desc: RequestDescriptor,
    token: CancellationToken | None = None,
    *,
    transport_timeout_s: float | None = None,
) -> FetchOutcome:
    """Blocking wrapper around `execute` for callers without an event loop."""
    desc.validate()
    return asyncio.run(execute(desc, token, transport_timeout_s=transport_timeout_s))
