"""HTTP API layer (FastAPI).

This module exposes a small, versioned `/api/v1` surface whose handlers fetch an
outbound URL on behalf of the caller:
- `/fetch` is bound to the inbound request (client disconnect cancels it)
- `/fetch_with_timeout` narrows that binding with a local timeout

The API is intentionally thin: the executor lives in `ctxfetch.tools.fetch`.
"""
