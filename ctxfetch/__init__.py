"""Deadline and cancellation propagation for outbound HTTP requests.

- `ctxfetch.utils.cancel`: the cancellation token tree
- `ctxfetch.tools.fetch`: the cancellable request executor
- `ctxfetch.api`: FastAPI handlers that bind outbound calls to inbound requests
- `ctxfetch.cli`: command-line runner
"""
