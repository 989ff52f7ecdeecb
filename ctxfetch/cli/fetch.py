from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

from ctxfetch.config.load_config import ConfigError, load_app_config
from ctxfetch.tools.fetch import InvalidRequestError, execute_sync, new_request
from ctxfetch.utils.cancel import CancellationToken


logger = logging.getLogger(__name__)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Fetch a URL, optionally bound to a timeout token.")
    parser.add_argument("--url", default="", help="Target URL (default: fetch.target_url from config).")
    parser.add_argument("--method", default="", help="HTTP method (default: fetch.method from config).")
    parser.add_argument(
        "--timeout-ms",
        type=int,
        default=None,
        help="Deadline for the whole call in ms; 0 sends the request without a token "
        "(default: fetch.local_timeout_ms).",
    )
    parser.add_argument(
        "--config",
        default="",
        help="Config path (default: env CTXFETCH_CONFIG_PATH or config/default.toml).",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(
        level=os.getenv("CTXFETCH_LOG_LEVEL", "WARNING").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        cfg = load_app_config(Path(args.config).expanduser().resolve() if args.config else None)
    except ConfigError as e:
        print(f"error: config: {e}", file=sys.stderr)
        return 2

    timeout_ms = cfg.fetch.local_timeout_ms if args.timeout_ms is None else int(args.timeout_ms)
    if timeout_ms < 0:
        print(f"error: --timeout-ms must be >= 0, got {timeout_ms}", file=sys.stderr)
        return 2

    url = (args.url or "").strip() or cfg.fetch.target_url
    method = (args.method or "").strip().upper() or cfg.fetch.method

    if args.timeout_ms is None:
        timeout_s = cfg.fetch.local_timeout_s
    else:
        timeout_s = timeout_ms / 1000.0 if timeout_ms > 0 else None

    token: CancellationToken | None = None
    if timeout_s is not None:
        token = CancellationToken.with_deadline_in(timeout_s)

    try:
        desc = new_request(method, url, token=token)
    except InvalidRequestError as e:
        print(f"error: invalid_request: {e}", file=sys.stderr)
        return 2

    logger.info("Fetching %s %s (timeout_ms=%s)", method, url, timeout_ms or None)
    outcome = execute_sync(desc, transport_timeout_s=cfg.fetch.transport_timeout)
    if not outcome.ok:
        print(f"error: {outcome.status}: {outcome.error}", file=sys.stderr)
        return 1

    print("Image data:", outcome.n_bytes)
    return 0
