from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any


class ConfigError(RuntimeError):
    pass


def _as_int(value: Any, *, key: str) -> int:
    if value is None:
        raise ConfigError(f"Missing required config key: {key}")
    try:
        return int(value)
    except Exception as e:
        raise ConfigError(f"Invalid int for {key}: {value!r}") from e


def _as_str(value: Any, *, key: str) -> str:
    if value is None:
        raise ConfigError(f"Missing required config key: {key}")
    return str(value)


def _as_float(value: Any, *, key: str) -> float:
    if value is None:
        raise ConfigError(f"Missing required config key: {key}")
    try:
        return float(value)
    except Exception as e:
        raise ConfigError(f"Invalid float for {key}: {value!r}") from e


def _non_negative(value: float, *, key: str) -> float:
    if value < 0:
        raise ConfigError(f"Invalid {key}: must be >= 0, got {value}")
    return value


def env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in {"1", "true", "yes", "y", "on"}:
        return True
    if v in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclass(frozen=True)
class FetchConfig:
    target_url: str
    method: str
    # 0 disables the timeout in both fields below.
    local_timeout_ms: int
    transport_timeout_s: float

    @property
    def local_timeout_s(self) -> float | None:
        return self.local_timeout_ms / 1000.0 if self.local_timeout_ms > 0 else None

    @property
    def transport_timeout(self) -> float | None:
        return self.transport_timeout_s if self.transport_timeout_s > 0 else None


@dataclass(frozen=True)
class ServerConfig:
    disconnect_poll_interval_ms: int


@dataclass(frozen=True)
class AppConfig:
    fetch: FetchConfig
    server: ServerConfig


def default_config_path() -> Path:
    return Path(os.getenv("CTXFETCH_CONFIG_PATH", "config/default.toml")).expanduser().resolve()


def load_app_config(path: Path | None = None) -> AppConfig:
    cfg_path = path or default_config_path()
    if not cfg_path.exists():
        raise ConfigError(f"Config file not found: {cfg_path}")

    import tomllib

    try:
        raw = tomllib.loads(cfg_path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {cfg_path}: {e}") from e

    fetch = raw.get("fetch", {})
    server = raw.get("server", {})

    poll_ms = _as_int(server.get("disconnect_poll_interval_ms"), key="server.disconnect_poll_interval_ms")
    if poll_ms <= 0:
        raise ConfigError(f"Invalid server.disconnect_poll_interval_ms: must be > 0, got {poll_ms}")

    return AppConfig(
        fetch=FetchConfig(
            target_url=_as_str(fetch.get("target_url"), key="fetch.target_url"),
            method=_as_str(fetch.get("method", "GET"), key="fetch.method").upper(),
            local_timeout_ms=int(
                _non_negative(
                    _as_int(fetch.get("local_timeout_ms"), key="fetch.local_timeout_ms"),
                    key="fetch.local_timeout_ms",
                )
            ),
            transport_timeout_s=_non_negative(
                _as_float(fetch.get("transport_timeout_s"), key="fetch.transport_timeout_s"),
                key="fetch.transport_timeout_s",
            ),
        ),
        server=ServerConfig(disconnect_poll_interval_ms=poll_ms),
    )
