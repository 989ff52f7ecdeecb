from __future__ import annotations

from pathlib import Path

import pytest

from ctxfetch.config.load_config import ConfigError, default_config_path, load_app_config


REPO_ROOT = Path(__file__).resolve().parents[1]


def test_bundled_default_config_loads() -> None:
    cfg = load_app_config(REPO_ROOT / "config" / "default.toml")
    assert cfg.fetch.target_url.startswith("https://")
    assert cfg.fetch.method == "GET"
    assert cfg.fetch.local_timeout_ms == 100
    assert cfg.fetch.local_timeout_s == pytest.approx(0.1)
    assert cfg.fetch.transport_timeout is None
    assert cfg.server.disconnect_poll_interval_ms > 0


def test_config_path_from_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    p = tmp_path / "x.toml"
    monkeypatch.setenv("CTXFETCH_CONFIG_PATH", str(p))
    assert default_config_path() == p.resolve()


def test_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_app_config(tmp_path / "missing.toml")


@pytest.mark.parametrize(
    "body",
    [
        # missing target_url
        "[fetch]\nlocal_timeout_ms = 1\ntransport_timeout_s = 0\n[server]\ndisconnect_poll_interval_ms = 1\n",
        # negative timeout
        '[fetch]\ntarget_url = "http://a"\nlocal_timeout_ms = -5\ntransport_timeout_s = 0\n'
        "[server]\ndisconnect_poll_interval_ms = 1\n",
        # not a number
        '[fetch]\ntarget_url = "http://a"\nlocal_timeout_ms = "soon"\ntransport_timeout_s = 0\n'
        "[server]\ndisconnect_poll_interval_ms = 1\n",
        # poll interval must be positive
        '[fetch]\ntarget_url = "http://a"\nlocal_timeout_ms = 1\ntransport_timeout_s = 0\n'
        "[server]\ndisconnect_poll_interval_ms = 0\n",
        # broken toml
        "[fetch\n",
    ],
)
def test_invalid_config_raises(tmp_path: Path, body: str) -> None:
    p = tmp_path / "bad.toml"
    p.write_text(body, encoding="utf-8")
    with pytest.raises(ConfigError):
        load_app_config(p)


def test_zero_timeouts_mean_none(tmp_path: Path) -> None:
    p = tmp_path / "c.toml"
    p.write_text(
        '[fetch]\ntarget_url = "http://a"\nmethod = "head"\nlocal_timeout_ms = 0\ntransport_timeout_s = 2.5\n'
        "[server]\ndisconnect_poll_interval_ms = 10\n",
        encoding="utf-8",
    )
    cfg = load_app_config(p)
    assert cfg.fetch.method == "HEAD"
    assert cfg.fetch.local_timeout_s is None
    assert cfg.fetch.transport_timeout == pytest.approx(2.5)
