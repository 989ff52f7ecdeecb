from __future__ import annotations

from pathlib import Path

import pytest

import ctxfetch.cli.fetch as cli
from ctxfetch.tools.fetch import FetchOutcome, RequestDescriptor
from ctxfetch.utils.cancel import CancellationToken


REPO_ROOT = Path(__file__).resolve().parents[1]
CONFIG = str(REPO_ROOT / "config" / "default.toml")


def _capture_execute(monkeypatch: pytest.MonkeyPatch, outcome: FetchOutcome) -> list[RequestDescriptor]:
    calls: list[RequestDescriptor] = []

    def _fake_execute_sync(
        desc: RequestDescriptor,
        token: CancellationToken | None = None,
        *,
        transport_timeout_s: float | None = None,
    ) -> FetchOutcome:
        calls.append(desc)
        return outcome

    monkeypatch.setattr(cli, "execute_sync", _fake_execute_sync)
    return calls


def test_cli_without_timeout_sends_request_without_token(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    calls = _capture_execute(monkeypatch, FetchOutcome(status="ok", n_bytes=17539, status_code=200))

    rc = cli.main(["--config", CONFIG, "--timeout-ms", "0"])
    assert rc == 0
    assert capsys.readouterr().out.strip() == "Image data: 17539"
    assert len(calls) == 1
    assert calls[0].token is None
    assert calls[0].url == "https://golang.org/doc/gopher/frontpage.png"


def test_cli_with_timeout_binds_deadline_token(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    calls = _capture_execute(monkeypatch, FetchOutcome(status="ok", n_bytes=3))

    rc = cli.main(["--config", CONFIG, "--timeout-ms", "250", "--url", "http://local.test/x", "--method", "head"])
    assert rc == 0
    desc = calls[0]
    assert desc.method == "HEAD"
    assert desc.url == "http://local.test/x"
    assert desc.token is not None
    remaining = desc.token.remaining()
    assert remaining is not None and 0.0 < remaining <= 0.25


def test_cli_reports_failure_without_traceback(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    _capture_execute(
        monkeypatch,
        FetchOutcome(status="deadline_exceeded", error="GET x: context deadline exceeded", elapsed_s=0.1),
    )

    rc = cli.main(["--config", CONFIG])
    captured = capsys.readouterr()
    assert rc == 1
    assert captured.out == ""
    assert "error: deadline_exceeded: GET x: context deadline exceeded" in captured.err


def test_cli_rejects_invalid_url(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    calls = _capture_execute(monkeypatch, FetchOutcome(status="ok", n_bytes=0))

    rc = cli.main(["--config", CONFIG, "--url", "mailto:someone"])
    assert rc == 2
    assert "invalid_request" in capsys.readouterr().err
    assert calls == []


def test_cli_missing_config(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    rc = cli.main(["--config", str(tmp_path / "nope.toml")])
    assert rc == 2
    assert "config" in capsys.readouterr().err


def test_cli_default_timeout_comes_from_config(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    calls = _capture_execute(monkeypatch, FetchOutcome(status="ok", n_bytes=1))

    rc = cli.main(["--config", CONFIG])
    assert rc == 0
    token = calls[0].token
    assert token is not None
    remaining = token.remaining()
    assert remaining is not None and 0.0 < remaining <= 0.1
