"""Unit tests for operational CLI commands."""

from __future__ import annotations

import json

import pytest

import app.cli as cli_module


class _SessionContext:
    async def __aenter__(self) -> object:
        return object()

    async def __aexit__(self, *exc_info: object) -> None:
        return None


class _SweepingStore:
    def __init__(self, swept: int) -> None:
        self.swept = swept
        self.calls = 0

    async def sweep_expired(self, db_session: object) -> int:
        del db_session
        self.calls += 1
        return self.swept


def test_sweep_expired_sessions_prints_count_and_disposes_engine(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    store = _SweepingStore(swept=3)
    disposed: list[bool] = []

    async def _dispose() -> None:
        disposed.append(True)

    monkeypatch.setattr(cli_module, "get_session_store", lambda: store)
    monkeypatch.setattr(cli_module, "get_session_factory", lambda: _SessionContext)
    monkeypatch.setattr(cli_module, "dispose_engine", _dispose)

    exit_code = cli_module.main(["sweep-expired-sessions"])

    assert exit_code == 0
    assert store.calls == 1
    assert disposed == [True]
    assert json.loads(capsys.readouterr().out) == {"swept_sessions": 3}


def test_unknown_command_exits_with_usage_error() -> None:
    with pytest.raises(SystemExit) as exc_info:
        cli_module.main(["rotate-everything"])

    assert exc_info.value.code == 2
