from __future__ import annotations

import asyncio

import pytest

from adapters import termination


class _FakeProcess:
    def __init__(self, pid: int) -> None:
        self.pid = pid
        self.returncode: int | None = None

    async def wait(self) -> int:
        self.returncode = -9
        return self.returncode


def test_windows_escalation_runs_taskkill_twice(monkeypatch) -> None:
    calls: list[tuple[str, ...]] = []

    async def fake_exec(*cmd, **kwargs):
        calls.append(cmd)
        return _FakeProcess(999)

    monkeypatch.setattr(termination, "IS_WINDOWS", True)
    monkeypatch.setattr(termination.asyncio, "create_subprocess_exec", fake_exec)

    asyncio.run(termination.terminate_with_escalation(_FakeProcess(42), 0.1))

    assert calls == [
        ("taskkill", "/PID", "42", "/T"),
        ("taskkill", "/PID", "42", "/T", "/F"),
    ]


def test_taskkill_failure_is_logged(monkeypatch, caplog) -> None:
    async def broken_exec(*cmd, **kwargs):
        raise FileNotFoundError("taskkill")

    monkeypatch.setattr(termination, "IS_WINDOWS", True)
    monkeypatch.setattr(termination.asyncio, "create_subprocess_exec", broken_exec)

    asyncio.run(termination.terminate(_FakeProcess(7), "force"))

    assert "taskkill failed for 7" in caplog.text


@pytest.mark.skipif(termination.IS_WINDOWS, reason="POSIX process groups")
def test_signal_to_missing_group_is_ignored() -> None:
    asyncio.run(termination.terminate(_FakeProcess(2**22 + 12345), "force"))
