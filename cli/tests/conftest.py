from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from livos_installer.errors import ServiceError
from livos_installer.service import render_systemd_unit


class FakeRunner:
    """Records commands; answers from a prefix -> (returncode, stdout) table."""

    def __init__(self, answers: dict[str, tuple[int, str]] | None = None):
        self.answers = dict(answers or {})
        self.calls: list[list[str]] = []
        self.envs: list[dict | None] = []

    def __call__(self, cmd, *, env=None, cwd=None, timeout=None):
        cmd = [str(part) for part in cmd]
        self.calls.append(cmd)
        self.envs.append(dict(env) if env else None)
        line = " ".join(cmd)
        for prefix, (code, out) in self.answers.items():
            if line.startswith(prefix):
                return subprocess.CompletedProcess(cmd, code, stdout=out, stderr="")
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")


class FakeSupervisor:
    log_hint = "journalctl -u livos -n 50"

    def __init__(self, unit_path: Path, *, running: bool = True, fail_on: str | None = None):
        self.unit_path = unit_path
        self.running = running
        self.fail_on = fail_on
        self.calls: list[str] = []

    def render(self, config) -> str:
        return render_systemd_unit(config)

    def _do(self, step: str) -> None:
        self.calls.append(step)
        if step == self.fail_on:
            raise ServiceError(step, f"{step} refused")

    def reload(self) -> None:
        self._do("reload")

    def enable(self) -> None:
        self._do("enable")

    def start(self) -> None:
        self._do("start")

    def restart(self) -> None:
        self._do("restart")

    def is_running(self) -> bool:
        self.calls.append("is_running")
        return self.running


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def supervisor(tmp_path) -> FakeSupervisor:
    return FakeSupervisor(tmp_path / "units" / "livos.service")


@pytest.fixture
def no_sleep():
    waits: list[float] = []
    return waits.append, waits
