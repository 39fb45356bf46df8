"""Pytest configuration and fixtures for meshdeploy tests."""

from __future__ import annotations

import subprocess

import pytest

from meshdeploy.errors import CommandError
from meshdeploy.models import Environment
from meshdeploy.runner import CommandRunner
from meshdeploy.settings import (
    SETTING_DEFS,
    Workspace,
    clear_settings,
    save_environment,
    use_environment_file,
)


class FakeRunner(CommandRunner):
    """Records argv lists and answers them from prefix rules.

    ``stdout`` may be a string, a callable taking the argv list, or a list of
    strings returned one per call (the last one repeats).
    """

    def __init__(self):
        super().__init__()
        self.calls: list[list[str]] = []
        self.inputs: list[str | None] = []
        self.missing: set[str] = set()
        self._rules: list[tuple[tuple[str, ...], object, str, int]] = []

    def on(self, *prefix: str, stdout="", stderr: str = "", returncode: int = 0) -> None:
        if isinstance(stdout, list):
            stdout = list(stdout)
        # Later rules take precedence over earlier ones.
        self._rules.insert(0, (tuple(prefix), stdout, stderr, returncode))

    def run(self, cmd, *, check=True, input=None, timeout=None, cwd=None):
        cmd = [str(c) for c in cmd]
        self.calls.append(cmd)
        self.inputs.append(input)
        stdout, stderr, returncode = "", "", 0
        for prefix, out, err, rc in self._rules:
            if tuple(cmd[: len(prefix)]) == prefix:
                if callable(out):
                    stdout = out(cmd)
                elif isinstance(out, list):
                    stdout = out.pop(0) if len(out) > 1 else out[0]
                else:
                    stdout = out
                stderr, returncode = err, rc
                break
        if check and returncode != 0:
            raise CommandError(cmd, returncode, stderr or stdout or f"exit={returncode}")
        return subprocess.CompletedProcess(cmd, returncode, stdout, stderr)

    def exists(self, program: str) -> bool:
        return program not in self.missing

    def commands(self, *prefix: str) -> list[list[str]]:
        return [c for c in self.calls if tuple(c[: len(prefix)]) == prefix]


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    """Drop cached settings and setting env vars around each test."""
    for defn in SETTING_DEFS.values():
        monkeypatch.delenv(defn.env_var, raising=False)
    monkeypatch.setenv("EXTERNAL_IP_INTERVAL_SECONDS", "0")
    monkeypatch.setenv("HTTP_CHECK_INTERVAL_SECONDS", "0")
    clear_settings()
    yield
    clear_settings()


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def workspace(tmp_path):
    ws = Workspace(tmp_path)
    use_environment_file(ws.env_file)
    return ws


@pytest.fixture
def environment():
    return Environment.derive(
        project_id="demo-project",
        project_number="123456789",
        cluster_name="central",
        cluster_zone="us-central1-a",
    )


@pytest.fixture
def saved_environment(workspace, environment):
    save_environment(workspace.env_file, environment)
    return environment


@pytest.fixture
def istio_dir(workspace):
    """asm_output layout as left behind by asmcli install."""
    path = workspace.asm_output / "istio-1.20.3-asm.1"
    (path / "samples" / "bookinfo" / "platform" / "kube").mkdir(parents=True)
    (path / "samples" / "bookinfo" / "networking").mkdir(parents=True)
    (workspace.asm_output / "samples" / "gateways" / "istio-ingressgateway").mkdir(parents=True)
    return path
