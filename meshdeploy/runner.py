"""Thin subprocess layer for the gcloud, kubectl and asmcli CLIs."""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
from pathlib import Path
from typing import Any

from .errors import CommandError

logger = logging.getLogger(__name__)


class CommandRunner:
    """Runs argv lists and captures their text output."""

    def __init__(self, cwd: Path | None = None):
        self.cwd = cwd

    def run(
        self,
        cmd: list[str],
        *,
        check: bool = True,
        input: str | None = None,
        timeout: float | None = None,
        cwd: Path | None = None,
    ) -> subprocess.CompletedProcess[str]:
        logger.debug(f"Running: {' '.join(cmd)}")
        result = subprocess.run(
            cmd,
            text=True,
            capture_output=True,
            input=input,
            timeout=timeout,
            cwd=cwd or self.cwd,
        )
        if check and result.returncode != 0:
            stderr = (result.stderr or "").strip()
            stdout = (result.stdout or "").strip()
            detail = stderr or stdout or f"exit={result.returncode}"
            raise CommandError(cmd, result.returncode, detail)
        return result

    def output(self, cmd: list[str], **kwargs) -> str:
        """Run a command and return its stripped stdout."""
        return (self.run(cmd, **kwargs).stdout or "").strip()

    def json(self, cmd: list[str], **kwargs) -> Any:
        raw = self.output(cmd, **kwargs)
        if not raw:
            return None
        return json.loads(raw)

    def exists(self, program: str) -> bool:
        return shutil.which(program) is not None
