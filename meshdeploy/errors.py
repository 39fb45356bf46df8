"""Exceptions raised by meshdeploy."""


class MeshDeployError(Exception):
    """Base exception for meshdeploy errors."""

    pass


class CommandError(MeshDeployError):
    """Raised when an external command exits non-zero."""

    def __init__(self, cmd: list[str], returncode: int, detail: str):
        self.cmd = list(cmd)
        self.returncode = returncode
        self.detail = detail
        super().__init__(f"Command failed: {' '.join(cmd)}\n{detail}")


class PrerequisiteError(MeshDeployError):
    """Raised when a required CLI or earlier step is missing."""

    pass


class ConfigError(MeshDeployError):
    """Raised when the environment file is missing or invalid."""

    pass


class WaitTimeout(MeshDeployError):
    """Raised when a polled condition is not observed in time."""

    pass
