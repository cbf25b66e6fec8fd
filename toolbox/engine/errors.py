from __future__ import annotations

from typing import Sequence


class ToolboxError(Exception):
    """Base class for toolbox errors."""


class NotFoundError(ToolboxError):
    """Raised when a requested entity cannot be found."""


class ValidationError(ToolboxError):
    """Raised when a config, module call, or input fails validation."""


class NotConfiguredError(ToolboxError):
    """Raised when a requested adapter is declared but not wired for the current runtime."""


class ExecError(ToolboxError):
    """Raised when a command run by the container engine exits non-zero."""

    def __init__(self, cmd: Sequence[str], exit_code: int, stdout: str = "", stderr: str = ""):
        self.cmd = list(cmd)
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        tail = (stderr or "").strip().splitlines()[-1:] or [""]
        super().__init__(f"command failed rc={exit_code}: {' '.join(self.cmd)}: {tail[0]}")


class GitError(ToolboxError):
    """Raised when a git command fails."""
