"""Custom error hierarchy for yagwt."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any


class ErrorCode(str, enum.Enum):
    DIRTY = "dirty"
    NOT_FOUND = "not_found"
    AMBIGUOUS = "ambiguous"
    GIT = "git"
    POLICY = "policy"
    LOCKED = "locked"
    BROKEN = "broken"
    CONFLICT = "conflict"
    TIMEOUT = "timeout"
    CONFIG = "config"


@dataclass(slots=True)
class Hint:
    """Actionable follow-up attached to an error."""

    message: str
    command: str = ""


class WorkspaceError(RuntimeError):
    """Base error for all workspace operations.

    Carries a machine-readable code, a detail map for structured output and
    zero or more hints the caller can show to the user.
    """

    def __init__(self, code: ErrorCode, message: str, *, cause: BaseException | None = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details: dict[str, Any] = {}
        self.hints: list[Hint] = []
        self.cause = cause

    def with_detail(self, key: str, value: Any) -> "WorkspaceError":
        self.details[key] = value
        return self

    def with_hint(self, message: str, command: str = "") -> "WorkspaceError":
        self.hints.append(Hint(message=message, command=command))
        return self

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message}: {self.cause}"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.details:
            payload["details"] = {key: str(value) for key, value in self.details.items()}
        if self.hints:
            payload["hints"] = [{"message": hint.message, "command": hint.command} for hint in self.hints]
        return payload


class GitCommandError(WorkspaceError):
    """Raised when an underlying git command fails."""

    def __init__(
        self,
        command: list[str],
        returncode: int,
        *,
        stdout: str | None = None,
        stderr: str | None = None,
        message: str | None = None,
    ):
        self.command = command
        self.returncode = returncode
        self.stdout = stdout or ""
        self.stderr = stderr or ""
        text = message or f"git command failed (exit {returncode}): {' '.join(command)}"
        super().__init__(ErrorCode.GIT, text)
        if self.stderr.strip():
            self.with_detail("stderr", self.stderr.strip())


class LockTimeoutError(WorkspaceError):
    """Raised when the metadata lock cannot be obtained in time."""

    def __init__(self, path: str, timeout: float):
        super().__init__(ErrorCode.TIMEOUT, "lock acquisition timed out")
        self.with_detail("path", path)
        self.with_detail("timeout", f"{timeout:g}s")
        self.with_hint("Another process may be holding the lock")


def not_found(message: str) -> WorkspaceError:
    return WorkspaceError(ErrorCode.NOT_FOUND, message)


def config_error(message: str, cause: BaseException | None = None) -> WorkspaceError:
    return WorkspaceError(ErrorCode.CONFIG, message, cause=cause)


__all__ = [
    "ErrorCode",
    "Hint",
    "WorkspaceError",
    "GitCommandError",
    "LockTimeoutError",
    "not_found",
    "config_error",
]
