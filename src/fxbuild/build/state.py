"""Build state management, pass results and error types.

State machine for an orchestrator run:
IDLE → BUILDING → READY (production) | WATCHING (development) | FAILED
                                        WATCHING → STOPPED
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class BuildState(str, Enum):
    """Orchestrator state machine states."""

    IDLE = "idle"
    BUILDING = "building"
    READY = "ready"
    WATCHING = "watching"
    FAILED = "failed"
    STOPPED = "stopped"


# esbuild stderr patterns
# Error lines: "✘ [ERROR] Could not resolve "foo"" (Windows consoles print "X")
ESBUILD_ERROR_PATTERN = re.compile(r"^\s*(?:✘|X|×)\s*\[ERROR\]\s*(?P<message>.+?)\s*$")

# Watch mode markers
ESBUILD_WATCH_STARTED_PATTERN = re.compile(r"^\s*\[watch\]\s+build started", re.IGNORECASE)
ESBUILD_WATCH_FINISHED_PATTERN = re.compile(r"^\s*\[watch\]\s+build finished", re.IGNORECASE)


def parse_esbuild_error(line: str) -> str | None:
    """Extract the error message from an esbuild diagnostic line.

    Args:
        line: A single line of esbuild stderr output

    Returns:
        Error message, or None if the line is not an error
    """
    match = ESBUILD_ERROR_PATTERN.match(line)
    if match:
        return match.group("message")
    return None


def parse_esbuild_output(output: str) -> list[str]:
    """Parse esbuild output into a list of error messages."""
    errors: list[str] = []
    for line in output.splitlines():
        message = parse_esbuild_error(line)
        if message:
            errors.append(message)
    return errors


@dataclass
class PassResult:
    """Outcome of one build or rebuild pass of a target."""

    target: str
    errors: list[str] = field(default_factory=list)
    first_build: bool = True
    duration_ms: float = 0.0

    @property
    def success(self) -> bool:
        """Whether the pass finished without errors."""
        return not self.errors

    @property
    def status(self) -> str:
        """'built' for the first pass of a target, 'rebuilt' afterwards."""
        return "built" if self.first_build else "rebuilt"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, Any] = {
            "target": self.target,
            "success": self.success,
            "status": self.status,
            "durationMs": round(self.duration_ms, 2),
        }
        if self.errors:
            result["errors"] = list(self.errors)
        return result


class BuildError(Exception):
    """Build operation error."""

    def __init__(
        self,
        message: str,
        errors: list[str] | None = None,
        exit_code: int | None = None,
    ):
        super().__init__(message)
        self.errors = errors or []
        self.exit_code = exit_code

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, Any] = {"error": str(self)}
        if self.errors:
            result["errors"] = list(self.errors)
        if self.exit_code is not None:
            result["exitCode"] = self.exit_code
        return result


class CompileError(BuildError):
    """A target's build pass reported errors."""

    def __init__(self, message: str, target: str, errors: list[str] | None = None):
        super().__init__(message, errors=errors)
        self.target = target

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["target"] = self.target
        return result


class ExternalProcessError(BuildError):
    """An auxiliary web process failed to spawn or exited unexpectedly."""
