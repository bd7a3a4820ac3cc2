"""Error taxonomy for workflow execution.

Each error class carries the CLI exit code used when it ends a command.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from agent_flow.core.resolver import ResolvedStep


class FlowError(Exception):
    """Base class for all expected workflow failures."""

    exit_code = 1


class ConfigError(FlowError):
    """Invalid workflow definition, resolver input or identifier. Never retried."""

    exit_code = 2


class ResumeError(FlowError):
    """Resume cannot proceed (kill switch set, missing or mismatched state)."""

    exit_code = 2


class ReplayUnavailable(FlowError):
    """No captured event log exists for a mock replay."""

    exit_code = 3


class EngineInvocationError(FlowError):
    """The real engine exited non-zero or reported a structured error."""

    exit_code = 1


class StateCorrupt(FlowError):
    """A state file could not be parsed, validated or migrated."""


class StateIOError(FlowError):
    """State could not be written after the retries were exhausted."""

    exit_code = 4


class RunCancelled(FlowError):
    """The run was interrupted from outside."""

    exit_code = 130


class StepFailure(Exception):
    """Raised by the runner when a step ends the run.

    Carries enough context to tell the user which step failed, how it was
    configured, and why.
    """

    def __init__(
        self,
        step_index: int,
        label: str,
        resolved: ResolvedStep | None,
        cause: FlowError,
    ) -> None:
        super().__init__(step_index, label, resolved, cause)
        self.step_index = step_index
        self.label = label
        self.resolved = resolved
        self.cause = cause

    @property
    def exit_code(self) -> int:
        return self.cause.exit_code

    def describe(self) -> str:
        lines = [f"step-{self.step_index + 1} ({self.label}) failed"]
        if self.resolved is not None:
            lines.append(f"  settings: {self.resolved.describe()}")
        lines.append(f"  cause: {type(self.cause).__name__}: {self.cause}")
        return "\n".join(lines)

    def __str__(self) -> str:
        return f"step-{self.step_index + 1} ({self.label}) failed: {self.cause}"
