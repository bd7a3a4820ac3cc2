from __future__ import annotations

from enum import Enum

from agent_flow.state.models import RunMode, StepState, StepStatus


class StepDecision(str, Enum):
    SKIP = "skip"
    EXECUTE = "execute"
    RERUN_REAL = "rerun_real"


def decide_step(*, step: StepState, mode: RunMode) -> StepDecision:
    """Policy: (persisted step, run mode) -> what the runner does with it.

    This is intentionally small and explicit. It must NOT touch the engine.

    A step left `in_progress` by a crash is executed again, like a failed one.
    """

    if step.status is StepStatus.SKIPPED:
        return StepDecision.SKIP
    if step.status is StepStatus.COMPLETED:
        if step.needs_real and mode is RunMode.REAL:
            return StepDecision.RERUN_REAL
        return StepDecision.SKIP
    return StepDecision.EXECUTE
