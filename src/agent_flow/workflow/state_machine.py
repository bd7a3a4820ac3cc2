"""Per-step status transitions.

`completed -> in_progress` only happens when a step finished under mock replay
is re-executed against the real engine; `failed -> in_progress` is a retry on
resume; `pending -> skipped` only happens when a run is seeded from an
external state file.
"""

from __future__ import annotations

from agent_flow.state.models import StepState, StepStatus, utc_now

ALLOWED_TRANSITIONS: dict[StepStatus, set[StepStatus]] = {
    StepStatus.PENDING: {StepStatus.IN_PROGRESS, StepStatus.SKIPPED},
    StepStatus.IN_PROGRESS: {StepStatus.COMPLETED, StepStatus.FAILED},
    StepStatus.FAILED: {StepStatus.IN_PROGRESS},
    StepStatus.COMPLETED: {StepStatus.IN_PROGRESS},
    StepStatus.SKIPPED: set(),
}


class IllegalTransitionError(ValueError):
    pass


def transition(step: StepState, to: StepStatus) -> StepState:
    """Move `step` to `to` in place.

    Entering `in_progress` counts an attempt; leaving it stamps the finish time.
    """

    allowed = ALLOWED_TRANSITIONS.get(step.status, set())
    if to not in allowed:
        raise IllegalTransitionError(
            f"Illegal transition for step-{step.index + 1}: {step.status.value} -> {to.value}"
        )

    now = utc_now()
    if to is StepStatus.IN_PROGRESS:
        step.attempts += 1
        step.started_at = now
        step.finished_at = None
        step.failure_reason = None
    elif to in {StepStatus.COMPLETED, StepStatus.FAILED}:
        step.finished_at = now
    step.status = to
    return step
