"""Resume planning: reconcile persisted progress with the workflow before a session."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from agent_flow.errors import ResumeError
from agent_flow.state.models import RunMode, StepState, StepStatus, WorkflowRunState, utc_now
from agent_flow.workflow.policy import StepDecision, decide_step

logger = logging.getLogger(__name__)

INTERRUPTED_REASON = "interrupted before completion"


@dataclass(frozen=True, slots=True)
class ResumePlan:
    next_step: int
    total_steps: int
    decisions: tuple[StepDecision, ...]

    @property
    def remaining_steps(self) -> int:
        return max(self.total_steps - self.next_step, 0)

    @property
    def to_execute(self) -> list[int]:
        return [i for i, d in enumerate(self.decisions) if d is not StepDecision.SKIP]

    def is_complete(self) -> bool:
        return not self.to_execute


def ensure_steps(state: WorkflowRunState, step_ids: list[str]) -> None:
    """Create step entries on first scheduling; afterwards only verify them.

    State migrated from older schema versions may hold only the steps that had
    finished, and steps whose agent could not be recovered carry a bare
    `step-<n>` id. Such a prefix is completed with pending steps, and bare ids
    take the workflow's id.

    Raises:
        ResumeError: If the persisted steps do not match the workflow.
    """
    if len(state.steps) > len(step_ids):
        raise ResumeError(
            f"run `{state.run_id}` has {len(state.steps)} step(s) but workflow "
            f"`{state.workflow_id}` declares {len(step_ids)}"
        )
    for position, (step, expected) in enumerate(zip(state.steps, step_ids)):
        if step.index != position:
            raise ResumeError(
                f"run `{state.run_id}` stores step-{step.index + 1} at position {position + 1}"
            )
        if step.step_id == expected:
            continue
        if step.step_id == f"step-{position + 1}":
            step.step_id = expected
            continue
        raise ResumeError(
            f"step-{step.index + 1} of run `{state.run_id}` is `{step.step_id}`, "
            f"workflow declares `{expected}`"
        )

    known = len(state.steps)
    if known and known < len(step_ids):
        logger.info(
            "Extending persisted steps to match the workflow",
            extra={"run_id": state.run_id, "persisted": known, "declared": len(step_ids)},
        )
    state.steps.extend(
        StepState(index=i, step_id=step_ids[i]) for i in range(known, len(step_ids))
    )


def recover_interrupted(state: WorkflowRunState) -> list[int]:
    """Mark steps left `in_progress` by a crash as failed so they run again."""

    recovered: list[int] = []
    for step in state.steps:
        if step.status is StepStatus.IN_PROGRESS:
            step.status = StepStatus.FAILED
            step.failure_reason = INTERRUPTED_REASON
            step.finished_at = utc_now()
            recovered.append(step.index)
    if recovered:
        logger.warning("Recovered interrupted steps", extra={"steps": [i + 1 for i in recovered]})
    return recovered


def flag_missing_debug_logs(state: WorkflowRunState, debug_logs: list[Path]) -> list[int]:
    """Flag completed steps whose captured event log is gone for real re-execution."""

    flagged: list[int] = []
    for step, debug_log in zip(state.steps, debug_logs):
        if step.status is StepStatus.COMPLETED and not step.needs_real and not debug_log.exists():
            step.needs_real = True
            flagged.append(step.index)
    if flagged:
        logger.info("Debug logs missing; steps will be re-run", extra={"steps": [i + 1 for i in flagged]})
    return flagged


def advance_pointer(state: WorkflowRunState) -> int:
    """Move the pointer to the first step at or after it that is not done. Never moves back."""

    pointer = min(state.resume_pointer, len(state.steps))
    while pointer < len(state.steps) and state.steps[pointer].is_done:
        pointer += 1
    state.resume_pointer = max(state.resume_pointer, pointer)
    return state.resume_pointer


def seed_from(state: WorkflowRunState, seed: WorkflowRunState) -> None:
    """Copy progress from an externally supplied state file into a fresh run.

    Raises:
        ResumeError: If the seed belongs to another workflow or does not fit it.
    """
    if seed.workflow_id != state.workflow_id:
        raise ResumeError(
            f"seed state belongs to workflow `{seed.workflow_id}`, not `{state.workflow_id}`"
        )
    if len(seed.steps) > len(state.steps):
        raise ResumeError(
            f"seed state has {len(seed.steps)} step(s) but workflow "
            f"`{state.workflow_id}` declares {len(state.steps)}"
        )

    for i, seeded in enumerate(seed.steps):
        state.steps[i] = seeded.model_copy(
            update={"index": i, "step_id": state.steps[i].step_id}, deep=True
        )
    state.token_usage = seed.token_usage.model_copy()
    state.resume_pointer = min(seed.resume_pointer, len(state.steps))
    for step in state.steps[: state.resume_pointer]:
        if step.status is not StepStatus.COMPLETED:
            step.status = StepStatus.SKIPPED
    logger.info(
        "Seeded run from external state",
        extra={"run_id": state.run_id, "seed_run_id": seed.run_id, "resume_pointer": state.resume_pointer},
    )


def plan(state: WorkflowRunState, mode: RunMode) -> ResumePlan:
    """Decide what happens to every step this session.

    Steps before the pointer are only revisited when the policy says so
    (a mock-completed step in real mode).
    """

    decisions = tuple(decide_step(step=step, mode=mode) for step in state.steps)
    return ResumePlan(
        next_step=min(state.resume_pointer, len(state.steps)),
        total_steps=len(state.steps),
        decisions=decisions,
    )
