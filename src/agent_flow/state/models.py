"""Persisted run-state models."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field, model_validator

WORKFLOW_STATE_SCHEMA_VERSION = 3


def utc_now() -> datetime:
    return datetime.now(UTC)


class RunMode(str, Enum):
    MOCK = "mock"
    REAL = "real"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"


class StepStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class TokenUsage(BaseModel):
    """Token counts and derived cost. `total_tokens` is always prompt + completion."""

    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)
    total_tokens: int = Field(default=0, ge=0)
    estimated_cost: float = Field(default=0.0, ge=0.0)

    @model_validator(mode="after")
    def _derive_total(self) -> TokenUsage:
        expected = self.prompt_tokens + self.completion_tokens
        if self.total_tokens != expected:
            self.total_tokens = expected
        return self

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            estimated_cost=self.estimated_cost + other.estimated_cost,
        )

    def is_zero(self) -> bool:
        return self.prompt_tokens == 0 and self.completion_tokens == 0 and self.estimated_cost == 0


class StepState(BaseModel):
    """Progress of one workflow step. Created once, then mutated in place."""

    index: int = Field(ge=0)
    step_id: str
    status: StepStatus = StepStatus.PENDING
    attempts: int = Field(default=0, ge=0)
    needs_real: bool = False
    token_delta: TokenUsage | None = None
    debug_log_ref: str | None = None
    memory_ref: str | None = None
    failure_reason: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def is_done(self) -> bool:
        return self.status in {StepStatus.COMPLETED, StepStatus.SKIPPED}


class WorkflowRunState(BaseModel):
    """Everything needed to resume one run of one workflow."""

    schema_version: int = WORKFLOW_STATE_SCHEMA_VERSION
    workflow_id: str
    run_id: str
    status: RunStatus = RunStatus.RUNNING
    mode: RunMode | None = None
    resume_pointer: int = Field(default=0, ge=0)
    steps: list[StepState] = Field(default_factory=list)
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    started_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def new(cls, workflow_id: str, run_id: str) -> WorkflowRunState:
        return cls(workflow_id=workflow_id, run_id=run_id)

    def is_complete(self) -> bool:
        return bool(self.steps) and all(step.is_done for step in self.steps)
