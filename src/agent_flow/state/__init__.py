"""Persisted run state."""

from agent_flow.state.models import (
    RunMode,
    RunStatus,
    StepState,
    StepStatus,
    TokenUsage,
    WorkflowRunState,
)
from agent_flow.state.store import WorkflowStateStore

__all__ = [
    "RunMode",
    "RunStatus",
    "StepState",
    "StepStatus",
    "TokenUsage",
    "WorkflowRunState",
    "WorkflowStateStore",
]
