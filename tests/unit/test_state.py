"""Unit tests for run-state persistence, migrations and quarantine."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

import pytest

from agent_flow.errors import StateCorrupt, StateIOError
from agent_flow.orchestrator.config import FlowSettings
from agent_flow.state.migrations import upgrade
from agent_flow.state.models import (
    WORKFLOW_STATE_SCHEMA_VERSION,
    RunMode,
    StepState,
    StepStatus,
    TokenUsage,
    WorkflowRunState,
)
from agent_flow.state.store import WorkflowStateStore

V1_DOC = {
    "workflow_name": "demo",
    "run_id": "legacy",
    "resume_pointer": 1,
    "steps": [
        {
            "index": 0,
            "status": "completed",
            "needs_real": False,
            "memory_path": ".agent-flow/runtime/memory/01-planner-agent-result.md",
            "debug_log": ".agent-flow/runtime/debug/01-planner-agent.json",
            "token_delta": {"prompt_tokens": 10, "completion_tokens": 4, "total_cost": 0.5},
        },
        {"index": 1, "status": "interrupted"},
    ],
}


def _sample_state() -> WorkflowRunState:
    state = WorkflowRunState.new("demo", "run-1")
    state.mode = RunMode.MOCK
    state.steps = [
        StepState(
            index=0,
            step_id="step-1-planner",
            status=StepStatus.COMPLETED,
            attempts=1,
            needs_real=True,
            token_delta=TokenUsage(prompt_tokens=3, completion_tokens=2),
        ),
        StepState(index=1, step_id="step-2-coder"),
    ]
    state.resume_pointer = 1
    return state


def test_load_missing_returns_none(settings: FlowSettings) -> None:
    store = WorkflowStateStore(settings)

    assert store.load(store.path_for("demo", "run-1")) is None


def test_save_then_load_is_idempotent(settings: FlowSettings) -> None:
    store = WorkflowStateStore(settings)
    path = store.path_for("demo", "run-1")
    store.save(path, _sample_state())
    before = path.read_bytes()

    first = store.load(path)
    second = store.load(path)

    assert first is not None
    assert first == second
    assert path.read_bytes() == before
    assert first.steps[0].token_delta == TokenUsage(prompt_tokens=3, completion_tokens=2)
    assert not path.with_name(f"{path.name}.tmp").exists()


def test_save_refreshes_updated_at(settings: FlowSettings) -> None:
    store = WorkflowStateStore(settings)
    path = store.path_for("demo", "run-1")
    state = _sample_state()
    original = state.updated_at

    store.save(path, state)

    assert state.updated_at >= original
    assert json.loads(path.read_text(encoding="utf-8"))["schema_version"] == WORKFLOW_STATE_SCHEMA_VERSION


def test_v1_document_is_migrated_and_rewritten(settings: FlowSettings) -> None:
    store = WorkflowStateStore(settings)
    path = store.path_for("demo", "legacy")
    path.parent.mkdir(parents=True)
    path.write_text(json.dumps(V1_DOC), encoding="utf-8")

    state = store.load(path)

    assert state is not None
    assert state.workflow_id == "demo"
    assert state.schema_version == WORKFLOW_STATE_SCHEMA_VERSION
    assert state.token_usage == TokenUsage(prompt_tokens=10, completion_tokens=4, estimated_cost=0.5)
    first, second = state.steps
    assert first.step_id == "step-1-planner"
    assert first.attempts == 1
    assert first.memory_ref == ".agent-flow/runtime/memory/01-planner-agent-result.md"
    assert first.debug_log_ref == ".agent-flow/runtime/debug/01-planner-agent.json"
    assert second.status is StepStatus.FAILED
    assert second.step_id == "step-2"

    rewritten = json.loads(path.read_text(encoding="utf-8"))
    assert rewritten["schema_version"] == WORKFLOW_STATE_SCHEMA_VERSION
    assert "workflow_name" not in rewritten


def test_v2_null_token_usage_becomes_zeros() -> None:
    doc, migrated = upgrade(
        json.dumps({"schema_version": 2, "workflow_name": "demo", "run_id": "r", "steps": [], "token_usage": None})
    )

    assert migrated
    assert doc["token_usage"]["total_tokens"] == 0
    assert doc["status"] == "running"


def test_current_version_is_not_migrated(settings: FlowSettings) -> None:
    raw = _sample_state().model_dump_json()

    _, migrated = upgrade(raw)

    assert not migrated


@pytest.mark.parametrize(
    "raw",
    [
        "{not json",
        "[]",
        json.dumps({"schema_version": WORKFLOW_STATE_SCHEMA_VERSION + 1, "workflow_id": "d", "run_id": "r"}),
        json.dumps({"schema_version": "three"}),
    ],
)
def test_upgrade_rejects_unusable_documents(raw: str) -> None:
    with pytest.raises(StateCorrupt):
        upgrade(raw)


def test_corrupt_file_is_quarantined_and_run_starts_fresh(
    settings: FlowSettings, caplog: pytest.LogCaptureFixture
) -> None:
    store = WorkflowStateStore(settings)
    path = store.path_for("demo", "run-1")
    path.parent.mkdir(parents=True)
    path.write_text('{"schema_version": 3, "steps": [', encoding="utf-8")

    with caplog.at_level(logging.WARNING):
        state = store.load_or_init("demo", "run-1")

    assert state.steps == []
    assert state.resume_pointer == 0
    backups = list(path.parent.glob("run-1.resume.json.corrupt-*"))
    assert len(backups) == 1
    assert backups[0].read_text(encoding="utf-8") == '{"schema_version": 3, "steps": ['
    assert path.exists()
    assert any("corrupted" in r.getMessage() for r in caplog.records)


def test_save_retries_then_succeeds(settings: FlowSettings, monkeypatch: pytest.MonkeyPatch) -> None:
    sleeps: list[float] = []
    store = WorkflowStateStore(settings.model_copy(update={"state_write_backoff_seconds": 0.5}), sleep=sleeps.append)
    path = store.path_for("demo", "run-1")
    real_replace = os.replace
    failures = iter([OSError("disk busy")])

    def flaky_replace(src: str | os.PathLike[str], dst: str | os.PathLike[str]) -> None:
        error = next(failures, None)
        if error is not None:
            raise error
        real_replace(src, dst)

    monkeypatch.setattr("agent_flow.state.store.os.replace", flaky_replace)

    store.save(path, _sample_state())

    assert path.exists()
    assert sleeps == [0.5]


def test_save_gives_up_after_retries(settings: FlowSettings, monkeypatch: pytest.MonkeyPatch) -> None:
    store = WorkflowStateStore(settings, sleep=lambda _: None)
    path = store.path_for("demo", "run-1")

    def failing_replace(src: str | os.PathLike[str], dst: str | os.PathLike[str]) -> None:
        raise OSError("read-only file system")

    monkeypatch.setattr("agent_flow.state.store.os.replace", failing_replace)

    with pytest.raises(StateIOError, match="after 3 attempt"):
        store.save(path, _sample_state())
    assert not path.exists()
    assert not path.with_name(f"{path.name}.tmp").exists()


def test_load_or_init_returns_existing_state(settings: FlowSettings) -> None:
    store = WorkflowStateStore(settings)
    store.save(store.path_for("demo", "run-1"), _sample_state())

    state = store.load_or_init("demo", "run-1")

    assert state.resume_pointer == 1
    assert [s.status for s in state.steps] == [StepStatus.COMPLETED, StepStatus.PENDING]
