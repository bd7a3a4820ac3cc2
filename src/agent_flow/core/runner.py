"""Step scheduler: drives a workflow's steps in order and persists progress.

The runner owns the run state. It saves after every step transition so a
crash loses at most the in-flight step, and it never starts step n+1 before
step n has reached a terminal status.
"""

from __future__ import annotations

import logging
import sys
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import IO, TextIO

from agent_flow.core import planner
from agent_flow.core.config import WorkflowDefinition
from agent_flow.core.resolver import ResolvedStep, resolve_all
from agent_flow.engines.adapter import EngineAdapter, StepInput
from agent_flow.engines.factory import AdapterFactory
from agent_flow.errors import (
    ConfigError,
    EngineInvocationError,
    FlowError,
    ResumeError,
    RunCancelled,
    StateCorrupt,
    StepFailure,
)
from agent_flow.metrics.token_ledger import TokenLedger, usage_from_turns
from agent_flow.orchestrator.config import RESUME_DISABLED_ENV, FlowSettings, validate_identifier
from agent_flow.state.models import RunMode, RunStatus, StepStatus, TokenUsage, WorkflowRunState
from agent_flow.state.store import WorkflowStateStore
from agent_flow.workflow.artifacts import StepPaths, render_template, step_id_for, step_paths
from agent_flow.workflow.events import StepOutcome, fold_event
from agent_flow.workflow.policy import StepDecision
from agent_flow.workflow.state_machine import transition

logger = logging.getLogger(__name__)

CANCELED_REASON = "canceled"


def generate_run_id(now: datetime | None = None) -> str:
    return (now or datetime.now(UTC)).strftime("%Y%m%dT%H%M%SZ")


@dataclass(frozen=True, slots=True)
class RunSummary:
    """What a session did; printed by the CLI."""

    workflow_id: str
    run_id: str
    mode: RunMode
    status: RunStatus
    executed: int
    skipped: int
    resume_pointer: int
    total_steps: int
    token_usage: TokenUsage
    state_path: Path | None = None
    run_id_generated: bool = False

    @property
    def stateless(self) -> bool:
        return self.state_path is None

    def render(self, kind: str = "run", *, verbose: bool = False) -> list[str]:
        lines = [
            f"[{kind}] `{self.run_id}` completed {self.executed} step(s); "
            f"resume_pointer={self.resume_pointer}"
        ]
        if verbose:
            usage = self.token_usage
            last_completed = str(self.resume_pointer) if self.resume_pointer else "n/a"
            lines.append(
                f"[{kind}] summary last_completed_step={last_completed} "
                f"resume_pointer={self.resume_pointer} skipped={self.skipped} "
                f"token_delta(prompt={usage.prompt_tokens} completion={usage.completion_tokens} "
                f"total={usage.total_tokens} cost=${usage.estimated_cost:.6f})"
            )
        return lines


class WorkflowRunner:
    """Run or resume one workflow.

    One runner handles one session: a single adapter is selected up front and
    used for every step.
    """

    def __init__(
        self,
        settings: FlowSettings,
        workflow: WorkflowDefinition,
        *,
        store: WorkflowStateStore | None = None,
        adapter_factory: Callable[[RunMode], EngineAdapter] | None = None,
        out: TextIO | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the runner.

        Args:
            settings: Runtime settings.
            workflow: The selected workflow definition.
            store: State store; a default one is created from `settings`.
            adapter_factory: Builds the session adapter for a mode; defaults to
                `AdapterFactory.create`.
            out: Where the plain event stream is written (default stdout).
            sleep: Delay function handed to the mock adapter.
        """
        self.settings = settings
        self.workflow = workflow
        self.store = store or WorkflowStateStore(settings)
        self._adapter_factory = adapter_factory or (
            lambda mode: AdapterFactory.create(mode, settings, workflow.engines, sleep=sleep)
        )
        self._out = out
        self.adapter: EngineAdapter | None = None
        self.state: WorkflowRunState | None = None
        self.state_path: Path | None = None
        self.ledger = TokenLedger()
        self._resolved: list[ResolvedStep] = []
        self._paths: list[StepPaths] = []

    def default_mock(self) -> bool:
        return bool(self.workflow.defaults.mock)

    def run(
        self,
        *,
        run_id: str | None = None,
        mock: bool | None = None,
        resume_from: Path | None = None,
    ) -> RunSummary:
        """Start a new run, or continue an existing run id.

        Raises:
            ConfigError: Invalid workflow, run id or step settings.
            ResumeError: `--resume-from` used with the kill switch set, or a
                seed that does not match the workflow.
            StepFailure: A step failed or was canceled; state is persisted.
            StateIOError: State could not be written.
        """
        if resume_from is not None and self.settings.resume_disabled:
            raise ResumeError(f"--resume-from cannot be used while {RESUME_DISABLED_ENV} is set")
        generated = run_id is None
        run_id = generate_run_id() if run_id is None else validate_identifier(run_id)
        if generated:
            logger.info("Generated run id", extra={"run_id": run_id})
        return self._session(
            run_id,
            self._mode(mock),
            resume=False,
            resume_from=resume_from,
            run_id_generated=generated,
        )

    def resume(self, *, run_id: str, mock: bool | None = None) -> RunSummary:
        """Continue a persisted run from its resume pointer.

        Raises:
            ResumeError: Kill switch set, no saved state, or the saved steps do
                not match the workflow.
        """
        if self.settings.resume_disabled:
            raise ResumeError(f"resume is disabled while {RESUME_DISABLED_ENV} is set")
        validate_identifier(run_id)
        return self._session(run_id, self._mode(mock), resume=True, resume_from=None)

    def _mode(self, mock: bool | None) -> RunMode:
        use_mock = self.default_mock() if mock is None else mock
        return RunMode.MOCK if use_mock else RunMode.REAL

    def _session(
        self,
        run_id: str,
        mode: RunMode,
        *,
        resume: bool,
        resume_from: Path | None,
        run_id_generated: bool = False,
    ) -> RunSummary:
        workflow_id = validate_identifier(self.workflow.name, kind="workflow name")
        self._resolved = resolve_all(self.workflow)
        step_ids = [step_id_for(i, step.agent) for i, step in enumerate(self.workflow.steps)]
        self._paths = [step_paths(self.settings, i, step.agent) for i, step in enumerate(self.workflow.steps)]
        stateless = self.settings.resume_disabled
        self.settings.ensure_runtime_tree(include_state=not stateless)

        if stateless:
            logger.warning(
                "State persistence disabled; running stateless",
                extra={"env": RESUME_DISABLED_ENV, "run_id": run_id},
            )
            self.state_path = None
            state = WorkflowRunState.new(workflow_id, run_id)
        else:
            self.state_path = self.store.path_for(workflow_id, run_id)
            if resume and not self.state_path.exists():
                raise ResumeError(
                    f"resume state not found at {self.state_path}; "
                    f"run the workflow with --run-id {run_id} first"
                )
            state = self.store.load_or_init(workflow_id, run_id)
        self.state = state

        planner.ensure_steps(state, step_ids)
        if resume_from is not None:
            planner.seed_from(state, self._load_seed(resume_from))
        planner.recover_interrupted(state)
        if mode is RunMode.REAL:
            planner.flag_missing_debug_logs(state, [p.debug_log for p in self._paths])
        planner.advance_pointer(state)

        self.ledger = TokenLedger.from_deltas((s.step_id, s.token_delta) for s in state.steps)
        plan = planner.plan(state, mode)
        logger.info(
            "Session planned",
            extra={
                "workflow": workflow_id,
                "run_id": run_id,
                "mode": mode.value,
                "resume_pointer": plan.next_step,
                "to_execute": [i + 1 for i in plan.to_execute],
            },
        )

        self.adapter = self._adapter_factory(mode)
        inputs = self._preflight(plan, mode)

        state.mode = mode
        state.status = RunStatus.RUNNING
        self._persist()

        executed = 0
        for index in plan.to_execute:
            self._execute_step(index, plan.decisions[index], inputs[index], mode)
            executed += 1

        if state.is_complete():
            state.status = RunStatus.COMPLETED
        self._persist()
        logger.info(
            "Session finished",
            extra={"run_id": run_id, "executed": executed, "status": state.status.value},
        )
        return RunSummary(
            workflow_id=workflow_id,
            run_id=run_id,
            mode=mode,
            status=state.status,
            executed=executed,
            skipped=len(state.steps) - executed,
            resume_pointer=state.resume_pointer,
            total_steps=len(state.steps),
            token_usage=state.token_usage,
            state_path=self.state_path,
            run_id_generated=run_id_generated,
        )

    def _load_seed(self, path: Path) -> WorkflowRunState:
        try:
            seed = self.store.load(path, persist_migrations=False)
        except StateCorrupt as e:
            raise ResumeError(f"failed to load resume state from {path}: {e}") from e
        if seed is None:
            raise ResumeError(f"resume state not found at {path}")
        return seed

    def _preflight(self, plan: planner.ResumePlan, mode: RunMode) -> dict[int, StepInput]:
        """Build inputs and check every step that will run before any of them starts."""

        assert self.adapter is not None
        inputs: dict[int, StepInput] = {}
        for index in plan.to_execute:
            resolved = self._resolved[index]
            label = self.workflow.steps[index].label
            try:
                prompt = self._prompt_text(resolved) if mode is RunMode.REAL else ""
                step_input = StepInput(index=index, label=label, prompt=prompt, paths=self._paths[index])
                self.adapter.check_ready(resolved, step_input)
            except FlowError as e:
                raise StepFailure(index, label, resolved, e) from e
            inputs[index] = step_input
        return inputs

    def _prompt_text(self, resolved: ResolvedStep) -> str:
        path = Path(resolved.prompt_ref)
        try:
            template = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"failed to read prompt {path}: {e}") from e
        return render_template(template, self.workflow.vars)

    def _execute_step(self, index: int, decision: StepDecision, step_input: StepInput, mode: RunMode) -> None:
        assert self.state is not None and self.adapter is not None
        step = self.state.steps[index]
        resolved = self._resolved[index]
        label = step_input.label

        if decision is StepDecision.RERUN_REAL:
            logger.info("Re-running mock-completed step with the real engine", extra={"step": index + 1})
        transition(step, StepStatus.IN_PROGRESS)
        self._persist()
        logger.info(
            "Step started",
            extra={"step": index + 1, "label": label, "attempt": step.attempts, "settings": resolved.describe()},
        )
        self._emit(f"[step-{index + 1}] {label}")

        outcome = StepOutcome()
        stream = self.adapter.invoke(resolved, step_input)
        human_log = _open_human_log(step_input.paths.human_log)
        try:
            for event in stream:
                outcome = fold_event(outcome, event)
                line = event.render()
                self._emit(line)
                if human_log is not None:
                    human_log.write(line + "\n")
                if outcome.done or outcome.error is not None:
                    break
        except KeyboardInterrupt:
            logger.warning("Interrupted; cancelling step", extra={"step": index + 1})
            self.adapter.cancel()
            stream.close()
            self._fail_step(index, CANCELED_REASON, RunStatus.CANCELED)
            raise StepFailure(
                index, label, resolved, RunCancelled(f"run canceled during step-{index + 1}")
            ) from None
        except FlowError as e:
            self._fail_step(index, str(e), RunStatus.FAILED)
            raise StepFailure(index, label, resolved, e) from e
        finally:
            stream.close()
            if human_log is not None:
                human_log.close()

        if outcome.error is not None or not outcome.done:
            reason = outcome.error or "engine stream ended without a done event"
            self._fail_step(index, reason, RunStatus.FAILED)
            raise StepFailure(index, label, resolved, EngineInvocationError(reason))

        delta = usage_from_turns(resolved.model, outcome.turns)
        step.token_delta = delta
        self.ledger.record(step.step_id, delta if delta is not None else TokenUsage())
        self.state.token_usage = self.ledger.totals()
        step.needs_real = mode is RunMode.MOCK
        step.debug_log_ref = _artifact_ref(step_input.paths.debug_log, index, "debug log")
        step.memory_ref = _artifact_ref(step_input.paths.result, index, "result artifact")
        transition(step, StepStatus.COMPLETED)
        planner.advance_pointer(self.state)
        self._persist()
        logger.info(
            "Step completed",
            extra={
                "step": index + 1,
                "label": label,
                "total_tokens": delta.total_tokens if delta is not None else 0,
                "resume_pointer": self.state.resume_pointer,
            },
        )

    def _fail_step(self, index: int, reason: str, run_status: RunStatus) -> None:
        assert self.state is not None
        step = self.state.steps[index]
        transition(step, StepStatus.FAILED)
        step.failure_reason = reason
        self.state.status = run_status
        self._persist()
        logger.error(
            "Step failed",
            extra={"step": index + 1, "reason": reason, "run_status": run_status.value},
        )

    def _persist(self) -> None:
        if self.state_path is None or self.state is None:
            return
        self.store.save(self.state_path, self.state)

    def _emit(self, line: str) -> None:
        out = self._out if self._out is not None else sys.stdout
        print(line, file=out, flush=True)


def _artifact_ref(path: Path, index: int, kind: str) -> str | None:
    if path.is_file():
        return str(path)
    logger.warning(
        "Step completed without a readable %s",
        kind,
        extra={"step": index + 1, "path": str(path)},
    )
    return None


def _open_human_log(path: Path) -> IO[str] | None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        return open(path, "w", encoding="utf-8")
    except OSError as e:
        logger.warning("Failed to open step log", extra={"path": str(path), "error": str(e)})
        return None


def run_workflow(
    settings: FlowSettings,
    workflow: WorkflowDefinition,
    *,
    run_id: str | None = None,
    mock: bool | None = None,
    resume_from: Path | None = None,
) -> RunSummary:
    """Convenience wrapper: run a workflow with default collaborators."""

    return WorkflowRunner(settings, workflow).run(run_id=run_id, mock=mock, resume_from=resume_from)
