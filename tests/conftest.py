"""Test configuration and fixtures."""

from __future__ import annotations

import json
import sys
import textwrap
from collections.abc import Callable
from pathlib import Path

import pytest

from agent_flow.core.config import WorkflowDefinition, load_workflow
from agent_flow.orchestrator.config import FlowSettings
from agent_flow.workflow.artifacts import step_paths

AGENTS = ("planner", "coder", "reviewer")

FAKE_ENGINE = textwrap.dedent(
    '''
    """Stand-in for `codex exec --json` used by the adapter tests."""
    import json
    import os
    import pathlib
    import signal
    import sys
    import time

    argv = sys.argv[1:]
    prompt = sys.stdin.read()
    if "HANG" in prompt:
        signal.signal(signal.SIGTERM, signal.SIG_IGN)
    calls = pathlib.Path(__file__).with_name("calls.jsonl")
    with calls.open("a", encoding="utf-8") as f:
        f.write(json.dumps({"argv": argv, "prompt": prompt, "pid": os.getpid()}) + "\\n")

    result = argv[argv.index("--output-last-message") + 1]

    def emit(obj):
        print(json.dumps(obj), flush=True)

    print("banner line that is not JSON", flush=True)
    emit({"type": "thread.started", "thread_id": "t-1"})
    emit({"type": "turn.started"})
    if "HANG" in prompt:
        time.sleep(60)
    if "TURN_FAILED" in prompt:
        emit({"type": "turn.failed", "error": {"message": "model refused"}})
        sys.exit(1)
    if "EXIT_NONZERO" in prompt:
        print("boom: engine crashed", file=sys.stderr, flush=True)
        sys.exit(3)
    emit({"type": "item.completed", "item": {"id": "i0", "type": "reasoning", "text": "thinking"}})
    message = "done: " + prompt.strip().splitlines()[0]
    emit({"type": "item.completed", "item": {"id": "i1", "type": "agent_message", "text": message}})
    emit({"type": "turn.completed", "usage": {"input_tokens": 100, "cached_input_tokens": 20, "output_tokens": 30}})
    print("diagnostic on stderr", file=sys.stderr, flush=True)
    pathlib.Path(result).write_text(message + "\\n", encoding="utf-8")
    '''
).lstrip()


def _toml_str(value: str) -> str:
    return json.dumps(value)


@pytest.fixture
def settings(tmp_path: Path) -> FlowSettings:
    """Settings rooted in a temporary runtime directory, without replay delays."""
    return FlowSettings(
        _env_file=None,
        runtime_dir=tmp_path / "runtime",
        resume_disabled=False,
        mock_event_interval_seconds=0.0,
        state_write_attempts=3,
        state_write_backoff_seconds=0.0,
        cancel_timeout_seconds=2.0,
        log_level="DEBUG",
    )


@pytest.fixture
def fake_engine(tmp_path: Path) -> Path:
    """A Python script that behaves like the engine binary."""
    script = tmp_path / "engine" / "fake_codex.py"
    script.parent.mkdir(parents=True)
    script.write_text(FAKE_ENGINE, encoding="utf-8")
    return script


@pytest.fixture
def engine_calls(fake_engine: Path) -> Callable[[], list[dict]]:
    """Read back every invocation recorded by the fake engine."""

    def _read() -> list[dict]:
        calls = fake_engine.with_name("calls.jsonl")
        if not calls.exists():
            return []
        return [json.loads(line) for line in calls.read_text(encoding="utf-8").splitlines()]

    return _read


@pytest.fixture
def write_workflow(tmp_path: Path, fake_engine: Path) -> Callable[..., Path]:
    """Write a workflow TOML file (plus prompt files) and return its path."""

    def _write(
        body: str | None = None,
        *,
        prompts: dict[str, str] | None = None,
        name: str = "demo",
        mock: bool | None = None,
    ) -> Path:
        root = tmp_path / "project"
        (root / "prompts").mkdir(parents=True, exist_ok=True)
        default_prompts = {agent: f"{agent.title()} the {{{{ topic }}}} change.\n" for agent in AGENTS}
        for agent, text in {**default_prompts, **(prompts or {})}.items():
            (root / "prompts" / f"{agent}.md").write_text(text, encoding="utf-8")

        if body is None:
            mock_line = "" if mock is None else f"mock = {'true' if mock else 'false'}\n"
            body = (
                f"name = {_toml_str(name)}\n"
                "\n"
                "[defaults]\n"
                'engine = "codex"\n'
                'model = "gpt-4o"\n'
                f"{mock_line}"
                "\n"
                "[engines.codex]\n"
                f"bin = {_toml_str(sys.executable)}\n"
                f"args = [{_toml_str(str(fake_engine))}]\n"
                "\n"
                "[vars]\n"
                'topic = "logging"\n'
                "\n"
                + "".join(
                    f"[agents.{agent}]\nprompt = \"prompts/{agent}.md\"\n\n" for agent in AGENTS
                )
                + "[workflow]\n"
                + "".join(
                    f"[[workflow.steps]]\nagent = \"{agent}\"\n\n" for agent in AGENTS
                )
            )
        path = root / "workflow.toml"
        path.write_text(body, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def workflow(write_workflow: Callable[..., Path]) -> WorkflowDefinition:
    """The default three-step workflow (planner, coder, reviewer)."""
    return load_workflow(write_workflow())


@pytest.fixture
def replay_logs(settings: FlowSettings) -> Callable[..., list[Path]]:
    """Write captured event logs so mock replay has something to read."""

    def _write(agents: tuple[str, ...] = AGENTS, *, usage: bool = True) -> list[Path]:
        written: list[Path] = []
        for index, agent in enumerate(agents):
            paths = step_paths(settings, index, agent)
            paths.ensure_dirs()
            events = [
                {"type": "thread.started", "thread_id": f"t-{index}"},
                {"type": "turn.started"},
                {
                    "type": "item.completed",
                    "item": {"id": "i1", "type": "agent_message", "text": f"{agent} result"},
                },
            ]
            if usage:
                events.append(
                    {
                        "type": "turn.completed",
                        "usage": {"input_tokens": 10, "cached_input_tokens": 0, "output_tokens": 5},
                    }
                )
            lines = [json.dumps(e) for e in events] + ["STDERR: captured warning"]
            paths.debug_log.write_text("\n".join(lines) + "\n", encoding="utf-8")
            written.append(paths.debug_log)
        return written

    return _write
