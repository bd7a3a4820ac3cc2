"""Unit tests for the CLI surface."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from agent_flow.orchestrator.config import FlowSettings
from agent_flow.orchestrator.main import main


@pytest.fixture(autouse=True)
def cli_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, settings: FlowSettings) -> Iterator[None]:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("AGENT_FLOW_RUNTIME_DIR", str(settings.runtime_dir))
    monkeypatch.setenv("AGENT_FLOW_MOCK_INTERVAL", "0")
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    for name in ("AGENT_FLOW_RESUME_DISABLED", "AGENT_FLOW_STATE_WRITE_ATTEMPTS", "AGENT_FLOW_CODEX_BIN"):
        monkeypatch.delenv(name, raising=False)

    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def test_run_mock_prints_summary(
    write_workflow: Callable[..., Path],
    replay_logs: Callable[..., list[Path]],
    capsys: pytest.CaptureFixture[str],
) -> None:
    replay_logs()

    code = main(["run", str(write_workflow()), "--mock", "--run-id", "r1"])

    out = capsys.readouterr().out
    assert code == 0
    assert "planner result" in out
    assert out.rstrip().endswith("[run] `r1` completed 3 step(s); resume_pointer=3")


def test_run_generates_run_id(
    write_workflow: Callable[..., Path],
    replay_logs: Callable[..., list[Path]],
    capsys: pytest.CaptureFixture[str],
) -> None:
    replay_logs()

    code = main(["run", str(write_workflow()), "--mock"])

    captured = capsys.readouterr()
    assert code == 0
    assert "info: generated run-id " in captured.err


def test_resume_completed_run_executes_nothing(
    write_workflow: Callable[..., Path],
    replay_logs: Callable[..., list[Path]],
    capsys: pytest.CaptureFixture[str],
) -> None:
    replay_logs()
    path = str(write_workflow())
    assert main(["run", path, "--mock", "--run-id", "r1"]) == 0
    capsys.readouterr()

    code = main(["resume", path, "--mock", "--run-id", "r1"])

    assert code == 0
    assert "Workflow `demo` run `r1` already completed; 0 steps executed." in capsys.readouterr().out


def test_resume_without_state_exits_2(
    write_workflow: Callable[..., Path], capsys: pytest.CaptureFixture[str]
) -> None:
    code = main(["resume", str(write_workflow()), "--mock", "--run-id", "nope"])

    assert code == 2
    assert "resume state not found" in capsys.readouterr().err


def test_missing_replay_exits_3_with_step_details(
    write_workflow: Callable[..., Path], capsys: pytest.CaptureFixture[str]
) -> None:
    code = main(["run", str(write_workflow()), "--mock", "--run-id", "r1"])

    err = capsys.readouterr().err
    assert code == 3
    assert "step-1 (planner) failed" in err
    assert "settings: engine=codex model=gpt-4o" in err
    assert "cause: ReplayUnavailable" in err


def test_real_run_uses_engine(
    write_workflow: Callable[..., Path],
    engine_calls: Callable[[], list[dict]],
    capsys: pytest.CaptureFixture[str],
) -> None:
    code = main(["run", str(write_workflow(mock=True)), "--no-mock", "--run-id", "r1", "--var", "topic=docs"])

    assert code == 0
    assert len(engine_calls()) == 3
    assert "done: Planner the docs change." in capsys.readouterr().out


def test_verbose_prints_token_line(
    write_workflow: Callable[..., Path],
    replay_logs: Callable[..., list[Path]],
    capsys: pytest.CaptureFixture[str],
) -> None:
    replay_logs()

    code = main(["run", str(write_workflow()), "--mock", "--run-id", "r1", "--verbose"])

    lines = capsys.readouterr().out.strip().splitlines()
    assert code == 0
    assert lines[-1].startswith("[run] summary last_completed_step=3 resume_pointer=3")
    assert "total=45" in lines[-1]


def test_kill_switch_runs_stateless_and_blocks_resume(
    write_workflow: Callable[..., Path],
    replay_logs: Callable[..., list[Path]],
    settings: FlowSettings,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    replay_logs()
    monkeypatch.setenv("AGENT_FLOW_RESUME_DISABLED", "")
    path = str(write_workflow())

    assert main(["run", path, "--mock", "--run-id", "r1"]) == 0
    assert "workflow state persistence skipped" in capsys.readouterr().err
    assert not settings.state_root.exists()

    assert main(["resume", path, "--mock", "--run-id", "r1"]) == 2
    assert "resume is disabled" in capsys.readouterr().err


@pytest.mark.parametrize(
    "extra",
    [
        ["--run-id", "../escape"],
        ["--var", "novalue"],
    ],
)
def test_bad_arguments_exit_2(write_workflow: Callable[..., Path], extra: list[str]) -> None:
    assert main(["run", str(write_workflow()), "--mock", *extra]) == 2


def test_invalid_workflow_file_exits_2(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    bad = tmp_path / "bad.toml"
    bad.write_text("[workflow\n", encoding="utf-8")

    assert main(["run", str(bad), "--mock"]) == 2
    assert "failed to parse TOML" in capsys.readouterr().err


def test_invalid_settings_exit_2(
    write_workflow: Callable[..., Path], monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setenv("AGENT_FLOW_STATE_WRITE_ATTEMPTS", "0")

    assert main(["run", str(write_workflow()), "--mock"]) == 2
    assert "Configuration error" in capsys.readouterr().err


def test_state_prune(settings: FlowSettings, capsys: pytest.CaptureFixture[str]) -> None:
    target = settings.state_root / "demo" / "r1.resume.json"
    target.parent.mkdir(parents=True)
    target.write_text("{}", encoding="utf-8")

    code = main(["state", "prune", "--days", "7"])

    out = capsys.readouterr().out
    assert code == 0
    assert "[state] scanned 1 file(s) (2 B)" in out
    assert "[state] removed 0 file(s) older than 7 day(s); reclaimed 0 B (remaining 2 B)" in out
    assert target.exists()


def test_state_prune_rejects_zero_days(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["state", "prune", "--days", "0"]) == 2
    assert "--days must be greater than 0" in capsys.readouterr().err


def test_mock_flags_are_mutually_exclusive(write_workflow: Callable[..., Path]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(["run", str(write_workflow()), "--mock", "--no-mock"])

    assert excinfo.value.code == 2
