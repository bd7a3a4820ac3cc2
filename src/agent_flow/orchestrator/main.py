"""CLI entrypoint for the workflow runner."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

from agent_flow import __version__
from agent_flow.core.config import load_workflow
from agent_flow.core.runner import RunSummary, WorkflowRunner
from agent_flow.errors import ConfigError, FlowError, StepFailure
from agent_flow.orchestrator.config import RESUME_DISABLED_ENV, FlowSettings
from agent_flow.orchestrator.logging import configure_logging
from agent_flow.state.prune import format_bytes, prune_state

logger = logging.getLogger(__name__)


def _parse_vars(values: list[str] | None) -> dict[str, str]:
    parsed: dict[str, str] = {}
    for value in values or []:
        key, sep, val = value.partition("=")
        if not sep or not key.strip():
            raise ConfigError(f"invalid --var {value!r}; expected KEY=VALUE")
        parsed[key.strip()] = val
    return parsed


def _mock_flag(args: argparse.Namespace) -> bool | None:
    if args.mock:
        return True
    if args.no_mock:
        return False
    return None


def _add_common_run_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("file", type=Path, help="Path to the workflow TOML file")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--mock",
        action="store_true",
        help="Replay captured event logs instead of calling the engine (overrides defaults.mock)",
    )
    mode.add_argument(
        "--no-mock",
        action="store_true",
        help="Call the real engine (overrides defaults.mock)",
    )
    parser.add_argument(
        "--workflow",
        default=None,
        help="Workflow to select from a multi-workflow file",
    )
    parser.add_argument(
        "--var",
        action="append",
        default=None,
        metavar="KEY=VALUE",
        help="Prompt variable; overrides [vars] in the workflow file (repeatable)",
    )
    parser.add_argument("--verbose", action="store_true", help="Debug logs and a token summary line")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agent-flow",
        description="Lightweight agent workflow runner (mock-first, resumable)",
    )
    parser.add_argument("--version", action="version", version=f"agent-flow {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Start a new run or continue an existing run id")
    _add_common_run_args(run)
    run.add_argument(
        "--run-id",
        default=None,
        help="Run identifier used for the resume state file (default: UTC timestamp)",
    )
    run.add_argument(
        "--resume-from",
        type=Path,
        default=None,
        metavar="STATE_PATH",
        help="Seed the run from an existing state file instead of starting at step 1",
    )

    resume = subparsers.add_parser("resume", help="Continue a persisted run from its resume pointer")
    _add_common_run_args(resume)
    resume.add_argument("--run-id", required=True, help="Run identifier of the original execution")

    state = subparsers.add_parser("state", help="Manage persisted run state")
    state_sub = state.add_subparsers(dest="state_command", required=True)
    prune = state_sub.add_parser("prune", help="Delete resume files older than a number of days")
    prune.add_argument("--days", type=int, required=True, help="Retention threshold in days")

    return parser


def _print_summary(kind: str, summary: RunSummary, *, verbose: bool) -> None:
    for line in summary.render(kind, verbose=verbose):
        print(line)


def _cmd_run(args: argparse.Namespace, settings: FlowSettings) -> int:
    workflow = load_workflow(args.file, args.workflow).with_vars(_parse_vars(args.var))
    runner = WorkflowRunner(settings, workflow)
    summary = runner.run(run_id=args.run_id, mock=_mock_flag(args), resume_from=args.resume_from)
    if summary.run_id_generated:
        print(f"info: generated run-id {summary.run_id}", file=sys.stderr)
    if summary.stateless:
        print(f"info: {RESUME_DISABLED_ENV} is set; workflow state persistence skipped", file=sys.stderr)
    _print_summary("run", summary, verbose=args.verbose)
    return 0


def _cmd_resume(args: argparse.Namespace, settings: FlowSettings) -> int:
    workflow = load_workflow(args.file, args.workflow).with_vars(_parse_vars(args.var))
    runner = WorkflowRunner(settings, workflow)
    summary = runner.resume(run_id=args.run_id, mock=_mock_flag(args))
    if summary.executed == 0:
        print(f"Workflow `{summary.workflow_id}` run `{summary.run_id}` already completed; 0 steps executed.")
        return 0
    _print_summary("resume", summary, verbose=args.verbose)
    return 0


def _cmd_state_prune(args: argparse.Namespace, settings: FlowSettings) -> int:
    state_root = settings.state_root
    report = prune_state(state_root, args.days)
    print(
        f"[state] scanned {report.total_files} file(s) ({format_bytes(report.total_bytes)}) "
        f"under {state_root}"
    )
    print(
        f"[state] removed {report.removed_files} file(s) older than {args.days} day(s); "
        f"reclaimed {format_bytes(report.reclaimed_bytes)} "
        f"(remaining {format_bytes(report.remaining_bytes)})"
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = FlowSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your environment and .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    verbose = getattr(args, "verbose", False)
    configure_logging("DEBUG" if verbose else settings.log_level)

    try:
        if args.command == "run":
            return _cmd_run(args, settings)

        if args.command == "resume":
            return _cmd_resume(args, settings)

        if args.command == "state" and args.state_command == "prune":
            return _cmd_state_prune(args, settings)

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except StepFailure as e:
        logger.error(str(e), extra={"step": e.step_index + 1, "exit_code": e.exit_code})
        print(e.describe(), file=sys.stderr)
        return e.exit_code

    except FlowError as e:
        logger.error(str(e), extra={"error_type": type(e).__name__})
        print(f"error: {e}", file=sys.stderr)
        return e.exit_code

    except KeyboardInterrupt:
        print("interrupted", file=sys.stderr)
        return 130

    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
