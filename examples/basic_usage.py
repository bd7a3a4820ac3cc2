#!/usr/bin/env python3
"""Programmatic workflow run example.

This demonstrates using the runner components directly:

* load settings from the environment / `.env`
* load a workflow TOML file and apply prompt variables
* run it (mock replay or the real engine) and print the summary

The run id is passed as an argument so the same run can be continued later
with `agent-flow resume --run-id ...`.
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Sequence

from agent_flow.core.config import load_workflow
from agent_flow.core.runner import run_workflow
from agent_flow.errors import FlowError, StepFailure
from agent_flow.orchestrator.config import FlowSettings
from agent_flow.orchestrator.logging import configure_logging


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a workflow (programmatic example).")
    parser.add_argument("file", type=Path, help="Workflow TOML file")
    parser.add_argument("--run-id", default=None, help="Run identifier (default: UTC timestamp)")
    parser.add_argument("--mock", action="store_true", help="Replay captured event logs")
    parser.add_argument(
        "--vars",
        default="",
        help='Comma-separated KEY=VALUE prompt variables, e.g. "topic=logging,team=core" (optional)',
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    variables = dict(item.split("=", 1) for item in args.vars.split(",") if "=" in item)

    settings = FlowSettings()
    configure_logging(settings.log_level)

    try:
        workflow = load_workflow(args.file).with_vars(variables)
        summary = run_workflow(settings, workflow, run_id=args.run_id, mock=args.mock or None)
    except StepFailure as exc:
        print(exc.describe())
        return exc.exit_code
    except FlowError as exc:
        print(f"error: {exc}")
        return exc.exit_code

    for line in summary.render(verbose=True):
        print(line)
    if summary.state_path is not None:
        print(f"State persisted to: {summary.state_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
