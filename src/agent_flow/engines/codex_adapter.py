"""Real adapter: runs `codex exec --json` and streams its events."""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
import threading
from collections.abc import Iterator
from pathlib import Path
from typing import IO

from agent_flow.core.config import EngineDetail
from agent_flow.core.resolver import ResolvedStep
from agent_flow.engines.adapter import EngineAdapter, StepInput
from agent_flow.errors import EngineInvocationError
from agent_flow.workflow.events import Event, parse_engine_event

logger = logging.getLogger(__name__)

_STDERR_TAIL_LINES = 20


def build_command(bin_path: str, preset_args: list[str], resolved: ResolvedStep, result_path: Path) -> list[str]:
    """Build the engine command line for one step.

    Reasoning flags are only passed when set; a profile replaces the model.
    """

    command = [bin_path, *preset_args]
    if "exec" not in preset_args:
        command.append("exec")
    if resolved.reasoning_effort is not None:
        command += ["--config", f'model_reasoning_effort="{resolved.reasoning_effort.value}"']
    if resolved.reasoning_summary is not None:
        command += ["--config", f'reasoning_summary="{resolved.reasoning_summary.value}"']
    if resolved.profile is not None:
        command += ["--profile", resolved.profile]
    else:
        command += ["--model", resolved.model]
    if "--json" not in preset_args:
        command.append("--json")
    command += ["--output-last-message", str(result_path)]
    return command


class CodexAdapter(EngineAdapter):
    """Spawn the engine process once per step and parse its JSON event stream."""

    name = "codex"

    def __init__(self, engine: EngineDetail | None, *, default_bin: str, cancel_timeout_seconds: float) -> None:
        """Initialize the adapter.

        Args:
            engine: `[engines.codex]` table from the workflow file, if any.
            default_bin: Binary used when the workflow file names none.
            cancel_timeout_seconds: Grace period between terminate and kill.
        """
        self.bin = (engine.bin if engine is not None and engine.bin else None) or default_bin
        self.preset_args = list(engine.args) if engine is not None else []
        self.cancel_timeout_seconds = cancel_timeout_seconds
        self._process: subprocess.Popen[str] | None = None
        self._lock = threading.Lock()

    def check_ready(self, resolved: ResolvedStep, step_input: StepInput) -> None:
        if shutil.which(self.bin) is None:
            raise EngineInvocationError(f"engine binary not found: {self.bin}")

    def invoke(self, resolved: ResolvedStep, step_input: StepInput) -> Iterator[Event]:
        paths = step_input.paths
        paths.ensure_dirs()
        command = build_command(self.bin, self.preset_args, resolved, paths.result)
        logger.info(
            "Starting engine",
            extra={"step": step_input.index + 1, "engine": self.name, "command": command},
        )

        try:
            process = subprocess.Popen(
                command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
            )
        except OSError as e:
            raise EngineInvocationError(f"failed to spawn {self.bin}: {e}") from e

        with self._lock:
            self._process = process

        stderr_lines: list[str] = []
        stderr_thread = threading.Thread(
            target=_drain,
            args=(process.stderr, stderr_lines),
            name=f"engine-stderr-step-{step_input.index + 1}",
            daemon=True,
        )
        stderr_thread.start()
        debug_log = _open_debug_log(paths.debug_log)

        try:
            _write_prompt(process, step_input.prompt)
            assert process.stdout is not None
            for line in process.stdout:
                trimmed = line.strip()
                if not trimmed.startswith("{"):
                    continue
                try:
                    payload = json.loads(trimmed)
                except json.JSONDecodeError:
                    logger.debug("Discarding non-JSON engine output", extra={"line": trimmed[:200]})
                    continue
                _append(debug_log, trimmed)
                if not isinstance(payload, dict):
                    continue
                event = parse_engine_event(payload)
                if event is not None:
                    yield event

            returncode = process.wait()
            stderr_thread.join()
            for err_line in stderr_lines:
                _append(debug_log, f"STDERR: {err_line}")
            if returncode != 0:
                message = f"{self.bin} exited with code {returncode}"
                if stderr_lines:
                    tail = "\n".join(stderr_lines[-_STDERR_TAIL_LINES:])
                    message = f"{message}\n{tail}"
                yield Event.error(message)
            yield Event.done()
        finally:
            if process.poll() is None:
                self._stop(process)
            if debug_log is not None:
                debug_log.close()
            with self._lock:
                self._process = None

    def cancel(self) -> None:
        with self._lock:
            process = self._process
        if process is not None and process.poll() is None:
            logger.info("Cancelling engine process", extra={"pid": process.pid})
            self._stop(process)

    def _stop(self, process: subprocess.Popen[str]) -> None:
        process.terminate()
        try:
            process.wait(timeout=self.cancel_timeout_seconds)
        except subprocess.TimeoutExpired:
            logger.warning("Engine did not exit after terminate; killing", extra={"pid": process.pid})
            process.kill()
            process.wait()


def _drain(stream: IO[str] | None, sink: list[str]) -> None:
    if stream is None:
        return
    for line in stream:
        stripped = line.rstrip()
        if stripped:
            sink.append(stripped)


def _write_prompt(process: subprocess.Popen[str], prompt: str) -> None:
    assert process.stdin is not None
    try:
        process.stdin.write(prompt)
    except BrokenPipeError:
        logger.debug("Engine closed stdin before reading the prompt")
    finally:
        try:
            process.stdin.close()
        except BrokenPipeError:
            pass


def _open_debug_log(path: Path) -> IO[str] | None:
    try:
        return open(path, "w", encoding="utf-8")
    except OSError as e:
        logger.warning("Failed to open debug log", extra={"path": str(path), "error": str(e)})
        return None


def _append(log: IO[str] | None, line: str) -> None:
    if log is None:
        return
    try:
        log.write(line + "\n")
        log.flush()
    except OSError as e:
        logger.warning("Failed to write debug log", extra={"error": str(e)})
