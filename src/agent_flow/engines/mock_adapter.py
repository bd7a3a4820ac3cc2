"""Mock adapter: replays an event log captured by an earlier real run."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Iterator
from pathlib import Path

from agent_flow.core.resolver import ResolvedStep
from agent_flow.engines.adapter import EngineAdapter, StepInput
from agent_flow.errors import ReplayUnavailable
from agent_flow.workflow.events import Event, EventKind, parse_engine_event

logger = logging.getLogger(__name__)


def _json_lines(path: Path) -> Iterator[str]:
    with open(path, encoding="utf-8") as f:
        for line in f:
            trimmed = line.strip()
            if trimmed.startswith("{"):
                yield trimmed


class MockAdapter(EngineAdapter):
    """Replay engine events at a fixed cadence without spawning anything."""

    name = "mock"

    def __init__(
        self,
        interval_seconds: float = 1.0,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the mock adapter.

        Args:
            interval_seconds: Minimum delay between two replayed events.
            sleep: Used for the delay; injectable for tests.
        """
        self.interval_seconds = interval_seconds
        self._sleep = sleep
        self._cancelled = False

    def check_ready(self, resolved: ResolvedStep, step_input: StepInput) -> None:
        path = step_input.paths.debug_log
        try:
            has_events = next(_json_lines(path), None) is not None
        except FileNotFoundError:
            raise ReplayUnavailable(
                f"no captured event log at {path}; run the workflow once in real mode first"
            ) from None
        except OSError as e:
            raise ReplayUnavailable(f"failed to read captured event log {path}: {e}") from e
        if not has_events:
            raise ReplayUnavailable(
                f"captured event log {path} contains no JSON events; "
                "run the workflow once in real mode first"
            )

    def invoke(self, resolved: ResolvedStep, step_input: StepInput) -> Iterator[Event]:
        self.check_ready(resolved, step_input)
        self._cancelled = False
        path = step_input.paths.debug_log
        logger.info(
            "Replaying captured events",
            extra={"step": step_input.index + 1, "path": str(path)},
        )

        last_message: str | None = None
        emitted = False
        for line in _json_lines(path):
            if self._cancelled:
                return
            try:
                payload = json.loads(line)
            except json.JSONDecodeError as e:
                raise ReplayUnavailable(f"malformed event in captured log {path}: {e}") from e
            if not isinstance(payload, dict):
                continue
            event = parse_engine_event(payload)
            if event is None:
                continue
            if emitted and self.interval_seconds > 0:
                self._sleep(self.interval_seconds)
            if event.kind is EventKind.FINAL_MESSAGE:
                last_message = event.text
            emitted = True
            yield event

        if last_message is not None:
            _write_result(step_input.paths.result, last_message)
        yield Event.done()

    def cancel(self) -> None:
        self._cancelled = True


def _write_result(path: Path, message: str) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(f"{message}\n", encoding="utf-8")
    except OSError as e:
        logger.warning("Failed to write result artifact", extra={"path": str(path), "error": str(e)})
