"""Engine event stream.

Adapters turn raw engine output into an ordered sequence of `Event`s. The
runner folds that sequence into a `StepOutcome` with `fold_event`; the last
final message wins and `done` ends the step.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


class EventKind(str, Enum):
    OUTPUT = "output"
    FINAL_MESSAGE = "final_message"
    ERROR = "error"
    DONE = "done"


@dataclass(frozen=True, slots=True)
class TurnUsage:
    """Raw token counts reported for one engine turn."""

    input_tokens: int = 0
    cached_input_tokens: int = 0
    output_tokens: int = 0

    @staticmethod
    def from_json(obj: dict[str, Any]) -> TurnUsage:
        def _int(v: object) -> int:
            if isinstance(v, bool):
                return 0
            if isinstance(v, int):
                return max(v, 0)
            if isinstance(v, float):
                return max(int(v), 0)
            return 0

        return TurnUsage(
            input_tokens=_int(obj.get("input_tokens")),
            cached_input_tokens=_int(obj.get("cached_input_tokens")),
            output_tokens=_int(obj.get("output_tokens")),
        )


@dataclass(frozen=True, slots=True)
class Event:
    kind: EventKind
    text: str = ""
    usage: TurnUsage | None = None

    @staticmethod
    def output(text: str, usage: TurnUsage | None = None) -> Event:
        return Event(kind=EventKind.OUTPUT, text=text, usage=usage)

    @staticmethod
    def final_message(text: str) -> Event:
        return Event(kind=EventKind.FINAL_MESSAGE, text=text)

    @staticmethod
    def error(text: str) -> Event:
        return Event(kind=EventKind.ERROR, text=text)

    @staticmethod
    def done() -> Event:
        return Event(kind=EventKind.DONE)

    def render(self) -> str:
        """Plain one-line rendering for the step log and stdout."""

        if self.kind is EventKind.DONE:
            return "[done]"
        if self.kind is EventKind.ERROR:
            return f"[error] {self.text}"
        return self.text


@dataclass(frozen=True, slots=True)
class StepOutcome:
    final_message: str | None = None
    error: str | None = None
    turns: tuple[TurnUsage, ...] = field(default_factory=tuple)
    done: bool = False
    events: int = 0

    @property
    def ok(self) -> bool:
        return self.done and self.error is None


def fold_event(outcome: StepOutcome, event: Event) -> StepOutcome:
    """Fold one event into the outcome. Events after `done` are ignored."""

    if outcome.done:
        return outcome
    counted = replace(outcome, events=outcome.events + 1)
    if event.kind is EventKind.FINAL_MESSAGE:
        return replace(counted, final_message=event.text)
    if event.kind is EventKind.ERROR:
        # The first error is the cause; later ones are usually consequences.
        return replace(counted, error=counted.error if counted.error is not None else event.text)
    if event.kind is EventKind.DONE:
        return replace(counted, done=True)
    if event.usage is not None:
        return replace(counted, turns=counted.turns + (event.usage,))
    return counted


def fold_events(events: Iterable[Event]) -> StepOutcome:
    outcome = StepOutcome()
    for event in events:
        outcome = fold_event(outcome, event)
        if outcome.done:
            break
    return outcome


def _item_text(item: dict[str, Any]) -> str:
    text = item.get("text")
    return text.strip() if isinstance(text, str) else ""


def _item_type(item: dict[str, Any]) -> str:
    raw = item.get("type", item.get("item_type"))
    return raw if isinstance(raw, str) else ""


def _describe_item(item: dict[str, Any]) -> str | None:
    item_type = _item_type(item)
    if item_type == "agent_message":
        return _item_text(item)
    if item_type == "reasoning":
        return f"Reasoning: {_item_text(item)}"
    if item_type == "command_execution":
        command = item.get("command", "")
        exit_code = item.get("exit_code")
        status = item.get("status", "")
        suffix = f" (exit: {exit_code})" if exit_code is not None else ""
        return f"[{status}] $ {command}{suffix}" if status else f"$ {command}{suffix}"
    if item_type == "file_change":
        changes = item.get("changes")
        count = len(changes) if isinstance(changes, list) else 0
        return f"File changes: {count} change(s)"
    if item_type == "mcp_tool_call":
        return f"MCP tool '{item.get('tool', '')}' on server '{item.get('server', '')}'"
    if item_type == "web_search":
        return f"Web search: {item.get('query', '')}"
    if item_type == "todo_list":
        items = item.get("items")
        count = len(items) if isinstance(items, list) else 0
        return f"Todo list updated ({count} item(s))"
    if item_type == "error":
        message = item.get("message", "")
        return f"Warning: {message}"
    return None


def parse_engine_event(payload: dict[str, Any]) -> Event | None:
    """Map one `exec --json` record to an Event.

    Returns None for records that carry nothing the runner acts on.
    """

    event_type = payload.get("type")
    if event_type == "thread.started":
        return Event.output(f"Thread started: {payload.get('thread_id', '')}")
    if event_type == "turn.started":
        return Event.output("Turn started")
    if event_type == "turn.completed":
        usage_raw = payload.get("usage")
        usage = TurnUsage.from_json(usage_raw) if isinstance(usage_raw, dict) else TurnUsage()
        return Event.output(
            "Turn completed (tokens: "
            f"in={usage.input_tokens}, cached={usage.cached_input_tokens}, "
            f"out={usage.output_tokens})",
            usage=usage,
        )
    if event_type == "turn.failed":
        error = payload.get("error")
        message = error.get("message") if isinstance(error, dict) else None
        return Event.error(message or "turn failed")
    if event_type == "error":
        return Event.error(str(payload.get("message") or "stream error"))
    if event_type in {"item.started", "item.updated", "item.completed"}:
        item = payload.get("item")
        if not isinstance(item, dict):
            return None
        if event_type == "item.completed" and _item_type(item) == "agent_message":
            return Event.final_message(_item_text(item))
        description = _describe_item(item)
        if description is None or event_type == "item.updated":
            # Updates repeat aggregated output; only their completion is shown.
            return None
        return Event.output(description)
    return None
