"""Merge per-field settings across defaults, agent and step tiers."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path

from agent_flow.core.config import WorkflowDefinition
from agent_flow.errors import ConfigError


class EngineKind(str, Enum):
    CODEX = "codex"


class ReasoningEffort(str, Enum):
    MINIMAL = "minimal"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ReasoningSummary(str, Enum):
    AUTO = "auto"
    CONCISE = "concise"
    DETAILED = "detailed"
    NONE = "none"


@dataclass(frozen=True, slots=True)
class ResolvedStep:
    """Effective settings for one step. Built fresh every run, never persisted.

    `None` reasoning fields mean "unset": adapters must not pass a flag for them.
    """

    engine: EngineKind
    model: str
    prompt_ref: str
    profile: str | None = None
    reasoning_effort: ReasoningEffort | None = None
    reasoning_summary: ReasoningSummary | None = None

    def to_json(self) -> str:
        """Canonical serialization; identical inputs give identical bytes."""

        payload = asdict(self)
        for key, value in payload.items():
            if isinstance(value, Enum):
                payload[key] = value.value
        return json.dumps(payload, sort_keys=True, ensure_ascii=False)

    def describe(self) -> str:
        parts = [f"engine={self.engine.value}", f"model={self.model}", f"prompt={self.prompt_ref}"]
        if self.profile is not None:
            parts.append(f"profile={self.profile}")
        if self.reasoning_effort is not None:
            parts.append(f"reasoning_effort={self.reasoning_effort.value}")
        if self.reasoning_summary is not None:
            parts.append(f"reasoning_summary={self.reasoning_summary.value}")
        return " ".join(parts)


def _first(*values: str | None) -> str | None:
    for value in values:
        if value is not None and value.strip():
            return value
    return None


def _enum_value(enum_cls: type[Enum], raw: str | None, *, field: str, where: str) -> Enum | None:
    if raw is None:
        return None
    try:
        return enum_cls(raw.strip().lower())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ConfigError(f"{where}: invalid {field} {raw!r} (expected one of: {allowed})") from None


def resolve(workflow: WorkflowDefinition, step_index: int) -> ResolvedStep:
    """Resolve the effective settings for one step.

    For every field the first defined value among step override, agent value
    and workflow default wins.

    Args:
        workflow: The selected workflow definition.
        step_index: Zero-based index into the workflow's steps.

    Returns:
        The resolved step.

    Raises:
        ConfigError: If the agent is unknown, a required field is missing at
            every tier, or an enumerated field has an invalid value.
    """
    if not 0 <= step_index < len(workflow.steps):
        raise ConfigError(
            f"step index {step_index} out of range for workflow `{workflow.name}` "
            f"({len(workflow.steps)} step(s))"
        )

    step = workflow.steps[step_index]
    where = f"step-{step_index + 1} ({step.label})"
    agent = workflow.agents.get(step.agent)
    if agent is None:
        raise ConfigError(f"{where}: agent not found: {step.agent}")
    defaults = workflow.defaults

    engine_raw = _first(step.engine, agent.engine, defaults.engine)
    model = _first(step.model, agent.model, defaults.model)
    prompt = _first(step.prompt, agent.prompt, defaults.prompt)

    missing = [
        name
        for name, value in (("engine", engine_raw), ("model", model), ("prompt", prompt))
        if value is None
    ]
    if missing:
        raise ConfigError(f"{where}: no value for {', '.join(missing)} at step, agent or defaults")
    assert engine_raw is not None and model is not None and prompt is not None

    engine = _enum_value(EngineKind, engine_raw, field="engine", where=where)
    effort = _enum_value(
        ReasoningEffort,
        _first(step.reasoning_effort, agent.reasoning_effort, defaults.reasoning_effort),
        field="reasoning_effort",
        where=where,
    )
    summary = _enum_value(
        ReasoningSummary,
        _first(step.reasoning_summary, agent.reasoning_summary, defaults.reasoning_summary),
        field="reasoning_summary",
        where=where,
    )

    return ResolvedStep(
        engine=EngineKind(engine),
        model=model.strip(),
        prompt_ref=_prompt_ref(workflow.base_dir, prompt.strip()),
        profile=_first(agent.profile),
        reasoning_effort=ReasoningEffort(effort) if effort is not None else None,
        reasoning_summary=ReasoningSummary(summary) if summary is not None else None,
    )


def resolve_all(workflow: WorkflowDefinition) -> list[ResolvedStep]:
    """Resolve every step up front so configuration errors surface before execution."""

    if not workflow.steps:
        raise ConfigError(f"workflow `{workflow.name}` declares no steps")
    return [resolve(workflow, index) for index in range(len(workflow.steps))]


def _prompt_ref(base_dir: Path, prompt: str) -> str:
    path = Path(prompt)
    if path.is_absolute():
        return str(path)
    return str(base_dir / path)
