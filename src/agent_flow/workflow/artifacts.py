"""Deterministic per-step artifact paths.

Names are derived from the 1-based step index and a slug of the agent id, so a
later mock run finds the event log captured by an earlier real run.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from agent_flow.orchestrator.config import FlowSettings


def sanitize_label(label: str) -> str:
    """Lowercase ASCII slug; separators collapse to a single dash."""

    slug: list[str] = []
    last_was_dash = False
    for ch in label:
        if ch.isascii() and ch.isalnum():
            slug.append(ch.lower())
            last_was_dash = False
        elif (ch.isspace() or ch in "-_./") and not last_was_dash and slug:
            slug.append("-")
            last_was_dash = True
    trimmed = "".join(slug).strip("-")
    return trimmed or "step"


def step_id_for(index: int, agent_id: str) -> str:
    return f"step-{index + 1}-{sanitize_label(agent_id)}"


@dataclass(frozen=True, slots=True)
class StepPaths:
    debug_log: Path
    human_log: Path
    result: Path

    def ensure_dirs(self) -> None:
        for path in (self.debug_log, self.human_log, self.result):
            path.parent.mkdir(parents=True, exist_ok=True)


def step_paths(settings: FlowSettings, index: int, agent_id: str) -> StepPaths:
    stem = f"{index + 1:02d}-{sanitize_label(agent_id)}-agent"
    return StepPaths(
        debug_log=settings.debug_dir / f"{stem}.json",
        human_log=settings.logs_dir / f"{stem}.log",
        result=settings.memory_dir / f"{stem}-result.md",
    )


def render_template(template: str, variables: dict[str, str]) -> str:
    """Substitute `{{ name }}` placeholders; unknown names are left verbatim."""

    out: list[str] = []
    i = 0
    while i < len(template):
        if template.startswith("{{", i):
            end = template.find("}}", i + 2)
            if end != -1:
                key = template[i + 2 : end].strip()
                if key in variables:
                    out.append(variables[key])
                else:
                    out.append(template[i : end + 2])
                i = end + 2
                continue
        out.append(template[i])
        i += 1
    return "".join(out)
