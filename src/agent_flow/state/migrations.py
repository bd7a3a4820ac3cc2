"""Schema migrations for persisted run state.

Each migration upgrades a raw JSON document by exactly one version, in place.
`upgrade` applies them in order until the document reaches the current
version. Documents without `schema_version` are version 1.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from typing import Any

from agent_flow.errors import StateCorrupt
from agent_flow.state.models import WORKFLOW_STATE_SCHEMA_VERSION

logger = logging.getLogger(__name__)

Document = dict[str, Any]

_LEGACY_STATUS = {"interrupted": "failed"}
_SLUG_RE = re.compile(r"[^a-z0-9]+")


def _usage_from(value: object, *, cost_key: str) -> dict[str, Any] | None:
    if not isinstance(value, dict):
        return None
    try:
        prompt = int(value["prompt_tokens"])
        completion = int(value["completion_tokens"])
        cost = float(value.get(cost_key, 0.0))
    except (KeyError, TypeError, ValueError):
        return None
    return {
        "prompt_tokens": prompt,
        "completion_tokens": completion,
        "total_tokens": prompt + completion,
        cost_key: cost,
    }


def migrate_v1_to_v2(doc: Document) -> None:
    """Add a run-level `token_usage` folded from per-step deltas."""

    total = {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0, "total_cost": 0.0}
    saw_usage = False
    steps = doc.get("steps")
    for step in steps if isinstance(steps, list) else []:
        if not isinstance(step, dict):
            continue
        delta = _usage_from(step.get("token_delta"), cost_key="total_cost")
        if delta is None:
            continue
        for key in total:
            total[key] += delta[key]
        saw_usage = True
    doc["token_usage"] = total if saw_usage else None


def migrate_v2_to_v3(doc: Document) -> None:
    """Rename fields to the current vocabulary and add step bookkeeping.

    v2 steps were only written once a step finished, so every recorded step had
    at least one attempt.
    """

    if "workflow_name" in doc:
        doc.setdefault("workflow_id", doc.pop("workflow_name"))

    steps = doc.get("steps")
    upgraded: list[dict[str, Any]] = []
    for step in steps if isinstance(steps, list) else []:
        if not isinstance(step, dict):
            raise StateCorrupt(f"step entry is not an object: {step!r}")
        index = int(step.get("index", len(upgraded)))
        status = str(step.get("status", "pending"))
        memory_ref = step.pop("memory_path", None)
        debug_log_ref = step.pop("debug_log", None)
        upgraded.append(
            {
                "index": index,
                "step_id": step.get("step_id") or _legacy_step_id(index, memory_ref),
                "status": _LEGACY_STATUS.get(status, status),
                "attempts": int(step.get("attempts", 1)),
                "needs_real": bool(step.get("needs_real", False)),
                "token_delta": _rename_cost(step.get("token_delta")),
                "debug_log_ref": debug_log_ref,
                "memory_ref": memory_ref,
            }
        )
    upgraded.sort(key=lambda s: s["index"])
    doc["steps"] = upgraded

    usage = _rename_cost(doc.get("token_usage"))
    doc["token_usage"] = usage if usage is not None else {
        "prompt_tokens": 0,
        "completion_tokens": 0,
        "total_tokens": 0,
        "estimated_cost": 0.0,
    }
    doc.setdefault("status", "running")


def _rename_cost(value: object) -> dict[str, Any] | None:
    if isinstance(value, dict) and "total_cost" in value:
        value = {**value, "estimated_cost": value["total_cost"]}
        value.pop("total_cost")
    return _usage_from(value, cost_key="estimated_cost")


def _legacy_step_id(index: int, memory_ref: object) -> str:
    # v2 artifacts were named "<NN>-<slug>-agent..."; recover the slug when possible.
    if isinstance(memory_ref, str):
        stem = memory_ref.replace("\\", "/").rsplit("/", 1)[-1]
        parts = stem.split("-", 1)
        if len(parts) == 2 and parts[0].isdigit():
            slug = parts[1].removesuffix("-result.md").removesuffix(".json").removesuffix("-agent")
            slug = _SLUG_RE.sub("-", slug.lower()).strip("-")
            if slug:
                return f"step-{index + 1}-{slug}"
    return f"step-{index + 1}"


MIGRATIONS: dict[int, Callable[[Document], None]] = {
    1: migrate_v1_to_v2,
    2: migrate_v2_to_v3,
}


def upgrade(raw: str) -> tuple[Document, bool]:
    """Parse a state document and bring it to the current schema version.

    Returns:
        The upgraded document and whether any migration ran.

    Raises:
        StateCorrupt: If the text is not a JSON object, the version is newer
            than supported, or a migration cannot be applied.
    """
    try:
        doc = json.loads(raw)
    except json.JSONDecodeError as e:
        raise StateCorrupt(f"state is not valid JSON: {e}") from e
    if not isinstance(doc, dict):
        raise StateCorrupt("state document is not a JSON object")

    version_raw = doc.get("schema_version", 1)
    if not isinstance(version_raw, int) or isinstance(version_raw, bool) or version_raw < 1:
        raise StateCorrupt(f"invalid schema_version: {version_raw!r}")
    version = version_raw
    if version > WORKFLOW_STATE_SCHEMA_VERSION:
        raise StateCorrupt(
            f"workflow state schema version {version} is newer than supported "
            f"{WORKFLOW_STATE_SCHEMA_VERSION}"
        )

    migrated = False
    while version < WORKFLOW_STATE_SCHEMA_VERSION:
        migration = MIGRATIONS.get(version)
        if migration is None:
            raise StateCorrupt(f"no migration path for workflow state schema version {version}")
        try:
            migration(doc)
        except StateCorrupt:
            raise
        except (TypeError, ValueError, AttributeError) as e:
            raise StateCorrupt(f"migration from schema version {version} failed: {e}") from e
        logger.info(
            "Migrated workflow state",
            extra={"from_version": version, "to_version": version + 1},
        )
        version += 1
        migrated = True

    doc["schema_version"] = WORKFLOW_STATE_SCHEMA_VERSION
    return doc, migrated
