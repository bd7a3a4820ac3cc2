"""Crash-safe persistence for workflow run state.

Every write goes to a temporary sibling file which is then renamed over the
target, so the file on disk is always a complete previous or new version.
Only the runner's own loop calls `save`; two processes writing the same run id
race on the rename and the store does not arbitrate between them.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import time
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

from pydantic import ValidationError

from agent_flow.errors import StateCorrupt, StateIOError
from agent_flow.orchestrator.config import FlowSettings
from agent_flow.state.migrations import upgrade
from agent_flow.state.models import WorkflowRunState, utc_now

logger = logging.getLogger(__name__)


def corrupt_backup_path(path: Path, now: datetime | None = None) -> Path:
    timestamp = (now or datetime.now(UTC)).strftime("%Y%m%dT%H%M%SZ")
    return path.with_name(f"{path.name}.corrupt-{timestamp}")


class WorkflowStateStore:
    """Load, migrate, quarantine and atomically save run-state files."""

    def __init__(
        self,
        settings: FlowSettings,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the state store.

        Args:
            settings: Runtime settings (state root and write retries).
            sleep: Used between write attempts; injectable for tests.
        """
        self.settings = settings
        self._sleep = sleep

    def path_for(self, workflow_id: str, run_id: str) -> Path:
        return self.settings.state_file(workflow_id, run_id)

    def load(self, path: Path, *, persist_migrations: bool = True) -> WorkflowRunState | None:
        """Load state from disk.

        Args:
            path: State file.
            persist_migrations: Rewrite the file after an upgrade so later loads
                skip re-migration.

        Returns:
            The loaded state, or None when the file does not exist.

        Raises:
            StateCorrupt: If the file cannot be parsed, validated or migrated.
            StateIOError: If the migrated file cannot be written back.
        """
        if not path.exists():
            return None

        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as e:
            raise StateCorrupt(f"failed to read workflow state {path}: {e}") from e

        doc, migrated = upgrade(raw)
        try:
            state = WorkflowRunState.model_validate(doc)
        except ValidationError as e:
            raise StateCorrupt(f"failed to parse workflow state {path}: {e}") from e

        logger.debug(
            "State loaded",
            extra={"path": str(path), "steps": len(state.steps), "migrated": migrated},
        )
        if migrated and persist_migrations:
            self.save(path, state)
        return state

    def load_or_init(self, workflow_id: str, run_id: str) -> WorkflowRunState:
        """Load the state for a run, starting fresh when missing or corrupt.

        A corrupt file is copied aside with a timestamped suffix (never deleted)
        and a warning is logged.
        """
        path = self.path_for(workflow_id, run_id)
        try:
            state = self.load(path)
        except StateCorrupt as e:
            backup = self.quarantine(path)
            logger.warning(
                "Workflow state corrupted; starting fresh",
                extra={"path": str(path), "backup": str(backup), "error": str(e)},
            )
            state = None

        if state is None:
            logger.info("No existing state found, starting fresh", extra={"path": str(path)})
            return WorkflowRunState.new(workflow_id, run_id)

        dirty = False
        if not state.workflow_id:
            state.workflow_id = workflow_id
            dirty = True
        if not state.run_id:
            state.run_id = run_id
            dirty = True
        if dirty:
            self.save(path, state)
        return state

    def quarantine(self, path: Path) -> Path:
        """Copy a corrupt state file aside and return the backup path."""

        backup = corrupt_backup_path(path)
        try:
            shutil.copy2(path, backup)
        except OSError as e:
            raise StateIOError(f"failed to quarantine corrupt workflow state {path}: {e}") from e
        return backup

    def save(self, path: Path, state: WorkflowRunState) -> None:
        """Persist state atomically, retrying a bounded number of times.

        Raises:
            StateIOError: If every attempt failed.
        """
        state.updated_at = utc_now()
        payload = json.dumps(state.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n"

        attempts = self.settings.state_write_attempts
        last_error: OSError | None = None
        for attempt in range(1, attempts + 1):
            try:
                self._write_atomic(path, payload)
                logger.debug("State saved", extra={"path": str(path), "attempt": attempt})
                return
            except OSError as e:
                last_error = e
                logger.warning(
                    "Failed to save state",
                    extra={"path": str(path), "attempt": attempt, "error": str(e)},
                )
                if attempt < attempts:
                    self._sleep(self.settings.state_write_backoff_seconds * attempt)

        raise StateIOError(
            f"failed to persist workflow state {path} after {attempts} attempt(s): {last_error}"
        ) from last_error

    @staticmethod
    def _write_atomic(path: Path, payload: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f"{path.name}.tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise
