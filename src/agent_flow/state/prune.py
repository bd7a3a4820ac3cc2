"""Bulk removal of stale run-state files."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path

from agent_flow.errors import ConfigError, StateIOError
from agent_flow.orchestrator.config import STATE_FILE_SUFFIX

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86_400
_UNITS = ("B", "KB", "MB", "GB", "TB")


@dataclass(frozen=True, slots=True)
class PruneReport:
    """Disk usage of resume files before and after a prune."""

    total_files: int
    total_bytes: int
    removed_files: int
    reclaimed_bytes: int

    @property
    def remaining_bytes(self) -> int:
        return self.total_bytes - self.reclaimed_bytes


def format_bytes(size: int) -> str:
    if size == 0:
        return "0 B"
    value = float(size)
    unit = 0
    while value >= 1024.0 and unit < len(_UNITS) - 1:
        value /= 1024.0
        unit += 1
    if unit == 0:
        return f"{size} B"
    return f"{value:.2f} {_UNITS[unit]}"


def prune_state(state_root: Path, days: int, *, now: float | None = None) -> PruneReport:
    """Delete resume files whose modification time is older than `days` days.

    Other files under the state root are left untouched.

    Raises:
        ConfigError: If `days` is not positive.
        StateIOError: If a stale file cannot be removed.
    """
    if days <= 0:
        raise ConfigError("--days must be greater than 0")

    cutoff = (time.time() if now is None else now) - days * SECONDS_PER_DAY
    total_files = total_bytes = removed_files = reclaimed_bytes = 0

    if state_root.exists():
        for path in sorted(state_root.rglob(f"*{STATE_FILE_SUFFIX}")):
            if not path.is_file():
                continue
            stat = path.stat()
            total_files += 1
            total_bytes += stat.st_size
            if stat.st_mtime >= cutoff:
                continue
            try:
                path.unlink()
            except OSError as e:
                raise StateIOError(f"failed to remove {path}: {e}") from e
            removed_files += 1
            reclaimed_bytes += stat.st_size
            logger.debug("Pruned state file", extra={"path": str(path)})

    report = PruneReport(
        total_files=total_files,
        total_bytes=total_bytes,
        removed_files=removed_files,
        reclaimed_bytes=reclaimed_bytes,
    )
    logger.info(
        "State pruned",
        extra={
            "state_root": str(state_root),
            "days": days,
            "removed_files": removed_files,
            "reclaimed_bytes": reclaimed_bytes,
        },
    )
    return report
