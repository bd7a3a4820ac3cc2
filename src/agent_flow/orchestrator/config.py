"""Process configuration for the workflow runner.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

Workflow definitions (agents, steps, prompts) are separate TOML documents; see
`agent_flow.core.config`.
"""

from __future__ import annotations

import re
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from agent_flow.errors import ConfigError

RESUME_DISABLED_ENV = "AGENT_FLOW_RESUME_DISABLED"
STATE_FILE_SUFFIX = ".resume.json"

_IDENTIFIER_RE = re.compile(r"[A-Za-z0-9._-]{1,64}")
_FALSY = {"0", "false", "off", "no"}


def parse_truthy(value: str) -> bool:
    """Interpret a kill-switch value.

    An empty value counts as set; only explicit negatives turn it off.
    """

    trimmed = value.strip()
    if not trimmed:
        return True
    return trimmed.lower() not in _FALSY


def validate_identifier(value: str, *, kind: str = "run-id") -> str:
    """Reject identifiers that are unsafe to use as a path component."""

    if not value:
        raise ConfigError(f"{kind} must not be empty")
    if len(value) > 64:
        raise ConfigError(f"{kind} must be at most 64 characters")
    if not _IDENTIFIER_RE.fullmatch(value) or value in {".", ".."}:
        raise ConfigError(f"{kind} may only contain alphanumeric characters, '-', '_', or '.'")
    return value


class FlowSettings(BaseSettings):
    """Settings for the local workflow runner.

    Environment variables:
    - LOG_LEVEL                        (optional)
    - AGENT_FLOW_RUNTIME_DIR           (optional)
    - AGENT_FLOW_RESUME_DISABLED       (kill switch for state writes and resume)
    - AGENT_FLOW_MOCK_INTERVAL         (seconds between replayed events)
    - AGENT_FLOW_STATE_WRITE_ATTEMPTS  (optional)
    - AGENT_FLOW_STATE_WRITE_BACKOFF   (optional)
    - AGENT_FLOW_CANCEL_TIMEOUT        (optional)
    - AGENT_FLOW_CODEX_BIN             (optional)

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `FlowSettings(_env_file=path_to_env)`.
    """

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    runtime_dir: Path = Field(
        default=Path(".agent-flow") / "runtime",
        validation_alias="AGENT_FLOW_RUNTIME_DIR",
        description="Directory holding run state and per-step artifacts",
    )

    resume_disabled: bool = Field(
        default=False,
        validation_alias=RESUME_DISABLED_ENV,
        description=(
            "Emergency kill switch. When set, no state is read or written and "
            "resume fails fast."
        ),
    )

    mock_event_interval_seconds: float = Field(
        default=1.0,
        ge=0.0,
        validation_alias="AGENT_FLOW_MOCK_INTERVAL",
        description="Minimum delay between replayed events in mock mode",
    )

    state_write_attempts: int = Field(
        default=3,
        ge=1,
        validation_alias="AGENT_FLOW_STATE_WRITE_ATTEMPTS",
        description="Attempts made to persist state before giving up",
    )

    state_write_backoff_seconds: float = Field(
        default=0.1,
        ge=0.0,
        validation_alias="AGENT_FLOW_STATE_WRITE_BACKOFF",
        description="Base delay between state write attempts (grows linearly)",
    )

    cancel_timeout_seconds: float = Field(
        default=5.0,
        gt=0.0,
        validation_alias="AGENT_FLOW_CANCEL_TIMEOUT",
        description="How long to wait for the engine process to exit after cancellation",
    )

    codex_bin: str = Field(
        default="codex",
        validation_alias="AGENT_FLOW_CODEX_BIN",
        description="Engine binary used when the workflow file does not name one",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("resume_disabled", mode="before")
    @classmethod
    def _parse_kill_switch(cls, value: object) -> object:
        if isinstance(value, str):
            return parse_truthy(value)
        return value

    @property
    def state_root(self) -> Path:
        """Directory holding one sub-directory of resume files per workflow."""

        return self.runtime_dir / "state"

    @property
    def debug_dir(self) -> Path:
        """Raw engine event logs (also the mock replay source)."""

        return self.runtime_dir / "debug"

    @property
    def logs_dir(self) -> Path:
        return self.runtime_dir / "logs"

    @property
    def memory_dir(self) -> Path:
        """Distilled per-step result artifacts."""

        return self.runtime_dir / "memory"

    def state_file(self, workflow_id: str, run_id: str) -> Path:
        """Path where the resume state for one run is persisted."""

        validate_identifier(workflow_id, kind="workflow name")
        validate_identifier(run_id)
        return self.state_root / workflow_id / f"{run_id}{STATE_FILE_SUFFIX}"

    def ensure_runtime_tree(self, *, include_state: bool = True) -> Path:
        directories = [self.debug_dir, self.logs_dir, self.memory_dir]
        if include_state:
            directories.append(self.state_root)
        for directory in directories:
            directory.mkdir(parents=True, exist_ok=True)
        return self.runtime_dir
