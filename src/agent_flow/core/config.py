"""Workflow definition models.

A workflow file is a TOML document describing agents, engines and the ordered
steps to run. These models only validate shape; value-level checks such as
enumerations happen in the resolver.
"""

import logging
import tomllib
from pathlib import Path

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from agent_flow.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_WORKFLOW_NAME = "main"


class DefaultsConfig(BaseModel):
    """Workflow-wide defaults, the lowest precedence tier."""

    engine: str | None = Field(default=None, description="Default engine for every step")
    model: str | None = Field(default=None, description="Default model for every step")
    prompt: str | None = Field(default=None, description="Default prompt file")
    reasoning_effort: str | None = Field(default=None)
    reasoning_summary: str | None = Field(default=None)
    mock: bool | None = Field(
        default=None,
        description="Run in mock mode when no --mock/--no-mock flag is given",
    )

    model_config = ConfigDict(extra="ignore")


class EngineDetail(BaseModel):
    """How to launch an engine binary."""

    bin: str | None = Field(default=None, description="Engine executable")
    args: list[str] = Field(
        default_factory=list,
        description="Preset arguments placed before generated ones",
    )

    model_config = ConfigDict(extra="ignore")


class EnginesConfig(BaseModel):
    codex: EngineDetail | None = None

    model_config = ConfigDict(extra="ignore")


class AgentConfig(BaseModel):
    """Agent tier: reusable engine/model/prompt bundle referenced by steps."""

    engine: str | None = None
    model: str | None = None
    profile: str | None = None
    prompt: str | None = None
    reasoning_effort: str | None = None
    reasoning_summary: str | None = None

    model_config = ConfigDict(extra="ignore")


class StepConfig(BaseModel):
    """A single workflow step with optional per-step overrides."""

    agent: str = Field(
        validation_alias=AliasChoices("agent", "use"),
        description="Agent id this step runs",
    )
    description: str | None = None
    engine: str | None = None
    model: str | None = None
    prompt: str | None = None
    reasoning_effort: str | None = None
    reasoning_summary: str | None = None

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @property
    def label(self) -> str:
        """Human label: the description when present, else the agent id."""

        if self.description and self.description.strip():
            return self.description.strip()
        return self.agent


class WorkflowTable(BaseModel):
    description: str | None = None
    steps: list[StepConfig] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")


class WorkflowFile(BaseModel):
    """A parsed workflow TOML document.

    Two layouts are accepted: a single `[workflow]` table, or a
    `[workflows.<name>]` table holding several workflows.
    """

    name: str | None = None
    version: str | None = None
    defaults: DefaultsConfig = Field(default_factory=DefaultsConfig)
    engines: EnginesConfig = Field(default_factory=EnginesConfig)
    agents: dict[str, AgentConfig] = Field(default_factory=dict)
    workflow: WorkflowTable | None = None
    workflows: dict[str, WorkflowTable] = Field(default_factory=dict)
    vars: dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(extra="ignore")


class WorkflowDefinition(BaseModel):
    """The single workflow selected for execution, with everything it references."""

    name: str
    table: WorkflowTable
    defaults: DefaultsConfig = Field(default_factory=DefaultsConfig)
    engines: EnginesConfig = Field(default_factory=EnginesConfig)
    agents: dict[str, AgentConfig] = Field(default_factory=dict)
    vars: dict[str, str] = Field(default_factory=dict)
    base_dir: Path = Field(default=Path("."))

    @property
    def steps(self) -> list[StepConfig]:
        return self.table.steps

    def with_vars(self, overrides: dict[str, str]) -> "WorkflowDefinition":
        """Return a copy whose vars are overlaid with `overrides`."""

        if not overrides:
            return self
        return self.model_copy(update={"vars": {**self.vars, **overrides}})


def load_workflow(path: Path, name: str | None = None) -> WorkflowDefinition:
    """Load and select a workflow from a TOML file.

    Args:
        path: Workflow TOML file.
        name: Workflow to select from a multi-workflow file. Defaults to the
            file's `name`, then the first declared workflow.

    Returns:
        The selected workflow definition.

    Raises:
        ConfigError: If the file cannot be read, parsed or validated, or the
            requested workflow does not exist.
    """
    try:
        raw = tomllib.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"failed to read workflow file {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"failed to parse TOML at {path}: {e}") from e

    try:
        document = WorkflowFile.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"invalid workflow file {path}: {e}") from e

    if document.workflow is not None:
        selected_name = name or document.name or DEFAULT_WORKFLOW_NAME
        table = document.workflow
    elif document.workflows:
        wanted = name or document.name
        if wanted is not None and wanted in document.workflows:
            selected_name = wanted
        elif name is not None:
            raise ConfigError(f"workflow `{name}` not found in {path}")
        else:
            selected_name = next(iter(document.workflows))
        table = document.workflows[selected_name]
    else:
        raise ConfigError(f"no [workflow] or [workflows.*] table in {path}")

    logger.debug(
        "Workflow loaded",
        extra={"path": str(path), "workflow": selected_name, "steps": len(table.steps)},
    )
    return WorkflowDefinition(
        name=selected_name,
        table=table,
        defaults=document.defaults,
        engines=document.engines,
        agents=document.agents,
        vars=document.vars,
        base_dir=path.resolve().parent,
    )
