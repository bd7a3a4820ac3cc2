"""Abstract base class for engine adapters."""

from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass

from agent_flow.core.resolver import ResolvedStep
from agent_flow.workflow.artifacts import StepPaths
from agent_flow.workflow.events import Event


@dataclass(frozen=True, slots=True)
class StepInput:
    """Everything an adapter needs about the step beyond its resolved settings."""

    index: int
    label: str
    prompt: str
    paths: StepPaths


class EngineAdapter(ABC):
    """Abstract base class for engine adapters.

    This interface allows pluggable step executors (mock replay, real engine
    process). One adapter is selected per session and used for every step.
    """

    name: str = "engine"

    def check_ready(self, resolved: ResolvedStep, step_input: StepInput) -> None:
        """Fail before any step starts if this step cannot be executed.

        Args:
            resolved: Effective step settings.
            step_input: Prompt and artifact paths for the step.

        Raises:
            FlowError: If the step can never succeed with this adapter.
        """
        return None

    @abstractmethod
    def invoke(self, resolved: ResolvedStep, step_input: StepInput) -> Iterator[Event]:
        """Execute one step.

        The returned iterator is lazy and ordered and always ends with a
        `done` event when it is exhausted normally. Closing it early releases
        any engine resources.

        Args:
            resolved: Effective step settings.
            step_input: Prompt and artifact paths for the step.

        Returns:
            The step's event stream.
        """
        pass

    def cancel(self) -> None:
        """Ask the in-flight step to stop; returns once it has (or the timeout expired)."""
        return None
