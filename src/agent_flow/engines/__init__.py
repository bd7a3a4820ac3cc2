"""Engine adapters: mock replay and the real engine process."""

from agent_flow.engines.adapter import EngineAdapter, StepInput
from agent_flow.engines.codex_adapter import CodexAdapter
from agent_flow.engines.factory import AdapterFactory
from agent_flow.engines.mock_adapter import MockAdapter

__all__ = ["AdapterFactory", "CodexAdapter", "EngineAdapter", "MockAdapter", "StepInput"]
