"""Agent Flow.

A lightweight, resumable runner for sequential agent workflows:
- steps resolved from a TOML workflow file
- mock replay of captured engine events, or the real engine process
- crash-safe run state with schema migrations
- per-step token accounting
"""

__version__ = "0.1.0"

from agent_flow.orchestrator.config import FlowSettings

__all__ = ["__version__", "FlowSettings"]
