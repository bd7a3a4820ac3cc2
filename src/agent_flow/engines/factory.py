"""Factory for creating engine adapters."""

import logging
import time
from collections.abc import Callable

from agent_flow.core.config import EnginesConfig
from agent_flow.engines.adapter import EngineAdapter
from agent_flow.engines.codex_adapter import CodexAdapter
from agent_flow.engines.mock_adapter import MockAdapter
from agent_flow.orchestrator.config import FlowSettings
from agent_flow.state.models import RunMode

logger = logging.getLogger(__name__)


class AdapterFactory:
    """Factory for creating engine adapter instances."""

    @staticmethod
    def create(
        mode: RunMode,
        settings: FlowSettings,
        engines: EnginesConfig,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> EngineAdapter:
        """Create the adapter used for every step of a session.

        Args:
            mode: Mock replay or real engine execution.
            settings: Runtime settings (replay interval, engine binary, timeouts).
            engines: Engine launch settings from the workflow file.
            sleep: Delay function for mock replay.

        Returns:
            Configured engine adapter.

        Raises:
            ValueError: If the mode is not supported.
        """
        logger.info("Creating engine adapter", extra={"mode": mode.value})

        if mode is RunMode.MOCK:
            return MockAdapter(settings.mock_event_interval_seconds, sleep=sleep)
        elif mode is RunMode.REAL:
            return CodexAdapter(
                engines.codex,
                default_bin=settings.codex_bin,
                cancel_timeout_seconds=settings.cancel_timeout_seconds,
            )
        else:
            raise ValueError(f"Unsupported run mode: {mode}")
