"""Per-step usage deltas and run-level totals.

Not thread-safe: only the runner's execution loop records into it.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from agent_flow.state.models import TokenUsage
from agent_flow.workflow.events import TurnUsage

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ModelPricing:
    """USD per token for prompt and completion tokens."""

    prompt_per_token: float
    completion_per_token: float

    @staticmethod
    def for_model(model: str) -> ModelPricing:
        slug = model.lower()
        if slug.startswith("gpt-4o"):
            # $5 / $15 per 1M tokens.
            return ModelPricing(0.000_005, 0.000_015)
        if slug.startswith("o4-mini"):
            # $2.5 / $10 per 1M tokens.
            return ModelPricing(0.000_002_5, 0.000_010)
        if slug.startswith("o3"):
            return ModelPricing(0.000_015, 0.000_060)
        if slug.startswith("gpt-4.1"):
            return ModelPricing(0.000_030, 0.000_060)
        if slug.startswith("gpt-5") or slug.startswith("codex-"):
            return ModelPricing(0.000_030, 0.000_060)
        if slug.startswith("gpt-3.5"):
            # $0.50 / $1.50 per 1M tokens.
            return ModelPricing(0.000_000_5, 0.000_001_5)
        return ModelPricing(0.0, 0.0)

    def cost(self, prompt_tokens: int, completion_tokens: int) -> float:
        return prompt_tokens * self.prompt_per_token + completion_tokens * self.completion_per_token


def usage_from_turns(model: str, turns: Iterable[TurnUsage]) -> TokenUsage | None:
    """Convert raw turn counts into a priced delta. None when no turn reported usage.

    Cached input tokens count as prompt tokens.
    """

    pricing = ModelPricing.for_model(model)
    prompt = completion = 0
    cost = 0.0
    seen = False
    for turn in turns:
        turn_prompt = turn.input_tokens + turn.cached_input_tokens
        prompt += turn_prompt
        completion += turn.output_tokens
        cost += pricing.cost(turn_prompt, turn.output_tokens)
        seen = True
    if not seen:
        return None
    return TokenUsage(prompt_tokens=prompt, completion_tokens=completion, estimated_cost=cost)


class TokenLedger:
    """Run-level token accounting.

    Each step contributes the delta of its most recent successful execution, so
    the total always equals the sum of the persisted step deltas.
    """

    def __init__(self) -> None:
        self._deltas: dict[str, TokenUsage] = {}

    @classmethod
    def from_deltas(cls, deltas: Iterable[tuple[str, TokenUsage | None]]) -> TokenLedger:
        ledger = cls()
        for step_id, delta in deltas:
            if delta is not None:
                ledger.record(step_id, delta)
        return ledger

    def record(self, step_id: str, delta: TokenUsage) -> None:
        if step_id in self._deltas:
            logger.debug("Replacing token delta", extra={"step_id": step_id})
        self._deltas[step_id] = delta

    def delta(self, step_id: str) -> TokenUsage | None:
        return self._deltas.get(step_id)

    def totals(self) -> TokenUsage:
        total = TokenUsage()
        for delta in self._deltas.values():
            total = total + delta
        return total
