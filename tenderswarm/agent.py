"""
Thinker — the budget-aware generation capability every stage composes.

Each call:
  1. applies the run's token caps,
  2. pre-flight checks affordability (BudgetExceededError on failure),
  3. calls the generation client,
  4. records real usage (len/4 estimate where the provider omits it),
  5. updates the stage's work metrics.

Any collaborator failure surfaces as GenerationError; budget failures stay
BudgetExceededError so callers can tell the two apart.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Optional, Protocol, TypeVar

from pydantic import BaseModel

from .api_clients import GenerationClient, TextRequest, Usage
from .config import RunConfig
from .cost import CostTracker
from .errors import (
    BudgetExceededError, GenerationError, StructuredOutputError, SwarmCancelledError, SwarmError,
)
from .models import AgentMessage, AgentWorkMetrics, MessageType, estimate_tokens, new_id
from .tracing import traced_llm_call

logger = logging.getLogger("tenderswarm.agent")

TSchema = TypeVar("TSchema", bound=BaseModel)


class CancelSignal(Protocol):
    def is_set(self) -> bool: ...


@dataclass(frozen=True)
class ThinkResult:
    text: str
    tokens_used: int


class Thinker:
    """A named agent identity bound to one run's client, ledger and RunConfig."""

    def __init__(self, name: str, system_prompt: str, client: GenerationClient,
                 cost_tracker: CostTracker, run_config: RunConfig,
                 cancel_event: Optional[CancelSignal] = None) -> None:
        self.name = name
        self.system_prompt = system_prompt
        self.client = client
        self.cost_tracker = cost_tracker
        self.run_config = run_config
        self.cancel_event = cancel_event
        self.metrics = AgentWorkMetrics()

    def reset_metrics(self) -> None:
        self.metrics = AgentWorkMetrics()

    def message(self, text: str, type: MessageType = MessageType.INFO,
                metadata: Optional[dict[str, Any]] = None) -> AgentMessage:
        slug = self.name.lower().replace(" ", "-")
        return AgentMessage(
            id=new_id(slug),
            agent=self.name,
            message=text,
            type=type,
            metadata=dict(metadata or {}),
        )

    def ensure_active(self) -> None:
        """Raise SwarmCancelledError once the run's cancel signal is set."""
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise SwarmCancelledError("Run cancelled")

    def _preflight(self, model: str, prompt: str, max_tokens: int, kind: str) -> None:
        self.ensure_active()
        est_in = math.ceil(len(prompt) / 4)
        if self.cost_tracker.can_afford_operation(model, est_in, max_tokens):
            return
        estimate = self.cost_tracker.estimate_operation_cost(model, est_in, max_tokens)
        raise BudgetExceededError(
            f"Insufficient budget for {self.name} {kind} operation",
            estimated_cost=estimate,
            current_spend=self.cost_tracker.get_total_spent(),
            limit=self.cost_tracker.effective_limit,
        )

    def _record(self, model: str, usage: Usage, input_fallback: int,
                output_fallback: int, description: str) -> int:
        input_tokens = usage.prompt_tokens or input_fallback
        output_tokens = usage.completion_tokens or output_fallback
        tokens_used = usage.total_tokens or input_tokens + output_tokens
        self.metrics.tokens_used += tokens_used
        self.metrics.ai_calls += 1
        self.cost_tracker.track_model_usage(
            self.name, model, input_tokens, output_tokens, description,
        )
        return tokens_used

    async def think(self, prompt: str, max_tokens: int = 2000,
                    model: Optional[str] = None, temperature: float = 0.7,
                    system_prompt: Optional[str] = None,
                    description: Optional[str] = None,
                    capped: bool = True) -> ThinkResult:
        """capped=False skips the demo think cap for callers that size their own ceiling."""
        model = model or self.run_config.agent_model.value
        if capped:
            max_tokens = self.run_config.cap_think(max_tokens)
        self._preflight(model, prompt, max_tokens, "think")

        request = TextRequest(
            model=model,
            system_prompt=system_prompt or self.system_prompt,
            prompt=prompt,
            max_output_tokens=max_tokens,
            temperature=temperature,
        )
        with traced_llm_call(self.name, model, "text"):
            try:
                result = await self.client.generate_text(request)
            except SwarmError:
                raise
            except Exception as e:
                raise GenerationError(f"{self.name}: generation failed: {e}") from e

        tokens = self._record(
            model, result.usage, estimate_tokens(prompt), estimate_tokens(result.text),
            description or f"{self.name} think operation",
        )
        return ThinkResult(text=result.text, tokens_used=tokens)

    async def think_structured(self, prompt: str, schema: type[TSchema],
                               max_tokens: Optional[int] = None) -> TSchema:
        model = self.run_config.agent_model.value
        limit = self.run_config.structured_tokens
        max_tokens = min(max_tokens, limit) if max_tokens else limit
        self._preflight(model, prompt, max_tokens, "structured")

        request = TextRequest(
            model=model,
            system_prompt=self.system_prompt,
            prompt=prompt,
            max_output_tokens=max_tokens,
            temperature=0.5,
        )
        with traced_llm_call(self.name, model, "structured"):
            try:
                result = await self.client.generate_structured(request, schema)
            except SwarmError:
                raise
            except Exception as e:
                raise GenerationError(f"{self.name}: structured generation failed: {e}") from e

        obj = result.object
        if not isinstance(obj, schema):
            raise StructuredOutputError(
                f"{self.name}: expected {schema.__name__}, got {type(obj).__name__}"
            )
        self._record(
            model, result.usage, estimate_tokens(prompt),
            estimate_tokens(obj.model_dump_json()),
            f"{self.name} structured think operation",
        )
        return obj
