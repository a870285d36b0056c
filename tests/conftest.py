"""
Shared fakes for the swarm tests: a scripted GenerationClient and a payment
gateway whose transfers always fail. No network access anywhere.
"""
from __future__ import annotations

import asyncio
import random
from typing import Callable, Optional, Union

import pytest

from tenderswarm.agent import Thinker
from tenderswarm.api_clients import (
    GenerationClient, ImageResult, StructuredResult, TextRequest, TextResult, Usage,
)
from tenderswarm.assembler import AssemblyStructure, Section
from tenderswarm.config import RunConfig, Settings
from tenderswarm.cost import CostTracker
from tenderswarm.decomposer import ProposedTask, TaskBreakdown
from tenderswarm.errors import GenerationError, PaymentError
from tenderswarm.evaluator import EvaluationVerdict
from tenderswarm.models import GeneratedDeliverable, MessageType, SwarmSummary, TaskCategory
from tenderswarm.payments import BalanceCheck, PaymentGateway, TransferResult
from tenderswarm.streaming import MessageEvent
from tenderswarm.tiers import TIER_CONFIGS

USER = "0x1111111111111111111111111111111111111111"

DELIVERABLE = """# Deliverable

## Findings
- Point one with detail
- Point two with detail

## Recommendations
- Do the first thing
""" + ("Supporting analysis paragraph. " * 40)


def default_breakdown() -> TaskBreakdown:
    return TaskBreakdown(tasks=[
        ProposedTask(description="Research the specialty coffee market", reward=0.3,
                     category=TaskCategory.RESEARCH),
        ProposedTask(description="Define the go-to-market strategy", reward=0.3,
                     category=TaskCategory.STRATEGY),
        ProposedTask(description="Write launch copy and taglines", reward=0.3,
                     category=TaskCategory.COPYWRITING),
    ])


DEFAULT_STRUCTURED = {
    TaskBreakdown: default_breakdown,
    EvaluationVerdict: lambda: EvaluationVerdict(accept=True, score=85,
                                                 reasoning="Complete and specific"),
    AssemblyStructure: lambda: AssemblyStructure(
        sections=[Section(title="Research", description="Market findings"),
                  Section(title="Strategy", description="Plan")],
        executive_summary_points=["Market is growing", "Launch in Q3"],
    ),
}


class FakeClient(GenerationClient):
    """
    Scripted client. Text calls report the full max_output_tokens as
    completion usage, so spend is the worst case the pre-flight allowed.
    """

    def __init__(self, text: Union[str, Callable[[TextRequest], str]] = DELIVERABLE,
                 structured: Optional[dict] = None, fail_text: bool = False,
                 fail_structured: bool = False, image: Optional[ImageResult] = None) -> None:
        self.text = text
        self.structured = {**DEFAULT_STRUCTURED, **(structured or {})}
        self.fail_text = fail_text
        self.fail_structured = fail_structured
        self.image = image
        self.calls: list[tuple[str, TextRequest]] = []
        self.image_calls: list[str] = []

    async def generate_text(self, request: TextRequest) -> TextResult:
        self.calls.append(("text", request))
        if self.fail_text:
            raise GenerationError("provider unavailable")
        text = self.text(request) if callable(self.text) else self.text
        return TextResult(text=text, usage=Usage(
            prompt_tokens=len(request.prompt) // 4,
            completion_tokens=request.max_output_tokens,
        ))

    async def generate_structured(self, request: TextRequest, schema) -> StructuredResult:
        self.calls.append(("structured", request))
        if self.fail_structured:
            raise GenerationError("structured output unavailable")
        return StructuredResult(object=self.structured[schema](),
                                usage=Usage(prompt_tokens=100, completion_tokens=200))

    async def generate_image(self, prompt: str, model: str = "") -> Optional[ImageResult]:
        self.image_calls.append(prompt)
        return self.image

    def count(self, kind: str) -> int:
        return sum(1 for k, _ in self.calls if k == kind)


class YieldingClient(FakeClient):
    """FakeClient that gives the event loop a turn before each text reply."""

    async def generate_text(self, request: TextRequest) -> TextResult:
        await asyncio.sleep(0)
        return await super().generate_text(request)


class FailingGateway(PaymentGateway):
    async def verify_balance(self, address: str, amount: float) -> BalanceCheck:
        return BalanceCheck(has_balance=False, balance=0.0, required=amount)

    async def transfer_mnee(self, from_address: str, to_address: str,
                            amount: float) -> TransferResult:
        raise PaymentError("RPC node unreachable")

    async def get_balance(self, address: str) -> float:
        return 0.0


@pytest.fixture
def fake_client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(results_path=tmp_path / "results.db")


def make_thinker(client: GenerationClient, name: str = "Agent", budget: float = 1.0,
                 demo: bool = True, tier: str = "premium",
                 settings: Optional[Settings] = None, cancel_event=None) -> Thinker:
    return Thinker(
        name, f"You are the {name}.", client, CostTracker(budget),
        RunConfig.build(TIER_CONFIGS[tier], demo=demo, settings=settings),
        cancel_event=cancel_event,
    )


def make_deliverable(task, content: str = DELIVERABLE, provider: str = "0xprovider",
                     provider_name: str = "Grok Research Assistant") -> GeneratedDeliverable:
    return GeneratedDeliverable(
        task_id=task.id,
        task_description=task.description,
        category=task.category,
        provider=provider,
        provider_name=provider_name,
        content=content,
        tokens_used=len(content) // 4,
    )


class EventSink:
    """Awaitable emit target that records every event."""

    def __init__(self) -> None:
        self.events: list = []

    async def __call__(self, event) -> None:
        self.events.append(event)

    def of(self, cls) -> list:
        return [e for e in self.events if isinstance(e, cls)]

    def messages(self, type: Optional[MessageType] = None) -> list:
        return [e.message for e in self.of(MessageEvent)
                if type is None or e.message.type is type]


def make_summary(**overrides) -> SwarmSummary:
    fields = dict(
        run_id="swarm-1", total_tasks=3, completed_tasks=2, failed_tasks=1, rejected_tasks=0,
        total_spent=0.0123, original_budget=1.0, refund_amount=0.9877, tier="premium",
        cost_breakdown={"aiCosts": 0.01206, "platformFee": 0.00024, "totalSpent": 0.0123},
        providers_used=2, execution_time=4.2, final_deliverable="# Final\n\nDone.",
    )
    fields.update(overrides)
    return SwarmSummary(**fields)
