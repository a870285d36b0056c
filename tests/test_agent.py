"""
Tests for Thinker: caps, pre-flight budget checks, usage recording and
cancellation.
"""
from __future__ import annotations

import asyncio

import pytest

from conftest import FakeClient
from tenderswarm.agent import Thinker
from tenderswarm.api_clients import GenerationClient, TextResult, Usage
from tenderswarm.config import RunConfig
from tenderswarm.cost import CostTracker
from tenderswarm.decomposer import TaskBreakdown
from tenderswarm.errors import (
    BudgetExceededError, GenerationError, StructuredOutputError, SwarmCancelledError,
)
from tenderswarm.evaluator import EvaluationVerdict
from tenderswarm.models import MessageType, Model
from tenderswarm.tiers import TIER_CONFIGS


def _thinker(client, budget=1.0, demo=True, tier="premium", cancel_event=None):
    return Thinker(
        "Evaluator", "You evaluate.", client, CostTracker(budget),
        RunConfig.build(TIER_CONFIGS[tier], demo=demo), cancel_event=cancel_event,
    )


class _NoUsageClient(GenerationClient):
    async def generate_text(self, request):
        return TextResult(text="x" * 400)

    async def generate_structured(self, request, schema):
        raise NotImplementedError


class _ExplodingClient(GenerationClient):
    async def generate_text(self, request):
        raise ConnectionError("socket closed")

    async def generate_structured(self, request, schema):
        raise ConnectionError("socket closed")


# ─────────────────────────────────────────────────────────────────────────────
# think()
# ─────────────────────────────────────────────────────────────────────────────

def test_demo_think_is_capped(fake_client):
    t = _thinker(fake_client)
    asyncio.run(t.think("Summarise", max_tokens=2000))
    (_, request), = fake_client.calls
    assert request.max_output_tokens == 500
    assert request.model == Model.GROK_3_FAST.value
    assert request.system_prompt == "You evaluate."


def test_uncapped_think_keeps_callers_ceiling(fake_client):
    t = _thinker(fake_client)
    asyncio.run(t.think("Write", max_tokens=800, capped=False))
    assert fake_client.calls[0][1].max_output_tokens == 800


def test_think_records_usage_and_metrics(fake_client):
    t = _thinker(fake_client)
    result = asyncio.run(t.think("p" * 40, max_tokens=100, description="probe"))
    assert result.tokens_used == 10 + 100
    assert t.metrics.ai_calls == 1
    assert t.metrics.tokens_used == 110
    entry, = t.cost_tracker.get_entries()
    assert entry.agent == "Evaluator"
    assert (entry.input_tokens, entry.output_tokens) == (10, 100)
    assert entry.description == "probe"


def test_missing_usage_falls_back_to_length_estimate():
    t = _thinker(_NoUsageClient())
    result = asyncio.run(t.think("q" * 80, max_tokens=100))
    entry, = t.cost_tracker.get_entries()
    assert entry.input_tokens == 20
    assert entry.output_tokens == 100
    assert result.tokens_used == 120


def test_preflight_refuses_unaffordable_call(fake_client):
    t = _thinker(fake_client, budget=0.0001)
    with pytest.raises(BudgetExceededError) as exc:
        asyncio.run(t.think("Summarise", max_tokens=2000))
    assert exc.value.limit == pytest.approx(0.0001 * 0.95)
    assert exc.value.estimated_cost > exc.value.limit
    assert fake_client.calls == []
    assert t.cost_tracker.get_entries() == []


def test_client_failures_become_generation_errors():
    t = _thinker(_ExplodingClient())
    with pytest.raises(GenerationError, match="socket closed"):
        asyncio.run(t.think("hi"))
    with pytest.raises(GenerationError, match="socket closed"):
        asyncio.run(t.think_structured("hi", EvaluationVerdict))


def test_generation_error_passes_through_unwrapped():
    t = _thinker(FakeClient(fail_text=True))
    with pytest.raises(GenerationError, match="^provider unavailable$"):
        asyncio.run(t.think("hi"))


# ─────────────────────────────────────────────────────────────────────────────
# think_structured()
# ─────────────────────────────────────────────────────────────────────────────

def test_structured_demo_ceiling(fake_client):
    t = _thinker(fake_client)
    verdict = asyncio.run(t.think_structured("judge", EvaluationVerdict, max_tokens=5000))
    assert verdict.accept is True
    assert fake_client.calls[0][1].max_output_tokens == 1500


def test_structured_live_ceiling(fake_client):
    t = _thinker(fake_client, demo=False)
    asyncio.run(t.think_structured("judge", EvaluationVerdict))
    request = fake_client.calls[0][1]
    assert request.max_output_tokens == 3000
    assert request.model == Model.GROK_3.value


def test_structured_type_mismatch_raises():
    client = FakeClient(structured={
        TaskBreakdown: lambda: EvaluationVerdict(accept=True, score=1, reasoning="wrong"),
    })
    t = _thinker(client)
    with pytest.raises(StructuredOutputError, match="TaskBreakdown"):
        asyncio.run(t.think_structured("plan", TaskBreakdown))
    assert t.cost_tracker.get_entries() == []


# ─────────────────────────────────────────────────────────────────────────────
# Cancellation and messages
# ─────────────────────────────────────────────────────────────────────────────

def test_cancelled_thinker_makes_no_calls(fake_client):
    cancel = asyncio.Event()
    cancel.set()
    t = _thinker(fake_client, cancel_event=cancel)
    with pytest.raises(SwarmCancelledError):
        asyncio.run(t.think("hi"))
    with pytest.raises(SwarmCancelledError):
        t.ensure_active()
    assert fake_client.calls == []


def test_ensure_active_without_signal_is_noop(fake_client):
    _thinker(fake_client).ensure_active()


def test_message_carries_agent_identity(fake_client):
    t = _thinker(fake_client)
    msg = t.message("hello", MessageType.SUCCESS, {"k": 1})
    assert msg.agent == "Evaluator"
    assert msg.type is MessageType.SUCCESS
    assert msg.metadata == {"k": 1}
    assert msg.id.startswith("evaluator-")


def test_reset_metrics(fake_client):
    t = _thinker(fake_client)
    asyncio.run(t.think("hi", max_tokens=10))
    t.reset_metrics()
    assert t.metrics.ai_calls == 0
