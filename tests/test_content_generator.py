"""
Tests for ContentGenerator: prompts, per-task ceilings and best-effort images.
"""
from __future__ import annotations

import asyncio
import random

import pytest

from conftest import FakeClient, make_thinker
from tenderswarm.api_clients import ImageResult
from tenderswarm.config import PLATFORM_TREASURY
from tenderswarm.content_generator import (
    CATEGORY_PROMPTS, DEPTHS, ContentGenerator, build_task_prompt, depth_prompt,
)
from tenderswarm.errors import BudgetExceededError, GenerationError
from tenderswarm.models import MicroTask, Model, TaskCategory
from tenderswarm.providers import AI_PROVIDERS

PIXEL = "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="


def _task(category=TaskCategory.DESIGN):
    return MicroTask(id="task-0", description="Design the landing page",
                     category=category, reward=0.2)


def _generator(client, budget=1.0, demo=True, tier="premium"):
    thinker = make_thinker(client, "Content Generator", budget=budget, demo=demo, tier=tier)
    return ContentGenerator(thinker, budget, random.Random(4))


class _BrokenImageClient(FakeClient):
    async def generate_image(self, prompt, model=""):
        raise RuntimeError("quota exhausted")


def test_every_category_has_every_depth():
    for category in TaskCategory:
        assert set(CATEGORY_PROMPTS[category]) == set(DEPTHS)
    assert depth_prompt(TaskCategory.MARKETING, "unknown") == \
        CATEGORY_PROMPTS[TaskCategory.MARKETING]["standard"]


def test_task_prompt_includes_brief_and_depth():
    prompt = build_task_prompt(_task(), "Coffee brand", "detailed")
    assert '"Coffee brand"' in prompt
    assert "DEPTH LEVEL: detailed" in prompt
    assert CATEGORY_PROMPTS[TaskCategory.DESIGN]["detailed"] in prompt
    assert "No brief provided" in build_task_prompt(_task(), "", "brief")


def test_generate_demo_deliverable(fake_client):
    gen = _generator(fake_client)
    d = asyncio.run(gen.generate(_task(), "Coffee brand", image_prompt="a mockup"))
    request = fake_client.calls[0][1]
    assert request.max_output_tokens == 800
    assert request.model == Model.GROK_3_FAST.value
    assert "design specialist" in request.system_prompt
    assert d.task_id == "task-0"
    assert d.provider == PLATFORM_TREASURY
    assert d.provider_name in {p.name for p in AI_PROVIDERS}
    assert d.image is None
    assert fake_client.image_calls == []
    assert gen.thinker.metrics.tasks_processed == 1


def test_live_generation_uses_tier_ceiling_and_attaches_image():
    client = FakeClient(image=ImageResult(base64_data=PIXEL))
    gen = _generator(client, demo=False)
    d = asyncio.run(gen.generate(_task(), "Coffee brand", image_prompt="a mockup"))
    assert client.calls[0][1].max_output_tokens == 8000
    assert client.calls[0][1].model == Model.GROK_3.value
    assert d.image is not None
    assert d.image.base64_data == PIXEL
    assert d.image.prompt == "a mockup"
    assert len(gen.thinker.cost_tracker.get_image_entries()) == 1


def test_image_skipped_when_unaffordable():
    client = FakeClient(image=ImageResult(base64_data=PIXEL))
    gen = _generator(client, budget=0.05, demo=False)
    d = asyncio.run(gen.generate(_task(), "Coffee brand", image_prompt="a mockup"))
    assert d.image is None
    assert client.image_calls == []
    assert gen.thinker.cost_tracker.get_image_entries() == []


def test_image_failure_never_fails_the_task():
    client = _BrokenImageClient()
    gen = _generator(client, demo=False)
    d = asyncio.run(gen.generate(_task(), "Coffee brand", image_prompt="a mockup"))
    assert d.image is None
    assert d.content


def test_missing_image_is_not_charged():
    client = FakeClient(image=None)
    gen = _generator(client, demo=False)
    d = asyncio.run(gen.generate(_task(), "Coffee brand", image_prompt="a mockup"))
    assert d.image is None
    assert len(client.image_calls) == 1
    assert gen.thinker.cost_tracker.get_image_entries() == []


def test_empty_text_is_a_generation_error():
    gen = _generator(FakeClient(text="   \n"))
    with pytest.raises(GenerationError, match="Empty deliverable"):
        asyncio.run(gen.generate(_task(), "Coffee brand"))


def test_unaffordable_task_raises_budget_error(fake_client):
    gen = _generator(fake_client, budget=0.0002)
    with pytest.raises(BudgetExceededError):
        asyncio.run(gen.generate(_task(), "Coffee brand"))
    assert fake_client.calls == []
