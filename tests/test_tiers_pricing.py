"""
Tests for budget tiers, image selection, task reward pricing and agent cost
attribution.
"""
from __future__ import annotations

import random

import pytest

from tenderswarm.models import AgentWorkMetrics, CostEntry, MicroTask, Model, TaskCategory
from tenderswarm.pricing import (
    CATEGORY_MULTIPLIERS, attribute_agent_costs, calculate_task_reward, rescale_rewards,
)
from tenderswarm.tiers import (
    TIER_CONFIGS, TIER_ORDER, demo_tier_config, determine_tier, select_image_tasks,
    tier_cost_multiplier, tier_description,
)


def _task(i: int, category: TaskCategory, reward: float = 0.1) -> MicroTask:
    return MicroTask(id=f"task-{i}", description=f"Task {i}", category=category, reward=reward)


# ─────────────────────────────────────────────────────────────────────────────
# Tiers
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.parametrize("budget,tier", [
    (0.1, "basic"), (0.49, "basic"), (0.5, "standard"), (0.99, "standard"),
    (1.0, "premium"), (1.99, "premium"), (2.0, "enterprise"), (100, "enterprise"),
])
def test_determine_tier_thresholds(budget, tier):
    assert determine_tier(budget).tier == tier


def test_tiers_are_monotonic():
    configs = [TIER_CONFIGS[t] for t in TIER_ORDER]
    for lower, higher in zip(configs, configs[1:]):
        assert higher.max_tasks >= lower.max_tasks
        assert higher.max_tokens_per_task >= lower.max_tokens_per_task
        assert higher.max_images >= lower.max_images
        assert higher.priority > lower.priority


def test_only_enterprise_allows_video():
    assert [t for t in TIER_ORDER if TIER_CONFIGS[t].includes_video] == ["enterprise"]


def test_demo_tier_strips_media_and_caps_tokens():
    demo = demo_tier_config(TIER_CONFIGS["enterprise"])
    assert demo.tier == "enterprise"
    assert demo.ai_model is Model.GROK_3_FAST
    assert demo.includes_images is False and demo.max_images == 0
    assert demo.includes_video is False
    assert demo.max_tokens_per_task == 1000
    assert demo.max_tasks == TIER_CONFIGS["enterprise"].max_tasks


def test_tier_description_and_multiplier_fall_back_to_basic():
    assert "3 deliverables" in tier_description("unknown")
    assert tier_cost_multiplier("enterprise") == 1.5
    assert tier_cost_multiplier("unknown") == 0.8


def test_select_image_tasks_prefers_visual_categories():
    tasks = [
        _task(0, TaskCategory.COPYWRITING),
        _task(1, TaskCategory.RESEARCH),
        _task(2, TaskCategory.DESIGN),
        _task(3, TaskCategory.MARKETING),
        _task(4, TaskCategory.STRATEGY),
    ]
    chosen = select_image_tasks(tasks, TIER_CONFIGS["premium"])
    assert list(chosen) == ["task-2", "task-3", "task-4"]
    assert "Task 2" in chosen["task-2"]


def test_select_image_tasks_none_without_images():
    tasks = [_task(0, TaskCategory.DESIGN)]
    assert select_image_tasks(tasks, TIER_CONFIGS["standard"]) == {}


# ─────────────────────────────────────────────────────────────────────────────
# Rewards
# ─────────────────────────────────────────────────────────────────────────────

def test_reward_is_deterministic_with_seeded_rng():
    a = calculate_task_reward("Build a model", TaskCategory.STRATEGY, 1.0, 4, random.Random(7))
    b = calculate_task_reward("Build a model", TaskCategory.STRATEGY, 1.0, 4, random.Random(7))
    assert a == b


def test_reward_stays_within_variance_band():
    rng = random.Random(3)
    desc = "x" * 100   # detail bonus 0.2
    base = 1.0 * 0.9 / 3
    for _ in range(50):
        r = calculate_task_reward(desc, TaskCategory.DESIGN, 1.0, 3, rng)
        assert base * 1.2 * 0.85 - 1e-4 <= r <= base * 1.2 * 1.15 + 1e-4


def test_detail_bonus_is_capped():
    class Fixed(random.Random):
        def random(self):
            return 0.5   # variance 1.0

    long_desc = calculate_task_reward("x" * 5000, TaskCategory.DESIGN, 1.0, 1, Fixed())
    assert long_desc == pytest.approx(0.9 * 1.3, abs=1e-4)


def test_category_pricing_order_with_identical_inputs():
    class Fixed(random.Random):
        def random(self):
            return 0.5

    rewards = {
        c: calculate_task_reward("same description", c, 1.0, 5, Fixed())
        for c in CATEGORY_MULTIPLIERS
    }
    assert rewards[TaskCategory.FINANCIAL_MODELING] > rewards[TaskCategory.STRATEGY]
    assert rewards[TaskCategory.STRATEGY] == rewards[TaskCategory.DEVELOPMENT]
    assert rewards[TaskCategory.DEVELOPMENT] > rewards[TaskCategory.RESEARCH]
    assert rewards[TaskCategory.RESEARCH] > rewards[TaskCategory.DESIGN]
    assert rewards[TaskCategory.DESIGN] > rewards[TaskCategory.MARKETING]
    assert rewards[TaskCategory.MARKETING] > rewards[TaskCategory.COPYWRITING]


def test_rescale_keeps_sum_within_eighty_percent():
    tasks = [_task(i, TaskCategory.STRATEGY, reward=0.4) for i in range(5)]
    rescale_rewards(tasks, budget=1.0)
    assert sum(t.reward for t in tasks) <= 0.8 + 1e-9
    assert all(t.reward > 0 for t in tasks)


def test_rescale_leaves_affordable_rewards_untouched():
    tasks = [_task(i, TaskCategory.DESIGN, reward=0.1) for i in range(3)]
    rescale_rewards(tasks, budget=1.0)
    assert [t.reward for t in tasks] == [0.1, 0.1, 0.1]


def test_rewards_never_exceed_ceiling_for_many_budgets():
    rng = random.Random(99)
    for budget in (0.05, 0.3, 0.75, 1.5, 4.0, 25.0):
        for count in (3, 5, 8, 12):
            tasks = [
                _task(i, TaskCategory.FINANCIAL_MODELING,
                      calculate_task_reward("d" * 400, TaskCategory.FINANCIAL_MODELING,
                                            budget, count, rng))
                for i in range(count)
            ]
            rescale_rewards(tasks, budget)
            assert sum(t.reward for t in tasks) <= budget * 0.8 + 1e-9


# ─────────────────────────────────────────────────────────────────────────────
# Agent cost attribution
# ─────────────────────────────────────────────────────────────────────────────

def test_attribute_agent_costs_groups_by_agent_in_first_seen_order():
    entries = [
        CostEntry("Project Manager", Model.GROK_3, 100, 200, 0.01, "decompose"),
        CostEntry("Evaluator", Model.GROK_3, 50, 50, 0.002, "eval"),
        CostEntry("Evaluator", Model.GROK_3, 50, 50, 0.003, "eval"),
    ]
    payments = attribute_agent_costs(entries)
    assert [p.agent for p in payments] == ["Project Manager", "Evaluator"]
    evaluator = payments[1]
    assert evaluator.amount == pytest.approx(0.005)
    assert evaluator.tokens_used == 200
    assert evaluator.reason == "AI model usage for 2 operation(s)"


def test_attribute_agent_costs_prefers_work_metrics():
    entries = [
        CostEntry("Content Generator", Model.GROK_3, 100, 700, 0.01, "task-0"),
        CostEntry("Content Generator", Model.GROK_3, 100, 700, 0.01, "task-1"),
        CostEntry("Assembler", Model.GROK_3, 400, 900, 0.02, "assembly"),
    ]
    work = {"Content Generator": AgentWorkMetrics(tokens_used=1750, tasks_processed=2,
                                                  ai_calls=2)}
    generator, assembler = attribute_agent_costs(entries, work)
    assert generator.amount == pytest.approx(0.02)
    assert generator.tokens_used == 1750
    assert generator.tasks_processed == 2
    assert generator.reason == "AI model usage for 2 call(s) across 2 task(s)"
    # no metrics for the assembler, so the ledger stands in
    assert assembler.tokens_used == 1300
    assert assembler.tasks_processed == 1


def test_attribute_agent_costs_empty_ledger():
    assert attribute_agent_costs([]) == []
