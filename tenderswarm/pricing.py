"""
Pricing — task reward allocation and per-agent cost attribution.

Rewards carry bounded market noise; the noise source is an injected
random.Random so seeded runs price identically.
"""
from __future__ import annotations

import logging
import random
from typing import Iterable, Mapping, Optional

from .models import AgentPayment, AgentWorkMetrics, CostEntry, MicroTask, TaskCategory

logger = logging.getLogger("tenderswarm.pricing")

TASK_POOL_SHARE = 0.9       # base reward pool
REWARD_CEILING_SHARE = 0.8  # hard ceiling on the sum of rewards
MAX_DETAIL_BONUS = 0.3

CATEGORY_MULTIPLIERS: dict[TaskCategory, float] = {
    TaskCategory.FINANCIAL_MODELING: 1.4,
    TaskCategory.STRATEGY: 1.3,
    TaskCategory.DEVELOPMENT: 1.3,
    TaskCategory.RESEARCH: 1.1,
    TaskCategory.DESIGN: 1.0,
    TaskCategory.MARKETING: 0.95,
    TaskCategory.COPYWRITING: 0.9,
}


def calculate_task_reward(description: str, category: TaskCategory,
                          total_budget: float, task_count: int,
                          rng: Optional[random.Random] = None) -> float:
    rng = rng or random.Random()
    base = (total_budget * TASK_POOL_SHARE) / max(task_count, 1)
    multiplier = CATEGORY_MULTIPLIERS.get(category, 1.0)
    detail_bonus = min(len(description) / 500, MAX_DETAIL_BONUS)
    variance = 0.85 + rng.random() * 0.3
    return round(base * multiplier * (1 + detail_bonus) * variance, 4)


def rescale_rewards(tasks: list[MicroTask], budget: float) -> list[MicroTask]:
    """
    Scale every reward down proportionally when the sum exceeds 80% of budget.
    Rounds down at 4 dp so rounding can never push the sum back over.
    """
    ceiling = budget * REWARD_CEILING_SHARE
    total = sum(t.reward for t in tasks)
    if total <= ceiling or total <= 0:
        return tasks
    scale = ceiling / total
    for t in tasks:
        t.reward = int(t.reward * scale * 10_000) / 10_000
    logger.info(f"Rescaled {len(tasks)} rewards by {scale:.4f} to fit {ceiling:.4f}")
    return tasks


def attribute_agent_costs(entries: Iterable[CostEntry],
                          metrics: Optional[Mapping[str, AgentWorkMetrics]] = None
                          ) -> list[AgentPayment]:
    """
    One AgentPayment per agent that appears in the ledger, in first-seen order.

    Cost always comes from the ledger. When an agent's work metrics are given,
    its token and task counts come from them; otherwise the ledger's token
    totals and operation count stand in.
    """
    metrics = metrics or {}
    totals: dict[str, list] = {}
    for e in entries:
        cost, ops, tokens = totals.get(e.agent, (0.0, 0, 0))
        totals[e.agent] = [cost + e.cost, ops + 1, tokens + e.input_tokens + e.output_tokens]

    payments = []
    for agent, (cost, ops, tokens) in totals.items():
        work = metrics.get(agent)
        if work is None:
            payments.append(AgentPayment(agent=agent, amount=cost,
                                         reason=f"AI model usage for {ops} operation(s)",
                                         tokens_used=tokens, tasks_processed=ops))
            continue
        payments.append(AgentPayment(
            agent=agent,
            amount=cost,
            reason=f"AI model usage for {work.ai_calls} call(s) "
                   f"across {work.tasks_processed} task(s)",
            tokens_used=work.tokens_used,
            tasks_processed=work.tasks_processed,
        ))
    return payments
