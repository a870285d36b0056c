"""
Cost Tracker — per-run spend ledger with a hard budget ceiling
==============================================================
Generation costs are only known after a call returns, so every costed call is
gated by a conservative pre-flight estimate (+20% buffer) against 95% of the
budget, and the realised usage is then appended to the ledger.

  total_spent = ai_costs + 2% platform fee
  refund      = max(0, budget - total_spent)

One CostTracker per run; it is never shared between runs.

Usage:
    tracker = CostTracker(budget=0.75)
    if tracker.can_afford_operation(Model.GROK_3_FAST, 400, 2000):
        ...
        tracker.track_model_usage("Project Manager", Model.GROK_3_FAST, 380, 1650, "decompose")
    tracker.get_cost_breakdown()
"""
from __future__ import annotations

import logging
import math
from typing import Union

from .models import (
    IMAGE_COST_PER_IMAGE, CostBreakdown, CostEntry, ImageCostEntry, Model,
    MODEL_PRICING, price_tokens, resolve_model,
)

logger = logging.getLogger("tenderswarm.cost")

PLATFORM_FEE_RATE: float = 0.02
SAFETY_MARGIN: float = 0.05            # 5% of budget is never committed
ESTIMATE_BUFFER: float = 1.2           # +20% on pre-flight estimates
MIN_COST_PER_TASK: float = 0.005
UNKNOWN_MODEL_ESTIMATE: float = 0.01   # conservative pre-flight estimate only

ModelLike = Union[Model, str]


class CostTracker:
    """Append-only ledger of model and image costs for one run."""

    def __init__(self, budget: float) -> None:
        if budget < 0:
            raise ValueError(f"budget must be non-negative, got {budget}")
        self.budget = budget
        self._entries: list[CostEntry] = []
        self._image_entries: list[ImageCostEntry] = []

    # ── estimation ──────────────────────────────────────────────────────────

    def estimate_operation_cost(self, model: ModelLike, est_input_tokens: float,
                                est_output_tokens: float) -> float:
        resolved = resolve_model(model)
        if resolved is None:
            logger.warning(f"No pricing for {model!r}; using fallback estimate")
            return UNKNOWN_MODEL_ESTIMATE
        return price_tokens(resolved, est_input_tokens, est_output_tokens) * ESTIMATE_BUFFER

    def can_afford_operation(self, model: ModelLike, est_input_tokens: float,
                             est_output_tokens: float) -> bool:
        # the ceiling is on total spend, so the estimate carries the fee too
        estimate = (self.estimate_operation_cost(model, est_input_tokens, est_output_tokens)
                    * (1 + PLATFORM_FEE_RATE))
        current = self.get_total_spent()
        limit = self.effective_limit
        ok = current + estimate <= limit
        if not ok:
            logger.info(
                "Budget check failed: current %.4f + estimated %.4f exceeds limit %.4f",
                current, estimate, limit,
            )
        return ok

    def can_afford(self, cost: float) -> bool:
        return self.get_total_spent() + cost * (1 + PLATFORM_FEE_RATE) <= self.effective_limit

    def estimate_task_cost(self, estimated_tokens: int, model: ModelLike) -> float:
        """Task cost assuming a 30/70 input/output token split."""
        resolved = resolve_model(model)
        if resolved is None:
            return UNKNOWN_MODEL_ESTIMATE
        return price_tokens(resolved, estimated_tokens * 0.3, estimated_tokens * 0.7)

    @property
    def effective_limit(self) -> float:
        return self.budget * (1 - SAFETY_MARGIN)

    # ── recording ───────────────────────────────────────────────────────────

    def track_model_usage(self, agent: str, model: ModelLike, input_tokens: int,
                          output_tokens: int, description: str = "") -> float:
        resolved = resolve_model(model)
        if resolved is None:
            logger.error(f"Unknown model pricing for {model!r}; usage not recorded")
            return 0.0
        cost = price_tokens(resolved, input_tokens, output_tokens)
        self._entries.append(CostEntry(
            agent=agent,
            model=resolved,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost=cost,
            description=description,
        ))
        logger.debug(
            f"{agent} used {resolved.value}: {input_tokens}/{output_tokens} tokens = {cost:.6f}"
        )
        return cost

    def track_image_generation(self, model: str, count: int = 1) -> float:
        per_image = MODEL_PRICING[Model.GEMINI_IMAGE].get("image", IMAGE_COST_PER_IMAGE)
        total = count * per_image
        self._image_entries.append(ImageCostEntry(
            model=model,
            images_generated=count,
            cost_per_image=per_image,
            total_cost=total,
        ))
        logger.debug(f"Image cost tracked: {count} image(s) = {total:.4f}")
        return total

    # ── aggregates ──────────────────────────────────────────────────────────

    def get_total_ai_costs(self) -> float:
        return (sum(e.cost for e in self._entries)
                + sum(e.total_cost for e in self._image_entries))

    def get_platform_fee(self) -> float:
        return self.get_total_ai_costs() * PLATFORM_FEE_RATE

    def get_total_spent(self) -> float:
        return self.get_total_ai_costs() + self.get_platform_fee()

    def get_remaining_budget(self) -> float:
        """Budget left after spend and the 5% safety buffer, floored at 0."""
        return max(0.0, self.budget - self.get_total_spent() - self.budget * SAFETY_MARGIN)

    def get_refund_amount(self) -> float:
        return max(0.0, self.budget - self.get_total_spent())

    def get_cost_breakdown(self) -> CostBreakdown:
        ai_costs = self.get_total_ai_costs()
        fee = ai_costs * PLATFORM_FEE_RATE
        total = ai_costs + fee
        return CostBreakdown(
            ai_costs=ai_costs,
            platform_fee=fee,
            total_spent=total,
            original_budget=self.budget,
            refund_amount=max(0.0, self.budget - total),
            utilization_rate=(total / self.budget * 100) if self.budget else 0.0,
        )

    def get_costs_by_agent(self) -> dict[str, float]:
        by_agent: dict[str, float] = {}
        for e in self._entries:
            by_agent[e.agent] = by_agent.get(e.agent, 0.0) + e.cost
        return by_agent

    def get_entries(self) -> list[CostEntry]:
        return list(self._entries)

    def get_image_entries(self) -> list[ImageCostEntry]:
        return list(self._image_entries)

    def should_terminate_early(self) -> bool:
        return self.get_remaining_budget() < MIN_COST_PER_TASK


def tier_minimums() -> dict[str, dict]:
    """
    Realistic per-tier cost estimates and a recommended minimum budget.
    Token counts per task are typical usage, not the tier ceilings.
    """
    plans = {
        "enterprise": (Model.GROK_3, 4000, 12, 6, 1.5),
        "premium": (Model.GROK_3, 3000, 8, 3, 1.5),
        "standard": (Model.GROK_3_FAST, 2000, 5, 0, 2.0),
        "basic": (Model.GROK_3_FAST, 1000, 3, 0, 2.0),
    }
    out: dict[str, dict] = {}
    for tier, (model, tokens, tasks, images, margin) in plans.items():
        task_cost = price_tokens(model, tokens * 0.3, tokens * 0.7)
        total = (task_cost * tasks + images * IMAGE_COST_PER_IMAGE) * 1.1
        breakdown = f"{tasks} tasks x {task_cost:.4f}"
        if images:
            breakdown += f" + {images} images x {IMAGE_COST_PER_IMAGE}"
        out[tier] = {
            "estimated_cost": total,
            "recommended": math.ceil(total * margin),
            "breakdown": breakdown,
        }
    return out
