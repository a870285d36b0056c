"""
Budget tiers — pure mapping from a run's budget to its service level.
"""
from __future__ import annotations

from dataclasses import dataclass, replace

from .models import MicroTask, Model, TaskCategory


@dataclass(frozen=True)
class TierConfig:
    tier: str
    min_budget: float
    max_tasks: int
    ai_model: Model
    max_tokens_per_task: int
    includes_images: bool
    max_images: int
    content_depth: str          # brief | standard | detailed | comprehensive
    priority: int
    includes_video: bool = False
    max_videos: int = 0

    def to_dict(self) -> dict:
        return {
            "tier": self.tier,
            "minBudget": self.min_budget,
            "maxTasks": self.max_tasks,
            "aiModel": self.ai_model.value,
            "maxTokensPerTask": self.max_tokens_per_task,
            "includesImages": self.includes_images,
            "maxImages": self.max_images,
            "contentDepth": self.content_depth,
            "includesVideo": self.includes_video,
            "maxVideos": self.max_videos,
        }


TIER_CONFIGS: dict[str, TierConfig] = {
    "basic": TierConfig(
        tier="basic", min_budget=0.25, max_tasks=3, ai_model=Model.GROK_3_FAST,
        max_tokens_per_task=4000, includes_images=False, max_images=0,
        content_depth="brief", priority=1,
    ),
    "standard": TierConfig(
        tier="standard", min_budget=0.5, max_tasks=5, ai_model=Model.GROK_3_FAST,
        max_tokens_per_task=6000, includes_images=False, max_images=0,
        content_depth="standard", priority=2,
    ),
    "premium": TierConfig(
        tier="premium", min_budget=1.0, max_tasks=8, ai_model=Model.GROK_3,
        max_tokens_per_task=8000, includes_images=True, max_images=3,
        content_depth="detailed", priority=3,
    ),
    "enterprise": TierConfig(
        tier="enterprise", min_budget=2.0, max_tasks=12, ai_model=Model.GROK_3,
        max_tokens_per_task=12000, includes_images=True, max_images=6,
        content_depth="comprehensive", priority=4,
        includes_video=True, max_videos=1,
    ),
}

TIER_ORDER = ("basic", "standard", "premium", "enterprise")


def determine_tier(budget: float) -> TierConfig:
    if budget >= 2:
        return TIER_CONFIGS["enterprise"]
    if budget >= 1:
        return TIER_CONFIGS["premium"]
    if budget >= 0.5:
        return TIER_CONFIGS["standard"]
    return TIER_CONFIGS["basic"]


def demo_tier_config(tier: TierConfig) -> TierConfig:
    """Cheapest model, no media, per-task ceiling capped at 1000 tokens."""
    return replace(
        tier,
        ai_model=Model.GROK_3_FAST,
        includes_images=False,
        max_images=0,
        includes_video=False,
        max_videos=0,
        max_tokens_per_task=min(tier.max_tokens_per_task, 1000),
    )


_DESCRIPTIONS = {
    "enterprise": "Maximum AI power with comprehensive analysis, up to 12 deliverables, "
                  "and 6 AI-generated images",
    "premium": "Enhanced AI with detailed analysis, up to 8 deliverables, "
               "and 3 AI-generated images",
    "standard": "Standard AI processing with up to 5 deliverables",
    "basic": "Basic AI processing with up to 3 deliverables",
}


def tier_description(tier: str) -> str:
    return _DESCRIPTIONS.get(tier, _DESCRIPTIONS["basic"])


def tier_cost_multiplier(tier: str) -> float:
    return {"enterprise": 1.5, "premium": 1.25, "standard": 1.0}.get(tier, 0.8)


# ─────────────────────────────────────────────
# Image selection
# ─────────────────────────────────────────────

IMAGE_PRIORITY: tuple[TaskCategory, ...] = (
    TaskCategory.DESIGN,
    TaskCategory.MARKETING,
    TaskCategory.STRATEGY,
    TaskCategory.RESEARCH,
    TaskCategory.DEVELOPMENT,
    TaskCategory.FINANCIAL_MODELING,
    TaskCategory.COPYWRITING,
)

_IMAGE_PROMPTS: dict[TaskCategory, str] = {
    TaskCategory.DESIGN: "A modern UI/UX design mockup or interface wireframe related to: {}",
    TaskCategory.MARKETING: "A professional marketing infographic or campaign visual for: {}",
    TaskCategory.STRATEGY: "A business strategy diagram or roadmap visualization for: {}",
    TaskCategory.RESEARCH: "A data visualization or research findings chart about: {}",
    TaskCategory.DEVELOPMENT: "A technical architecture diagram or system flowchart for: {}",
    TaskCategory.FINANCIAL_MODELING: "A financial chart, graph, or projection visualization for: {}",
    TaskCategory.COPYWRITING: "A brand mood board or typography showcase for: {}",
}


def image_prompt_for_task(category: TaskCategory, description: str) -> str:
    template = _IMAGE_PROMPTS.get(category, "A professional business illustration for: {}")
    return template.format(description[:100])


def select_image_tasks(tasks: list[MicroTask], tier: TierConfig) -> dict[str, str]:
    """
    Pick the tasks that also get an image, most visual categories first.
    Returns {task_id: image_prompt}; the sort is stable so ties keep task order.
    """
    if not tier.includes_images or tier.max_images <= 0:
        return {}
    ranked = sorted(tasks, key=lambda t: IMAGE_PRIORITY.index(t.category))
    return {
        t.id: image_prompt_for_task(t.category, t.description)
        for t in ranked[: tier.max_images]
    }
