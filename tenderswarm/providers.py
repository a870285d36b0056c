"""
Simulated provider network.

Providers are the entities credited with a deliverable and paid for it. All
of them currently settle to the platform treasury address; the registry only
decides which identity a task is attributed to.
"""
from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Optional, Sequence

from .config import PLATFORM_TREASURY
from .models import Capability, TaskCategory

C = Capability


@dataclass(frozen=True)
class AIProvider:
    id: str
    name: str
    specialty: TaskCategory
    tier: str
    capabilities: tuple[Capability, ...]
    cost_multiplier: float = 1.0
    description: str = ""
    address: str = PLATFORM_TREASURY
    is_active: bool = True


AI_PROVIDERS: tuple[AIProvider, ...] = (
    # basic
    AIProvider("grok-researcher-basic", "Grok Research Assistant", TaskCategory.RESEARCH,
               "basic", (C.TEXT, C.DATA_ANALYSIS), 0.8,
               "Quick market research and data gathering"),
    AIProvider("grok-writer-basic", "Grok Content Writer", TaskCategory.COPYWRITING,
               "basic", (C.TEXT, C.CREATIVE), 0.8,
               "Fast copywriting and content creation"),
    # standard
    AIProvider("gpt4-strategist", "GPT-4 Strategy Consultant", TaskCategory.STRATEGY,
               "standard", (C.TEXT, C.DATA_ANALYSIS, C.CREATIVE), 1.0,
               "Strategic planning and business models"),
    AIProvider("claude-writer", "Claude Content Creator", TaskCategory.COPYWRITING,
               "standard", (C.TEXT, C.CREATIVE), 1.0,
               "High-quality copywriting and brand messaging"),
    AIProvider("grok-designer", "Grok Design Architect", TaskCategory.DESIGN,
               "standard", (C.TEXT, C.CREATIVE, C.VISION), 1.0,
               "UX/UI design and visual specifications"),
    AIProvider("grok-marketer", "Grok Marketing Specialist", TaskCategory.MARKETING,
               "standard", (C.TEXT, C.CREATIVE, C.DATA_ANALYSIS), 1.0,
               "Marketing strategy and campaign planning"),
    # premium
    AIProvider("gpt4-developer", "GPT-4 Technical Lead", TaskCategory.DEVELOPMENT,
               "premium", (C.TEXT, C.CODE, C.TECHNICAL), 1.3,
               "System architecture and technical specifications"),
    AIProvider("claude-analyst", "Claude Financial Analyst", TaskCategory.FINANCIAL_MODELING,
               "premium", (C.TEXT, C.DATA_ANALYSIS, C.FINANCIAL), 1.3,
               "Financial modeling and economic analysis"),
    AIProvider("grok-researcher-premium", "Grok Research Specialist", TaskCategory.RESEARCH,
               "premium", (C.TEXT, C.DATA_ANALYSIS, C.VISION), 1.2,
               "Deep research, competitive analysis, and insights"),
    # enterprise
    AIProvider("gpt4-turbo-strategist", "GPT-4 Turbo Strategy Director", TaskCategory.STRATEGY,
               "enterprise", (C.TEXT, C.DATA_ANALYSIS, C.CREATIVE, C.VISION), 1.8,
               "Executive-level strategic planning and analysis"),
    AIProvider("claude-opus-writer", "Claude Opus Content Director", TaskCategory.COPYWRITING,
               "enterprise", (C.TEXT, C.CREATIVE, C.VISION), 2.0,
               "Premium copywriting and content strategy"),
)

_TIER_ORDER = ("basic", "standard", "premium", "enterprise")


def provider_tier_for_budget(budget: float) -> str:
    """Provider tiers use their own (wider) budget bands than service tiers."""
    if budget >= 50:
        return "enterprise"
    if budget >= 20:
        return "premium"
    if budget >= 5:
        return "standard"
    return "basic"


def active_providers() -> list[AIProvider]:
    return [p for p in AI_PROVIDERS if p.is_active]


def get_provider_by_id(provider_id: str) -> Optional[AIProvider]:
    return next((p for p in AI_PROVIDERS if p.id == provider_id), None)


def _by_specialty(category: TaskCategory, budget: float,
                  capabilities: Sequence[Capability],
                  rng: random.Random) -> Optional[AIProvider]:
    tier = provider_tier_for_budget(budget)
    idx = _TIER_ORDER.index(tier)
    allowed = {tier, _TIER_ORDER[idx - 1]} if idx > 0 else {tier}

    candidates = [p for p in active_providers()
                  if p.specialty == category and p.tier in allowed]
    if capabilities:
        candidates = [p for p in candidates
                      if all(c in p.capabilities for c in capabilities)]
    exact = [p for p in candidates if p.tier == tier]
    pool = exact or candidates
    return rng.choice(pool) if pool else None


def assign_provider(category: TaskCategory, budget: float,
                    capabilities: Sequence[Capability] = (),
                    rng: Optional[random.Random] = None) -> AIProvider:
    rng = rng or random.Random()
    provider = _by_specialty(category, budget, capabilities, rng)
    if provider is not None:
        return provider
    tier = provider_tier_for_budget(budget)
    same_tier = [p for p in active_providers() if p.tier == tier]
    if same_tier:
        return rng.choice(same_tier)
    return rng.choice(active_providers())


_CATEGORY_CAPABILITIES: dict[TaskCategory, tuple[Capability, ...]] = {
    TaskCategory.DEVELOPMENT: (C.CODE, C.TECHNICAL),
    TaskCategory.DESIGN: (C.CREATIVE, C.VISION),
    TaskCategory.FINANCIAL_MODELING: (C.DATA_ANALYSIS, C.FINANCIAL),
    TaskCategory.RESEARCH: (C.DATA_ANALYSIS,),
    TaskCategory.COPYWRITING: (C.CREATIVE,),
    TaskCategory.MARKETING: (C.CREATIVE,),
    TaskCategory.STRATEGY: (C.DATA_ANALYSIS, C.CREATIVE),
}

_KEYWORD_CAPABILITIES: tuple[tuple[tuple[str, ...], tuple[Capability, ...]], ...] = (
    (("code", "programming", "api"), (C.CODE, C.TECHNICAL)),
    (("visual", "image", "design"), (C.VISION, C.CREATIVE)),
    (("data", "analysis", "research"), (C.DATA_ANALYSIS,)),
    (("financial", "revenue", "budget"), (C.FINANCIAL,)),
)


def infer_capabilities(category: TaskCategory, description: str) -> list[Capability]:
    caps: list[Capability] = [C.TEXT]
    caps.extend(_CATEGORY_CAPABILITIES.get(category, ()))
    text = description.lower()
    for keywords, extra in _KEYWORD_CAPABILITIES:
        if any(k in text for k in keywords):
            caps.extend(c for c in extra if c not in caps)
    return caps
