"""
Content generation — one deliverable per task.

Prompts come from a fixed category × depth table. The text call uses the
run's content model and per-task token ceiling. Selected tasks also get one
image; image failures are logged and never fail the task.
"""
from __future__ import annotations

import logging
import random
from typing import Optional

from .agent import Thinker
from .errors import GenerationError
from .models import (
    IMAGE_COST_PER_IMAGE, GeneratedDeliverable, GeneratedImage, Model, MicroTask,
    TaskCategory, new_id,
)
from .providers import assign_provider

logger = logging.getLogger("tenderswarm.content_generator")

CONTENT_GENERATOR = "Content Generator"

SYSTEM_PROMPT = "You are an expert specialist. Create high-quality, professional deliverables."

DEPTHS = ("brief", "standard", "detailed", "comprehensive")

CATEGORY_PROMPTS: dict[TaskCategory, dict[str, str]] = {
    TaskCategory.RESEARCH: {
        "brief": "Create a concise research summary (200-300 words) with key findings and recommendations.",
        "standard": "Create a detailed research report (400-600 words) with executive summary, key findings, "
                    "data analysis, and recommendations.",
        "detailed": "Create a comprehensive research report (800-1200 words) with executive summary, "
                    "methodology, in-depth findings, data analysis, competitive insights, sources, and "
                    "actionable recommendations.",
        "comprehensive": "Create an exhaustive research document (1500-2500 words) covering executive summary, "
                         "detailed methodology, comprehensive findings with data visualization suggestions, "
                         "market analysis, competitive landscape, risk assessment, multiple data sources, and "
                         "strategic recommendations with implementation roadmap.",
    },
    TaskCategory.DESIGN: {
        "brief": "Create a basic design brief (200-300 words) with visual guidelines and key components.",
        "standard": "Create a design specification (400-600 words) with user personas, visual guidelines, "
                    "and component specifications.",
        "detailed": "Create a detailed design document (800-1200 words) with user personas, user journey maps, "
                    "visual design system, component library specs, interaction patterns, and accessibility "
                    "guidelines.",
        "comprehensive": "Create an exhaustive design specification (1500-2500 words) covering user research "
                         "synthesis, multiple personas, complete user journey mapping, full design system with "
                         "tokens, comprehensive component library, micro-interactions, responsive breakpoints, "
                         "accessibility compliance (WCAG), and design handoff documentation.",
    },
    TaskCategory.COPYWRITING: {
        "brief": "Create essential marketing copy (200-300 words) with headlines and key messages.",
        "standard": "Create marketing copy package (400-600 words) with headlines, taglines, body copy, and CTAs.",
        "detailed": "Create comprehensive copy deck (800-1200 words) with multiple headline variations, "
                    "taglines, long-form body copy, email sequences, social media copy, and tone guidelines.",
        "comprehensive": "Create a complete content strategy document (1500-2500 words) with brand voice "
                         "guidelines, messaging hierarchy, multiple headline/tagline variations, full website "
                         "copy, email marketing sequences, social media content calendar, ad copy variations, "
                         "SEO keywords, and content performance metrics.",
    },
    TaskCategory.FINANCIAL_MODELING: {
        "brief": "Create a financial summary (200-300 words) with key metrics and projections.",
        "standard": "Create a financial analysis (400-600 words) with revenue projections, cost analysis, "
                    "and key metrics.",
        "detailed": "Create a detailed financial model document (800-1200 words) with P&L projections, cash "
                    "flow analysis, unit economics, sensitivity analysis, and investment recommendations.",
        "comprehensive": "Create an exhaustive financial analysis (1500-2500 words) covering detailed P&L with "
                         "3-5 year projections, cash flow modeling, balance sheet impacts, unit economics "
                         "deep-dive, multiple scenario analysis, sensitivity modeling, DCF valuation, comparable "
                         "company analysis, and strategic financial recommendations.",
    },
    TaskCategory.STRATEGY: {
        "brief": "Create a strategic overview (200-300 words) with objectives and key actions.",
        "standard": "Create a strategic plan (400-600 words) with market analysis, objectives, action items, "
                    "and KPIs.",
        "detailed": "Create a detailed strategy document (800-1200 words) with market analysis, competitive "
                    "positioning, strategic objectives, implementation roadmap, resource requirements, and "
                    "success metrics.",
        "comprehensive": "Create a comprehensive strategic plan (1500-2500 words) covering industry analysis, "
                         "detailed competitive landscape, SWOT analysis, strategic options evaluation, "
                         "recommended strategy with rationale, phased implementation roadmap, resource "
                         "allocation, risk mitigation, governance framework, and KPI dashboard design.",
    },
    TaskCategory.DEVELOPMENT: {
        "brief": "Create a technical overview (200-300 words) with architecture summary and key components.",
        "standard": "Create a technical specification (400-600 words) with architecture design, API specs, "
                    "and implementation notes.",
        "detailed": "Create a detailed technical document (800-1200 words) with system architecture, data "
                    "models, API specifications, security considerations, and deployment strategy.",
        "comprehensive": "Create an exhaustive technical specification (1500-2500 words) covering system "
                         "architecture with diagrams, microservices design, complete API documentation, "
                         "database schema, security architecture, CI/CD pipeline, monitoring/observability "
                         "strategy, scalability considerations, disaster recovery, and technical debt management.",
    },
    TaskCategory.MARKETING: {
        "brief": "Create a marketing overview (200-300 words) with campaign concept and target audience.",
        "standard": "Create a marketing plan (400-600 words) with target audience, channel strategy, and "
                    "content calendar.",
        "detailed": "Create a detailed marketing strategy (800-1200 words) with audience segmentation, "
                    "multi-channel strategy, content calendar, budget allocation, and success metrics.",
        "comprehensive": "Create a comprehensive marketing playbook (1500-2500 words) covering market "
                         "segmentation, detailed buyer personas, full-funnel marketing strategy, "
                         "channel-specific tactics, content marketing framework, paid media strategy, marketing "
                         "automation workflows, A/B testing plan, attribution modeling, and ROI projections.",
    },
}


def depth_prompt(category: TaskCategory, depth: str) -> str:
    table = CATEGORY_PROMPTS.get(category, CATEGORY_PROMPTS[TaskCategory.RESEARCH])
    return table.get(depth, table["standard"])


def build_task_prompt(task: MicroTask, brief_text: str, depth: str) -> str:
    return f"""Create a deliverable for this task:

ORIGINAL CLIENT BRIEF: "{brief_text or 'No brief provided'}"

SPECIFIC TASK: "{task.description}"

CATEGORY: {task.category.value}
DEPTH LEVEL: {depth}

{depth_prompt(task.category, depth)}

Create a professional, detailed markdown document that fully addresses this task.
Use proper markdown formatting with headers, bullet points, tables where appropriate.
Make it specific and actionable, not generic."""


def build_image_prompt(prompt: str, category: TaskCategory, context: str) -> str:
    return f"""Create a professional, high-quality image for a business project.
Context: {context}
Category: {category.value}
Specific request: {prompt}

Style: Clean, modern, professional. Suitable for business presentations and reports."""


class ContentGenerator:
    def __init__(self, thinker: Thinker, budget: float,
                 rng: Optional[random.Random] = None) -> None:
        self.thinker = thinker
        self.budget = budget
        self.rng = rng or random.Random()

    async def generate(self, task: MicroTask, brief_text: str,
                       image_prompt: Optional[str] = None) -> GeneratedDeliverable:
        """Raises GenerationError/BudgetExceededError; the caller marks the task failed."""
        cfg = self.thinker.run_config
        depth = cfg.tier.content_depth
        provider = assign_provider(task.category, self.budget, task.required_capabilities, self.rng)

        result = await self.thinker.think(
            build_task_prompt(task, brief_text, depth),
            max_tokens=cfg.content_tokens,
            model=cfg.content_model.value,
            system_prompt=(f"You are an expert {task.category.value} specialist. "
                           "Create high-quality, professional deliverables."),
            description=f"Content generation for: {task.description[:40]}",
            capped=False,
        )
        if not result.text.strip():
            raise GenerationError(f"Empty deliverable for task {task.id}")

        image = None
        if image_prompt and cfg.images_enabled:
            image = await self._generate_image(task, image_prompt, brief_text)

        self.thinker.metrics.tasks_processed += 1
        return GeneratedDeliverable(
            task_id=task.id,
            task_description=task.description,
            category=task.category,
            provider=provider.address,
            provider_name=provider.name,
            content=result.text,
            tokens_used=result.tokens_used,
            image=image,
        )

    async def _generate_image(self, task: MicroTask, prompt: str,
                              context: str) -> Optional[GeneratedImage]:
        tracker = self.thinker.cost_tracker
        if not tracker.can_afford(IMAGE_COST_PER_IMAGE):
            logger.info(f"Insufficient budget for image on {task.id}; skipping")
            return None
        try:
            result = await self.thinker.client.generate_image(
                build_image_prompt(prompt, task.category, context), Model.GEMINI_IMAGE.value,
            )
        except Exception as e:
            logger.warning(f"Image generation failed for {task.id}: {e}")
            return None
        if result is None:
            return None
        tracker.track_image_generation(Model.GEMINI_IMAGE.value, 1)
        return GeneratedImage(
            id=new_id("img"),
            task_id=task.id,
            category=task.category.value,
            prompt=prompt,
            base64_data=result.base64_data,
            mime_type=result.mime_type,
        )
