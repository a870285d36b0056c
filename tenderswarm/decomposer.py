"""
Decomposition — brief → priced micro-tasks.

The model proposes tasks; the pricing engine decides every reward. When the
structured call fails for any reason (provider error, bad schema, no budget
left for it), a deterministic template list of the same size is used.
"""
from __future__ import annotations

import logging
import math
import random
from typing import Optional

from pydantic import BaseModel, Field

from .agent import Thinker
from .errors import BudgetExceededError, GenerationError
from .models import ClientBrief, MessageType, MicroTask, TaskCategory, new_id
from .pricing import calculate_task_reward, rescale_rewards
from .providers import infer_capabilities
from .streaming import Emit, MessageEvent

logger = logging.getLogger("tenderswarm.decomposer")

PROJECT_MANAGER = "Project Manager"

SYSTEM_PROMPT = """You are the Project Manager agent in TenderSwarm.
Your role is to break down client briefs into atomic micro-tasks.

CRITICAL BUDGET RULES:
- The total of ALL task rewards MUST NOT exceed the provided budget
- Divide the budget evenly across tasks
- NEVER create tasks with rewards that sum to more than the budget

Each task MUST:
- Be highly specific and independently executable
- Have a clear, measurable deliverable
- Include an appropriate MNEE reward (budget divided by number of tasks)
- Fit into one of the allowed categories

Balance the budget EXACTLY across all tasks."""


class ProposedTask(BaseModel):
    description: str = Field(min_length=1, description="A specific, actionable task description")
    reward: float = Field(ge=0, description="Proposed MNEE reward for this task")
    category: TaskCategory
    estimated_time: int = Field(default=120, ge=1, description="Estimated time in seconds")


class TaskBreakdown(BaseModel):
    tasks: list[ProposedTask] = Field(min_length=3, max_length=10)


# (description, category, estimated seconds); "{brief}" is filled in
FALLBACK_TEMPLATES: tuple[tuple[str, TaskCategory, int], ...] = (
    ("Conduct market research and competitive analysis for: {brief}", TaskCategory.RESEARCH, 180),
    ("Create visual design concepts and mockups", TaskCategory.DESIGN, 240),
    ("Write compelling copy and messaging framework", TaskCategory.COPYWRITING, 150),
    ("Develop strategic roadmap and milestones", TaskCategory.STRATEGY, 200),
    ("Plan marketing channels and campaign strategy", TaskCategory.MARKETING, 160),
    ("Outline technical architecture and requirements", TaskCategory.DEVELOPMENT, 220),
    ("Build financial projections and pricing model", TaskCategory.FINANCIAL_MODELING, 180),
    ("Analyze target audience and user personas", TaskCategory.RESEARCH, 140),
    ("Create brand guidelines and identity system", TaskCategory.DESIGN, 200),
    ("Draft executive summary and pitch deck outline", TaskCategory.COPYWRITING, 160),
)


def task_count_for(budget: float, max_tasks: int) -> int:
    return min(max(math.floor(budget), 3), max_tasks)


def fallback_tasks(brief: ClientBrief, count: int) -> list[ProposedTask]:
    """Template task list sized to count (cycling the templates past 10)."""
    reward = round(brief.budget / max(count, 1), 2)
    out = []
    for i in range(count):
        text, category, seconds = FALLBACK_TEMPLATES[i % len(FALLBACK_TEMPLATES)]
        out.append(ProposedTask(
            description=text.format(brief=brief.text[:50]),
            reward=reward,
            category=category,
            estimated_time=seconds,
        ))
    return out


class ProjectManager:
    def __init__(self, thinker: Thinker, rng: Optional[random.Random] = None) -> None:
        self.thinker = thinker
        self.rng = rng or random.Random()
        self.used_fallback = False

    def _prompt(self, brief: ClientBrief, count: int) -> str:
        categories = ", ".join(c.value for c in TaskCategory)
        return f"""Break down this client brief into exactly {count} micro-tasks:

"{brief.text}"

BUDGET: {brief.budget} MNEE total
NUMBER OF TASKS: {count}

Create diverse tasks across these categories: {categories}.
Make each task specific enough that a freelancer could complete it independently.
The total of all proposed rewards must not exceed {brief.budget} MNEE."""

    async def decompose(self, brief: ClientBrief, max_tasks: int, emit: Emit) -> list[MicroTask]:
        await emit(MessageEvent(self.thinker.message(
            f'Analyzing brief: "{brief.text[:80]}..."', MessageType.THINKING,
        )))
        count = task_count_for(brief.budget, max_tasks)

        self.used_fallback = False
        try:
            breakdown = await self.thinker.think_structured(
                self._prompt(brief, count), TaskBreakdown,
            )
            proposed = breakdown.tasks[:max_tasks]
        except (GenerationError, BudgetExceededError) as e:
            logger.warning(f"Decomposition failed ({e}); using template tasks")
            proposed = fallback_tasks(brief, count)
            self.used_fallback = True
            await emit(MessageEvent(self.thinker.message(
                "Task planner unavailable; using standard task templates",
                MessageType.WARNING, {"reason": str(e)},
            )))

        tasks = [
            MicroTask(
                id=new_id(f"task-{i}"),
                description=p.description,
                category=p.category,
                reward=calculate_task_reward(
                    p.description, p.category, brief.budget, len(proposed), self.rng,
                ),
                estimated_time=p.estimated_time,
                required_capabilities=infer_capabilities(p.category, p.description),
            )
            for i, p in enumerate(proposed)
        ]
        rescale_rewards(tasks, brief.budget)
        self.thinker.metrics.tasks_processed += len(tasks)

        categories = list(dict.fromkeys(t.category.value for t in tasks))
        total = sum(t.reward for t in tasks)
        await emit(MessageEvent(self.thinker.message(
            f"Created {len(tasks)} tasks totaling {total:.4f} MNEE. "
            f"Categories: {', '.join(categories)}",
            MessageType.SUCCESS,
            {"taskCount": len(tasks), "categories": categories, "fallback": self.used_fallback},
        )))
        return tasks
