"""
Assembly — accepted deliverables → section structure + one final document.

Both steps degrade deterministically: a one-section structure when the
structured call fails, and plain category-grouped concatenation when the
final synthesis call fails.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, Field

from .agent import Thinker
from .errors import BudgetExceededError, GenerationError
from .models import GeneratedDeliverable, MessageType
from .streaming import Emit, MessageEvent

logger = logging.getLogger("tenderswarm.assembler")

ASSEMBLER = "Assembler"

SYSTEM_PROMPT = """You are the Assembler agent in TenderSwarm.
Your role is to compile all accepted deliverables into a cohesive final output.
You organize deliverables by category and ensure professional presentation."""

EDITOR_PROMPT = ("You are an expert document editor and project manager. Create cohesive, "
                 "professional deliverable packages. Always include ALL provided content - "
                 "never truncate.")

EMPTY_DOCUMENT = "# Project Summary\n\nNo deliverables were generated for this project."


class Section(BaseModel):
    title: str
    description: str


class AssemblyStructure(BaseModel):
    sections: list[Section] = Field(default_factory=list)
    executive_summary_points: list[str] = Field(default_factory=list)


FALLBACK_STRUCTURE = AssemblyStructure(
    sections=[Section(title="Deliverables", description="All completed work")],
    executive_summary_points=["Project completed successfully"],
)


@dataclass
class AssemblyResult:
    structure: AssemblyStructure
    document: str
    tokens_used: int
    used_fallback_document: bool = False


def group_by_category(deliverables: list[GeneratedDeliverable]) -> dict[str, list[GeneratedDeliverable]]:
    groups: dict[str, list[GeneratedDeliverable]] = {}
    for d in deliverables:
        groups.setdefault(d.category.value, []).append(d)
    return groups


def concatenate(deliverables: list[GeneratedDeliverable], brief_text: str,
                structure: Optional[AssemblyStructure] = None) -> str:
    """Deterministic final document: summary points then every deliverable by category."""
    structure = structure or FALLBACK_STRUCTURE
    lines = ["# Project Deliverables", "", f"> {brief_text}", "", "## Executive Summary", ""]
    lines += [f"- {p}" for p in structure.executive_summary_points] or ["- Project completed"]
    for category, items in group_by_category(deliverables).items():
        lines += ["", f"## {category.upper()}"]
        for d in items:
            lines += ["", f"### {d.task_description}", "", d.content.strip()]
    return "\n".join(lines) + "\n"


class Assembler:
    def __init__(self, thinker: Thinker) -> None:
        self.thinker = thinker

    async def _structure(self, groups: dict[str, list], count: int,
                         brief_text: str) -> AssemblyStructure:
        prompt = f"""Analyze these deliverable categories for the brief: "{brief_text}"

Categories: {', '.join(groups) or 'None'}
Task count: {count}

Create a logical structure for the final package."""
        try:
            return await self.thinker.think_structured(prompt, AssemblyStructure)
        except (GenerationError, BudgetExceededError) as e:
            logger.warning(f"Structure generation failed ({e}); using one-section fallback")
            return FALLBACK_STRUCTURE

    def _document_prompt(self, groups: dict[str, list[GeneratedDeliverable]],
                         brief_text: str) -> str:
        blocks = []
        for category, items in groups.items():
            body = "\n".join(f"\n### {d.task_description}\n{d.content}\n" for d in items)
            blocks.append(f"\n## {category.upper()}\n{body}")
        image_note = ""
        if self.thinker.run_config.images_enabled:
            image_note = "6. Note where images have been generated to accompany sections\n"
        return f"""You are compiling a final project deliverable package.

ORIGINAL BRIEF: "{brief_text or 'No brief provided'}"

DELIVERABLES BY CATEGORY:
{''.join(blocks)}

Create a polished, executive-ready final document that:
1. Starts with an Executive Summary synthesizing all deliverables
2. Organizes the content logically by category
3. Adds transitions between sections
4. Ends with Next Steps and Recommendations
5. Uses professional markdown formatting throughout
{image_note}
IMPORTANT: Include ALL content from the deliverables above. Do not truncate or summarize - expand and integrate fully.

Output the complete assembled document."""

    async def assemble(self, deliverables: list[GeneratedDeliverable], brief_text: str,
                       emit: Emit) -> AssemblyResult:
        self.thinker.metrics.tasks_processed += len(deliverables)
        await emit(MessageEvent(self.thinker.message(
            f"Assembling {len(deliverables)} deliverables into final package...",
            MessageType.ACTION,
        )))
        if not deliverables:
            await emit(MessageEvent(self.thinker.message(
                "No accepted deliverables to assemble", MessageType.WARNING,
            )))
            return AssemblyResult(FALLBACK_STRUCTURE, EMPTY_DOCUMENT, 0)

        groups = group_by_category(deliverables)
        await emit(MessageEvent(self.thinker.message(
            "Organizing: " + ", ".join(f"{c} ({len(items)})" for c, items in groups.items()),
        )))

        structure = await self._structure(groups, len(deliverables), brief_text)
        await emit(MessageEvent(self.thinker.message(
            f"Structure defined: {len(structure.sections)} sections.", MessageType.SUCCESS,
        )))

        try:
            result = await self.thinker.think(
                self._document_prompt(groups, brief_text),
                max_tokens=self.thinker.run_config.assembly_tokens,
                system_prompt=EDITOR_PROMPT,
                temperature=0.5,
                description="Final document assembly",
                capped=False,
            )
            if not result.text.strip():
                raise GenerationError("empty final document")
            return AssemblyResult(structure, result.text, result.tokens_used)
        except (GenerationError, BudgetExceededError) as e:
            logger.warning(f"Final document synthesis failed ({e}); concatenating deliverables")
            await emit(MessageEvent(self.thinker.message(
                "Final synthesis unavailable; deliverables concatenated in category order",
                MessageType.WARNING, {"reason": str(e)},
            )))
            return AssemblyResult(structure, concatenate(deliverables, brief_text, structure),
                                  0, used_fallback_document=True)
