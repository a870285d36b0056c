"""
Evaluation — score each deliverable, accept or reject, pay accepted providers.

Two scoring paths share one verdict contract (accept, score, reasoning):

  llm        structured call; the model decides acceptance
  heuristic  length/structure markers, accept at score >= 60

A failed evaluator call auto-accepts at score 75 with a note. Providers are
paid the task's reward. A failed transfer still yields exactly one Payment,
carrying an 0xERROR… marker, plus a warning message.
"""
from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Optional

from pydantic import BaseModel, Field

from .agent import Thinker
from .errors import BudgetExceededError, GenerationError, PaymentError
from .models import (
    GeneratedDeliverable, MessageType, MicroTask, Payment, PaymentType, TaskStatus,
)
from .payments import (
    ERROR_PREFIX, PaymentGateway, is_marked, marked_tx_hash,
)
from .streaming import Emit, MessageEvent, PaymentEvent, TaskUpdateEvent

logger = logging.getLogger("tenderswarm.evaluator")

EVALUATOR = "Evaluator"
HEURISTIC_THRESHOLD = 60
FALLBACK_SCORE = 75
PREVIEW_CHARS = 500

SYSTEM_PROMPT = """You are the Evaluator agent in TenderSwarm.
Your role is to assess provider submissions for quality and completeness.

Evaluate based on:
1. Completeness - Does it fulfill the task requirements?
2. Quality - Is it production-ready and professional?
3. Relevance - Does it match the original task description?
4. Depth - Is there sufficient detail and actionable content?

Be thorough but fair. Accept submissions that meet professional standards."""


class EvaluationVerdict(BaseModel):
    accept: bool
    score: float = Field(ge=0, le=100)
    reasoning: str = Field(description="Brief explanation of the decision")
    quality_notes: str = Field(default="", description="Specific notes on content quality")


def heuristic_verdict(deliverable: GeneratedDeliverable) -> EvaluationVerdict:
    content = deliverable.content
    score = 50
    if len(content) > 500:
        score += 15
    if len(content) > 1000:
        score += 10
    has_headers = "#" in content
    has_bullets = "-" in content or "*" in content
    if has_headers:
        score += 10
    if has_bullets:
        score += 10
    if deliverable.image is not None:
        score += 5
    accept = score >= HEURISTIC_THRESHOLD
    return EvaluationVerdict(
        accept=accept,
        score=score,
        reasoning=(f"{len(content)} chars, headers={has_headers}, bullets={has_bullets}"),
        quality_notes="heuristic",
    )


def fallback_verdict(reason: str) -> EvaluationVerdict:
    return EvaluationVerdict(
        accept=True,
        score=FALLBACK_SCORE,
        reasoning=f"Auto-accepted due to evaluation error: {reason}",
        quality_notes="N/A",
    )


@dataclass
class EvaluationOutcome:
    accepted: int = 0
    rejected: int = 0
    payments: list[Payment] = field(default_factory=list)
    verdicts: dict[str, EvaluationVerdict] = field(default_factory=dict)
    providers: set[str] = field(default_factory=set)

    @property
    def total_paid(self) -> float:
        return sum(p.amount for p in self.payments)


class Evaluator:
    def __init__(self, thinker: Thinker, gateway: Optional[PaymentGateway],
                 rng: Optional[random.Random] = None) -> None:
        self.thinker = thinker
        self.gateway = gateway
        self.rng = rng or random.Random()

    async def _verdict(self, task: MicroTask,
                       deliverable: GeneratedDeliverable,
                       emit: Emit) -> EvaluationVerdict:
        if self.thinker.run_config.evaluation_mode == "heuristic":
            return heuristic_verdict(deliverable)
        prompt = f"""Evaluate this submission:

TASK: "{task.description}"
CATEGORY: {task.category.value}
PROVIDER: {deliverable.provider_name}

CONTENT PREVIEW:
{deliverable.content[:PREVIEW_CHARS] or 'No content available'}

Score the quality (0-100) and decide whether to accept.
Consider: completeness, professionalism, relevance, and actionable detail."""
        try:
            return await self.thinker.think_structured(prompt, EvaluationVerdict)
        except (GenerationError, BudgetExceededError) as e:
            logger.warning(f"Evaluator call failed for {task.id}: {e}; auto-accepting")
            await emit(MessageEvent(self.thinker.message(
                f"Evaluator unavailable for {task.id}; auto-accepted at {FALLBACK_SCORE}/100",
                MessageType.WARNING, {"taskId": task.id, "reason": str(e)},
            )))
            return fallback_verdict(str(e))

    async def _pay(self, task: MicroTask, deliverable: GeneratedDeliverable,
                   user_address: Optional[str], emit: Emit) -> tuple[str, bool]:
        """Returns (tx_hash, simulated)."""
        amount = task.reward
        recipient = deliverable.provider
        try:
            if self.gateway is None:
                raise PaymentError("No payment gateway configured")
            if not user_address:
                raise PaymentError("User address not available")
            result = await self.gateway.transfer_mnee(user_address, recipient, amount)
            if not result.success:
                raise PaymentError("Transaction failed")
        except Exception as e:
            logger.error(f"Payment to {recipient} for {task.id} failed: {e}")
            await emit(MessageEvent(self.thinker.message(
                f"Payment failed: {e}. Recorded with a marked transaction reference.",
                MessageType.WARNING, {"taskId": task.id},
            )))
            return marked_tx_hash(ERROR_PREFIX, self.rng), True

        simulated = self.thinker.run_config.demo or is_marked(result.hash)
        if not simulated:
            await emit(MessageEvent(self.thinker.message(
                f"MNEE payment confirmed: {result.hash[:10]}...", MessageType.SUCCESS,
                {"txHash": result.hash},
            )))
        return result.hash, simulated

    async def evaluate(self, tasks: list[MicroTask],
                       deliverables: list[GeneratedDeliverable],
                       emit: Emit, user_address: Optional[str] = None) -> EvaluationOutcome:
        cfg = self.thinker.run_config
        by_id = {t.id: t for t in tasks}
        outcome = EvaluationOutcome()
        mode = "Demo mode" if cfg.demo else "Live payments"
        await emit(MessageEvent(self.thinker.message(
            f"Evaluating {len(deliverables)} submissions ({cfg.evaluation_mode}, {mode})",
            MessageType.THINKING,
        )))

        for i, deliverable in enumerate(deliverables):
            task = by_id.get(deliverable.task_id)
            if task is None:
                logger.error(f"Deliverable for unknown task {deliverable.task_id}; skipped")
                continue
            self.thinker.ensure_active()
            self.thinker.metrics.tasks_processed += 1
            verdict = await self._verdict(task, deliverable, emit)
            outcome.verdicts[task.id] = verdict

            if verdict.accept:
                tx_hash, simulated = await self._pay(task, deliverable, user_address, emit)
                payment = Payment(
                    tender_id=task.tender_id,
                    task_id=task.id,
                    amount=task.reward,
                    recipient=deliverable.provider,
                    provider_name=deliverable.provider_name,
                    tx_hash=tx_hash,
                    payment_type=PaymentType.PROVIDER,
                    simulated=simulated,
                )
                outcome.payments.append(payment)
                outcome.accepted += 1
                outcome.providers.add(deliverable.provider_name)
                await emit(PaymentEvent(payment))

                task.status = TaskStatus.ACCEPTED
                task.provider = deliverable.provider
                task.provider_name = deliverable.provider_name
                await emit(TaskUpdateEvent.snapshot(task))
                await emit(MessageEvent(self.thinker.message(
                    f"Accepted from {deliverable.provider_name}: score {verdict.score:.0f}/100 "
                    f"→ {task.reward:.4f} MNEE",
                    MessageType.SUCCESS,
                    {"score": verdict.score, "taskId": task.id, "quality": verdict.quality_notes},
                )))
            else:
                outcome.rejected += 1
                task.status = TaskStatus.REJECTED
                await emit(TaskUpdateEvent.snapshot(task))
                await emit(MessageEvent(self.thinker.message(
                    f"Rejected from {deliverable.provider_name}: {verdict.reasoning}",
                    MessageType.WARNING, {"score": verdict.score, "taskId": task.id},
                )))

            if cfg.evaluation_delay and i < len(deliverables) - 1:
                await asyncio.sleep(cfg.evaluation_delay)

        kind = "simulated" if cfg.demo else "live transactions"
        await emit(MessageEvent(self.thinker.message(
            f"Evaluation complete: {outcome.accepted} accepted, {outcome.rejected} rejected. "
            f"Provider payments: {outcome.total_paid:.4f} MNEE ({kind})",
            MessageType.SUCCESS,
            {"accepted": outcome.accepted, "rejected": outcome.rejected,
             "totalPaid": outcome.total_paid},
        )))
        return outcome
