"""
Swarm Engine — the run control loop
===================================
One run drives a client brief through

    initializing → decomposing → tendering → generating
                 → evaluating → assembling → complete

Every run builds its own CostTracker, RunConfig and agent set, so nothing
leaks between runs and several runs can share one SwarmOrchestrator.

Event contract: status progress never decreases, and every run ends with
exactly one terminal event (complete or error), after which nothing else is
emitted. Cancellation is observed between costed operations and ends the
run with an error event flagged cancelled.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import math
import random
import time
from dataclasses import dataclass, field
from functools import partial
from typing import AsyncIterator, Awaitable, Callable, Optional, Union

from .agent import CancelSignal, Thinker
from .api_clients import GenerationClient
from .assembler import ASSEMBLER, SYSTEM_PROMPT as ASSEMBLER_PROMPT, Assembler, AssemblyResult
from .config import RunConfig, Settings
from .content_generator import (
    CONTENT_GENERATOR, SYSTEM_PROMPT as GENERATOR_PROMPT, ContentGenerator,
)
from .coordinator import COORDINATOR, SYSTEM_PROMPT as COORDINATOR_PROMPT, Coordinator
from .cost import CostTracker
from .decomposer import PROJECT_MANAGER, SYSTEM_PROMPT as PM_PROMPT, ProjectManager
from .errors import BudgetExceededError, GenerationError, SwarmCancelledError
from .evaluator import EVALUATOR, SYSTEM_PROMPT as EVALUATOR_PROMPT, Evaluator
from .models import (
    AgentWorkMetrics, ClientBrief, CostBreakdown, GeneratedDeliverable, GeneratedImage,
    MessageType, MicroTask, Payment, PaymentType, SwarmPhase, SwarmSummary, TaskStatus, new_id,
)
from .payments import (
    DEMO_PAYER, DEMO_PREFIX, ZERO_ADDRESS, PaymentGateway, SimulatedPaymentGateway,
    marked_tx_hash,
)
from .pricing import attribute_agent_costs
from .streaming import (
    CompleteEvent, ErrorEvent, MessageEvent, PaymentEvent, StatusEvent, SwarmEvent,
    SwarmEventBus, TaskUpdateEvent, is_terminal,
)
from .tender_poster import SYSTEM_PROMPT as POSTER_PROMPT, TENDER_POSTER, TenderPoster
from .tiers import determine_tier, select_image_tasks
from .tracing import traced_phase

logger = logging.getLogger("tenderswarm")

EventCallback = Callable[[SwarmEvent], Union[None, Awaitable[None]]]

PREVIEW_CHARS = 200
REFUND_TX = "refund-internal"

# progress % at the start and end of each phase
PHASE_PROGRESS: dict[SwarmPhase, tuple[int, int]] = {
    SwarmPhase.INITIALIZING: (5, 5),
    SwarmPhase.DECOMPOSING: (15, 30),
    SwarmPhase.TENDERING: (35, 40),
    SwarmPhase.GENERATING: (45, 70),
    SwarmPhase.EVALUATING: (72, 85),
    SwarmPhase.ASSEMBLING: (88, 95),
    SwarmPhase.COMPLETE: (95, 100),
}


@dataclass
class _Run:
    """Mutable state of one execution. Never shared between runs."""
    run_id: str
    brief: ClientBrief
    config: RunConfig
    tracker: CostTracker
    on_event: Optional[EventCallback]
    progress: int = 0
    finished: bool = False
    terminated_early: bool = False
    tasks: list[MicroTask] = field(default_factory=list)
    deliverables: list[GeneratedDeliverable] = field(default_factory=list)
    images: list[GeneratedImage] = field(default_factory=list)
    payments: list[Payment] = field(default_factory=list)
    started: float = field(default_factory=time.monotonic)


@dataclass
class _Agents:
    coordinator: Coordinator
    manager: ProjectManager
    poster: TenderPoster
    generator: ContentGenerator
    evaluator: Evaluator
    assembler: Assembler

    def work_metrics(self) -> dict[str, AgentWorkMetrics]:
        stages = (self.coordinator, self.manager, self.poster, self.generator,
                  self.evaluator, self.assembler)
        return {s.thinker.name: s.thinker.metrics for s in stages}


class SwarmOrchestrator:
    """
    Runs the swarm pipeline.

    Usage:
        orch = SwarmOrchestrator(UnifiedClient())
        summary = await orch.run(ClientBrief("Launch plan for a coffee brand", 0.8))
    """

    def __init__(self, client: GenerationClient,
                 payment_gateway: Optional[PaymentGateway] = None,
                 settings: Optional[Settings] = None,
                 rng: Optional[random.Random] = None) -> None:
        self.client = client
        self.payment_gateway = payment_gateway
        self.settings = settings or Settings()
        self.rng = rng or random.Random()

    # ── per-run wiring ──────────────────────────────────────────────────────

    def _build_agents(self, run: _Run, demo: bool,
                      cancel_event: Optional[CancelSignal]) -> _Agents:
        def thinker(name: str, prompt: str) -> Thinker:
            return Thinker(name, prompt, self.client, run.tracker, run.config, cancel_event)

        # demo runs never touch a real gateway
        gateway = (SimulatedPaymentGateway(rng=self.rng) if demo
                   else self.payment_gateway)
        return _Agents(
            coordinator=Coordinator(thinker(COORDINATOR, COORDINATOR_PROMPT)),
            manager=ProjectManager(thinker(PROJECT_MANAGER, PM_PROMPT), self.rng),
            poster=TenderPoster(thinker(TENDER_POSTER, POSTER_PROMPT),
                                delay=run.config.tender_delay),
            generator=ContentGenerator(thinker(CONTENT_GENERATOR, GENERATOR_PROMPT),
                                       run.brief.budget, self.rng),
            evaluator=Evaluator(thinker(EVALUATOR, EVALUATOR_PROMPT), gateway, self.rng),
            assembler=Assembler(thinker(ASSEMBLER, ASSEMBLER_PROMPT)),
        )

    # ── event plumbing ──────────────────────────────────────────────────────

    async def _emit(self, run: _Run, event: SwarmEvent) -> None:
        if run.finished:
            logger.debug(f"[{run.run_id}] dropped {event.kind} event after terminal event")
            return
        if is_terminal(event):
            run.finished = True
        if run.on_event is None:
            return
        result = run.on_event(event)
        if inspect.isawaitable(result):
            await result

    async def _status(self, run: _Run, phase: SwarmPhase, progress: int) -> None:
        run.progress = max(run.progress, progress)
        await self._emit(run, StatusEvent(phase=phase, progress=run.progress))

    async def _say(self, run: _Run, agents: _Agents, text: str,
                   type: MessageType = MessageType.INFO, **metadata) -> None:
        await self._emit(run, MessageEvent(agents.coordinator.say(text, type, **metadata)))

    async def _enter(self, run: _Run, agents: _Agents, phase: SwarmPhase,
                     details: str = "") -> None:
        agents.coordinator.thinker.ensure_active()
        await self._status(run, phase, PHASE_PROGRESS[phase][0])
        await self._emit(run, MessageEvent(agents.coordinator.announce(phase, details)))

    # ── public API ──────────────────────────────────────────────────────────

    async def run(self, brief: ClientBrief, on_event: Optional[EventCallback] = None,
                  demo_mode: bool = False, user_address: Optional[str] = None,
                  contract_address: str = ZERO_ADDRESS,
                  cancel_event: Optional[CancelSignal] = None,
                  run_id: Optional[str] = None) -> SwarmSummary:
        """
        Execute one run and return its summary.

        on_event may be a plain or async callable. Whatever happens, it sees
        exactly one terminal event. Failures are re-raised after the error
        event has been delivered.
        """
        tier = determine_tier(brief.budget)
        run = _Run(
            run_id=run_id or new_id("swarm"),
            brief=brief,
            config=RunConfig.build(tier, demo_mode, self.settings),
            tracker=CostTracker(max(brief.budget, 0.0)),
            on_event=on_event,
        )
        logger.info(f"[{run.run_id}] starting: tier={tier.tier} budget={brief.budget} "
                    f"demo={demo_mode}")
        try:
            if not brief.text.strip():
                raise ValueError("Brief text must not be empty")
            if brief.budget <= 0:
                raise ValueError(f"Budget must be positive, got {brief.budget}")
            agents = self._build_agents(run, demo_mode, cancel_event)
            return await self._execute(run, agents, demo_mode, user_address, contract_address)
        except SwarmCancelledError as e:
            logger.warning(f"[{run.run_id}] cancelled")
            await self._emit(run, ErrorEvent(error=str(e) or "Run cancelled",
                                             error_type=type(e).__name__, cancelled=True))
            raise
        except asyncio.CancelledError:
            logger.warning(f"[{run.run_id}] task cancelled")
            await self._emit(run, ErrorEvent(error="Run cancelled",
                                             error_type="SwarmCancelledError", cancelled=True))
            raise
        except Exception as e:
            logger.error(f"[{run.run_id}] failed: {type(e).__name__}: {e}")
            await self._emit(run, ErrorEvent(error=str(e), error_type=type(e).__name__))
            raise

    async def run_streaming(self, brief: ClientBrief, demo_mode: bool = False,
                            user_address: Optional[str] = None,
                            contract_address: str = ZERO_ADDRESS,
                            cancel_event: Optional[asyncio.Event] = None,
                            run_id: Optional[str] = None) -> AsyncIterator[SwarmEvent]:
        """
        Same as run(), but yields every event as it happens.

        The stream ends right after the terminal event; failures arrive as an
        ErrorEvent rather than an exception. Closing the iterator early sets
        the cancel signal and waits for the run to wind down.

        Usage:
            async for event in orch.run_streaming(brief, demo_mode=True):
                if isinstance(event, StatusEvent):
                    print(event.phase, event.progress)
        """
        cancel_event = cancel_event or asyncio.Event()
        bus = SwarmEventBus()
        subscription = bus.subscribe()

        async def _run() -> None:
            try:
                await self.run(brief, on_event=bus.publish, demo_mode=demo_mode,
                               user_address=user_address, contract_address=contract_address,
                               cancel_event=cancel_event, run_id=run_id)
            except Exception as e:
                # already delivered as the terminal ErrorEvent
                logger.debug(f"streamed run ended with {type(e).__name__}")
            finally:
                await bus.close()

        task = asyncio.create_task(_run())
        try:
            async for event in subscription:
                yield event
        finally:
            if not task.done():
                cancel_event.set()
            await task

    # ── pipeline ────────────────────────────────────────────────────────────

    async def _execute(self, run: _Run, agents: _Agents, demo: bool,
                       user_address: Optional[str], contract_address: str) -> SwarmSummary:
        cfg = run.config
        tracker = run.tracker

        with traced_phase(run.run_id, SwarmPhase.INITIALIZING.value):
            await self._enter(run, agents, SwarmPhase.INITIALIZING)
            mode = "DEMO MODE (simulated payments, capped tokens)" if demo else "LIVE MODE"
            await self._say(run, agents, f"Running in {mode}",
                            MessageType.WARNING if demo else MessageType.INFO, demo=demo)
            await self._say(
                run, agents,
                f"{cfg.tier.tier.upper()} tier: up to {cfg.tier.max_tasks} tasks, "
                f"{cfg.tier.content_depth} depth, model {cfg.content_model.value}"
                + (f", up to {cfg.tier.max_images} images" if cfg.images_enabled else ""),
                tier=cfg.tier.to_dict(),
            )

        with traced_phase(run.run_id, SwarmPhase.DECOMPOSING.value):
            await self._enter(run, agents, SwarmPhase.DECOMPOSING)
            if tracker.should_terminate_early():
                raise BudgetExceededError(
                    f"Budget of {run.brief.budget} MNEE cannot cover any work",
                    current_spend=tracker.get_total_spent(),
                    limit=tracker.effective_limit,
                )
            run.tasks = await agents.manager.decompose(
                run.brief, cfg.tier.max_tasks, partial(self._emit, run),
            )
            for task in run.tasks:
                await self._emit(run, TaskUpdateEvent.snapshot(task))
            await self._status(run, SwarmPhase.DECOMPOSING, PHASE_PROGRESS[SwarmPhase.DECOMPOSING][1])

        with traced_phase(run.run_id, SwarmPhase.TENDERING.value):
            await self._enter(run, agents, SwarmPhase.TENDERING)
            await agents.poster.post(run.tasks, contract_address, partial(self._emit, run))
            await self._status(run, SwarmPhase.TENDERING, PHASE_PROGRESS[SwarmPhase.TENDERING][1])

        with traced_phase(run.run_id, SwarmPhase.GENERATING.value):
            await self._enter(run, agents, SwarmPhase.GENERATING,
                              f"{len(run.tasks)} tasks in the queue.")
            await self._generate_all(run, agents)
            await self._status(run, SwarmPhase.GENERATING, PHASE_PROGRESS[SwarmPhase.GENERATING][1])

        payer = user_address or (DEMO_PAYER if demo else None)
        with traced_phase(run.run_id, SwarmPhase.EVALUATING.value):
            await self._enter(run, agents, SwarmPhase.EVALUATING)
            outcome = await agents.evaluator.evaluate(
                run.tasks, run.deliverables, partial(self._emit, run), payer,
            )
            run.payments.extend(outcome.payments)
            await self._status(run, SwarmPhase.EVALUATING, PHASE_PROGRESS[SwarmPhase.EVALUATING][1])

        accepted_ids = {t.id for t in run.tasks if t.status is TaskStatus.ACCEPTED}
        accepted = [d for d in run.deliverables if d.task_id in accepted_ids]
        with traced_phase(run.run_id, SwarmPhase.ASSEMBLING.value):
            await self._enter(run, agents, SwarmPhase.ASSEMBLING)
            assembly = await agents.assembler.assemble(
                accepted, run.brief.text, partial(self._emit, run),
            )
            await self._status(run, SwarmPhase.ASSEMBLING, PHASE_PROGRESS[SwarmPhase.ASSEMBLING][1])

        with traced_phase(run.run_id, SwarmPhase.COMPLETE.value):
            await self._status(run, SwarmPhase.COMPLETE, PHASE_PROGRESS[SwarmPhase.COMPLETE][0])
            await self._say(run, agents, "Finalizing results and calculating refund...",
                            MessageType.ACTION)
            breakdown = tracker.get_cost_breakdown()
            if breakdown.refund_amount > 0:
                refund = Payment(
                    tender_id=None,
                    amount=breakdown.refund_amount,
                    recipient=user_address or "user",
                    tx_hash=marked_tx_hash(DEMO_PREFIX, self.rng) if demo else REFUND_TX,
                    payment_type=PaymentType.REFUND,
                    simulated=demo,
                )
                await self._emit(run, PaymentEvent(refund))
                await self._say(run, agents,
                                f"Refunding {breakdown.refund_amount:.4f} MNEE of unused budget",
                                MessageType.SUCCESS, refund=breakdown.refund_amount)

            summary = self._summarize(run, breakdown, outcome.total_paid,
                                      len(outcome.providers), assembly,
                                      agents.work_metrics())
            await self._status(run, SwarmPhase.COMPLETE, PHASE_PROGRESS[SwarmPhase.COMPLETE][1])
            await self._emit(run, MessageEvent(agents.coordinator.announce(
                SwarmPhase.COMPLETE,
                f"{summary.completed_tasks}/{summary.total_tasks} tasks accepted, "
                f"{summary.total_spent:.4f} MNEE spent, {summary.refund_amount:.4f} MNEE refunded.",
            )))
            await self._emit(run, CompleteEvent(summary))

        logger.info(f"[{run.run_id}] complete: {summary.completed_tasks}/{summary.total_tasks} "
                    f"accepted, spent {summary.total_spent:.4f}, "
                    f"refund {summary.refund_amount:.4f}")
        return summary

    async def _generate_all(self, run: _Run, agents: _Agents) -> None:
        """Sequential per-task generation with early termination on budget exhaustion."""
        image_prompts = select_image_tasks(run.tasks, run.config.tier)
        total = len(run.tasks)
        done = 0
        emit = partial(self._emit, run)

        for task in run.tasks:
            agents.coordinator.thinker.ensure_active()
            if run.tracker.should_terminate_early():
                run.terminated_early = True
                logger.warning(f"[{run.run_id}] budget exhausted; stopping generation")
                await self._say(
                    run, agents,
                    "Budget nearly exhausted. Stopping generation to protect remaining funds.",
                    MessageType.WARNING, remaining=run.tracker.get_remaining_budget(),
                )
                break

            task.status = TaskStatus.IN_PROGRESS
            await emit(TaskUpdateEvent.snapshot(task))
            await emit(MessageEvent(agents.generator.thinker.message(
                f"Working on: {task.description[:60]}", MessageType.ACTION, {"taskId": task.id},
            )))
            try:
                deliverable = await agents.generator.generate(
                    task, run.brief.text, image_prompts.get(task.id),
                )
            except (GenerationError, BudgetExceededError) as e:
                task.status = TaskStatus.FAILED
                await emit(TaskUpdateEvent.snapshot(task))
                await emit(MessageEvent(agents.generator.thinker.message(
                    f"Generation failed for {task.id}: {e}", MessageType.ERROR,
                    {"taskId": task.id},
                )))
                if isinstance(e, BudgetExceededError):
                    run.terminated_early = True
                    logger.warning(f"[{run.run_id}] budget ceiling reached at {task.id}")
                    break
                continue

            run.deliverables.append(deliverable)
            if deliverable.image is not None:
                run.images.append(deliverable.image)
            task.status = TaskStatus.COMPLETED
            task.provider = deliverable.provider
            task.provider_name = deliverable.provider_name
            task.deliverable_ref = f"deliverable://{run.run_id}/{task.id}"
            task.result_preview = deliverable.content[:PREVIEW_CHARS]
            await emit(TaskUpdateEvent.snapshot(task))
            done += 1
            await emit(MessageEvent(agents.generator.thinker.message(
                f"Delivered by {deliverable.provider_name} "
                f"({deliverable.tokens_used} tokens"
                + (", 1 image" if deliverable.image else "") + ")",
                MessageType.SUCCESS, {"taskId": task.id},
            )))
            start, end = PHASE_PROGRESS[SwarmPhase.GENERATING]
            await self._status(run, SwarmPhase.GENERATING,
                               start + math.floor(done / total * (end - start)))

    def _summarize(self, run: _Run, breakdown: CostBreakdown, provider_total: float,
                   providers_used: int, assembly: AssemblyResult,
                   work: dict[str, AgentWorkMetrics]) -> SwarmSummary:
        statuses = [t.status for t in run.tasks]
        cost_breakdown = breakdown.to_dict()
        cost_breakdown["providerPayments"] = provider_total
        return SwarmSummary(
            run_id=run.run_id,
            total_tasks=len(run.tasks),
            completed_tasks=statuses.count(TaskStatus.ACCEPTED),
            failed_tasks=statuses.count(TaskStatus.FAILED),
            rejected_tasks=statuses.count(TaskStatus.REJECTED),
            total_spent=breakdown.total_spent,
            original_budget=breakdown.original_budget,
            refund_amount=breakdown.refund_amount,
            tier=run.config.tier.tier,
            cost_breakdown=cost_breakdown,
            providers_used=providers_used,
            execution_time=round(time.monotonic() - run.started, 3),
            agent_payments=attribute_agent_costs(run.tracker.get_entries(), work),
            provider_payments=list(run.payments),
            final_deliverable=assembly.document,
            structure=assembly.structure.model_dump(),
            deliverables=list(run.deliverables),
            generated_images=list(run.images),
            generated_videos=[],
            terminated_early=run.terminated_early,
        )
