"""
Tender posting — batches tasks, assigns tender ids, pending → posted.

Batching and the inter-batch delay model on-chain confirmation; the delay is
cosmetic and defaults to zero.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
import time
from typing import Iterator, Optional

from .agent import Thinker
from .models import MessageType, MicroTask, TaskStatus
from .streaming import Emit, MessageEvent, TaskUpdateEvent

logger = logging.getLogger("tenderswarm.tender_poster")

TENDER_POSTER = "Tender Poster"
BATCH_SIZE = 5

SYSTEM_PROMPT = """You are the Tender Poster agent in TenderSwarm.
Your role is to efficiently post micro-tasks as tenders.
You batch tasks for gas optimization and provide clear status updates."""


def batched(tasks: list[MicroTask], size: int = BATCH_SIZE) -> list[list[MicroTask]]:
    return [tasks[i:i + size] for i in range(0, len(tasks), size)]


def short_address(address: str) -> str:
    if len(address) <= 10:
        return address
    return f"{address[:6]}...{address[-4:]}"


class TenderPoster:
    def __init__(self, thinker: Thinker, delay: float = 0.0,
                 tender_ids: Optional[Iterator[int]] = None) -> None:
        self.thinker = thinker
        self.delay = delay
        self._ids = tender_ids or itertools.count(int(time.time() * 1000))

    async def post(self, tasks: list[MicroTask], contract_address: str,
                   emit: Emit) -> list[MicroTask]:
        batches = batched(tasks)
        await emit(MessageEvent(self.thinker.message(
            f"Preparing {len(tasks)} tenders for posting to {short_address(contract_address)}",
            MessageType.ACTION,
        )))
        await emit(MessageEvent(self.thinker.message(
            f"Optimizing gas: {len(batches)} batches of up to {BATCH_SIZE} tenders each",
        )))

        for n, batch in enumerate(batches, start=1):
            await emit(MessageEvent(self.thinker.message(
                f"Posting batch {n}/{len(batches)}...", MessageType.ACTION,
            )))
            for task in batch:
                task.tender_id = next(self._ids)
                task.status = TaskStatus.POSTED
                self.thinker.metrics.tasks_processed += 1
                await emit(TaskUpdateEvent.snapshot(task))
            await emit(MessageEvent(self.thinker.message(
                f"Batch {n} confirmed: {len(batch)} tenders live", MessageType.SUCCESS,
                {"batch": n, "tenders": [t.tender_id for t in batch]},
            )))
            if self.delay and n < len(batches):
                await asyncio.sleep(self.delay)

        total = sum(t.reward for t in tasks)
        await emit(MessageEvent(self.thinker.message(
            f"All {len(tasks)} tenders posted! Total value: {total:.4f} MNEE. "
            "Provider network notified.",
            MessageType.SUCCESS, {"totalTenders": len(tasks), "totalReward": total},
        )))
        logger.info(f"Posted {len(tasks)} tenders in {len(batches)} batch(es)")
        return tasks
