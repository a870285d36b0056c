"""
Streaming event types for SwarmOrchestrator.run_streaming().

The event protocol is a closed union of six kinds. Every consumer handles all
six; event_to_frame() raises on anything else. Frames go over the wire as
newline-delimited JSON:

    {"type": "status", "data": {...}, "timestamp": "2026-01-01T00:00:00+00:00"}

Events flow through SwarmEventBus, an asyncio fan-out hub. Each subscriber
gets an independent async iterator over the stream.
"""
from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import AsyncIterator, Awaitable, Callable, ClassVar, Union

from .models import (
    AgentMessage, MicroTask, Payment, SwarmPhase, SwarmSummary, utcnow,
)


# ── Event dataclasses ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class StatusEvent:
    kind: ClassVar[str] = "status"
    phase: SwarmPhase
    progress: int
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class MessageEvent:
    kind: ClassVar[str] = "message"
    message: AgentMessage
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class TaskUpdateEvent:
    kind: ClassVar[str] = "task-update"
    task: MicroTask
    timestamp: datetime = field(default_factory=utcnow)

    @classmethod
    def snapshot(cls, task: MicroTask) -> "TaskUpdateEvent":
        """Freeze the task as it is now; later mutations must not rewrite history."""
        return cls(task=replace(task, required_capabilities=list(task.required_capabilities)))


@dataclass(frozen=True)
class PaymentEvent:
    kind: ClassVar[str] = "payment"
    payment: Payment
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class ErrorEvent:
    kind: ClassVar[str] = "error"
    error: str
    error_type: str = "SwarmError"
    cancelled: bool = False
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class CompleteEvent:
    kind: ClassVar[str] = "complete"
    summary: SwarmSummary
    timestamp: datetime = field(default_factory=utcnow)


SwarmEvent = Union[
    StatusEvent, MessageEvent, TaskUpdateEvent,
    PaymentEvent, ErrorEvent, CompleteEvent,
]

TERMINAL_EVENTS = (ErrorEvent, CompleteEvent)

Emit = Callable[[SwarmEvent], Awaitable[None]]


def is_terminal(event: SwarmEvent) -> bool:
    return isinstance(event, TERMINAL_EVENTS)


# ── Wire frames ───────────────────────────────────────────────────────────────

def event_to_frame(event: SwarmEvent) -> dict:
    if isinstance(event, StatusEvent):
        data = {"phase": event.phase.value, "progress": event.progress}
    elif isinstance(event, MessageEvent):
        data = event.message.to_dict()
    elif isinstance(event, TaskUpdateEvent):
        data = event.task.to_dict()
    elif isinstance(event, PaymentEvent):
        data = event.payment.to_dict()
    elif isinstance(event, ErrorEvent):
        data = {"error": event.error, "errorType": event.error_type,
                "cancelled": event.cancelled}
    elif isinstance(event, CompleteEvent):
        data = {"summary": event.summary.to_dict()}
    else:
        raise TypeError(f"Unknown event type: {type(event).__name__}")
    return {"type": event.kind, "data": data, "timestamp": event.timestamp.isoformat()}


def encode_frame(event: SwarmEvent) -> bytes:
    """One NDJSON line."""
    return (json.dumps(event_to_frame(event), default=str) + "\n").encode("utf-8")


# ── Event bus ─────────────────────────────────────────────────────────────────

_SENTINEL = object()   # marks end-of-stream


class SwarmEventBus:
    """
    Fan-out pub-sub hub. Each call to subscribe() returns an independent
    AsyncIterator that yields every event published after the subscription.
    Call close() to signal end-of-stream; publishing after close is a no-op.
    """

    def __init__(self) -> None:
        self._queues: list[asyncio.Queue] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self) -> AsyncIterator[SwarmEvent]:
        q: asyncio.Queue = asyncio.Queue()
        if self._closed:
            q.put_nowait(_SENTINEL)
        self._queues.append(q)
        return self._drain(q)

    async def _drain(self, q: asyncio.Queue) -> AsyncIterator[SwarmEvent]:
        while True:
            item = await q.get()
            if item is _SENTINEL:
                return
            yield item

    async def publish(self, event: SwarmEvent) -> None:
        if self._closed:
            return
        for q in self._queues:
            await q.put(event)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for q in self._queues:
            await q.put(_SENTINEL)
