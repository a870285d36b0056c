"""
Terminal progress renderer for SwarmOrchestrator.run().

Prints compact phase, task and payment lines to stderr, leaving stdout clean
for piped output. Use quiet=True in tests or when --quiet CLI flag is set.
"""
from __future__ import annotations

import sys

from .models import MessageType, PaymentType, TaskStatus
from .streaming import (
    CompleteEvent, ErrorEvent, MessageEvent, PaymentEvent, StatusEvent, SwarmEvent,
    TaskUpdateEvent,
)

_STATUS_ICONS: dict[TaskStatus, str] = {
    TaskStatus.POSTED:      "·",
    TaskStatus.IN_PROGRESS: "→",
    TaskStatus.COMPLETED:   "✓",
    TaskStatus.ACCEPTED:    "★",
    TaskStatus.REJECTED:    "~",
    TaskStatus.FAILED:      "✗",
}

_MESSAGE_ICONS: dict[MessageType, str] = {
    MessageType.WARNING: "⚠ ",
    MessageType.ERROR:   "✗ ",
    MessageType.SUCCESS: "✓ ",
}


class ProgressRenderer:
    """
    Stateful event handler that prints live progress to stderr.
    Maintains counters so callers can inspect final state.
    """

    def __init__(self, quiet: bool = False, verbose: bool = False) -> None:
        self.quiet = quiet
        self.verbose = verbose
        self.phase: str = "idle"
        self.progress: int = 0
        self.accepted: int = 0
        self.rejected: int = 0
        self.failed: int = 0
        self.paid: float = 0.0
        self.refunded: float = 0.0
        self.terminal: str | None = None
        self._tasks: dict[str, TaskStatus] = {}

    def _print(self, line: str) -> None:
        if not self.quiet:
            print(line, file=sys.stderr)

    def handle(self, event: SwarmEvent) -> None:
        if isinstance(event, StatusEvent):
            if event.phase.value != self.phase:
                self._print(f"\n▶  {event.phase.value.upper()}  {event.progress}%")
            self.phase = event.phase.value
            self.progress = event.progress
        elif isinstance(event, MessageEvent):
            msg = event.message
            if self.verbose or msg.type in _MESSAGE_ICONS:
                self._print(f"   {_MESSAGE_ICONS.get(msg.type, '')}[{msg.agent}] {msg.message}")
        elif isinstance(event, TaskUpdateEvent):
            task = event.task
            if self._tasks.get(task.id) is task.status:
                return
            self._tasks[task.id] = task.status
            if task.status is TaskStatus.ACCEPTED:
                self.accepted += 1
            elif task.status is TaskStatus.REJECTED:
                self.rejected += 1
            elif task.status is TaskStatus.FAILED:
                self.failed += 1
            if task.status is not TaskStatus.PENDING:
                icon = _STATUS_ICONS.get(task.status, "?")
                self._print(f"   {icon} {task.id}  [{task.category.value}]  {task.status.value}")
        elif isinstance(event, PaymentEvent):
            p = event.payment
            if p.payment_type is PaymentType.REFUND:
                self.refunded += p.amount
                self._print(f"   ↩ refund {p.amount:.4f} MNEE → {p.recipient}")
            else:
                self.paid += p.amount
                tag = " (simulated)" if p.simulated else ""
                self._print(f"   $ {p.amount:.4f} MNEE → {p.provider_name or p.recipient}"
                            f"  {p.tx_hash[:12]}…{tag}")
        elif isinstance(event, ErrorEvent):
            self.terminal = "cancelled" if event.cancelled else "error"
            self._print(f"\n✗ Run {self.terminal}: [{event.error_type}] {event.error}")
        elif isinstance(event, CompleteEvent):
            self.terminal = "complete"
            s = event.summary
            marker = "~" if s.terminated_early else "✓"
            self._print(
                f"\n{marker} Run complete  {s.completed_tasks}/{s.total_tasks} accepted  "
                f"spent {s.total_spent:.4f}  refund {s.refund_amount:.4f} MNEE  "
                f"{s.execution_time:.0f}s"
            )
        else:
            raise TypeError(f"Unknown event type: {type(event).__name__}")

    def summary(self) -> str:
        return (
            f"{self.accepted} accepted, {self.rejected} rejected, {self.failed} failed, "
            f"{self.paid:.4f} MNEE paid, {self.refunded:.4f} MNEE refunded"
        )
