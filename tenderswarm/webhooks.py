"""
External trigger queue — chain-activity webhooks → polling consumers.

A webhook sender POSTs activity payloads; a poller drains them. The queue is
owned by one app instance, in memory only, and delivers each entry at most
once.
"""
from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Any

from .models import utcnow

logger = logging.getLogger("tenderswarm.webhooks")

ACTIVITY_TYPE = "ADDRESS_ACTIVITY"


def is_activity_payload(body: Any) -> bool:
    """Address-activity notifications, or custom events carrying activity or logs."""
    if not isinstance(body, dict):
        return False
    if body.get("type") != ACTIVITY_TYPE and not body.get("event"):
        return False
    event = body.get("event") or body
    if not isinstance(event, dict):
        return False
    return bool(event.get("activity") or event.get("logs"))


class TenderEventQueue:
    """Thread-safe FIFO of pending tender events."""

    def __init__(self) -> None:
        self._pending: deque[dict] = deque()
        self._lock = threading.Lock()

    def push(self, body: Any) -> bool:
        """Queue body if it carries activity. Returns whether it was queued."""
        if not is_activity_payload(body):
            logger.debug("Ignoring webhook payload without activity")
            return False
        with self._lock:
            self._pending.append({"timestamp": utcnow().isoformat(), "data": body})
            pending = len(self._pending)
        logger.info(f"Tender event queued: {pending} pending")
        return True

    def drain(self) -> list[dict]:
        """Return every pending entry and clear the queue."""
        with self._lock:
            batch = list(self._pending)
            self._pending.clear()
        return batch

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)
