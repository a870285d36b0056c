"""
Result Persistence — async SQLite store for completed runs
==========================================================
One JSON blob per run: the summary plus the task, message and payment
history seen on the event stream. Runs are written once, after their
terminal event, and read back by the HTTP surface and the CLI.

Serialization: JSON (not pickle), safe for untrusted DB files and
grep-able for debugging.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Optional

import aiosqlite

from .config import DEFAULT_RESULTS_PATH
from .streaming import (
    CompleteEvent, ErrorEvent, MessageEvent, PaymentEvent, StatusEvent, SwarmEvent,
    TaskUpdateEvent,
)

logger = logging.getLogger("tenderswarm.state")


# ─────────────────────────────────────────────
# Event-stream recorder
# ─────────────────────────────────────────────

class RunRecorder:
    """
    Folds a run's event stream into the blob that ResultStore persists.
    Task updates are keyed by task id, so the blob holds each task's last
    known state.
    """

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        self.status = "running"
        self.phase: Optional[str] = None
        self.progress = 0
        self.tasks: dict[str, dict] = {}
        self.messages: list[dict] = []
        self.payments: list[dict] = []
        self.summary: Optional[dict] = None
        self.error: Optional[dict] = None

    def record(self, event: SwarmEvent) -> None:
        if isinstance(event, StatusEvent):
            self.phase = event.phase.value
            self.progress = event.progress
        elif isinstance(event, MessageEvent):
            self.messages.append(event.message.to_dict())
        elif isinstance(event, TaskUpdateEvent):
            self.tasks[event.task.id] = event.task.to_dict()
        elif isinstance(event, PaymentEvent):
            self.payments.append(event.payment.to_dict())
        elif isinstance(event, ErrorEvent):
            self.status = "cancelled" if event.cancelled else "error"
            self.error = {"error": event.error, "errorType": event.error_type}
        elif isinstance(event, CompleteEvent):
            self.status = "complete"
            self.summary = event.summary.to_dict()
        else:
            raise TypeError(f"Unknown event type: {type(event).__name__}")

    @property
    def finished(self) -> bool:
        return self.status != "running"

    def to_blob(self) -> dict:
        return {
            "runId": self.run_id,
            "status": self.status,
            "phase": self.phase,
            "progress": self.progress,
            "summary": self.summary,
            "error": self.error,
            "tasks": list(self.tasks.values()),
            "messages": self.messages,
            "payments": self.payments,
        }


# ─────────────────────────────────────────────
# ResultStore (async)
# ─────────────────────────────────────────────

class ResultStore:
    """Async aiosqlite-backed result store. Persistent connection with one-time schema init."""

    def __init__(self, db_path: Path = DEFAULT_RESULTS_PATH):
        db_path = Path(db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db_path = str(db_path)
        self._conn: Optional[aiosqlite.Connection] = None
        self._lock: Optional[asyncio.Lock] = None  # lazy, created inside the event loop

    async def _get_conn(self) -> aiosqlite.Connection:
        if self._lock is None:
            self._lock = asyncio.Lock()
        if self._conn is None:
            async with self._lock:
                if self._conn is None:
                    self._conn = await aiosqlite.connect(self._db_path)
                    await self._conn.execute("PRAGMA journal_mode=WAL")
                    await self._conn.executescript("""
                        CREATE TABLE IF NOT EXISTS results (
                            run_id     TEXT PRIMARY KEY,
                            status     TEXT NOT NULL,
                            result     TEXT NOT NULL,
                            created_at REAL NOT NULL
                        );
                    """)
                    await self._conn.commit()
        return self._conn

    async def save_result(self, run_id: str, blob: dict) -> None:
        db = await self._get_conn()
        await db.execute(
            "INSERT OR REPLACE INTO results (run_id, status, result, created_at) "
            "VALUES (?, ?, ?, ?)",
            (run_id, blob.get("status", "complete"), json.dumps(blob, default=str), time.time()),
        )
        await db.commit()
        logger.info(f"Result saved: run={run_id}")

    async def load_result(self, run_id: str) -> Optional[dict]:
        db = await self._get_conn()
        async with db.execute(
            "SELECT result FROM results WHERE run_id = ?", (run_id,)
        ) as cursor:
            row = await cursor.fetchone()
        if row:
            return json.loads(row[0])
        return None

    async def list_results(self, limit: int = 50) -> list[dict]:
        db = await self._get_conn()
        async with db.execute(
            "SELECT run_id, status, created_at FROM results "
            "ORDER BY created_at DESC LIMIT ?", (limit,)
        ) as cursor:
            rows = await cursor.fetchall()
        return [{"run_id": r[0], "status": r[1], "created_at": r[2]} for r in rows]

    async def close(self) -> None:
        """Close the connection before the event loop shuts down."""
        if self._conn is None:
            return
        try:
            await self._conn.close()
            # let the aiosqlite worker thread finish its final callbacks
            await asyncio.sleep(0)
        finally:
            self._conn = None
