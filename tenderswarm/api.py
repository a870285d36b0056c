"""
HTTP surface — FastAPI app factory.

    POST /api/swarm            run a swarm, stream NDJSON event frames
    POST /api/start-swarm      run a swarm in the background, 202 + run id
    POST /api/webhooks/tender  queue a chain-activity payload
    GET  /api/webhooks/tender  drain queued payloads
    GET  /api/results/{id}     stored result blob
    GET  /health

Shared collaborators (client, gateway, store, webhook queue) live on
app.state so tests can build a fresh app around fakes.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .api_clients import GenerationClient, UnifiedClient
from .config import Settings
from .coordinator import COORDINATOR
from .engine import SwarmOrchestrator
from .models import AgentMessage, ClientBrief, MessageType, new_id
from .payments import ZERO_ADDRESS, PaymentGateway
from .state import ResultStore, RunRecorder
from .streaming import ErrorEvent, MessageEvent, SwarmEvent, encode_frame
from .webhooks import TenderEventQueue

logger = logging.getLogger("tenderswarm.api")

NDJSON = "application/x-ndjson"


class SwarmRequest(BaseModel):
    """Body of POST /api/swarm and /api/start-swarm. Presence is checked by the route."""
    model_config = ConfigDict(populate_by_name=True)

    brief: Optional[str] = None
    budget: Optional[float] = None
    contract_address: Optional[str] = Field(default=None, alias="contractAddress")
    payment_tx_hash: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("paymentTxHash", "txHash"),
    )
    is_demo_mode: bool = Field(default=False, alias="isDemoMode")
    user_address: Optional[str] = Field(default=None, alias="userAddress")


def _require_brief(payload: SwarmRequest) -> ClientBrief:
    if not payload.brief or not payload.brief.strip() or not payload.budget or payload.budget <= 0:
        raise HTTPException(status_code=400, detail="Brief and budget required")
    return ClientBrief(text=payload.brief, budget=payload.budget,
                       payment_tx_hash=payload.payment_tx_hash)


def payment_confirmation(tx_hash: str, demo: bool) -> MessageEvent:
    text = (f"Demo mode payment: {tx_hash[:10]}..." if demo
            else f"Payment confirmed: {tx_hash[:10]}...{tx_hash[-8:]}")
    return MessageEvent(AgentMessage(agent=COORDINATOR, message=text, type=MessageType.INFO,
                                     metadata={"txHash": tx_hash}))


def create_app(client: Optional[GenerationClient] = None,
               gateway: Optional[PaymentGateway] = None,
               settings: Optional[Settings] = None,
               store: Optional[ResultStore] = None) -> FastAPI:
    """Application factory. Missing collaborators are built from Settings."""
    settings = settings or Settings.from_env()
    if client is None:
        client = UnifiedClient(timeout=settings.generation_timeout,
                               retries=settings.generation_retries)
    store = store or ResultStore(settings.results_path)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        pending = list(app.state.background)
        for task in pending:
            task.cancel()
        # let each task finish its own persistence before the store closes
        await asyncio.gather(*pending, return_exceptions=True)
        await app.state.store.close()

    app = FastAPI(title="tenderswarm", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.orchestrator = SwarmOrchestrator(client, gateway, settings)
    app.state.store = store
    app.state.webhooks = TenderEventQueue()
    app.state.background = set()

    def _contract(payload: SwarmRequest) -> str:
        return payload.contract_address or ZERO_ADDRESS

    async def _persist(recorder: RunRecorder) -> None:
        if recorder.finished:
            await app.state.store.save_result(recorder.run_id, recorder.to_blob())

    async def _wind_down(stream: AsyncIterator[SwarmEvent], recorder: RunRecorder) -> None:
        """Drain a stream whose client went away so its terminal event is stored."""
        try:
            async for event in stream:
                recorder.record(event)
        finally:
            if not recorder.finished:
                # the stream was torn down with the response task
                recorder.record(ErrorEvent("Run cancelled", "SwarmCancelledError",
                                           cancelled=True))
            await _persist(recorder)

    def _spawn(coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        app.state.background.add(task)
        task.add_done_callback(app.state.background.discard)
        return task

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/api/swarm")
    async def run_swarm(payload: SwarmRequest) -> StreamingResponse:
        brief = _require_brief(payload)
        run_id = new_id("swarm")
        cancel = asyncio.Event()
        recorder = RunRecorder(run_id)

        async def frames() -> AsyncIterator[bytes]:
            stream = app.state.orchestrator.run_streaming(
                brief, demo_mode=payload.is_demo_mode, user_address=payload.user_address,
                contract_address=_contract(payload), cancel_event=cancel, run_id=run_id,
            )
            finished = False
            try:
                if payload.payment_tx_hash:
                    first = payment_confirmation(payload.payment_tx_hash, payload.is_demo_mode)
                    recorder.record(first)
                    yield encode_frame(first)
                async for event in stream:
                    recorder.record(event)
                    yield encode_frame(event)
                finished = True
            finally:
                if finished:
                    await _persist(recorder)
                else:
                    # client went away mid-stream; wind the run down off the response task
                    logger.info(f"[{run_id}] client disconnected; cancelling run")
                    cancel.set()
                    _spawn(_wind_down(stream, recorder))

        logger.info(f"[{run_id}] streaming swarm: budget={brief.budget} "
                    f"demo={payload.is_demo_mode}")
        return StreamingResponse(frames(), media_type=NDJSON,
                                 headers={"Cache-Control": "no-cache", "X-Run-Id": run_id})

    @app.post("/api/start-swarm", status_code=202)
    async def start_swarm(payload: SwarmRequest) -> dict[str, str]:
        brief = _require_brief(payload)
        run_id = new_id("swarm")
        recorder = RunRecorder(run_id)

        async def _background() -> None:
            try:
                await app.state.orchestrator.run(
                    brief, on_event=recorder.record, demo_mode=payload.is_demo_mode,
                    user_address=payload.user_address, contract_address=_contract(payload),
                    run_id=run_id,
                )
            except Exception as e:
                # recorded as the run's terminal error
                logger.debug(f"[{run_id}] background run ended with {type(e).__name__}")
            finally:
                await _persist(recorder)

        _spawn(_background())
        return {"status": "Swarm started", "swarmId": run_id,
                "message": "Agent orchestration running in background"}

    @app.post("/api/webhooks/tender")
    async def push_webhook(request: Request) -> JSONResponse:
        try:
            body: Any = await request.json()
        except ValueError:
            return JSONResponse({"error": "Invalid payload"}, status_code=400)
        queued = app.state.webhooks.push(body)
        return JSONResponse({"ok": True, "accepted": queued, "queued": len(app.state.webhooks)})

    @app.get("/api/webhooks/tender")
    def drain_webhooks() -> list[dict]:
        return app.state.webhooks.drain()

    @app.get("/api/results/{run_id}")
    async def get_result(run_id: str) -> dict:
        blob = await app.state.store.load_result(run_id)
        if blob is None:
            raise HTTPException(status_code=404, detail="Result not found")
        return blob

    return app

