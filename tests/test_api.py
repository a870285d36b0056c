"""
Tests for the FastAPI surface, driven through TestClient with a scripted
generation client and a temporary result database.
"""
from __future__ import annotations

import asyncio
import json
import time

import pytest
from fastapi.testclient import TestClient

from conftest import USER, FakeClient, YieldingClient
from tenderswarm.api import NDJSON, SwarmRequest, create_app, payment_confirmation
from tenderswarm.state import ResultStore

BODY = {"brief": "Launch plan for a specialty coffee brand", "budget": 1.0, "isDemoMode": True}


@pytest.fixture
def api(tmp_path, settings):
    app = create_app(client=FakeClient(), settings=settings,
                     store=ResultStore(tmp_path / "api.db"))
    with TestClient(app) as client:
        yield client


def _frames(response):
    return [json.loads(line) for line in response.text.splitlines() if line.strip()]


def _wait_for_result(api, run_id, attempts=100):
    for _ in range(attempts):
        response = api.get(f"/api/results/{run_id}")
        if response.status_code == 200:
            return response.json()
        time.sleep(0.05)
    raise AssertionError(f"no stored result for {run_id}")


def test_health(api):
    assert api.get("/health").json() == {"status": "ok"}


# ─────────────────────────────────────────────────────────────────────────────
# Request model
# ─────────────────────────────────────────────────────────────────────────────

def test_request_accepts_camel_case_and_tx_hash_alias():
    req = SwarmRequest.model_validate({"brief": "b", "budget": 2, "txHash": "0xabc",
                                       "userAddress": USER, "contractAddress": "0xc"})
    assert req.payment_tx_hash == "0xabc"
    assert req.user_address == USER
    assert req.contract_address == "0xc"
    assert req.is_demo_mode is False


def test_payment_confirmation_message():
    demo = payment_confirmation("0x1234567890abcdef", demo=True).message
    assert demo.message == "Demo mode payment: 0x12345678..."
    live = payment_confirmation("0x" + "a" * 56 + "12345678", demo=False).message
    assert live.message.endswith("...12345678")
    assert live.metadata["txHash"].startswith("0xaaaa")


# ─────────────────────────────────────────────────────────────────────────────
# POST /api/swarm
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.parametrize("body", [
    {}, {"brief": "x"}, {"budget": 1.0}, {"brief": "  ", "budget": 1.0},
    {"brief": "x", "budget": 0}, {"brief": "x", "budget": -1},
])
def test_swarm_requires_brief_and_budget(api, body):
    response = api.post("/api/swarm", json=body)
    assert response.status_code == 400
    assert response.json()["detail"] == "Brief and budget required"


def test_swarm_streams_ndjson_until_complete(api):
    response = api.post("/api/swarm", json=BODY)
    assert response.status_code == 200
    assert response.headers["content-type"].startswith(NDJSON)
    run_id = response.headers["x-run-id"]

    frames = _frames(response)
    kinds = [f["type"] for f in frames]
    assert kinds[0] == "status"
    assert kinds[-1] == "complete"
    assert kinds.count("complete") + kinds.count("error") == 1
    assert {"message", "task-update", "payment"} <= set(kinds)
    summary = frames[-1]["data"]["summary"]
    assert summary["runId"] == run_id
    assert summary["completedTasks"] == 3
    progress = [f["data"]["progress"] for f in frames if f["type"] == "status"]
    assert progress == sorted(progress) and progress[-1] == 100

    stored = api.get(f"/api/results/{run_id}").json()
    assert stored["status"] == "complete"
    assert stored["summary"]["runId"] == run_id
    assert all(t["status"] == "accepted" for t in stored["tasks"])


def test_swarm_announces_payment_first(api):
    response = api.post("/api/swarm", json={**BODY, "paymentTxHash": "0xDEMOfeedbeef"})
    first = _frames(response)[0]
    assert first["type"] == "message"
    assert first["data"]["message"].startswith("Demo mode payment: 0xDEMOfee")


def test_swarm_budget_too_small_streams_error(api):
    response = api.post("/api/swarm", json={**BODY, "budget": 0.005})
    assert response.status_code == 200
    last = _frames(response)[-1]
    assert last["type"] == "error"
    assert last["data"]["errorType"] == "BudgetExceededError"
    stored = api.get(f"/api/results/{response.headers['x-run-id']}").json()
    assert stored["status"] == "error"


# ─────────────────────────────────────────────────────────────────────────────
# POST /api/start-swarm
# ─────────────────────────────────────────────────────────────────────────────

def test_start_swarm_runs_in_background(api):
    response = api.post("/api/start-swarm", json=BODY)
    assert response.status_code == 202
    body = response.json()
    assert body["status"] == "Swarm started"
    run_id = body["swarmId"]
    assert run_id.startswith("swarm-")

    stored = _wait_for_result(api, run_id)
    assert stored["status"] == "complete"
    assert stored["summary"]["totalTasks"] == 3
    assert stored["payments"]


def test_start_swarm_validates(api):
    assert api.post("/api/start-swarm", json={"brief": "x"}).status_code == 400


# ─────────────────────────────────────────────────────────────────────────────
# Results and webhooks
# ─────────────────────────────────────────────────────────────────────────────

def test_unknown_result_is_404(api):
    response = api.get("/api/results/swarm-missing")
    assert response.status_code == 404
    assert response.json()["detail"] == "Result not found"


def test_webhook_queue_round_trip(api):
    activity = {"type": "ADDRESS_ACTIVITY", "event": {"activity": [{"hash": "0x1"}]}}
    accepted = api.post("/api/webhooks/tender", json=activity).json()
    assert accepted == {"ok": True, "accepted": True, "queued": 1}
    ignored = api.post("/api/webhooks/tender", json={"type": "NOISE"}).json()
    assert ignored == {"ok": True, "accepted": False, "queued": 1}

    drained = api.get("/api/webhooks/tender").json()
    assert [e["data"] for e in drained] == [activity]
    assert api.get("/api/webhooks/tender").json() == []


def test_webhook_rejects_malformed_json(api):
    response = api.post("/api/webhooks/tender", content=b"{not json",
                        headers={"content-type": "application/json"})
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid payload"}


# ─────────────────────────────────────────────────────────────────────────────
# Client disconnect
# ─────────────────────────────────────────────────────────────────────────────

def _endpoint(app, path):
    return next(r.endpoint for r in app.routes if getattr(r, "path", None) == path)


def test_disconnect_mid_stream_stores_cancelled_run(tmp_path, settings):
    client = YieldingClient()
    store = ResultStore(tmp_path / "disconnect.db")
    app = create_app(client=client, settings=settings, store=store)

    async def go():
        response = await _endpoint(app, "/api/swarm")(SwarmRequest.model_validate(BODY))
        body = response.body_iterator
        seen = []
        async for frame in body:
            seen.append(json.loads(frame))
            if seen[-1]["type"] == "task-update":
                break
        # what Starlette does when the client goes away
        await body.aclose()
        await asyncio.gather(*list(app.state.background))
        try:
            return response.headers["x-run-id"], seen, await store.load_result(
                response.headers["x-run-id"])
        finally:
            await store.close()

    run_id, seen, stored = asyncio.run(go())
    assert all(f["type"] not in ("complete", "error") for f in seen)
    assert stored is not None
    assert stored["runId"] == run_id
    assert stored["status"] == "cancelled"
    assert stored["error"]["errorType"] == "SwarmCancelledError"
    assert client.count("text") < 3


class _StalledClient(FakeClient):
    """Never answers a text request, so a run stays in flight until cancelled."""

    async def generate_text(self, request):
        self.calls.append(("text", request))
        await asyncio.Event().wait()


def test_shutdown_stores_in_flight_background_run(tmp_path, settings):
    path = tmp_path / "shutdown.db"
    app = create_app(client=_StalledClient(), settings=settings, store=ResultStore(path))
    with TestClient(app) as client:
        run_id = client.post("/api/start-swarm", json=BODY).json()["swarmId"]
    # shutdown closed the store after the cancelled run was saved
    assert app.state.store._conn is None

    async def load():
        store = ResultStore(path)
        try:
            return await store.load_result(run_id)
        finally:
            await store.close()

    stored = asyncio.run(load())
    assert stored["status"] == "cancelled"
    assert stored["error"]["errorType"] == "SwarmCancelledError"
