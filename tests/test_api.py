"""
TaskGate: HTTP API Tests
=========================
Exercises the FastAPI surface against a fully wired runtime on a
throwaway SQLite database.

Validates:
- Health and correlation ID propagation
- Task submission: queued, gated, duplicate, malformed
- Approval workflow: list, respond, NOT_FOUND, ALREADY_DECIDED
- Audit views and the kill switch
"""

from __future__ import annotations

import uuid

import pytest

DOCS_TASK = {"module": "docs", "action": "list", "category": "document_management"}
PAY_TASK = {"module": "pay", "action": "transfer", "title": "Pay supplier"}


# ── Health ──────────────────────────────────────────────────────────────


async def test_health_all_ok(client):
    resp = await client.get("/api/v1/health")
    data = resp.json()

    assert resp.status_code == 200
    assert data["status"] == "healthy"
    assert data["database"] == "ok"
    assert data["audit_log"] == "ok"
    assert data["execution_loop"] == "stopped"
    assert data["paused"] is False


async def test_health_degraded_while_paused(client):
    await client.post("/api/v1/system/pause")

    data = (await client.get("/api/v1/health")).json()

    assert data["status"] == "degraded"
    assert data["paused"] is True


async def test_correlation_id_generated_when_absent(client):
    resp = await client.get("/api/v1/health")
    cid = resp.headers.get("X-Correlation-ID")

    assert cid is not None
    assert str(uuid.UUID(cid, version=4)) == cid


async def test_correlation_id_propagated_from_header(client):
    custom_id = str(uuid.uuid4())
    resp = await client.get("/api/v1/health", headers={"X-Correlation-ID": custom_id})

    assert resp.headers["X-Correlation-ID"] == custom_id


# ── Tasks ───────────────────────────────────────────────────────────────


async def test_submit_auto_approved_task(client):
    resp = await client.post("/api/v1/tasks", json=DOCS_TASK)
    data = resp.json()

    assert resp.status_code == 202
    assert data["accepted"] is True
    assert data["status"] == "queued"
    assert data["position"] == 1

    detail = await client.get(f"/api/v1/tasks/{data['task_id']}")
    assert detail.status_code == 200
    assert detail.json()["status"] == "queued"


async def test_submit_gated_task(client):
    resp = await client.post("/api/v1/tasks", json=PAY_TASK)
    data = resp.json()

    assert resp.status_code == 202
    assert data["status"] == "pending_approval"
    assert 'financial keyword: "transfer"' in data["reason"]


async def test_duplicate_pending_returns_409(client):
    payload = {**PAY_TASK, "id": "pay-42"}
    await client.post("/api/v1/tasks", json=payload)

    resp = await client.post("/api/v1/tasks", json=payload)

    assert resp.status_code == 409
    assert resp.json()["detail"]["error_code"] == "DUPLICATE_PENDING"


@pytest.mark.parametrize(
    "payload",
    [
        {"action": "list"},
        {"module": "docs", "action": "list", "urgency": 0},
        {"module": "docs", "action": "list", "effort": 11},
    ],
)
async def test_malformed_task_returns_422(client, payload):
    resp = await client.post("/api/v1/tasks", json=payload)
    assert resp.status_code == 422


async def test_constraint_violation_returns_422(client):
    resp = await client.post(
        "/api/v1/tasks", json={"module": "pay", "action": "send", "category": "financial"}
    )

    assert resp.status_code == 422
    assert resp.json()["detail"]["error_code"] == "CONSTRAINT_VIOLATION"


async def test_unknown_task_returns_404(client):
    resp = await client.get("/api/v1/tasks/does-not-exist")
    assert resp.status_code == 404


async def test_status(client):
    await client.post("/api/v1/tasks", json=DOCS_TASK)
    await client.post("/api/v1/tasks", json=PAY_TASK)

    data = (await client.get("/api/v1/tasks/status")).json()

    assert data["queued_tasks"] == 1
    assert data["pending_approvals"] == 1
    assert data["registered_modules"] == ["monitor"]
    assert data["loop_running"] is False
    assert data["todays_summary"]["proposals"] == 2


async def test_retry_empty_dead_letter(client):
    resp = await client.post("/api/v1/tasks/dead-letter/retry")

    assert resp.status_code == 200
    assert resp.json() == []


# ── Approvals ───────────────────────────────────────────────────────────


async def test_list_pending_approvals(client):
    submitted = (await client.post("/api/v1/tasks", json=PAY_TASK)).json()

    resp = await client.get("/api/v1/approvals")
    data = resp.json()

    assert resp.status_code == 200
    assert [a["task_id"] for a in data] == [submitted["task_id"]]
    assert data[0]["status"] == "pending"
    assert data[0]["title"] == "Pay supplier"
    assert data[0]["approval_type"] == "financial_safeguard"


async def test_list_approvals_empty(client):
    resp = await client.get("/api/v1/approvals")
    assert resp.json() == []


async def test_approve_requeues_task(client):
    task_id = (await client.post("/api/v1/tasks", json=PAY_TASK)).json()["task_id"]

    resp = await client.post(
        f"/api/v1/approvals/{task_id}/respond",
        json={"approved": True, "notes": "ok"},
        headers={"X-User": "ops-lead"},
    )
    data = resp.json()

    assert resp.status_code == 200
    assert data == {
        "success": True,
        "task_id": task_id,
        "approved": True,
        "task_status": "queued",
    }
    record = (await client.get(f"/api/v1/approvals/{task_id}")).json()
    assert record["status"] == "approved"
    assert record["decided_by"] == "ops-lead"
    assert (await client.get("/api/v1/approvals")).json() == []


async def test_decision_without_user_header_is_anonymous(client):
    task_id = (await client.post("/api/v1/tasks", json=PAY_TASK)).json()["task_id"]

    await client.post(
        f"/api/v1/approvals/{task_id}/respond",
        json={"approved": False},
        headers={"X-User": "   "},
    )

    record = (await client.get(f"/api/v1/approvals/{task_id}")).json()
    assert record["decided_by"] == "anonymous"


async def test_reject_makes_task_terminal(client):
    task_id = (await client.post("/api/v1/tasks", json=PAY_TASK)).json()["task_id"]

    resp = await client.post(
        f"/api/v1/approvals/{task_id}/respond", json={"approved": False}
    )

    assert resp.json()["task_status"] == "rejected"


async def test_second_decision_returns_409(client):
    task_id = (await client.post("/api/v1/tasks", json=PAY_TASK)).json()["task_id"]
    await client.post(f"/api/v1/approvals/{task_id}/respond", json={"approved": True})

    resp = await client.post(
        f"/api/v1/approvals/{task_id}/respond", json={"approved": False}
    )

    assert resp.status_code == 409
    assert resp.json()["detail"]["error_code"] == "ALREADY_DECIDED"


async def test_respond_unknown_task_returns_404(client):
    resp = await client.post(
        "/api/v1/approvals/ghost/respond", json={"approved": True}
    )

    assert resp.status_code == 404
    assert resp.json()["detail"]["error_code"] == "NOT_FOUND"


async def test_get_unknown_approval_returns_404(client):
    resp = await client.get("/api/v1/approvals/ghost")
    assert resp.status_code == 404


# ── Audit ───────────────────────────────────────────────────────────────


async def test_audit_today_and_summary(client):
    await client.post("/api/v1/tasks", json=DOCS_TASK)

    entries = (await client.get("/api/v1/audit/today")).json()
    types = [e["type"] for e in entries]
    assert types == ["system", "proposal", "approval"]
    assert entries[0]["event"] == "module_registered"

    limited = (await client.get("/api/v1/audit/today", params={"limit": 1})).json()
    assert [e["type"] for e in limited] == ["approval"]

    summary = (await client.get("/api/v1/audit/summary")).json()
    assert summary["proposals"] == 1
    assert summary["approvals"] == 1
    assert summary["pending_approvals"] == []

    days = (await client.get("/api/v1/audit/days")).json()
    assert days == [summary["date"]]


async def test_audit_summary_for_empty_day(client):
    resp = await client.get("/api/v1/audit/summary", params={"day": "2000-01-01"})

    assert resp.status_code == 200
    assert resp.json()["total_actions"] == 0


# ── System ──────────────────────────────────────────────────────────────


async def test_pause_blocks_dispatch_and_resume(client, runtime, recording_executor):
    await runtime.orchestrator.register_module("docs", recording_executor)
    await client.post("/api/v1/tasks", json=DOCS_TASK)

    paused = await client.post("/api/v1/system/pause", json={"reason": "incident"})
    assert paused.json() == {"paused": True, "reason": "incident"}
    assert (await runtime.orchestrator.execute_next()).status == "paused"

    status = (await client.get("/api/v1/system/status")).json()
    assert status["is_paused"] is True
    assert status["reason"] == "incident"

    resumed = await client.post("/api/v1/system/resume")
    assert resumed.json() == {"paused": False}
    assert (await runtime.orchestrator.execute_next()).status == "completed"


async def test_run_checks(client):
    resp = await client.post("/api/v1/system/checks")
    data = resp.json()

    assert resp.status_code == 200
    assert data["system_healthy"] is True
    assert data["anomalies_detected"] == 0
    assert (await client.get("/api/v1/system/status")).json()["last_report"] == data
