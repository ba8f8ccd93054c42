"""API tests for approvals, rules, workflow config and delegations.

Authentication is replaced by dependency overrides returning real users
from the test store, so role checks and workflow authority both run.
"""
import uuid
from datetime import timedelta

import pytest
from httpx import AsyncClient, ASGITransport

from receiptvault.core.deps import get_current_user
from receiptvault.core.security import create_access_token
from receiptvault.db.base import utcnow
from receiptvault.main import app
from receiptvault.services import delegation as delegation_svc


# ─── Helpers ───

def _client():
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


def _act_as(user):
    app.dependency_overrides[get_current_user] = lambda: user


@pytest.fixture(autouse=True)
def clear_overrides():
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def staff(make_user):
    return {
        "employee": make_user("EMPLOYEE"),
        "approver": make_user("APPROVER"),
        "admin": make_user("ADMIN"),
    }


# ─── Submission + decision ───

@pytest.mark.asyncio
async def test_submit_list_and_approve(staff, make_receipt, make_rule):
    make_rule(approvers=[str(staff["approver"].id)])
    receipt = make_receipt(staff["employee"], 250)

    _act_as(staff["employee"])
    async with _client() as client:
        response = await client.post("/api/v1/approvals/submissions", json={"receipt_id": str(receipt.id)})
    assert response.status_code == 201
    body = response.json()
    assert body["requires_approval"] is True
    request_id = body["request"]["id"]

    _act_as(staff["approver"])
    async with _client() as client:
        listing = await client.get("/api/v1/approvals")
        decided = await client.post(
            f"/api/v1/approvals/{request_id}/decision",
            json={"action": "approve", "comments": "fine"},
        )
        again = await client.post(f"/api/v1/approvals/{request_id}/decision", json={"action": "reject"})
        detail = await client.get(f"/api/v1/approvals/{request_id}")

    assert listing.json()["total"] == 1
    assert decided.status_code == 200
    assert decided.json()["status"] == "approved"
    assert again.status_code == 409
    assert again.json()["error"] == "not_pending"
    assert [a["action"] for a in detail.json()["actions"]] == ["approve"]


@pytest.mark.asyncio
async def test_employee_cannot_submit_someone_elses_receipt(staff, make_user, make_receipt, make_rule):
    make_rule(approvers=[str(staff["approver"].id)])
    receipt = make_receipt(make_user("EMPLOYEE"), 250)

    _act_as(staff["employee"])
    async with _client() as client:
        response = await client.post("/api/v1/approvals/submissions", json={"receipt_id": str(receipt.id)})
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_unauthorized_decision_maps_to_403(staff, open_request):
    request = open_request([staff["approver"]])

    _act_as(staff["admin"])
    async with _client() as client:
        response = await client.post(f"/api/v1/approvals/{request.id}/decision", json={"action": "approve"})
    assert response.status_code == 403
    assert response.json()["error"] == "unauthorized"


@pytest.mark.asyncio
async def test_unknown_request_is_404(staff):
    _act_as(staff["approver"])
    async with _client() as client:
        response = await client.get(f"/api/v1/approvals/{uuid.uuid4()}")
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


@pytest.mark.asyncio
async def test_employee_delegate_can_view_covered_request(db, company_id, staff, make_user, open_request):
    delegate = make_user("EMPLOYEE")
    bystander = make_user("EMPLOYEE")
    delegation_svc.create_delegation(
        db,
        company_id,
        staff["approver"].id,
        {
            "delegate_to_id": str(delegate.id),
            "start_date": (utcnow() - timedelta(hours=1)).isoformat(),
            "end_date": (utcnow() + timedelta(days=2)).isoformat(),
        },
    )
    request = open_request([staff["approver"]])

    _act_as(delegate)
    async with _client() as client:
        detail = await client.get(f"/api/v1/approvals/{request.id}")
        actions = await client.get(f"/api/v1/approvals/{request.id}/actions")

    _act_as(bystander)
    async with _client() as client:
        denied = await client.get(f"/api/v1/approvals/{request.id}")

    assert detail.status_code == 200
    assert detail.json()["id"] == str(request.id)
    assert actions.status_code == 200
    assert denied.status_code == 403


@pytest.mark.asyncio
async def test_submission_carries_priority_and_requested_approver(staff, make_user, make_receipt, make_rule):
    manager = make_user("MANAGER")
    make_rule()
    receipt = make_receipt(staff["employee"], 250)

    _act_as(staff["employee"])
    async with _client() as client:
        bad = await client.post(
            "/api/v1/approvals/submissions",
            json={"receipt_id": str(receipt.id), "priority": "urgent"},
        )
        created = await client.post(
            "/api/v1/approvals/submissions",
            json={
                "receipt_id": str(receipt.id),
                "priority": "high",
                "requested_approver_id": str(manager.id),
            },
        )

    assert bad.status_code == 422
    assert created.status_code == 201
    request = created.json()["request"]
    assert request["priority"] == "high"
    assert request["current_approvers"] == [str(manager.id)]


@pytest.mark.asyncio
async def test_bulk_endpoint_reports_per_item(staff, open_request):
    approver = staff["approver"]
    ok = open_request([approver])
    not_mine = open_request([staff["admin"]])

    _act_as(approver)
    async with _client() as client:
        response = await client.post(
            "/api/v1/approvals/bulk",
            json={"request_ids": [str(ok.id), str(not_mine.id)], "action": "approve"},
        )
    assert response.status_code == 200
    body = response.json()
    assert body["successful"] == [str(ok.id)]
    assert body["failed"][0]["id"] == str(not_mine.id)
    assert body["failed"][0]["error"] == "unauthorized"


@pytest.mark.asyncio
async def test_escalate_requires_admin_or_manager(staff, make_user, open_request):
    manager = make_user("MANAGER")
    request = open_request([staff["approver"]], escalation_chain=[str(manager.id)])

    _act_as(staff["approver"])
    async with _client() as client:
        forbidden = await client.post(f"/api/v1/approvals/{request.id}/escalate", json={})

    _act_as(staff["admin"])
    async with _client() as client:
        escalated = await client.post(f"/api/v1/approvals/{request.id}/escalate", json={"comments": "overdue"})
        exhausted = await client.post(f"/api/v1/approvals/{request.id}/escalate", json={})

    assert forbidden.status_code == 403
    assert escalated.status_code == 200
    assert escalated.json()["current_approvers"] == [str(manager.id)]
    assert exhausted.status_code == 409
    assert exhausted.json()["error"] == "max_escalation_reached"


@pytest.mark.asyncio
async def test_history_and_stats_for_admin(staff, open_request):
    open_request([staff["approver"]])

    _act_as(staff["admin"])
    async with _client() as client:
        history = await client.get("/api/v1/approvals/history", params={"status": "pending"})
        stats = await client.get("/api/v1/approvals/stats")

    assert history.json()["total"] == 1
    assert stats.json()["total_pending"] == 1

    _act_as(staff["employee"])
    async with _client() as client:
        forbidden = await client.get("/api/v1/approvals/stats")
    assert forbidden.status_code == 403


# ─── Rules + config ───

@pytest.mark.asyncio
async def test_rule_management_is_admin_only(staff):
    payload = {
        "name": "Travel over 500",
        "priority": 10,
        "conditions": {"amount_threshold": "500", "categories": ["Travel"]},
        "actions": {"approvers": [str(staff["approver"].id)]},
    }

    _act_as(staff["employee"])
    async with _client() as client:
        forbidden = await client.post("/api/v1/approval-rules", json=payload)

    _act_as(staff["admin"])
    async with _client() as client:
        created = await client.post("/api/v1/approval-rules", json=payload)
        invalid = await client.post(
            "/api/v1/approval-rules",
            json={"name": "bad", "conditions": {"user_roles": ["WIZARD"]}},
        )
        rule_id = created.json()["id"]
        disabled = await client.delete(f"/api/v1/approval-rules/{rule_id}")
        active = await client.get("/api/v1/approval-rules", params={"active_only": True})

    assert forbidden.status_code == 403
    assert created.status_code == 201
    assert created.json()["conditions"]["categories"] == ["Travel"]
    assert invalid.status_code == 422
    assert disabled.status_code == 204
    assert active.json() == []


@pytest.mark.asyncio
async def test_workflow_config_read_and_update(staff):
    _act_as(staff["admin"])
    async with _client() as client:
        current = await client.get("/api/v1/workflow-config")
        updated = await client.patch("/api/v1/workflow-config", json={"auto_approval_threshold": "75"})
        invalid = await client.patch("/api/v1/workflow-config", json={"require_approval_above": "1"})

    assert float(current.json()["auto_approval_threshold"]) == 50
    assert float(updated.json()["auto_approval_threshold"]) == 75
    assert invalid.status_code == 422
    assert invalid.json()["error"] == "validation_error"


# ─── Delegations ───

@pytest.mark.asyncio
async def test_delegation_create_list_revoke(staff, make_user):
    delegate = make_user("APPROVER")
    payload = {
        "delegate_to_id": str(delegate.id),
        "start_date": utcnow().isoformat(),
        "end_date": (utcnow() + timedelta(days=3)).isoformat(),
        "max_amount": "500",
    }

    _act_as(staff["approver"])
    async with _client() as client:
        created = await client.post("/api/v1/delegations", json=payload)
        listed = await client.get("/api/v1/delegations")
        on_behalf = await client.post(
            "/api/v1/delegations", json={**payload, "delegator_id": str(staff["admin"].id)}
        )
        revoked = await client.delete(f"/api/v1/delegations/{created.json()['id']}")

    assert created.status_code == 201
    assert len(listed.json()) == 1
    assert on_behalf.status_code == 403
    assert revoked.json()["status"] == "revoked"


# ─── Real token path ───

@pytest.mark.asyncio
async def test_bearer_token_authenticates(staff):
    user = staff["approver"]
    token = create_access_token(str(user.id), user.role, str(user.company_id))
    async with _client() as client:
        response = await client.get("/api/v1/approvals", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 200
    assert response.json() == {"items": [], "total": 0}
