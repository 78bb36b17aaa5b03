import inspect
from datetime import datetime, UTC
from unittest.mock import AsyncMock

import pytest
from fastapi.routing import APIRoute
from fastapi.testclient import TestClient

from expense_flow.api.main import app
from expense_flow.models import Expense
from expense_flow.services.notifications import NotificationQueue, set_notification_queue
from expense_flow.services.storage import set_store


@pytest.fixture
def handler():
    return AsyncMock()


@pytest.fixture
def client(store, company, report, handler):
    set_store(store)
    set_notification_queue(NotificationQueue(handler=handler, retry_delays=(0.01,)))
    with TestClient(app) as c:
        yield c
    set_store(None)
    set_notification_queue(None)


def _submit(client, report_id="report-1"):
    r = client.post(f"/reports/{report_id}/submit")
    assert r.status_code == 200
    return r.json()


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"
    assert "queue_length" in r.json()["notification_queue"]


def test_duplicate_check_draft(client, store, company):
    store.add_expense(Expense(
        user_id=company.employee.id, vendor="Uber Technologies", amount=100,
        expense_date=datetime(2025, 3, 10, tzinfo=UTC), invoice_id="INV-001",
    ))

    r = client.post("/expenses/duplicate-check", json={
        "company_id": company.id,
        "expense": {"user_id": company.employee.id, "vendor": "uber", "amount": 5,
                    "expense_date": "2025-03-11", "invoice_id": "inv 001"},
    })

    assert r.status_code == 200
    assert r.json()["duplicate_flag"] == "STRONG_DUPLICATE"
    assert r.json()["duplicate_reason"] == "invoice_id"
    assert len(r.json()["invoice_fingerprint"]) == 64


def test_duplicate_reconciliation_unknown_expense(client):
    r = client.post("/expenses/missing/duplicate-check")
    assert r.status_code == 200
    assert r.json()["duplicate_flag"] is None


def test_submit_and_approve_through_api(client, company, handler):
    body = _submit(client)
    instance_id = body["instance"]["id"]
    assert body["report_status"] == "PENDING_APPROVAL_L1"

    r = client.post(f"/approvals/{instance_id}/decide", json={
        "level_number": 1, "approver_id": company.manager.id, "decision": "approve",
    })
    assert r.status_code == 200
    assert r.json()["report_status"] == "PENDING_APPROVAL_L2"

    r = client.post(f"/approvals/{instance_id}/decide", json={
        "level_number": 2, "approver_id": company.finance.id, "decision": "approve",
    })
    assert r.json()["report_status"] == "APPROVED"

    r = client.get(f"/approvals/{instance_id}")
    assert r.json()["status"] == "APPROVED"
    assert len(r.json()["history"]) == 2


@pytest.mark.parametrize("payload,status_code,code", [
    ({"level_number": 2, "approver_id": "fin-1", "decision": "approve"}, 409, "WRONG_LEVEL"),
    ({"level_number": 1, "approver_id": "fin-1", "decision": "approve"}, 403, "NOT_AUTHORIZED"),
    ({"level_number": 1, "approver_id": "mgr-1", "decision": "escalate"}, 422, "INVALID_DECISION"),
])
def test_rejected_decisions_map_to_http_errors(client, payload, status_code, code):
    instance_id = _submit(client)["instance"]["id"]

    r = client.post(f"/approvals/{instance_id}/decide", json=payload)

    assert r.status_code == status_code
    assert r.json()["detail"]["code"] == code


def test_unknown_instance_is_404(client):
    r = client.post("/approvals/nope/decide", json={"level_number": 1, "approver_id": "mgr-1", "decision": "approve"})
    assert r.status_code == 404
    assert client.get("/approvals/nope").status_code == 404


def test_invalid_body_is_422(client):
    r = client.post("/approvals/x/decide", json={"approver_id": "mgr-1"})
    assert r.status_code == 422


def test_pending_approvals_for_user(client, company):
    instance_id = _submit(client)["instance"]["id"]

    r = client.get("/approvals/pending", params={"user_id": company.manager.id})

    assert r.json()["total"] == 1
    assert r.json()["approvals"][0]["id"] == instance_id


def test_queue_status(client):
    r = client.get("/approvals/queue/status")
    assert r.status_code == 200
    assert set(r.json()) == {"queue_length", "scheduled_retries", "processing"}


def test_additional_approvers(client, company):
    r = client.post("/reports/report-1/additional-approvers", json={
        "approvers": [{"user_id": company.finance.id, "role": "BUSINESS_HEAD"}],
    })
    assert r.status_code == 200
    assert r.json()["task_id"].startswith("ADDITIONAL_APPROVER_")


def test_analytics_summary(client, company):
    r = client.get(f"/analytics/{company.id}/summary")
    assert r.status_code == 200
    assert r.json()["total_reports"] == 1
    assert r.json()["total_users"] == 4

    r = client.get(f"/analytics/{company.id}/trends", params={"months": 3})
    assert len(r.json()) == 3


def test_store_backed_routes_run_in_threadpool():
    store_backed = [
        route for route in app.routes
        if isinstance(route, APIRoute)
        and route.path.startswith(("/expenses", "/reports", "/approvals", "/analytics"))
        and route.path != "/approvals/queue/status"
    ]

    assert store_backed
    assert not [route.path for route in store_backed if inspect.iscoroutinefunction(route.endpoint)]

