# testing/test_webapp.py
"""
HTTP tests for the scheduler API using FastAPI's TestClient.
"""

import json
import time
from datetime import date
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from src import db
from src.api.webhook_verify import compute_signature
from src.webapp import app
from testing.helpers import TODAY, live_jobs

SECRET = "whsec_test"


@pytest.fixture
def client(client_location, technician):
    with patch("src.webapp.business_today", return_value=TODAY), \
         patch("src.api.lifecycle.business_today", return_value=TODAY):
        with TestClient(app) as test_client:
            yield test_client


def create_weekly(client, **overrides):
    payload = dict({
        "client_id": "C1",
        "location_id": "L1",
        "frequency": "WEEKLY",
        "price_cents": 4500,
        "created_at": "2024-03-01",
    }, **overrides)
    response = client.post("/subscriptions", json=payload, headers={"X-Actor": "signup-form"})
    assert response.status_code == 201
    return response.json()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "today": "2024-03-04"}


def test_create_subscription(client):
    body = create_weekly(client)

    assert body["jobs_generated"] == 12
    assert body["subscription"]["frequency"] == "WEEKLY"
    assert db.get_activity(action="subscription_created")[0]["actor"] == "signup-form"


def test_create_subscription_validation(client):
    missing = client.post("/subscriptions", json={"client_id": "C1", "location_id": "L1"})
    bad = client.post("/subscriptions", json={"client_id": "C1", "location_id": "L1", "frequency": "DAILY"})
    garbage = client.post("/subscriptions", content=b"not json", headers={"Content-Type": "application/json"})

    assert missing.status_code == 400
    assert bad.status_code == 400
    assert "frequency" in bad.json()["detail"]
    assert garbage.status_code == 400


def test_patch_pause_reports_summary(client):
    subscription_id = create_weekly(client)["subscription"]["id"]

    with patch("src.api.lifecycle.business_today", return_value=date(2024, 3, 6)):
        response = client.patch(f"/subscriptions/{subscription_id}", json={"status": "PAUSED"},
                                headers={"X-Actor": "staff:kim"})

    assert response.status_code == 200
    body = response.json()
    assert body["summary"] == "11 jobs voided / 0 jobs generated"
    assert body["subscription"]["status"] == "PAUSED"
    assert db.get_activity(action="subscription_paused")[0]["actor"] == "staff:kim"


def test_patch_errors(client):
    subscription_id = create_weekly(client)["subscription"]["id"]

    assert client.patch("/subscriptions/nope", json={"status": "PAUSED"}).status_code == 404
    assert client.patch(f"/subscriptions/{subscription_id}", json={"price_cents": -1}).status_code == 400
    assert client.patch(f"/subscriptions/{subscription_id}", json=["PAUSED"]).status_code == 400
    assert client.patch(f"/subscriptions/{subscription_id}", json={"status": "PAUSED"},
                        headers={"X-Org-Id": "org-b"}).status_code == 404


def test_assign_subscription_endpoint(client):
    subscription_id = create_weekly(client, initial_cleanup_required=True)["subscription"]["id"]

    response = client.post(f"/subscriptions/{subscription_id}/assign", json={
        "tech_id": "T1",
        "service_days": ["TUESDAY"],
        "initial_cleanup": {"date": "2024-03-08", "tech_id": "T1"},
    })

    assert response.status_code == 200
    body = response.json()
    assert body["jobs_assigned"] == 2
    assert body["initial_cleanup_job_id"] is not None
    assert client.post(f"/subscriptions/{subscription_id}/assign", json={"tech_id": "T1"}).status_code == 400


def test_bulk_route_assignment_reports_failures(client):
    subscription_id = create_weekly(client)["subscription"]["id"]
    jobs = live_jobs(subscription_id)

    response = client.post("/routes/assign", json={"tech_id": "T1", "job_ids": [jobs[0]["id"], jobs[1]["id"], 999]})

    assert response.status_code == 200
    body = response.json()
    assert [item["job_id"] for item in body["assigned"]] == [jobs[0]["id"], jobs[1]["id"]]
    assert body["failed"][0]["job_id"] == 999
    assert client.post("/routes/assign", json={"tech_id": "T1", "job_ids": []}).status_code == 400


def test_unassign_and_status_endpoints(client):
    subscription_id = create_weekly(client)["subscription"]["id"]
    job_id = live_jobs(subscription_id)[0]["id"]
    client.post("/routes/assign", json={"tech_id": "T1", "job_ids": [job_id]})

    unassigned = client.post(f"/jobs/{job_id}/unassign")
    assert unassigned.status_code == 200
    assert unassigned.json()["previous_route_id"] is not None

    assert client.post(f"/jobs/{job_id}/status", json={"status": "COMPLETED"}).status_code == 409
    moved = client.post(f"/jobs/{job_id}/status", json={"status": "EN_ROUTE"})
    assert moved.status_code == 200
    assert moved.json()["status"] == "EN_ROUTE"
    assert client.post("/jobs/424242/status", json={"status": "EN_ROUTE"}).status_code == 404


def test_unassigned_endpoint(client):
    subscription_id = create_weekly(client)["subscription"]["id"]

    body = client.get("/unassigned").json()

    assert body["total"] == 1
    assert body["items"][0]["id"] == subscription_id
    assert body["items"][0]["reasons"] == ["unrouted_jobs"]


def test_suggestion_flow(client):
    subscription_id = create_weekly(client, preferred_day="TUESDAY")["subscription"]["id"]

    created = client.post("/suggestions", json={
        "suggestion_type": "day_change",
        "subscription_id": subscription_id,
        "current_state": {"day": "TUESDAY"},
        "suggested_state": {"day": "FRIDAY"},
        "reasoning": "Friday route is nearby",
    })
    assert created.status_code == 201
    suggestion_id = created.json()["id"]

    assert client.get("/suggestions", params={"status": "PENDING"}).json()["total"] == 1

    accepted = client.post(f"/suggestions/{suggestion_id}/accept")
    assert accepted.status_code == 200
    assert accepted.json()["suggestion"]["status"] == "ACCEPTED"
    assert db.get_subscription(subscription_id)["preferred_day"] == "FRIDAY"

    assert client.post(f"/suggestions/{suggestion_id}/accept").status_code == 409
    assert client.post(f"/suggestions/{suggestion_id}/dismiss").status_code == 409
    assert client.post("/suggestions/999/accept").status_code == 404


def _signed(payload: bytes, secret: str = SECRET) -> dict:
    timestamp = int(time.time())
    return {
        "Billing-Signature": f"t={timestamp},v1={compute_signature(payload, timestamp, secret)}",
        "Content-Type": "application/json",
    }


def test_billing_webhook(client):
    subscription_id = create_weekly(client, billing_subscription_id="sub_abc")["subscription"]["id"]
    payload = json.dumps({
        "type": "customer.subscription.updated",
        "data": {"object": {"id": "sub_abc", "status": "paused"}},
    }).encode()

    with patch("src.webapp.BILLING_WEBHOOK_SECRET", SECRET):
        rejected = client.post("/webhooks/billing", content=payload, headers=_signed(payload, "wrong"))
        accepted = client.post("/webhooks/billing", content=payload, headers=_signed(payload))

    assert rejected.status_code == 400
    assert accepted.status_code == 200
    assert accepted.json() == {"received": True, "handled": True, "subscription_id": subscription_id}
    assert db.get_subscription(subscription_id)["status"] == "PAUSED"


def test_billing_webhook_acknowledges_unrelated_events(client):
    payload = json.dumps({"type": "invoice.paid", "data": {"object": {}}}).encode()

    with patch("src.webapp.BILLING_WEBHOOK_SECRET", SECRET):
        response = client.post("/webhooks/billing", content=payload, headers=_signed(payload))

    assert response.status_code == 200
    assert response.json()["handled"] is False


def test_cron_generate_jobs(client):
    db.insert_subscription("C1", "L1", "WEEKLY", "ACTIVE", 4500, "2024-03-01", preferred_day="MONDAY")

    first = client.post("/cron/generate-jobs", json={"today": "2024-03-04", "look_ahead_days": 14})
    second = client.post("/cron/generate-jobs")

    assert first.status_code == 200
    assert first.json()["generated"] == 2
    assert second.json()["generated"] == 0
    assert db.get_activity(action="jobs_generated")[0]["actor"] == "cron"
    assert client.post("/cron/generate-jobs", json={"look_ahead_days": 0}).status_code == 400


def test_malformed_dates_are_rejected(client):
    subscription_id = create_weekly(client)["subscription"]["id"]
    job_id = live_jobs(subscription_id)[0]["id"]

    bad_route_date = client.post("/routes/assign", json={"tech_id": "T1", "job_ids": [job_id], "route_date": "garbage"})
    bad_anchor = client.post("/subscriptions", json={
        "client_id": "C1", "location_id": "L1", "frequency": "WEEKLY", "created_at": "nope",
    })

    assert bad_route_date.status_code == 400
    assert "garbage" in bad_route_date.json()["detail"]
    assert bad_anchor.status_code == 400
    assert db.get_job(job_id)["route_id"] is None


def test_unassign_is_audited(client):
    subscription_id = create_weekly(client)["subscription"]["id"]
    job_id = live_jobs(subscription_id)[0]["id"]
    client.post("/routes/assign", json={"tech_id": "T1", "job_ids": [job_id]})

    client.post(f"/jobs/{job_id}/unassign", headers={"X-Actor": "dispatch:lee"})

    record = db.get_activity(entity_id=job_id, action="job_unassigned")[0]
    assert record["actor"] == "dispatch:lee"
    assert record["after"]["route_id"] is None
