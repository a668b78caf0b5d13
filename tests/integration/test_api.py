"""Integration tests for API endpoints"""

import uuid
from unittest.mock import AsyncMock

from fastapi.testclient import TestClient

from flow_gateway.api.v1 import plans
from flow_gateway.config import settings
from flow_gateway.infrastructure.database.models import FundingSource


def create_qr_intent(client: TestClient, headers: dict, world, amount_cents: int) -> str:
    response = client.post(
        "/v1/intents/qr",
        json={"qr_payload_id": str(world.qr.id), "amount_cents": amount_cents},
        headers=headers,
    )
    assert response.status_code == 200
    return response.json()["intent_id"]


def resolve(client: TestClient, headers: dict, intent_id: str, **body) -> dict:
    response = client.post(f"/v1/intents/{intent_id}/resolve", json=body or None, headers=headers)
    assert response.status_code == 200
    return response.json()


def test_health_endpoint(client: TestClient):
    """Test health check endpoint"""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_metrics_endpoint(client: TestClient):
    """Test Prometheus metrics endpoint"""
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "flow_" in response.text


def test_request_id_is_echoed(client: TestClient):
    response = client.get("/health", headers={"X-Request-ID": "req-123"})

    assert response.headers["X-Request-ID"] == "req-123"


def test_qr_payment_end_to_end(client: TestClient, headers: dict, world):
    """Scan, resolve, execute, then read the transaction and activity feed"""
    intent_id = create_qr_intent(client, headers, world, 4_500)

    resolved = resolve(client, headers, intent_id)
    assert resolved["success"] is True
    assert resolved["plan"]["chosen_rail"] == "TNG"
    assert resolved["explanation"] == "Pay RM45.00 using TNG"
    plan_id = resolved["plan_id"]

    plan = client.get(f"/v1/plans/{plan_id}", headers=headers).json()
    assert plan["status"] == "ready"
    assert plan["steps"][0]["action"] == "charge"

    executed = client.post(f"/v1/plans/{plan_id}/execute", headers=headers)
    assert executed.status_code == 200
    data = executed.json()
    assert data["success"] is True
    assert data["status"] == "success"
    assert data["signature_id"] is not None

    transaction = client.get(f"/v1/transactions/{data['transaction_id']}", headers=headers).json()
    assert transaction["status"] == "success"
    assert transaction["plan_id"] == plan_id
    assert transaction["receipt"]["rail"] == "TNG"

    activity = client.get("/v1/activity", headers=headers).json()
    assert activity["user_id"] == world.user_id
    assert [(i["merchant_name"], i["rail_used"], i["status"]) for i in activity["items"]] == [
        ("Kopi Corner", "TNG", "success")
    ]

    assert client.get(f"/v1/plans/{plan_id}", headers=headers).json()["status"] == "consumed"
    second = client.post(f"/v1/plans/{plan_id}/execute", headers=headers).json()
    assert second["success"] is False
    assert second["error"] == "This payment plan has already been executed"


def test_intent_endpoints(client: TestClient, headers: dict, world):
    send = client.post(
        "/v1/intents/send",
        json={"contact_id": str(world.contact.id), "amount_cents": 2_000, "note": "Lunch"},
        headers=headers,
    )
    bill = client.post(
        "/v1/intents/bill",
        json={"biller_account_id": str(world.biller.id), "amount_cents": 12_000},
        headers=headers,
    )
    request = client.post(
        "/v1/intents/request",
        json={"from_name": "Mei Ling", "from_phone": "+60198765432", "amount_cents": 3_000},
        headers=headers,
    )

    for response in (send, bill, request):
        assert response.status_code == 200
        assert response.json()["success"] is True


def test_unknown_qr_is_reported_in_body(client: TestClient, headers: dict, world):
    response = client.post(
        "/v1/intents/qr",
        json={"qr_payload_id": str(uuid.uuid4()), "amount_cents": 1_000},
        headers=headers,
    )

    assert response.status_code == 200
    assert response.json() == {
        "success": False,
        "intent_id": None,
        "error": "QR code not found",
        "gate_result": None,
    }


def test_invalid_amount_is_rejected(client: TestClient, headers: dict, world):
    response = client.post(
        "/v1/intents/send",
        json={"contact_id": str(world.contact.id), "amount_cents": 0},
        headers=headers,
    )

    assert response.status_code == 422


def test_identity_headers_are_required(client: TestClient, world):
    response = client.post("/v1/intents/request", json={"from_name": "Mei", "from_phone": "+6019", "amount_cents": 100})

    assert response.status_code == 422


def test_untrusted_device_gets_gate_result(client: TestClient, headers: dict, world):
    intent_id = create_qr_intent(client, headers, world, 4_500)

    data = resolve(client, {**headers, "X-Device-ID": "device_stolen"}, intent_id)

    assert data["success"] is False
    assert data["gate_result"] == {
        "passed": False,
        "blocked_reason": "This device is not recognized",
        "blocked_code": "DEVICE_UNTRUSTED",
    }


def test_blocked_amount_is_reported_in_body(client: TestClient, headers: dict, world):
    intent_id = create_qr_intent(client, headers, world, 600_000)

    data = resolve(client, headers, intent_id)

    assert data["success"] is False
    assert data["failure_type"] == "risk_blocked"
    assert data["plan_id"] is None


def test_malformed_ids_are_bad_requests(client: TestClient, headers: dict, world):
    assert client.post("/v1/intents/not-a-uuid/resolve", headers=headers).status_code == 400
    assert client.get("/v1/plans/not-a-uuid", headers=headers).json()["detail"] == "Invalid plan ID format"
    assert client.get("/v1/transactions/not-a-uuid", headers=headers).status_code == 400


def test_unknown_resources_are_not_found(client: TestClient, headers: dict, world):
    missing = str(uuid.uuid4())

    assert client.get(f"/v1/plans/{missing}", headers=headers).status_code == 404
    assert client.get(f"/v1/transactions/{missing}", headers=headers).status_code == 404
    assert client.post(f"/v1/transactions/{missing}/cancel", headers=headers).status_code == 404
    assert client.get(f"/v1/intents/{missing}/preview", headers=headers).status_code == 404


def test_plans_are_private(client: TestClient, headers: dict, world):
    plan_id = resolve(client, headers, create_qr_intent(client, headers, world, 4_500))["plan_id"]

    response = client.get(f"/v1/plans/{plan_id}", headers={**headers, "X-User-ID": "user_other"})

    assert response.status_code == 404


def test_confirmation_flow(client: TestClient, headers: dict, world, db):
    plan_id = resolve(client, headers, create_qr_intent(client, headers, world, 9_000))["plan_id"]

    unconfirmed = client.post(f"/v1/plans/{plan_id}/execute", headers=headers).json()
    confirmed = client.post(f"/v1/plans/{plan_id}/execute", json={"confirmed": True}, headers=headers).json()

    assert unconfirmed["success"] is False
    assert unconfirmed["error"].startswith("Confirmation required")
    assert confirmed["success"] is True
    db.expire_all()
    balances = {s.name: s.balance_cents for s in db.query(FundingSource).all()}
    assert balances == {"TNG": 0, "Maybank": 49_000, "Visa": 0}


def test_async_execution_is_completed_in_background(client: TestClient, headers: dict, world, db, monkeypatch):
    monkeypatch.setattr(settings, "async_completion_delay_seconds", 0)
    plan_id = resolve(client, headers, create_qr_intent(client, headers, world, 4_500), execution_mode="async")[
        "plan_id"
    ]

    executed = client.post(f"/v1/plans/{plan_id}/execute", headers=headers).json()

    assert executed["status"] == "pending"
    # TestClient runs background tasks before returning
    transaction = client.get(f"/v1/transactions/{executed['transaction_id']}", headers=headers).json()
    assert transaction["status"] == "success"
    db.expire_all()
    assert db.query(FundingSource).filter(FundingSource.name == "TNG").one().balance_cents == 3_500


def test_cancel_endpoint(client: TestClient, headers: dict, world, monkeypatch):
    # No background drain, so the transaction stays pending
    monkeypatch.setattr(plans, "drain_pending_jobs_after", AsyncMock())
    plan_id = resolve(client, headers, create_qr_intent(client, headers, world, 4_500), execution_mode="async")[
        "plan_id"
    ]
    transaction_id = client.post(f"/v1/plans/{plan_id}/execute", headers=headers).json()["transaction_id"]

    first = client.post(f"/v1/transactions/{transaction_id}/cancel", headers=headers).json()
    second = client.post(f"/v1/transactions/{transaction_id}/cancel", headers=headers).json()

    assert first == {"success": True, "error": None}
    assert second == {"success": False, "error": "Only pending transactions can be cancelled"}
    assert client.get(f"/v1/transactions/{transaction_id}", headers=headers).json()["status"] == "cancelled"


def test_preview_endpoint(client: TestClient, headers: dict, world):
    intent_id = create_qr_intent(client, headers, world, 4_500)

    response = client.get(f"/v1/intents/{intent_id}/preview", headers=headers)

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["recommended_rail"]["name"] == "TNG"
    assert data["summary"] == "Using TNG • Best match"
    assert [rail["name"] for rail in data["alternatives"]] == ["Maybank"]
