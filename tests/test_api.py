"""HTTP surface tests against the in-memory store and the mock payment-link provider."""

import pytest
from fastapi.testclient import TestClient

from src.api.main import create_app
from src.database.postgres import ProposalDB
from src.integrations.clients.mocks.payments import MockPaymentLinkProvider
from src.utils.config_loader import EngineConfig

BASE = "/api/v1/underwriting"

DECISION = {
    "underwriterName": "li.na",
    "decision": {
        "acceptance": "ACCEPT",
        "riskLevel": "LOW",
        "riskReason": "Clean claims history",
        "finalPremium": 1020.0,
        "policyEffectiveDate": "2024-03-10",
        "policyExpiryDate": "2025-03-09",
    },
}


@pytest.fixture
def client():
    app = create_app(store=ProposalDB(), link_provider=MockPaymentLinkProvider(), config=EngineConfig())
    with TestClient(app) as c:
        yield c


@pytest.fixture
def proposal_id(client, application):
    response = client.post(f"{BASE}/proposals", json=application)
    assert response.status_code == 201
    return response.json()["proposal"]["proposal_id"]


def test_health(client):
    assert client.get("/").json()["status"] == "healthy"
    body = client.get("/health").json()
    assert body["store"] == "src.database.postgres"
    assert body["payment_link_provider"] == "MockPaymentLinkProvider"


def test_pending_and_detail(client, proposal_id):
    pending = client.get(f"{BASE}/pending").json()
    assert pending["count"] == 1
    assert pending["items"][0]["proposal_id"] == proposal_id
    assert pending["items"][0]["vehicle"]["plate_number"] == "京A12345"

    detail = client.get(f"{BASE}/proposals/{proposal_id}").json()
    assert detail["total_premium"] == 1020.0
    assert [c["premium"] for c in detail["coverages"]] == [800.0, 220.0]
    assert detail["proposal"]["status"] == "SUBMITTED"

    compat = client.get(f"{BASE}/detail", params={"id": proposal_id}).json()
    assert compat["proposal"]["proposal_id"] == proposal_id


def test_unknown_proposal_is_404(client):
    response = client.get(f"{BASE}/proposals/P-missing")
    assert response.status_code == 404
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "not_found"


def test_edit_validation_lists_every_field(client, proposal_id):
    response = client.put(
        f"{BASE}/proposals/{proposal_id}/coverages",
        json=[{"name": "", "base_premium": "x"}, {"name": "Glass", "rate": "-1"}],
    )
    assert response.status_code == 422
    assert set(response.json()["field_errors"]) == {
        "coverages[0].name",
        "coverages[0].base_premium",
        "coverages[1].rate",
    }


def test_coverage_routes(client, proposal_id):
    added = client.post(f"{BASE}/proposals/{proposal_id}/coverages", json={"name": "划痕险", "base_premium": "100"})
    assert added.status_code == 201
    assert added.json()["total_premium"] == 1120.0

    changed = client.put(f"{BASE}/proposals/{proposal_id}/coverages/2", json={"rate": "1.5"})
    assert changed.json()["total_premium"] == 1170.0

    removed = client.delete(f"{BASE}/proposals/{proposal_id}/coverages/2")
    assert removed.json()["total_premium"] == 1020.0

    assert client.delete(f"{BASE}/proposals/{proposal_id}/coverages/9").status_code == 404


def test_stale_version_is_409(client, proposal_id):
    ok = client.put(f"{BASE}/proposals/{proposal_id}/vehicle", params={"expected_version": 1}, json={"plate_number": "沪A1"})
    assert ok.status_code == 200
    stale = client.put(f"{BASE}/proposals/{proposal_id}/persons", params={"expected_version": 1}, json={"owner": {"name": "X"}})
    assert stale.status_code == 409
    assert stale.json()["error"] == "stale_write"


def test_accept_pay_issue_archive(client, proposal_id):
    decided = client.post(f"{BASE}/proposals/{proposal_id}/decision", json=DECISION)
    assert decided.status_code == 200
    body = decided.json()
    assert body["status"] == "UNDERWRITING_CONFIRMED"
    assert body["finalPremium"] == 1020.0
    assert body["qrUrl"] == body["qrPayload"]
    token = body["qrPayload"].split("token=")[1]

    status = client.get("/api/v1/payments/status", params={"token": token}).json()
    assert status["status"] == "UNDERWRITING_CONFIRMED"
    assert status["amount"] == 1020.0
    assert status["consumed"] is False

    paid = client.post("/api/v1/payments/authenticate", json={"authCode": body["authCode"].lower()})
    assert paid.status_code == 200
    assert paid.json()["status"] == "PAID"

    reused = client.post("/api/v1/payments/authenticate", json={"authCode": body["authCode"]})
    assert reused.status_code == 409
    assert reused.json()["outcome"] == "ALREADY_CONSUMED"

    issued = client.post("/api/v1/policy/issue", json={"proposalId": proposal_id}).json()
    assert issued["status"] == "POLICY_ISSUED"
    assert issued["policyNo"].startswith("PDAA")

    archived = client.post("/api/v1/proposal/lifecycle/update", json={"proposalId": proposal_id, "targetStatus": "COMPLETED"})
    assert archived.json()["status"] == "COMPLETED"

    status = client.get("/api/v1/payments/status", params={"token": token}).json()
    assert status["policyNo"] == issued["policyNo"]
    assert status["policyEffectiveDate"] == "2024-03-10"


def test_second_decision_is_409(client, proposal_id):
    client.post(f"{BASE}/proposals/{proposal_id}/decision", json=DECISION)
    again = client.post(f"{BASE}/decision", json={"proposalId": proposal_id, **DECISION})
    assert again.status_code == 409
    assert again.json()["error"] == "invalid_state"


def test_mismatched_premium_is_422(client, proposal_id):
    payload = {**DECISION, "decision": {**DECISION["decision"], "finalPremium": 999}}
    response = client.post(f"{BASE}/proposals/{proposal_id}/decision", json=payload)
    assert response.status_code == 422
    assert "final_premium" in response.json()["field_errors"]


def test_reject_and_illegal_lifecycle_update(client, proposal_id):
    rejected = client.post(
        f"{BASE}/proposals/{proposal_id}/decision",
        json={"decision": {"acceptance": "REJECT", "riskLevel": "HIGH", "riskReason": "Salvage title"}},
    ).json()
    assert rejected["status"] == "REJECTED"
    assert "authCode" not in rejected

    response = client.post("/api/v1/proposal/lifecycle/update", json={"proposalId": proposal_id, "targetStatus": "PAID"})
    assert response.status_code == 409
    assert response.json()["error"] == "illegal_transition"

    bad = client.post("/api/v1/proposal/lifecycle/update", json={"proposalId": proposal_id, "targetStatus": "SHIPPED"})
    assert bad.status_code == 422


def test_generate_and_attach_payment_link(client, proposal_id):
    client.post(f"{BASE}/proposals/{proposal_id}/decision", json=DECISION)

    generated = client.post("/api/v1/payments/generate", json={"proposalId": proposal_id})
    assert generated.status_code == 200
    link = generated.json()["paymentLink"]
    assert link.startswith("https://pay.mock.local/qr/MOCK_")

    attached = client.post(
        "/api/v1/payments/attach", json={"proposalId": proposal_id, "paymentLink": "https://cashier.example.com/p/1"}
    )
    assert attached.json()["paymentLink"] == "https://cashier.example.com/p/1"
    detail = client.get(f"{BASE}/proposals/{proposal_id}").json()
    assert detail["payment"]["payment_link"] == "https://cashier.example.com/p/1"


def test_payment_link_worker_failure_is_502():
    app = create_app(store=ProposalDB(), link_provider=MockPaymentLinkProvider(fail=True), config=EngineConfig())
    with TestClient(app) as client:
        response = client.post("/api/v1/payments/generate", json={"productName": "机动车", "amount": "100"})
    assert response.status_code == 502
    assert response.json()["retryable"] is True


def test_unknown_auth_code_and_token(client):
    assert client.post("/api/v1/payments/authenticate", json={"authCode": "ZZZZZZZZ"}).status_code == 404
    assert client.get("/api/v1/payments/status", params={"token": "unknown-token-123"}).status_code == 404


def test_lifecycle_update_accepts_status_key(client, proposal_id):
    client.post(f"{BASE}/proposals/{proposal_id}/decision", json=DECISION)
    response = client.post("/api/v1/proposal/lifecycle/update", json={"proposalId": proposal_id, "status": "PAID"})
    assert response.status_code == 200
    assert response.json()["status"] == "PAID"


def test_payment_link_amount_must_match_the_proposal(client, proposal_id):
    client.post(f"{BASE}/proposals/{proposal_id}/decision", json=DECISION)
    response = client.post("/api/v1/payments/generate", json={"proposalId": proposal_id, "amount": "1.00"})
    assert response.status_code == 422
    assert "amount" in response.json()["field_errors"]
