import asyncio
import hashlib
import hmac
import json

from fastapi.testclient import TestClient

from autopilot.api.deps import get_service
from autopilot.config import get_settings
from autopilot.main import app
from autopilot.services.automation import DisputeAutomationService
from autopilot.services.store import InMemoryStore
from autopilot.services.types import ChargeContext, DisputeRecord, Merchant, MerchantPolicy, now_epoch


WEBHOOK_SECRET = "whsec_api_test"


class _FakeProcessor:
    def __init__(self):
        self.submissions = []
        self.refunds = []

    async def get_charge(self, charge_id):
        return ChargeContext(billing_email="jane@example.com", billing_name="Jane")

    async def submit_evidence(self, dispute_id, payload):
        self.submissions.append((dispute_id, payload))

    async def create_refund(self, charge_id, metadata):
        self.refunds.append(charge_id)
        return "re_api"


def _client(monkeypatch):
    store = InMemoryStore()
    processor = _FakeProcessor()
    service = DisputeAutomationService(store, processor_factory=lambda _m: processor, default_policy=MerchantPolicy())
    monkeypatch.setitem(app.dependency_overrides, get_service, lambda: service)
    monkeypatch.setattr(get_settings(), "stripe_webhook_secret", WEBHOOK_SECRET)
    return TestClient(app), store, processor


def _seed(store):
    merchant = Merchant(
        id="m_1",
        name="Shop",
        processor_account_id="acct_1",
        access_token="sk_connected",
        policy=MerchantPolicy(auto_submit_enabled=True, min_evidence_score=0),
    )
    record = DisputeRecord(
        id="dp_1",
        reason="fraudulent",
        amount=4000,
        status="needs_response",
        merchant_id="m_1",
        charge_id="ch_1",
        evidence_score=50,
        updated_at="2024-01-01T00:00:00+00:00",
    )

    async def run():
        await store.upsert_merchant(merchant)
        await store.upsert_dispute(record)

    asyncio.run(run())


def test_health(monkeypatch):
    client, _, _ = _client(monkeypatch)
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["ok"] is True


def test_unknown_dispute_returns_404(monkeypatch):
    client, _, _ = _client(monkeypatch)
    assert client.get("/disputes/dp_missing").status_code == 404
    assert client.get("/disputes/dp_missing/readiness").status_code == 404
    assert client.post("/disputes/dp_missing/retry-submit").status_code == 404
    assert client.post("/disputes/dp_missing/deflect", json={"reason": "x"}).status_code == 404


def test_readiness_queue_and_retry(monkeypatch):
    client, store, processor = _client(monkeypatch)
    _seed(store)

    readiness = client.get("/disputes/dp_1/readiness").json()
    assert readiness == {"ready": True, "reason_code": "ready", "priority": 51}

    queue = client.get("/disputes/queue", params={"merchantId": "m_1"}).json()
    assert queue["ready_count"] == 1
    assert queue["items"][0]["id"] == "dp_1"

    resp = client.post("/disputes/dp_1/retry-submit")
    assert resp.status_code == 200
    assert resp.json()["ok"] is True
    assert resp.json()["message"] == "submitted"
    assert processor.submissions[0][0] == "dp_1"

    again = client.post("/disputes/dp_1/retry-submit").json()
    assert again["ok"] is False
    assert again["message"] == "already_submitted"


def test_deflect_then_repeat(monkeypatch):
    client, store, processor = _client(monkeypatch)
    _seed(store)
    first = client.post("/disputes/dp_1/deflect", json={"reason": "Goodwill"}).json()
    second = client.post("/disputes/dp_1/deflect").json()
    assert first["message"] == "deflected"
    assert first["detail"] == "re_api"
    assert second["message"] == "already_deflected"
    assert processor.refunds == ["ch_1"]
    assert client.get("/disputes/dp_1").json()["deflection_reason"] == "Goodwill"


def test_workflow_update(monkeypatch):
    client, store, _ = _client(monkeypatch)
    _seed(store)
    resp = client.patch("/disputes/dp_1/workflow", json={"workflow_status": "waiting", "owner": "ana"})
    assert resp.status_code == 200
    assert resp.json()["workflow_status"] == "waiting"
    assert resp.json()["owner"] == "ana"
    assert resp.json()["status"] == "needs_response"


def test_merchant_settings_and_optimizer(monkeypatch):
    client, store, _ = _client(monkeypatch)
    _seed(store)
    resp = client.patch("/api/merchants/m_1/settings", json={"auto_submit_reasons": ["fraudulent", "duplicate"]})
    assert resp.status_code == 200
    body = resp.json()
    assert body["connected"] is True
    assert "access_token" not in body
    assert body["settings"]["auto_submit_reasons"] == ["fraudulent", "duplicate"]

    resp = client.post("/api/merchants/m_1/optimize-reasons", json={"min_cases": 3})
    assert resp.status_code == 200
    assert resp.json()["allowed_reasons"] == ["duplicate", "fraudulent"]
    assert client.post("/api/merchants/m_missing/optimize-reasons").status_code == 404


def test_alert_ingest_reports_duplicates(monkeypatch):
    client, _, _ = _client(monkeypatch)
    payload = {"merchant_id": "m_1", "dedupe_key": "verifi-77", "source": "verifi"}
    first = client.post("/alerts", json=payload).json()
    second = client.post("/alerts", json=payload).json()
    assert first["duplicate"] is False
    assert second["duplicate"] is True
    assert client.get("/metrics", params={"merchantId": "m_1"}).json()["metrics"]["alerts"] == 1


def _signed_post(client, event):
    payload = json.dumps(event).encode()
    timestamp = now_epoch()
    digest = hmac.new(WEBHOOK_SECRET.encode(), f"{timestamp}.".encode() + payload, hashlib.sha256).hexdigest()
    header = f"t={timestamp},v1={digest}"
    return client.post(
        "/webhooks/stripe",
        content=payload,
        headers={"stripe-signature": header, "content-type": "application/json"},
    )


def test_webhook_rejects_bad_signature(monkeypatch):
    client, _, _ = _client(monkeypatch)
    resp = client.post("/webhooks/stripe", content=b"{}", headers={"stripe-signature": "t=1,v1=00"})
    assert resp.status_code == 400
    assert resp.json()["detail"].startswith("Webhook Error:")


def test_webhook_reconciles_dispute_event(monkeypatch):
    client, store, processor = _client(monkeypatch)
    _seed(store)
    event = {
        "id": "evt_1",
        "type": "charge.dispute.created",
        "account": "acct_1",
        "data": {
            "object": {
                "id": "dp_2",
                "reason": "duplicate",
                "amount": 1500,
                "currency": "usd",
                "status": "needs_response",
                "charge": "ch_2",
                "created": now_epoch(),
            }
        },
    }
    resp = _signed_post(client, event)
    assert resp.status_code == 200
    assert resp.json() == {"received": True, "handled": True}
    record = client.get("/disputes/dp_2").json()
    assert record["merchant_id"] == "m_1"
    assert record["submitted"] is True
    assert processor.submissions[-1][1]["submit"] is True


def test_webhook_acknowledges_unrelated_events(monkeypatch):
    client, _, _ = _client(monkeypatch)
    resp = _signed_post(client, {"id": "evt_2", "type": "charge.refunded", "data": {"object": {}}})
    assert resp.status_code == 200
    assert resp.json() == {"received": True, "handled": False}
