import hashlib
import hmac
import json

import pytest

from mxportal.billing import service as billing
from mxportal.extensions import db
from mxportal.models import MerchantPlan, MerchantSubscription, OnboardingPayment, SubscriptionPayment

SECRET = "whsec_test"


def _sign(body: str, secret: str = SECRET) -> str:
    return hmac.new(secret.encode(), body.encode(), hashlib.sha256).hexdigest()


def _post(client, event, signature=None):
    body = json.dumps(event) if not isinstance(event, str) else event
    headers = {"X-Razorpay-Signature": signature if signature is not None else _sign(body)}
    return client.post("/api/webhooks/razorpay", data=body, headers=headers, content_type="application/json")


def _captured(order_id, payment_id="pay_1"):
    return {
        "event": "payment.captured",
        "payload": {"payment": {"entity": {"id": payment_id, "order_id": order_id, "status": "captured"}}},
    }


class FakeOrderApi:
    def __init__(self, notes):
        self.notes = notes
        self.fetched = []

    def fetch(self, order_id):
        self.fetched.append(order_id)
        return {"id": order_id, "notes": self.notes}


class FakeClient:
    def __init__(self, notes):
        self.order = FakeOrderApi(notes)


@pytest.fixture
def onboarding(store):
    row = OnboardingPayment(merchant_parent_id=store.parent_id, razorpay_order_id="order_ON1", amount_paise=99900)
    db.session.add(row)
    db.session.commit()
    return row


def test_invalid_signature_is_rejected(client):
    resp = _post(client, _captured("order_ON1"), signature="deadbeef")
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "Invalid signature"}


def test_missing_secret_acknowledges_without_processing(app, client, onboarding):
    app.config["RAZORPAY_WEBHOOK_SECRET"] = None
    resp = _post(client, _captured("order_ON1"), signature="anything")
    assert resp.status_code == 200
    assert resp.get_json() == {"received": True}
    assert db.session.get(OnboardingPayment, onboarding.id).status == "created"


def test_invalid_json_is_rejected(client):
    resp = _post(client, "{not json")
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "Invalid JSON"}


def test_unknown_event_is_acknowledged(client):
    resp = _post(client, {"event": "refund.processed"})
    assert resp.status_code == 200
    assert resp.get_json() == {"received": True}


def test_onboarding_payment_captured(client, store, onboarding):
    resp = _post(client, _captured("order_ON1", "pay_ON1"))
    assert resp.status_code == 200

    row = db.session.get(OnboardingPayment, onboarding.id)
    assert row.status == "captured"
    assert row.razorpay_payment_id == "pay_ON1"
    assert row.captured_at is not None
    assert row.merchant_store_id == store.id


def test_onboarding_payment_failed(client, onboarding):
    event = {
        "event": "payment.failed",
        "payload": {"payment": {"entity": {"id": "pay_F", "order_id": "order_ON1",
                                           "error_description": "Card declined"}}},
    }
    assert _post(client, event).status_code == 200
    row = db.session.get(OnboardingPayment, onboarding.id)
    assert row.status == "failed"
    assert row.failure_reason == "Card declined"
    assert row.failed_at is not None


def test_subscription_payment_captured_once(client, store, monkeypatch):
    plan = MerchantPlan.query.filter_by(plan_code="BASIC").one()
    fake = FakeClient({"store_id": "GMMC1001", "plan_id": str(plan.id)})
    monkeypatch.setattr(billing, "get_razorpay_client", lambda: fake)

    assert _post(client, _captured("order_SUB1", "pay_SUB1")).status_code == 200
    assert fake.order.fetched == ["order_SUB1"]

    sub = MerchantSubscription.query.filter_by(store_id=store.id).one()
    assert sub.plan_id == plan.id
    assert sub.subscription_status == "ACTIVE"
    payment = SubscriptionPayment.query.one()
    assert payment.payment_gateway_id == "pay_SUB1"
    assert float(payment.amount) == 499.0

    # Razorpay retries deliveries; the payment id keeps them from double-recording
    assert _post(client, _captured("order_SUB1", "pay_SUB1")).status_code == 200
    assert SubscriptionPayment.query.count() == 1
    assert MerchantSubscription.query.count() == 1


def test_order_without_plan_notes_is_ignored(client, store, monkeypatch):
    monkeypatch.setattr(billing, "get_razorpay_client", lambda: FakeClient({"purpose": "tip"}))
    assert _post(client, _captured("order_TIP")).status_code == 200
    assert SubscriptionPayment.query.count() == 0
