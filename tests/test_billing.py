from datetime import datetime, timedelta
from decimal import Decimal

import razorpay

from mxportal.billing import service as billing
from mxportal.billing.proration import quote_upgrade
from mxportal.extensions import db
from mxportal.models import MerchantPlan, MerchantSubscription

NOW = datetime(2026, 5, 20, 12, 0, 0)


def _plan(code):
    return MerchantPlan.query.filter_by(plan_code=code).one()


def _subscribe(store, plan, start, days=30):
    sub = MerchantSubscription(
        merchant_id=store.parent_id,
        store_id=store.id,
        plan_id=plan.id,
        subscription_status="ACTIVE",
        payment_status="PAID",
        start_date=start,
        expiry_date=start + timedelta(days=days),
        is_active=True,
    )
    db.session.add(sub)
    db.session.commit()
    return sub


class FakeOrders:
    def __init__(self, error=None):
        self.error = error
        self.created = []

    def create(self, data):
        if self.error:
            raise self.error
        self.created.append(data)
        return {"id": "order_F1", "amount": data["amount"], "currency": "INR"}


class FakeRazorpay:
    def __init__(self, error=None):
        self.order = FakeOrders(error)


def test_quote_without_subscription_charges_full_price():
    quote = quote_upgrade(Decimal("999"), now=NOW)
    assert quote.amount_to_charge == Decimal("999.00")
    assert quote.total_days == 30
    assert quote.used_days == 0
    assert quote.amount_to_charge_paise == 99900


def test_quote_credits_unused_days():
    start = NOW - timedelta(days=10)
    quote = quote_upgrade(Decimal("999"), Decimal("499"), start, start + timedelta(days=30), NOW)
    assert quote.total_days == 30
    assert quote.used_days == 10
    assert quote.remaining_credit == Decimal("332.67")
    assert quote.amount_to_charge == Decimal("666.33")


def test_quote_clamps_used_days_after_expiry():
    start = NOW - timedelta(days=45)
    quote = quote_upgrade(Decimal("999"), Decimal("499"), start, start + timedelta(days=30), NOW)
    assert quote.used_days == 30
    assert quote.remaining_credit == Decimal("0.00")
    assert quote.amount_to_charge == Decimal("999.00")


def test_quote_credit_never_exceeds_new_price():
    start = NOW
    quote = quote_upgrade(Decimal("100"), Decimal("999"), start, start + timedelta(days=30), NOW)
    assert quote.credit_to_apply == Decimal("100.00")
    assert quote.amount_to_charge == Decimal("0.00")


def test_plans_are_listed_in_display_order(client):
    plans = client.get("/api/merchant/plans").get_json()["plans"]
    assert [p["plan_code"] for p in plans] == ["FREE", "BASIC", "PREMIUM"]

    _plan("BASIC").is_active = False
    db.session.commit()
    plans = client.get("/api/merchant/plans").get_json()["plans"]
    assert [p["plan_code"] for p in plans] == ["FREE", "PREMIUM"]


def test_upgrade_quote_endpoint(client, store):
    basic, premium = _plan("BASIC"), _plan("PREMIUM")
    _subscribe(store, basic, datetime.utcnow() - timedelta(days=15))

    resp = client.get(f"/api/merchant/subscription/upgrade-quote?storeId=GMMC1001&newPlanId={premium.id}")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["isUpgrade"] is True
    assert body["usedDays"] == 15
    assert body["totalDays"] == 30
    assert body["remainingCredit"] == 249.5
    assert body["amountToCharge"] == 749.5
    assert body["amountToChargePaise"] == 74950
    assert body["currentPlan"]["id"] == basic.id

    resp = client.post("/api/merchant/subscription/upgrade-quote",
                       json={"storeId": "GMMC1001", "newPlanId": premium.id})
    assert resp.get_json()["amountToCharge"] == 749.5


def test_upgrade_quote_rejections(client, store):
    basic, premium, free = _plan("BASIC"), _plan("PREMIUM"), _plan("FREE")
    _subscribe(store, premium, datetime.utcnow() - timedelta(days=1))

    def quote(plan_id):
        return client.post("/api/merchant/subscription/upgrade-quote",
                           json={"storeId": "GMMC1001", "newPlanId": plan_id})

    assert quote(premium.id).get_json()["error"] == "Cannot upgrade to the same plan"
    assert quote(basic.id).status_code == 400
    assert "Downgrade" in quote(basic.id).get_json()["error"]
    assert quote(free.id).status_code == 400
    assert quote(99999).status_code == 404

    assert client.post("/api/merchant/subscription/upgrade-quote", json={"storeId": "GMMC1001"}).status_code == 400
    assert client.get(f"/api/merchant/subscription/upgrade-quote?storeId=NOPE&newPlanId={basic.id}").status_code == 404


def test_quote_without_subscription_via_endpoint(client, store):
    premium = _plan("PREMIUM")
    body = client.get(f"/api/merchant/subscription/upgrade-quote?storeId=GMMC1001&newPlanId={premium.id}").get_json()
    assert body["isUpgrade"] is False
    assert body["amountToCharge"] == 999.0
    assert body["currentPlan"] is None


def test_create_payment_order(client, store, monkeypatch):
    fake = FakeRazorpay()
    monkeypatch.setattr(billing, "get_razorpay_client", lambda: fake)
    basic = _plan("BASIC")

    resp = client.post("/api/merchant/subscription/create-payment-order",
                       json={"storeId": "GMMC1001", "planId": basic.id})
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["orderId"] == "order_F1"
    assert body["amount"] == 49900
    assert body["keyId"] == "rzp_test_key"
    assert body["isUpgrade"] is False

    payload = fake.order.created[0]
    assert payload["amount"] == 49900
    assert payload["currency"] == "INR"
    assert payload["notes"]["store_id"] == "GMMC1001"
    assert payload["notes"]["plan_id"] == str(basic.id)


def test_create_payment_order_for_upgrade_applies_credit(client, store, monkeypatch):
    fake = FakeRazorpay()
    monkeypatch.setattr(billing, "get_razorpay_client", lambda: fake)
    basic, premium = _plan("BASIC"), _plan("PREMIUM")
    _subscribe(store, basic, datetime.utcnow() - timedelta(days=15))

    body = client.post("/api/merchant/subscription/create-payment-order",
                       json={"storeId": "GMMC1001", "planId": premium.id}).get_json()
    assert body["isUpgrade"] is True
    assert body["creditApplied"] == 249.5
    assert fake.order.created[0]["amount"] == 74950


def test_free_plan_skips_payment(client, store, monkeypatch):
    fake = FakeRazorpay()
    monkeypatch.setattr(billing, "get_razorpay_client", lambda: fake)
    body = client.post("/api/merchant/subscription/create-payment-order",
                       json={"storeId": "GMMC1001", "planId": _plan("FREE").id}).get_json()
    assert body["skipPayment"] is True
    assert body["orderId"] is None
    assert fake.order.created == []


def test_create_payment_order_errors(client, store, monkeypatch):
    basic = _plan("BASIC")
    monkeypatch.setattr(billing, "get_razorpay_client", lambda: None)
    resp = client.post("/api/merchant/subscription/create-payment-order",
                       json={"storeId": "GMMC1001", "planId": basic.id})
    assert resp.status_code == 503

    monkeypatch.setattr(billing, "get_razorpay_client",
                        lambda: FakeRazorpay(razorpay.errors.BadRequestError("amount too small")))
    resp = client.post("/api/merchant/subscription/create-payment-order",
                       json={"storeId": "GMMC1001", "planId": basic.id})
    assert resp.status_code == 502
    assert resp.get_json()["error"] == "Could not create payment order"

    resp = client.post("/api/merchant/subscription/create-payment-order", json={"storeId": "GMMC1001"})
    assert resp.status_code == 400


def test_activate_subscription_is_recorded_once(store):
    payment_id = "pay_ABC"
    premium = _plan("PREMIUM")
    payment = billing.activate_subscription(store, premium, payment_id, "order_X", now=NOW)
    assert payment is not None
    assert payment.billing_period_end == NOW + timedelta(days=30)

    sub = MerchantSubscription.query.filter_by(store_id=store.id).one()
    assert sub.plan_id == premium.id
    assert sub.payment_status == "PAID"
    assert sub.expiry_date == NOW + timedelta(days=30)

    assert billing.activate_subscription(store, premium, payment_id, "order_X", now=NOW) is None
