import pytest

from mxportal.extensions import db
from mxportal.models import AuditLog, FoodOrder, MerchantWalletLedger
from mxportal.orders import service, transitions
from mxportal.orders.service import credit_order_earning, get_order_otp
from mxportal.wallet import ledger

ALL_STATUSES = ["CREATED", "ACCEPTED", "PREPARING", "READY_FOR_PICKUP", "OUT_FOR_DELIVERY", "DELIVERED", "CANCELLED", "RTO"]


def _patch(client, order, status, store_id="GMMC1001", **extra):
    return client.patch(f"/api/food-orders/{order.id}", json={"store_id": store_id, "status": status, **extra})


def test_transition_table_matches_lifecycle():
    assert transitions.allowed_targets("CREATED") == {"ACCEPTED", "CANCELLED"}
    assert transitions.allowed_targets("NEW") == {"ACCEPTED", "CANCELLED"}
    assert transitions.allowed_targets("PREPARING") == {"READY_FOR_PICKUP", "CANCELLED", "RTO"}
    assert transitions.allowed_targets("OUT_FOR_DELIVERY") == {"DELIVERED", "RTO"}
    assert transitions.TERMINAL_STATUSES == {"DELIVERED", "CANCELLED", "RTO"}
    assert transitions.normalize_status(None) == "CREATED"
    assert transitions.normalize_status(" new ") == "CREATED"
    assert transitions.is_valid_transition("ready_for_pickup", "out_for_delivery")


@pytest.mark.parametrize("current", ["DELIVERED", "CANCELLED", "RTO"])
@pytest.mark.parametrize("target", ALL_STATUSES)
def test_terminal_statuses_reject_everything(client, make_order, current, target):
    order = make_order(status=current)
    resp = _patch(client, order, target)
    assert resp.status_code == 400
    assert resp.get_json()["error"] == f"Invalid transition from {current} to {target}"
    assert db.session.get(FoodOrder, order.id).order_status == current


def test_pairs_outside_table_leave_order_unchanged(client, make_order):
    for current in ALL_STATUSES:
        for target in ALL_STATUSES:
            if transitions.is_valid_transition(current, target):
                continue
            order = make_order(status=current)
            resp = _patch(client, order, target)
            assert resp.status_code == 400, (current, target)
            assert db.session.get(FoodOrder, order.id).order_status == current


def test_preparing_to_delivered_is_rejected(client, make_order):
    order = make_order(status="PREPARING")
    resp = _patch(client, order, "DELIVERED")
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "Invalid transition from PREPARING to DELIVERED"}
    assert MerchantWalletLedger.query.count() == 0


def test_out_for_delivery_to_delivered_credits_wallet_once(client, store, make_order):
    order = make_order(status="OUT_FOR_DELIVERY", total="250.00", verified=True)

    resp = _patch(client, order, "DELIVERED")
    assert resp.status_code == 200
    body = resp.get_json()["order"]
    assert body["order_status"] == "DELIVERED"
    assert body["delivered_at"] is not None

    entries = MerchantWalletLedger.query.all()
    assert len(entries) == 1
    entry = entries[0]
    assert entry.idempotency_key == f"order_earning_{order.id}"
    assert entry.category == "ORDER_EARNING"
    assert entry.reference_type == "ORDER"
    assert entry.reference_id == order.id

    wallet = ledger.get_wallet(store.id)
    assert float(wallet.available_balance) == 250.0
    assert float(wallet.total_earned) == 250.0

    # replaying the credit must not move money again
    again = credit_order_earning(db.session.get(FoodOrder, order.id))
    assert again.id == entry.id
    assert MerchantWalletLedger.query.count() == 1
    assert float(ledger.get_wallet(store.id).available_balance) == 250.0


def test_delivered_with_zero_value_skips_credit(client, make_order):
    order = make_order(status="OUT_FOR_DELIVERY", total="0")
    resp = _patch(client, order, "DELIVERED")
    assert resp.status_code == 200
    assert MerchantWalletLedger.query.count() == 0


def test_failed_credit_keeps_delivered_status(client, make_order, monkeypatch):
    order = make_order(status="OUT_FOR_DELIVERY", total="310.00", verified=True)

    def broken_credit(*args, **kwargs):
        raise ledger.WalletError("ledger unavailable")

    monkeypatch.setattr(service.ledger, "credit", broken_credit)
    resp = _patch(client, order, "DELIVERED")
    assert resp.status_code == 200
    assert resp.get_json()["order"]["order_status"] == "DELIVERED"

    stored = db.session.get(FoodOrder, order.id)
    assert stored.order_status == "DELIVERED"
    assert stored.delivered_at is not None
    assert MerchantWalletLedger.query.count() == 0


def test_accept_stamps_accepted_at_and_audits(client, make_order):
    order = make_order(status="NEW")
    resp = _patch(client, order, "accepted")
    assert resp.status_code == 200
    assert resp.get_json()["order"]["accepted_at"] is not None

    audit = AuditLog.query.filter_by(action="order_status_changed").one()
    assert audit.resource_id == order.id
    assert '"NEW"' in audit.before_state


def test_ready_for_pickup_then_preparing_timestamps(client, make_order):
    order = make_order(status="PREPARING")
    resp = _patch(client, order, "READY_FOR_PICKUP")
    assert resp.get_json()["order"]["prepared_at"] is not None


def test_dispatch_requires_verified_otp(client, make_order):
    order = make_order(status="READY_FOR_PICKUP", otp_code="4321")
    resp = _patch(client, order, "OUT_FOR_DELIVERY")
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "OTP must be validated before dispatch"

    verified = make_order(status="READY_FOR_PICKUP", verified=True)
    resp = _patch(client, verified, "OUT_FOR_DELIVERY")
    assert resp.status_code == 200
    assert resp.get_json()["order"]["dispatched_at"] is not None


def test_dispatch_without_otp_row_is_allowed(client, make_order):
    order = make_order(status="READY_FOR_PICKUP", otp_code=None)
    assert _patch(client, order, "OUT_FOR_DELIVERY").status_code == 200


def test_cancel_records_reason(client, make_order):
    order = make_order(status="ACCEPTED")
    resp = _patch(client, order, "CANCELLED", rejected_reason="Out of stock")
    body = resp.get_json()["order"]
    assert body["rejected_reason"] == "Out of stock"
    assert body["cancelled_at"] is not None


def test_rto_converts_pickup_otp(client, make_order):
    order = make_order(status="OUT_FOR_DELIVERY", otp_code="1111", verified=True)
    resp = _patch(client, order, "RTO")
    assert resp.status_code == 200
    body = resp.get_json()["order"]
    assert body["is_rto"] is True
    assert body["rto_at"] is not None

    otp = get_order_otp(db.session.get(FoodOrder, order.id))
    assert otp.otp_type == "RTO"
    assert otp.verified_at is None
    assert otp.attempt_count == 0
    assert len(otp.otp_code) == 4 and otp.otp_code.isdigit()


def test_order_from_another_store_is_forbidden(client, make_order, other_store):
    order = make_order(status="CREATED", owner=other_store)
    resp = _patch(client, order, "ACCEPTED")
    assert resp.status_code == 403
    assert resp.get_json()["error"] == "Order does not belong to this store"


def test_request_validation(client, store, make_order):
    order = make_order()
    assert client.patch(f"/api/food-orders/{order.id}", json={"store_id": "GMMC1001"}).status_code == 400
    assert _patch(client, order, "ACCEPTED", store_id="NOPE").status_code == 404

    resp = client.patch("/api/food-orders/abc", json={"store_id": "GMMC1001", "status": "ACCEPTED"})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "Invalid order id"

    resp = client.patch("/api/food-orders/999999", json={"store_id": "GMMC1001", "status": "ACCEPTED"})
    assert resp.status_code == 404

    resp = client.patch(f"/api/food-orders/{order.id}", json=["GMMC1001", "ACCEPTED"])
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "store_id and status are required"


def test_listing_and_stats(client, make_order):
    make_order(status="CREATED")
    make_order(status="PREPARING")
    make_order(status="DELIVERED", total="300.00")

    resp = client.get("/api/food-orders?store_id=GMMC1001&status=active")
    assert resp.status_code == 200
    assert {o["order_status"] for o in resp.get_json()["orders"]} == {"CREATED", "PREPARING"}

    resp = client.get("/api/food-orders?store_id=GMMC1001")
    assert len(resp.get_json()["orders"]) == 3

    stats = client.get("/api/food-orders/stats?store_id=GMMC1001").get_json()
    assert stats["ordersToday"] == 3
    assert stats["activeOrders"] == 2
    assert stats["totalRevenueToday"] == 300.0
    assert stats["completionRatePercent"] == 33

    assert client.get("/api/food-orders").status_code == 400
