from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict

import razorpay
from flask import Blueprint, current_app, jsonify, request

from ..billing import service as billing
from ..extensions import db
from ..models import MerchantPlan, MerchantStore, OnboardingPayment
from ..utils.audit import log_event
from ..utils.stores import parse_int

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/api/webhooks")


def _payment_entity(event: Dict[str, Any]) -> Dict[str, Any]:
    return ((event.get("payload") or {}).get("payment") or {}).get("entity") or {}


def _capture_onboarding(row: OnboardingPayment, payment_id: str) -> None:
    store_id = row.merchant_store_id
    if not store_id:
        latest = (
            MerchantStore.query
            .filter_by(parent_id=row.merchant_parent_id)
            .order_by(MerchantStore.created_at.desc(), MerchantStore.id.desc())
            .first()
        )
        store_id = latest.id if latest else None

    now = datetime.utcnow()
    row.razorpay_payment_id = payment_id
    row.status = "captured"
    row.razorpay_status = "captured"
    row.captured_at = now
    row.updated_at = now
    row.merchant_store_id = store_id
    log_event(
        "onboarding_payment_captured",
        resource_type="merchant_onboarding_payments",
        resource_id=row.id,
        after={"razorpay_order_id": row.razorpay_order_id, "razorpay_payment_id": payment_id},
    )
    db.session.commit()


def _capture_subscription(order_id: str, payment_id: str) -> None:
    client = billing.get_razorpay_client()
    if client is None:
        current_app.logger.warning("[webhooks/razorpay] cannot fetch order %s without API keys", order_id)
        return

    try:
        order = client.order.fetch(order_id)
    except billing.GATEWAY_ERRORS as exc:
        current_app.logger.warning("[webhooks/razorpay] order fetch failed for %s: %s", order_id, exc)
        return

    notes = order.get("notes") or {}
    public_store_id = notes.get("store_id")
    plan_id = parse_int(notes.get("plan_id"))
    if not public_store_id or plan_id is None:
        return

    store = MerchantStore.query.filter_by(store_id=str(public_store_id)).first()
    plan = db.session.get(MerchantPlan, plan_id)
    if store is None or store.parent_id is None or plan is None:
        current_app.logger.warning("[webhooks/razorpay] order %s notes do not match a store/plan", order_id)
        return

    billing.activate_subscription(store, plan, payment_id, order_id)


def _handle_captured(event: Dict[str, Any]) -> None:
    payment = _payment_entity(event)
    order_id, payment_id = payment.get("order_id"), payment.get("id")
    if not order_id or not payment_id:
        return

    row = OnboardingPayment.query.filter_by(razorpay_order_id=order_id).first()
    if row is not None:
        _capture_onboarding(row, payment_id)
    else:
        _capture_subscription(order_id, payment_id)


def _handle_failed(event: Dict[str, Any]) -> None:
    payment = _payment_entity(event)
    order_id = payment.get("order_id")
    if not order_id:
        return

    row = OnboardingPayment.query.filter_by(razorpay_order_id=order_id).first()
    if row is None:
        return
    now = datetime.utcnow()
    row.status = "failed"
    row.failed_at = now
    row.failure_reason = payment.get("error_description") or "Payment failed"
    row.updated_at = now
    db.session.commit()


@webhooks_bp.post("/razorpay")
def razorpay_webhook():
    secret = current_app.config.get("RAZORPAY_WEBHOOK_SECRET")
    if not secret:
        current_app.logger.warning("[webhooks/razorpay] RAZORPAY_WEBHOOK_SECRET not set")
        return jsonify({"received": True}), 200

    body = request.get_data(as_text=True)
    signature = request.headers.get("X-Razorpay-Signature") or ""
    try:
        razorpay.Utility().verify_webhook_signature(body, signature, secret)
    except razorpay.errors.SignatureVerificationError:
        current_app.logger.warning("[webhooks/razorpay] Invalid signature")
        return jsonify({"error": "Invalid signature"}), 400

    try:
        event = json.loads(body)
    except ValueError:
        return jsonify({"error": "Invalid JSON"}), 400
    if not isinstance(event, dict):
        return jsonify({"error": "Invalid JSON"}), 400

    event_type = event.get("event")
    current_app.logger.info("[webhooks/razorpay] %s", event_type)
    if event_type == "payment.captured":
        _handle_captured(event)
    elif event_type == "payment.failed":
        _handle_failed(event)

    return jsonify({"received": True}), 200
