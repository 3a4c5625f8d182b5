from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional

import razorpay
import requests
from flask import current_app

from ..extensions import db
from ..models import MerchantPlan, MerchantStore, MerchantSubscription, SubscriptionPayment
from ..utils.audit import log_event
from .proration import UpgradeQuote, quote_upgrade

logger = logging.getLogger(__name__)

GATEWAY_ERRORS = (
    razorpay.errors.BadRequestError,
    razorpay.errors.ServerError,
    razorpay.errors.GatewayError,
    requests.RequestException,
)


class BillingError(Exception):
    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def get_razorpay_client() -> Optional[razorpay.Client]:
    key_id = current_app.config.get("RAZORPAY_KEY_ID")
    key_secret = current_app.config.get("RAZORPAY_KEY_SECRET")
    if not key_id or not key_secret:
        return None
    return razorpay.Client(auth=(key_id, key_secret))


def list_plans():
    return (
        MerchantPlan.query
        .filter_by(is_active=True)
        .order_by(MerchantPlan.display_order.asc(), MerchantPlan.id.asc())
        .all()
    )


def serialize_plan(plan: MerchantPlan) -> Dict[str, Any]:
    return {
        "id": plan.id,
        "plan_code": plan.plan_code,
        "plan_name": plan.plan_name,
        "price": float(plan.price or 0),
        "billing_days": plan.billing_days,
        "description": plan.description,
        "display_order": plan.display_order,
        "is_active": plan.is_active,
    }


def active_subscription(store: MerchantStore, now: datetime | None = None) -> Optional[MerchantSubscription]:
    now = now or datetime.utcnow()
    return (
        MerchantSubscription.query
        .filter_by(merchant_id=store.parent_id, store_id=store.id,
                   subscription_status="ACTIVE", is_active=True)
        .filter(MerchantSubscription.expiry_date > now)
        .order_by(MerchantSubscription.created_at.desc(), MerchantSubscription.id.desc())
        .first()
    )


def _load_plan(plan_id: int | None, missing_message: str) -> MerchantPlan:
    plan = db.session.get(MerchantPlan, plan_id) if plan_id else None
    if plan is None:
        raise BillingError(missing_message, 404)
    return plan


def upgrade_quote(store: MerchantStore, new_plan_id: int | None, now: datetime | None = None) -> Dict[str, Any]:
    """Price of moving ``store`` onto a paid plan after crediting unused time."""
    now = now or datetime.utcnow()
    new_plan = _load_plan(new_plan_id, "New plan not found")
    new_price = Decimal(new_plan.price or 0)
    if new_price <= 0:
        raise BillingError("Upgrade endpoint is for paid plans only. Use subscription API for free plan.")

    subscription = active_subscription(store, now)
    current_plan = subscription.plan if subscription else None
    current_price = Decimal(current_plan.price or 0) if current_plan else Decimal("0")

    if subscription and current_plan and current_plan.id == new_plan.id:
        raise BillingError("Cannot upgrade to the same plan")
    if subscription and current_price > new_price:
        raise BillingError(
            "Downgrade is not allowed via upgrade API. Please wait for current plan to expire or contact support."
        )

    if subscription:
        quote = quote_upgrade(new_price, current_price, subscription.start_date, subscription.expiry_date, now)
    else:
        quote = quote_upgrade(new_price, now=now)

    message = (
        "No payment required; your unused time covers the new plan."
        if quote.amount_to_charge == 0
        else f"You will be charged ₹{quote.amount_to_charge:.2f} after adjusting unused time from your current plan."
    )
    return {
        "success": True,
        "amountToCharge": float(quote.amount_to_charge),
        "amountToChargePaise": quote.amount_to_charge_paise,
        "remainingCredit": float(quote.remaining_credit),
        "creditToApply": float(quote.credit_to_apply),
        "usedDays": quote.used_days,
        "totalDays": quote.total_days,
        "currency": "INR",
        "newPlan": {
            "id": new_plan.id,
            "plan_name": new_plan.plan_name,
            "plan_code": new_plan.plan_code,
            "price": float(new_price),
        },
        "currentPlan": (
            {"id": current_plan.id, "plan_name": current_plan.plan_name, "price": float(current_price)}
            if current_plan else None
        ),
        "currentSubscription": (
            {
                "id": subscription.id,
                "start_date": subscription.start_date.isoformat() if subscription.start_date else None,
                "expiry_date": subscription.expiry_date.isoformat() if subscription.expiry_date else None,
            }
            if subscription else None
        ),
        "isUpgrade": bool(subscription) and current_price > 0,
        "message": message,
    }


def _checkout_quote(store: MerchantStore, plan: MerchantPlan, now: datetime) -> tuple[UpgradeQuote, bool]:
    new_price = Decimal(plan.price or 0)
    subscription = active_subscription(store, now)
    if subscription and new_price > 0 and subscription.plan is not None:
        current_price = Decimal(subscription.plan.price or 0)
        if subscription.plan_id != plan.id and 0 < current_price < new_price:
            quote = quote_upgrade(new_price, current_price, subscription.start_date, subscription.expiry_date, now)
            return quote, True
    return quote_upgrade(new_price, now=now), False


def create_payment_order(store: MerchantStore, plan_id: int | None,
                         client: razorpay.Client | None = None,
                         now: datetime | None = None) -> Dict[str, Any]:
    """Create a Razorpay order for a plan purchase; notes carry the store and plan for the webhook."""
    now = now or datetime.utcnow()
    client = client or get_razorpay_client()
    if client is None:
        raise BillingError("Payment gateway not configured", 503)

    plan = _load_plan(plan_id, "Plan not found")
    quote, is_upgrade = _checkout_quote(store, plan, now)
    plan_summary = {"id": plan.id, "name": plan.plan_name, "price": float(plan.price or 0)}
    key_id = current_app.config.get("RAZORPAY_KEY_ID")

    if quote.amount_to_charge <= 0:
        return {
            "success": True,
            "skipPayment": True,
            "orderId": None,
            "keyId": key_id,
            "amount": 0,
            "amountToCharge": 0,
            "currency": "INR",
            "isUpgrade": is_upgrade,
            "plan": plan_summary,
        }

    receipt = f"plan_{'upgrade' if is_upgrade else 'new'}_{store.id}_{plan.id}_{int(time.time())}"
    try:
        order = client.order.create({
            "amount": quote.amount_to_charge_paise,
            "currency": "INR",
            "receipt": receipt,
            "notes": {
                "store_id": store.store_id,
                "store_name": store.store_name,
                "plan_id": str(plan.id),
                "plan_name": plan.plan_name,
            },
        })
    except GATEWAY_ERRORS as exc:
        logger.exception("Unable to create Razorpay order: %s", exc)
        raise BillingError("Could not create payment order", 502) from exc

    body = {
        "success": True,
        "orderId": order.get("id"),
        "keyId": key_id,
        "amount": quote.amount_to_charge_paise,
        "currency": "INR",
        "isUpgrade": is_upgrade,
        "amountToCharge": float(quote.amount_to_charge),
        "plan": plan_summary,
    }
    if is_upgrade:
        body["creditApplied"] = float(quote.credit_to_apply)
    return body


def activate_subscription(store: MerchantStore, plan: MerchantPlan, payment_id: str, order_id: str,
                          now: datetime | None = None) -> Optional[SubscriptionPayment]:
    """Record a captured plan payment and move the store onto ``plan``.

    Returns ``None`` when the payment id has already been recorded.
    """
    if SubscriptionPayment.query.filter_by(payment_gateway_id=payment_id).first():
        logger.info("Subscription payment %s already recorded", payment_id)
        return None

    now = now or datetime.utcnow()
    days = plan.billing_days or current_app.config.get("DEFAULT_BILLING_DAYS", 30)
    expiry = now + timedelta(days=days)

    subscription = (
        MerchantSubscription.query
        .filter_by(merchant_id=store.parent_id, store_id=store.id, subscription_status="ACTIVE")
        .order_by(MerchantSubscription.created_at.desc())
        .first()
    )
    if subscription is None:
        subscription = MerchantSubscription(
            merchant_id=store.parent_id,
            store_id=store.id,
            auto_renew=False,
        )
        db.session.add(subscription)

    subscription.plan_id = plan.id
    subscription.subscription_status = "ACTIVE"
    subscription.payment_status = "PAID"
    subscription.start_date = now
    subscription.expiry_date = expiry
    subscription.is_active = True
    subscription.last_payment_date = now
    subscription.next_billing_date = expiry
    subscription.updated_at = now
    db.session.flush()

    payment = SubscriptionPayment(
        merchant_id=store.parent_id,
        store_id=store.id,
        subscription_id=subscription.id,
        plan_id=plan.id,
        amount=Decimal(plan.price or 0),
        payment_gateway="RAZORPAY",
        payment_gateway_id=payment_id,
        payment_gateway_response=json.dumps({
            "razorpay_order_id": order_id,
            "razorpay_payment_id": payment_id,
            "webhook": True,
        }),
        payment_status="PAID",
        payment_date=now,
        billing_period_start=now,
        billing_period_end=expiry,
    )
    db.session.add(payment)
    log_event(
        "subscription_activated",
        resource_type="merchant_subscriptions",
        resource_id=subscription.id,
        after={"plan_id": plan.id, "payment_id": payment_id, "expiry_date": expiry},
    )
    db.session.commit()
    logger.info("Store %s moved to plan %s until %s", store.store_id, plan.plan_code, expiry.date())
    return payment
