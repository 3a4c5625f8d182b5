from __future__ import annotations

import json
import logging
import secrets
import string
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import FoodOrder, FoodOrderOtp, FoodOrderOtpAudit, MerchantStore, MerchantWalletLedger
from ..utils.audit import log_event
from ..utils.stores import parse_int, resolve_store
from ..wallet import ledger
from .transitions import (
    ACTIVE_STATUSES,
    CANCELLED,
    DELIVERED,
    OUT_FOR_DELIVERY,
    RTO,
    allowed_targets,
    normalize_status,
    timestamp_updates,
)

logger = logging.getLogger(__name__)

MAX_OTP_ATTEMPTS = 5
OTP_LOCK_MINUTES = 15
RTO_OTP_LENGTH = 4


class OrderError(Exception):
    """Request-level failure carrying the HTTP status it maps to."""

    def __init__(self, message: str, status_code: int = 400, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.extra = extra


def generate_otp(length: int = RTO_OTP_LENGTH) -> str:
    return ''.join(secrets.choice(string.digits) for _ in range(length))


def load_store_order(store_public_id: str | None, raw_order_id: Any, *,
                     mismatch_status: int = 403,
                     invalid_id_message: str = "Invalid order id") -> Tuple[MerchantStore, FoodOrder]:
    store = resolve_store(store_public_id)
    if store is None:
        raise OrderError("Store not found", 404)

    order_pk = parse_int(raw_order_id)
    if order_pk is None:
        raise OrderError(invalid_id_message, 400)

    order = db.session.get(FoodOrder, order_pk)
    if order is None:
        raise OrderError("Order not found", 404)
    if order.merchant_store_id != store.id:
        if mismatch_status == 404:
            raise OrderError("Order not found", 404)
        raise OrderError("Order does not belong to this store", mismatch_status)
    return store, order


def list_orders(store: MerchantStore, status: str | None = None, limit: int = 100) -> List[FoodOrder]:
    query = FoodOrder.query.filter_by(merchant_store_id=store.id)
    if status and status != "all":
        if status == "active":
            query = query.filter(FoodOrder.order_status.in_(ACTIVE_STATUSES))
        else:
            query = query.filter(FoodOrder.order_status == status.upper())
    return query.order_by(FoodOrder.created_at.desc(), FoodOrder.id.desc()).limit(limit).all()


def order_stats(store: MerchantStore, now: datetime | None = None) -> Dict[str, Any]:
    now = now or datetime.utcnow()
    today_start = datetime(now.year, now.month, now.day)
    orders = (
        FoodOrder.query
        .filter(FoodOrder.merchant_store_id == store.id)
        .filter(FoodOrder.created_at >= today_start)
        .all()
    )

    active = [o for o in orders if (o.order_status or "CREATED") in ACTIVE_STATUSES]
    delivered = [o for o in orders if (o.order_status or "").upper() == DELIVERED]
    revenue = sum((Decimal(o.food_items_total_value or 0) for o in delivered), Decimal("0"))

    prep_minutes = [
        round((o.prepared_at - o.created_at).total_seconds() / 60)
        for o in orders
        if o.prepared_at and o.created_at
    ]
    avg_prep = round(sum(prep_minutes) / len(prep_minutes)) if prep_minutes else 0
    completion = round(len(delivered) / len(orders) * 100) if orders else 0

    return {
        "ordersToday": len(orders),
        "activeOrders": len(active),
        "avgPreparationTimeMinutes": avg_prep,
        "totalRevenueToday": float(revenue),
        "completionRatePercent": completion,
    }


def get_order_otp(order: FoodOrder) -> Optional[FoodOrderOtp]:
    return FoodOrderOtp.query.filter_by(order_id=order.order_id).first()


def convert_otp_to_rto(order: FoodOrder, now: datetime) -> Optional[FoodOrderOtp]:
    """Swap the pickup OTP for a fresh return-to-origin OTP."""
    otp = get_order_otp(order)
    if otp is None:
        logger.warning("RTO for order %s without an OTP row", order.order_id)
        return None
    otp.otp_type = "RTO"
    otp.otp_code = generate_otp()
    otp.attempt_count = 0
    otp.locked_until = None
    otp.verified_at = None
    otp.verified_by = None
    otp.updated_at = now
    return otp


def credit_order_earning(order: FoodOrder) -> Optional[MerchantWalletLedger]:
    amount = Decimal(order.food_items_total_value or 0)
    if amount <= 0:
        logger.info("Order %s delivered with no earning to credit", order.id)
        return None

    wallet = ledger.get_or_create_wallet(order.merchant_store_id)
    reference = order.formatted_order_id or str(order.order_id)
    return ledger.credit(
        wallet.id,
        amount,
        category="ORDER_EARNING",
        balance_type="AVAILABLE",
        reference_type="ORDER",
        reference_id=order.id,
        reference_extra=order.formatted_order_id,
        idempotency_key=f"order_earning_{order.id}",
        description=f"Earning for order {reference}",
        metadata={"order_id": order.order_id},
    )


def update_order_status(order: FoodOrder, requested: str, rejected_reason: str | None = None,
                        now: datetime | None = None) -> FoodOrder:
    now = now or datetime.utcnow()
    target = (requested or "").strip().upper()
    current = normalize_status(order.order_status)

    if target not in allowed_targets(current):
        raise OrderError(f"Invalid transition from {current} to {target}", 400)

    if target == OUT_FOR_DELIVERY:
        otp = get_order_otp(order)
        if otp is not None and not otp.verified_at:
            raise OrderError("OTP must be validated before dispatch", 400)

    updates = timestamp_updates(target, now)
    if target == CANCELLED and rejected_reason:
        updates["rejected_reason"] = rejected_reason

    before = {"order_status": order.order_status}
    order.order_status = target
    order.updated_at = now
    for column, value in updates.items():
        setattr(order, column, value)

    if target == RTO:
        convert_otp_to_rto(order, now)

    log_event(
        "order_status_changed",
        resource_type="orders_food",
        resource_id=order.id,
        before=before,
        after={"order_status": target, **updates},
    )

    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Failed to update order %s: %s", order.id, exc)
        raise OrderError("Failed to update order", 500) from exc

    if target == DELIVERED:
        # the status change stands even when the credit fails
        try:
            credit_order_earning(order)
        except Exception:
            db.session.rollback()
            logger.exception("Wallet credit failed for delivered order %s", order.id)

    return order


def _otp_audit(order_id: int, action: str, otp_type: str | None, metadata: Dict[str, Any] | None = None) -> None:
    db.session.add(FoodOrderOtpAudit(
        order_id=order_id,
        action=action,
        otp_type=otp_type,
        meta_info=json.dumps(metadata) if metadata else None,
    ))


def validate_otp(order: FoodOrder, submitted: str, now: datetime | None = None) -> Dict[str, Any]:
    """Check a hand-over OTP; raises :class:`OrderError` for every rejected attempt."""
    now = now or datetime.utcnow()
    otp = get_order_otp(order)
    if otp is None:
        raise OrderError("OTP not found", 404)

    if otp.verified_at:
        _otp_audit(order.order_id, "VALIDATE_FAIL", otp.otp_type, {"reason": "already_verified"})
        db.session.commit()
        raise OrderError("OTP already used", 400, valid=False)

    if otp.locked_until and otp.locked_until > now:
        raise OrderError("Too many attempts. Try again later.", 429, valid=False)

    if secrets.compare_digest((otp.otp_code or "").encode(), submitted.encode()):
        otp.verified_at = now
        otp.verified_by = "merchant"
        otp.attempt_count = 0
        otp.locked_until = None
        otp.updated_at = now
        _otp_audit(order.order_id, "VALIDATE_SUCCESS", otp.otp_type)
        db.session.commit()
        return {"valid": True}

    attempts = (otp.attempt_count or 0) + 1
    otp.attempt_count = attempts
    otp.locked_until = now + timedelta(minutes=OTP_LOCK_MINUTES) if attempts >= MAX_OTP_ATTEMPTS else None
    otp.updated_at = now
    _otp_audit(order.order_id, "VALIDATE_FAIL", otp.otp_type)
    db.session.commit()
    raise OrderError(
        "Invalid OTP",
        400,
        valid=False,
        attempts_remaining=max(0, MAX_OTP_ATTEMPTS - attempts),
    )
