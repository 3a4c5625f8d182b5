from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import or_

from ..extensions import db
from ..models import FoodOrder, MerchantWalletLedger
from ..utils.stores import json_body, parse_int, resolve_store, store_param, utc_day_bounds, utc_day_range
from . import ledger
from .payouts import (
    PayoutError,
    get_store_payout,
    pending_withdrawal_total,
    quote_withdrawal,
    request_payout,
    serialize_payout,
    serialize_payout_detail,
)

wallet_bp = Blueprint("wallet", __name__, url_prefix="/api/merchant")

DEFAULT_LEDGER_LIMIT = 50
MAX_LEDGER_LIMIT = 100


def _money(value) -> float:
    return round(float(value or 0), 2)


def _parse_day(raw: str | None):
    if not raw:
        return None
    try:
        return datetime.strptime(raw.strip(), "%Y-%m-%d").date()
    except ValueError:
        return None


def _lookup_store(store_id: str):
    if not store_id:
        return None, (jsonify({"success": False, "error": "storeId is required"}), 400)
    store = resolve_store(store_id)
    if store is None:
        return None, (jsonify({"success": False, "error": "Store not found"}), 404)
    return store, None


@wallet_bp.get("/wallet")
def summary():
    store, error = _lookup_store(store_param())
    if error:
        return error

    wallet = ledger.get_or_create_wallet(store.id)
    today = datetime.utcnow().date()
    today_earning = ledger.sum_credits(wallet.id, "ORDER_EARNING", *utc_day_range(today))
    yesterday_earning = ledger.sum_credits(
        wallet.id, "ORDER_EARNING", *utc_day_range(today - timedelta(days=1))
    )

    return jsonify({
        "success": True,
        "wallet_id": wallet.id,
        "store_id": store.store_id,
        "status": wallet.status,
        "available_balance": _money(wallet.available_balance),
        "pending_balance": _money(wallet.pending_balance),
        "hold_balance": _money(wallet.hold_balance),
        "reserve_balance": _money(wallet.reserve_balance),
        "total_earned": _money(wallet.total_earned),
        "total_withdrawn": _money(wallet.total_withdrawn),
        "total_penalty": _money(wallet.total_penalty),
        "total_commission_deducted": _money(wallet.total_commission_deducted),
        "today_earning": _money(today_earning),
        "yesterday_earning": _money(yesterday_earning),
        "pending_withdrawal_total": _money(pending_withdrawal_total(wallet.id)),
    })


@wallet_bp.get("/wallet/ledger")
def ledger_history():
    """Filtered, paginated ledger history for a store's wallet."""
    store, error = _lookup_store(store_param())
    if error:
        return error

    wallet = ledger.get_or_create_wallet(store.id)
    limit = parse_int(request.args.get("limit")) or DEFAULT_LEDGER_LIMIT
    limit = max(1, min(limit, MAX_LEDGER_LIMIT))
    offset = max(0, parse_int(request.args.get("offset")) or 0)

    query = MerchantWalletLedger.query.filter_by(wallet_id=wallet.id)

    start_day = _parse_day(request.args.get("from"))
    if start_day:
        query = query.filter(MerchantWalletLedger.created_at >= utc_day_bounds(start_day)[0])
    end_day = _parse_day(request.args.get("to"))
    if end_day:
        query = query.filter(MerchantWalletLedger.created_at <= utc_day_bounds(end_day)[1])

    direction = (request.args.get("direction") or "").strip().upper()
    if direction in (ledger.CREDIT, ledger.DEBIT):
        query = query.filter(MerchantWalletLedger.direction == direction)

    category = (request.args.get("category") or "").strip().upper()
    if category:
        query = query.filter(MerchantWalletLedger.category == category)

    search = (request.args.get("search") or "").strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            MerchantWalletLedger.description.ilike(pattern),
            MerchantWalletLedger.reference_extra.ilike(pattern),
        ))

    total = query.count()
    rows = (
        query.order_by(MerchantWalletLedger.created_at.desc(), MerchantWalletLedger.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )

    order_ids = {row.reference_id for row in rows if row.reference_type == "ORDER" and row.reference_id}
    orders = {}
    if order_ids:
        orders = {o.id: o for o in FoodOrder.query.filter(FoodOrder.id.in_(order_ids)).all()}

    entries = []
    for row in rows:
        item = ledger.serialize_entry(row)
        order = orders.get(row.reference_id) if row.reference_type == "ORDER" else None
        if order is not None:
            item["order_id"] = order.order_id
            item["formatted_order_id"] = order.formatted_order_id
        entries.append(item)

    return jsonify({
        "success": True,
        "entries": entries,
        "total": total,
        "limit": limit,
        "offset": offset,
    })


@wallet_bp.post("/payout-request")
def payout_request():
    payload = json_body()
    store, error = _lookup_store(store_param(payload))
    if error:
        return error

    try:
        payout = request_payout(
            store,
            payload.get("amount"),
            parse_int(payload.get("bank_account_id")),
            current_app.config.get("MIN_PAYOUT_AMOUNT", 100),
            requested_by=request.headers.get("X-Actor"),
        )
    except PayoutError as exc:
        if exc.status_code >= 500:
            current_app.logger.error("[payout-request] %s", exc.message)
        return jsonify({"success": False, "error": exc.message}), exc.status_code

    db.session.refresh(payout)
    current_app.logger.info("Payout request %s created for store %s", payout.id, store.store_id)
    return jsonify({"success": True, **serialize_payout(payout)})


@wallet_bp.get("/payout-quote")
def payout_quote():
    """GET /api/merchant/payout-quote?storeId=GMMC1001&amount=1000"""
    store_id = store_param()
    if not store_id:
        return jsonify({"error": "storeId is required"}), 400

    raw_amount = (request.args.get("amount") or "").strip()
    try:
        amount = ledger.to_amount(raw_amount) if raw_amount else Decimal("0.00")
    except ledger.WalletError:
        amount = None
    if amount is None or amount < 0:
        return jsonify({"error": "Valid amount is required"}), 400

    store = resolve_store(store_id)
    if store is None:
        return jsonify({"error": "Store not found"}), 404
    return jsonify({"success": True, **quote_withdrawal(store, amount)})


@wallet_bp.get("/payout-request/<payout_id>")
def payout_detail(payout_id: str):
    pk = parse_int(payout_id)
    if pk is None:
        return jsonify({"error": "Invalid payout request id"}), 400

    store, error = _lookup_store(store_param())
    if error:
        return error

    try:
        payout = get_store_payout(store, pk)
    except PayoutError as exc:
        return jsonify({"success": False, "error": exc.message}), exc.status_code
    return jsonify({"success": True, **serialize_payout_detail(payout)})
