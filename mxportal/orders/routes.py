from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from ..utils.stores import json_body, parse_int, resolve_store, store_param
from .service import (
    OrderError,
    get_order_otp,
    list_orders,
    load_store_order,
    order_stats,
    update_order_status,
    validate_otp,
)

food_orders_bp = Blueprint("food_orders", __name__, url_prefix="/api/food-orders")


def _error(exc: OrderError):
    body = {"error": exc.message, **exc.extra}
    return jsonify(body), exc.status_code


@food_orders_bp.get("")
def index():
    """GET /api/food-orders?store_id=GMMC1001&status=active&limit=100"""
    store_id = store_param()
    if not store_id:
        return jsonify({"error": "store_id is required"}), 400

    store = resolve_store(store_id)
    if store is None:
        return jsonify({"error": "Store not found"}), 404

    limit = parse_int(request.args.get("limit")) or 100
    limit = max(1, min(limit, 500))
    orders = list_orders(store, request.args.get("status"), limit)
    current_app.logger.info("[food-orders] %s orders for store_id=%s (internal_id=%s)",
                            len(orders), store_id, store.id)
    return jsonify({"orders": [order.to_dict() for order in orders]})


@food_orders_bp.get("/stats")
def stats():
    store_id = store_param()
    if not store_id:
        return jsonify({"error": "store_id is required"}), 400

    store = resolve_store(store_id)
    if store is None:
        return jsonify({"error": "Store not found"}), 404
    return jsonify(order_stats(store))


@food_orders_bp.patch("/<order_id>")
def update_status(order_id: str):
    """Move an order along the status table.

    Body: ``{store_id, status, rejected_reason?}``.
    """
    payload = json_body()
    store_id = store_param(payload)
    new_status = str(payload.get("status") or "").strip().upper()
    rejected_reason = payload.get("rejected_reason") or None

    if not store_id or not new_status:
        return jsonify({"error": "store_id and status are required"}), 400

    try:
        _, order = load_store_order(store_id, order_id)
        order = update_order_status(order, new_status, rejected_reason)
    except OrderError as exc:
        if exc.status_code >= 500:
            current_app.logger.error("[food-orders PATCH] %s", exc.message)
        return _error(exc)

    return jsonify({"order": order.to_dict()})


@food_orders_bp.get("/<order_id>/otp")
def show_otp(order_id: str):
    store_id = store_param()
    if not store_id:
        return jsonify({"error": "store_id required"}), 400

    try:
        _, order = load_store_order(store_id, order_id, mismatch_status=404, invalid_id_message="Invalid id")
    except OrderError as exc:
        return _error(exc)

    otp = get_order_otp(order)
    if otp is None:
        return jsonify({"error": "OTP not found"}), 404
    return jsonify({
        "otp_code": otp.otp_code,
        "otp_type": otp.otp_type,
        "verified_at": otp.verified_at.isoformat() if otp.verified_at else None,
    })


@food_orders_bp.post("/<order_id>/validate-otp")
def check_otp(order_id: str):
    """Validate the hand-over OTP; five misses lock the order for 15 minutes."""
    payload = json_body()
    store_id = store_param(payload)
    submitted = str(payload.get("otp") or "").strip()
    if not store_id or not submitted:
        return jsonify({"error": "store_id and otp required"}), 400

    try:
        _, order = load_store_order(store_id, order_id, mismatch_status=404, invalid_id_message="Invalid id")
        result = validate_otp(order, submitted)
    except OrderError as exc:
        return _error(exc)

    return jsonify(result)
