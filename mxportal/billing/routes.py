from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from ..utils.stores import json_body, parse_int, resolve_store
from .service import BillingError, create_payment_order, list_plans, serialize_plan, upgrade_quote

billing_bp = Blueprint("billing", __name__, url_prefix="/api/merchant")


def _store_or_none(store_id):
    store = resolve_store(store_id)
    if store is None or store.parent_id is None:
        return None
    return store


@billing_bp.get("/plans")
def plans():
    return jsonify({"plans": [serialize_plan(plan) for plan in list_plans()]})


@billing_bp.route("/subscription/upgrade-quote", methods=["GET", "POST"])
def quote():
    """GET ?storeId=&newPlanId= or POST {storeId, newPlanId}."""
    if request.method == "POST":
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            return jsonify({"error": "Invalid request body"}), 400
    else:
        payload = request.args

    store_id = payload.get("storeId") or payload.get("store_id")
    new_plan_id = parse_int(payload.get("newPlanId") or payload.get("new_plan_id"))
    if not store_id or new_plan_id is None:
        return jsonify({"error": "storeId and newPlanId are required"}), 400

    store = _store_or_none(store_id)
    if store is None:
        return jsonify({"error": "Store not found"}), 404

    try:
        return jsonify(upgrade_quote(store, new_plan_id))
    except BillingError as exc:
        return jsonify({"error": exc.message}), exc.status_code


@billing_bp.post("/subscription/create-payment-order")
def payment_order():
    payload = json_body()
    store_id = payload.get("storeId") or payload.get("store_id")
    plan_id = parse_int(payload.get("planId") or payload.get("plan_id"))
    if not store_id or plan_id is None:
        return jsonify({"success": False, "error": "storeId and planId are required"}), 400

    store = _store_or_none(store_id)
    if store is None:
        return jsonify({"success": False, "error": "Store not found"}), 404

    try:
        body = create_payment_order(store, plan_id)
    except BillingError as exc:
        if exc.status_code >= 500:
            current_app.logger.warning("[create-payment-order] %s", exc.message)
        return jsonify({"success": False, "error": exc.message}), exc.status_code
    return jsonify(body)
