from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from ..extensions import db
from ..models import BankVerificationPayout
from ..utils.stores import json_body, parse_int, resolve_store, store_param
from .service import (
    BankVerificationError,
    serialize_attempt,
    start_verification,
    sync_attempt,
    verification_message,
    verification_status,
)
from .verification import reset_verification_limits

bank_bp = Blueprint("bank", __name__, url_prefix="/api/merchant/bank-account")
cron_bp = Blueprint("cron", __name__, url_prefix="/api/cron")


@bank_bp.post("/verify")
def verify():
    """Body: ``{store_id, bank? | upi?, bank_account_id?}``; exactly one of bank or upi."""
    payload = json_body()
    store_id = store_param(payload)
    if not store_id:
        return jsonify({"success": False, "error": "storeId is required"}), 400

    store = resolve_store(store_id)
    if store is None:
        return jsonify({"success": False, "error": "Store not found or access denied"}), 404

    try:
        attempt = start_verification(
            store,
            bank=payload.get("bank"),
            upi=payload.get("upi"),
            bank_account_id=parse_int(payload.get("bank_account_id") or payload.get("bankAccountId")),
        )
    except BankVerificationError as exc:
        if exc.status_code >= 500:
            current_app.logger.error("[bank-account/verify] %s", exc.message)
        return jsonify({"success": False, "error": exc.message}), exc.status_code

    return jsonify({
        "success": True,
        "verificationId": attempt.id,
        "payoutId": attempt.razorpay_payout_id,
        "status": attempt.status,
        "message": verification_message(attempt),
    })


@bank_bp.get("/verify/status")
def verify_status():
    attempt_id = parse_int(request.args.get("id"))
    if attempt_id is not None:
        attempt = db.session.get(BankVerificationPayout, attempt_id)
        if attempt is None:
            return jsonify({"success": False, "error": "Verification not found"}), 404
        sync_attempt(attempt)
        return jsonify({"success": True, "verification": serialize_attempt(attempt)})

    store_id = store_param()
    if not store_id:
        return jsonify({"success": False, "error": "storeId is required"}), 400
    store = resolve_store(store_id)
    if store is None:
        return jsonify({"success": False, "error": "Store not found"}), 404
    return jsonify(verification_status(store))


@cron_bp.route("/reset-verification-limits", methods=["GET", "POST"])
def reset_limits():
    secret = current_app.config.get("CRON_SECRET")
    if secret and request.headers.get("Authorization") != f"Bearer {secret}":
        return jsonify({"error": "Unauthorized"}), 401

    reset = reset_verification_limits()
    current_app.logger.info("[cron] reset %s verification limit rows", reset)
    if not reset:
        return jsonify({"success": True, "reset": 0, "message": "No limits to reset"})
    return jsonify({"success": True, "reset": reset})
