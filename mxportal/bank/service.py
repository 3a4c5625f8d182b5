from __future__ import annotations

import json
import logging
import time
from datetime import datetime
from typing import Any, Dict, Optional

from ..extensions import db
from ..models import BankVerificationPayout, MerchantBankAccount, MerchantStore
from ..utils.audit import log_event
from .razorpayx import RazorpayXClient, RazorpayXError
from .verification import (
    MAX_VERIFICATION_ATTEMPTS_PER_DAY,
    VERIFICATION_AMOUNT_PAISE,
    VerificationLimitExceeded,
    allowed_names,
    attempts_on_day,
    check_and_count_attempt,
    is_beneficiary_name_allowed,
    mask_account_number,
)

logger = logging.getLogger(__name__)

IN_FLIGHT_STATUSES = ("processed", "processing", "queued", "pending")
BANK_FIELDS = ("account_holder_name", "account_number", "ifsc_code", "bank_name")


class BankVerificationError(Exception):
    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _has_bank(bank: Any) -> bool:
    return isinstance(bank, dict) and all(bank.get(field) for field in BANK_FIELDS)


def _has_upi(upi: Any) -> bool:
    return isinstance(upi, dict) and bool(upi.get("upi_id"))


def _upsert_primary_account(store: MerchantStore, bank: Dict[str, Any]) -> MerchantBankAccount:
    account = (
        MerchantBankAccount.query
        .filter_by(store_id=store.id, is_primary=True, is_active=True)
        .first()
    )
    if account is None:
        account = MerchantBankAccount(store_id=store.id, is_primary=True, is_active=True)
        db.session.add(account)
    account.account_holder_name = bank["account_holder_name"]
    account.account_number = str(bank["account_number"])
    account.ifsc_code = bank["ifsc_code"]
    account.bank_name = bank["bank_name"]
    account.branch_name = bank.get("branch_name")
    account.verification_status = "pending"
    account.updated_at = datetime.utcnow()
    db.session.flush()
    return account


def _payout_status(payout_id: Optional[str], razorpay_status: str) -> str:
    if not payout_id or razorpay_status == "failed":
        return "failed"
    return "processing"


def start_verification(store: MerchantStore, bank: Any = None, upi: Any = None,
                       bank_account_id: int | None = None,
                       client: RazorpayXClient | None = None) -> BankVerificationPayout:
    """Send a ₹1 penny-drop payout to the given bank account or UPI id and log the attempt."""
    if store.parent_id is None:
        raise BankVerificationError("Merchant not found", 403)

    has_bank, has_upi = _has_bank(bank), _has_upi(upi)
    if not has_bank and not has_upi:
        raise BankVerificationError(
            "Provide either bank (account_holder_name, account_number, ifsc_code, bank_name) or upi (upi_id)"
        )
    if has_bank and has_upi:
        raise BankVerificationError("Provide either bank or upi, not both")

    if has_bank:
        beneficiary = str(bank["account_holder_name"]).strip()
    else:
        beneficiary = str(upi.get("account_holder_name") or upi["upi_id"]).strip()

    if not is_beneficiary_name_allowed(beneficiary, allowed_names(store)):
        raise BankVerificationError(
            "Account holder name must match your store name, display name, or owner name (partial match allowed)."
        )

    account_type = "bank" if has_bank else "upi"
    try:
        check_and_count_attempt(store, account_type)
    except VerificationLimitExceeded as exc:
        raise BankVerificationError(exc.message, 429) from exc

    client = client or RazorpayXClient.from_config()
    if client is None:
        db.session.rollback()
        raise BankVerificationError("RazorpayX account not configured for payouts. Contact support.", 503)
    db.session.commit()

    parent = store.parent
    email = store.store_email or (parent.owner_email if parent else None) or "noreply@merchant.local"
    phone = store.primary_phone or "0000000000"
    ref_id = f"merchant_verify_{store.id}_{int(time.time() * 1000)}"

    try:
        contact = client.create_contact(beneficiary, email, phone, ref_id)
    except RazorpayXError as exc:
        raise BankVerificationError(
            "Could not create payout contact. Please check details and try again.", 502
        ) from exc

    try:
        if has_bank:
            fund_account = client.create_bank_fund_account(
                contact["id"], bank["account_holder_name"], bank["ifsc_code"], str(bank["account_number"])
            )
        else:
            fund_account = client.create_vpa_fund_account(contact["id"], str(upi["upi_id"]))
    except RazorpayXError as exc:
        message = "Invalid bank account details. Check IFSC and account number." if has_bank else "Invalid UPI ID."
        raise BankVerificationError(message, 400) from exc

    if has_bank and not bank_account_id:
        bank_account_id = _upsert_primary_account(store, bank).id

    payout_id = None
    razorpay_status = "created"
    failure_reason = None
    try:
        payout = client.create_payout(
            fund_account["id"],
            VERIFICATION_AMOUNT_PAISE,
            "IMPS" if has_bank else "UPI",
            ref_id,
            f"{ref_id}_payout",
            notes={"merchant_store_id": str(store.id), "type": "verification"},
        )
        payout_id = payout.get("id")
        razorpay_status = payout.get("status") or "created"
    except RazorpayXError as exc:
        failure_reason = (exc.body or exc.message)[:500]
        razorpay_status = "failed"

    attempt = BankVerificationPayout(
        merchant_parent_id=store.parent_id,
        merchant_store_id=store.id,
        bank_account_id=bank_account_id,
        account_type=account_type,
        amount_paise=VERIFICATION_AMOUNT_PAISE,
        beneficiary_name=beneficiary,
        account_number_masked=mask_account_number(str(bank["account_number"])) if has_bank else None,
        ifsc_code=bank["ifsc_code"] if has_bank else None,
        bank_name=bank["bank_name"] if has_bank else None,
        upi_id=upi["upi_id"] if has_upi else None,
        razorpay_contact_id=contact.get("id"),
        razorpay_fund_account_id=fund_account.get("id"),
        razorpay_payout_id=payout_id,
        razorpay_status=razorpay_status,
        status=_payout_status(payout_id, razorpay_status),
        failure_reason=failure_reason,
        meta_info=json.dumps({"ref_id": ref_id}),
        attempted_at=datetime.utcnow(),
    )
    db.session.add(attempt)
    db.session.flush()
    log_event(
        "bank_verification_attempted",
        resource_type="merchant_stores",
        resource_id=store.id,
        after={
            "verification_id": attempt.id,
            "account_type": account_type,
            "account_number_masked": attempt.account_number_masked,
            "status": attempt.status,
        },
    )
    db.session.commit()
    logger.info("Verification %s for store %s: %s", attempt.id, store.id, attempt.status)
    return attempt


def verification_message(attempt: BankVerificationPayout) -> str:
    if attempt.status == "processing":
        return ("We have sent ₹1 to your account. Verification will complete shortly. "
                "You can refresh in a few minutes.")
    if attempt.status == "failed":
        return "Payout could not be initiated. " + (attempt.failure_reason or "Try again later.")
    return "Verification initiated."


def sync_attempt(attempt: BankVerificationPayout, client: RazorpayXClient | None = None) -> BankVerificationPayout:
    """Refresh a processing attempt from Razorpay X; a processed payout verifies the account."""
    if attempt.status != "processing" or not attempt.razorpay_payout_id:
        return attempt
    client = client or RazorpayXClient.from_config()
    if client is None:
        return attempt

    try:
        payout = client.fetch_payout(attempt.razorpay_payout_id)
    except RazorpayXError:
        return attempt

    rp_status = payout.get("status")
    attempt.razorpay_status = rp_status
    if rp_status == "processed":
        attempt.status = "success"
    elif rp_status == "failed":
        attempt.status = "failed"
        attempt.failure_reason = (payout.get("status_details") or {}).get("description")

    if rp_status == "processed" and attempt.bank_account_id:
        account = db.session.get(MerchantBankAccount, attempt.bank_account_id)
        if account is not None:
            account.verification_status = "verified"
            account.updated_at = datetime.utcnow()
    db.session.commit()
    return attempt


def verification_status(store: MerchantStore, client: RazorpayXClient | None = None) -> Dict[str, Any]:
    attempts_today = attempts_on_day(store.parent_id, datetime.utcnow().date()) if store.parent_id else 0

    last = (
        BankVerificationPayout.query
        .filter_by(merchant_store_id=store.id)
        .order_by(BankVerificationPayout.attempted_at.desc(), BankVerificationPayout.id.desc())
        .first()
    )
    if last is not None:
        sync_attempt(last, client)

    primary = (
        MerchantBankAccount.query
        .filter_by(store_id=store.id, is_primary=True, is_active=True)
        .order_by(MerchantBankAccount.updated_at.desc())
        .first()
    )
    status = primary.verification_status if primary else "pending"
    verified = status == "verified" or (last is not None and last.status == "success")

    return {
        "success": True,
        "verified": verified,
        "verificationStatus": "verified" if verified else status,
        "canEdit": not verified,
        "canTryVerify": attempts_today < MAX_VERIFICATION_ATTEMPTS_PER_DAY,
        "attemptsToday": attempts_today,
        "maxAttemptsPerDay": MAX_VERIFICATION_ATTEMPTS_PER_DAY,
    }


def serialize_attempt(attempt: BankVerificationPayout) -> Dict[str, Any]:
    return {
        "id": attempt.id,
        "account_type": attempt.account_type,
        "amount_paise": attempt.amount_paise,
        "beneficiary_name": attempt.beneficiary_name,
        "account_number_masked": attempt.account_number_masked,
        "upi_id": attempt.upi_id,
        "razorpay_payout_id": attempt.razorpay_payout_id,
        "razorpay_status": attempt.razorpay_status,
        "status": attempt.status,
        "failure_reason": attempt.failure_reason,
        "attempted_at": attempt.attempted_at.isoformat() if attempt.attempted_at else None,
    }
