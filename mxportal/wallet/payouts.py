from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

from sqlalchemy import or_

from ..extensions import db
from ..models import CommissionRule, MerchantBankAccount, MerchantStore, PayoutRequest
from ..utils.audit import log_event
from . import ledger

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
GST_ON_COMMISSION_PERCENT = Decimal("18")


class PayoutError(Exception):
    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass(frozen=True)
class CommissionQuote:
    percentage: Decimal
    amount: Decimal
    net_amount: Decimal


def _effective_rule(today: date, **owner: int) -> Optional[CommissionRule]:
    return (
        CommissionRule.query
        .filter_by(**owner)
        .filter(CommissionRule.effective_from <= today)
        .filter(or_(CommissionRule.effective_to.is_(None), CommissionRule.effective_to >= today))
        .order_by(CommissionRule.effective_from.desc())
        .first()
    )


def commission_percentage(store: MerchantStore, today: date | None = None) -> Decimal:
    """Latest effective store rule, then the parent's, else zero."""
    today = today or datetime.utcnow().date()
    rule = _effective_rule(today, merchant_store_id=store.id)
    if rule is None and store.parent_id is not None:
        rule = _effective_rule(today, merchant_parent_id=store.parent_id)
    if rule is None:
        return Decimal("0")
    return Decimal(rule.commission_percentage)


def quote_commission(amount: Decimal, percentage: Decimal) -> CommissionQuote:
    commission = (amount * percentage / Decimal("100")).quantize(CENT, rounding=ROUND_HALF_UP)
    return CommissionQuote(percentage=percentage, amount=commission, net_amount=(amount - commission).quantize(CENT))


def quote_withdrawal(store: MerchantStore, amount: Decimal) -> Dict[str, Any]:
    """Breakdown shown before a withdrawal: commission, GST on it and the net payout."""
    quote = quote_commission(amount, commission_percentage(store))
    gst = (quote.amount * GST_ON_COMMISSION_PERCENT / Decimal("100")).quantize(CENT, rounding=ROUND_HALF_UP)
    tds = Decimal("0.00")
    net = (amount - quote.amount - gst - tds).quantize(CENT, rounding=ROUND_HALF_UP)
    return {
        "requested_amount": float(amount),
        "commission_percentage": float(quote.percentage),
        "commission_amount": float(quote.amount),
        "gst_on_commission_percent": int(GST_ON_COMMISSION_PERCENT),
        "gst_on_commission": float(gst),
        "tds_amount": float(tds),
        "tax_amount": float(gst),
        "net_payout_amount": float(net),
    }


def get_store_payout(store: MerchantStore, payout_id: int) -> PayoutRequest:
    payout = db.session.get(PayoutRequest, payout_id)
    if payout is None:
        raise PayoutError("Payout request not found", 404)
    wallet = ledger.get_wallet(store.id)
    if wallet is None or payout.wallet_id != wallet.id:
        raise PayoutError("Payout not found for this store", 404)
    return payout


def pending_withdrawal_total(wallet_id: int) -> Decimal:
    rows = PayoutRequest.query.filter_by(wallet_id=wallet_id, status="PENDING").all()
    return sum((Decimal(row.net_payout_amount or 0) for row in rows), Decimal("0"))


def request_payout(store: MerchantStore, raw_amount: Any, bank_account_id: int | None,
                   min_amount: int, requested_by: str | None = None) -> PayoutRequest:
    try:
        amount = ledger.to_amount(raw_amount)
    except ledger.WalletError:
        amount = None
    if amount is None or amount < min_amount:
        raise PayoutError(f"Amount must be at least ₹{min_amount}")
    if not bank_account_id or bank_account_id <= 0:
        raise PayoutError("bank_account_id is required")

    account = db.session.get(MerchantBankAccount, bank_account_id)
    if account is None or account.store_id != store.id:
        raise PayoutError("Invalid bank account")

    wallet = ledger.get_wallet(store.id)
    if wallet is None:
        raise PayoutError("Wallet not found", 404)
    if amount > Decimal(wallet.available_balance or 0):
        raise PayoutError("Insufficient balance")

    quote = quote_commission(amount, commission_percentage(store))
    payout = PayoutRequest(
        wallet_id=wallet.id,
        bank_account_id=account.id,
        amount=amount,
        commission_percentage=quote.percentage,
        commission_amount=quote.amount,
        net_payout_amount=quote.net_amount,
        status="PENDING",
        requested_by=requested_by,
    )
    db.session.add(payout)
    db.session.commit()

    try:
        entry = ledger.debit(
            wallet.id,
            amount,
            category="WITHDRAWAL",
            balance_type="AVAILABLE",
            reference_type="WITHDRAWAL",
            reference_id=payout.id,
            idempotency_key=f"payout_withdrawal_{payout.id}",
            description=(
                f"Withdrawal request #{payout.id} (net ₹{quote.net_amount:.2f} "
                f"after {quote.percentage}% deduction)"
            ),
            metadata={
                "payout_request_id": payout.id,
                "commission_amount": quote.amount,
                "net_payout_amount": quote.net_amount,
            },
        )
    except ledger.WalletError as exc:
        logger.exception("Wallet debit failed for payout request %s: %s", payout.id, exc)
        db.session.rollback()
        payout.status = "CANCELLED"
        db.session.commit()
        raise PayoutError("Wallet debit failed. Withdrawal cancelled.", 500) from exc

    payout.debit_ledger_id = entry.id
    payout.updated_at = datetime.utcnow()
    log_event(
        "withdrawal_requested",
        resource_type="merchant_stores",
        resource_id=store.id,
        after=serialize_payout(payout),
    )
    db.session.commit()
    return payout


def serialize_payout(payout: PayoutRequest) -> Dict[str, Any]:
    return {
        "payout_request_id": payout.id,
        "amount": float(payout.amount),
        "bank_account_id": payout.bank_account_id,
        "commission_percentage": float(payout.commission_percentage or 0),
        "commission_amount": float(payout.commission_amount or 0),
        "net_payout_amount": float(payout.net_payout_amount),
        "status": payout.status,
        "requested_at": payout.requested_at.isoformat() if payout.requested_at else None,
    }


def serialize_payout_detail(payout: PayoutRequest) -> Dict[str, Any]:
    body = serialize_payout(payout)
    body["updated_at"] = payout.updated_at.isoformat() if payout.updated_at else None

    bank = None
    account = db.session.get(MerchantBankAccount, payout.bank_account_id) if payout.bank_account_id else None
    if account is not None:
        number = account.account_number or ""
        bank = {
            "id": account.id,
            "account_holder_name": account.account_holder_name,
            "account_number_masked": f"****{number[-4:]}" if number else None,
            "ifsc_code": account.ifsc_code,
            "bank_name": account.bank_name,
            "branch_name": account.branch_name,
        }
    return {"payout": body, "bank": bank}
