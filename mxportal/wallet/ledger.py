"""Merchant wallet ledger.

Every balance change goes through :func:`credit` or :func:`debit`, which lock
the wallet row, adjust the chosen balance and append one
``merchant_wallet_ledger`` row. Callers pass a deterministic idempotency key;
a repeated key returns the entry that was already written instead of moving
money twice.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import MerchantWallet, MerchantWalletLedger

logger = logging.getLogger(__name__)

CREDIT = "CREDIT"
DEBIT = "DEBIT"

BALANCE_COLUMNS: Dict[str, str] = {
    "AVAILABLE": "available_balance",
    "PENDING": "pending_balance",
    "HOLD": "hold_balance",
    "RESERVE": "reserve_balance",
}

CREDIT_TOTALS: Dict[str, str] = {
    "ORDER_EARNING": "total_earned",
}

DEBIT_TOTALS: Dict[str, str] = {
    "WITHDRAWAL": "total_withdrawn",
    "PENALTY": "total_penalty",
    "COMMISSION": "total_commission_deducted",
}

CENT = Decimal("0.01")


class WalletError(Exception):
    """Raised when a wallet operation cannot be applied."""


class InsufficientBalanceError(WalletError):
    def __init__(self, available: Decimal, requested: Decimal) -> None:
        super().__init__(f"Insufficient balance: available {available}, requested {requested}")
        self.available = available
        self.requested = requested


def to_amount(value: Any) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise WalletError(f"Invalid amount: {value!r}") from None
    if not amount.is_finite():
        raise WalletError(f"Invalid amount: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def get_wallet(merchant_store_id: int) -> Optional[MerchantWallet]:
    return MerchantWallet.query.filter_by(merchant_store_id=merchant_store_id).first()


def get_or_create_wallet(merchant_store_id: int) -> MerchantWallet:
    wallet = get_wallet(merchant_store_id)
    if wallet:
        return wallet

    wallet = MerchantWallet(merchant_store_id=merchant_store_id, status="ACTIVE")
    db.session.add(wallet)
    try:
        db.session.commit()
    except IntegrityError:
        # another request created it first
        db.session.rollback()
        wallet = MerchantWallet.query.filter_by(merchant_store_id=merchant_store_id).one()
    else:
        logger.info("Created wallet %s for store %s", wallet.id, merchant_store_id)
    return wallet


def find_entry(idempotency_key: str | None) -> Optional[MerchantWalletLedger]:
    if not idempotency_key:
        return None
    return MerchantWalletLedger.query.filter_by(idempotency_key=idempotency_key).first()


def _apply(
    direction: str,
    wallet_id: int,
    amount: Any,
    category: str,
    balance_type: str,
    reference_type: str | None,
    reference_id: int | None,
    idempotency_key: str | None,
    description: str | None,
    metadata: Mapping[str, Any] | None,
    reference_extra: str | None,
) -> MerchantWalletLedger:
    value = to_amount(amount)
    if value <= 0:
        raise WalletError("Amount must be positive")

    column = BALANCE_COLUMNS.get((balance_type or "").upper())
    if column is None:
        raise WalletError(f"Unknown balance type: {balance_type!r}")

    existing = find_entry(idempotency_key)
    if existing:
        logger.info("Ledger key %s already applied (entry %s)", idempotency_key, existing.id)
        return existing

    wallet = MerchantWallet.query.filter_by(id=wallet_id).with_for_update().first()
    if wallet is None:
        raise WalletError(f"Wallet {wallet_id} not found")

    current = Decimal(getattr(wallet, column) or 0)
    if direction == DEBIT:
        if current < value:
            db.session.rollback()
            raise InsufficientBalanceError(current, value)
        new_balance = current - value
        total_column = DEBIT_TOTALS.get(category)
    else:
        new_balance = current + value
        total_column = CREDIT_TOTALS.get(category)

    setattr(wallet, column, new_balance)
    if total_column:
        setattr(wallet, total_column, Decimal(getattr(wallet, total_column) or 0) + value)
    wallet.updated_at = datetime.utcnow()

    entry = MerchantWalletLedger(
        wallet_id=wallet.id,
        direction=direction,
        category=category,
        balance_type=balance_type.upper(),
        amount=value,
        balance_after=new_balance,
        reference_type=reference_type,
        reference_id=reference_id,
        reference_extra=reference_extra,
        description=description,
        meta_info=json.dumps(dict(metadata), default=str) if metadata else None,
        idempotency_key=idempotency_key,
    )
    db.session.add(entry)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        existing = find_entry(idempotency_key)
        if existing:
            return existing
        raise

    logger.info(
        "Wallet %s %s %s %s (%s) -> %s",
        wallet.id, direction.lower(), value, category, balance_type, new_balance,
    )
    return entry


def credit(wallet_id: int, amount: Any, *, category: str, balance_type: str = "AVAILABLE",
           reference_type: str | None = None, reference_id: int | None = None,
           idempotency_key: str | None = None, description: str | None = None,
           metadata: Mapping[str, Any] | None = None,
           reference_extra: str | None = None) -> MerchantWalletLedger:
    return _apply(CREDIT, wallet_id, amount, category, balance_type, reference_type,
                  reference_id, idempotency_key, description, metadata, reference_extra)


def debit(wallet_id: int, amount: Any, *, category: str, balance_type: str = "AVAILABLE",
          reference_type: str | None = None, reference_id: int | None = None,
          idempotency_key: str | None = None, description: str | None = None,
          metadata: Mapping[str, Any] | None = None,
          reference_extra: str | None = None) -> MerchantWalletLedger:
    return _apply(DEBIT, wallet_id, amount, category, balance_type, reference_type,
                  reference_id, idempotency_key, description, metadata, reference_extra)


def sum_credits(wallet_id: int, category: str, start: datetime, end: datetime) -> Decimal:
    """Sum of credits in ``category`` with ``start <= created_at < end``."""
    total = (
        db.session.query(func.coalesce(func.sum(MerchantWalletLedger.amount), 0))
        .filter(MerchantWalletLedger.wallet_id == wallet_id)
        .filter(MerchantWalletLedger.direction == CREDIT)
        .filter(MerchantWalletLedger.category == category)
        .filter(MerchantWalletLedger.created_at >= start)
        .filter(MerchantWalletLedger.created_at < end)
        .scalar()
    )
    return Decimal(str(total or 0))


def serialize_entry(entry: MerchantWalletLedger) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "direction": entry.direction,
        "category": entry.category,
        "balance_type": entry.balance_type,
        "amount": float(entry.amount),
        "balance_after": float(entry.balance_after),
        "reference_type": entry.reference_type,
        "reference_id": entry.reference_id,
        "reference_extra": entry.reference_extra,
        "description": entry.description,
        "metadata": json.loads(entry.meta_info) if entry.meta_info else None,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }
