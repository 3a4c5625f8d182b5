"""Beneficiary name matching and daily attempt limits for penny-drop verification."""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Iterable, List, Optional

from ..extensions import db
from ..models import BankVerificationPayout, MerchantStore, VerificationLimit
from ..utils.stores import utc_day_bounds

# per parent merchant, counted from the attempt log
MAX_VERIFICATION_ATTEMPTS_PER_DAY = 3
VERIFICATION_AMOUNT_PAISE = 100

# per store, counted in merchant_verification_limits
MAX_BANK_ATTEMPTS_PER_DAY = 3
MAX_UPI_ATTEMPTS_PER_DAY = 5

BENEFICIARY_MATCH_THRESHOLD = 0.6

_SPACES = re.compile(r"\s+")
_NON_DIGITS = re.compile(r"\D")


class VerificationLimitExceeded(Exception):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


def normalize_name(name: Optional[str]) -> str:
    if not isinstance(name, str):
        return ""
    return _SPACES.sub(" ", name.strip().lower())


def tokenize(name: Optional[str]) -> List[str]:
    return [token for token in normalize_name(name).split(" ") if token]


def word_overlap_score(a: str, b: str) -> float:
    """Jaccard overlap of the two names' word sets."""
    ta, tb = tokenize(a), tokenize(b)
    if not ta or not tb:
        return 0.0
    set_b = set(tb)
    intersection = sum(1 for token in ta if token in set_b)
    union = len(set(ta) | set_b)
    return intersection / union if union else 0.0


def is_beneficiary_name_allowed(beneficiary: str, candidates: Iterable[Optional[str]]) -> bool:
    normalized = normalize_name(beneficiary)
    if len(normalized) < 2:
        return False

    for candidate in candidates:
        c = normalize_name(candidate)
        if not c:
            continue
        if normalized == c:
            return True
        if normalized in c or c in normalized:
            return True
        if word_overlap_score(normalized, c) >= BENEFICIARY_MATCH_THRESHOLD:
            return True
    return False


def allowed_names(store: MerchantStore) -> List[Optional[str]]:
    parent_name = store.parent.parent_name if store.parent else None
    return [store.store_name, store.store_display_name, store.owner_name, parent_name]


def mask_account_number(account_number: Optional[str]) -> str:
    if not isinstance(account_number, str):
        return ""
    digits = _NON_DIGITS.sub("", account_number)
    if len(digits) <= 4:
        return "****"
    return "*" * (len(digits) - 4) + digits[-4:]


def attempts_on_day(merchant_parent_id: int, day: date) -> int:
    start, end = utc_day_bounds(day)
    return (
        BankVerificationPayout.query
        .filter(BankVerificationPayout.merchant_parent_id == merchant_parent_id)
        .filter(BankVerificationPayout.attempted_at >= start)
        .filter(BankVerificationPayout.attempted_at <= end)
        .count()
    )


def get_limits(store_id: int, today: date) -> VerificationLimit:
    """Per-store counters, zeroed lazily when the last reset was before ``today``."""
    limits = db.session.get(VerificationLimit, store_id)
    if limits is None:
        limits = VerificationLimit(store_id=store_id, bank_attempts_today=0,
                                   upi_attempts_today=0, last_reset_date=today)
        db.session.add(limits)
    elif limits.last_reset_date is None or limits.last_reset_date < today:
        limits.bank_attempts_today = 0
        limits.upi_attempts_today = 0
        limits.last_reset_date = today
    return limits


def check_and_count_attempt(store: MerchantStore, account_type: str, now: datetime | None = None) -> VerificationLimit:
    """Raise :class:`VerificationLimitExceeded` or bump the store counter for ``account_type``."""
    now = now or datetime.utcnow()
    today = now.date()

    if store.parent_id is not None and attempts_on_day(store.parent_id, today) >= MAX_VERIFICATION_ATTEMPTS_PER_DAY:
        raise VerificationLimitExceeded(
            f"You can only try verification {MAX_VERIFICATION_ATTEMPTS_PER_DAY} times per day. Try again tomorrow."
        )

    limits = get_limits(store.id, today)
    if account_type == "bank":
        if limits.bank_attempts_today >= MAX_BANK_ATTEMPTS_PER_DAY:
            raise VerificationLimitExceeded(
                f"Bank verification limit ({MAX_BANK_ATTEMPTS_PER_DAY}/day) reached. Try again tomorrow."
            )
        limits.bank_attempts_today += 1
    else:
        if limits.upi_attempts_today >= MAX_UPI_ATTEMPTS_PER_DAY:
            raise VerificationLimitExceeded(
                f"UPI verification limit ({MAX_UPI_ATTEMPTS_PER_DAY}/day) reached. Try again tomorrow."
            )
        limits.upi_attempts_today += 1
    return limits


def reset_verification_limits(today: date | None = None) -> int:
    """Zero every counter last reset before ``today``; returns the number of rows reset."""
    today = today or datetime.utcnow().date()
    rows = VerificationLimit.query.filter(VerificationLimit.last_reset_date < today).all()
    for row in rows:
        row.bank_attempts_today = 0
        row.upi_attempts_today = 0
        row.last_reset_date = today
    db.session.commit()
    return len(rows)
