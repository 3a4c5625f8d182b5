"""Upgrade proration.

Unused time on the current paid plan is credited against the new plan's
price: the current price is spread evenly over the subscription's days and
whatever has not been used yet is taken off the charge.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

CENT = Decimal("0.01")
SECONDS_PER_DAY = Decimal(86400)
DEFAULT_BILLING_DAYS = 30


@dataclass(frozen=True)
class UpgradeQuote:
    amount_to_charge: Decimal
    remaining_credit: Decimal
    credit_to_apply: Decimal
    used_days: int
    total_days: int

    @property
    def amount_to_charge_paise(self) -> int:
        return int((self.amount_to_charge * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def _round_days(delta: timedelta) -> int:
    days = Decimal(str(delta.total_seconds())) / SECONDS_PER_DAY
    return int(days.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def quote_upgrade(new_price: Decimal, current_price: Decimal = Decimal("0"),
                  start: Optional[datetime] = None, expiry: Optional[datetime] = None,
                  now: Optional[datetime] = None) -> UpgradeQuote:
    new_price = Decimal(new_price)
    current_price = Decimal(current_price or 0)
    now = now or datetime.utcnow()

    remaining_credit = Decimal("0")
    used_days = 0
    total_days = DEFAULT_BILLING_DAYS

    if current_price > 0 and start and expiry:
        total_days = max(1, _round_days(expiry - start))
        used_days = max(0, min(total_days, _round_days(now - start)))
        used_amount = current_price / total_days * used_days
        remaining_credit = max(Decimal("0"), current_price - used_amount)

    credit_to_apply = min(remaining_credit, new_price)
    amount_to_charge = max(Decimal("0"), (new_price - credit_to_apply).quantize(CENT, rounding=ROUND_HALF_UP))

    return UpgradeQuote(
        amount_to_charge=amount_to_charge,
        remaining_credit=remaining_credit.quantize(CENT, rounding=ROUND_HALF_UP),
        credit_to_apply=credit_to_apply.quantize(CENT, rounding=ROUND_HALF_UP),
        used_days=used_days,
        total_days=total_days,
    )
