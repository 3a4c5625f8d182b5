from __future__ import annotations

from decimal import Decimal
from typing import Mapping

from sqlalchemy.exc import SQLAlchemyError

from .extensions import db
from .models import MerchantPlan

PLAN_PRESETS: Mapping[str, Mapping[str, object]] = {
    "FREE": {
        "name": "Free",
        "price": Decimal("0"),
        "billing_days": 30,
        "description": "Order management and payouts for a single store.",
        "display_order": 0,
    },
    "BASIC": {
        "name": "Basic",
        "price": Decimal("499"),
        "billing_days": 30,
        "description": "Priority listing, menu analytics and faster settlements.",
        "display_order": 1,
    },
    "PREMIUM": {
        "name": "Premium",
        "price": Decimal("999"),
        "billing_days": 30,
        "description": "Everything in Basic plus promotions and a dedicated account manager.",
        "display_order": 2,
    },
}


def seed_plans() -> None:
    """Create missing preset plans; existing rows keep their edited prices."""
    existing = {plan.plan_code: plan for plan in MerchantPlan.query.all()}
    for code, preset in PLAN_PRESETS.items():
        if code in existing:
            continue
        db.session.add(MerchantPlan(
            plan_code=code,
            plan_name=preset["name"],
            price=preset["price"],
            billing_days=preset["billing_days"],
            description=preset["description"],
            display_order=preset["display_order"],
            is_active=True,
        ))
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
