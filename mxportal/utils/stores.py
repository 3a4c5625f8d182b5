from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Optional, Tuple

from flask import request

from ..models import MerchantStore


def json_body() -> dict:
    """Request JSON as a dict, or empty when the body is not a JSON object."""
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def store_param(payload: dict | None = None) -> str:
    """Public store code from the JSON body or query string (``store_id`` or ``storeId``)."""
    if not isinstance(payload, dict):
        payload = {}
    raw = (
        payload.get("store_id")
        or payload.get("storeId")
        or request.args.get("store_id")
        or request.args.get("storeId")
        or ""
    )
    return str(raw).strip()


def resolve_store(public_id: str | None) -> Optional[MerchantStore]:
    if not public_id:
        return None
    return MerchantStore.query.filter_by(store_id=str(public_id).strip()).first()


def parse_int(raw) -> Optional[int]:
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        return None


def utc_day_bounds(day: date) -> Tuple[datetime, datetime]:
    """Inclusive start and end of a UTC calendar day."""
    start = datetime.combine(day, time.min)
    end = datetime.combine(day, time.max)
    return start, end


def utc_day_range(day: date) -> Tuple[datetime, datetime]:
    """Half-open ``[start, next day start)`` range for a UTC calendar day."""
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)
