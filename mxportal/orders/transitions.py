from __future__ import annotations

from datetime import datetime
from typing import Dict, FrozenSet, Mapping

from ..models import OrderStatus

CREATED = OrderStatus.created.value
ACCEPTED = OrderStatus.accepted.value
PREPARING = OrderStatus.preparing.value
READY_FOR_PICKUP = OrderStatus.ready_for_pickup.value
OUT_FOR_DELIVERY = OrderStatus.out_for_delivery.value
DELIVERED = OrderStatus.delivered.value
CANCELLED = OrderStatus.cancelled.value
RTO = OrderStatus.rto.value

# legacy status written by the old ordering system
LEGACY_ALIASES: Mapping[str, str] = {"NEW": CREATED}

VALID_TRANSITIONS: Mapping[str, FrozenSet[str]] = {
    CREATED: frozenset({ACCEPTED, CANCELLED}),
    "NEW": frozenset({ACCEPTED, CANCELLED}),
    ACCEPTED: frozenset({PREPARING, CANCELLED}),
    PREPARING: frozenset({READY_FOR_PICKUP, CANCELLED, RTO}),
    READY_FOR_PICKUP: frozenset({OUT_FOR_DELIVERY, CANCELLED, RTO}),
    OUT_FOR_DELIVERY: frozenset({DELIVERED, RTO}),
    DELIVERED: frozenset(),
    CANCELLED: frozenset(),
    RTO: frozenset(),
}

TERMINAL_STATUSES: FrozenSet[str] = frozenset(
    status for status, targets in VALID_TRANSITIONS.items() if not targets
)

ACTIVE_STATUSES: tuple[str, ...] = (
    CREATED, "NEW", ACCEPTED, PREPARING, READY_FOR_PICKUP, OUT_FOR_DELIVERY,
)


def normalize_status(raw: str | None) -> str:
    status = (raw or CREATED).strip().upper() or CREATED
    return LEGACY_ALIASES.get(status, status)


def allowed_targets(current: str | None) -> FrozenSet[str]:
    return VALID_TRANSITIONS.get(normalize_status(current), frozenset())


def is_valid_transition(current: str | None, target: str | None) -> bool:
    return (target or "").strip().upper() in allowed_targets(current)


def timestamp_updates(target: str, now: datetime) -> Dict[str, object]:
    """Column updates stamped alongside a move into ``target``."""
    if target == ACCEPTED:
        return {"accepted_at": now}
    if target == PREPARING:
        return {"prepared_at": None}
    if target == READY_FOR_PICKUP:
        return {"prepared_at": now}
    if target == OUT_FOR_DELIVERY:
        return {"dispatched_at": now}
    if target == DELIVERED:
        return {"delivered_at": now}
    if target == CANCELLED:
        return {"cancelled_at": now}
    if target == RTO:
        return {"is_rto": True, "rto_at": now}
    return {}
