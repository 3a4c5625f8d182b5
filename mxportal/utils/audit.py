from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from flask import has_request_context, request

from ..extensions import db
from ..models import AuditLog


def _client_ip() -> str | None:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.headers.get("X-Real-IP") or request.remote_addr


def log_event(action: str, resource_type: str | None = None, resource_id: int | None = None,
              before: Any | None = None, after: Any | None = None) -> None:
    """Queue an audit row on the current session; the caller commits."""
    if has_request_context():
        actor = request.headers.get("X-Actor") or "merchant"
        ip_address = _client_ip()
        user_agent = request.headers.get("User-Agent")
    else:
        actor = "system"
        ip_address = None
        user_agent = None

    entry = AuditLog(
        ts=datetime.utcnow(),
        user=actor[:80],
        action=action,
        details=json.dumps({"resource": resource_type, "id": resource_id}),
        resource_type=resource_type,
        resource_id=resource_id,
        before_state=json.dumps(before, default=str) if before is not None else None,
        after_state=json.dumps(after, default=str) if after is not None else None,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.session.add(entry)
