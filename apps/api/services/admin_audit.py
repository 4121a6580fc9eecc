from __future__ import annotations

from typing import Any, Dict, Optional

import logging
from fastapi import Request
from sqlalchemy.orm import Session

from core.auth import RequestContext
from models import AdminAuditEvent

logger = logging.getLogger(__name__)

# Never copied into an audit payload.
_REDACTED_FIELDS = frozenset({"password", "password_hash", "token", "payment_token"})


def bounded_payload(changes: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Drop secrets and stringify values so the JSON column stays small and portable."""
    out: Dict[str, Any] = {}
    for key, value in (changes or {}).items():
        if key in _REDACTED_FIELDS:
            continue
        if isinstance(value, dict):
            out[key] = bounded_payload(value)
        elif value is None or isinstance(value, (bool, int, float)):
            out[key] = value
        else:
            out[key] = str(getattr(value, "value", value))[:500]
    return out


def record_admin_audit_event(
    db: Session,
    *,
    request: Optional[Request],
    actor: RequestContext,
    action: str,
    target_type: Optional[str] = None,
    target_id: Optional[Any] = None,
    reason: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Best-effort append-only audit logging for admin actions.

    Safety:
    - Never throws (does not block primary operation).
    - Runs in a savepoint so a failed insert cannot poison the admin write.
    - Payload must be bounded and must not contain secrets.
    """
    try:
        ip_address = None
        user_agent = None
        if request is not None:
            ip_address = request.client.host if request.client else None
            user_agent = request.headers.get("user-agent")

        with db.begin_nested():
            db.add(
                AdminAuditEvent(
                    actor_user_id=actor.user_id,
                    action=action,
                    target_type=target_type,
                    target_id=str(target_id) if target_id is not None else None,
                    reason=reason,
                    ip_address=ip_address,
                    user_agent=user_agent,
                    payload=bounded_payload(payload),
                )
            )
    except Exception as e:
        # Never block admin operations on audit logging, but do emit a server log.
        logger.exception("Admin audit logging failed: %s", str(e))
