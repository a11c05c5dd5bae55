# Overview: Append-only audit trail and security event logging.

"""
Audit Logging

WHY: Every privileged mutation (role change, association change, charge,
refund) must be attributable. Denied requests are recorded too so that
probing shows up in the security_events table.

DESIGN PRINCIPLES:
- Fire and forget: an audit failure is logged and never blocks or undoes
  the operation being audited
- Called after the audited mutation has committed, so the audit commit
  cannot drag half-finished work along with it
- Mirrored to the application log as "AUDIT <json>"
"""

from __future__ import annotations

import json

from flask import current_app, has_request_context, request
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import SecurityEvent
from ..time_utils import utcnow, to_utc_z


def log_security_event(
    user_id: str | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    details: dict | None = None,
) -> SecurityEvent | None:
    """
    Write one security event. Returns None when the write failed.

    event_type examples:
    - PERMISSION_DENIED
    - AUTHENTICATION_REQUIRED
    - RATE_LIMITED
    - FEATURE_DISABLED
    - ROLE_UPGRADE
    - USER_ROLE_SET
    - COMPANY_ASSIGNED / VENUE_ASSIGNED
    - CHARGE_PROCESSED / TRANSACTION_REFUNDED
    """
    ip_address = None
    user_agent = None
    if has_request_context():
        ip_address = request.remote_addr
        user_agent = request.headers.get("User-Agent")
        if resource is None:
            resource = request.path
        if action is None:
            action = request.method

    event = SecurityEvent(
        user_id=user_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        details=json.dumps(details, default=str) if details is not None else None,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow(),
    )

    try:
        db.session.add(event)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to write security event %s", event_type)
        return None

    return event


def audit_log(action: str, user_id: str | None, details: dict | None = None, resource: str | None = None):
    """
    Record a successful privileged action: {timestamp, action, userId, details}.
    """
    entry = {
        "timestamp": to_utc_z(utcnow()),
        "action": action,
        "userId": user_id,
        "details": details,
    }
    current_app.logger.info("AUDIT %s", json.dumps(entry, default=str))

    return log_security_event(
        user_id=user_id,
        event_type=action,
        success=True,
        resource=resource,
        details=details,
    )
