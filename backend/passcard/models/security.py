from __future__ import annotations

import json

from ..extensions import db
from ..time_utils import to_utc_z


class SecurityEvent(db.Model):
    """
    Security event audit log.

    WHY: Track denials, rate limiting, role changes and balance mutations.
    Every privileged mutation records actor, action and a detail payload.

    IMMUTABLE: Never update or delete. Append-only for audit integrity.
    """
    __tablename__ = "security_events"
    __table_args__ = (
        db.Index("ix_security_events_user_type", "user_id", "event_type"),
        db.Index("ix_security_events_occurred", "occurred_at"),
    )

    id = db.Column(db.Integer, primary_key=True)

    # Not a FK: denied requests may come from subjects without a users row
    user_id = db.Column(db.String(36), nullable=True, index=True)

    event_type = db.Column(db.String(64), nullable=False, index=True)  # ROLE_UPGRADE, PERMISSION_DENIED, ...
    resource = db.Column(db.String(128), nullable=True)  # e.g., "/api/transactions/process"
    action = db.Column(db.String(255), nullable=True)  # e.g., "POST" or an OTP destination

    success = db.Column(db.Boolean, nullable=False)
    reason = db.Column(db.Text, nullable=True)
    details = db.Column(db.Text, nullable=True)  # JSON-encoded payload

    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "event_type": self.event_type,
            "resource": self.resource,
            "action": self.action,
            "success": self.success,
            "reason": self.reason,
            "details": json.loads(self.details) if self.details else None,
            "ip_address": self.ip_address,
            "occurred_at": to_utc_z(self.occurred_at),
        }
