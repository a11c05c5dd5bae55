"""
Role Overrides

WHY: The demo self-upgrade path changes what a user may do without touching
users.role. Overrides are rows with an expiry so they are visible, auditable
and self-healing, unlike the client-side flag they replace.

At most one override per user is active: setting a new one revokes the
previous one in the same transaction.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from ..errors import InvalidRole, NotFound
from ..extensions import db
from ..models import RoleOverride, User
from ..roles import is_valid_role
from ..time_utils import utcnow


def get_active_override(user_id: str, now: datetime | None = None) -> RoleOverride | None:
    now = now or utcnow()
    return db.session.query(RoleOverride).filter(
        RoleOverride.user_id == user_id,
        RoleOverride.revoked_at.is_(None),
        RoleOverride.expires_at > now,
    ).order_by(RoleOverride.granted_at.desc()).first()


def set_override(user_id: str, role: str, duration: timedelta, reason: str = "self_upgrade") -> RoleOverride:
    if not is_valid_role(role):
        raise InvalidRole(f"Invalid role: {role}")

    user = db.session.query(User).filter_by(id=user_id).first()
    if not user:
        raise NotFound("User not found")

    now = utcnow()
    db.session.query(RoleOverride).filter(
        RoleOverride.user_id == user_id,
        RoleOverride.revoked_at.is_(None),
    ).update({"revoked_at": now}, synchronize_session=False)

    override = RoleOverride(
        user_id=user_id,
        role=role,
        reason=reason,
        granted_at=now,
        expires_at=now + duration,
    )
    db.session.add(override)
    db.session.commit()
    return override


def clear_override(user_id: str) -> bool:
    """Revoke the active override. Returns False when there was none."""
    revoked = db.session.query(RoleOverride).filter(
        RoleOverride.user_id == user_id,
        RoleOverride.revoked_at.is_(None),
    ).update({"revoked_at": utcnow()}, synchronize_session=False)
    db.session.commit()
    return revoked > 0
