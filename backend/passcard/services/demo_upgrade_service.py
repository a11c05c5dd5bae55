"""
Demo Self-Upgrade

WHY: Demo deployments let a signed-in user try the staff and admin screens
without an administrator. This is a separate use case behind the
ALLOW_DEMO_ROLE_UPGRADE flag, not a branch of normal role management.

The upgrade is a time-boxed RoleOverride; users.role is never touched, so
turning the flag off (or letting the override expire) restores the real
role.
"""

from __future__ import annotations

from datetime import timedelta

from flask import current_app

from ..errors import FeatureDisabled, InvalidInput, Unauthenticated
from ..roles import SELF_UPGRADE_ROLES
from . import audit_service, role_override_service


EVENT_ROLE_UPGRADE = "ROLE_UPGRADE"
EVENT_ROLE_UPGRADE_CLEARED = "ROLE_UPGRADE_CLEARED"


def is_enabled() -> bool:
    return bool(current_app.config.get("ALLOW_DEMO_ROLE_UPGRADE"))


def available_upgrades() -> list[str]:
    return list(SELF_UPGRADE_ROLES)


def self_upgrade(principal, role: str):
    """
    Grant the caller an override to `role` for DEMO_ROLE_OVERRIDE_HOURS.

    Returns the RoleOverride row.
    """
    if not is_enabled():
        raise FeatureDisabled("Role upgrade is disabled", flag="ALLOW_DEMO_ROLE_UPGRADE")
    if principal is None:
        raise Unauthenticated("Authentication required")
    if role not in SELF_UPGRADE_ROLES:
        raise InvalidInput(
            f"Invalid role. Must be one of: {', '.join(SELF_UPGRADE_ROLES)}",
            valid_roles=SELF_UPGRADE_ROLES,
        )

    hours = current_app.config.get("DEMO_ROLE_OVERRIDE_HOURS", 24)
    override = role_override_service.set_override(
        principal.id,
        role,
        duration=timedelta(hours=hours),
        reason="self_upgrade",
    )

    audit_service.audit_log(
        EVENT_ROLE_UPGRADE,
        principal.id,
        {
            "oldRole": principal.role,
            "newRole": role,
            "method": "self_upgrade",
            "expires_at": override.expires_at,
        },
    )
    return override


def clear_upgrade(principal) -> bool:
    if principal is None:
        raise Unauthenticated("Authentication required")

    cleared = role_override_service.clear_override(principal.id)
    if cleared:
        audit_service.audit_log(
            EVENT_ROLE_UPGRADE_CLEARED,
            principal.id,
            {"restoredRole": principal.stored_role},
        )
    return cleared
