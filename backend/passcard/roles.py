"""
Role Hierarchy Definitions

WHY: Every privileged check in the system reduces to "does this role rank at
least as high as that one". Keeping the ordering and the association role
vocabularies in one module keeps routes, services and the security gateway
consistent.

DESIGN PRINCIPLES:
- Primary roles are strictly ordered: customer < staff < company_admin < super_admin
- Unrecognized roles (including None) rank -1 and satisfy nothing
- Pure functions only: no database, no request context
"""

from __future__ import annotations


# =============================================================================
# PRIMARY ROLES
# =============================================================================

ROLE_CUSTOMER = "customer"
ROLE_STAFF = "staff"
ROLE_COMPANY_ADMIN = "company_admin"
ROLE_SUPER_ADMIN = "super_admin"

ROLE_HIERARCHY = {
    ROLE_CUSTOMER: 0,
    ROLE_STAFF: 1,
    ROLE_COMPANY_ADMIN: 2,
    ROLE_SUPER_ADMIN: 3,
}

VALID_ROLES = list(ROLE_HIERARCHY)

UNKNOWN_RANK = -1

# Roles a principal may grant themselves through the demo upgrade path
SELF_UPGRADE_ROLES = [ROLE_STAFF, ROLE_COMPANY_ADMIN, ROLE_SUPER_ADMIN]


# =============================================================================
# ASSOCIATION ROLES
# =============================================================================

COMPANY_ROLE_ADMIN = "admin"
COMPANY_ROLE_MANAGER = "manager"
COMPANY_ASSOCIATION_ROLES = [COMPANY_ROLE_ADMIN, COMPANY_ROLE_MANAGER]

VENUE_ROLE_STAFF = "staff"
VENUE_ROLE_MANAGER = "manager"
VENUE_ASSOCIATION_ROLES = [VENUE_ROLE_STAFF, VENUE_ROLE_MANAGER]


def rank(role: str | None) -> int:
    """Position of a role in the hierarchy, -1 for anything unrecognized."""
    if not isinstance(role, str):
        return UNKNOWN_RANK
    return ROLE_HIERARCHY.get(role, UNKNOWN_RANK)


def satisfies(actual_role: str | None, required_role: str | None) -> bool:
    """
    True when actual_role ranks at or above required_role.

    An unrecognized requirement is never satisfied, so a typo in a route
    guard fails closed instead of admitting everyone.
    """
    required = rank(required_role)
    if required == UNKNOWN_RANK:
        return False
    return rank(actual_role) >= required


def is_valid_role(role) -> bool:
    return rank(role) != UNKNOWN_RANK


def has_role(role: str | None, allowed_roles) -> bool:
    """Exact membership check (no hierarchy)."""
    if not role:
        return False
    return role in allowed_roles


def role_label(role: str) -> str:
    """Human-readable role name, e.g. "company admin"."""
    return role.replace("_", " ")
