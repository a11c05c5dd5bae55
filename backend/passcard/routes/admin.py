# Overview: Flask API routes for admin operations; parses input and returns JSON responses.

"""
Admin routes for users, roles and company/venue associations.

Provides endpoints for:
- Primary role assignment (super_admin, rate limited, flag-gated in production)
- User lookup and permission snapshots
- Company and venue association management

Company-scoped endpoints require company_admin and access to the company
(super_admin reaches every company).
"""

from flask import Blueprint, request, jsonify, current_app

from ..decorators import guarded, require_auth, require_role, current_principal, is_development
from ..errors import PasscardError, InsufficientRole, NotFound
from ..extensions import db
from ..models import Company, Venue
from ..roles import ROLE_COMPANY_ADMIN, ROLE_SUPER_ADMIN, has_role, satisfies
from ..services import access_service, audit_service, user_service
from ..validation import require_json_fields

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


def _user_creation_cooldown() -> float:
    # 30 seconds while developing, 10 minutes otherwise
    return 0.5 if is_development() else 10


def _user_management_flag() -> str | None:
    return None if is_development() else "ALLOW_USER_MANAGEMENT"


def _forbidden(message: str, **context):
    error = InsufficientRole(message, **context)
    return jsonify(error.to_dict()), error.status


# =============================================================================
# PRIMARY ROLES
# =============================================================================

@admin_bp.post("/set-user-role")
@guarded(
    require_auth=True,
    require_role=ROLE_SUPER_ADMIN,
    rate_limit_key="user_creation",
    rate_limit_minutes=_user_creation_cooldown,
    require_env_flag=_user_management_flag,
)
def set_user_role_route():
    """
    Create or update a user's primary role.

    Request body:
    {
        "userId": "<auth subject id>",
        "role": "customer" | "staff" | "company_admin" | "super_admin",
        "email": "...",      (optional)
        "phone": "...",      (optional)
        "full_name": "..."   (optional)
    }
    """
    try:
        data = require_json_fields(request.get_json(silent=True), "userId", "role")
        user, created = user_service.set_user_role(
            current_principal(),
            data["userId"],
            data["role"],
            email=data.get("email"),
            phone=data.get("phone"),
            full_name=data.get("full_name"),
        )

        return jsonify({
            "success": True,
            "message": f"User {user.id} role set to {user.role}",
            "created": created,
            "user": user.to_dict(),
        }), 201 if created else 200

    except PasscardError as e:
        return jsonify(e.to_dict()), e.status
    except Exception:
        current_app.logger.exception("Set user role failed")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.get("/set-user-role")
@require_role(ROLE_COMPANY_ADMIN)
def get_user_roles_route():
    """
    ?userId=<id> returns one user (company_admin and above).
    Without userId, lists every user (super_admin only).
    """
    principal = current_principal()
    user_id = request.args.get("userId")

    if user_id:
        try:
            user = user_service.get_user(user_id)
        except NotFound as e:
            return jsonify(e.to_dict()), e.status
        return jsonify({"user": user.to_dict()})

    if not has_role(principal.role, [ROLE_SUPER_ADMIN]):
        return _forbidden(
            "Super admin privileges required to list all users",
            required_role=ROLE_SUPER_ADMIN,
        )

    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    users = user_service.list_users(role=request.args.get("role"), include_inactive=include_inactive)
    return jsonify({"users": [u.to_dict() for u in users], "total": len(users)})


@admin_bp.get("/users/<user_id>/permissions")
@require_auth
def user_permissions_route(user_id: str):
    """Permission snapshot. Users may read their own; admins anyone's."""
    principal = current_principal()
    if principal.id != user_id and not satisfies(principal.role, ROLE_COMPANY_ADMIN):
        return _forbidden("Admin privileges required", required_role=ROLE_COMPANY_ADMIN)

    permissions = access_service.get_user_permissions(user_id)
    if permissions is None:
        return jsonify({"error": "User not found", "code": NotFound.code}), 404

    permissions["accessible_companies"] = access_service.list_accessible_companies(user_id)
    permissions["accessible_venues"] = access_service.list_accessible_venues(user_id)
    return jsonify({"permissions": permissions})


# =============================================================================
# COMPANY ASSOCIATIONS
# =============================================================================

@admin_bp.get("/companies")
@require_role(ROLE_COMPANY_ADMIN)
def list_companies_route():
    principal = current_principal()
    if principal.role == ROLE_SUPER_ADMIN:
        companies = db.session.query(Company).order_by(Company.name).all()
        return jsonify({"companies": [c.to_dict() for c in companies]})
    return jsonify({"companies": access_service.list_accessible_companies(principal.id)})


@admin_bp.get("/companies/<company_id>/members")
@require_role(ROLE_COMPANY_ADMIN)
def list_company_members_route(company_id: str):
    if not access_service.can_access_company(current_principal(), company_id):
        return _forbidden("No access to this company")

    members = access_service.list_company_members(company_id)
    return jsonify({"members": [m.to_dict() for m in members]})


@admin_bp.post("/companies/<company_id>/members")
@require_role(ROLE_COMPANY_ADMIN)
def assign_company_member_route(company_id: str):
    """Request body: {"userId": "...", "role": "admin" | "manager"}"""
    principal = current_principal()
    if not access_service.can_access_company(principal, company_id):
        return _forbidden("No access to this company")

    try:
        data = require_json_fields(request.get_json(silent=True), "userId", "role")
    except PasscardError as e:
        return jsonify(e.to_dict()), e.status

    if not access_service.assign_user_to_company(data["userId"], company_id, data["role"]):
        return jsonify({"error": "Failed to assign user to company"}), 400

    audit_service.audit_log("COMPANY_ASSIGNED", principal.id, {
        "targetUserId": data["userId"],
        "companyId": company_id,
        "role": data["role"],
    })
    return jsonify({"success": True})


@admin_bp.delete("/companies/<company_id>/members/<user_id>")
@require_role(ROLE_COMPANY_ADMIN)
def remove_company_member_route(company_id: str, user_id: str):
    principal = current_principal()
    if not access_service.can_access_company(principal, company_id):
        return _forbidden("No access to this company")

    if not access_service.remove_user_from_company(user_id, company_id):
        return jsonify({"error": "Failed to remove user from company"}), 500

    audit_service.audit_log("COMPANY_REMOVED", principal.id, {
        "targetUserId": user_id,
        "companyId": company_id,
    })
    return jsonify({"success": True})


# =============================================================================
# VENUE ASSOCIATIONS
# =============================================================================

@admin_bp.get("/venues")
@require_auth
def list_venues_route():
    """Venues the caller can act at (all venues for super_admin)."""
    principal = current_principal()
    if principal.role == ROLE_SUPER_ADMIN:
        venues = db.session.query(Venue).order_by(Venue.name).all()
        return jsonify({"venues": [v.to_dict() for v in venues]})
    return jsonify({"venues": access_service.list_accessible_venues(principal.id)})


@admin_bp.get("/venues/<venue_id>/members")
@require_role(ROLE_COMPANY_ADMIN)
def list_venue_members_route(venue_id: str):
    if not access_service.can_access_venue(current_principal(), venue_id):
        return _forbidden("No access to this venue")

    members = access_service.list_venue_members(venue_id)
    return jsonify({"members": [m.to_dict() for m in members]})


@admin_bp.post("/venues/<venue_id>/members")
@require_role(ROLE_COMPANY_ADMIN)
def assign_venue_member_route(venue_id: str):
    """Request body: {"userId": "...", "role": "staff" | "manager"}"""
    principal = current_principal()
    if not access_service.can_access_venue(principal, venue_id):
        return _forbidden("No access to this venue")

    try:
        data = require_json_fields(request.get_json(silent=True), "userId", "role")
    except PasscardError as e:
        return jsonify(e.to_dict()), e.status

    if not access_service.assign_user_to_venue(data["userId"], venue_id, data["role"]):
        return jsonify({"error": "Failed to assign user to venue"}), 400

    audit_service.audit_log("VENUE_ASSIGNED", principal.id, {
        "targetUserId": data["userId"],
        "venueId": venue_id,
        "role": data["role"],
    })
    return jsonify({"success": True})


@admin_bp.delete("/venues/<venue_id>/members/<user_id>")
@require_role(ROLE_COMPANY_ADMIN)
def remove_venue_member_route(venue_id: str, user_id: str):
    principal = current_principal()
    if not access_service.can_access_venue(principal, venue_id):
        return _forbidden("No access to this venue")

    if not access_service.remove_user_from_venue(user_id, venue_id):
        return jsonify({"error": "Failed to remove user from venue"}), 500

    audit_service.audit_log("VENUE_REMOVED", principal.id, {
        "targetUserId": user_id,
        "venueId": venue_id,
    })
    return jsonify({"success": True})
