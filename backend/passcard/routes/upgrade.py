# Overview: Flask API routes for the demo self-upgrade flow.

from flask import Blueprint, request, jsonify, current_app

from ..decorators import guarded, require_auth, current_principal
from ..errors import PasscardError
from ..roles import role_label
from ..services import demo_upgrade_service
from ..services.identity_service import refresh_current_principal
from ..time_utils import to_utc_z
from ..validation import require_json_fields


upgrade_bp = Blueprint("upgrade", __name__, url_prefix="/api/admin/upgrade-current-user")


@upgrade_bp.post("")
@guarded(require_auth=True, require_env_flag="ALLOW_DEMO_ROLE_UPGRADE")
def upgrade_current_user_route():
    """
    Temporarily grant the caller a higher role (demo deployments only).

    Request body: {"role": "staff" | "company_admin" | "super_admin"}
    """
    try:
        data = require_json_fields(request.get_json(silent=True), "role")
        principal = current_principal()
        override = demo_upgrade_service.self_upgrade(principal, data["role"])

        return jsonify({
            "success": True,
            "message": f"User upgraded to {role_label(override.role)}",
            "expires_at": to_utc_z(override.expires_at),
            "user": {
                "id": principal.id,
                "phone": principal.phone,
                "email": principal.email,
                "old_role": principal.role,
                "new_role": override.role,
            },
        })

    except PasscardError as e:
        return jsonify(e.to_dict()), e.status
    except Exception:
        current_app.logger.exception("Role upgrade failed")
        return jsonify({"error": "Internal server error"}), 500


@upgrade_bp.get("")
@require_auth
def get_upgrade_status_route():
    principal = current_principal()
    return jsonify({
        "current_user": {
            "id": principal.id,
            "phone": principal.phone,
            "email": principal.email,
            "full_name": principal.full_name,
            "role": principal.role,
            "stored_role": principal.stored_role,
            "role_override": principal.role_override,
        },
        "available_upgrades": demo_upgrade_service.available_upgrades(),
        "enabled": demo_upgrade_service.is_enabled(),
    })


@upgrade_bp.delete("")
@require_auth
def clear_upgrade_route():
    """Drop the override and fall back to the stored role."""
    cleared = demo_upgrade_service.clear_upgrade(current_principal())
    principal = refresh_current_principal()
    return jsonify({"success": True, "cleared": cleared, "role": principal.role if principal else None})
