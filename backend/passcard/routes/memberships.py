# Overview: Flask API routes for a customer's own memberships.

from flask import Blueprint, request, jsonify, current_app

from ..decorators import guarded, require_auth, current_principal
from ..errors import PasscardError
from ..services import audit_service, transaction_service
from ..validation import require_json_fields, cents_to_float


memberships_bp = Blueprint("memberships", __name__, url_prefix="/api/memberships")


@memberships_bp.get("/")
@require_auth
def list_memberships_route():
    memberships = transaction_service.list_memberships(current_principal().id)
    return jsonify({"memberships": [m.to_dict() for m in memberships]})


@memberships_bp.get("/<membership_id>/qr")
@require_auth
def payment_qr_route(membership_id: str):
    """Fresh QR payload for the caller's own membership."""
    try:
        return jsonify(transaction_service.issue_payment_token(current_principal().id, membership_id))

    except PasscardError as e:
        return jsonify(e.to_dict()), e.status
    except Exception:
        current_app.logger.exception("QR issue failed")
        return jsonify({"error": "Internal server error"}), 500


@memberships_bp.post("/<membership_id>/purchase")
@guarded(require_auth=True, require_env_flag="ALLOW_DEMO_TOPUP")
def purchase_credit_route(membership_id: str):
    """
    Top up the caller's own membership. No payment is captured, so the
    route is only served with ALLOW_DEMO_TOPUP on.

    Request body: {"amount": 50.00, "description": "..."}
    """
    try:
        data = require_json_fields(request.get_json(silent=True), "amount")
        principal = current_principal()

        entry = transaction_service.purchase_credit(
            principal.id,
            membership_id,
            data["amount"],
            data.get("description"),
        )

        audit_service.audit_log("CREDIT_PURCHASED", principal.id, {
            "transactionId": entry.id,
            "membershipId": membership_id,
            "amount": cents_to_float(entry.amount_cents),
        })

        return jsonify({
            "success": True,
            "transaction": entry.to_dict(),
            "new_balance": cents_to_float(entry.balance_after_cents),
        }), 201

    except PasscardError as e:
        return jsonify(e.to_dict()), e.status
    except Exception:
        current_app.logger.exception("Credit purchase failed")
        return jsonify({"error": "Internal server error"}), 500
