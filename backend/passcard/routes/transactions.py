# Overview: Flask API routes for charging, history and refunds.

"""
Transaction API Routes

WHY: Staff scan a customer's QR code, confirm the customer, then charge.
History and refunds sit on the same ledger.

SECURITY:
- Charging requires staff and a venueId the caller can access
  (super_admin may omit it); company memberships only pay at their company
- Refunds and adjustments require company_admin
- Customers only ever see their own history
"""

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_auth, require_role, current_principal
from ..errors import PasscardError, InsufficientRole
from ..roles import ROLE_STAFF, ROLE_COMPANY_ADMIN, ROLE_SUPER_ADMIN
from ..services import access_service, audit_service, transaction_service
from ..validation import require_json_fields, parse_pagination, cents_to_float


transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")


def _check_venue_access(principal, data):
    """Everyone below super_admin charges at a named venue they can access."""
    venue_id = data.get("venueId")
    if principal.role != ROLE_SUPER_ADMIN:
        require_json_fields(data, "venueId")
    if venue_id and not access_service.can_access_venue(principal, venue_id):
        raise InsufficientRole("No access to this venue", venue_id=venue_id)


# =============================================================================
# POINT OF SALE
# =============================================================================

@transactions_bp.get("/process")
@require_role(ROLE_STAFF)
def lookup_customer_route():
    """
    Resolve scanned QR data to the customer for the confirm screen.

    Query params:
    - qrData: the scanned payload (required)
    """
    qr_data = request.args.get("qrData")
    if not qr_data:
        return jsonify({"error": "QR data is required"}), 400

    try:
        customer = transaction_service.lookup_customer(qr_data)
        return jsonify({"customer_info": customer})

    except PasscardError as e:
        return jsonify(e.to_dict()), e.status
    except Exception:
        current_app.logger.exception("Customer lookup failed")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.post("/process")
@require_role(ROLE_STAFF)
def process_charge_route():
    """
    Charge a customer's membership.

    Request body:
    {
        "qrData": "{\"userId\":...}",
        "amount": 15.75,
        "description": "Court booking",   (optional)
        "venueId": "..."                  (required below super_admin)
    }

    Returns:
        200: {"success": true, "transaction_id": ..., "new_balance": ...}
        400: invalid amount or QR code
        403: no access to the venue, or membership not valid there
        404: customer not found
        409: membership not active / insufficient balance
    """
    try:
        data = require_json_fields(request.get_json(silent=True), "qrData", "amount")
        principal = current_principal()
        venue_id = data.get("venueId")
        _check_venue_access(principal, data)

        result = transaction_service.process_charge(
            data["qrData"],
            data["amount"],
            data.get("description"),
            staff_id=principal.id,
            venue_id=venue_id,
        )

        audit_service.audit_log("CHARGE_PROCESSED", principal.id, {
            "transactionId": result.transaction_id,
            "customerId": result.user_id,
            "amount": cents_to_float(result.amount_cents),
            "venueId": venue_id,
        })

        return jsonify(result.to_dict())

    except PasscardError as e:
        return jsonify(e.to_dict()), e.status
    except Exception:
        current_app.logger.exception("Charge processing failed")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# HISTORY
# =============================================================================

@transactions_bp.get("/history")
@require_auth
def history_route():
    """
    Query params:
    - userId, staffId, venueId: filters (staff and above only)
    - limit (default 50), offset (default 0)
    """
    try:
        limit, offset = parse_pagination(request.args)
        page = transaction_service.list_transactions(
            current_principal(),
            user_id=request.args.get("userId"),
            staff_id=request.args.get("staffId"),
            venue_id=request.args.get("venueId"),
            limit=limit,
            offset=offset,
        )
        return jsonify(page)

    except PasscardError as e:
        return jsonify(e.to_dict()), e.status
    except Exception:
        current_app.logger.exception("Transaction history failed")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# CORRECTIONS
# =============================================================================

@transactions_bp.post("/<transaction_id>/refund")
@require_role(ROLE_COMPANY_ADMIN)
def refund_route(transaction_id: str):
    """
    Request body (optional):
    {"amount": 5.00, "reason": "..."}   omit amount for a full refund
    """
    try:
        data = request.get_json(silent=True) or {}
        principal = current_principal()

        refund = transaction_service.refund_transaction(
            transaction_id,
            staff_id=principal.id,
            amount=data.get("amount"),
            reason=data.get("reason"),
        )

        audit_service.audit_log("TRANSACTION_REFUNDED", principal.id, {
            "transactionId": transaction_id,
            "refundId": refund.id,
            "amount": cents_to_float(refund.amount_cents),
        })

        return jsonify({"success": True, "refund": refund.to_dict()}), 201

    except PasscardError as e:
        return jsonify(e.to_dict()), e.status
    except Exception:
        current_app.logger.exception("Refund failed")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.post("/adjustments")
@require_role(ROLE_COMPANY_ADMIN)
def adjustment_route():
    """
    Request body:
    {"membershipId": "...", "delta": "-2.50", "reason": "..."}
    """
    try:
        data = require_json_fields(request.get_json(silent=True), "membershipId", "delta", "reason")
        principal = current_principal()

        entry = transaction_service.adjust_balance(
            data["membershipId"],
            data["delta"],
            staff_id=principal.id,
            reason=data["reason"],
        )

        audit_service.audit_log("BALANCE_ADJUSTED", principal.id, {
            "transactionId": entry.id,
            "membershipId": entry.membership_id,
            "delta": str(data["delta"]),
        })

        return jsonify({"success": True, "adjustment": entry.to_dict()}), 201

    except PasscardError as e:
        return jsonify(e.to_dict()), e.status
    except Exception:
        current_app.logger.exception("Balance adjustment failed")
        return jsonify({"error": "Internal server error"}), 500
