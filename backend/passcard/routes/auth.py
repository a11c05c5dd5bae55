# Overview: Flask API routes for OTP login and the current session.

"""
Authentication API routes

SECURITY FEATURES:
- One-time codes only, no passwords
- Per-destination throttling with lockout (login_throttle_service)
- Bearer session tokens, revocable on logout
"""

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_auth, current_principal
from ..errors import PasscardError
from ..services import auth_service, session_service, access_service
from ..validation import require_json_fields


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/otp/request")
def request_otp_route():
    """
    Send a one-time code.

    Request body: {"channel": "sms" | "email", "destination": "..."}
    """
    try:
        data = require_json_fields(request.get_json(silent=True), "channel", "destination")
        challenge, _code = auth_service.request_otp(data["channel"], data["destination"])

        return jsonify({
            "success": True,
            "channel": challenge.channel,
            "destination": challenge.destination,
            "expires_in_minutes": current_app.config.get("OTP_EXPIRY_MINUTES"),
        })

    except PasscardError as e:
        return jsonify(e.to_dict()), e.status
    except Exception:
        current_app.logger.exception("OTP request failed")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/otp/verify")
def verify_otp_route():
    """
    Exchange a code for a session token.

    Request body: {"channel": "...", "destination": "...", "code": "123456"}

    Returns:
        200: {"token": "...", "user": {...}, "created": bool}
        401: wrong or expired code
        429: destination locked
    """
    try:
        data = require_json_fields(request.get_json(silent=True), "channel", "destination", "code")
        token, user, created = auth_service.verify_otp(
            data["channel"],
            data["destination"],
            str(data["code"]),
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )

        return jsonify({
            "token": token,
            "user": user.to_dict(),
            "created": created,
        })

    except PasscardError as e:
        return jsonify(e.to_dict()), e.status
    except Exception:
        current_app.logger.exception("OTP verification failed")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    token = session_service.bearer_token_from_request()
    revoked = session_service.revoke_session(token) if token else False
    return jsonify({"success": revoked})


@auth_bp.get("/me")
@require_auth
def me_route():
    """Current principal with effective role and accessible venues."""
    principal = current_principal()
    return jsonify({
        "user": principal.to_dict(),
        "companies": access_service.list_accessible_companies(principal.id),
        "venues": access_service.list_accessible_venues(principal.id),
    })
