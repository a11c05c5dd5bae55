# Overview: Security gateway and request decorators for API routes.

"""
Security Gateway

Every guarded route declares a SecurityConfig. evaluate_request() applies
the checks in a fixed order and returns the first rejection:

    1. development_only   403 outside development
    2. require_env_flag   403 unless the flag is "true"
    3. require_auth       401 without a resolvable principal
    4. require_role       403 below the required rank ("User role not
                          assigned" when the principal has no role)
    5. rate_limit_key     429 with retry_after_minutes

The rate limit runs last so that rejected callers never consume a window.
On success g.principal holds the caller. Rejections are recorded as
security events.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import wraps

from flask import current_app, g, jsonify, request

from .errors import FeatureDisabled, InsufficientRole, RateLimited, Unauthenticated
from .roles import satisfies
from .services import audit_service
from .services.identity_service import get_current_principal
from .services.rate_limit_service import get_rate_limiter


@dataclass(frozen=True)
class SecurityConfig:
    require_auth: bool = False
    require_role: str | None = None
    rate_limit_key: str | None = None
    rate_limit_minutes: float | None = None
    development_only: bool = False
    require_env_flag: str | None = None


def is_development() -> bool:
    return current_app.config.get("ENVIRONMENT") == "development"


def env_flag_enabled(name: str) -> bool:
    """App config wins; the process environment is the fallback."""
    value = current_app.config.get(name)
    if value is None:
        value = os.environ.get(name)
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() == "true"


def _reject(error, event_type: str, user_id: str | None = None):
    audit_service.log_security_event(
        user_id=user_id,
        event_type=event_type,
        success=False,
        reason=error.message,
        details=error.context or None,
    )
    return jsonify(error.to_dict()), error.status


def evaluate_request(config: SecurityConfig):
    """Returns (response, status) for the first failed check, or None."""
    if config.development_only and not is_development():
        return _reject(
            FeatureDisabled("This endpoint is only available in development"),
            "FEATURE_DISABLED",
        )

    if config.require_env_flag and not env_flag_enabled(config.require_env_flag):
        return _reject(
            FeatureDisabled("This feature is disabled", flag=config.require_env_flag),
            "FEATURE_DISABLED",
        )

    needs_principal = config.require_auth or config.require_role or config.rate_limit_key
    if not needs_principal:
        return None

    principal = get_current_principal()
    if principal is None:
        return _reject(Unauthenticated("Authentication required"), "AUTHENTICATION_REQUIRED")

    if config.require_role:
        if principal.role is None:
            return _reject(
                InsufficientRole("User role not assigned", required_role=config.require_role),
                "PERMISSION_DENIED",
                principal.id,
            )
        if not satisfies(principal.role, config.require_role):
            return _reject(
                InsufficientRole(
                    "Insufficient privileges",
                    required_role=config.require_role,
                    current_role=principal.role,
                ),
                "PERMISSION_DENIED",
                principal.id,
            )

    if config.rate_limit_key:
        decision = get_rate_limiter().hit(
            config.rate_limit_key, principal.id, config.rate_limit_minutes or 0
        )
        if not decision.allowed:
            return _reject(
                RateLimited(
                    f"Rate limit exceeded. Try again in {decision.remaining_minutes} minute(s).",
                    retry_after_minutes=decision.remaining_minutes,
                ),
                "RATE_LIMITED",
                principal.id,
            )

    g.principal = principal
    return None


def guarded(**options):
    """
    Apply the security gateway to a route.

    rate_limit_minutes may be a callable, evaluated per request (used for
    environment-dependent cooldowns). require_env_flag may be a callable
    returning the flag name or None.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            resolved = {
                key: value() if callable(value) else value
                for key, value in options.items()
            }
            rejection = evaluate_request(SecurityConfig(**resolved))
            if rejection is not None:
                return rejection
            return f(*args, **kwargs)

        return decorated_function
    return decorator


def require_auth(f):
    """Require a resolvable principal; sets g.principal."""
    return guarded(require_auth=True)(f)


def require_role(role: str):
    """Require a principal whose role ranks at least `role`."""
    return guarded(require_auth=True, require_role=role)


def current_principal():
    """The principal established by the gateway for this request."""
    return g.get("principal")
