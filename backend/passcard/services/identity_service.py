# Overview: Resolves the calling principal (identity + effective role).

"""
Identity Resolution

WHY: Authorization decisions need one answer to "who is calling and with
what role". That answer combines the auth provider's subject, the users
row and any active role override.

FAIL CLOSED:
- No subject -> None
- Subject without a users row -> None (development may opt into a
  synthesized super_admin to unblock local testing; never elsewhere)
- Deactivated user -> None
- Any database error -> None, logged server-side
Identity resolution never partially succeeds.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict

from flask import current_app, g
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import User
from ..roles import ROLE_SUPER_ADMIN
from . import role_override_service, session_service
from .session_service import AuthSubject


@dataclass(frozen=True)
class Principal:
    id: str
    role: str | None
    email: str | None = None
    phone: str | None = None
    full_name: str | None = None
    primary_company_id: str | None = None
    primary_venue_id: str | None = None
    stored_role: str | None = None
    role_override: bool = False
    synthesized: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


def dev_fallback_enabled() -> bool:
    """The synthesized principal only exists in development builds."""
    return (
        current_app.config.get("ENVIRONMENT") == "development"
        and bool(current_app.config.get("DEV_FALLBACK_PRINCIPAL"))
    )


def _fallback_principal(subject: AuthSubject) -> Principal:
    current_app.logger.warning("Using development fallback principal for subject %s", subject.id)
    return Principal(
        id=subject.id,
        role=ROLE_SUPER_ADMIN,
        email=subject.email,
        phone=subject.phone,
        full_name=subject.email or subject.phone,
        synthesized=True,
    )


def resolve_principal(subject: AuthSubject | None) -> Principal | None:
    if subject is None:
        return None

    try:
        user = db.session.query(User).filter_by(id=subject.id).first()

        if user is None:
            if dev_fallback_enabled():
                return _fallback_principal(subject)
            return None

        if not user.is_active:
            return None

        role = user.role
        override = role_override_service.get_active_override(user.id)
        if override is not None:
            role = override.role

        return Principal(
            id=user.id,
            role=role,
            email=user.email,
            phone=user.phone,
            full_name=user.full_name,
            primary_company_id=user.primary_company_id,
            primary_venue_id=user.primary_venue_id,
            stored_role=user.role,
            role_override=override is not None,
        )
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Identity resolution failed for subject %s", subject.id)
        return None


def get_current_principal() -> Principal | None:
    """
    Principal for the current request, resolved once and cached on g.

    Errors from the auth provider collapse to None like every other
    lookup failure.
    """
    if "principal" in g:
        return g.principal

    try:
        subject = session_service.get_authenticated_subject()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Session validation failed")
        subject = None

    principal = resolve_principal(subject)
    g.principal = principal
    return principal


def refresh_current_principal() -> Principal | None:
    """Drop the cached principal (after a role change in the same request)."""
    g.pop("principal", None)
    return get_current_principal()
