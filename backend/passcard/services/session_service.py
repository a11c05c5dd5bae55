# Overview: Bearer session management for the auth provider.

"""
Session Token Management Service

WHY: After OTP verification the client holds a bearer token. Every request
resolves that token to an authenticated subject (who is calling). Whether
the subject has a profile and what role it holds is the identity
resolver's concern, not this module's.

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage (fast, one-way)
- 24-hour absolute timeout (SESSION_ABSOLUTE_TIMEOUT)
- Idle timeout from SESSION_TIMEOUT_MINUTES (default 2 hours)
- Revocable on logout or security events
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app, has_request_context, request

from ..extensions import db
from ..models import AuthSession
from ..time_utils import utcnow


SESSION_ABSOLUTE_TIMEOUT = timedelta(hours=24)  # Maximum session length
DEFAULT_IDLE_TIMEOUT = timedelta(hours=2)


@dataclass(frozen=True)
class AuthSubject:
    """The authenticated caller as seen by the auth provider."""
    id: str
    email: str | None = None
    phone: str | None = None


def generate_token() -> str:
    """64-character hex string (32 bytes of entropy). Sent to the client, never stored."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """SHA-256 hex digest. Tokens are high-entropy, so no bcrypt needed."""
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def _idle_timeout() -> timedelta:
    minutes = current_app.config.get("SESSION_TIMEOUT_MINUTES")
    return timedelta(minutes=minutes) if minutes else DEFAULT_IDLE_TIMEOUT


def create_session(
    subject_id: str,
    email: str | None = None,
    phone: str | None = None,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[AuthSession, str]:
    """
    Open a session for a subject. Returns (session_record, plaintext_token).

    Does not commit: the caller commits together with whatever else the
    login created (e.g. the first users row).
    """
    plaintext_token = generate_token()
    now = utcnow()

    session = AuthSession(
        subject_id=subject_id,
        email=email,
        phone=phone,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + SESSION_ABSOLUTE_TIMEOUT,
        user_agent=user_agent,
        ip_address=ip_address,
        is_revoked=False,
    )
    db.session.add(session)
    db.session.flush()

    return session, plaintext_token


def validate_session(token: str) -> AuthSubject | None:
    """
    Resolve a bearer token to its subject.

    Returns None if the token is unknown, revoked, expired or idle.
    Updates last_used_at on success.
    """
    if not token:
        return None

    now = utcnow()
    session = db.session.query(AuthSession).filter_by(
        token_hash=hash_token(token),
        is_revoked=False
    ).first()

    if not session:
        return None

    if session.expires_at < now:
        return None

    if now - session.last_used_at > _idle_timeout():
        session.is_revoked = True
        session.revoked_at = now
        session.revoked_reason = "Idle timeout"
        db.session.commit()
        return None

    session.last_used_at = now
    db.session.commit()

    return AuthSubject(id=session.subject_id, email=session.email, phone=session.phone)


def bearer_token_from_request() -> str | None:
    if not has_request_context():
        return None
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def get_authenticated_subject() -> AuthSubject | None:
    """Who is calling, according to the Authorization header of the current request."""
    token = bearer_token_from_request()
    if not token:
        return None
    return validate_session(token)


def revoke_session(token: str, reason: str = "User logout") -> bool:
    session = db.session.query(AuthSession).filter_by(
        token_hash=hash_token(token),
        is_revoked=False
    ).first()

    if not session:
        return False

    session.is_revoked = True
    session.revoked_at = utcnow()
    session.revoked_reason = reason
    db.session.commit()
    return True


def cleanup_expired_sessions() -> int:
    """Delete sessions that expired or were revoked more than 30 days ago."""
    cutoff = utcnow() - timedelta(days=30)

    deleted = db.session.query(AuthSession).filter(
        db.or_(
            AuthSession.expires_at < utcnow(),
            AuthSession.is_revoked == True  # noqa: E712
        ),
        AuthSession.created_at < cutoff
    ).delete(synchronize_session=False)

    db.session.commit()
    return deleted
