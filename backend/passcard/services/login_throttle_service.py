"""
OTP Verification Throttling

WHY: A 6-digit code is guessable by brute force. After too many failed
verifications for one phone/email the destination is temporarily locked.

SECURITY FEATURES:
- Tracks failed verifications per destination in security_events
- Lockout after MAX_LOGIN_ATTEMPTS failures within LOCKOUT_WINDOW
- Lockout lasts LOCKOUT_DURATION from the most recent failure
"""

from __future__ import annotations

from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import SecurityEvent
from ..time_utils import utcnow
from .audit_service import log_security_event


LOCKOUT_WINDOW = timedelta(minutes=15)
LOCKOUT_DURATION = timedelta(minutes=15)

EVENT_OTP_FAILED = "OTP_VERIFY_FAILED"
EVENT_OTP_SUCCESS = "OTP_VERIFY_SUCCESS"


def _max_attempts() -> int:
    return int(current_app.config.get("MAX_LOGIN_ATTEMPTS", 5))


def get_recent_failed_attempts(destination: str) -> int:
    """Failed verifications for a destination within LOCKOUT_WINDOW."""
    cutoff = utcnow() - LOCKOUT_WINDOW

    # The destination is stored in the 'action' field of the event
    return db.session.query(SecurityEvent).filter(
        SecurityEvent.event_type == EVENT_OTP_FAILED,
        SecurityEvent.action == destination,
        SecurityEvent.occurred_at >= cutoff
    ).count()


def is_locked(destination: str) -> tuple[bool, int | None]:
    """
    Returns:
    - (True, seconds_remaining) if locked
    - (False, None) if not locked
    """
    if get_recent_failed_attempts(destination) < _max_attempts():
        return False, None

    most_recent = db.session.query(SecurityEvent).filter(
        SecurityEvent.event_type == EVENT_OTP_FAILED,
        SecurityEvent.action == destination
    ).order_by(SecurityEvent.occurred_at.desc()).first()

    if most_recent:
        lockout_end = most_recent.occurred_at + LOCKOUT_DURATION
        now = utcnow()
        if now < lockout_end:
            return True, int((lockout_end - now).total_seconds())

    return False, None


def record_failed_attempt(destination: str, reason: str = "Invalid code") -> int:
    """Record a failed verification. Returns the recent failure count."""
    log_security_event(
        user_id=None,
        event_type=EVENT_OTP_FAILED,
        success=False,
        resource="/api/auth/otp/verify",
        action=destination,
        reason=reason,
    )
    return get_recent_failed_attempts(destination)


def record_successful_login(user_id: str, destination: str) -> None:
    log_security_event(
        user_id=user_id,
        event_type=EVENT_OTP_SUCCESS,
        success=True,
        resource="/api/auth/otp/verify",
        action=destination,
    )
