# Overview: One-time-code login; the auth provider side of the system.

"""
OTP Authentication Service

WHY: Customers and staff sign in with a one-time code sent to their phone
or email. A successful verification opens a bearer session and, on the
very first login, creates the users row with the customer role.

SECURITY NOTES:
- 6-digit codes from the secrets module, stored bcrypt-hashed
- Codes expire after OTP_EXPIRY_MINUTES and are single use
- A new request supersedes any outstanding code for the destination
- Verification is throttled per destination (login_throttle_service)
- Codes are only logged in development; production delivery is external
"""

from __future__ import annotations

import re
import secrets
from datetime import timedelta

import bcrypt
from flask import current_app

from ..errors import InvalidInput, RateLimited, Unauthenticated
from ..extensions import db
from ..models import OtpChallenge, User
from ..roles import ROLE_CUSTOMER
from ..time_utils import utcnow
from . import login_throttle_service, session_service


CHANNEL_SMS = "sms"
CHANNEL_EMAIL = "email"
VALID_CHANNELS = [CHANNEL_SMS, CHANNEL_EMAIL]

OTP_LENGTH = 6
OTP_BCRYPT_ROUNDS = 10

_PHONE_RE = re.compile(r"^\+?[0-9][0-9\s\-()]{6,20}$")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_destination(channel: str, destination: str | None) -> str:
    """Validate and canonicalize a phone number or email address."""
    if channel not in VALID_CHANNELS:
        raise InvalidInput(f"channel must be one of {VALID_CHANNELS}")

    value = (destination or "").strip()
    if channel == CHANNEL_EMAIL:
        value = value.lower()
        if not _EMAIL_RE.match(value):
            raise InvalidInput("Invalid email address")
        return value

    if not _PHONE_RE.match(value):
        raise InvalidInput("Invalid phone number")
    digits = re.sub(r"\D", "", value)
    return ("+" if value.startswith("+") else "") + digits


def generate_code() -> str:
    return "".join(secrets.choice("0123456789") for _ in range(OTP_LENGTH))


def hash_code(code: str) -> str:
    salt = bcrypt.gensalt(rounds=OTP_BCRYPT_ROUNDS)
    return bcrypt.hashpw(code.encode('utf-8'), salt).decode('utf-8')


def verify_code(code: str, code_hash: str) -> bool:
    try:
        return bcrypt.checkpw(code.encode('utf-8'), code_hash.encode('utf-8'))
    except ValueError:
        return False


def request_otp(channel: str, destination: str) -> tuple[OtpChallenge, str]:
    """
    Issue a new code for a destination.

    Returns (challenge, plaintext_code). The plaintext is handed to the
    delivery hook and never stored.
    """
    destination = normalize_destination(channel, destination)

    locked, seconds_remaining = login_throttle_service.is_locked(destination)
    if locked:
        raise RateLimited(
            "Too many failed attempts. Try again later.",
            retry_after_minutes=max(1, -(-seconds_remaining // 60)),
        )

    now = utcnow()

    # Supersede outstanding codes
    db.session.query(OtpChallenge).filter(
        OtpChallenge.channel == channel,
        OtpChallenge.destination == destination,
        OtpChallenge.consumed_at.is_(None),
    ).update({"consumed_at": now}, synchronize_session=False)

    code = generate_code()
    challenge = OtpChallenge(
        channel=channel,
        destination=destination,
        code_hash=hash_code(code),
        created_at=now,
        expires_at=now + timedelta(minutes=current_app.config.get("OTP_EXPIRY_MINUTES", 10)),
        attempts=0,
    )
    db.session.add(challenge)
    db.session.commit()

    deliver_code(channel, destination, code)
    return challenge, code


def deliver_code(channel: str, destination: str, code: str) -> None:
    """Delivery hook. Real SMS/email delivery is an external integration."""
    if current_app.config.get("ENVIRONMENT") == "development":
        current_app.logger.info("OTP for %s:%s is %s", channel, destination, code)
    else:
        current_app.logger.info("OTP issued for %s:%s", channel, destination)


def _find_or_create_user(channel: str, destination: str) -> tuple[User, bool]:
    if channel == CHANNEL_EMAIL:
        user = db.session.query(User).filter_by(email=destination).first()
    else:
        user = db.session.query(User).filter_by(phone=destination).first()

    if user:
        return user, False

    user = User(
        email=destination if channel == CHANNEL_EMAIL else None,
        phone=destination if channel == CHANNEL_SMS else None,
        full_name=None,
        role=ROLE_CUSTOMER,
        is_active=True,
    )
    db.session.add(user)
    db.session.flush()
    return user, True


def verify_otp(
    channel: str,
    destination: str,
    code: str,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[str, User, bool]:
    """
    Verify a code and open a session.

    Returns (plaintext_token, user, created) where created is True when
    this login provisioned the users row.

    Raises:
        RateLimited: destination locked after repeated failures
        Unauthenticated: wrong, expired or already used code
        InvalidInput: malformed destination or code
    """
    destination = normalize_destination(channel, destination)
    if not code or not str(code).isdigit() or len(str(code)) != OTP_LENGTH:
        raise InvalidInput(f"code must be {OTP_LENGTH} digits")

    locked, seconds_remaining = login_throttle_service.is_locked(destination)
    if locked:
        raise RateLimited(
            "Too many failed attempts. Try again later.",
            retry_after_minutes=max(1, -(-seconds_remaining // 60)),
        )

    now = utcnow()
    challenge = db.session.query(OtpChallenge).filter(
        OtpChallenge.channel == channel,
        OtpChallenge.destination == destination,
        OtpChallenge.consumed_at.is_(None),
    ).order_by(OtpChallenge.created_at.desc()).first()

    if not challenge or challenge.expires_at < now:
        login_throttle_service.record_failed_attempt(destination, reason="No active code")
        raise Unauthenticated("Invalid or expired code")

    challenge.attempts += 1
    if not verify_code(str(code), challenge.code_hash):
        db.session.commit()
        login_throttle_service.record_failed_attempt(destination)
        raise Unauthenticated("Invalid or expired code")

    challenge.consumed_at = now
    user, created = _find_or_create_user(channel, destination)

    if not user.is_active:
        db.session.commit()
        raise Unauthenticated("Account is deactivated")

    _, token = session_service.create_session(
        subject_id=user.id,
        email=user.email,
        phone=user.phone,
        user_agent=user_agent,
        ip_address=ip_address,
    )
    db.session.commit()

    login_throttle_service.record_successful_login(user.id, destination)
    return token, user, created
