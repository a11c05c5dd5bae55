"""
QR Payment Token Codec

Wire format: UTF-8 JSON object with exactly three keys

    {"userId": "<id>", "membershipId": "<id>", "timestamp": <epoch millis>}

The customer's device renders this as a QR code; the staff device scans it
and sends it back verbatim. Keys are compact and unsigned so the payload
fits a low error-correction symbol.

The codec only checks shape. Freshness is a caller policy (is_expired),
applied server-side by transaction_service with QR_CODE_EXPIRY_MINUTES.

SECURITY NOTE: the token carries no signature or nonce; anyone who copies
a displayed code can present it until the TTL runs out.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime

from .errors import InvalidTokenFormat
from .time_utils import epoch_millis, from_epoch_millis


TOKEN_KEYS = frozenset({"userId", "membershipId", "timestamp"})


@dataclass(frozen=True)
class QRPaymentToken:
    user_id: str
    membership_id: str
    issued_at_ms: int

    @property
    def issued_at(self) -> datetime:
        return from_epoch_millis(self.issued_at_ms)

    def age_ms(self, now_ms: int | None = None) -> int:
        now_ms = epoch_millis() if now_ms is None else now_ms
        return now_ms - self.issued_at_ms


def encode(user_id, membership_id, now_ms: int | None = None) -> str:
    """Serialize a fresh token for (user, membership). Ids are stringified."""
    user_id = "" if user_id is None else str(user_id)
    membership_id = "" if membership_id is None else str(membership_id)
    if not user_id or not membership_id:
        raise InvalidTokenFormat("userId and membershipId are required")

    payload = {
        "userId": user_id,
        "membershipId": membership_id,
        "timestamp": epoch_millis() if now_ms is None else int(now_ms),
    }
    return json.dumps(payload, separators=(",", ":"))


def decode(token) -> QRPaymentToken:
    """
    Parse a scanned payload.

    Raises InvalidTokenFormat unless the payload is a JSON object with
    exactly userId, membershipId (non-empty strings) and timestamp (positive
    integer milliseconds).
    """
    if isinstance(token, (bytes, bytearray)):
        try:
            token = token.decode("utf-8")
        except UnicodeDecodeError:
            raise InvalidTokenFormat("QR payload is not valid UTF-8")

    if not isinstance(token, str) or not token.strip():
        raise InvalidTokenFormat("QR payload is empty")

    try:
        data = json.loads(token)
    except ValueError:
        raise InvalidTokenFormat("QR payload is not valid JSON")

    if not isinstance(data, dict):
        raise InvalidTokenFormat("QR payload must be a JSON object")

    keys = set(data)
    if keys != TOKEN_KEYS:
        missing = sorted(TOKEN_KEYS - keys)
        extra = sorted(keys - TOKEN_KEYS)
        raise InvalidTokenFormat(
            "QR payload has unexpected fields",
            missing_fields=missing,
            unexpected_fields=extra,
        )

    user_id = data["userId"]
    membership_id = data["membershipId"]
    timestamp = data["timestamp"]

    if not isinstance(user_id, str) or not user_id:
        raise InvalidTokenFormat("QR payload userId must be a non-empty string")
    if not isinstance(membership_id, str) or not membership_id:
        raise InvalidTokenFormat("QR payload membershipId must be a non-empty string")
    # bool is an int subclass; reject it explicitly
    if isinstance(timestamp, bool) or not isinstance(timestamp, int) or timestamp <= 0:
        raise InvalidTokenFormat("QR payload timestamp must be epoch milliseconds")

    return QRPaymentToken(user_id=user_id, membership_id=membership_id, issued_at_ms=timestamp)


def is_expired(token: QRPaymentToken, ttl_minutes: int | None, now_ms: int | None = None) -> bool:
    """True when the token is older than ttl_minutes. A falsy TTL never expires."""
    if not ttl_minutes:
        return False
    return token.age_ms(now_ms) > ttl_minutes * 60 * 1000
