"""
Error taxonomy for authorization and balance operations.

Every expected rejection is a PasscardError carrying a stable machine-checkable
code, the HTTP status routes should answer with, and the minimum context a
client needs to act (required role, cooldown, current balance).

InternalFailure is the only kind whose message is never shown to callers.
"""

from __future__ import annotations


class PasscardError(Exception):
    """Base class for expected, caller-recoverable outcomes."""
    code = "ERROR"
    status = 400

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        payload.update(self.context)
        return payload


class Unauthenticated(PasscardError):
    code = "UNAUTHENTICATED"
    status = 401


class InsufficientRole(PasscardError):
    code = "INSUFFICIENT_ROLE"
    status = 403


class FeatureDisabled(PasscardError):
    code = "FEATURE_DISABLED"
    status = 403


class RateLimited(PasscardError):
    code = "RATE_LIMITED"
    status = 429


class InvalidInput(PasscardError):
    code = "INVALID_INPUT"
    status = 400


class InvalidAmount(InvalidInput):
    code = "INVALID_AMOUNT"


class InvalidTokenFormat(InvalidInput):
    code = "INVALID_TOKEN_FORMAT"


class InvalidQRCode(InvalidInput):
    code = "INVALID_QR_CODE"


class InvalidRole(InvalidInput):
    code = "INVALID_ROLE"


class NotFound(PasscardError):
    code = "NOT_FOUND"
    status = 404


class CustomerNotFound(NotFound):
    code = "CUSTOMER_NOT_FOUND"


class StateConflict(PasscardError):
    code = "STATE_CONFLICT"
    status = 409


class MembershipNotActive(StateConflict):
    code = "MEMBERSHIP_NOT_ACTIVE"


class InsufficientBalance(StateConflict):
    code = "INSUFFICIENT_BALANCE"


class InternalFailure(PasscardError):
    code = "INTERNAL_FAILURE"
    status = 500

    def to_dict(self) -> dict:
        return {"error": "Internal server error", "code": self.code}
