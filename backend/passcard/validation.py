from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from .errors import InvalidAmount, InvalidInput


CENT = Decimal("0.01")


def parse_amount_cents(value: Any, *, field: str = "amount", max_cents: int | None = None) -> int:
    """
    Convert a client-supplied decimal amount (e.g. 15.75 or "15.75") to cents.

    Rejects:
    - missing values, booleans and non-numeric strings
    - NaN / Infinity
    - zero and negative amounts
    - more than two fractional digits (no silent rounding of money)
    - amounts above max_cents when given
    """
    if value is None or isinstance(value, bool):
        raise InvalidAmount(f"{field} must be a positive amount")

    # str() first so floats like 15.75 don't carry binary noise into Decimal
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidAmount(f"{field} must be a number")

    if not amount.is_finite():
        raise InvalidAmount(f"{field} must be a finite number")

    if amount <= 0:
        raise InvalidAmount(f"{field} must be greater than zero")

    try:
        exact = amount == amount.quantize(CENT)
    except InvalidOperation:
        raise InvalidAmount(f"{field} is out of range")
    if not exact:
        raise InvalidAmount(f"{field} cannot have more than two decimal places")

    cents = int(amount * 100)

    if max_cents is not None and cents > max_cents:
        raise InvalidAmount(
            f"{field} exceeds the maximum of {cents_to_decimal(max_cents)}",
            max_amount=float(cents_to_decimal(max_cents)),
        )

    return cents


def cents_to_decimal(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


def cents_to_float(cents: int | None) -> float | None:
    """JSON-friendly money value (135.0 for 13500)."""
    if cents is None:
        return None
    return float(cents_to_decimal(cents))


def require_json_fields(payload: dict | None, *fields: str) -> dict:
    """Ensure a JSON body exists and has every field non-empty."""
    if not isinstance(payload, dict):
        raise InvalidInput("Request body must be a JSON object")

    missing = [f for f in fields if payload.get(f) in (None, "")]
    if missing:
        raise InvalidInput(f"Missing {', '.join(missing)}", missing_fields=missing)
    return payload


def parse_pagination(args, *, default_limit: int = 50, max_limit: int = 200) -> tuple[int, int]:
    """Read limit/offset query params with sane bounds."""
    try:
        limit = int(args.get("limit", default_limit))
        offset = int(args.get("offset", 0))
    except (TypeError, ValueError):
        raise InvalidInput("limit and offset must be integers")

    if limit < 1 or offset < 0:
        raise InvalidInput("limit must be positive and offset non-negative")

    return min(limit, max_limit), offset
