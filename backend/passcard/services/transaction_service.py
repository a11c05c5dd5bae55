# Overview: Balance mutations and the transaction ledger.

"""
Transaction Authorization Engine

WHY: This is the only code allowed to change a membership balance. Staff
scan a customer's QR code and charge it; customers top up; admins refund
or adjust. Every balance change is written together with its ledger row.

ATOMICITY (the one hard contract):
- The balance UPDATE and the transactions INSERT run in one DB transaction
- Any failure before commit rolls back both; no partial mutation survives
- The ledger is append-only: refunds/adjustments are new rows

CONCURRENCY:
- The membership row is read with SELECT ... FOR UPDATE
- The debit is a conditional UPDATE (balance_cents >= amount AND active),
  so even on databases that ignore FOR UPDATE (SQLite) two racing charges
  cannot both pass the balance check
- Lock/deadlock errors are retried with backoff (run_with_retry); the
  retried attempt re-reads the balance. Domain errors are never retried.

CHARGE PRECONDITIONS (first failure wins):
1. InvalidAmount        amount not a positive finite decimal
2. InvalidQRCode        token undecodable or older than QR_CODE_EXPIRY_MINUTES
3. CustomerNotFound     membership missing or not owned by the token's user
   InsufficientRole     company membership charged at another company's venue
4. MembershipNotActive  status != active (carries status)
5. InsufficientBalance  amount > balance (carries current balance)
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy import func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from .. import qr_token
from ..errors import (
    CustomerNotFound, InsufficientBalance, InsufficientRole, InternalFailure,
    InvalidInput, InvalidQRCode, InvalidTokenFormat, MembershipNotActive,
    NotFound, StateConflict,
)
from ..extensions import db
from ..models import Membership, Transaction, User, Venue
from ..roles import ROLE_CUSTOMER, ROLE_STAFF, satisfies
from ..time_utils import utcnow, to_utc_z, epoch_millis
from ..validation import parse_amount_cents, cents_to_float
from .concurrency import lock_for_update, run_with_retry


# =============================================================================
# TRANSACTION TYPES / STATUSES (CONSTANTS)
# =============================================================================

TYPE_PURCHASE = "purchase"
TYPE_USAGE = "usage"
TYPE_REFUND = "refund"
TYPE_ADJUSTMENT = "adjustment"

STATUS_COMPLETED = "completed"

MEMBERSHIP_ACTIVE = "active"
MEMBERSHIP_TYPE_COMPANY = "company"

DEFAULT_CHARGE_DESCRIPTION = "Purchase"
DEFAULT_TOPUP_DESCRIPTION = "Balance top-up"


@dataclass(frozen=True)
class ChargeResult:
    transaction_id: str
    membership_id: str
    user_id: str
    amount_cents: int
    previous_balance_cents: int
    new_balance_cents: int

    def to_dict(self) -> dict:
        return {
            "success": True,
            "transaction_id": self.transaction_id,
            "membership_id": self.membership_id,
            "user_id": self.user_id,
            "amount": cents_to_float(self.amount_cents),
            "previous_balance": cents_to_float(self.previous_balance_cents),
            "new_balance": cents_to_float(self.new_balance_cents),
            "new_balance_cents": self.new_balance_cents,
        }


# =============================================================================
# INTERNAL HELPERS
# =============================================================================

def _max_charge_cents() -> int | None:
    return current_app.config.get("MAX_CHARGE_CENTS")


def _decode_payment_token(token, now_ms: int | None = None) -> qr_token.QRPaymentToken:
    try:
        decoded = qr_token.decode(token)
    except InvalidTokenFormat as exc:
        raise InvalidQRCode("Invalid QR code format", reason=exc.message)

    ttl = current_app.config.get("QR_CODE_EXPIRY_MINUTES")
    if qr_token.is_expired(decoded, ttl, now_ms=now_ms):
        raise InvalidQRCode(
            "QR code has expired. Ask the customer to refresh it.",
            reason="expired",
            expiry_minutes=ttl,
        )
    return decoded


def _load_membership_for_token(decoded: qr_token.QRPaymentToken, *, lock: bool) -> Membership:
    query = db.session.query(Membership).filter_by(id=decoded.membership_id)
    if lock:
        query = lock_for_update(query)
    membership = query.first()

    # A token naming someone else's membership is treated as unknown
    if not membership or membership.user_id != decoded.user_id:
        raise CustomerNotFound("Customer not found")
    return membership


def _load_venue(venue_id: str | None) -> Venue | None:
    if not venue_id:
        return None
    venue = db.session.query(Venue).filter_by(id=venue_id).first()
    if not venue:
        raise NotFound("Venue not found", venue_id=venue_id)
    return venue


def _check_venue_company(membership: Membership, venue: Venue | None) -> None:
    """Company memberships are only spendable at that company's venues."""
    if venue is None or membership.membership_type != MEMBERSHIP_TYPE_COMPANY:
        return
    if membership.company_id != venue.company_id:
        raise InsufficientRole(
            "Membership is not valid at this venue",
            venue_id=venue.id,
            membership_company_id=membership.company_id,
        )


def _check_chargeable(membership: Membership, amount_cents: int) -> None:
    if membership.status != MEMBERSHIP_ACTIVE:
        raise MembershipNotActive(
            f"Membership is {membership.status}",
            status=membership.status,
        )

    if amount_cents > membership.balance_cents:
        raise InsufficientBalance(
            "Insufficient balance",
            current_balance=cents_to_float(membership.balance_cents),
            current_balance_cents=membership.balance_cents,
            requested_amount=cents_to_float(amount_cents),
        )


def _append_ledger_entry(
    *,
    membership: Membership,
    type: str,
    amount_cents: int,
    balance_before_cents: int,
    balance_after_cents: int,
    description: str | None,
    processed_by: str | None,
    venue_id: str | None = None,
    reference_transaction_id: str | None = None,
) -> Transaction:
    """Insert one ledger row inside the caller's transaction (flush, no commit)."""
    entry = Transaction(
        user_id=membership.user_id,
        membership_id=membership.id,
        venue_id=venue_id,
        type=type,
        amount_cents=amount_cents,
        description=description,
        processed_by=processed_by,
        status=STATUS_COMPLETED,
        reference_transaction_id=reference_transaction_id,
        balance_before_cents=balance_before_cents,
        balance_after_cents=balance_after_cents,
        created_at=utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def _apply_balance_delta(membership: Membership, delta_cents: int, *, require_active: bool) -> bool:
    """
    Conditional balance update. Returns False when the guard did not match
    (concurrent debit, status change), leaving the row untouched.
    """
    conditions = [Membership.id == membership.id]
    if delta_cents < 0:
        conditions.append(Membership.balance_cents >= -delta_cents)
    if require_active:
        conditions.append(Membership.status == MEMBERSHIP_ACTIVE)

    values = {
        "balance_cents": Membership.balance_cents + delta_cents,
        "updated_at": func.now(),
    }
    result = db.session.execute(
        update(Membership)
        .where(*conditions)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _run_atomic(op, failure_message: str):
    """
    Run a balance operation with retry. Domain errors pass through; database
    failures are logged and surfaced as an opaque InternalFailure.
    """
    try:
        return run_with_retry(op)
    except SQLAlchemyError:
        current_app.logger.exception(failure_message)
        raise InternalFailure(failure_message)


# =============================================================================
# CHARGES (POINT OF SALE)
# =============================================================================

def process_charge(
    token,
    amount,
    description: str | None,
    staff_id: str,
    venue_id: str | None = None,
    *,
    now_ms: int | None = None,
) -> ChargeResult:
    """
    Debit a membership identified by a scanned QR token.

    Returns ChargeResult with the generated transaction id and new balance.
    Raises one of the precondition errors listed in the module docstring,
    or InternalFailure when the database fails (nothing is applied).
    """
    amount_cents = parse_amount_cents(amount, max_cents=_max_charge_cents())
    decoded = _decode_payment_token(token, now_ms=now_ms)
    description = (description or "").strip() or DEFAULT_CHARGE_DESCRIPTION
    venue = _load_venue(venue_id)

    def _op():
        membership = _load_membership_for_token(decoded, lock=True)
        _check_venue_company(membership, venue)
        _check_chargeable(membership, amount_cents)

        balance_before = membership.balance_cents
        if not _apply_balance_delta(membership, -amount_cents, require_active=True):
            # Another writer got there first: re-read and report what changed
            db.session.rollback()
            membership = _load_membership_for_token(decoded, lock=False)
            db.session.refresh(membership)
            _check_chargeable(membership, amount_cents)
            raise StaleDataError("Membership changed during charge")

        entry = _append_ledger_entry(
            membership=membership,
            type=TYPE_USAGE,
            amount_cents=amount_cents,
            balance_before_cents=balance_before,
            balance_after_cents=balance_before - amount_cents,
            description=description,
            processed_by=staff_id,
            venue_id=venue_id,
        )

        db.session.commit()

        return ChargeResult(
            transaction_id=entry.id,
            membership_id=membership.id,
            user_id=membership.user_id,
            amount_cents=amount_cents,
            previous_balance_cents=balance_before,
            new_balance_cents=balance_before - amount_cents,
        )

    return _run_atomic(_op, "Failed to process charge")


def lookup_customer(token, *, now_ms: int | None = None) -> dict:
    """
    Resolve a scanned token to the customer and membership shown on the
    staff confirmation screen. Read-only.
    """
    decoded = _decode_payment_token(token, now_ms=now_ms)
    membership = _load_membership_for_token(decoded, lock=False)

    user = db.session.query(User).filter_by(id=membership.user_id).first()
    if not user:
        raise CustomerNotFound("Customer not found")

    return {
        "id": user.id,
        "name": user.full_name or user.email or user.phone,
        "email": user.email,
        "phone": user.phone,
        "membership": {
            "id": membership.id,
            "company_id": membership.company_id,
            "company_name": membership.company.name if membership.company else None,
            "balance": cents_to_float(membership.balance_cents),
            "balance_cents": membership.balance_cents,
            "status": membership.status,
        },
        "token_issued_at": to_utc_z(decoded.issued_at),
    }


# =============================================================================
# CREDITS
# =============================================================================

def purchase_credit(user_id: str, membership_id: str, amount, description: str | None = None) -> Transaction:
    """
    Self-service top-up: credit the customer's own membership.

    Payment capture happens outside this system; this records the credit
    and the purchase ledger row atomically.
    """
    amount_cents = parse_amount_cents(amount, max_cents=_max_charge_cents())
    description = (description or "").strip() or DEFAULT_TOPUP_DESCRIPTION

    def _op():
        membership = lock_for_update(
            db.session.query(Membership).filter_by(id=membership_id, user_id=user_id)
        ).first()
        if not membership:
            raise NotFound("Membership not found")
        if membership.status != MEMBERSHIP_ACTIVE:
            raise MembershipNotActive(f"Membership is {membership.status}", status=membership.status)

        balance_before = membership.balance_cents
        if not _apply_balance_delta(membership, amount_cents, require_active=True):
            raise StaleDataError("Membership changed during top-up")

        db.session.execute(
            update(Membership)
            .where(Membership.id == membership.id)
            .values(total_purchased_cents=Membership.total_purchased_cents + amount_cents)
            .execution_options(synchronize_session=False)
        )

        entry = _append_ledger_entry(
            membership=membership,
            type=TYPE_PURCHASE,
            amount_cents=amount_cents,
            balance_before_cents=balance_before,
            balance_after_cents=balance_before + amount_cents,
            description=description,
            processed_by=None,
        )
        db.session.commit()
        return entry

    return _run_atomic(_op, "Failed to purchase credit")


def get_refunded_cents(transaction_id: str) -> int:
    total = db.session.query(func.coalesce(func.sum(Transaction.amount_cents), 0)).filter(
        Transaction.reference_transaction_id == transaction_id,
        Transaction.type == TYPE_REFUND,
    ).scalar()
    return int(total or 0)


def refund_transaction(transaction_id: str, staff_id: str, amount=None, reason: str | None = None) -> Transaction:
    """
    Compensating refund for a completed usage row.

    The original row is untouched; a refund row references it. Cumulative
    refunds never exceed the original amount. amount=None refunds whatever
    is still refundable.
    """
    def _op():
        original = lock_for_update(
            db.session.query(Transaction).filter_by(id=transaction_id)
        ).first()
        if not original:
            raise NotFound("Transaction not found")
        if original.type != TYPE_USAGE or original.status != STATUS_COMPLETED:
            raise StateConflict(
                "Only completed usage transactions can be refunded",
                type=original.type,
                status=original.status,
            )

        refundable = original.amount_cents - get_refunded_cents(original.id)
        if refundable <= 0:
            raise StateConflict("Transaction already fully refunded", refundable_amount=0.0)

        refund_cents = refundable if amount is None else parse_amount_cents(amount)
        if refund_cents > refundable:
            raise StateConflict(
                "Refund exceeds refundable amount",
                refundable_amount=cents_to_float(refundable),
            )

        membership = lock_for_update(
            db.session.query(Membership).filter_by(id=original.membership_id)
        ).first()
        balance_before = membership.balance_cents
        if not _apply_balance_delta(membership, refund_cents, require_active=False):
            raise StaleDataError("Membership changed during refund")

        entry = _append_ledger_entry(
            membership=membership,
            type=TYPE_REFUND,
            amount_cents=refund_cents,
            balance_before_cents=balance_before,
            balance_after_cents=balance_before + refund_cents,
            description=reason or f"Refund of {original.id}",
            processed_by=staff_id,
            venue_id=original.venue_id,
            reference_transaction_id=original.id,
        )
        db.session.commit()
        return entry

    return _run_atomic(_op, "Failed to refund transaction")


def adjust_balance(membership_id: str, delta, staff_id: str, reason: str) -> Transaction:
    """
    Administrative correction. delta is a signed decimal; the balance may
    not go negative. Recorded as an adjustment row with a positive amount.
    """
    if not reason or not reason.strip():
        raise InvalidInput("reason is required for adjustments")

    text = str(delta).strip() if delta is not None else ""
    negative = text.startswith("-")
    amount_cents = parse_amount_cents(text.lstrip("-") if negative else delta, field="delta")
    delta_cents = -amount_cents if negative else amount_cents

    def _op():
        membership = lock_for_update(
            db.session.query(Membership).filter_by(id=membership_id)
        ).first()
        if not membership:
            raise NotFound("Membership not found")

        balance_before = membership.balance_cents
        if delta_cents < 0 and amount_cents > balance_before:
            raise InsufficientBalance(
                "Adjustment would make the balance negative",
                current_balance=cents_to_float(balance_before),
                current_balance_cents=balance_before,
            )

        if not _apply_balance_delta(membership, delta_cents, require_active=False):
            raise StaleDataError("Membership changed during adjustment")

        entry = _append_ledger_entry(
            membership=membership,
            type=TYPE_ADJUSTMENT,
            amount_cents=amount_cents,
            balance_before_cents=balance_before,
            balance_after_cents=balance_before + delta_cents,
            description=reason.strip(),
            processed_by=staff_id,
        )
        db.session.commit()
        return entry

    return _run_atomic(_op, "Failed to adjust balance")


# =============================================================================
# QUERIES
# =============================================================================

def list_memberships(user_id: str) -> list[Membership]:
    return (
        db.session.query(Membership)
        .filter_by(user_id=user_id)
        .order_by(Membership.created_at.asc())
        .all()
    )


def issue_payment_token(user_id: str, membership_id: str) -> dict:
    """Fresh QR payload for one of the caller's own active memberships."""
    membership = db.session.query(Membership).filter_by(id=membership_id, user_id=user_id).first()
    if not membership:
        raise NotFound("Membership not found")
    if membership.status != MEMBERSHIP_ACTIVE:
        raise MembershipNotActive(f"Membership is {membership.status}", status=membership.status)

    now_ms = epoch_millis()
    ttl = current_app.config.get("QR_CODE_EXPIRY_MINUTES")
    return {
        "qr_data": qr_token.encode(user_id, membership.id, now_ms=now_ms),
        "membership": membership.to_dict(),
        "issued_at_ms": now_ms,
        "expires_in_minutes": ttl or None,
    }


def list_transactions(
    principal,
    *,
    user_id: str | None = None,
    staff_id: str | None = None,
    venue_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> dict:
    """
    Ledger history filtered by the caller's role.

    Customers only ever see their own rows (filters ignored). Staff and
    above see everything and may filter by customer, staff or venue.
    """
    query = db.session.query(Transaction)

    if principal.role == ROLE_CUSTOMER:
        query = query.filter(Transaction.user_id == principal.id)
    elif satisfies(principal.role, ROLE_STAFF):
        if user_id:
            query = query.filter(Transaction.user_id == user_id)
        if staff_id:
            query = query.filter(Transaction.processed_by == staff_id)
        if venue_id:
            query = query.filter(Transaction.venue_id == venue_id)
    else:
        raise InsufficientRole("Insufficient privileges")

    total = query.count()
    rows = (
        query.order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )

    return {
        "transactions": [row.to_dict() for row in rows],
        "total": total,
        "limit": limit,
        "offset": offset,
        "has_more": offset + limit < total,
    }
