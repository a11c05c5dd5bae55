from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from ..validation import cents_to_float
from .common import new_uuid


MEMBERSHIP_STATUSES = ["active", "inactive", "suspended"]
MEMBERSHIP_TYPES = ["company", "universal"]

TRANSACTION_TYPES = ["purchase", "usage", "refund", "adjustment"]
TRANSACTION_STATUSES = ["completed", "pending", "cancelled", "refunded"]


class Membership(db.Model):
    """
    Prepaid balance for one user at one company.

    INVARIANT: balance_cents >= 0 (also enforced by a CHECK constraint).
    Only transaction_service mutates the balance, and always in the same
    database transaction as the ledger row describing the change.
    """
    __tablename__ = "memberships"
    __table_args__ = (
        db.CheckConstraint("balance_cents >= 0", name="ck_memberships_balance_non_negative"),
        db.Index("ix_memberships_user", "user_id"),
        db.Index("ix_memberships_company", "company_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    company_id = db.Column(db.String(36), db.ForeignKey("companies.id"), nullable=False)
    membership_type = db.Column(db.String(16), nullable=False, default="company")

    balance_cents = db.Column(db.Integer, nullable=False, default=0)
    total_purchased_cents = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default="active")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now()
    )

    user = db.relationship("User", backref=db.backref("memberships", lazy=True))
    company = db.relationship("Company")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "company_id": self.company_id,
            "company_name": self.company.name if self.company else None,
            "membership_type": self.membership_type,
            "balance": cents_to_float(self.balance_cents),
            "balance_cents": self.balance_cents,
            "total_purchased_cents": self.total_purchased_cents,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }


class Transaction(db.Model):
    """
    Immutable ledger entry for a balance-affecting event.

    IMMUTABLE: rows are never updated after insert. Corrections are new
    refund/adjustment rows pointing back via reference_transaction_id.

    amount_cents is always positive; the type decides the direction
    (usage debits, purchase/refund credit, adjustment carries its own sign
    in balance_after_cents - balance_before_cents).
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
        db.Index("ix_transactions_user_created", "user_id", "created_at"),
        db.Index("ix_transactions_membership", "membership_id"),
        db.Index("ix_transactions_processed_by", "processed_by"),
        db.Index("ix_transactions_venue", "venue_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    membership_id = db.Column(db.String(36), db.ForeignKey("memberships.id"), nullable=False)
    venue_id = db.Column(db.String(36), db.ForeignKey("venues.id"), nullable=True)

    type = db.Column(db.String(16), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(255), nullable=True)

    # Staff user id; null for self-service purchases
    processed_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)
    status = db.Column(db.String(16), nullable=False, default="completed")

    reference_transaction_id = db.Column(db.String(36), db.ForeignKey("transactions.id"), nullable=True)

    balance_before_cents = db.Column(db.Integer, nullable=False)
    balance_after_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    membership = db.relationship("Membership", backref=db.backref("transactions", lazy=True))
    venue = db.relationship("Venue")
    customer = db.relationship("User", foreign_keys=[user_id])
    staff = db.relationship("User", foreign_keys=[processed_by])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "membership_id": self.membership_id,
            "venue_id": self.venue_id,
            "venue_name": self.venue.name if self.venue else None,
            "type": self.type,
            "amount": cents_to_float(self.amount_cents),
            "amount_cents": self.amount_cents,
            "description": self.description,
            "processed_by": self.processed_by,
            "staff_name": self.staff.full_name if self.staff else None,
            "customer_name": self.customer.full_name if self.customer else None,
            "status": self.status,
            "reference_transaction_id": self.reference_transaction_id,
            "previous_balance": cents_to_float(self.balance_before_cents),
            "new_balance": cents_to_float(self.balance_after_cents),
            "created_at": to_utc_z(self.created_at),
        }
