"""
Transaction engine tests.

Verifies:
- Charge happy path (150.75 - 15.75 = 135.00) with one usage ledger row
- Each failed precondition, in order, with no mutation
- Ledger insert failure rolls the debit back
- Purchases, refunds and history filtering
"""

import json

import pytest
from sqlalchemy.exc import SQLAlchemyError

from passcard import qr_token
from passcard.errors import (
    CustomerNotFound, InsufficientBalance, InternalFailure, InvalidAmount,
    InvalidQRCode, MembershipNotActive, NotFound, StateConflict, InsufficientRole,
)
from passcard.models import Membership, Transaction
from passcard.services import transaction_service
from passcard.services.identity_service import resolve_principal
from passcard.services.session_service import AuthSubject
from passcard.time_utils import epoch_millis


def _token(membership, user_id=None, now_ms=None):
    return qr_token.encode(user_id or membership.user_id, membership.id, now_ms=now_ms)


def _balance(db_session, membership_id):
    db_session.expire_all()
    return db_session.get(Membership, membership_id).balance_cents


def _usage_count(db_session):
    return db_session.query(Transaction).filter_by(type="usage").count()


# =============================================================================
# CHARGES
# =============================================================================


class TestProcessCharge:

    def test_happy_path(self, db_session, membership, staff, ktv_venue):
        result = transaction_service.process_charge(
            _token(membership), 15.75, "KTV room", staff.id, venue_id=ktv_venue.id
        )

        assert result.new_balance_cents == 13500
        assert result.to_dict()["new_balance"] == 135.0
        assert _balance(db_session, membership.id) == 13500

        entry = db_session.get(Transaction, result.transaction_id)
        assert entry.type == "usage"
        assert entry.status == "completed"
        assert entry.amount_cents == 1575
        assert entry.processed_by == staff.id
        assert entry.venue_id == ktv_venue.id
        assert entry.balance_before_cents == 15075
        assert entry.balance_after_cents == 13500
        assert entry.created_at is not None

    def test_string_amount_and_default_description(self, db_session, membership, staff):
        result = transaction_service.process_charge(_token(membership), "10", None, staff.id)
        entry = db_session.get(Transaction, result.transaction_id)
        assert entry.amount_cents == 1000
        assert entry.description == "Purchase"

    def test_exact_balance_allowed(self, db_session, membership, staff):
        result = transaction_service.process_charge(_token(membership), "150.75", None, staff.id)
        assert result.new_balance_cents == 0

    @pytest.mark.parametrize("amount", [0, -5, "abc", None, True, "NaN", "Infinity", "1.005", "1e30", 10_000.01])
    def test_invalid_amount(self, db_session, membership, staff, amount):
        with pytest.raises(InvalidAmount):
            transaction_service.process_charge(_token(membership), amount, None, staff.id)
        assert _balance(db_session, membership.id) == 15075
        assert _usage_count(db_session) == 0

    def test_amount_checked_before_token(self, membership, staff):
        with pytest.raises(InvalidAmount):
            transaction_service.process_charge("garbage", -1, None, staff.id)

    @pytest.mark.parametrize("token", ["garbage", "{}", json.dumps({"userId": "u", "membershipId": "m"})])
    def test_invalid_qr(self, db_session, membership, staff, token):
        with pytest.raises(InvalidQRCode):
            transaction_service.process_charge(token, 5, None, staff.id)
        assert _usage_count(db_session) == 0

    def test_expired_qr(self, app, db_session, membership, staff):
        ttl = app.config["QR_CODE_EXPIRY_MINUTES"]
        stale = _token(membership, now_ms=epoch_millis() - (ttl + 1) * 60 * 1000)

        with pytest.raises(InvalidQRCode) as exc:
            transaction_service.process_charge(stale, 5, None, staff.id)
        assert exc.value.context["reason"] == "expired"
        assert _balance(db_session, membership.id) == 15075

    def test_expiry_disabled(self, app, db_session, membership, staff, monkeypatch):
        monkeypatch.setitem(app.config, "QR_CODE_EXPIRY_MINUTES", 0)
        stale = _token(membership, now_ms=epoch_millis() - 24 * 60 * 60 * 1000)
        assert transaction_service.process_charge(stale, 5, None, staff.id).new_balance_cents == 14575

    def test_unknown_membership(self, db_session, customer, staff):
        token = qr_token.encode(customer.id, "no-such-membership")
        with pytest.raises(CustomerNotFound):
            transaction_service.process_charge(token, 5, None, staff.id)

    def test_membership_of_another_user(self, db_session, membership, staff, make_user):
        other = make_user("customer")
        with pytest.raises(CustomerNotFound):
            transaction_service.process_charge(_token(membership, user_id=other.id), 5, None, staff.id)
        assert _balance(db_session, membership.id) == 15075

    def test_company_membership_at_foreign_venue(self, db_session, membership, staff, other_venue):
        with pytest.raises(InsufficientRole) as exc:
            transaction_service.process_charge(_token(membership), 5, None, staff.id, venue_id=other_venue.id)
        assert exc.value.context["venue_id"] == other_venue.id
        assert _balance(db_session, membership.id) == 15075
        assert _usage_count(db_session) == 0

    def test_universal_membership_at_foreign_venue(self, db_session, membership, staff, other_venue):
        membership.membership_type = "universal"
        db_session.commit()

        result = transaction_service.process_charge(_token(membership), 5, None, staff.id, venue_id=other_venue.id)
        assert result.new_balance_cents == 14575

    def test_unknown_venue(self, db_session, membership, staff):
        with pytest.raises(NotFound):
            transaction_service.process_charge(_token(membership), 5, None, staff.id, venue_id="no-such-venue")
        assert _balance(db_session, membership.id) == 15075

    @pytest.mark.parametrize("status", ["inactive", "suspended"])
    def test_membership_not_active(self, db_session, membership, staff, status):
        membership.status = status
        db_session.commit()

        with pytest.raises(MembershipNotActive) as exc:
            transaction_service.process_charge(_token(membership), 5, None, staff.id)
        assert exc.value.context["status"] == status
        assert _balance(db_session, membership.id) == 15075

    def test_insufficient_balance(self, db_session, membership, staff):
        with pytest.raises(InsufficientBalance) as exc:
            transaction_service.process_charge(_token(membership), "150.76", None, staff.id)

        assert exc.value.context["current_balance"] == 150.75
        assert exc.value.status == 409
        assert _balance(db_session, membership.id) == 15075
        assert _usage_count(db_session) == 0

    def test_ledger_failure_rolls_back_debit(self, db_session, membership, staff, monkeypatch):
        def fail(**kwargs):
            raise SQLAlchemyError("disk I/O error")

        monkeypatch.setattr(transaction_service, "_append_ledger_entry", fail)

        with pytest.raises(InternalFailure) as exc:
            transaction_service.process_charge(_token(membership), 15.75, None, staff.id)

        assert exc.value.to_dict()["error"] == "Internal server error"
        assert _balance(db_session, membership.id) == 15075
        assert _usage_count(db_session) == 0

    def test_sequential_charges_never_overdraw(self, db_session, membership, staff):
        token = _token(membership)
        transaction_service.process_charge(token, 100, None, staff.id)
        with pytest.raises(InsufficientBalance):
            transaction_service.process_charge(token, 100, None, staff.id)
        assert _balance(db_session, membership.id) == 5075


class TestLookupCustomer:

    def test_returns_customer_and_membership(self, membership, customer):
        info = transaction_service.lookup_customer(_token(membership))
        assert info["id"] == customer.id
        assert info["name"] == "Customer One"
        assert info["membership"]["balance"] == 150.75
        assert info["membership"]["company_name"] == "SGV"

    def test_invalid_token(self, db_session):
        with pytest.raises(InvalidQRCode):
            transaction_service.lookup_customer("nope")


# =============================================================================
# CREDITS AND CORRECTIONS
# =============================================================================


class TestPurchaseCredit:

    def test_top_up(self, db_session, membership, customer):
        entry = transaction_service.purchase_credit(customer.id, membership.id, "49.25")

        assert entry.type == "purchase"
        assert entry.processed_by is None
        assert entry.balance_after_cents == 20000

        db_session.expire_all()
        refreshed = db_session.get(Membership, membership.id)
        assert refreshed.balance_cents == 20000
        assert refreshed.total_purchased_cents == 15075 + 4925

    def test_not_own_membership(self, membership, make_user):
        other = make_user("customer")
        with pytest.raises(NotFound):
            transaction_service.purchase_credit(other.id, membership.id, 10)


class TestRefunds:

    def test_partial_then_full(self, db_session, membership, staff, company_admin):
        charge = transaction_service.process_charge(_token(membership), 20, None, staff.id)

        first = transaction_service.refund_transaction(charge.transaction_id, company_admin.id, amount=5)
        assert first.type == "refund"
        assert first.reference_transaction_id == charge.transaction_id
        assert _balance(db_session, membership.id) == 15075 - 2000 + 500

        rest = transaction_service.refund_transaction(charge.transaction_id, company_admin.id)
        assert rest.amount_cents == 1500
        assert _balance(db_session, membership.id) == 15075

        # Original row untouched
        original = db_session.get(Transaction, charge.transaction_id)
        assert original.status == "completed"
        assert original.amount_cents == 2000

    def test_cannot_exceed_original(self, db_session, membership, staff, company_admin):
        charge = transaction_service.process_charge(_token(membership), 20, None, staff.id)

        with pytest.raises(StateConflict) as exc:
            transaction_service.refund_transaction(charge.transaction_id, company_admin.id, amount="20.01")
        assert exc.value.context["refundable_amount"] == 20.0

        transaction_service.refund_transaction(charge.transaction_id, company_admin.id)
        with pytest.raises(StateConflict):
            transaction_service.refund_transaction(charge.transaction_id, company_admin.id, amount=1)

    def test_only_usage_rows(self, membership, customer, company_admin):
        purchase = transaction_service.purchase_credit(customer.id, membership.id, 10)
        with pytest.raises(StateConflict):
            transaction_service.refund_transaction(purchase.id, company_admin.id)

    def test_unknown_transaction(self, db_session, company_admin):
        with pytest.raises(NotFound):
            transaction_service.refund_transaction("missing", company_admin.id)


class TestAdjustments:

    def test_credit_and_debit(self, db_session, membership, company_admin):
        up = transaction_service.adjust_balance(membership.id, "4.25", company_admin.id, "Goodwill")
        assert up.balance_after_cents == 15500

        down = transaction_service.adjust_balance(membership.id, "-5.50", company_admin.id, "Correction")
        assert down.type == "adjustment"
        assert down.amount_cents == 550
        assert _balance(db_session, membership.id) == 14950

    def test_cannot_go_negative(self, db_session, membership, company_admin):
        with pytest.raises(InsufficientBalance):
            transaction_service.adjust_balance(membership.id, "-150.76", company_admin.id, "Oops")
        assert _balance(db_session, membership.id) == 15075


# =============================================================================
# HISTORY
# =============================================================================


class TestHistory:

    @pytest.fixture
    def ledger(self, db_session, membership, staff, make_user, company, ktv_venue, court_venue):
        other_staff = make_user("staff")
        token = _token(membership)
        transaction_service.process_charge(token, 1, "first", staff.id, venue_id=ktv_venue.id)
        transaction_service.process_charge(token, 2, "second", other_staff.id, venue_id=court_venue.id)
        transaction_service.process_charge(token, 3, "third", staff.id, venue_id=ktv_venue.id)

        stranger = make_user("customer")
        other_membership = Membership(user_id=stranger.id, company_id=company.id, balance_cents=1000)
        db_session.add(other_membership)
        db_session.commit()
        transaction_service.process_charge(_token(other_membership), 4, "stranger", staff.id)

        return {"other_staff": other_staff, "stranger": stranger}

    def test_customer_sees_only_own(self, customer, ledger):
        page = transaction_service.list_transactions(
            resolve_principal(AuthSubject(id=customer.id)),
            user_id=ledger["stranger"].id,
        )
        assert page["total"] == 3
        assert {t["user_id"] for t in page["transactions"]} == {customer.id}
        assert [t["description"] for t in page["transactions"]] == ["third", "second", "first"]

    def test_staff_filters(self, staff, ledger, ktv_venue):
        principal = resolve_principal(AuthSubject(id=staff.id))

        assert transaction_service.list_transactions(principal)["total"] == 4
        assert transaction_service.list_transactions(principal, staff_id=staff.id)["total"] == 3
        assert transaction_service.list_transactions(principal, venue_id=ktv_venue.id)["total"] == 2
        assert transaction_service.list_transactions(
            principal, user_id=ledger["stranger"].id
        )["total"] == 1

    def test_pagination(self, staff, ledger):
        principal = resolve_principal(AuthSubject(id=staff.id))

        page = transaction_service.list_transactions(principal, limit=3, offset=0)
        assert len(page["transactions"]) == 3
        assert page["has_more"] is True

        page = transaction_service.list_transactions(principal, limit=3, offset=3)
        assert len(page["transactions"]) == 1
        assert page["has_more"] is False

    def test_role_not_assigned(self, make_user, ledger):
        user = make_user(None)
        with pytest.raises(InsufficientRole):
            transaction_service.list_transactions(resolve_principal(AuthSubject(id=user.id)))
