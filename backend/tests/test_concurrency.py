"""
Concurrent charge tests.

Two staff devices charge the same membership at the same moment. Exactly
one charge may succeed; the other must see the reduced balance.

Uses a file-backed SQLite database so each thread gets its own connection
(the shared in-memory database is a single connection).
"""

import threading

from passcard import create_app, qr_token
from passcard.errors import InsufficientBalance
from passcard.extensions import db
from passcard.models import Company, Membership, Transaction, User
from passcard.services import transaction_service


def test_racing_charges_cannot_overdraw(tmp_path):
    race_app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'race.sqlite3'}",
        'ENVIRONMENT': 'production',
    })

    with race_app.app_context():
        db.create_all()
        company = Company(name="SGV")
        customer = User(role="customer", email="race-customer@sgv.test")
        staff = User(role="staff", email="race-staff@sgv.test")
        db.session.add_all([company, customer, staff])
        db.session.flush()

        membership = Membership(user_id=customer.id, company_id=company.id, balance_cents=10000)
        db.session.add(membership)
        db.session.commit()

        staff_id = staff.id
        membership_id = membership.id
        token = qr_token.encode(customer.id, membership.id)

    barrier = threading.Barrier(2)
    outcomes = []
    errors = []

    def charge():
        with race_app.app_context():
            try:
                barrier.wait(timeout=5)
                result = transaction_service.process_charge(token, "60.00", "Race", staff_id)
                outcomes.append(("charged", result.new_balance_cents))
            except InsufficientBalance as exc:
                outcomes.append(("insufficient", exc.context["current_balance_cents"]))
            except Exception as exc:  # surfaced through the assertion below
                errors.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=charge) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert errors == []
    assert sorted(kind for kind, _ in outcomes) == ["charged", "insufficient"]
    assert all(balance == 4000 for _, balance in outcomes)

    with race_app.app_context():
        assert db.session.get(Membership, membership_id).balance_cents == 4000
        assert db.session.query(Transaction).filter_by(type="usage").count() == 1
        db.session.remove()
        db.drop_all()
        db.engine.dispose()
