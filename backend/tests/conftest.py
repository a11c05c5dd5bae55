"""
Pytest fixtures for Passcard backend tests.

Provides test database setup, company/venue/user fixtures, and test client.
"""

import pytest

from passcard import create_app
from passcard.extensions import db
from passcard.models import Company, Venue, User, Membership
from passcard.services import session_service
from passcard.services.rate_limit_service import get_rate_limiter


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'ENVIRONMENT': 'production',
    'DEV_FALLBACK_PRINCIPAL': False,
    'ALLOW_DEMO_ROLE_UPGRADE': False,
    'ALLOW_USER_MANAGEMENT': False,
    'ALLOW_DEMO_TOPUP': False,
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database (and rate limiter state) for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        get_rate_limiter().reset()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def company(db_session):
    """The SGV company."""
    company = Company(name="SGV", description="SGV membership program")
    db_session.add(company)
    db_session.commit()
    return company


@pytest.fixture(scope='function')
def other_company(db_session):
    company = Company(name="Other Group")
    db_session.add(company)
    db_session.commit()
    return company


@pytest.fixture(scope='function')
def ktv_venue(db_session, company):
    venue = Venue(company_id=company.id, name="KTV Palace Downtown", type="ktv")
    db_session.add(venue)
    db_session.commit()
    return venue


@pytest.fixture(scope='function')
def court_venue(db_session, company):
    venue = Venue(company_id=company.id, name="SGV Basketball Court", type="basketball_court")
    db_session.add(venue)
    db_session.commit()
    return venue


@pytest.fixture(scope='function')
def other_venue(db_session, other_company):
    venue = Venue(company_id=other_company.id, name="Other Restaurant", type="restaurant")
    db_session.add(venue)
    db_session.commit()
    return venue


@pytest.fixture(scope='function')
def make_user(db_session):
    """Factory: make_user(role="staff", **fields) -> User."""
    counter = {"n": 0}

    def _make(role="customer", **fields):
        counter["n"] += 1
        fields.setdefault("email", f"user{counter['n']}@sgv.test")
        fields.setdefault("full_name", f"User {counter['n']}")
        user = User(role=role, is_active=fields.pop("is_active", True), **fields)
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture(scope='function')
def customer(make_user):
    return make_user("customer", full_name="Customer One", phone="+15550001")


@pytest.fixture(scope='function')
def staff(make_user, company, ktv_venue):
    return make_user("staff", full_name="SGV Staff", primary_company_id=company.id, primary_venue_id=ktv_venue.id)


@pytest.fixture(scope='function')
def company_admin(make_user, company):
    return make_user("company_admin", full_name="SGV Admin", primary_company_id=company.id)


@pytest.fixture(scope='function')
def super_admin(make_user):
    return make_user("super_admin", full_name="Root Admin")


@pytest.fixture(scope='function')
def membership(db_session, customer, company):
    """Customer membership with the 150.75 opening balance."""
    membership = Membership(
        user_id=customer.id,
        company_id=company.id,
        balance_cents=15075,
        total_purchased_cents=15075,
        status="active",
    )
    db_session.add(membership)
    db_session.commit()
    return membership


@pytest.fixture(scope='function')
def login(db_session):
    """Factory: login(user) -> Authorization headers for a fresh session."""
    def _login(user):
        _, token = session_service.create_session(subject_id=user.id, email=user.email, phone=user.phone)
        db_session.commit()
        return auth_headers(token)

    return _login


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
