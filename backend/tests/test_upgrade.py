"""
Demo self-upgrade tests.

Scenario: a customer with ALLOW_DEMO_ROLE_UPGRADE on upgrades to staff,
charges a membership, then drops the override and is a customer again.
"""

import pytest

from passcard import qr_token
from passcard.models import RoleOverride, SecurityEvent, User, VenueAssociation


@pytest.fixture
def demo_upgrades(app, monkeypatch):
    monkeypatch.setitem(app.config, "ALLOW_DEMO_ROLE_UPGRADE", True)


UPGRADE_URL = "/api/admin/upgrade-current-user"


def test_disabled_by_default(client, login, customer):
    resp = client.post(UPGRADE_URL, json={"role": "staff"}, headers=login(customer))
    assert resp.status_code == 403
    assert resp.json["code"] == "FEATURE_DISABLED"


def test_upgrade_scenario(client, db_session, login, demo_upgrades, customer, membership, ktv_venue):
    # Venue grant so the upgraded user has somewhere to charge
    db_session.add(VenueAssociation(user_id=customer.id, venue_id=ktv_venue.id, role="staff"))
    db_session.commit()
    headers = login(customer)
    charge = {"qrData": qr_token.encode(customer.id, membership.id), "amount": 5, "venueId": ktv_venue.id}

    # Customers cannot charge
    resp = client.post("/api/transactions/process", json=charge, headers=headers)
    assert resp.status_code == 403

    resp = client.post(UPGRADE_URL, json={"role": "staff"}, headers=headers)
    assert resp.status_code == 200
    assert resp.json["user"]["old_role"] == "customer"
    assert resp.json["user"]["new_role"] == "staff"

    status = client.get(UPGRADE_URL, headers=headers).json
    assert status["current_user"]["role"] == "staff"
    assert status["current_user"]["stored_role"] == "customer"
    assert status["available_upgrades"] == ["staff", "company_admin", "super_admin"]

    resp = client.post("/api/transactions/process", json=charge, headers=headers)
    assert resp.status_code == 200
    assert resp.json["new_balance"] == 145.75

    # Stored role never changes
    db_session.expire_all()
    assert db_session.get(User, customer.id).role == "customer"

    event = db_session.query(SecurityEvent).filter_by(event_type="ROLE_UPGRADE").one()
    assert event.user_id == customer.id
    assert '"method": "self_upgrade"' in event.details
    assert '"oldRole": "customer"' in event.details

    resp = client.delete(UPGRADE_URL, headers=headers)
    assert resp.json == {"success": True, "cleared": True, "role": "customer"}

    resp = client.post("/api/transactions/process", json=charge, headers=headers)
    assert resp.status_code == 403


@pytest.mark.parametrize("role", ["customer", "owner", ""])
def test_invalid_target_role(client, db_session, login, demo_upgrades, customer, role):
    resp = client.post(UPGRADE_URL, json={"role": role}, headers=login(customer))
    assert resp.status_code == 400
    assert db_session.query(RoleOverride).count() == 0


def test_override_lifetime(app, client, db_session, login, demo_upgrades, customer):
    client.post(UPGRADE_URL, json={"role": "company_admin"}, headers=login(customer))

    override = db_session.query(RoleOverride).filter_by(user_id=customer.id).one()
    lifetime = override.expires_at - override.granted_at
    assert lifetime.total_seconds() == app.config["DEMO_ROLE_OVERRIDE_HOURS"] * 3600
    assert override.reason == "self_upgrade"
