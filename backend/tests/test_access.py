"""
Associative access-control tests.

Verifies:
- Venue access = primary venue OR venue association OR company-level access
- Listings de-duplicate with precedence association > primary > company
- Mutators report failure as False and removal is idempotent
"""

import pytest

from passcard.models import CompanyAssociation, VenueAssociation
from passcard.services import access_service
from passcard.services.identity_service import resolve_principal
from passcard.services.session_service import AuthSubject


def _principal(user):
    return resolve_principal(AuthSubject(id=user.id))


class TestVenuePredicates:

    def test_primary_venue(self, staff, ktv_venue, court_venue):
        assert access_service.user_can_access_venue(staff.id, ktv_venue.id)
        # Staff primary company does not imply its other venues
        assert not access_service.user_can_access_venue(staff.id, court_venue.id)

    def test_venue_association(self, make_user, court_venue):
        user = make_user("staff")
        assert access_service.assign_user_to_venue(user.id, court_venue.id, "staff")
        assert access_service.user_can_access_venue(user.id, court_venue.id)

    def test_company_association_reaches_every_venue(self, make_user, company, ktv_venue, court_venue, other_venue):
        user = make_user("staff")
        assert access_service.assign_user_to_company(user.id, company.id, "manager")

        assert access_service.user_can_access_venue(user.id, ktv_venue.id)
        assert access_service.user_can_access_venue(user.id, court_venue.id)
        assert not access_service.user_can_access_venue(user.id, other_venue.id)

    def test_company_admin_primary_company(self, company_admin, court_venue, other_venue):
        assert access_service.user_can_access_venue(company_admin.id, court_venue.id)
        assert not access_service.user_can_access_venue(company_admin.id, other_venue.id)

    def test_inactive_user_has_no_access(self, make_user, ktv_venue):
        user = make_user("staff", primary_venue_id=ktv_venue.id, is_active=False)
        assert not access_service.user_can_access_venue(user.id, ktv_venue.id)

    def test_unknown_venue(self, staff):
        assert not access_service.user_can_access_venue(staff.id, "missing")


class TestPrincipalChecks:

    def test_super_admin_short_circuits(self, super_admin, other_company, other_venue):
        principal = _principal(super_admin)
        assert access_service.can_access_company(principal, other_company.id)
        assert access_service.can_access_venue(principal, other_venue.id)

    def test_none_principal(self, ktv_venue):
        assert not access_service.can_access_venue(None, ktv_venue.id)

    def test_company_access(self, staff, company, other_company):
        principal = _principal(staff)
        assert access_service.can_access_company(principal, company.id)
        assert not access_service.can_access_company(principal, other_company.id)


class TestListings:

    def test_precedence_and_dedup(self, make_user, company, ktv_venue, court_venue):
        user = make_user("staff", primary_company_id=company.id, primary_venue_id=ktv_venue.id)
        access_service.assign_user_to_company(user.id, company.id, "admin")
        access_service.assign_user_to_venue(user.id, ktv_venue.id, "manager")

        venues = {v["id"]: v for v in access_service.list_accessible_venues(user.id)}

        assert set(venues) == {ktv_venue.id, court_venue.id}
        assert venues[ktv_venue.id]["access_type"] == "association"
        assert venues[ktv_venue.id]["role"] == "manager"
        assert venues[court_venue.id]["access_type"] == "company"
        assert venues[court_venue.id]["role"] == "company_admin"

    def test_primary_beats_company(self, make_user, company, ktv_venue, court_venue):
        user = make_user("company_admin", primary_company_id=company.id, primary_venue_id=court_venue.id)
        venues = {v["id"]: v for v in access_service.list_accessible_venues(user.id)}

        assert venues[court_venue.id]["access_type"] == "primary"
        assert venues[ktv_venue.id]["access_type"] == "company"

    def test_companies(self, make_user, company, other_company):
        user = make_user("staff", primary_company_id=company.id)
        access_service.assign_user_to_company(user.id, other_company.id, "manager")

        companies = {c["id"]: c for c in access_service.list_accessible_companies(user.id)}
        assert companies[company.id]["access_type"] == "primary"
        assert companies[other_company.id]["access_type"] == "association"

    def test_unknown_user(self, db_session):
        assert access_service.list_accessible_venues("missing") == []
        assert access_service.get_user_permissions("missing") is None

    def test_permission_snapshot(self, staff, company, ktv_venue):
        access_service.assign_user_to_venue(staff.id, ktv_venue.id, "staff")
        permissions = access_service.get_user_permissions(staff.id)

        assert permissions["primary_role"] == "staff"
        assert permissions["venue_associations"][0]["venue_name"] == "KTV Palace Downtown"
        assert permissions["venue_associations"][0]["company_name"] == "SGV"


class TestMutators:

    @pytest.mark.parametrize("role", ["owner", "staff", None])
    def test_invalid_company_role(self, customer, company, role):
        assert not access_service.assign_user_to_company(customer.id, company.id, role)

    def test_unknown_entities(self, customer, company, ktv_venue):
        assert not access_service.assign_user_to_company("missing", company.id, "admin")
        assert not access_service.assign_user_to_venue(customer.id, "missing", "staff")

    def test_reassign_updates_role(self, db_session, customer, company):
        access_service.assign_user_to_company(customer.id, company.id, "manager")
        access_service.assign_user_to_company(customer.id, company.id, "admin")

        rows = db_session.query(CompanyAssociation).filter_by(user_id=customer.id).all()
        assert [r.role for r in rows] == ["admin"]

    def test_remove_is_idempotent(self, db_session, customer, ktv_venue):
        access_service.assign_user_to_venue(customer.id, ktv_venue.id, "staff")
        assert access_service.remove_user_from_venue(customer.id, ktv_venue.id)
        assert access_service.remove_user_from_venue(customer.id, ktv_venue.id)
        assert db_session.query(VenueAssociation).count() == 0
