# Overview: Company/venue access on top of the primary role.

"""
Associative Access Control

WHY: A user has one primary role plus any number of company and venue
grants. "Can this staff member charge at this venue?" and "which venues
does this admin see?" both need the union of those sources.

ACCESS SOURCES:
- primary: users.primary_company_id / users.primary_venue_id
- association: user_companies / user_venues rows
- company: every venue of a company the user reaches through a
  user_companies row (or through the primary company when the primary
  role is company_admin or above). No user_venues row is materialized.

LISTING PRECEDENCE (de-duplicated by entity id):
    association > primary > company
An explicit venue association is authoritative; the company-inferred entry
for the same venue is suppressed.

Mutators never raise: failures are logged and reported as False.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import User, Company, Venue, CompanyAssociation, VenueAssociation
from ..roles import (
    ROLE_COMPANY_ADMIN, ROLE_SUPER_ADMIN,
    COMPANY_ASSOCIATION_ROLES, VENUE_ASSOCIATION_ROLES,
    satisfies,
)


ACCESS_PRIMARY = "primary"
ACCESS_ASSOCIATION = "association"
ACCESS_COMPANY = "company"

# Role reported for venues reached only through company-level access
INFERRED_VENUE_ROLE = ROLE_COMPANY_ADMIN


# =============================================================================
# PERMISSION SNAPSHOT
# =============================================================================

def get_user_permissions(user_id: str) -> dict | None:
    """
    Primary assignment plus every explicit association for a user.

    Returns None when the user does not exist or the lookup fails.
    """
    try:
        user = db.session.query(User).filter_by(id=user_id).first()
        if not user:
            return None

        company_rows = (
            db.session.query(CompanyAssociation)
            .filter_by(user_id=user_id)
            .order_by(CompanyAssociation.created_at.asc())
            .all()
        )
        venue_rows = (
            db.session.query(VenueAssociation)
            .filter_by(user_id=user_id)
            .order_by(VenueAssociation.created_at.asc())
            .all()
        )
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Error fetching user permissions for %s", user_id)
        return None

    return {
        "user_id": user.id,
        "primary_role": user.role,
        "primary_company_id": user.primary_company_id,
        "primary_venue_id": user.primary_venue_id,
        "company_associations": [
            {
                "company_id": row.company_id,
                "role": row.role,
                "company_name": row.company.name if row.company else None,
            }
            for row in company_rows
        ],
        "venue_associations": [
            {
                "venue_id": row.venue_id,
                "role": row.role,
                "venue_name": row.venue.name if row.venue else None,
                "company_id": row.venue.company_id if row.venue else None,
                "company_name": row.venue.company.name if row.venue and row.venue.company else None,
            }
            for row in venue_rows
        ],
    }


# =============================================================================
# PERSISTENCE-LEVEL PREDICATES
# =============================================================================

def _company_level_ids(user: User) -> set[str]:
    """Companies whose venues the user reaches without a venue row."""
    rows = db.session.query(CompanyAssociation.company_id).filter_by(user_id=user.id).all()
    company_ids = {row[0] for row in rows}
    if user.primary_company_id and satisfies(user.role, ROLE_COMPANY_ADMIN):
        company_ids.add(user.primary_company_id)
    return company_ids


def user_can_access_company(user_id: str, company_id: str) -> bool:
    """Primary company or an explicit user_companies row."""
    user = db.session.query(User).filter_by(id=user_id, is_active=True).first()
    if not user or not company_id:
        return False

    if user.primary_company_id == company_id:
        return True

    return db.session.query(CompanyAssociation).filter_by(
        user_id=user_id, company_id=company_id
    ).first() is not None


def user_can_access_venue(user_id: str, venue_id: str) -> bool:
    """Primary venue, an explicit user_venues row, or company-level access to the owning company."""
    user = db.session.query(User).filter_by(id=user_id, is_active=True).first()
    if not user or not venue_id:
        return False

    if user.primary_venue_id == venue_id:
        return True

    explicit = db.session.query(VenueAssociation).filter_by(
        user_id=user_id, venue_id=venue_id
    ).first()
    if explicit:
        return True

    venue = db.session.query(Venue).filter_by(id=venue_id).first()
    if not venue:
        return False

    return venue.company_id in _company_level_ids(user)


# =============================================================================
# PRINCIPAL-LEVEL CHECKS
# =============================================================================

def can_access_company(principal, company_id: str) -> bool:
    if principal is None:
        return False
    if principal.role == ROLE_SUPER_ADMIN:
        return True
    try:
        return user_can_access_company(principal.id, company_id)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Error checking company access")
        return False


def can_access_venue(principal, venue_id: str) -> bool:
    if principal is None:
        return False
    if principal.role == ROLE_SUPER_ADMIN:
        return True
    try:
        return user_can_access_venue(principal.id, venue_id)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Error checking venue access")
        return False


# =============================================================================
# LISTINGS
# =============================================================================

def list_accessible_companies(user_id: str) -> list[dict]:
    permissions = get_user_permissions(user_id)
    if not permissions:
        return []

    companies: dict[str, dict] = {}

    for assoc in permissions["company_associations"]:
        companies[assoc["company_id"]] = {
            "id": assoc["company_id"],
            "name": assoc["company_name"],
            "role": assoc["role"],
            "access_type": ACCESS_ASSOCIATION,
        }

    primary_id = permissions["primary_company_id"]
    if primary_id and primary_id not in companies:
        company = db.session.query(Company).filter_by(id=primary_id).first()
        if company:
            companies[company.id] = {
                "id": company.id,
                "name": company.name,
                "role": permissions["primary_role"],
                "access_type": ACCESS_PRIMARY,
            }

    return sorted(companies.values(), key=lambda c: (c["name"] or "", c["id"]))


def _venue_entry(venue: Venue, role: str | None, access_type: str) -> dict:
    return {
        "id": venue.id,
        "name": venue.name,
        "company_id": venue.company_id,
        "company_name": venue.company.name if venue.company else None,
        "role": role,
        "access_type": access_type,
    }


def list_accessible_venues(user_id: str) -> list[dict]:
    permissions = get_user_permissions(user_id)
    if not permissions:
        return []

    venues: dict[str, dict] = {}

    for assoc in permissions["venue_associations"]:
        venues[assoc["venue_id"]] = {
            "id": assoc["venue_id"],
            "name": assoc["venue_name"],
            "company_id": assoc["company_id"],
            "company_name": assoc["company_name"],
            "role": assoc["role"],
            "access_type": ACCESS_ASSOCIATION,
        }

    primary_id = permissions["primary_venue_id"]
    if primary_id and primary_id not in venues:
        venue = db.session.query(Venue).filter_by(id=primary_id).first()
        if venue:
            venues[venue.id] = _venue_entry(venue, permissions["primary_role"], ACCESS_PRIMARY)

    user = db.session.query(User).filter_by(id=user_id).first()
    company_ids = _company_level_ids(user) if user else set()
    if company_ids:
        inferred = db.session.query(Venue).filter(Venue.company_id.in_(company_ids)).all()
        for venue in inferred:
            # Explicit and primary entries win
            if venue.id not in venues:
                venues[venue.id] = _venue_entry(venue, INFERRED_VENUE_ROLE, ACCESS_COMPANY)

    return sorted(venues.values(), key=lambda v: (v["company_name"] or "", v["name"] or "", v["id"]))


def list_company_members(company_id: str) -> list[CompanyAssociation]:
    return (
        db.session.query(CompanyAssociation)
        .filter_by(company_id=company_id)
        .order_by(CompanyAssociation.created_at.asc())
        .all()
    )


def list_venue_members(venue_id: str) -> list[VenueAssociation]:
    return (
        db.session.query(VenueAssociation)
        .filter_by(venue_id=venue_id)
        .order_by(VenueAssociation.created_at.asc())
        .all()
    )


# =============================================================================
# MUTATORS
# =============================================================================

def _upsert_association(model, entity_field: str, user_id: str, entity_id: str, role: str) -> None:
    filters = {"user_id": user_id, entity_field: entity_id}
    existing = db.session.query(model).filter_by(**filters).first()
    if existing:
        existing.role = role
    else:
        db.session.add(model(role=role, **filters))

    try:
        db.session.commit()
    except IntegrityError:
        # Lost an insert race on the unique key: the row exists now, update it
        db.session.rollback()
        existing = db.session.query(model).filter_by(**filters).first()
        if existing is None:
            raise
        existing.role = role
        db.session.commit()


def assign_user_to_company(user_id: str, company_id: str, role: str) -> bool:
    if role not in COMPANY_ASSOCIATION_ROLES:
        current_app.logger.warning("Rejected company role %r for user %s", role, user_id)
        return False

    try:
        if not db.session.query(User).filter_by(id=user_id).first():
            current_app.logger.warning("Cannot assign unknown user %s to company", user_id)
            return False
        if not db.session.query(Company).filter_by(id=company_id).first():
            current_app.logger.warning("Cannot assign user to unknown company %s", company_id)
            return False

        _upsert_association(CompanyAssociation, "company_id", user_id, company_id, role)
        return True
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Error assigning user to company")
        return False


def assign_user_to_venue(user_id: str, venue_id: str, role: str) -> bool:
    if role not in VENUE_ASSOCIATION_ROLES:
        current_app.logger.warning("Rejected venue role %r for user %s", role, user_id)
        return False

    try:
        if not db.session.query(User).filter_by(id=user_id).first():
            current_app.logger.warning("Cannot assign unknown user %s to venue", user_id)
            return False
        if not db.session.query(Venue).filter_by(id=venue_id).first():
            current_app.logger.warning("Cannot assign user to unknown venue %s", venue_id)
            return False

        _upsert_association(VenueAssociation, "venue_id", user_id, venue_id, role)
        return True
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Error assigning user to venue")
        return False


def remove_user_from_company(user_id: str, company_id: str) -> bool:
    """Idempotent: removing a missing association still returns True."""
    try:
        db.session.query(CompanyAssociation).filter_by(
            user_id=user_id, company_id=company_id
        ).delete(synchronize_session=False)
        db.session.commit()
        return True
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Error removing user from company")
        return False


def remove_user_from_venue(user_id: str, venue_id: str) -> bool:
    """Idempotent: removing a missing association still returns True."""
    try:
        db.session.query(VenueAssociation).filter_by(
            user_id=user_id, venue_id=venue_id
        ).delete(synchronize_session=False)
        db.session.commit()
        return True
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Error removing user from venue")
        return False
