from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .common import new_uuid


class User(db.Model):
    """
    User profile and primary role.

    The id is the auth provider's subject id. A row is created on the first
    successful OTP verification; it is never deleted, only deactivated.

    WHY primary_company_id / primary_venue_id: a user's home assignment.
    Additional grants live in user_companies / user_venues.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.Index("ix_users_role", "role"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)

    email = db.Column(db.String(255), nullable=True, unique=True)
    phone = db.Column(db.String(32), nullable=True, unique=True)
    full_name = db.Column(db.String(128), nullable=True)

    # customer | staff | company_admin | super_admin (null = not assigned)
    role = db.Column(db.String(32), nullable=True)

    primary_company_id = db.Column(db.String(36), db.ForeignKey("companies.id"), nullable=True)
    primary_venue_id = db.Column(db.String(36), db.ForeignKey("venues.id"), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now()
    )

    primary_company = db.relationship("Company", foreign_keys=[primary_company_id])
    primary_venue = db.relationship("Venue", foreign_keys=[primary_venue_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "phone": self.phone,
            "full_name": self.full_name,
            "role": self.role,
            "primary_company_id": self.primary_company_id,
            "primary_venue_id": self.primary_venue_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class CompanyAssociation(db.Model):
    """
    Supplementary company-scoped role (admin | manager).

    Independent of User.primary_company_id. One row per (user, company);
    re-assigning replaces the role.
    """
    __tablename__ = "user_companies"
    __table_args__ = (
        db.UniqueConstraint("user_id", "company_id", name="uq_user_companies"),
        db.Index("ix_user_companies_user", "user_id"),
        db.Index("ix_user_companies_company", "company_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    company_id = db.Column(db.String(36), db.ForeignKey("companies.id"), nullable=False)
    role = db.Column(db.String(16), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User", backref=db.backref("company_associations", lazy=True))
    company = db.relationship("Company")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "company_id": self.company_id,
            "company_name": self.company.name if self.company else None,
            "role": self.role,
            "created_at": to_utc_z(self.created_at),
        }


class VenueAssociation(db.Model):
    """Supplementary venue-scoped role (staff | manager). Same lifecycle as CompanyAssociation."""
    __tablename__ = "user_venues"
    __table_args__ = (
        db.UniqueConstraint("user_id", "venue_id", name="uq_user_venues"),
        db.Index("ix_user_venues_user", "user_id"),
        db.Index("ix_user_venues_venue", "venue_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    venue_id = db.Column(db.String(36), db.ForeignKey("venues.id"), nullable=False)
    role = db.Column(db.String(16), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User", backref=db.backref("venue_associations", lazy=True))
    venue = db.relationship("Venue")

    def to_dict(self) -> dict:
        venue = self.venue
        return {
            "id": self.id,
            "user_id": self.user_id,
            "venue_id": self.venue_id,
            "venue_name": venue.name if venue else None,
            "company_id": venue.company_id if venue else None,
            "company_name": venue.company.name if venue and venue.company else None,
            "role": self.role,
            "created_at": to_utc_z(self.created_at),
        }


class RoleOverride(db.Model):
    """
    Time-bounded replacement of a user's stored role.

    WHY a table: an override changes authorization outcomes, so it must be a
    named, auditable record rather than a client-side flag. Only the demo
    self-upgrade path writes these. At most one row per user is active
    (revoked_at IS NULL and expires_at in the future).
    """
    __tablename__ = "role_overrides"
    __table_args__ = (
        db.Index("ix_role_overrides_user_active", "user_id", "revoked_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    role = db.Column(db.String(32), nullable=False)
    reason = db.Column(db.String(64), nullable=False, default="self_upgrade")

    granted_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    user = db.relationship("User", backref=db.backref("role_overrides", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "role": self.role,
            "reason": self.reason,
            "granted_at": to_utc_z(self.granted_at),
            "expires_at": to_utc_z(self.expires_at),
            "revoked_at": to_utc_z(self.revoked_at),
        }


class AuthSession(db.Model):
    """
    Bearer session issued by the auth provider after OTP verification.

    subject_id deliberately has no FK to users: the provider authenticates
    subjects, the profile row is the application's concern.
    """
    __tablename__ = "auth_sessions"
    __table_args__ = (
        db.Index("ix_auth_sessions_subject", "subject_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    subject_id = db.Column(db.String(36), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)

    # SHA-256 hex of the plaintext token; plaintext never stored
    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_reason = db.Column(db.String(128), nullable=True)

    user_agent = db.Column(db.String(512), nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)


class OtpChallenge(db.Model):
    """One-time login code sent by SMS or email. Code stored bcrypt-hashed."""
    __tablename__ = "otp_challenges"
    __table_args__ = (
        db.Index("ix_otp_challenges_destination", "channel", "destination"),
    )

    id = db.Column(db.Integer, primary_key=True)
    channel = db.Column(db.String(8), nullable=False)  # sms | email
    destination = db.Column(db.String(255), nullable=False)
    code_hash = db.Column(db.String(255), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    consumed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    attempts = db.Column(db.Integer, nullable=False, default=0)
