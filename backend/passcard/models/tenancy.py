from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .common import new_uuid


VENUE_TYPES = ["ktv", "restaurant", "basketball_court", "badminton_court", "other"]


class Company(db.Model):
    """
    A merchant group that issues memberships (e.g. SGV).

    WHY: Memberships, company associations and venues are all scoped to a
    company. Company-level access implies access to every venue it owns.
    """
    __tablename__ = "companies"

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    name = db.Column(db.String(128), nullable=False)
    description = db.Column(db.Text, nullable=True)
    logo_url = db.Column(db.String(512), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "logo_url": self.logo_url,
            "created_at": to_utc_z(self.created_at),
        }


class Venue(db.Model):
    """A physical location where staff accept payments. Belongs to exactly one company."""
    __tablename__ = "venues"
    __table_args__ = (
        db.Index("ix_venues_company_id", "company_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    company_id = db.Column(db.String(36), db.ForeignKey("companies.id"), nullable=False)
    name = db.Column(db.String(128), nullable=False)
    type = db.Column(db.String(32), nullable=False, default="other")
    address = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    company = db.relationship("Company", backref=db.backref("venues", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "name": self.name,
            "type": self.type,
            "address": self.address,
            "phone": self.phone,
            "created_at": to_utc_z(self.created_at),
        }
