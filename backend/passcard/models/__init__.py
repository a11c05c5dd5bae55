from .tenancy import Company, Venue, VENUE_TYPES
from .auth import User, CompanyAssociation, VenueAssociation, RoleOverride, AuthSession, OtpChallenge
from .memberships import (
    Membership, Transaction,
    MEMBERSHIP_STATUSES, MEMBERSHIP_TYPES, TRANSACTION_TYPES, TRANSACTION_STATUSES,
)
from .security import SecurityEvent

__all__ = [
    'Company', 'Venue', 'VENUE_TYPES',
    'User', 'CompanyAssociation', 'VenueAssociation', 'RoleOverride', 'AuthSession', 'OtpChallenge',
    'Membership', 'Transaction',
    'MEMBERSHIP_STATUSES', 'MEMBERSHIP_TYPES', 'TRANSACTION_TYPES', 'TRANSACTION_STATUSES',
    'SecurityEvent',
]
