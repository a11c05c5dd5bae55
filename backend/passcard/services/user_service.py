# Overview: Administrative user provisioning and role assignment.

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..errors import InvalidInput, InvalidRole, NotFound, StateConflict
from ..extensions import db
from ..models import User
from ..roles import VALID_ROLES, is_valid_role
from . import audit_service


EVENT_USER_CREATED = "USER_CREATED"
EVENT_USER_ROLE_SET = "USER_ROLE_SET"


def get_user(user_id: str) -> User:
    user = db.session.query(User).filter_by(id=user_id).first()
    if not user:
        raise NotFound("User not found")
    return user


def list_users(role: str | None = None, include_inactive: bool = False) -> list[User]:
    query = db.session.query(User)
    if role:
        query = query.filter_by(role=role)
    if not include_inactive:
        query = query.filter_by(is_active=True)
    return query.order_by(User.created_at.asc(), User.id.asc()).all()


def set_user_role(
    actor,
    user_id: str,
    role: str,
    email: str | None = None,
    phone: str | None = None,
    full_name: str | None = None,
) -> tuple[User, bool]:
    """
    Create or update a user with the given primary role.

    user_id is the auth provider subject id, so an administrator can
    provision a profile before the person's first login.

    Returns (user, created).
    """
    if not user_id or not role:
        raise InvalidInput("Missing userId or role")
    if not is_valid_role(role):
        raise InvalidRole("Invalid role", valid_roles=VALID_ROLES)

    user = db.session.query(User).filter_by(id=user_id).first()
    created = user is None
    previous_role = None if created else user.role

    if created:
        user = User(id=user_id, role=role, is_active=True)
        db.session.add(user)
    else:
        user.role = role

    if email is not None:
        user.email = email.strip().lower() or None
    if phone is not None:
        user.phone = phone.strip() or None
    if full_name is not None:
        user.full_name = full_name.strip() or None

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise StateConflict("Email or phone already belongs to another user")

    audit_service.audit_log(
        EVENT_USER_CREATED if created else EVENT_USER_ROLE_SET,
        actor.id if actor else None,
        {
            "targetUserId": user.id,
            "assignedRole": role,
            "previousRole": previous_role,
            "createdBy": actor.role if actor else None,
        },
    )
    return user, created
