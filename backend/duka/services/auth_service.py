# Overview: Role gate for mutating operations.

from __future__ import annotations

from typing import Iterable

from ..extensions import db
from ..errors import NotFound, Unauthorized, ValidationError
from ..models import User, ROLES


def verify_role(caller_id: int | None, allowed_roles: Iterable[str]) -> User:
    """
    Resolve the caller and check their role.

    Fails closed: an unknown, inactive or out-of-role caller raises
    Unauthorized before any state is touched.
    """
    allowed = tuple(allowed_roles)
    user = db.session.get(User, caller_id) if caller_id is not None else None
    if user is None or not user.is_active or user.role not in allowed:
        raise Unauthorized(allowed_roles=allowed)
    return user


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFound("User", user_id)
    return user


def create_user(*, email: str, name: str, role: str, shop_id: int | None = None) -> User:
    """Register a user known to the identity provider. Does not commit."""
    email = (email or "").strip().lower()
    if not email:
        raise ValidationError("email is required", field="email")
    if role not in ROLES:
        raise ValidationError(f"role must be one of: {', '.join(ROLES)}", field="role")
    if db.session.query(User).filter_by(email=email).first() is not None:
        raise ValidationError(f"User {email} already exists", field="email")

    user = User(email=email, name=(name or email).strip(), role=role, shop_id=shop_id, is_active=True)
    db.session.add(user)
    db.session.flush()
    return user
