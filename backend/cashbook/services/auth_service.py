# Overview: Service-layer operations for operators, API tokens and capability grants.

"""
Operator Accounts and API Tokens

WHY: Every ledger row carries a user id, and every endpoint is gated by a
capability string. This module owns both: who the caller is and what they
may do.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost from BCRYPT_ROUNDS)
- API tokens are 32 random bytes; only their SHA-256 hash is stored
- Issuing a token replaces the previous one
- Inactive users never resolve from a token
- Administrators hold every capability implicitly
"""

from __future__ import annotations

import hashlib
import secrets

import bcrypt
from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import NotFound, ValidationError
from ..extensions import db
from ..models import User, UserPermission
from ..permissions import ALL_PERMISSIONS
from ..time_utils import utcnow

MIN_PASSWORD_LENGTH = 8


# =============================================================================
# PASSWORDS
# =============================================================================

def hash_password(password: str) -> str:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long", field="password"
        )
    salt = bcrypt.gensalt(rounds=current_app.config.get("BCRYPT_ROUNDS", 12))
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str | None) -> bool:
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed hash in the database
        return False


# =============================================================================
# USERS
# =============================================================================

def create_user(
    username: str,
    name: str,
    password: str | None = None,
    *,
    is_admin: bool = False,
    permissions: list[str] | None = None,
) -> User:
    """
    Create an operator account.

    Raises:
        ValidationError: username missing or taken, weak password, unknown capability
    """
    username = (username or "").strip()
    if not username:
        raise ValidationError("username is required", field="username")
    if db.session.query(User.id).filter_by(username=username).first():
        raise ValidationError(f"Username {username!r} already exists", field="username")

    user = User(
        username=username,
        name=(name or username).strip(),
        password_hash=hash_password(password) if password else None,
        is_admin=bool(is_admin),
        is_active=True,
    )
    for code in permissions or []:
        user.permissions.append(UserPermission(permission=_require_known(code)))

    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ValidationError(f"Username {username!r} already exists", field="username") from exc

    current_app.logger.info("User %s created (admin=%s)", username, user.is_admin)
    return user


def authenticate(username: str, password: str) -> User | None:
    """Return the active user for these credentials, or None."""
    user = db.session.query(User).filter_by(username=username, is_active=True).first()
    if user is None or not verify_password(password, user.password_hash):
        return None
    return user


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFound(f"User {user_id} not found")
    return user


def get_user_by_username(username: str) -> User:
    user = db.session.query(User).filter_by(username=username).first()
    if user is None:
        raise NotFound(f"User {username!r} not found")
    return user


def list_users() -> list[User]:
    return db.session.query(User).order_by(User.username).all()


def deactivate_user(user_id: int) -> User:
    user = get_user(user_id)
    user.is_active = False
    user.token_hash = None
    db.session.commit()
    return user


# =============================================================================
# TOKENS
# =============================================================================

def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def issue_token(user: User) -> str:
    """
    Issue a fresh API token for ``user`` and return it in plaintext.

    The plaintext is shown once; only its hash is stored.
    """
    token = generate_token()
    user.token_hash = hash_token(token)
    user.token_issued_at = utcnow()
    db.session.commit()
    return token


def resolve_token(token: str | None) -> User | None:
    if not token:
        return None
    return db.session.query(User).filter_by(token_hash=hash_token(token), is_active=True).first()


def revoke_token(user: User) -> None:
    user.token_hash = None
    user.token_issued_at = None
    db.session.commit()


# =============================================================================
# CAPABILITIES
# =============================================================================

def get_user_permissions(user: User) -> set[str]:
    if user.is_admin:
        return set(ALL_PERMISSIONS)
    return {grant.permission for grant in user.permissions}


def user_has_permission(user: User, permission: str) -> bool:
    return user.is_admin or permission in get_user_permissions(user)


def grant_permission(user_id: int, permission: str) -> User:
    user = get_user(user_id)
    code = _require_known(permission)
    if code not in {grant.permission for grant in user.permissions}:
        user.permissions.append(UserPermission(permission=code))
        db.session.commit()
    return user


def revoke_permission(user_id: int, permission: str) -> User:
    user = get_user(user_id)
    for grant in list(user.permissions):
        if grant.permission == permission:
            user.permissions.remove(grant)
    db.session.commit()
    return user


def _require_known(permission: str) -> str:
    if permission not in ALL_PERMISSIONS:
        raise ValidationError(f"Unknown permission: {permission}", field="permission")
    return permission
