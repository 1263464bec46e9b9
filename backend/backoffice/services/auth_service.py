# Overview: Service-layer operations for users, passwords, session tokens and role checks.

"""
Authentication and session service

- Passwords are hashed with bcrypt (cost factor 12).
- Session tokens are 32 random bytes (hex) handed to the client once; only
  their SHA-256 is stored.
- Roles: admin, gerente (store manager), vendedor (seller).

Privileged engine operations call ensure_role() before reading or writing
anything, so an AuthorizationError never leaves partial effects.
"""

from __future__ import annotations

import hashlib
import secrets
from datetime import timedelta

import bcrypt
from flask import current_app

from ..extensions import db
from ..models import User, SessionToken
from backoffice.time_utils import utcnow


ROLE_ADMIN = "admin"
ROLE_MANAGER = "gerente"
ROLE_SELLER = "vendedor"

VALID_ROLES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_SELLER)

MIN_PASSWORD_LENGTH = 6


class AuthorizationError(Exception):
    """Raised when the acting user lacks the role an operation requires."""
    pass


class UserError(Exception):
    """Raised for invalid user management requests."""
    pass


def ensure_role(actor, *roles: str) -> None:
    """Raise AuthorizationError unless actor is an active user with one of roles."""
    if actor is None or not getattr(actor, "is_active", False):
        raise AuthorizationError("Authentication required")
    if actor.role not in roles:
        raise AuthorizationError(
            f"Role '{actor.role}' is not allowed; requires one of: {', '.join(roles)}"
        )


# =============================================================================
# PASSWORDS
# =============================================================================

def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode("utf-8"), salt)
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str | None) -> bool:
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed hash in storage
        return False


# =============================================================================
# USERS
# =============================================================================

def create_user(*, username: str, name: str, password: str, role: str = ROLE_SELLER) -> User:
    username = (username or "").strip()
    name = (name or "").strip()
    if not username or not name:
        raise UserError("username and name are required")
    if role not in VALID_ROLES:
        raise UserError(f"Invalid role: {role}. Must be one of {list(VALID_ROLES)}")
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise UserError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")

    if db.session.query(User).filter_by(username=username).first():
        raise UserError("Username already exists")

    user = User(username=username, name=name, role=role, password_hash=hash_password(password))
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(username: str, password: str) -> User | None:
    user = db.session.query(User).filter(
        User.username == (username or "").strip(),
        User.is_active.is_(True),
    ).first()
    if user is None or not verify_password(password, user.password_hash):
        return None
    return user


def list_sellers() -> list[User]:
    """Users that can be attributed as the seller of an order."""
    return (
        db.session.query(User)
        .filter(User.is_active.is_(True))
        .order_by(User.name.asc())
        .all()
    )


# =============================================================================
# SESSIONS
# =============================================================================

def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_session(user_id: int) -> tuple[SessionToken, str]:
    """
    Returns (session_record, plaintext_token).
    The plaintext token is never stored.
    """
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        raise UserError("User not found or inactive")

    token = generate_token()
    now = utcnow()
    ttl = timedelta(hours=int(current_app.config.get("SESSION_TTL_HOURS", 24)))

    session = SessionToken(
        user_id=user.id,
        token_hash=hash_token(token),
        created_at=now,
        expires_at=now + ttl,
    )
    db.session.add(session)
    db.session.commit()
    return session, token


def validate_session(token: str) -> User | None:
    """Return the session's user, or None when invalid, expired, revoked or deactivated."""
    if not token:
        return None
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        revoked_at=None,
    ).first()
    if session is None:
        return None
    if session.expires_at < utcnow():
        return None

    user = session.user
    if user is None or not user.is_active:
        session.revoked_at = utcnow()
        db.session.commit()
        return None
    return user


def revoke_session(token: str) -> bool:
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        revoked_at=None,
    ).first()
    if session is None:
        return False
    session.revoked_at = utcnow()
    db.session.commit()
    return True
