"""
Storefront Authentication

Bearer-token authentication:
- Passwords are stored as bcrypt hashes
- Login issues a random token; only its SHA-256 hash is persisted
- Every request resolves the token to an Identity (user_id, role)
"""

import hashlib
import secrets
from typing import Optional, Tuple

import bcrypt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session

from .database import get_session
from .errors import Forbidden, StoreError, Unauthorized
from .models import ApiToken, Role, User

TOKEN_PREFIX = "sf_"

bearer_scheme = HTTPBearer(auto_error=False)


class Identity(BaseModel):
    """
    Authenticated caller. Services trust this as given.
    """
    user_id: int
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


# ---------------------------
# Passwords and tokens
# ---------------------------
def _password_bytes(password: str) -> bytes:
    # bcrypt only reads the first 72 bytes
    return password.encode("utf-8")[:72]


def hash_password(password: str, rounds: int = 12) -> str:
    return bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt(rounds)).decode("ascii")


def verify_password(password: str, stored: str) -> bool:
    try:
        return bcrypt.checkpw(_password_bytes(password), stored.encode("ascii"))
    except ValueError:
        # not a bcrypt hash
        return False


def hash_token(raw_token: str) -> str:
    """Hash a raw bearer token using SHA-256."""
    return hashlib.sha256(raw_token.encode()).hexdigest()


def generate_token() -> Tuple[str, str]:
    """
    Generate a new bearer token.

    Returns (raw_token, token_hash).
    """
    raw_token = f"{TOKEN_PREFIX}{secrets.token_urlsafe(32)}"
    return raw_token, hash_token(raw_token)


def issue_token(session: Session, user: User) -> str:
    """Persist a fresh token for user (caller owns the transaction)."""
    raw_token, token_hash = generate_token()
    session.add(ApiToken(user_id=user.id, token_hash=token_hash))
    return raw_token


# ---------------------------
# Request dependencies
# ---------------------------
def _extract_token(bearer: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    if bearer and bearer.scheme and bearer.scheme.lower() == "bearer":
        return bearer.credentials
    return None


def resolve_identity(session: Session, raw_token: str) -> Optional[Identity]:
    with session.begin():
        row = session.execute(
            select(User.id, User.role)
            .join(ApiToken, ApiToken.user_id == User.id)
            .where(ApiToken.token_hash == hash_token(raw_token))
        ).first()
    if row is None:
        return None
    return Identity(user_id=row.id, role=row.role)


def get_current_user(
    bearer: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    session: Session = Depends(get_session),
) -> Identity:
    raw_token = _extract_token(bearer)
    if not raw_token:
        raise Unauthorized("No token, authorization denied")
    identity = resolve_identity(session, raw_token)
    if identity is None:
        raise Unauthorized("Token is not valid")
    return identity


def require_admin(identity: Identity = Depends(get_current_user)) -> Identity:
    if not identity.is_admin:
        raise Forbidden("Access denied. Admin only.")
    return identity


# ---------------------------
# Authorization predicates
# ---------------------------
def can_access(resource_user_id: int, identity: Identity, allow_admin: bool = True) -> bool:
    if allow_admin and identity.is_admin:
        return True
    return resource_user_id == identity.user_id


def ensure_owner(resource_user_id: int, identity: Identity, error: Optional[StoreError] = None,
                 allow_admin: bool = True) -> None:
    """
    Ownership guard: resource.user_id must match the caller.

    Admins pass unless allow_admin is False. Raises error (default Forbidden)
    so callers can report someone else's order as NotFound.
    """
    if not can_access(resource_user_id, identity, allow_admin):
        raise error if error is not None else Forbidden("Not the owner of this resource")
