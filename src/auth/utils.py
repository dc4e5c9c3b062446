import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple
from uuid import UUID

import jwt
from passlib.context import CryptContext

from src.auth import errors
from src.config import settings

# Accounts migrated from the old portal still carry Django PBKDF2 hashes;
# they verify and get rehashed with bcrypt on the next successful sign-in.
pwd_context = CryptContext(
    schemes=["bcrypt", "django_pbkdf2_sha256"],
    deprecated=["django_pbkdf2_sha256"],
)


def verify_and_update_password(plain_password: str, hashed_password: str) -> Tuple[bool, Optional[str]]:
    """Verify a password; the second item is a fresh bcrypt hash when the stored one is legacy"""
    try:
        return pwd_context.verify_and_update(plain_password, hashed_password)
    except (ValueError, TypeError):
        return False, None


def get_password_hash(password: str) -> str:
    """Hash a password"""
    return pwd_context.hash(password)


def create_access_token(user_id: UUID, user_type: str, email: str) -> Tuple[str, datetime]:
    """Create a signed JWT access token; returns the token and its expiry"""
    issued_at = datetime.now(timezone.utc)
    expires_at = issued_at + timedelta(seconds=settings.ACCESS_TOKEN_EXPIRE_SECONDS)
    claims = {
        "sub": str(user_id),
        "user_type": user_type,
        "email": email,
        "iss": settings.TOKEN_ISSUER,
        "iat": issued_at,
        "exp": expires_at,
    }
    try:
        token = jwt.encode(claims, settings.TOKEN_SECRET, algorithm=settings.ALGORITHM)
    except jwt.PyJWTError as e:
        raise errors.TOKEN_CREATION.wrap(e)
    return token, expires_at


def verify_token(token: str) -> dict:
    """Decode an access token, raising INVALID_TOKEN on any problem"""
    try:
        payload = jwt.decode(
            token,
            settings.TOKEN_SECRET,
            algorithms=[settings.ALGORITHM],
            issuer=settings.TOKEN_ISSUER,
            options={"require": ["sub", "exp", "iat"]},
        )
    except jwt.PyJWTError as e:
        raise errors.INVALID_TOKEN.wrap(e)

    try:
        payload["user_id"] = UUID(payload["sub"])
    except (ValueError, TypeError) as e:
        raise errors.INVALID_TOKEN.wrap(e)
    return payload


def generate_refresh_token() -> str:
    return secrets.token_hex(32)


def generate_url_token() -> str:
    return secrets.token_urlsafe(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
