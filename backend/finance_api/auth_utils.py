import hashlib
import secrets
import string
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

from jose import JWTError, jwt

from .config import settings


def hash_password(password: str) -> str:
    salt = secrets.token_hex(16)
    digest = hashlib.sha256(f"{salt}:{password}".encode("utf-8")).hexdigest()
    return f"{salt}${digest}"


def verify_password(password: str, stored_hash: str) -> bool:
    try:
        salt, expected = stored_hash.split("$", 1)
    except ValueError:
        return False
    digest = hashlib.sha256(f"{salt}:{password}".encode("utf-8")).hexdigest()
    return secrets.compare_digest(digest, expected)


ASCII_ALNUM = set(string.ascii_letters + string.digits)
STRENGTH_LABELS = {0: "very weak", 1: "very weak", 2: "weak", 3: "medium", 4: "strong", 5: "very strong"}


def password_score(password: str) -> int:
    """One point each for length >= 8, lowercase, uppercase, digit and symbol (0..5)."""
    checks = (
        len(password) >= 8,
        any(ch in string.ascii_lowercase for ch in password),
        any(ch in string.ascii_uppercase for ch in password),
        any(ch in string.digits for ch in password),
        any(ch not in ASCII_ALNUM for ch in password),
    )
    return sum(checks)


def password_strength(password: str) -> str:
    return STRENGTH_LABELS[password_score(password)]


def _encode(user_id: UUID, token_type: str, expires_delta: timedelta, secret: str) -> str:
    payload = {"sub": str(user_id), "type": token_type, "exp": datetime.now(timezone.utc) + expires_delta}
    return jwt.encode(payload, secret, algorithm=settings.jwt_algorithm)


def create_access_token(user_id: UUID, expires_delta: timedelta | None = None) -> str:
    delta = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    return _encode(user_id, "access", delta, settings.jwt_secret)


def create_refresh_token(user_id: UUID, expires_delta: timedelta | None = None) -> str:
    delta = expires_delta or timedelta(days=settings.refresh_token_expire_days)
    return _encode(user_id, "refresh", delta, settings.refresh_token_secret)


def create_reset_token(user_id: UUID, expires_delta: timedelta | None = None) -> str:
    delta = expires_delta or timedelta(minutes=settings.reset_token_expire_minutes)
    return _encode(user_id, "reset", delta, settings.jwt_secret)


def decode_token(token: str, secret: str | None = None) -> dict[str, Any] | None:
    """Claims of a valid, unexpired token, or None."""
    try:
        return jwt.decode(token, secret or settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


def token_subject(claims: dict[str, Any] | None, token_type: str) -> UUID | None:
    if not claims or claims.get("type") != token_type or not claims.get("sub"):
        return None
    try:
        return UUID(str(claims["sub"]))
    except ValueError:
        return None


def decode_access_token(token: str) -> UUID | None:
    return token_subject(decode_token(token), "access")


def decode_refresh_token(token: str) -> UUID | None:
    return token_subject(decode_token(token, settings.refresh_token_secret), "refresh")
