"""Admin sign-in: password hashes, JWT access/refresh tokens and login error messages.

Tokens carry the user's id, email and an ``admin`` claim. Every business
endpoint requires ``admin``; refreshing re-reads it from the database.
"""

import logging
import os
import re
from datetime import datetime, timedelta, timezone
from typing import Literal, Optional

import bcrypt
from jose import JWTError, jwt
from pydantic import BaseModel

from .config import settings

logger = logging.getLogger(__name__)

TokenKind = Literal["access", "refresh"]

# Checked against when the email is unknown so login time does not leak accounts
DUMMY_HASH = "$2b$12$LQv3c1yqBWVHxkd0LHAkCOYz6TtxMQJqhN8/X4.F3z3z3z3z3z3z3"

_DEFAULT_SECRET_KEY = "dev-secret-key-change-in-production"
ALGORITHM = "HS256"


class SecretKeyError(Exception):
    """Raised when no real signing key is configured outside debug mode."""


def _get_secret_key() -> str:
    """Signing key from JWT_SECRET_KEY, then SECRET_KEY.

    The built-in development key is only accepted with DEBUG on and ENV not
    production.

    Raises:
        SecretKeyError: If only the development key is available
    """
    secret_key = os.getenv("JWT_SECRET_KEY", os.getenv("SECRET_KEY", _DEFAULT_SECRET_KEY))
    if secret_key != _DEFAULT_SECRET_KEY:
        return secret_key

    debug_mode = os.getenv("DEBUG", "false").lower() in ("true", "1", "yes")
    env = os.getenv("ENV", os.getenv("ENVIRONMENT", "development")).lower()
    if env in ("production", "prod") or not debug_mode:
        raise SecretKeyError(
            "SECRET_KEY must be set to a secure value in production. "
            'Generate one with: python -c "import secrets; print(secrets.token_urlsafe(32))"'
        )
    logger.warning("Signing tokens with the development key; set JWT_SECRET_KEY before deploying")
    return secret_key


SECRET_KEY = _get_secret_key()


class TokenData(BaseModel):
    """Claims read back from a token."""

    user_id: int
    email: str
    is_admin: bool = False


class AccessTokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class Token(AccessTokenResponse):
    """Login response: an access token plus the refresh token that renews it."""

    refresh_token: str


class RefreshTokenRequest(BaseModel):
    refresh_token: str


# ===== Passwords =====


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


# (pattern, message) pairs checked in order; the first miss is reported
PASSWORD_RULES: list[tuple[str, str]] = [
    (r".{8,}", "Password must be at least 8 characters"),
    (r"[A-Z]", "Password must contain at least one uppercase letter"),
    (r"[a-z]", "Password must contain at least one lowercase letter"),
    (r"\d", "Password must contain at least one number"),
    (r'[!@#$%^&*(),.?":{}|<>]', "Password must contain at least one special character"),
]


def validate_password(password: str) -> tuple[bool, str]:
    """Check a new password against ``PASSWORD_RULES``.

    Returns:
        Tuple of (is_valid, error_message); the message is empty when valid
    """
    for pattern, message in PASSWORD_RULES:
        if not re.search(pattern, password, re.DOTALL):
            return False, message
    return True, ""


# ===== Tokens =====


def _encode_token(
    kind: TokenKind, user_id: int, email: str, is_admin: bool, lifetime: timedelta
) -> str:
    claims = {
        "sub": str(user_id),
        "email": email,
        "admin": is_admin,
        "exp": datetime.now(timezone.utc) + lifetime,
        "type": kind,
    }
    return jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM)


def _decode_token(token: str, kind: TokenKind) -> Optional[TokenData]:
    """Claims of a valid, unexpired token of ``kind``; None for anything else."""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
    if payload.get("type") != kind:
        return None

    user_id = int(payload.get("sub", 0))
    if user_id == 0:
        return None
    return TokenData(
        user_id=user_id,
        email=payload.get("email", ""),
        is_admin=bool(payload.get("admin", False)),
    )


def create_access_token(
    user_id: int, email: str, is_admin: bool = False, expires_delta: Optional[timedelta] = None
) -> str:
    """Short-lived bearer token for API calls."""
    lifetime = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    return _encode_token("access", user_id, email, is_admin, lifetime)


def create_refresh_token(
    user_id: int, email: str, is_admin: bool = False, expires_delta: Optional[timedelta] = None
) -> str:
    """Long-lived token accepted only by the refresh endpoint."""
    lifetime = expires_delta or timedelta(days=settings.refresh_token_expire_days)
    return _encode_token("refresh", user_id, email, is_admin, lifetime)


def decode_access_token(token: str) -> Optional[TokenData]:
    return _decode_token(token, "access")


def decode_refresh_token(token: str) -> Optional[TokenData]:
    return _decode_token(token, "refresh")


# ===== Login error messages =====


class NotAuthorizedException(Exception):
    """Wrong email/password pair or an account that is not allowed in."""


class UserNotConfirmedException(Exception):
    """The account exists but has not been confirmed yet."""


# Exception name fragments -> message shown on the login form
AUTH_ERROR_MESSAGES: list[tuple[str, str]] = [
    ("NotAuthorized", "Incorrect email or password."),
    ("UserNotFound", "Incorrect email or password."),
    ("UserNotConfirmed", "Account not confirmed."),
    ("PasswordResetRequired", "Password reset required."),
    ("TooManyRequests", "Too many attempts. Please try again later."),
    ("LimitExceeded", "Too many attempts. Please try again later."),
]


def describe_auth_error(error: BaseException | str) -> str:
    """Map an authentication failure to a user-facing string."""
    name = error if isinstance(error, str) else type(error).__name__
    for fragment, message in AUTH_ERROR_MESSAGES:
        if fragment in name:
            return message
    return "Sign in failed. Please try again."
