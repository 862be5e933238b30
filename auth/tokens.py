"""
auth/tokens.py -- JWT access tokens, opaque refresh tokens, and password hashing.

Security design decisions:
  Access tokens: python-jose with HS256. Tokens are signed with SECRET_KEY and
       carry user_id, email, display name, roles, permissions, issuer,
       audience and expiry. They are short-lived and verified statelessly.
       Verification returns None on any failure -- the Authorization
       Decision Point turns that into Unauthenticated (401).

  Refresh tokens: secrets.token_urlsafe(64) -- 512 bits of entropy, opaque,
       meaningful only as a lookup key into the refresh_tokens table.

  Passwords: bcrypt directly (no passlib wrapper). The _DUMMY_HASH constant
       enables timing equalization in the lockout controller so response time
       does not reveal whether an email is registered.

Layer rule: no imports from api/ or client/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from core.config import get_settings

logger = logging.getLogger("techgadgets.auth")

_settings = get_settings()

_ALGORITHM = "HS256"
_REQUIRED_CLAIMS = ("sub", "user_id", "exp")

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt only looks at the first 72 bytes; the API layer caps password
    length well below anything that matters for that limit.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    bcrypt.checkpw compares in constant time. A malformed stored hash is a
    mismatch, not an error.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("techgadgets_timing_dummy")


def burn_password_check(plain: str) -> None:
    """Run a bcrypt comparison against a dummy hash and discard the result.

    Called on the unknown-email path so it costs the same as a real check.
    """
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# Access tokens (JWT)
# ---------------------------------------------------------------------------


def create_access_token(
    user_id: int,
    email: str,
    display_name: str,
    roles: Iterable[str],
    permissions: Iterable[str],
    expires_at: datetime | None = None,
) -> str:
    """Encode a signed JWT with identity and grant claims.

    Args:
        user_id:      Numeric user ID stored in the DB.
        email:        Login email, informational only.
        display_name: First + last name, informational only.
        roles:        Effective role names at issue time.
        permissions:  Effective permission codes at issue time.
        expires_at:   Absolute expiry. Defaults to now + ACCESS_TOKEN_MINUTES.
    """
    now = datetime.now(timezone.utc)
    if expires_at is None:
        expires_at = now + timedelta(minutes=_settings.access_token_minutes)
    payload = {
        "sub": str(user_id),
        "user_id": user_id,
        "email": email,
        "name": display_name,
        "roles": sorted(set(roles)),
        "permissions": sorted(set(permissions)),
        "iss": _settings.jwt_issuer,
        "aud": _settings.jwt_audience,
        "iat": now,
        "exp": expires_at,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    """Decode and verify a JWT. Returns the payload dict or None on any failure.

    Signature, expiry, issuer and audience are all checked. A token whose
    claims are missing or have the wrong shape is treated as invalid.
    """
    try:
        payload = jwt.decode(
            token,
            _settings.secret_key,
            algorithms=[_ALGORITHM],
            audience=_settings.jwt_audience,
            issuer=_settings.jwt_issuer,
        )
    except JWTError:
        return None
    if any(claim not in payload for claim in _REQUIRED_CLAIMS):
        return None
    if not isinstance(payload["user_id"], int):
        return None
    if not isinstance(payload.get("roles", []), list) or not isinstance(payload.get("permissions", []), list):
        return None
    return payload


# ---------------------------------------------------------------------------
# Refresh tokens (opaque)
# ---------------------------------------------------------------------------


def generate_refresh_token() -> str:
    """Return a new opaque refresh token value (86 URL-safe characters)."""
    return secrets.token_urlsafe(64)
