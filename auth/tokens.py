"""
auth/tokens.py -- Password hashing, password policy, JWT, and cookie utilities.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       the identity payload {id, email, role} plus expiry. Verification
       returns None on any failure -- route layer turns that into a 401.

  Passwords: bcrypt directly (no passlib wrapper). The cost factor comes from
       Settings.bcrypt_rounds. bcrypt.checkpw compares digests in constant
       time, so the comparison itself does not leak timing. _DUMMY_HASH lets
       the Authenticator run a full bcrypt check for unknown emails so
       response time does not reveal whether an account exists.

  Token lifetime: callers pass the policy for their entry point --
       Settings.token_expire_seconds for interactive login,
       Settings.registration_token_expire_seconds for signup.

Layer rule: no imports from api/ or audit/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from core.config import get_settings

logger = logging.getLogger("nextgate.auth")

_settings = get_settings()

_ALGORITHM = "HS256"

SESSION_COOKIE = "session_id"

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str, rounds: int | None = None) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt truncates input at 72 bytes. The API layer caps passwords at 128
    characters; the complexity policy below does not depend on bytes past 72.
    """
    salt = bcrypt.gensalt(rounds=rounds or _settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed stored hash is treated as a mismatch, never as an error.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is not a valid bcrypt hash")
        return False


# Computed once at module load so the first unknown-email login is not
# measurably slower than later ones.
_DUMMY_HASH: str = hash_password("nextgate_timing_dummy")


def burn_password_check(plain: str) -> None:
    """Run a bcrypt check against a dummy hash to equalize timing."""
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# Password policy
# ---------------------------------------------------------------------------

MIN_PASSWORD_LENGTH = 12
_SPECIAL_RE = re.compile(r"[!@#$%^&*(),.?\":{}|<>]")


def password_policy_errors(password: str) -> list[str]:
    """Return the list of complexity rules the password breaks (empty if valid)."""
    errors: list[str] = []
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"[0-9]", password):
        errors.append("Password must contain at least one number")
    if not _SPECIAL_RE.search(password):
        errors.append("Password must contain at least one special character")
    return errors


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(account_id: int, email: str, role: str, expire_seconds: int = 0) -> str:
    """Encode a signed JWT carrying the identity payload {id, email, role}.

    Args:
        account_id:     Numeric account ID.
        email:          Account email, also stored as the subject claim.
        role:           "user" or "admin".
        expire_seconds: Lifetime in seconds. If 0 (default), uses
                        Settings.token_expire_seconds (interactive login).
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    expire = datetime.now(timezone.utc) + timedelta(seconds=duration)
    payload = {
        "sub": email,
        "id": account_id,
        "email": email,
        "role": role,
        "exp": expire,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    """Decode and verify a JWT. Returns the payload dict or None on any failure."""
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if "id" not in payload or "role" not in payload:
        return None
    return payload


# ---------------------------------------------------------------------------
# Cookie helper
# ---------------------------------------------------------------------------


def set_session_cookie(response, session_id: str, expire_seconds: int = 0) -> None:
    """Write the server-side session reference as an httpOnly cookie.

    max_age matches the session lifetime so cookie and server record expire
    together.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    response.set_cookie(
        SESSION_COOKIE,
        value=session_id,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=duration,
    )
