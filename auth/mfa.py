"""
auth/mfa.py -- TOTP helpers (pyotp).

Codes follow RFC 6238 defaults: SHA-1, 6 digits, 30-second step. The
accepted window is Settings.mfa_valid_window steps either side of now
(default 1, i.e. the previous, current, and next code).
"""

from __future__ import annotations

from datetime import datetime

import pyotp


def generate_secret() -> str:
    """Return a new base32 shared secret (160 bits)."""
    return pyotp.random_base32(length=32)


def provisioning_uri(secret: str, email: str, issuer: str) -> str:
    """Build the otpauth:// URI an authenticator app scans during enrollment."""
    return pyotp.TOTP(secret).provisioning_uri(name=email, issuer_name=issuer)


def verify_code(secret: str, code: str, valid_window: int = 1, for_time: datetime | None = None) -> bool:
    """Return True if code is a valid TOTP for secret within the window."""
    code = (code or "").strip()
    if not code.isdigit():
        return False
    totp = pyotp.TOTP(secret)
    if for_time is None:
        return totp.verify(code, valid_window=valid_window)
    return totp.verify(code, for_time=for_time, valid_window=valid_window)
