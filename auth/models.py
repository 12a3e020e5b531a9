"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and the
Authenticator do the work; these classes own the domain shape.

Timestamps are timezone-aware UTC datetimes throughout. The store converts
to and from ISO 8601 strings at the persistence boundary.

Layer rule: no imports from api/ or audit/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

ROLE_USER = "user"
ROLE_ADMIN = "admin"
ROLES = (ROLE_USER, ROLE_ADMIN)

SUBSCRIPTION_INACTIVE = "inactive"
SUBSCRIPTION_TRIAL = "trial"
SUBSCRIPTION_ACTIVE = "active"
SUBSCRIPTION_PAST_DUE = "past_due"
SUBSCRIPTION_CANCELED = "canceled"
SUBSCRIPTION_STATUSES = (
    SUBSCRIPTION_INACTIVE,
    SUBSCRIPTION_TRIAL,
    SUBSCRIPTION_ACTIVE,
    SUBSCRIPTION_PAST_DUE,
    SUBSCRIPTION_CANCELED,
)
# Statuses that grant dashboard access at login.
ENTITLED_SUBSCRIPTIONS = frozenset({SUBSCRIPTION_ACTIVE, SUBSCRIPTION_TRIAL})


@dataclass
class Account:
    """A NextGate customer or staff account.

    email is matched exactly (case-sensitive) on lookup and on the uniqueness
    check at signup.

    password_hash is a bcrypt hash; it and mfa_secret never leave the service
    layer -- use public() to build anything that goes over the wire.

    mfa_secret is non-null iff mfa_enabled is true. Enrollment keeps the
    candidate secret in PendingEnrollment until a code is verified.
    """

    email: str
    password_hash: str
    id: int | None = None
    name: str | None = None
    company_name: str | None = None
    role: str = ROLE_USER

    password_created_at: datetime | None = None
    password_expires_at: datetime | None = None
    last_password_change: datetime | None = None

    failed_login_attempts: int = 0
    account_locked: bool = False
    last_failed_login: datetime | None = None

    subscription_status: str = SUBSCRIPTION_INACTIVE
    subscription_plan: str | None = None
    stripe_customer_id: str | None = None
    subscription_id: str | None = None
    subscription_current_period_end: datetime | None = None

    mfa_enabled: bool = False
    mfa_secret: str | None = None

    created_at: datetime | None = None
    updated_at: datetime | None = None
    last_login: datetime | None = None
    last_login_ip: str | None = None

    @property
    def has_entitled_subscription(self) -> bool:
        return self.subscription_status in ENTITLED_SUBSCRIPTIONS

    def public(self) -> dict:
        """Return a JSON-safe view of the account without credential material."""
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "company_name": self.company_name,
            "role": self.role,
            "subscription_status": self.subscription_status,
            "subscription_plan": self.subscription_plan,
            "mfa_enabled": self.mfa_enabled,
            "account_locked": self.account_locked,
            "failed_login_attempts": self.failed_login_attempts,
            "password_expires_at": _iso(self.password_expires_at),
            "created_at": _iso(self.created_at),
            "last_login": _iso(self.last_login),
        }


@dataclass
class PendingLogin:
    """A password-verified login waiting for its MFA code.

    handle is an opaque random token handed to the client. It is single-use
    and expires at expires_at regardless of how many wrong codes are tried.
    """

    handle: str
    account_id: int
    created_at: datetime
    expires_at: datetime


@dataclass
class PendingEnrollment:
    """A candidate TOTP secret awaiting its first verified code."""

    account_id: int
    secret: str
    created_at: datetime
    expires_at: datetime


@dataclass
class Session:
    """A server-side session reference issued at the end of a login."""

    session_id: str
    account_id: int
    created_at: datetime
    expires_at: datetime
    revoked: bool = False


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
