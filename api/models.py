"""
API request and response models for NextGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
audit/models.py, which own the internal domain representation. Route handlers
map between the two.

Login-family endpoints (login, MFA validate, signup) return the
{success, error | user + token, flags} payload built by AuthResult.to_payload()
rather than a fixed response model, because the shape depends on the outcome.
"""

from enum import Enum
from typing import Annotated, Optional

from email_validator import EmailNotValidError, validate_email
from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator

from audit.models import AuditLogEntry
from auth.models import Account

# bcrypt only reads the first 72 bytes; 128 chars keeps input bounded.
_MAX_PASSWORD = 128

_ProfileText = Annotated[str, StringConstraints(strip_whitespace=True, max_length=255)]


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class SubscriptionStatusEnum(str, Enum):
    inactive = "inactive"
    trial = "trial"
    active = "active"
    past_due = "past_due"
    canceled = "canceled"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    """Request body for POST /api/v1/auth/signup."""

    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=_MAX_PASSWORD)
    name: Optional[_ProfileText] = None
    company_name: Optional[_ProfileText] = None

    @field_validator("email")
    @classmethod
    def check_email(cls, value: str) -> str:
        """Reject malformed addresses but keep the string exactly as typed.

        Login matches emails byte for byte, so the normalized form that
        email_validator computes is not stored.
        """
        try:
            validate_email(value, check_deliverability=False)
        except EmailNotValidError as exc:
            raise ValueError(str(exc)) from exc
        return value


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    email is a plain string: a malformed address is just another unknown
    account and must get the same answer as one.
    """

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=_MAX_PASSWORD)


class MfaValidateRequest(BaseModel):
    """Request body for POST /api/v1/auth/mfa/validate (second login step)."""

    model_config = ConfigDict(str_strip_whitespace=True)

    handle: str = Field(min_length=1, max_length=128)
    code: str = Field(min_length=6, max_length=8)


class MfaVerifyRequest(BaseModel):
    """Request body for POST /api/v1/auth/mfa/verify (enrollment confirmation)."""

    model_config = ConfigDict(str_strip_whitespace=True)

    code: str = Field(min_length=6, max_length=8)


class PasswordChangeRequest(BaseModel):
    """Request body for POST /api/v1/auth/password.

    Takes credentials instead of a session so a user whose password expired
    (and who therefore cannot log in) can still rotate it.
    """

    email: str = Field(min_length=1, max_length=255)
    current_password: str = Field(min_length=1, max_length=_MAX_PASSWORD)
    new_password: str = Field(min_length=1, max_length=_MAX_PASSWORD)


class SubscriptionUpdate(BaseModel):
    """Request body for PATCH /api/v1/admin/users/{id}/subscription."""

    status: SubscriptionStatusEnum
    plan: Optional[str] = Field(default=None, max_length=50)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    """Public view of an account. Never includes password hash or MFA secret."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    name: Optional[str]
    company_name: Optional[str]
    role: str
    subscription_status: str
    subscription_plan: Optional[str]
    mfa_enabled: bool
    account_locked: bool
    failed_login_attempts: int
    password_expires_at: Optional[str]
    created_at: Optional[str]
    last_login: Optional[str]

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        return cls(**account.public())


class StatusResponse(BaseModel):
    """Response for GET /api/v1/auth/status."""

    model_config = ConfigDict(frozen=True)

    authenticated: bool
    user: Optional[AccountResponse] = None


class MfaSetupResponse(BaseModel):
    """Response for POST /api/v1/auth/mfa/setup.

    secret is shown so users can type it in manually; otpauth_uri is what a
    QR code encodes.
    """

    model_config = ConfigDict(frozen=True)

    success: bool = True
    secret: str
    otpauth_uri: str
    expires_at: str


class AuditLogEntryResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    user_id: Optional[int]
    action: str
    details: dict
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: str

    @classmethod
    def from_entry(cls, entry: AuditLogEntry) -> "AuditLogEntryResponse":
        return cls(**entry.to_dict())


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
