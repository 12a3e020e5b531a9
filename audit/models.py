"""
audit/models.py -- Audit log entry and the action vocabulary.

Entries are immutable once written: the dataclass is frozen and the store
exposes no update or delete operation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


class AuditAction:
    """Enumerated audit action names (stored as plain strings)."""

    USER_SIGNUP = "USER_SIGNUP"
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILED = "LOGIN_FAILED"
    LOGIN_MFA_SUCCESS = "LOGIN_MFA_SUCCESS"
    LOGIN_MFA_FAILED = "LOGIN_MFA_FAILED"
    LOGOUT = "LOGOUT"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    UNAUTHORIZED_ACCESS = "UNAUTHORIZED_ACCESS"
    MFA_ENABLED = "MFA_ENABLED"
    MFA_ENROLLMENT_FAILED = "MFA_ENROLLMENT_FAILED"
    PASSWORD_CHANGED = "PASSWORD_CHANGED"
    ADMIN_LOCK_USER = "ADMIN_LOCK_USER"
    ADMIN_UNLOCK_USER = "ADMIN_UNLOCK_USER"
    SUBSCRIPTION_UPDATED = "SUBSCRIPTION_UPDATED"


class AlertType:
    LOCKED_ACCOUNT_LOGIN_ATTEMPT = "LOCKED_ACCOUNT_LOGIN_ATTEMPT"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    UNAUTHORIZED_ACCESS_ATTEMPT = "UNAUTHORIZED_ACCESS_ATTEMPT"


@dataclass(frozen=True)
class AuditLogEntry:
    """One security-relevant event.

    user_id is None for system-wide events. details is an arbitrary JSON
    object; the store serializes it as text.
    """

    action: str
    id: int | None = None
    user_id: int | None = None
    details: dict = field(default_factory=dict)
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "action": self.action,
            "details": self.details,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
