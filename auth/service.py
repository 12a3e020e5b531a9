"""
auth/service.py -- The Authenticator: login state machine, MFA, and admin actions.

Login is a fresh, strictly ordered walk through hard gates. The first gate
that fails ends the attempt:

  lookup -> lock check -> password -> expiry -> subscription -> (MFA gate) -> issue

Expected results (wrong password, locked account, expired password, missing
subscription, MFA required, bad MFA code) come back as an AuthResult with an
AuthOutcome. They are not exceptions. Only DuplicateEmailError,
AccountNotFoundError and StoreUnavailableError are raised.

Enumeration resistance:
  Unknown email and wrong password return the same INVALID_CREDENTIALS
  payload, and both paths run exactly one bcrypt check (the unknown-email
  path burns one against a dummy hash).

Side effects are best-effort: AuditLog.record() swallows its own failures and
_alert() swallows alerter failures, so neither can change a login result.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from audit.alerts import AlertSystem
from audit.models import AlertType, AuditAction
from audit.store import AuditLog
from auth import mfa
from auth.errors import AccountNotFoundError
from auth.models import SUBSCRIPTION_STATUSES, Account, Session
from auth.sessions import SessionStore
from auth.store import AccountStore
from auth.tokens import burn_password_check, create_access_token, password_policy_errors
from core.config import Settings

logger = logging.getLogger("nextgate.auth")


class AuthOutcome(str, Enum):
    AUTHENTICATED = "authenticated"
    ACCOUNT_CREATED = "account_created"
    MFA_REQUIRED = "mfa_required"
    MFA_ENABLED = "mfa_enabled"
    PASSWORD_CHANGED = "password_changed"
    ACCOUNT_UPDATED = "account_updated"
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_LOCKED = "account_locked"
    PASSWORD_EXPIRED = "password_expired"
    SUBSCRIPTION_REQUIRED = "subscription_required"
    INVALID_MFA_CODE = "invalid_mfa_code"
    MFA_SESSION_EXPIRED = "mfa_session_expired"
    MFA_SETUP_NOT_STARTED = "mfa_setup_not_started"
    WEAK_PASSWORD = "weak_password"
    CANNOT_LOCK_SELF = "cannot_lock_self"


_SUCCESS_OUTCOMES = frozenset(
    {
        AuthOutcome.AUTHENTICATED,
        AuthOutcome.ACCOUNT_CREATED,
        AuthOutcome.MFA_REQUIRED,
        AuthOutcome.MFA_ENABLED,
        AuthOutcome.PASSWORD_CHANGED,
        AuthOutcome.ACCOUNT_UPDATED,
    }
)

_MESSAGES = {
    AuthOutcome.AUTHENTICATED: "Login successful",
    AuthOutcome.ACCOUNT_CREATED: "Account created successfully",
    AuthOutcome.MFA_REQUIRED: "MFA code required",
    AuthOutcome.MFA_ENABLED: "MFA enabled successfully",
    AuthOutcome.PASSWORD_CHANGED: "Password changed successfully",
    AuthOutcome.ACCOUNT_UPDATED: "Account updated",
    AuthOutcome.INVALID_CREDENTIALS: "Invalid email or password",
    AuthOutcome.ACCOUNT_LOCKED: "Account is locked due to multiple failed login attempts. Please contact support.",
    AuthOutcome.PASSWORD_EXPIRED: "Password has expired. Please reset your password.",
    AuthOutcome.SUBSCRIPTION_REQUIRED: "Your subscription is not active. Please renew to access the dashboard.",
    AuthOutcome.INVALID_MFA_CODE: "Invalid MFA code",
    AuthOutcome.MFA_SESSION_EXPIRED: "Login session expired. Please sign in again.",
    AuthOutcome.MFA_SETUP_NOT_STARTED: "MFA setup not initiated",
    AuthOutcome.WEAK_PASSWORD: "Password does not meet requirements",
    AuthOutcome.CANNOT_LOCK_SELF: "Cannot lock your own account",
}


@dataclass
class AuthResult:
    """Outcome of one Authenticator call plus whatever it produced."""

    outcome: AuthOutcome
    account: Account | None = None
    token: str | None = None
    session: Session | None = None
    mfa_handle: str | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.outcome in _SUCCESS_OUTCOMES

    @property
    def message(self) -> str:
        return _MESSAGES[self.outcome]

    def to_payload(self) -> dict:
        """Render the wire shape: {success, error | user + token, flags}.

        Failure payloads contain nothing account-specific, so the unknown-email
        and wrong-password payloads are identical.
        """
        if not self.success:
            payload: dict = {"success": False, "error": self.message, "code": self.outcome.value}
            if self.outcome is AuthOutcome.PASSWORD_EXPIRED:
                payload["password_expired"] = True
            elif self.outcome is AuthOutcome.SUBSCRIPTION_REQUIRED:
                payload["subscription_required"] = True
            elif self.outcome is AuthOutcome.ACCOUNT_LOCKED:
                payload["account_locked"] = True
            if self.errors:
                payload["details"] = list(self.errors)
            return payload

        payload = {"success": True, "message": self.message}
        if self.outcome is AuthOutcome.MFA_REQUIRED:
            payload["mfa_required"] = True
            payload["mfa_handle"] = self.mfa_handle
            return payload
        if self.account is not None:
            payload["user"] = self.account.public()
        if self.token is not None:
            payload["token"] = self.token
        return payload


@dataclass
class MfaSetup:
    """What the client needs to enroll an authenticator app."""

    secret: str
    otpauth_uri: str
    expires_at: datetime


class Authenticator:
    """Applies lockout, expiry, subscription, and MFA policy to logins.

    All collaborators are injected so tests can hand in in-memory stores and
    a recording alerter.
    """

    def __init__(
        self,
        accounts: AccountStore,
        sessions: SessionStore,
        audit: AuditLog,
        alerts: AlertSystem,
        settings: Settings,
    ) -> None:
        self.accounts = accounts
        self.sessions = sessions
        self.audit = audit
        self.alerts = alerts
        self.settings = settings

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, email: str, password: str, ip: str | None = None, user_agent: str | None = None) -> AuthResult:
        account = self.accounts.find_by_email(email)
        if account is None:
            burn_password_check(password)
            return AuthResult(AuthOutcome.INVALID_CREDENTIALS)

        if account.account_locked:
            return self._locked_attempt(account, "login", ip, user_agent)

        if not self.accounts.verify_password(password, account.password_hash):
            return self._password_failure(account, ip, user_agent)

        if self.accounts.is_password_expired(account):
            return AuthResult(AuthOutcome.PASSWORD_EXPIRED)

        if not account.has_entitled_subscription:
            return AuthResult(AuthOutcome.SUBSCRIPTION_REQUIRED)

        self.accounts.reset_failed_logins(account.id)
        account = self.accounts.update_account(account.id, last_login=self.accounts.clock(), last_login_ip=ip)
        self.audit.record(AuditAction.LOGIN_SUCCESS, user_id=account.id, ip_address=ip, user_agent=user_agent)

        if account.mfa_enabled:
            pending = self.accounts.create_pending_login(account.id, self.settings.mfa_pending_ttl_seconds)
            return AuthResult(AuthOutcome.MFA_REQUIRED, mfa_handle=pending.handle)

        return self._issue(account, self.settings.token_expire_seconds, AuthOutcome.AUTHENTICATED)

    def _locked_attempt(
        self, account: Account, resource: str, ip: str | None, user_agent: str | None
    ) -> AuthResult:
        """Alert and audit once for an attempt against a locked account."""
        self._alert(
            AlertType.LOCKED_ACCOUNT_LOGIN_ATTEMPT,
            {"user_id": account.id, "email": account.email, "ip": ip},
        )
        self.audit.record(
            AuditAction.UNAUTHORIZED_ACCESS,
            user_id=account.id,
            details={"reason": "account_locked", "resource": resource},
            ip_address=ip,
            user_agent=user_agent,
        )
        return AuthResult(AuthOutcome.ACCOUNT_LOCKED)

    def _password_failure(self, account: Account, ip: str | None, user_agent: str | None) -> AuthResult:
        updated = self.accounts.record_failed_login(account.id)
        self.audit.record(
            AuditAction.LOGIN_FAILED,
            user_id=account.id,
            details={"reason": "Invalid password", "failed_attempts": updated.failed_login_attempts},
            ip_address=ip,
            user_agent=user_agent,
        )
        if updated.account_locked:
            # This attempt crossed the threshold. It still reports bad
            # credentials; the lock is enforced from the next attempt.
            logger.warning("Account %s locked after %d failed logins", account.id, updated.failed_login_attempts)
            self.audit.record(
                AuditAction.ACCOUNT_LOCKED,
                user_id=account.id,
                details={"failed_attempts": updated.failed_login_attempts},
                ip_address=ip,
                user_agent=user_agent,
            )
            self._alert(AlertType.ACCOUNT_LOCKED, {"user_id": account.id, "email": account.email, "ip": ip})
        return AuthResult(AuthOutcome.INVALID_CREDENTIALS)

    def validate_mfa(
        self, handle: str, code: str, ip: str | None = None, user_agent: str | None = None
    ) -> AuthResult:
        """Second login step. A wrong code leaves the handle usable until it expires.

        MFA failures are audited but do not touch failed_login_attempts.
        """
        pending = self.accounts.get_pending_login(handle)
        if pending is None:
            return AuthResult(AuthOutcome.MFA_SESSION_EXPIRED)

        account = self.accounts.find_by_id(pending.account_id)
        if account is None or not account.mfa_enabled or not account.mfa_secret:
            self.accounts.consume_pending_login(handle)
            return AuthResult(AuthOutcome.MFA_SESSION_EXPIRED)
        if account.account_locked:
            self.accounts.consume_pending_login(handle)
            return self._locked_attempt(account, "mfa_validate", ip, user_agent)

        if not mfa.verify_code(account.mfa_secret, code, self.settings.mfa_valid_window):
            self.audit.record(AuditAction.LOGIN_MFA_FAILED, user_id=account.id, ip_address=ip, user_agent=user_agent)
            return AuthResult(AuthOutcome.INVALID_MFA_CODE)

        if not self.accounts.consume_pending_login(handle):
            # Another request used or expired the handle after our read.
            return AuthResult(AuthOutcome.MFA_SESSION_EXPIRED)

        self.accounts.reset_failed_logins(account.id)
        self.audit.record(AuditAction.LOGIN_MFA_SUCCESS, user_id=account.id, ip_address=ip, user_agent=user_agent)
        return self._issue(account, self.settings.token_expire_seconds, AuthOutcome.AUTHENTICATED)

    def _issue(self, account: Account, ttl_seconds: int, outcome: AuthOutcome) -> AuthResult:
        session = self.sessions.create(account.id, ttl_seconds)
        token = create_access_token(account.id, account.email, account.role, expire_seconds=ttl_seconds)
        return AuthResult(outcome, account=account, token=token, session=session)

    # ------------------------------------------------------------------
    # Signup, logout, password
    # ------------------------------------------------------------------

    def signup(
        self,
        email: str,
        password: str,
        name: str | None = None,
        company_name: str | None = None,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> AuthResult:
        """Create an inactive account and issue a registration session.

        Raises DuplicateEmailError if the email is taken.
        """
        errors = password_policy_errors(password)
        if errors:
            return AuthResult(AuthOutcome.WEAK_PASSWORD, errors=errors)

        account = self.accounts.create_account(email, password, name=name, company_name=company_name)
        self.audit.record(
            AuditAction.USER_SIGNUP,
            user_id=account.id,
            details={"email": email},
            ip_address=ip,
            user_agent=user_agent,
        )
        return self._issue(account, self.settings.registration_token_expire_seconds, AuthOutcome.ACCOUNT_CREATED)

    def logout(
        self,
        account: Account | None,
        session_id: str | None = None,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        if session_id:
            self.sessions.invalidate(session_id)
        if account is not None:
            self.audit.record(AuditAction.LOGOUT, user_id=account.id, ip_address=ip, user_agent=user_agent)

    def change_password(
        self,
        email: str,
        current_password: str,
        new_password: str,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> AuthResult:
        """Replace a password given the current one. Works for expired passwords.

        Wrong current passwords are reported as INVALID_CREDENTIALS but are
        not counted toward lockout.
        """
        account = self.accounts.find_by_email(email)
        if account is None:
            burn_password_check(current_password)
            return AuthResult(AuthOutcome.INVALID_CREDENTIALS)
        if account.account_locked:
            return AuthResult(AuthOutcome.ACCOUNT_LOCKED)
        if not self.accounts.verify_password(current_password, account.password_hash):
            return AuthResult(AuthOutcome.INVALID_CREDENTIALS)

        errors = password_policy_errors(new_password)
        if new_password == current_password:
            errors.append("New password must differ from the current password")
        if errors:
            return AuthResult(AuthOutcome.WEAK_PASSWORD, errors=errors)

        account = self.accounts.change_password(account.id, new_password)
        self.audit.record(AuditAction.PASSWORD_CHANGED, user_id=account.id, ip_address=ip, user_agent=user_agent)
        return AuthResult(AuthOutcome.PASSWORD_CHANGED, account=account)

    # ------------------------------------------------------------------
    # MFA enrollment
    # ------------------------------------------------------------------

    def setup_mfa(self, account_id: int) -> MfaSetup:
        """Generate a candidate secret and park it as a pending enrollment.

        The account's own mfa_secret is untouched until verify_enrollment()
        sees a valid code. Calling this again replaces the pending secret.
        """
        account = self.accounts.find_by_id(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        secret = mfa.generate_secret()
        pending = self.accounts.put_pending_enrollment(account_id, secret, self.settings.mfa_enrollment_ttl_seconds)
        return MfaSetup(
            secret=secret,
            otpauth_uri=mfa.provisioning_uri(secret, account.email, self.settings.mfa_issuer),
            expires_at=pending.expires_at,
        )

    def verify_enrollment(
        self, account_id: int, code: str, ip: str | None = None, user_agent: str | None = None
    ) -> AuthResult:
        """Confirm a pending enrollment. A wrong code keeps the pending secret for retry."""
        pending = self.accounts.get_pending_enrollment(account_id)
        if pending is None:
            return AuthResult(AuthOutcome.MFA_SETUP_NOT_STARTED)

        if not mfa.verify_code(pending.secret, code, self.settings.mfa_valid_window):
            self.audit.record(
                AuditAction.MFA_ENROLLMENT_FAILED, user_id=account_id, ip_address=ip, user_agent=user_agent
            )
            return AuthResult(AuthOutcome.INVALID_MFA_CODE)

        account = self.accounts.update_account(account_id, mfa_enabled=True, mfa_secret=pending.secret)
        self.accounts.delete_pending_enrollment(account_id)
        self.audit.record(AuditAction.MFA_ENABLED, user_id=account_id, ip_address=ip, user_agent=user_agent)
        return AuthResult(AuthOutcome.MFA_ENABLED, account=account)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def lock_account(
        self, actor: Account, target_id: int, ip: str | None = None, user_agent: str | None = None
    ) -> AuthResult:
        target = self.accounts.find_by_id(target_id)
        if target is None:
            raise AccountNotFoundError(target_id)
        if target.id == actor.id:
            return AuthResult(AuthOutcome.CANNOT_LOCK_SELF)

        target = self.accounts.lock(target_id)
        self.sessions.invalidate_account(target_id)
        self.audit.record(
            AuditAction.ADMIN_LOCK_USER,
            user_id=actor.id,
            details={"target_user_id": target_id, "target_email": target.email},
            ip_address=ip,
            user_agent=user_agent,
        )
        return AuthResult(AuthOutcome.ACCOUNT_UPDATED, account=target)

    def unlock_account(
        self, actor: Account, target_id: int, ip: str | None = None, user_agent: str | None = None
    ) -> AuthResult:
        """Clear the lock and the failed-attempt counter. Raises AccountNotFoundError."""
        target = self.accounts.unlock(target_id)
        self.audit.record(
            AuditAction.ADMIN_UNLOCK_USER,
            user_id=actor.id,
            details={"target_user_id": target_id, "target_email": target.email},
            ip_address=ip,
            user_agent=user_agent,
        )
        return AuthResult(AuthOutcome.ACCOUNT_UPDATED, account=target)

    def update_subscription(
        self,
        actor: Account,
        target_id: int,
        status: str,
        plan: str | None = None,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> AuthResult:
        if status not in SUBSCRIPTION_STATUSES:
            raise ValueError(f"Invalid subscription status: {status!r}")
        target = self.accounts.update_subscription(target_id, status=status, plan=plan)
        self.audit.record(
            AuditAction.SUBSCRIPTION_UPDATED,
            user_id=actor.id,
            details={"target_user_id": target_id, "status": status, "plan": plan},
            ip_address=ip,
            user_agent=user_agent,
        )
        return AuthResult(AuthOutcome.ACCOUNT_UPDATED, account=target)

    def record_unauthorized_access(
        self,
        account: Account,
        resource: str,
        required_roles: list[str],
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        """Audit and alert on an RBAC denial."""
        self.audit.record(
            AuditAction.UNAUTHORIZED_ACCESS,
            user_id=account.id,
            details={"resource": resource, "required_roles": required_roles, "user_role": account.role},
            ip_address=ip,
            user_agent=user_agent,
        )
        self._alert(
            AlertType.UNAUTHORIZED_ACCESS_ATTEMPT,
            {"user_id": account.id, "email": account.email, "role": account.role, "target": resource, "ip": ip},
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _alert(self, alert_type: str, details: dict) -> None:
        try:
            self.alerts.send_alert(alert_type, details)
        except Exception:
            logger.exception("Alert %s could not be sent", alert_type)
