"""
api/routes/v1/admin.py -- Admin panel REST endpoints (role "admin" only).

Routes:
  GET   /api/v1/admin/users                          -- list accounts
  POST  /api/v1/admin/users/{id}/lock                -- lock account, revoke its sessions
  POST  /api/v1/admin/users/{id}/unlock              -- clear lock + failed-attempt counter
  PATCH /api/v1/admin/users/{id}/subscription        -- set subscription status / plan
  GET   /api/v1/admin/audit-logs?user_id=&limit=     -- newest-first audit entries

Every route depends on require_admin. A non-admin caller gets 403, and the
denial itself is written to the audit log and raised as a security alert.
AccountNotFoundError from the service maps to 404 in the app-level handler.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from api.models import AccountResponse, AuditLogEntryResponse, SubscriptionUpdate
from api.responses import auth_response
from audit.store import DEFAULT_QUERY_LIMIT, MAX_QUERY_LIMIT, AuditLog
from auth.dependencies import require_admin
from auth.models import Account
from auth.service import Authenticator
from auth.store import AccountStore

router = APIRouter()


def _client(request: Request) -> tuple[str | None, str | None]:
    ip = request.client.host if request.client else None
    return ip, request.headers.get("User-Agent")


@router.get("/admin/users", response_model=list[AccountResponse])
def list_users(request: Request, admin: Account = Depends(require_admin)) -> list[AccountResponse]:
    accounts: AccountStore = request.app.state.account_store
    return [AccountResponse.from_account(a) for a in accounts.list_accounts()]


@router.post("/admin/users/{user_id}/lock")
def lock_user(request: Request, user_id: int, admin: Account = Depends(require_admin)) -> JSONResponse:
    """Lock an account. Admins cannot lock themselves."""
    authenticator: Authenticator = request.app.state.authenticator
    ip, user_agent = _client(request)
    return auth_response(authenticator.lock_account(admin, user_id, ip=ip, user_agent=user_agent))


@router.post("/admin/users/{user_id}/unlock")
def unlock_user(request: Request, user_id: int, admin: Account = Depends(require_admin)) -> JSONResponse:
    """Unlock an account. This is the only way a lockout clears."""
    authenticator: Authenticator = request.app.state.authenticator
    ip, user_agent = _client(request)
    return auth_response(authenticator.unlock_account(admin, user_id, ip=ip, user_agent=user_agent))


@router.patch("/admin/users/{user_id}/subscription")
def update_subscription(
    request: Request,
    user_id: int,
    body: SubscriptionUpdate,
    admin: Account = Depends(require_admin),
) -> JSONResponse:
    authenticator: Authenticator = request.app.state.authenticator
    ip, user_agent = _client(request)
    result = authenticator.update_subscription(
        admin, user_id, body.status.value, plan=body.plan, ip=ip, user_agent=user_agent
    )
    return auth_response(result)


@router.get("/admin/audit-logs", response_model=list[AuditLogEntryResponse])
def audit_logs(
    request: Request,
    user_id: Optional[int] = None,
    limit: int = Query(default=DEFAULT_QUERY_LIMIT, ge=1, le=MAX_QUERY_LIMIT),
    admin: Account = Depends(require_admin),
) -> list[AuditLogEntryResponse]:
    audit: AuditLog = request.app.state.audit_log
    return [AuditLogEntryResponse.from_entry(e) for e in audit.query(user_id=user_id, limit=limit)]
