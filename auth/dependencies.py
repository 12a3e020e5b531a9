"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and RBAC.

Two proofs of identity are accepted, checked in priority order:
  1. "session_id" cookie -- server-side session issued at login.
  2. Authorization: Bearer <token> header -- the JWT issued at login.

Both converge on an Account loaded fresh from the AccountStore, so a lock
applied after the token was issued takes effect immediately.

try_get_current_account() is the soft variant (returns None on failure).
get_current_account() wraps it and raises HTTP 401 if unauthenticated.
require_roles(...) builds a dependency that raises HTTP 403 and writes an
UNAUTHORIZED_ACCESS audit entry + alert when the role does not match.

Layer rule: auth/dependencies.py may import from fastapi because it is part
of the dependency injection system. No imports from api/.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import HTTPException, Request

from auth.models import ROLE_ADMIN, Account
from auth.tokens import SESSION_COOKIE, decode_access_token


def try_get_current_account(request: Request) -> Account | None:
    """Authenticate the request via session cookie or Bearer JWT. Never raises."""
    accounts = request.app.state.account_store

    session_id = request.cookies.get(SESSION_COOKIE)
    if session_id:
        session = request.app.state.session_store.verify(session_id)
        if session is not None:
            account = accounts.find_by_id(session.account_id)
            if account is not None and not account.account_locked:
                return account

    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        payload = decode_access_token(auth_header[7:])
        if payload:
            account = accounts.find_by_id(payload["id"])
            if account is not None and not account.account_locked:
                return account

    return None


def get_current_account(request: Request) -> Account:
    """Require authentication. Raises HTTP 401 if the request is not authenticated."""
    account = try_get_current_account(request)
    if account is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Unauthorized: Please login first."},
        )
    return account


def require_roles(*roles: str) -> Callable[[Request], Account]:
    """Return a dependency that admits only the given roles.

    Use as a FastAPI dependency:
        @router.get("/admin/users")
        def route(admin: Account = Depends(require_roles("admin"))): ...
    """
    allowed = list(roles)

    def dependency(request: Request) -> Account:
        account = get_current_account(request)
        if allowed and account.role not in allowed:
            request.app.state.authenticator.record_unauthorized_access(
                account,
                resource=request.url.path,
                required_roles=allowed,
                ip=request.client.host if request.client else None,
                user_agent=request.headers.get("User-Agent"),
            )
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": "Forbidden: Insufficient permissions."},
            )
        return account

    return dependency


require_admin = require_roles(ROLE_ADMIN)
