"""
api/responses.py -- Map Authenticator results onto HTTP responses.

Every login-family route funnels its AuthResult through auth_response() so
status codes, the no-store header, and the session cookie are applied the
same way everywhere.
"""

from __future__ import annotations

from fastapi.responses import JSONResponse

from auth.service import AuthOutcome, AuthResult
from auth.tokens import set_session_cookie

_STATUS_CODES = {
    AuthOutcome.AUTHENTICATED: 200,
    AuthOutcome.ACCOUNT_CREATED: 201,
    AuthOutcome.MFA_REQUIRED: 200,
    AuthOutcome.MFA_ENABLED: 200,
    AuthOutcome.PASSWORD_CHANGED: 200,
    AuthOutcome.ACCOUNT_UPDATED: 200,
    AuthOutcome.INVALID_CREDENTIALS: 401,
    AuthOutcome.ACCOUNT_LOCKED: 403,
    AuthOutcome.PASSWORD_EXPIRED: 403,
    AuthOutcome.SUBSCRIPTION_REQUIRED: 403,
    AuthOutcome.INVALID_MFA_CODE: 401,
    AuthOutcome.MFA_SESSION_EXPIRED: 401,
    AuthOutcome.MFA_SETUP_NOT_STARTED: 400,
    AuthOutcome.WEAK_PASSWORD: 400,
    AuthOutcome.CANNOT_LOCK_SELF: 400,
}


def auth_response(result: AuthResult) -> JSONResponse:
    """Render an AuthResult, setting the session cookie when one was issued."""
    resp = JSONResponse(status_code=_STATUS_CODES[result.outcome], content=result.to_payload())
    if result.session is not None:
        ttl = int((result.session.expires_at - result.session.created_at).total_seconds())
        set_session_cookie(resp, result.session.session_id, expire_seconds=ttl)
    resp.headers["Cache-Control"] = "no-store"
    return resp
