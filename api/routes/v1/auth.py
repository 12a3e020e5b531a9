"""
api/routes/v1/auth.py -- Login, signup, MFA, and session REST endpoints.

Routes:
  POST /api/v1/auth/signup         -- create account; registration session + token (201)
  POST /api/v1/auth/login          -- password login; token, or mfa_required + handle
  POST /api/v1/auth/mfa/validate   -- second login step with handle + TOTP code
  POST /api/v1/auth/logout         -- invalidate session; clear cookie
  GET  /api/v1/auth/status         -- {authenticated, user}; never 401
  GET  /api/v1/auth/me             -- current account (requires auth)
  POST /api/v1/auth/mfa/setup      -- new pending TOTP secret (requires auth)
  POST /api/v1/auth/mfa/verify     -- confirm enrollment with a code (requires auth)
  POST /api/v1/auth/password       -- change password with current credentials

Security:
  Login and MFA endpoints are rate-limited per IP (Settings.login_rate_limit,
  Settings.mfa_rate_limit).
  Unknown email and wrong password produce identical 401 bodies.
  Cache-Control: no-store on every response that can carry a token.
  Handlers that hash passwords are plain `def` so FastAPI runs them in its
  threadpool instead of blocking the event loop on bcrypt.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    AccountResponse,
    LoginRequest,
    MessageResponse,
    MfaSetupResponse,
    MfaValidateRequest,
    MfaVerifyRequest,
    PasswordChangeRequest,
    SignupRequest,
    StatusResponse,
)
from api.responses import auth_response
from auth.dependencies import get_current_account, try_get_current_account
from auth.models import Account
from auth.service import Authenticator
from auth.tokens import SESSION_COOKIE
from core.config import get_settings

_settings = get_settings()

# Auth policy:
# - POST /auth/signup, /auth/login, /auth/mfa/validate, /auth/password: public
# - POST /auth/logout, GET /auth/status: public (act on whatever session exists)
# - GET /auth/me, POST /auth/mfa/setup, POST /auth/mfa/verify: requires auth
router = APIRouter()


def _client(request: Request) -> tuple[str | None, str | None]:
    ip = request.client.host if request.client else None
    return ip, request.headers.get("User-Agent")


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/signup", status_code=201)
def signup(request: Request, body: SignupRequest) -> JSONResponse:
    """Create an account (subscription inactive) and start a registration session.

    DuplicateEmailError propagates to the app-level handler (409).
    """
    authenticator: Authenticator = request.app.state.authenticator
    ip, user_agent = _client(request)
    result = authenticator.signup(
        body.email,
        body.password,
        name=body.name,
        company_name=body.company_name,
        ip=ip,
        user_agent=user_agent,
    )
    return auth_response(result)


@limiter.limit(_settings.login_rate_limit)
@router.post("/auth/login")
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    MFA-enabled accounts get {mfa_required: true, mfa_handle} and no token;
    finish with POST /auth/mfa/validate.
    """
    authenticator: Authenticator = request.app.state.authenticator
    ip, user_agent = _client(request)
    return auth_response(authenticator.login(body.email, body.password, ip=ip, user_agent=user_agent))


@limiter.limit(_settings.mfa_rate_limit)
@router.post("/auth/mfa/validate")
def mfa_validate(request: Request, body: MfaValidateRequest) -> JSONResponse:
    """Exchange a pending-login handle and TOTP code for a session and token."""
    authenticator: Authenticator = request.app.state.authenticator
    ip, user_agent = _client(request)
    return auth_response(authenticator.validate_mfa(body.handle, body.code, ip=ip, user_agent=user_agent))


@limiter.limit(_settings.login_rate_limit)
@router.post("/auth/password")
def change_password(request: Request, body: PasswordChangeRequest) -> JSONResponse:
    """Rotate a password. Also the way out of a PASSWORD_EXPIRED login."""
    authenticator: Authenticator = request.app.state.authenticator
    ip, user_agent = _client(request)
    result = authenticator.change_password(
        body.email, body.current_password, body.new_password, ip=ip, user_agent=user_agent
    )
    return auth_response(result)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request) -> JSONResponse:
    """Invalidate the server-side session (if any) and clear the cookie."""
    authenticator: Authenticator = request.app.state.authenticator
    account = try_get_current_account(request)
    ip, user_agent = _client(request)
    authenticator.logout(account, session_id=request.cookies.get(SESSION_COOKIE), ip=ip, user_agent=user_agent)
    resp = JSONResponse(content=MessageResponse(message="Logged out successfully").model_dump())
    resp.delete_cookie(SESSION_COOKIE)
    return resp


@router.get("/auth/status", response_model=StatusResponse)
def status(request: Request) -> StatusResponse:
    account = try_get_current_account(request)
    if account is None:
        return StatusResponse(authenticated=False)
    return StatusResponse(authenticated=True, user=AccountResponse.from_account(account))


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=AccountResponse)
def me(current: Account = Depends(get_current_account)) -> AccountResponse:
    """Return the currently authenticated account."""
    return AccountResponse.from_account(current)


@router.post("/auth/mfa/setup", response_model=MfaSetupResponse)
def mfa_setup(request: Request, current: Account = Depends(get_current_account)) -> MfaSetupResponse:
    """Start MFA enrollment. The secret stays pending until /auth/mfa/verify succeeds."""
    authenticator: Authenticator = request.app.state.authenticator
    setup = authenticator.setup_mfa(current.id)
    return MfaSetupResponse(
        secret=setup.secret,
        otpauth_uri=setup.otpauth_uri,
        expires_at=setup.expires_at.isoformat(),
    )


@limiter.limit(_settings.mfa_rate_limit)
@router.post("/auth/mfa/verify")
def mfa_verify(
    request: Request,
    body: MfaVerifyRequest,
    current: Account = Depends(get_current_account),
) -> JSONResponse:
    """Confirm enrollment. A wrong code keeps the pending secret so the user can retry."""
    authenticator: Authenticator = request.app.state.authenticator
    ip, user_agent = _client(request)
    return auth_response(authenticator.verify_enrollment(current.id, body.code, ip=ip, user_agent=user_agent))
