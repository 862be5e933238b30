"""
api/routes/v1/auth.py -- Authentication and session REST endpoints.

Routes:
  POST /api/v1/auth/login            -- email + password; returns access/refresh pair
  POST /api/v1/auth/register         -- self-registration; same envelope as login
  POST /api/v1/auth/refresh          -- rotate a refresh token into a new pair
  POST /api/v1/auth/logout           -- revoke one of the caller's refresh tokens
  GET  /api/v1/auth/me               -- live profile, roles and permissions
  POST /api/v1/auth/change-password  -- verify current secret, revoke all sessions
  POST /api/v1/auth/setup            -- first-run superadmin creation

Security:
  POST /login is rate-limited per IP (Settings.login_rate_limit) on top of
  the per-account lockout in auth/lockout.py.
  Login, register, setup and refresh responses carry Cache-Control: no-store.
  Failures are raised as auth.errors exceptions and rendered by the handler in
  api/main.py; nothing here builds error bodies by hand.
  IDOR guard: /logout passes the caller's user_id to TokenManager.revoke(),
  which refuses tokens owned by anyone else.
"""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    AuthResponse,
    ChangePasswordRequest,
    LoginRequest,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    SetupRequest,
    UserInfo,
)
from auth.accounts import AccountService
from auth.dependencies import Authorize, require_authenticated
from auth.errors import Forbidden, NotFound, Unauthenticated
from auth.lockout import CredentialVerifier
from auth.models import Principal, TokenPair
from auth.sessions import TokenManager
from core.config import get_settings

_settings = get_settings()

# Auth policy:
# - POST /auth/login, /auth/register, /auth/refresh, /auth/setup: public
# - POST /auth/logout, /auth/change-password: any authenticated identity
# - GET  /auth/me: authenticated, grants re-resolved live
router = APIRouter()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_settings.login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=AuthResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Verify email + password and issue a token pair.

    Unknown email and wrong password both produce invalid_credentials; a
    locked account produces account_locked with a Retry-After header.
    """
    verifier: CredentialVerifier = request.app.state.verifier
    tokens: TokenManager = request.app.state.tokens
    ip = _client_ip(request)
    user = verifier.verify(body.email, body.password, ip=ip)
    return _auth_response(tokens.issue(user, ip=ip), "Login successful.")


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an account with the default role and log it in."""
    if not _settings.self_registration_enabled:
        raise Forbidden()
    accounts: AccountService = request.app.state.accounts
    tokens: TokenManager = request.app.state.tokens
    ip = _client_ip(request)
    user = accounts.register(body.email, body.password, body.first_name, body.last_name, phone=body.phone, ip=ip)
    return _auth_response(tokens.issue(user, ip=ip), "Registration successful.", status_code=201)


@router.post("/auth/refresh", response_model=AuthResponse)
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Rotate a refresh token. The presented token is dead afterwards."""
    tokens: TokenManager = request.app.state.tokens
    pair = tokens.rotate(body.refresh_token, ip=_client_ip(request))
    return _auth_response(pair, "Token refreshed.")


@router.post("/auth/setup", response_model=AuthResponse, status_code=201)
def setup(request: Request, body: SetupRequest) -> JSONResponse:
    """Create the initial superadmin. 409 once any user exists."""
    accounts: AccountService = request.app.state.accounts
    tokens: TokenManager = request.app.state.tokens
    user = accounts.create_initial_admin(body.email, body.password, body.first_name, body.last_name)
    return _auth_response(tokens.issue(user, ip=_client_ip(request)), "Setup complete.", status_code=201)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse)
def logout(
    request: Request,
    body: RefreshRequest,
    principal: Principal = Depends(require_authenticated),
) -> MessageResponse:
    """Revoke one of the caller's refresh tokens. 404 if not theirs or already dead."""
    tokens: TokenManager = request.app.state.tokens
    if not tokens.revoke(body.refresh_token, ip=_client_ip(request), owner_id=principal.user_id):
        raise NotFound("Refresh token not found.")
    return MessageResponse(message="Logged out.")


@router.get("/auth/me", response_model=UserInfo)
def me(request: Request, principal: Principal = Depends(Authorize(fresh=True))) -> UserInfo:
    """Return the caller's profile with grants resolved from the role graph now."""
    user = request.app.state.auth_store.get_by_id(principal.user_id)
    if user is None:
        raise Unauthenticated()
    return UserInfo(
        id=user.id,
        email=user.email,
        display_name=user.display_name,
        roles=sorted(principal.roles),
        permissions=sorted(principal.permissions),
    )


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    principal: Principal = Depends(require_authenticated),
) -> MessageResponse:
    """Change the caller's password. Every refresh token of the caller is revoked."""
    accounts: AccountService = request.app.state.accounts
    accounts.change_password(
        principal.user_id, body.current_password, body.new_password, ip=_client_ip(request)
    )
    return MessageResponse(message="Password changed. Please log in again.")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _auth_response(pair: TokenPair, message: str, status_code: int = 200) -> JSONResponse:
    expires_in = max(0, int((pair.access_expires_at - datetime.now(timezone.utc)).total_seconds()))
    body = AuthResponse(
        message=message,
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        expires_at=pair.access_expires_at,
        expires_in=expires_in,
        user=UserInfo(
            id=pair.user.id,
            email=pair.user.email,
            display_name=pair.user.display_name,
            roles=pair.roles,
            permissions=pair.permissions,
        ),
    )
    resp = JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))
    resp.headers["Cache-Control"] = "no-store"
    return resp
