"""
api/routes/v1/auth.py -- Authentication and self-service REST endpoints.

Routes:
  POST  /api/v1/auth/register         -- create account; returns user + token pair
  POST  /api/v1/auth/login            -- password login; returns user + token pair
  POST  /api/v1/auth/refresh          -- rotate a refresh token into a new pair
  POST  /api/v1/auth/logout           -- revoke every session of the caller
  GET   /api/v1/auth/me               -- current user record
  PATCH /api/v1/auth/profile          -- update whitelisted profile fields
  POST  /api/v1/auth/change-password  -- new password; revokes every session
  POST  /api/v1/auth/forgot-password  -- 501, reset flow not available yet
  POST  /api/v1/auth/reset-password   -- 501, reset flow not available yet

Security:
  [H2] POST /login and /register are rate-limited per IP.
  [C1] CredentialStore.login() provides timing equalization -- never inline
       a lookup + verify here.
  [M5] Cache-Control: no-store on every response that carries tokens.

Handlers only translate between DTOs and the auth core. Failures are raised
as core.errors exceptions and rendered by the handler in api/main.py.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_limit, register_limit
from api.models import (
    AuthResult,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    ProfileUpdate,
    RefreshRequest,
    RefreshResult,
    RegisterRequest,
    ResetPasswordRequest,
    TokensResponse,
    UserResponse,
)
from api.responses import success_response
from auth.credentials import CredentialStore
from auth.dependencies import get_current_user
from auth.models import User
from auth.tokens import TokenIssuer

# Auth policy:
# - POST  /auth/register, /auth/login:  public, rate-limited
# - POST  /auth/refresh:                public -- the refresh token in the body is the credential
# - POST  /auth/forgot-password, /auth/reset-password: public
# - everything else:                    requires a bearer access token (get_current_user)
router = APIRouter()


def _credentials(request: Request) -> CredentialStore:
    return request.app.state.credentials


def _issuer(request: Request) -> TokenIssuer:
    return request.app.state.token_issuer


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", status_code=201)
@limiter.limit(register_limit)
async def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a developer account and log it in."""
    user = await _credentials(request).register(
        body.username,
        str(body.email),
        body.password,
        body.profile_fields(),
    )
    pair = await _issuer(request).issue(user.id)
    result = AuthResult(user=UserResponse.from_user(user), tokens=TokensResponse.from_pair(pair))
    return success_response(result, "User registered successfully", status_code=201, no_store=True)


@router.post("/auth/login")
@limiter.limit(login_limit)  # [H2] brute-force mitigation
async def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Unknown email and wrong password share one generic 401 so the endpoint
    cannot be used to enumerate accounts. Inactive accounts get 403.
    """
    user = await _credentials(request).login(str(body.email), body.password)
    pair = await _issuer(request).issue(user.id)
    result = AuthResult(user=UserResponse.from_user(user), tokens=TokensResponse.from_pair(pair))
    return success_response(result, "Login successful", no_store=True)


@router.post("/auth/refresh")
async def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Exchange a refresh token for a new pair. The presented token is consumed."""
    pair = await _issuer(request).rotate(body.refresh_token)
    result = RefreshResult(tokens=TokensResponse.from_pair(pair))
    return success_response(result, "Token refreshed successfully", no_store=True)


@router.post("/auth/forgot-password")
async def forgot_password(request: Request, body: ForgotPasswordRequest) -> JSONResponse:
    await _credentials(request).forgot_password(str(body.email))
    return success_response(None, "Password reset instructions sent to email")


@router.post("/auth/reset-password")
async def reset_password(request: Request, body: ResetPasswordRequest) -> JSONResponse:
    await _credentials(request).reset_password(body.token, body.new_password)
    return success_response(None, "Password reset successful")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout")
async def logout(request: Request, current_user: User = Depends(get_current_user)) -> JSONResponse:
    """Revoke every refresh token of the caller.

    The presented access token stays valid until it expires; it is
    short-lived and carries no refresh capability.
    """
    await _credentials(request).logout(current_user.id)
    return success_response(None, "Logout successful")


@router.get("/auth/me")
async def me(current_user: User = Depends(get_current_user)) -> JSONResponse:
    """Return the authenticated user's record (the gate already re-read it)."""
    return success_response(UserResponse.from_user(current_user), "User retrieved successfully")


@router.patch("/auth/profile")
async def update_profile(
    request: Request,
    body: ProfileUpdate,
    current_user: User = Depends(get_current_user),
) -> JSONResponse:
    """Update whitelisted profile fields. Fields outside the whitelist are ignored."""
    user = await _credentials(request).update_profile(current_user.id, body.model_dump(exclude_unset=True))
    return success_response(UserResponse.from_user(user), "Profile updated successfully")


@router.post("/auth/change-password")
async def change_password(
    request: Request,
    body: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
) -> JSONResponse:
    """Change the password. Every refresh token of the user is revoked."""
    await _credentials(request).change_password(current_user.id, body.old_password, body.new_password)
    return success_response(None, "Password changed successfully")
