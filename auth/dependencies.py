"""
auth/dependencies.py -- Authentication gate and authorization policy.

Gate (every protected request):
  1. Extract the bearer credential from "Authorization: Bearer <token>".
  2. Verify signature and expiry (TokenIssuer.verify_access_token).
  3. Re-read the user. Missing -> 401. Inactive -> 403, even though the token
     itself is still valid: deactivation must take effect before expiry.
  4. Attach the user to request.state.user.

authenticate() is the framework-free core of the gate. The FastAPI Depends()
helpers below wrap it:

  get_current_user()      -- hard variant, raises AuthError / ForbiddenError.
  try_get_current_user()  -- soft variant, returns None on any auth failure.
                             Store failures still propagate as InternalError.
  require_role(role)      -- policy check composed after get_current_user().
  require_admin           -- require_role(Role.ADMIN).

The raised DevHubError subclasses are rendered into the response envelope by
the exception handler in api/main.py.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Request

from auth.credentials import CredentialStore
from auth.models import Role, User
from auth.tokens import TokenIssuer
from core.errors import AuthError, ForbiddenError, NotFoundError


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token from an Authorization header value, or None."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


async def authenticate(
    authorization: Optional[str],
    issuer: TokenIssuer,
    credentials: CredentialStore,
) -> User:
    """Turn an Authorization header value into a live, active User."""
    token = extract_bearer_token(authorization)
    if token is None:
        raise AuthError("Access denied. No token provided.")

    claims = issuer.verify_access_token(token)
    if claims is None:
        raise AuthError("Invalid or expired token")

    try:
        user = await credentials.get_user(claims.user_id)
    except NotFoundError as exc:
        raise AuthError("User not found") from exc
    if not user.is_active:
        raise ForbiddenError("Account is inactive")
    return user


def authorize(user: Optional[User], required_role: Role) -> User:
    """Exact-match role check. No hierarchy: ADMIN is the only elevated role."""
    if user is None:
        raise AuthError("Authentication required.")
    if user.role != required_role:
        raise ForbiddenError("You do not have permission to perform this action.")
    return user


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------


async def get_current_user(request: Request) -> User:
    """Require authentication.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    user = await authenticate(
        request.headers.get("Authorization"),
        request.app.state.token_issuer,
        request.app.state.credentials,
    )
    request.state.user = user
    return user


async def try_get_current_user(request: Request) -> Optional[User]:
    """Optional authentication: the user when the gate passes, None otherwise.

    For endpoints that personalize output for signed-in callers without
    requiring sign-in.
    """
    try:
        user: Optional[User] = await get_current_user(request)
    except (AuthError, ForbiddenError):
        user = None
    request.state.user = user
    return user


def require_role(role: Role):
    """Build a dependency that authenticates, then enforces role.

    Use as a FastAPI dependency:
        @router.delete("/users/{id}")
        async def route(user: User = Depends(require_role(Role.ADMIN))): ...
    """

    async def _require_role(user: User = Depends(get_current_user)) -> User:
        return authorize(user, role)

    return _require_role


require_admin = require_role(Role.ADMIN)
