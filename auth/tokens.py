"""
auth/tokens.py -- Access/refresh token issuance, rotation and verification.

Security design decisions:
  Access token: python-jose JWT, HS256, signed with SECRET_KEY. Claims are
       exactly user_id, iat and exp -- no role, no username. Anything that
       can change during the token's lifetime (role, active flag) is re-read
       from the store by the authentication gate on every request.
       Verification returns None on any failure; it never raises.

  Refresh token: secrets.token_urlsafe(48) -- 384 bits of entropy, opaque to
       the client. Stored only as an HMAC (see auth/sessions.py).

  Rotation: rotate() hands the presented token and its successor to
       SessionStore.rotate(), which consumes one and persists the other in a
       single transaction. Whoever loses a race on the same token sees
       "invalid refresh token", exactly like a replay after the fact.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from auth.sessions import SessionStore
from auth.store import UserStore
from core.concurrency import run_blocking
from core.errors import AuthError

logger = logging.getLogger("devhub.auth.tokens")

_ALGORITHM = "HS256"

# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int  # access-token lifetime, seconds


@dataclass(frozen=True)
class AccessClaims:
    user_id: int
    issued_at: datetime
    expires_at: datetime


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(
    user_id: int,
    secret_key: str,
    expire_seconds: int,
    now: Optional[datetime] = None,
) -> str:
    """Encode a signed JWT carrying user_id, iat and exp."""
    issued_at = now or datetime.now(timezone.utc)
    payload = {
        "user_id": user_id,
        "iat": issued_at,
        "exp": issued_at + timedelta(seconds=expire_seconds),
    }
    return jwt.encode(payload, secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str, secret_key: str) -> Optional[AccessClaims]:
    """Verify signature, expiry and claim shape. Returns None on any failure.

    Returning None (rather than raising) keeps the gate simple: every invalid
    token -- malformed, signed by someone else, expired -- looks the same.
    """
    if not isinstance(token, str) or not token:
        return None
    try:
        payload = jwt.decode(token, secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    user_id = payload.get("user_id")
    iat = payload.get("iat")
    exp = payload.get("exp")
    # bool is an int subclass; a forged {"user_id": true} must not pass.
    if not isinstance(user_id, int) or isinstance(user_id, bool):
        return None
    if not isinstance(iat, (int, float)) or not isinstance(exp, (int, float)):
        return None
    return AccessClaims(
        user_id=user_id,
        issued_at=datetime.fromtimestamp(iat, tz=timezone.utc),
        expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
    )


def generate_refresh_token() -> str:
    """Generate a new opaque refresh token (384 bits, URL-safe)."""
    return secrets.token_urlsafe(48)


# ---------------------------------------------------------------------------
# Issuer
# ---------------------------------------------------------------------------


class TokenIssuer:
    """Mints access/refresh pairs and owns the rotation protocol.

    Usage:
        issuer = TokenIssuer(sessions, users, secret_key=..., access_expire_seconds=3600,
                             refresh_expire_seconds=7 * 86400, timeout=5.0)
        pair = await issuer.issue(user.id)
        pair = await issuer.rotate(pair.refresh_token)
        claims = issuer.verify_access_token(pair.access_token)
    """

    def __init__(
        self,
        sessions: SessionStore,
        users: UserStore,
        *,
        secret_key: str,
        access_expire_seconds: int = 3600,
        refresh_expire_seconds: int = 7 * 24 * 60 * 60,
        timeout: Optional[float] = 5.0,
    ) -> None:
        self._sessions = sessions
        self._users = users
        self._secret_key = secret_key
        self.access_expire_seconds = access_expire_seconds
        self.refresh_expire_seconds = refresh_expire_seconds
        self._timeout = timeout

    def _deadline(self, timeout: Optional[float]) -> Optional[float]:
        return self._timeout if timeout is None else timeout

    async def issue(self, user_id: int, *, timeout: Optional[float] = None) -> TokenPair:
        """Mint a new pair for user_id and persist its refresh token."""
        now = datetime.now(timezone.utc)
        access_token = create_access_token(user_id, self._secret_key, self.access_expire_seconds, now=now)
        refresh_token = generate_refresh_token()
        expires_at = now + timedelta(seconds=self.refresh_expire_seconds)
        await run_blocking(
            self._sessions.create, refresh_token, user_id, expires_at, timeout=self._deadline(timeout)
        )
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self.access_expire_seconds,
        )

    async def rotate(self, old_refresh_token: str, *, timeout: Optional[float] = None) -> TokenPair:
        """Exchange a refresh token for a brand-new pair.

        The presented token is consumed before anything else happens, so it
        can never produce a second pair -- not on replay, and not when two
        requests race with it.
        """
        deadline = self._deadline(timeout)
        if not old_refresh_token:
            raise AuthError("Refresh token is required")

        now = datetime.now(timezone.utc)
        refresh_token = generate_refresh_token()
        expires_at = now + timedelta(seconds=self.refresh_expire_seconds)
        record, successor = await run_blocking(
            self._sessions.rotate, old_refresh_token, refresh_token, expires_at, now, timeout=deadline
        )
        if record is None:
            logger.warning("Refresh rejected: unknown or already-used token")
            raise AuthError("Invalid refresh token")

        if successor is None:
            # The expired record was consumed along with the rejection.
            logger.info("Refresh rejected: expired token for user_id=%s", record.user_id)
            raise AuthError("Refresh token expired")

        user = await run_blocking(self._users.get_by_id, record.user_id, timeout=deadline)
        if user is None or not user.is_active:
            await run_blocking(self._sessions.revoke, refresh_token, timeout=deadline)
            logger.warning("Refresh rejected: inactive or missing user_id=%s", record.user_id)
            raise AuthError("Account is inactive")

        return TokenPair(
            access_token=create_access_token(record.user_id, self._secret_key, self.access_expire_seconds, now=now),
            refresh_token=refresh_token,
            expires_in=self.access_expire_seconds,
        )

    def verify_access_token(self, token: str) -> Optional[AccessClaims]:
        """Pure signature + expiry check. Never touches the store, never raises."""
        return decode_access_token(token, self._secret_key)
