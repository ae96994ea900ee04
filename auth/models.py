"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and the
credential/token services do the work; api/models.py owns the outward shape.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class Role(str, Enum):
    """Account roles. DEVELOPER is the lowest privilege and the default."""

    DEVELOPER = "developer"
    ADMIN = "admin"


@dataclass
class User:
    """An identity registered with DevHub.

    hashed_password is the bcrypt hash. It never leaves the server: the API
    layer maps User onto UserResponse, which has no password field at all.

    email is stored lower-cased; the DTO layer normalizes it before the core
    sees it, so lookups are exact-match.
    """

    username: str
    email: str
    hashed_password: str
    role: Role = Role.DEVELOPER
    id: Optional[int] = None
    is_active: bool = True
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    avatar: Optional[str] = None
    department: Optional[str] = None
    last_login: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class RefreshToken:
    """A persisted session: one refresh token owned by one user.

    token_hash is HMAC-SHA256(SECRET_KEY, raw_token). The raw token is handed
    to the client exactly once and never stored, so a leaked database cannot
    be replayed against /auth/refresh.
    """

    token_hash: str
    user_id: int
    expires_at: str  # ISO 8601, UTC
    id: Optional[int] = None
    created_at: Optional[str] = None

    def is_expired(self, now: datetime) -> bool:
        # Lazy expiry: checked on every use, independent of the sweep.
        return datetime.fromisoformat(self.expires_at) <= now
