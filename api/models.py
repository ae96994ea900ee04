"""
API request and response models for the DevHub REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two, and
every request body is validated here before any auth core call -- the core
never re-derives types from untyped input.

JSON keys are camelCase on the wire (accessToken, firstName, isActive...).
Request models also accept the snake_case field names.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from auth.models import Role, User
from auth.tokens import TokenPair

USERNAME_PATTERN = r"^[A-Za-z0-9_-]+$"

# bcrypt only looks at the first 72 bytes of a password.
_BCRYPT_MAX_BYTES = 72


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _check_password_bytes(value: str) -> str:
    if len(value.encode("utf-8")) > _BCRYPT_MAX_BYTES:
        raise ValueError("Password cannot exceed 72 bytes")
    return value


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


class ApiResponse(BaseModel):
    """Envelope wrapped around every response body, success or error."""

    success: bool = True
    message: str
    data: Any = None
    timestamp: str = Field(default_factory=_now_iso)


# ---------------------------------------------------------------------------
# Auth request models
# ---------------------------------------------------------------------------


class _ProfileFields(CamelModel):
    first_name: Optional[str] = Field(default=None, max_length=50)
    last_name: Optional[str] = Field(default=None, max_length=50)
    avatar: Optional[str] = Field(default=None, max_length=500)
    department: Optional[str] = Field(default=None, max_length=100)

    @field_validator("first_name", "last_name", "avatar", "department", mode="before")
    @classmethod
    def strip_text(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


class RegisterRequest(_ProfileFields):
    """Request body for POST /api/v1/auth/register."""

    username: str = Field(min_length=3, max_length=50, pattern=USERNAME_PATTERN)
    email: EmailStr
    password: str = Field(min_length=6)

    @field_validator("username", mode="before")
    @classmethod
    def strip_username(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: Any) -> Any:
        """Strip and lower-case before EmailStr validation so lookups are exact-match."""
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)

    def profile_fields(self) -> dict[str, Any]:
        return self.model_dump(include={"first_name", "last_name", "avatar", "department"}, exclude_none=True)


class LoginRequest(CamelModel):
    """Request body for POST /api/v1/auth/login."""

    email: EmailStr
    password: str = Field(min_length=1, max_length=1024)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value


class RefreshRequest(CamelModel):
    """Request body for POST /api/v1/auth/refresh."""

    refresh_token: str = Field(min_length=1, max_length=512)


class ChangePasswordRequest(CamelModel):
    """Request body for POST /api/v1/auth/change-password."""

    old_password: str = Field(min_length=1, max_length=1024)
    new_password: str = Field(min_length=6)

    @field_validator("new_password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


class ProfileUpdate(_ProfileFields):
    """Request body for PATCH /api/v1/auth/profile.

    Unknown keys (role, isActive, email...) are ignored by Pydantic's default
    extra="ignore"; the core applies its own whitelist on top.
    """

    username: Optional[str] = Field(default=None, min_length=3, max_length=50, pattern=USERNAME_PATTERN)

    @field_validator("username", mode="before")
    @classmethod
    def strip_username(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


class ForgotPasswordRequest(CamelModel):
    email: EmailStr


class ResetPasswordRequest(CamelModel):
    token: str = Field(min_length=1)
    new_password: str = Field(min_length=6)


class RoleUpdate(CamelModel):
    """Request body for PATCH /api/v1/users/{id}/role."""

    role: Role


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(CamelModel):
    """Outward representation of a User. There is no password field."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: str
    role: Role
    is_active: bool
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    avatar: Optional[str] = None
    department: Optional[str] = None
    last_login: Optional[str] = None
    created_at: str
    updated_at: str

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            role=user.role,
            is_active=user.is_active,
            first_name=user.first_name,
            last_name=user.last_name,
            avatar=user.avatar,
            department=user.department,
            last_login=user.last_login,
            created_at=user.created_at or "",
            updated_at=user.updated_at or "",
        )


class TokensResponse(CamelModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    expires_in: int

    @classmethod
    def from_pair(cls, pair: TokenPair) -> "TokensResponse":
        return cls(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            expires_in=pair.expires_in,
        )


class AuthResult(CamelModel):
    """data payload for register and login."""

    user: UserResponse
    tokens: TokensResponse


class RefreshResult(CamelModel):
    """data payload for refresh."""

    tokens: TokensResponse


class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next_page: bool
    has_prev_page: bool

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        total_pages = math.ceil(total / limit) if limit else 0
        return cls(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next_page=page < total_pages,
            has_prev_page=page > 1,
        )


class UserListResult(CamelModel):
    users: list[UserResponse]
    pagination: Pagination


class HealthResponse(BaseModel):
    """data payload for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
