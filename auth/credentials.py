"""
auth/credentials.py -- Identity lifecycle: register, login, password and profile.

CredentialStore is the only component that sees plaintext passwords, and only
for the duration of one hash or verify call. It owns:

  * registration with per-field uniqueness errors,
  * constant-time login [C1],
  * password change with forced re-authentication everywhere else,
  * whitelisted profile updates,
  * admin account management (activation, role, deletion).

Every store call and every bcrypt call goes through run_blocking(), so the
event loop never stalls on SQL or hashing and each call honours a deadline.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError

from auth.models import Role, User
from auth.passwords import DUMMY_HASH, hash_password, verify_password
from auth.sessions import SessionStore
from auth.store import UserStore
from core.concurrency import run_blocking
from core.errors import (
    AuthError,
    ConflictError,
    ForbiddenError,
    IncorrectPasswordError,
    NotAvailableError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger("devhub.auth.credentials")

# Profile fields a user may change about themselves. Anything else in an
# update payload (role, is_active, email, hashed_password...) is dropped.
PROFILE_FIELDS: frozenset[str] = frozenset({"first_name", "last_name", "username", "avatar", "department"})

# Fields register() accepts besides the credentials themselves.
REGISTRATION_PROFILE_FIELDS: frozenset[str] = frozenset({"first_name", "last_name", "avatar", "department"})

_BAD_CREDENTIALS = "Invalid email or password"


def _conflict_message(field: str) -> str:
    return "Email already registered" if field == "email" else "Username already taken"


class CredentialStore:
    """Async service over UserStore and SessionStore.

    Usage:
        credentials = CredentialStore(users, sessions, timeout=5.0)
        user = await credentials.register("alice", "alice@x.com", "secret12", {})
        user = await credentials.login("alice@x.com", "secret12")
    """

    def __init__(self, users: UserStore, sessions: SessionStore, *, timeout: Optional[float] = 5.0) -> None:
        self._users = users
        self._sessions = sessions
        self._timeout = timeout

    def _deadline(self, timeout: Optional[float]) -> Optional[float]:
        return self._timeout if timeout is None else timeout

    # ------------------------------------------------------------------
    # Registration and login
    # ------------------------------------------------------------------

    async def register(
        self,
        username: str,
        email: str,
        password: str,
        profile_fields: Optional[dict[str, Any]] = None,
        *,
        timeout: Optional[float] = None,
    ) -> User:
        """Create a developer account and return it (already logged in).

        Raises ConflictError naming the colliding field ("email" or "username").
        """
        deadline = self._deadline(timeout)
        field = await run_blocking(self._users.find_identity_conflict, username, email, timeout=deadline)
        if field is not None:
            raise ConflictError(_conflict_message(field), field=field)

        hashed = await run_blocking(hash_password, password, timeout=deadline)
        profile = {k: v for k, v in (profile_fields or {}).items() if k in REGISTRATION_PROFILE_FIELDS}
        user = User(username=username, email=email, hashed_password=hashed, role=Role.DEVELOPER, **profile)

        user_id = await run_blocking(self._insert_user, user, timeout=deadline)
        await run_blocking(self._users.update_last_login, user_id, timeout=deadline)
        logger.info("Registered user_id=%s username=%s", user_id, username)
        return await self.get_user(user_id, timeout=deadline)

    def _insert_user(self, user: User) -> int:
        # Runs on the worker thread. A concurrent registration can slip past
        # find_identity_conflict(); the UNIQUE constraint catches it here.
        try:
            return self._users.create_user(user)
        except IntegrityError as exc:
            field = self._users.find_identity_conflict(user.username, user.email) or "username"
            raise ConflictError(_conflict_message(field), field=field) from exc

    async def login(self, email: str, password: str, *, timeout: Optional[float] = None) -> User:
        """Verify credentials and return the user.

        Unknown email and wrong password raise the same AuthError, and bcrypt
        runs in both cases so timing does not reveal which [C1]. An inactive
        account raises ForbiddenError -- but only after the password verified,
        so account status is never disclosed to someone without it.
        """
        deadline = self._deadline(timeout)
        user = await run_blocking(self._users.get_by_email, email, timeout=deadline)
        if user is None:
            # Equalize timing -- do NOT return early before running bcrypt [C1]
            await run_blocking(verify_password, password, DUMMY_HASH, timeout=deadline)
            logger.info("Login failed: unknown email")
            raise AuthError(_BAD_CREDENTIALS)

        if not await run_blocking(verify_password, password, user.hashed_password, timeout=deadline):
            logger.info("Login failed: bad password for user_id=%s", user.id)
            raise AuthError(_BAD_CREDENTIALS)

        if not user.is_active:
            logger.info("Login refused: inactive user_id=%s", user.id)
            raise ForbiddenError("Account is inactive. Please contact support.")

        await run_blocking(self._users.update_last_login, user.id, timeout=deadline)
        return await self.get_user(user.id, timeout=deadline)

    # ------------------------------------------------------------------
    # Self-service
    # ------------------------------------------------------------------

    async def get_user(self, user_id: int, *, timeout: Optional[float] = None) -> User:
        user = await run_blocking(self._users.get_by_id, user_id, timeout=self._deadline(timeout))
        if user is None:
            raise NotFoundError("User not found")
        return user

    async def change_password(
        self,
        user_id: int,
        old_password: str,
        new_password: str,
        *,
        timeout: Optional[float] = None,
    ) -> None:
        """Replace the password and revoke every refresh token the user holds."""
        deadline = self._deadline(timeout)
        user = await self.get_user(user_id, timeout=deadline)
        if not await run_blocking(verify_password, old_password, user.hashed_password, timeout=deadline):
            logger.info("Password change refused: wrong current password for user_id=%s", user_id)
            raise IncorrectPasswordError("Current password is incorrect")

        hashed = await run_blocking(hash_password, new_password, timeout=deadline)
        await run_blocking(self._users.update_user, user_id, timeout=deadline, hashed_password=hashed)
        revoked = await run_blocking(self._sessions.revoke_all, user_id, timeout=deadline)
        logger.info("Password changed for user_id=%s (%d session(s) revoked)", user_id, revoked)

    async def update_profile(
        self,
        user_id: int,
        updates: dict[str, Any],
        *,
        timeout: Optional[float] = None,
    ) -> User:
        """Apply whitelisted profile fields; silently ignore everything else."""
        deadline = self._deadline(timeout)
        changes = {k: v for k, v in updates.items() if k in PROFILE_FIELDS}

        if "username" in changes:
            if not changes["username"]:
                raise ValidationError("Username cannot be empty")
            taken = await run_blocking(self._users.username_taken, changes["username"], user_id, timeout=deadline)
            if taken:
                raise ConflictError("Username already taken", field="username")

        if not changes:
            return await self.get_user(user_id, timeout=deadline)

        updated = await run_blocking(self._update_profile_row, user_id, changes, timeout=deadline)
        if not updated:
            raise NotFoundError("User not found")
        return await self.get_user(user_id, timeout=deadline)

    def _update_profile_row(self, user_id: int, changes: dict[str, Any]) -> bool:
        try:
            return self._users.update_user(user_id, **changes)
        except IntegrityError as exc:
            raise ConflictError("Username already taken", field="username") from exc

    async def logout(self, user_id: int, *, timeout: Optional[float] = None) -> int:
        """End every session of user_id. Returns the number of sessions revoked."""
        return await run_blocking(self._sessions.revoke_all, user_id, timeout=self._deadline(timeout))

    # ------------------------------------------------------------------
    # Password reset boundary
    # ------------------------------------------------------------------

    async def forgot_password(self, email: str) -> None:
        # TODO: reset tokens need issuance, storage with a 30-minute expiry,
        # single-use consumption and an outbound mail transport.
        raise NotAvailableError("Password reset functionality is not available yet")

    async def reset_password(self, token: str, new_password: str) -> None:
        raise NotAvailableError("Password reset functionality is not available yet")

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    async def list_users(
        self,
        page: int = 1,
        limit: int = 10,
        *,
        role: Optional[Role] = None,
        is_active: Optional[bool] = None,
        search: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> tuple[list[User], int]:
        offset = (page - 1) * limit
        return await run_blocking(
            self._users.list_users,
            offset,
            limit,
            role,
            is_active,
            search,
            timeout=self._deadline(timeout),
        )

    async def set_active(self, user_id: int, is_active: bool, *, timeout: Optional[float] = None) -> User:
        """Activate or deactivate an account.

        Deactivation also revokes the user's sessions; live access tokens die
        at the gate on their next use because the gate re-reads is_active.
        Refuses to deactivate the last active admin.
        """
        deadline = self._deadline(timeout)
        target = await self.get_user(user_id, timeout=deadline)
        if not is_active and target.role == Role.ADMIN and target.is_active:
            await self._ensure_not_last_admin(deadline)

        await run_blocking(self._users.update_user, user_id, timeout=deadline, is_active=is_active)
        if not is_active:
            await run_blocking(self._sessions.revoke_all, user_id, timeout=deadline)
        logger.info("user_id=%s is_active=%s", user_id, is_active)
        return await self.get_user(user_id, timeout=deadline)

    async def toggle_status(self, user_id: int, *, timeout: Optional[float] = None) -> User:
        target = await self.get_user(user_id, timeout=timeout)
        return await self.set_active(user_id, not target.is_active, timeout=timeout)

    async def set_role(self, user_id: int, role: Role, *, timeout: Optional[float] = None) -> User:
        deadline = self._deadline(timeout)
        target = await self.get_user(user_id, timeout=deadline)
        if target.role == Role.ADMIN and role != Role.ADMIN and target.is_active:
            await self._ensure_not_last_admin(deadline)
        await run_blocking(self._users.update_user, user_id, timeout=deadline, role=role)
        logger.info("user_id=%s role=%s", user_id, Role(role).value)
        return await self.get_user(user_id, timeout=deadline)

    async def delete_user(self, user_id: int, *, timeout: Optional[float] = None) -> User:
        """Hard-delete an account and its sessions. Returns the deleted record."""
        deadline = self._deadline(timeout)
        target = await self.get_user(user_id, timeout=deadline)
        if target.role == Role.ADMIN and target.is_active:
            await self._ensure_not_last_admin(deadline)
        await run_blocking(self._sessions.revoke_all, user_id, timeout=deadline)
        if not await run_blocking(self._users.delete_user, user_id, timeout=deadline):
            raise NotFoundError("User not found")
        logger.info("Deleted user_id=%s", user_id)
        return target

    async def _ensure_not_last_admin(self, deadline: Optional[float]) -> None:
        if await run_blocking(self._users.count_active_admins, timeout=deadline) <= 1:
            raise ValidationError("Cannot remove the last active admin account.")

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------

    async def create_admin(self, username: str, email: str, password: str) -> User:
        """Register an account and promote it to admin. Used by the CLI."""
        user = await self.register(username, email, password)
        return await self.set_role(user.id, Role.ADMIN)
