"""
auth/store.py -- SQLAlchemy Core persistence layer for user identities.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user is the mapper. Credential and route
code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  username and email each carry a UNIQUE constraint. CredentialStore checks
  for collisions first so it can name the offending field, but the constraint
  is what actually holds under concurrent registrations -- callers must treat
  IntegrityError from create_user()/update_user() as a conflict.

All methods are synchronous. The async credential service runs them on a
worker thread (core.concurrency.run_blocking) so the event loop never blocks
on the database.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, or_, select, text
from sqlalchemy.engine import Engine

from auth.models import Role, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(50), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("role", String(30), nullable=False, server_default=Role.DEVELOPER.value),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("first_name", String(50)),
    Column("last_name", String(50)),
    Column("avatar", String(500)),
    Column("department", String(100)),
    Column("last_login", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_store_engine(db_url: str) -> Engine:
    """Build the engine shared by UserStore and SessionStore.

    check_same_thread=False is required because store methods run on worker
    threads, not on the thread that opened the connection.
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore("sqlite:///devhub.db")
        user_id = store.create_user(User(username="alice", email="alice@x.com", hashed_password=...))
        user = store.get_by_email("alice@x.com")
        store.close()
    """

    def __init__(self, db_url: Optional[str] = None, *, engine: Optional[Engine] = None) -> None:
        if engine is None:
            if db_url is None:
                raise ValueError("UserStore needs either db_url or engine")
            engine = create_store_engine(db_url)
        self.engine: Engine = engine
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if username or email already
        exists (the UNIQUE constraints are the last line of defense against a
        concurrent registration with the same identity).
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=user.username,
                    email=user.email,
                    hashed_password=user.hashed_password,
                    role=Role(user.role).value,
                    is_active=1 if user.is_active else 0,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    avatar=user.avatar,
                    department=user.department,
                    last_login=user.last_login,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update columns on an existing user and stamp updated_at.

        Callers pass already-whitelisted column names; this method does not
        filter. is_active is accepted as bool and role as Role.

        Returns True if a row was updated, False if user_id was not found.
        """
        if "is_active" in fields:
            fields["is_active"] = 1 if fields["is_active"] else 0
        if "role" in fields:
            fields["role"] = Role(fields["role"]).value
        fields["updated_at"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: int) -> None:
        """Stamp the current UTC timestamp as last_login for the given user."""
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=_now_iso()))
            conn.commit()

    def delete_user(self, user_id: int) -> bool:
        """Permanently delete a user record. Returns True if deleted, False if not found.

        Session cleanup is the caller's responsibility (CredentialStore revokes
        the user's refresh tokens alongside this call).
        """
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_by_id(self, user_id: int) -> Optional[User]:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> Optional[User]:
        """Look up a user by exact (already lower-cased) email."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_identity_conflict(self, username: str, email: str) -> Optional[str]:
        """Return "email" or "username" if either is already registered, else None.

        Email is reported first when both collide, matching the order in which
        clients usually fix their input.
        """
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_users.c.username, _users.c.email).where(
                    or_(_users.c.username == username, _users.c.email == email)
                )
            ).fetchall()
        if any(r.email == email for r in rows):
            return "email"
        if rows:
            return "username"
        return None

    def username_taken(self, username: str, exclude_user_id: int) -> bool:
        """True if another user (not exclude_user_id) already owns username."""
        with self.engine.connect() as conn:
            row = conn.execute(
                select(_users.c.id).where((_users.c.username == username) & (_users.c.id != exclude_user_id))
            ).fetchone()
        return row is not None

    def list_users(
        self,
        offset: int = 0,
        limit: int = 10,
        role: Optional[Role] = None,
        is_active: Optional[bool] = None,
        search: Optional[str] = None,
    ) -> tuple[list[User], int]:
        """Return (page of users newest first, total matching count). Admin-only operation."""
        conditions = []
        if role is not None:
            conditions.append(_users.c.role == Role(role).value)
        if is_active is not None:
            conditions.append(_users.c.is_active == (1 if is_active else 0))
        if search:
            # Wildcards in the search text match literally.
            escaped = search.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            pattern = f"%{escaped}%"
            conditions.append(
                or_(
                    _users.c.username.ilike(pattern, escape="\\"),
                    _users.c.email.ilike(pattern, escape="\\"),
                    _users.c.first_name.ilike(pattern, escape="\\"),
                    _users.c.last_name.ilike(pattern, escape="\\"),
                )
            )
        query = _users.select().where(*conditions).order_by(_users.c.created_at.desc(), _users.c.id.desc())
        count_query = select(func.count()).select_from(_users).where(*conditions)
        with self.engine.connect() as conn:
            rows = conn.execute(query.offset(offset).limit(limit)).fetchall()
            total = conn.execute(count_query).scalar() or 0
        return [_row_to_user(r) for r in rows], total

    def count_active_admins(self) -> int:
        """Return the number of active admin users.

        Used to prevent deactivating, demoting or deleting the last admin.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_users)
                .where((_users.c.role == Role.ADMIN.value) & (_users.c.is_active == 1))
            ).scalar()
        return result or 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        role=Role(row.role),
        is_active=bool(row.is_active),
        first_name=row.first_name,
        last_name=row.last_name,
        avatar=row.avatar,
        department=row.department,
        last_login=row.last_login,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
