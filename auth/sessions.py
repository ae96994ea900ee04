"""
auth/sessions.py -- Persisted refresh-token sessions.

Pattern: Repository (same shape as auth/store.py), sharing UserStore's engine.

The only mutable shared state besides user records lives here, so the
concurrency contract matters:

  rotate() is the atomic "consume and replace" primitive used by token
  rotation. Inside one transaction it reads the presented record, issues a
  conditional DELETE and, if the record was live, inserts the successor.
  Only the caller whose DELETE removed the row receives the record; a second
  caller presenting the same token -- even concurrently -- gets nothing.

  revoke_all() takes the same lock as rotate(). A revocation therefore runs
  either before a rotation (the presented token is already gone) or after it
  (the successor is removed with the rest), never between the consume and
  the insert. The lock also keeps SQLite's shared-cache mode (table locks,
  no busy wait) from turning the race into a store error.

  Expiry is lazy: rotate() hands back an expired record only so the
  caller can reject it, and never inserts a successor for one.
  purge_expired() is a cleanup sweep and nothing relies on it for
  correctness.

Raw tokens never reach the table. Every method takes the raw token and hashes
it with hash_refresh_token() before touching SQL.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import threading
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, Integer, MetaData, String, Table
from sqlalchemy.engine import Connection, Engine

from auth.models import RefreshToken

logger = logging.getLogger("devhub.sessions")

_metadata = MetaData()

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("user_id", Integer, nullable=False, index=True),
    Column("expires_at", String(40), nullable=False),
    Column("created_at", String(40), nullable=False),
)


def hash_refresh_token(secret_key: str, raw_token: str) -> str:
    """Return HMAC-SHA256(secret_key, raw_token) as a hex string.

    Deterministic, so lookups stay O(1) via the UNIQUE index. The token
    already carries 384 bits of entropy, so bcrypt's slowness buys nothing.
    """
    return hmac.new(secret_key.encode(), raw_token.encode(), hashlib.sha256).hexdigest()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStore:
    """Repository for RefreshToken records.

    Usage:
        sessions = SessionStore(user_store.engine, secret_key=settings.secret_key)
        sessions.create(raw_token, user_id=1, expires_at=...)
        old, new = sessions.rotate(raw_token, next_raw_token, expires_at=...)
    """

    def __init__(self, engine: Engine, *, secret_key: str) -> None:
        self.engine = engine
        self._secret_key = secret_key
        self._lock = threading.Lock()
        _metadata.create_all(self.engine)

    def _hash(self, raw_token: str) -> str:
        return hash_refresh_token(self._secret_key, raw_token)

    def _insert(self, conn: Connection, raw_token: str, user_id: int, expires_at: datetime) -> RefreshToken:
        record = RefreshToken(
            token_hash=self._hash(raw_token),
            user_id=user_id,
            expires_at=expires_at.astimezone(timezone.utc).isoformat(),
            created_at=_utcnow().isoformat(),
        )
        result = conn.execute(
            _refresh_tokens.insert().values(
                token_hash=record.token_hash,
                user_id=record.user_id,
                expires_at=record.expires_at,
                created_at=record.created_at,
            )
        )
        record.id = result.inserted_primary_key[0]
        return record

    def _take(self, conn: Connection, raw_token: str) -> Optional[RefreshToken]:
        """Delete the record for raw_token inside conn's transaction and return it."""
        token_hash = self._hash(raw_token)
        row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.token_hash == token_hash)).fetchone()
        if row is None:
            return None
        deleted = conn.execute(
            _refresh_tokens.delete().where(
                (_refresh_tokens.c.id == row.id) & (_refresh_tokens.c.token_hash == token_hash)
            )
        )
        if deleted.rowcount != 1:
            return None
        return _row_to_refresh_token(row)

    def create(self, raw_token: str, user_id: int, expires_at: datetime) -> RefreshToken:
        """Persist a new session for user_id and return it."""
        with self.engine.begin() as conn:
            return self._insert(conn, raw_token, user_id, expires_at)

    def rotate(
        self,
        raw_token: str,
        new_raw_token: str,
        expires_at: datetime,
        now: Optional[datetime] = None,
    ) -> tuple[Optional[RefreshToken], Optional[RefreshToken]]:
        """Consume raw_token and, if it was live, persist new_raw_token for the same user.

        Returns (consumed, successor):
          (None, None)      unknown or already consumed
          (record, None)    consumed but expired, no successor issued
          (record, new)     consumed and replaced in the same transaction
        """
        with self._lock, self.engine.begin() as conn:
            record = self._take(conn, raw_token)
            if record is None or record.is_expired(now or _utcnow()):
                return record, None
            return record, self._insert(conn, new_raw_token, record.user_id, expires_at)

    def revoke(self, raw_token: str) -> bool:
        """Delete the single session for raw_token. Returns True if it existed."""
        with self._lock, self.engine.begin() as conn:
            return self._take(conn, raw_token) is not None

    def revoke_all(self, user_id: int) -> int:
        """Delete every session owned by user_id. Returns the number removed."""
        with self._lock, self.engine.begin() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.user_id == user_id))
        if result.rowcount:
            logger.info("Revoked %d session(s) for user_id=%s", result.rowcount, user_id)
        return result.rowcount

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Delete every expired session. Returns number of rows removed.

        ISO 8601 strings in UTC sort chronologically, so a string comparison
        in SQL matches the datetime comparison in RefreshToken.is_expired().
        """
        cutoff = (now or _utcnow()).isoformat()
        with self.engine.begin() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.expires_at <= cutoff))
        return result.rowcount


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        token_hash=row.token_hash,
        user_id=row.user_id,
        expires_at=row.expires_at,
        created_at=row.created_at,
    )
