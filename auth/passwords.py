"""
auth/passwords.py -- bcrypt password hashing.

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error.

These functions are CPU-bound (bcrypt's cost factor). Async callers
must not invoke them on the event loop -- CredentialStore runs them through
core.concurrency.run_blocking().
"""

from __future__ import annotations

import bcrypt


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    bcrypt only considers the first 72 bytes. The API layer caps passwords at
    72 bytes (Pydantic validator) so nothing is silently truncated.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed stored hash counts as a mismatch rather than an error.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Timing equalization dummy hash [C1].
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones. login() always runs verify_password(), even
# when the email is unknown, so response time does not reveal whether an
# account exists.
DUMMY_HASH: str = hash_password("devhub_timing_dummy")
