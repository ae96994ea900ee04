"""Unit tests for auth/dependencies.py -- authentication gate and role policy.

Covers:
- Bearer extraction from the Authorization header
- Gate failures: no header, garbage token, deleted user
- Liveness re-check: a valid token of a deactivated user fails on next use
- Role gate: admin passes, every other role gets ForbiddenError
"""

from types import SimpleNamespace

import pytest
from conftest import run
from sqlalchemy.exc import OperationalError

from auth.dependencies import (
    authenticate,
    authorize,
    extract_bearer_token,
    get_current_user,
    try_get_current_user,
)
from auth.models import Role, User
from core.errors import AuthError, ForbiddenError, InternalError


@pytest.mark.parametrize(
    "header,expected",
    [
        ("Bearer abc.def.ghi", "abc.def.ghi"),
        ("bearer abc", "abc"),
        ("Bearer    abc  ", "abc"),
        ("Basic dXNlcjpwYXNz", None),
        ("Bearer", None),
        ("Bearer ", None),
        ("", None),
        (None, None),
    ],
)
def test_extract_bearer_token(header, expected):
    assert extract_bearer_token(header) == expected


def _signed_in(credentials, issuer, name="alice"):
    user = run(credentials.register(name, f"{name}@x.com", "secret12"))
    pair = run(issuer.issue(user.id))
    return user, f"Bearer {pair.access_token}"


def test_gate_accepts_valid_token(credentials, issuer):
    user, header = _signed_in(credentials, issuer)
    assert run(authenticate(header, issuer, credentials)).id == user.id


def test_gate_without_token(credentials, issuer):
    with pytest.raises(AuthError) as exc_info:
        run(authenticate(None, issuer, credentials))
    assert exc_info.value.message == "Access denied. No token provided."


def test_gate_with_invalid_token(credentials, issuer):
    with pytest.raises(AuthError) as exc_info:
        run(authenticate("Bearer not-a-token", issuer, credentials))
    assert exc_info.value.message == "Invalid or expired token"


def test_gate_for_deleted_user(credentials, issuer, stores):
    user_store, _ = stores
    user, header = _signed_in(credentials, issuer)
    user_store.delete_user(user.id)
    with pytest.raises(AuthError) as exc_info:
        run(authenticate(header, issuer, credentials))
    assert exc_info.value.message == "User not found"


def test_gate_rechecks_liveness_after_deactivation(credentials, issuer):
    user, header = _signed_in(credentials, issuer)
    run(authenticate(header, issuer, credentials))

    run(credentials.set_active(user.id, False))

    # The token has not expired, the gate still refuses it.
    with pytest.raises(ForbiddenError):
        run(authenticate(header, issuer, credentials))


def test_gate_sees_role_change_without_new_token(credentials, issuer):
    user, header = _signed_in(credentials, issuer)
    run(credentials.set_role(user.id, Role.ADMIN))
    assert run(authenticate(header, issuer, credentials)).role == Role.ADMIN


def _user(role: Role) -> User:
    return User(id=1, username="u", email="u@x.com", hashed_password="x", role=role)


def test_role_gate_admits_admin():
    admin = _user(Role.ADMIN)
    assert authorize(admin, Role.ADMIN) is admin


@pytest.mark.parametrize("role", [r for r in Role if r != Role.ADMIN])
def test_role_gate_forbids_every_other_role(role):
    with pytest.raises(ForbiddenError):
        authorize(_user(role), Role.ADMIN)


def test_role_gate_without_user():
    with pytest.raises(AuthError):
        authorize(None, Role.ADMIN)


# ---------------------------------------------------------------------------
# FastAPI dependency wrappers
# ---------------------------------------------------------------------------


def _request(issuer, credentials, authorization=None):
    """Stand-in for starlette.Request carrying only what the dependencies read."""
    headers = {"Authorization": authorization} if authorization else {}
    app = SimpleNamespace(state=SimpleNamespace(token_issuer=issuer, credentials=credentials))
    return SimpleNamespace(headers=headers, app=app, state=SimpleNamespace())


def test_get_current_user_attaches_user_to_request(credentials, issuer):
    user, header = _signed_in(credentials, issuer)
    request = _request(issuer, credentials, header)
    assert run(get_current_user(request)).id == user.id
    assert request.state.user.id == user.id


def test_try_get_current_user_is_soft(credentials, issuer):
    user, header = _signed_in(credentials, issuer)

    anonymous = _request(issuer, credentials)
    assert run(try_get_current_user(anonymous)) is None
    assert anonymous.state.user is None

    run(credentials.set_active(user.id, False))
    deactivated = _request(issuer, credentials, header)
    assert run(try_get_current_user(deactivated)) is None


def test_try_get_current_user_propagates_store_failures(credentials, issuer, stores):
    user_store, _ = stores
    _, header = _signed_in(credentials, issuer)

    def unavailable(user_id):
        raise OperationalError("SELECT", {}, Exception("disk I/O error"))

    user_store.get_by_id = unavailable
    with pytest.raises(InternalError):
        run(try_get_current_user(_request(issuer, credentials, header)))
