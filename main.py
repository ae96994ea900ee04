#!/usr/bin/env python3
"""
DevHub -- operator commands for the DevHub API.

The HTTP API only ever creates developer accounts, so the first admin has to
be created from the command line.

Usage:
  python main.py create-admin --username root --email root@devhub.io
  python main.py purge-sessions

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the credential store (default: sqlite file beside this script)
  SECRET_KEY    Required unless DEBUG=true. Must match the running API so
                refresh-token hashes line up.
"""

import argparse
import asyncio
import getpass
import sys

import pydantic

from api.models import RegisterRequest
from auth.credentials import CredentialStore
from auth.sessions import SessionStore
from auth.store import UserStore
from core.config import get_settings
from core.errors import DevHubError, ValidationError

_MIN_PASSWORD_LENGTH = 6


def _open_stores() -> tuple[UserStore, SessionStore]:
    settings = get_settings()
    users = UserStore(settings.database_url)
    sessions = SessionStore(users.engine, secret_key=settings.secret_key)
    return users, sessions


def _prompt_password() -> str:
    """Read the admin password twice without echoing it."""
    password = getpass.getpass("  Password: ")
    if len(password) < _MIN_PASSWORD_LENGTH:
        raise SystemExit(f"  [!] Password must be at least {_MIN_PASSWORD_LENGTH} characters.")
    if len(password.encode("utf-8")) > 72:
        raise SystemExit("  [!] Password cannot exceed 72 bytes.")
    if getpass.getpass("  Confirm:  ") != password:
        raise SystemExit("  [!] Passwords do not match.")
    return password


def _validate_admin(username: str, email: str, password: str) -> RegisterRequest:
    """Apply the same username, email and password rules as POST /auth/register."""
    try:
        return RegisterRequest(username=username, email=email, password=password)
    except pydantic.ValidationError as exc:
        fields = [".".join(str(p) for p in err["loc"]) for err in exc.errors()]
        raise ValidationError(f"Invalid {', '.join(fields)}", detail={"fields": fields}) from exc


def create_admin(username: str, email: str, password: str) -> int:
    """Create an admin account and return its id.

    Raises ValidationError on malformed input and ConflictError when the
    username or email is taken.
    """
    request = _validate_admin(username, email, password)
    users, sessions = _open_stores()
    try:
        credentials = CredentialStore(users, sessions, timeout=get_settings().operation_timeout_seconds)
        user = asyncio.run(credentials.create_admin(request.username, str(request.email), request.password))
        return user.id
    finally:
        users.close()


def purge_sessions() -> int:
    """Delete every expired refresh token. Returns the number removed."""
    users, sessions = _open_stores()
    try:
        return sessions.purge_expired()
    finally:
        users.close()


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="devhub",
        description="Operator commands for the DevHub API.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-admin --username root --email root@devhub.io
  python main.py purge-sessions
        """,
    )
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    admin_parser = subparsers.add_parser("create-admin", help="Create an admin account (password is prompted)")
    admin_parser.add_argument("--username", required=True, help="Login name, 3-50 chars of [A-Za-z0-9_-]")
    admin_parser.add_argument("--email", required=True, help="Email address used to log in")

    subparsers.add_parser("purge-sessions", help="Delete expired refresh tokens now")

    args = parser.parse_args()

    if args.command == "create-admin":
        password = _prompt_password()
        try:
            user_id = create_admin(args.username, args.email, password)
        except DevHubError as exc:
            print(f"  [!] {exc.message}")
            sys.exit(1)
        print(f"  Admin '{args.username}' created (id={user_id}).")

    elif args.command == "purge-sessions":
        removed = purge_sessions()
        print(f"  Removed {removed} expired session(s).")

    else:
        parser.print_help()


if __name__ == "__main__":
    main()
