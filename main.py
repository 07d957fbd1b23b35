#!/usr/bin/env python3
"""
EduMate -- administrative command line.

Usage:
  python main.py create-admin alice
  python main.py create-admin alice --password-stdin < secret.txt
  python main.py serve --host 0.0.0.0 --port 8080

Admin accounts cannot be self-registered over HTTP; this is how the first one
is made. Configuration comes from the same environment variables as the
server (SECRET_KEY, AUTH_DB_URL, BCRYPT_ROUNDS, ...).
"""

import argparse
import getpass
import sys

from sqlalchemy.exc import IntegrityError

from auth.credentials import MAX_PASSWORD_BYTES, PasswordEncoder, password_fits
from auth.models import User
from auth.store import DEFAULT_DB_URL, UserStore
from core.config import get_settings


def _read_password(from_stdin: bool) -> str:
    if from_stdin:
        return sys.stdin.readline().rstrip("\n")
    first = getpass.getpass("Password: ")
    second = getpass.getpass("Repeat password: ")
    if first != second:
        print("  [!] Passwords do not match.")
        return ""
    return first


def create_admin(username: str, password_stdin: bool = False) -> int:
    """Create an admin account. Returns a process exit code."""
    settings = get_settings()
    password = _read_password(password_stdin)
    if len(password) < 8:
        print("  [!] Password must be at least 8 characters.")
        return 1
    if not password_fits(password):
        print(f"  [!] Password must be at most {MAX_PASSWORD_BYTES} bytes.")
        return 1

    encoder = PasswordEncoder(rounds=settings.bcrypt_rounds)
    store = UserStore(settings.auth_db_url or DEFAULT_DB_URL)
    try:
        user_id = store.create_user(User(username=username, role="admin", hashed_password=encoder.hash(password)))
    except IntegrityError:
        print(f"  [!] User '{username}' already exists.")
        return 1
    finally:
        store.close()
    print(f"  Created admin '{username}' (id={user_id}).")
    return 0


def serve(host: str, port: int, reload: bool) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=host, port=port, reload=reload)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="EduMate backend administration.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    admin = sub.add_parser("create-admin", help="Create an admin account")
    admin.add_argument("username")
    admin.add_argument("--password-stdin", action="store_true", help="Read the password from stdin")

    run = sub.add_parser("serve", help="Run the API with uvicorn")
    run.add_argument("--host", default="127.0.0.1")
    run.add_argument("--port", type=int, default=8000)
    run.add_argument("--reload", action="store_true")

    args = parser.parse_args(argv)
    if args.command == "create-admin":
        return create_admin(args.username, args.password_stdin)
    return serve(args.host, args.port, args.reload)


if __name__ == "__main__":
    sys.exit(main())
