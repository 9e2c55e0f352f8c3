#!/usr/bin/env python3
"""
Credvault -- administrative command line.

Self-registration always creates USER accounts, so the first ADMIN has to be
created out of band. This CLI talks to the same store the API uses.

Usage:
  python main.py create-admin --email admin@example.com --name "Site Admin"
  python main.py hash-password

Environment variables:
  DATABASE_URL    SQLAlchemy URL of the credential database.
  BCRYPT_ROUNDS   Cost factor for new hashes (default 10).
  JWT_ACCESS_SECRET / JWT_REFRESH_SECRET
                  Required unless DEBUG=true (validated on startup even though
                  the CLI never signs tokens, so a broken .env fails fast).
"""

import argparse
import getpass
import sys

from auth.hasher import PasswordHasher
from auth.models import ROLE_ADMIN
from auth.store import DuplicateEmailError, UserStore
from core.config import get_settings


def _prompt_password() -> str:
    """Read a password twice without echo. Exits on mismatch or empty input."""
    first = getpass.getpass("Password: ")
    second = getpass.getpass("Confirm password: ")
    if not first:
        print("  [!] Password must not be empty.")
        sys.exit(1)
    if first != second:
        print("  [!] Passwords do not match.")
        sys.exit(1)
    return first


def create_admin(email: str, name: str) -> int:
    settings = get_settings()
    hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
    password_hash = hasher.hash(_prompt_password())
    store = UserStore(settings.database_url)
    try:
        user = store.create(email=email, name=name, password_hash=password_hash, role=ROLE_ADMIN)
    except DuplicateEmailError:
        print(f"  [!] A user with email '{email}' already exists.")
        return 1
    finally:
        store.close()
    print(f"  Created admin {user.email} (id {user.id})")
    return 0


def hash_password() -> int:
    settings = get_settings()
    print(PasswordHasher(rounds=settings.bcrypt_rounds).hash(_prompt_password()))
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Credvault administration",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    admin = sub.add_parser("create-admin", help="Create an ADMIN account")
    admin.add_argument("--email", required=True, help="Login email of the new admin")
    admin.add_argument("--name", required=True, help="Display name")

    sub.add_parser("hash-password", help="Print a bcrypt hash for seeding")

    args = parser.parse_args(argv)
    if args.command == "create-admin":
        return create_admin(args.email, args.name)
    return hash_password()


if __name__ == "__main__":
    sys.exit(main())
