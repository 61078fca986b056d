#!/usr/bin/env python3
"""
Create an administrator account, or reset the password and role of an existing one.

Usage:
    python -m scripts.create_admin --username admin --email admin@example.com
    python -m scripts.create_admin --username admin --email admin@example.com --reset

The password is read from ADMIN_PASSWORD when set, otherwise prompted for.
"""

from __future__ import annotations

import argparse
import asyncio
import getpass
import os
import sys

from access_core.core.errors import AccessError
from access_core.core.permissions import ADMIN_ROLE
from access_core.core.security import get_password_hash
from access_core.db.session import session_scope
from access_core.services import accounts


def _read_password() -> str:
    password = os.getenv("ADMIN_PASSWORD")
    if password:
        return password
    password = getpass.getpass("Password: ")
    if password != getpass.getpass("Repeat password: "):
        raise SystemExit("Passwords do not match.")
    return password


async def create_admin(username: str, email: str, password: str, *, reset: bool) -> int:
    async with session_scope() as db:
        await accounts.ensure_default_role_permissions(db)
        existing = await accounts.find_by_handle(db, username) or await accounts.find_by_handle(db, email)
        if existing is not None:
            if not reset:
                print(f"Account '{existing.username}' already exists; pass --reset to update it.")
                return 1
            existing.hashed_password = get_password_hash(password)
            existing.role = ADMIN_ROLE
            existing.is_active = True
            db.add(existing)
            await db.commit()
            print(f"Updated administrator '{existing.username}'.")
            return 0

        user = await accounts.create_account(
            db, username=username, email=email, password=password, role=ADMIN_ROLE
        )
        print(f"Created administrator '{user.username}' ({user.id}).")
        return 0


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--username", required=True)
    parser.add_argument("--email", required=True)
    parser.add_argument("--reset", action="store_true", help="update an existing account instead of failing")
    args = parser.parse_args()

    try:
        return asyncio.run(create_admin(args.username, args.email, _read_password(), reset=args.reset))
    except AccessError as exc:
        print(f"Error: {exc.message}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
