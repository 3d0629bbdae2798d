#!/usr/bin/env python
"""Create an admin account, or promote an existing user to admin."""

import argparse
import asyncio
import getpass
import sys

from homestead.auth import hash_password, validate_password
from homestead.database.crud import create_user, get_user_by_email, set_user_admin, set_user_password
from homestead.database.engine import AsyncSessionLocal, close_db, init_db


async def _run(email: str, password: str | None, reset_password: bool) -> int:
    await init_db()
    try:
        async with AsyncSessionLocal() as session:
            user = await get_user_by_email(session, email)
            if user is not None:
                if not user.is_admin:
                    await set_user_admin(session, user, True)
                    print(f"Promoted {email} to admin.")
                else:
                    print(f"{email} is already an admin.")
                if reset_password and password:
                    await set_user_password(session, user, hash_password(password))
                    print("Password updated.")
                return 0

            if not password:
                print("ERROR: A password is required for a new account", file=sys.stderr)
                return 1
            user = await create_user(session, email, hash_password(password), is_admin=True)
            print(f"Created admin {user.email} (id={user.id}).")
            return 0
    finally:
        await close_db()


def main():
    parser = argparse.ArgumentParser(description="Create or promote a Homestead admin account")
    parser.add_argument("email", help="Account email address")
    parser.add_argument("--password", help="Password (prompted for when omitted)")
    parser.add_argument("--reset-password", action="store_true", help="Also replace the password of an existing user")
    args = parser.parse_args()

    password = args.password
    if password is None:
        password = getpass.getpass("Password: ")
        if password != getpass.getpass("Confirm password: "):
            print("ERROR: Passwords do not match", file=sys.stderr)
            sys.exit(1)

    if password:
        is_valid, error_msg = validate_password(password)
        if not is_valid:
            print(f"ERROR: {error_msg}", file=sys.stderr)
            sys.exit(1)

    sys.exit(asyncio.run(_run(args.email.strip().lower(), password, args.reset_password)))


if __name__ == "__main__":
    main()
