#!/usr/bin/env python3
"""
Admin Password Utility
Changes the password of an admin account stored in the database.
Use it to replace the seeded default password after first deployment.
"""
import asyncio
import getpass
import sys

from village_portal.database import AsyncSessionLocal, close_db
from village_portal.services.identity import IdentityError, IdentityManager


async def change_password(login: str, new_password: str) -> bool:
    """
    Set a new password for the account matching `login` (username or email).

    Returns:
        True if the password was changed, False if no such account exists

    Raises:
        IdentityError: if the password violates the password policy
    """
    async with AsyncSessionLocal() as db:
        identity = IdentityManager(db)
        user = await identity.find_by_login(login)
        if user is None:
            return False
        await identity.set_password(user, new_password)
        await db.commit()
        return True


def main():
    """Main function to change an admin password."""
    print("=" * 60)
    print("Admin Password Utility")
    print("=" * 60)
    print()

    login = sys.argv[1] if len(sys.argv) > 1 else input("Username or email [admin]: ").strip() or "admin"

    password = getpass.getpass("Enter new password: ")
    if not password:
        print("\n❌ Error: Password cannot be empty")
        return 1

    password_confirm = getpass.getpass("Confirm password: ")
    if password != password_confirm:
        print("\n❌ Error: Passwords do not match")
        return 1

    async def run():
        try:
            return await change_password(login, password)
        finally:
            await close_db()

    try:
        changed = asyncio.run(run())
    except IdentityError as e:
        print("\n❌ Error: " + " ".join(e.errors))
        return 1

    if not changed:
        print(f"\n❌ Error: No account found for '{login}'")
        return 1

    print(f"\n✅ Password updated for '{login}'")
    return 0


if __name__ == "__main__":
    sys.exit(main())
