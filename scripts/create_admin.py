#!/usr/bin/env python3
"""Create (or promote) an Admin account for AuthCore.

Registration over the API always creates Students; operators use this
script to bootstrap the first Admin. The account is created with its email
already verified.

Usage:
    python scripts/create_admin.py --email admin@example.com --name "Site Admin"
    ADMIN_EMAIL=admin@example.com ADMIN_PASSWORD=... python scripts/create_admin.py

Environment Variables:
    ADMIN_EMAIL: Email for the admin user
    ADMIN_PASSWORD: Password for the admin user (prompted for when unset)
    DATABASE_URL: Database to write to (same as the server)
"""

import argparse
import asyncio
import getpass
import os
import sys
from pathlib import Path

# Allow running from a checkout without installing the package
BACKEND = Path(__file__).resolve().parent.parent / "backend"
if BACKEND.is_dir() and str(BACKEND) not in sys.path:
    sys.path.insert(0, str(BACKEND))

MIN_PASSWORD_LENGTH = 12


async def create_admin(session, name: str, email: str, password: str) -> tuple[str, str]:
    """Create a verified Admin, or promote an existing account.

    Returns (user id, status) where status is 'created', 'promoted' or
    'already_admin'.
    """
    from app.models.user import UserRole
    from app.services.auth import hash_password
    from app.services.credential_store import CredentialStore

    store = CredentialStore(session)
    existing = await store.get_by_email(email)

    if existing is not None:
        if existing.role == UserRole.ADMIN:
            return str(existing.id), "already_admin"
        await store.update_fields(existing.id, role=UserRole.ADMIN, is_email_verified=True)
        await store.commit()
        return str(existing.id), "promoted"

    user = await store.create_user(
        name,
        email,
        hash_password(password),
        role=UserRole.ADMIN,
        is_email_verified=True,
    )
    await store.commit()
    return str(user.id), "created"


async def _run(name: str, email: str, password: str) -> None:
    from app.core.database import async_session_maker, engine, init_db

    await init_db()
    try:
        async with async_session_maker() as session:
            user_id, status = await create_admin(session, name, email, password)
    finally:
        await engine.dispose()

    messages = {
        "created": f"Created admin user: {email} (id: {user_id})",
        "promoted": f"Promoted existing user {email} to Admin (id: {user_id})",
        "already_admin": f"User {email} is already an Admin (id: {user_id})",
    }
    print(messages[status])


def main():
    parser = argparse.ArgumentParser(
        description="Create an AuthCore Admin account",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--email",
        default=os.environ.get("ADMIN_EMAIL"),
        help="Admin email (or set ADMIN_EMAIL env var)",
    )
    parser.add_argument("--name", default="Administrator", help="Display name")
    parser.add_argument(
        "--password",
        default=os.environ.get("ADMIN_PASSWORD"),
        help="Admin password (or set ADMIN_PASSWORD env var; prompted if unset)",
    )
    args = parser.parse_args()

    if not args.email:
        print("ERROR: --email or ADMIN_EMAIL environment variable required")
        sys.exit(1)

    password = args.password or getpass.getpass("Admin password: ")
    if len(password) < MIN_PASSWORD_LENGTH:
        print(f"ERROR: password must be at least {MIN_PASSWORD_LENGTH} characters.")
        sys.exit(1)

    asyncio.run(_run(args.name, args.email, password))


if __name__ == "__main__":
    main()
