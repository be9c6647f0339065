"""
Database seeding script for initial users.

Creates the ADMIN, STAFF and READ_ONLY back-office accounts. There is no
self-registration, so run this once after the database is set up.
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select
from backend.app.db.session import AsyncSessionLocal, engine, Base
from backend.app.models.user import User
from backend.app.models.enums import UserRole
from backend.app.core.security import get_password_hash

SEED_USERS = [
    ("owner", "owner@jewelledger.local", "Shop Owner", "owner123", UserRole.ADMIN),
    ("cashier", "cashier@jewelledger.local", "Counter Staff", "cashier123", UserRole.STAFF),
    ("auditor", "auditor@jewelledger.local", "Accountant", "auditor123", UserRole.READ_ONLY),
]


async def seed_users():
    """
    Seed initial users with different roles.

    Existing usernames are left untouched.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        print("Starting user seeding...")

        for username, email, full_name, password, role in SEED_USERS:
            result = await db.execute(select(User).where(User.username == username))
            if result.scalar_one_or_none():
                print(f"  {role.value} user '{username}' already exists, skipping")
                continue

            db.add(User(
                email=email,
                username=username,
                full_name=full_name,
                hashed_password=get_password_hash(password),
                role=role,
                is_active=True,
            ))
            print(f"  Created {role.value} user (username: {username}, password: {password})")

        await db.commit()

    await engine.dispose()
    print("User seeding completed.")


if __name__ == "__main__":
    asyncio.run(seed_users())
