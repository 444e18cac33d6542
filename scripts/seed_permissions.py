"""
Seed script to populate the catalog and default role grants.

Run this script after database initialization to create:
- Default permissions, roles and programs
- Default role grants per program
- A development admin user (its bearer token is logged)

Usage:
    python -m scripts.seed_permissions
"""
import asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db, init_db
from app.features.catalog.models import Permission, Program, Role
from app.features.grants.store import SqlGrantStore
from app.features.users.auth import issue_token
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


DEFAULT_PERMISSIONS = [
    "view-passenger",
    "create-passenger",
    "delete-passenger",
]

DEFAULT_ROLES = [
    "super-admin",
    "pm-manager",
    "manager",
]

DEFAULT_PROGRAMS = [
    "North Route",
    "South Route",
]

# role -> program name -> permissions ("ALL" grants the whole catalog)
DEFAULT_ROLE_GRANTS = {
    "super-admin": {
        "North Route": "ALL",
        "South Route": "ALL",
    },
    "pm-manager": {
        "North Route": ["view-passenger", "create-passenger", "delete-passenger"],
        "South Route": ["view-passenger", "create-passenger"],
    },
    "manager": {
        "North Route": ["view-passenger"],
        "South Route": [],
    },
}

DEV_ADMIN = {"name": "Admin", "email": "admin@example.com"}


async def get_or_create(db: AsyncSession, model, name: str):
    result = await db.execute(select(model).where(model.name == name))
    existing = result.scalars().first()
    if existing:
        log.debug(f"{model.__name__} '{name}' already exists, skipping")
        return existing
    entry = model(name=name)
    db.add(entry)
    log.info(f"Created {model.__name__.lower()}: {name}")
    return entry


async def seed_catalog(db: AsyncSession) -> tuple[dict[str, Role], dict[str, Program]]:
    """
    Create default permissions, roles and programs.

    Returns:
        Roles and programs by name
    """
    log.info("Creating catalog...")
    for name in DEFAULT_PERMISSIONS:
        await get_or_create(db, Permission, name)
    roles = {name: await get_or_create(db, Role, name) for name in DEFAULT_ROLES}
    programs = {name: await get_or_create(db, Program, name) for name in DEFAULT_PROGRAMS}
    await db.commit()
    return roles, programs


async def seed_role_grants(db: AsyncSession, roles: dict[str, Role], programs: dict[str, Program]):
    """Write the default role grants through the grant store."""
    log.info("Creating default role grants...")
    store = SqlGrantStore(db)
    for role_name, grants in DEFAULT_ROLE_GRANTS.items():
        for program_name, permissions in grants.items():
            names = DEFAULT_PERMISSIONS if permissions == "ALL" else permissions
            message = await store.set_role_grant(roles[role_name].id, programs[program_name].id, names)
            log.info(message)


async def seed_admin(db: AsyncSession) -> User:
    result = await db.execute(select(User).where(User.email == DEV_ADMIN["email"]))
    admin = result.scalars().first()
    if admin is None:
        admin = User(name=DEV_ADMIN["name"], email=DEV_ADMIN["email"], is_admin=True)
        db.add(admin)
        await db.commit()
        log.info(f"Created admin user {admin.email}")
    return admin


async def main():
    """Main function to seed the catalog and role grants."""
    log.info("Starting seeding...")

    # Initialize database tables first
    await init_db()

    async for db in get_db():
        try:
            roles, programs = await seed_catalog(db)
            await seed_role_grants(db, roles, programs)
            admin = await seed_admin(db)

            log.info("Seeding completed successfully!")
            log.info(f"Development token for {admin.email}: {issue_token(admin.id)}")

        except Exception as e:
            log.error(f"Error seeding: {e}", exc_info=True)
            await db.rollback()
            raise

        break  # Only use first session


if __name__ == "__main__":
    asyncio.run(main())
