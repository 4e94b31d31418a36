"""
Seed script to populate the permission catalog and the system roles.

Run this script after database initialization to:
- Create or update the default permissions
- Create or update the system roles (admin, veterinario, cliente, asistente, recepcionista)
- Give users with an empty permission list their role's defaults
- Optionally create an admin user and print a bearer token for it

Usage:
    python -m scripts.seed_permissions
    python -m scripts.seed_permissions --admin-email admin@example.com
"""
import argparse
import asyncio
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import AsyncSessionLocal, init_db
from app.features.permissions.catalog import PermissionCatalog
from app.features.permissions.exceptions import RoleNotFound
from app.features.permissions.identifiers import ADMIN_ROLE
from app.features.roles.registry import RoleRegistry
from app.features.users.auth import create_access_token
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


DEFAULT_PERMISSIONS = [
    # Users
    ("users.view", "View system users"),
    ("users.create", "Create users"),
    ("users.edit", "Edit existing users"),
    ("users.delete", "Delete users"),

    # Pets
    ("pets.view", "View pets"),
    ("pets.create", "Register pets"),
    ("pets.edit", "Edit pets"),
    ("pets.delete", "Delete pets"),

    # Appointments
    ("appointments.view", "View appointments"),
    ("appointments.create", "Book appointments"),
    ("appointments.edit", "Edit appointments"),
    ("appointments.delete", "Cancel and delete appointments"),

    # Permission management
    ("permissions.view", "View the permission catalog and user permissions"),
    ("permissions.assign", "Assign permissions to users and roles"),

    # Reports
    ("reports.view", "View reports"),
    ("reports.create", "Create reports"),

    # Settings
    ("settings.view", "View system settings"),
    ("settings.edit", "Edit system settings"),

    # Veterinaries
    ("veterinaries.view", "View veterinaries"),
    ("veterinaries.create", "Register veterinaries"),
    ("veterinaries.edit", "Edit veterinary details"),
    ("veterinaries.update", "Update veterinaries"),
    ("veterinaries.delete", "Delete veterinaries"),
    ("veterinaries.manage_staff", "Manage veterinary staff"),
    ("veterinaries.stats", "View veterinary statistics"),
    ("veterinaries.verify", "Verify veterinaries"),

    # Role management
    ("roles.view", "View roles"),
    ("roles.create", "Create custom roles"),
    ("roles.edit", "Edit custom roles"),
    ("roles.delete", "Delete custom roles"),
]


DEFAULT_ROLES = {
    ADMIN_ROLE: {
        "display_name": "Administrator",
        "description": "Full access to every feature of the system",
        "priority": 100,
        "permissions": "ALL",
    },
    "veterinario": {
        "display_name": "Veterinarian",
        "description": "Veterinary professionals managing pets and appointments",
        "priority": 50,
        "permissions": [
            "pets.view", "pets.edit",
            "appointments.view", "appointments.create", "appointments.edit",
            "reports.view", "reports.create",
            "veterinaries.view", "veterinaries.edit", "veterinaries.manage_staff",
        ],
    },
    "asistente": {
        "display_name": "Veterinary Assistant",
        "description": "Assistants with limited access to pets and appointments",
        "priority": 30,
        "permissions": [
            "pets.view",
            "appointments.view", "appointments.create", "appointments.edit",
            "veterinaries.view",
        ],
    },
    "recepcionista": {
        "display_name": "Receptionist",
        "description": "Front desk staff handling appointments and clients",
        "priority": 20,
        "permissions": [
            "pets.view",
            "appointments.view", "appointments.create", "appointments.edit",
            "veterinaries.view",
        ],
    },
    "cliente": {
        "display_name": "Client",
        "description": "Pet owners with basic access to their pets and appointments",
        "priority": 10,
        "permissions": [
            "pets.view", "pets.create",
            "appointments.view", "appointments.create",
            "veterinaries.view",
        ],
    },
}


async def seed_permissions(catalog: PermissionCatalog) -> int:
    """
    Create missing permissions and refresh descriptions of existing ones.

    Returns:
        Number of permissions created
    """
    log.info("Seeding permission catalog...")
    created = 0

    for name, description in DEFAULT_PERMISSIONS:
        existing = await catalog.get(name)
        if existing is None:
            await catalog.create(name, description)
            created += 1
        elif existing.description != description:
            await catalog.update(name, description=description)
            log.debug("Updated description of permission %s", name)

    log.info("Created %d permission(s), %d already present", created, len(DEFAULT_PERMISSIONS) - created)
    return created


async def seed_roles(registry: RoleRegistry, catalog: PermissionCatalog):
    """Create or overwrite the system roles."""
    log.info("Seeding system roles...")
    all_permissions = sorted(await catalog.all_identifiers())

    for role_name, role_config in DEFAULT_ROLES.items():
        permissions = all_permissions if role_config["permissions"] == "ALL" else role_config["permissions"]
        role = await registry.seed_system_role(
            name=role_name,
            display_name=role_config["display_name"],
            description=role_config["description"],
            permissions=permissions,
            priority=role_config["priority"],
        )
        log.info("System role '%s' has %d permission(s)", role.name, len(role.permissions))


async def backfill_user_permissions(db: AsyncSession, registry: RoleRegistry) -> int:
    """Copy role defaults into users whose permission list is empty."""
    result = await db.execute(select(User))
    updated = 0

    for user in result.scalars().all():
        if user.permissions:
            continue
        try:
            defaults = await registry.default_permissions_for(user.role)
        except RoleNotFound:
            log.warning("User %s has unknown role '%s', leaving permissions empty", user.email, user.role)
            continue
        user.permissions = sorted(defaults)
        updated += 1

    await db.commit()
    log.info("Backfilled permissions for %d user(s)", updated)
    return updated


async def ensure_admin(db: AsyncSession, registry: RoleRegistry, email: str) -> User:
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if user is None:
        user = User(
            email=email,
            name="Administrator",
            role=ADMIN_ROLE,
            permissions=sorted(await registry.default_permissions_for(ADMIN_ROLE)),
        )
        db.add(user)
        await db.commit()
        await db.refresh(user)
        log.info("Created admin user %s", email)
    return user


async def main(admin_email: Optional[str] = None):
    """Main function to seed permissions and roles."""
    log.info("Starting permission seeding...")

    # Initialize database tables first
    log.info("Initializing database tables...")
    await init_db()

    async with AsyncSessionLocal() as db:
        catalog = PermissionCatalog(db)
        registry = RoleRegistry(db, catalog)
        try:
            await seed_permissions(catalog)
            await seed_roles(registry, catalog)
            await backfill_user_permissions(db, registry)

            stats = await catalog.stats()
            role_stats = await registry.stats()
            print(f"Permissions: {stats['total']}")
            for entry in stats["by_category"]:
                print(f"  - {entry['category']}: {entry['count']}")
            print(f"Roles: {role_stats['total']} ({role_stats['system_roles']} system, {role_stats['custom_roles']} custom)")

            if admin_email:
                admin = await ensure_admin(db, registry, admin_email)
                print(f"Admin token for {admin.email}:")
                print(create_access_token(admin.id))

        except Exception as e:
            log.error(f"Error seeding permissions: {e}", exc_info=True)
            await db.rollback()
            raise

    log.info("Permission seeding completed successfully!")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed the permission catalog and system roles")
    parser.add_argument("--admin-email", help="create this admin user if missing and print a token for it")
    args = parser.parse_args()
    asyncio.run(main(args.admin_email))
