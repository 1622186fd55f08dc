"""
Seed script to populate a default permission and role hierarchy.

Run this script after database initialization to create:
- Default permission tree (resource/action)
- Default role tree
- Initial role-permission assignments

Existing nodes and edges are kept, so the script can be run repeatedly.

Usage:
    uv run python -m scripts.seed_permissions
"""
import asyncio

from app.rbac import Rbac
from app.utils import get_logger


log = get_logger(__name__)


DEFAULT_PERMISSIONS = [
    # Claims permissions
    ("/claims", "Claims"),
    ("/claims/create", "Create new claims"),
    ("/claims/read", "View claims"),
    ("/claims/update", "Update existing claims"),
    ("/claims/approve", "Approve claims"),
    ("/claims/submit", "Submit claims"),

    # Reports permissions
    ("/reports", "Reports"),
    ("/reports/read", "View reports"),
    ("/reports/generate", "Generate reports"),
    ("/reports/export", "Export reports"),

    # Patient permissions
    ("/patients", "Patient records"),
    ("/patients/create", "Create patient records"),
    ("/patients/read", "View patient records"),
    ("/patients/update", "Update patient records"),

    # Billing permissions
    ("/billing", "Billing"),
    ("/billing/read", "View billing information"),
    ("/billing/process", "Process billing transactions"),

    # Access control management
    ("/rbac", "Access control"),
    ("/rbac/roles", "Manage roles"),
    ("/rbac/permissions", "Manage permissions"),
    ("/rbac/assignments", "Manage assignments"),
]


# Role path -> (description, permission paths). "/" is the permission root
# and therefore grants everything.
DEFAULT_ROLES = {
    "/system_admin": ("System administrator with all permissions", ["/"]),
    "/system_admin/org_admin": (
        "Organization administrator",
        ["/rbac/assignments", "/claims/approve", "/reports", "/patients", "/billing/read"],
    ),
    "/system_admin/org_admin/billing_manager": (
        "Billing department manager",
        ["/claims", "/billing", "/reports/read", "/reports/generate"],
    ),
    "/system_admin/org_admin/billing_manager/claims_processor": (
        "Claims processing specialist",
        ["/claims/create", "/claims/read", "/claims/update", "/claims/submit", "/patients/read"],
    ),
    "/auditor": (
        "Auditor with read-only access to most resources",
        ["/claims/read", "/reports/read", "/patients/read", "/billing/read"],
    ),
}


async def seed_permissions(rbac: Rbac) -> int:
    """Create the default permission tree. Returns the number of nodes created."""
    log.info("Creating default permissions...")
    created = 0
    for path, description in DEFAULT_PERMISSIONS:
        segments = path.strip("/").split("/")
        descriptions = [""] * (len(segments) - 1) + [description]
        created += await rbac.permissions.insert_path(path, descriptions)
    log.info("Created %d permissions", created)
    return created


async def seed_roles(rbac: Rbac) -> int:
    """Create the default role tree and assign its permissions."""
    log.info("Creating default roles...")
    created = 0
    for role_path, (description, permission_paths) in DEFAULT_ROLES.items():
        segments = role_path.strip("/").split("/")
        descriptions = [""] * (len(segments) - 1) + [description]
        created += await rbac.roles.insert_path(role_path, descriptions)
        role_id = await rbac.roles.resolve_id(role_path)
        for permission_path in permission_paths:
            await rbac.assign(role_id, permission_path)
        log.info("Role '%s' holds %d permissions", role_path, len(permission_paths))
    log.info("Default roles created successfully")
    return created


async def main():
    """Main function to seed permissions and roles."""
    log.info("Starting permission seeding...")
    rbac = Rbac()
    try:
        await rbac.init()
        await seed_permissions(rbac)
        await seed_roles(rbac)
        log.info("Permission seeding completed successfully!")
    except Exception as e:
        log.error("Error seeding permissions: %s", e, exc_info=True)
        raise
    finally:
        await rbac.close()


if __name__ == "__main__":
    asyncio.run(main())
