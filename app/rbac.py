"""
The authority store: both hierarchies, their edges, and the authorization engine.

An ``Rbac`` owns the database engine and hands its session factory to every
component; nothing is kept at module level, so tests and embedders may run
several independent stores side by side.

Usage:
    rbac = Rbac("sqlite+aiosqlite:///./rbac.db")
    await rbac.init()
    await rbac.permissions.insert_path("/posts/delete")
    await rbac.roles.insert("moderator")
    await rbac.assign("moderator", "/posts")
    await rbac.assign_subject("moderator", "user-105")
    await rbac.check("delete", "user-105")  # True: /posts covers /posts/delete
"""
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from app.core import config
from app.core.database.engine import create_engine, create_sessionmaker, init_db
from app.features.assignments.graph import AssignmentGraph
from app.features.authorization.engine import AuthorizationEngine
from app.features.entities.models import PermissionNode, RoleNode
from app.features.entities.store import HierarchicalEntityStore, Reference
from app.utils import get_logger


log = get_logger(__name__)


class Rbac:
    def __init__(
        self,
        database_url: Optional[str] = None,
        *,
        engine: Optional[AsyncEngine] = None,
        lock_timeout: Optional[float] = config.LOCK_TIMEOUT,
        role_inheritance: bool = config.ROLE_INHERITANCE,
        strict_assignments: bool = False,
    ):
        self.engine = engine or create_engine(database_url)
        self.sessions = create_sessionmaker(self.engine)
        self.roles = HierarchicalEntityStore(RoleNode, self.sessions, lock_timeout)
        self.permissions = HierarchicalEntityStore(PermissionNode, self.sessions, lock_timeout)
        self.assignments = AssignmentGraph(self.sessions, strict=strict_assignments)
        self.authorization = AuthorizationEngine(
            self.roles, self.permissions, self.sessions, role_inheritance=role_inheritance
        )

    async def init(self) -> None:
        """Create the tables and any missing root; existing data is kept."""
        await init_db(self.engine)
        await self.roles.ensure_root()
        await self.permissions.ensure_root()

    async def close(self) -> None:
        await self.engine.dispose()

    async def reset(self, confirmed: bool = False) -> None:
        """Empty both hierarchies and all edges, keeping the root-to-root edge."""
        log.warning("Resetting authority store")
        await self.roles.reset(confirmed)
        await self.permissions.reset(confirmed)
        await self.assignments.reset_assignments(confirmed)
        await self.assignments.reset_subject_assignments(confirmed)

    # ------------------------------------------------------------------
    # Role <-> permission
    # ------------------------------------------------------------------

    async def assign(self, role: Reference, permission: Reference) -> int:
        role_id = await self.roles.resolve_id(role)
        permission_id = await self.permissions.resolve_id(permission)
        return await self.assignments.assign(role_id, permission_id)

    async def unassign(self, role: Reference, permission: Reference) -> None:
        role_id = await self.roles.resolve_id(role)
        permission_id = await self.permissions.resolve_id(permission)
        await self.assignments.unassign(role_id, permission_id)

    async def role_permissions(self, role: Reference):
        return await self.assignments.role_permissions(await self.roles.resolve_id(role))

    async def permission_roles(self, permission: Reference):
        return await self.assignments.permission_roles(await self.permissions.resolve_id(permission))

    async def role_has_permission(self, role: Reference, permission: Reference) -> bool:
        return await self.authorization.role_has_permission(role, permission)

    # ------------------------------------------------------------------
    # Role <-> subject
    # ------------------------------------------------------------------

    async def assign_subject(
        self, role: Reference, subject_id: str, constraint: Optional[Dict[str, Any]] = None
    ) -> int:
        role_id = await self.roles.resolve_id(role)
        return await self.assignments.assign_subject(role_id, subject_id, constraint)

    async def unassign_subject(self, role: Reference, subject_id: str) -> None:
        role_id = await self.roles.resolve_id(role)
        await self.assignments.unassign_subject(role_id, subject_id)

    async def has_role(self, role: Reference, subject_id: str) -> bool:
        role_id = await self.roles.resolve_id(role)
        return await self.assignments.has_role(role_id, subject_id)

    async def all_roles(self, subject_id: str, within: Optional[Reference] = None) -> List[int]:
        return await self.authorization.all_roles(subject_id, within)

    async def role_count(self, subject_id: str) -> int:
        return await self.assignments.role_count(subject_id)

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    async def check(self, permission: Reference, subject_id: str) -> bool:
        return await self.authorization.check(permission, subject_id)

    async def enforce(self, permission: Reference, subject_id: str) -> None:
        await self.authorization.enforce(permission, subject_id)

    # ------------------------------------------------------------------
    # Removal with edge cleanup
    # ------------------------------------------------------------------

    async def remove_role(self, role: Reference, recursive: bool = False) -> List[int]:
        """
        Remove a role and drop the edges of every removed node.

        Without ``recursive`` the role's children move up one level and keep
        their edges. The edges go in the same transaction as the nodes.
        Returns the removed role ids.
        """
        role_id = await self.roles.resolve_id(role)
        hook = self.assignments.drop_role_edges_in
        if recursive:
            return await self.roles.remove_subtree(role_id, on_removed=hook)
        await self.roles.remove(role_id, on_removed=hook)
        return [role_id]

    async def remove_permission(self, permission: Reference, recursive: bool = False) -> List[int]:
        permission_id = await self.permissions.resolve_id(permission)
        hook = self.assignments.drop_permission_edges_in
        if recursive:
            return await self.permissions.remove_subtree(permission_id, on_removed=hook)
        await self.permissions.remove(permission_id, on_removed=hook)
        return [permission_id]
