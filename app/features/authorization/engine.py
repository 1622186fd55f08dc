"""
Authorization queries over the two hierarchies and their edges.

A grant on a permission covers every permission below it: a subject holds
permission P when one of its roles has an edge to P or to any ancestor of P.

Role inheritance is a policy switch. When enabled, a subject holding role R
also holds every role below R, so the edges of R's descendants count as well.
It is disabled by default.

Every query reads both partitions under their read locks (roles first, then
permissions) and runs in one transaction, so a concurrent structural change
is seen either entirely or not at all.
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import aliased

from app.core.database.engine import transaction
from app.core.errors import Forbidden
from app.features.assignments.models import RolePermission, RoleSubject
from app.features.entities.models import PermissionNode, RoleNode
from app.features.entities.store import HierarchicalEntityStore, Reference
from app.utils import get_logger


log = get_logger(__name__)


class AuthorizationEngine:
    def __init__(
        self,
        roles: HierarchicalEntityStore,
        permissions: HierarchicalEntityStore,
        sessions: async_sessionmaker[AsyncSession],
        role_inheritance: bool = False,
    ):
        self.roles = roles
        self.permissions = permissions
        self.role_inheritance = role_inheritance
        self._sessions = sessions

    @asynccontextmanager
    async def _view(self) -> AsyncIterator[AsyncSession]:
        async with self.roles.lock.read(), self.permissions.lock.read():
            async with transaction(self._sessions) as session:
                yield session

    def _granting_edges(self, target_left: int, target_right: int):
        """Edges to the target permission or to any of its ancestors."""
        pn = aliased(PermissionNode, name="granted_permission")
        return (
            select(RolePermission.id)
            .join(pn, pn.id == RolePermission.permission_id)
            .where(pn.lft <= target_left, pn.rght >= target_right)
        )

    def _through_roles(self, stmt):
        """Join ``stmt`` to the roles whose edges count for a held role."""
        if not self.role_inheritance:
            held = aliased(RoleNode, name="held")
            return stmt.join(held, held.id == RolePermission.role_id), held
        granted = aliased(RoleNode, name="granted_role")
        held = aliased(RoleNode, name="held")
        stmt = (
            stmt.join(granted, granted.id == RolePermission.role_id)
            .join(held, granted.lft.between(held.lft, held.rght))
        )
        return stmt, held

    async def has_direct_edge(self, role_id: int, permission_id: int) -> bool:
        """True when an edge joins exactly these two nodes; no hierarchy walk."""
        async with transaction(self._sessions) as session:
            edge = await session.scalar(
                select(RolePermission.id).where(
                    RolePermission.role_id == role_id,
                    RolePermission.permission_id == permission_id,
                )
            )
        return edge is not None

    async def role_has_permission(self, role: Reference, permission: Reference) -> bool:
        async with self._view() as session:
            role_id = await self.roles.resolve_in(session, role)
            permission_id = await self.permissions.resolve_in(session, permission)
            left, right = await self.permissions.bounds_in(session, permission_id)
            stmt, held = self._through_roles(self._granting_edges(left, right))
            edge = await session.scalar(stmt.where(held.id == role_id).limit(1))
        return edge is not None

    async def check(self, permission: Reference, subject_id: str) -> bool:
        """Does ``subject_id`` hold ``permission`` through any assigned role?"""
        subject_id = str(subject_id)
        async with self._view() as session:
            permission_id = await self.permissions.resolve_in(session, permission)
            left, right = await self.permissions.bounds_in(session, permission_id)
            stmt, held = self._through_roles(self._granting_edges(left, right))
            stmt = (
                stmt.join(RoleSubject, RoleSubject.role_id == held.id)
                .where(RoleSubject.subject_id == subject_id)
                .limit(1)
            )
            edge = await session.scalar(stmt)
        allowed = edge is not None
        log.debug("Check %r for subject %r: %s", permission, subject_id, allowed)
        return allowed

    async def enforce(self, permission: Reference, subject_id: str) -> None:
        if not await self.check(permission, subject_id):
            raise Forbidden(f"subject {subject_id!r} lacks permission {permission!r}")

    async def all_roles(self, subject_id: str, within: Optional[Reference] = None) -> List[int]:
        """
        Ids of the roles assigned to ``subject_id``, in tree order.

        With ``within``, only roles inside that role's subtree (itself
        included) are returned.
        """
        rn = RoleNode
        stmt = (
            select(rn.id)
            .join(RoleSubject, RoleSubject.role_id == rn.id)
            .where(RoleSubject.subject_id == str(subject_id))
            .order_by(rn.lft)
        )
        async with self._view() as session:
            if within is not None:
                scope_id = await self.roles.resolve_in(session, within)
                left, right = await self.roles.bounds_in(session, scope_id)
                stmt = stmt.where(rn.lft.between(left, right))
            return list((await session.scalars(stmt)).all())
