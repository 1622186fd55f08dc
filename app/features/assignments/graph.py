"""
Edge bookkeeping between roles, permissions and subjects.

Assigning an existing pair is a no-op that returns the existing edge id;
a graph built with ``strict=True`` raises Conflict instead. Unassigning a
missing pair is a no-op. Edge writes are serialized by one asyncio lock,
which also guards identifier generation.
"""
import asyncio
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, insert, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database.engine import transaction
from app.core.errors import Conflict, InvalidArgument
from app.features.assignments.models import RolePermission, RoleSubject
from app.features.assignments.schemas import SubjectEdge
from app.features.entities.models import PermissionNode, RoleNode
from app.features.entities.schemas import Node
from app.utils import get_logger


log = get_logger(__name__)


class AssignmentGraph:
    def __init__(self, sessions: async_sessionmaker[AsyncSession], strict: bool = False):
        self._sessions = sessions
        self.strict = strict
        self._lock = asyncio.Lock()

    async def _require(self, session: AsyncSession, model, node_id: int) -> None:
        if await session.scalar(select(model.id).where(model.id == node_id)) is None:
            raise InvalidArgument(f"{model.__tablename__} node {node_id} does not exist")

    async def _next_id(self, session: AsyncSession, model) -> int:
        return (await session.scalar(select(func.coalesce(func.max(model.id), 0)))) + 1

    # ------------------------------------------------------------------
    # Role <-> permission
    # ------------------------------------------------------------------

    async def assign(self, role_id: int, permission_id: int) -> int:
        async with self._lock, transaction(self._sessions) as session:
            await self._require(session, RoleNode, role_id)
            await self._require(session, PermissionNode, permission_id)
            existing = await session.scalar(
                select(RolePermission.id).where(
                    RolePermission.role_id == role_id,
                    RolePermission.permission_id == permission_id,
                )
            )
            if existing is not None:
                if self.strict:
                    raise Conflict(f"role {role_id} already holds permission {permission_id}")
                log.debug("Role %s already holds permission %s", role_id, permission_id)
                return existing
            edge_id = await self._next_id(session, RolePermission)
            await session.execute(
                insert(RolePermission).values(id=edge_id, role_id=role_id, permission_id=permission_id)
            )
        log.info("Assigned permission %s to role %s", permission_id, role_id)
        return edge_id

    async def unassign(self, role_id: int, permission_id: int) -> None:
        async with self._lock, transaction(self._sessions) as session:
            result = await session.execute(
                delete(RolePermission).where(
                    RolePermission.role_id == role_id,
                    RolePermission.permission_id == permission_id,
                )
            )
        if result.rowcount:
            log.info("Unassigned permission %s from role %s", permission_id, role_id)

    async def drop_role_edges_in(self, session: AsyncSession, role_ids: List[int]) -> None:
        """Delete every permission and subject edge of ``role_ids`` in ``session``."""
        await session.execute(delete(RolePermission).where(RolePermission.role_id.in_(role_ids)))
        await session.execute(delete(RoleSubject).where(RoleSubject.role_id.in_(role_ids)))

    async def drop_permission_edges_in(self, session: AsyncSession, permission_ids: List[int]) -> None:
        await session.execute(
            delete(RolePermission).where(RolePermission.permission_id.in_(permission_ids))
        )

    async def unassign_permissions(self, role_ids: List[int]) -> int:
        """Drop every permission edge of the given roles."""
        async with self._lock, transaction(self._sessions) as session:
            result = await session.execute(
                delete(RolePermission).where(RolePermission.role_id.in_(role_ids))
            )
        return result.rowcount

    async def unassign_roles(self, permission_ids: List[int]) -> int:
        """Drop every role edge of the given permissions."""
        async with self._lock, transaction(self._sessions) as session:
            result = await session.execute(
                delete(RolePermission).where(RolePermission.permission_id.in_(permission_ids))
            )
        return result.rowcount

    async def role_permissions(self, role_id: int) -> List[Node]:
        """Permissions assigned directly to ``role_id``."""
        pn = PermissionNode
        stmt = (
            select(pn.id, pn.title, pn.description, pn.lft, pn.rght)
            .join(RolePermission, RolePermission.permission_id == pn.id)
            .where(RolePermission.role_id == role_id)
            .order_by(pn.lft)
        )
        async with transaction(self._sessions) as session:
            rows = (await session.execute(stmt)).all()
        return [Node(id=r.id, title=r.title, description=r.description, left=r.lft, right=r.rght) for r in rows]

    async def permission_roles(self, permission_id: int) -> List[Node]:
        """Roles holding ``permission_id`` through a direct edge."""
        rn = RoleNode
        stmt = (
            select(rn.id, rn.title, rn.description, rn.lft, rn.rght)
            .join(RolePermission, RolePermission.role_id == rn.id)
            .where(RolePermission.permission_id == permission_id)
            .order_by(rn.lft)
        )
        async with transaction(self._sessions) as session:
            rows = (await session.execute(stmt)).all()
        return [Node(id=r.id, title=r.title, description=r.description, left=r.lft, right=r.rght) for r in rows]

    async def reset_assignments(self, confirmed: bool = False) -> None:
        """
        Truncate role/permission edges and recreate the root-to-root edge.

        Edge identifiers restart at 1.
        """
        if not confirmed:
            log.warning("Refusing to reset role_permissions without confirmation")
            raise InvalidArgument("reset of role_permissions requires confirmed=True")
        async with self._lock, transaction(self._sessions) as session:
            role_root = await session.scalar(select(RoleNode.id).order_by(RoleNode.lft).limit(1))
            permission_root = await session.scalar(
                select(PermissionNode.id).order_by(PermissionNode.lft).limit(1)
            )
            if role_root is None or permission_root is None:
                raise InvalidArgument("reset both partitions before resetting assignments")
            await session.execute(delete(RolePermission))
            await session.execute(
                insert(RolePermission).values(id=1, role_id=role_root, permission_id=permission_root)
            )
        log.warning("Reset role_permissions")

    # ------------------------------------------------------------------
    # Role <-> subject
    # ------------------------------------------------------------------

    async def assign_subject(
        self, role_id: int, subject_id: str, constraint: Optional[Dict[str, Any]] = None
    ) -> int:
        subject_id = str(subject_id)
        async with self._lock, transaction(self._sessions) as session:
            await self._require(session, RoleNode, role_id)
            existing = await session.scalar(
                select(RoleSubject.id).where(
                    RoleSubject.role_id == role_id, RoleSubject.subject_id == subject_id
                )
            )
            if existing is not None:
                if self.strict:
                    raise Conflict(f"subject {subject_id!r} already holds role {role_id}")
                log.debug("Subject %r already holds role %s", subject_id, role_id)
                return existing
            edge_id = await self._next_id(session, RoleSubject)
            await session.execute(
                insert(RoleSubject).values(
                    id=edge_id, role_id=role_id, subject_id=subject_id, constraint=constraint
                )
            )
        log.info("Assigned role %s to subject %r", role_id, subject_id)
        return edge_id

    async def unassign_subject(self, role_id: int, subject_id: str) -> None:
        subject_id = str(subject_id)
        async with self._lock, transaction(self._sessions) as session:
            result = await session.execute(
                delete(RoleSubject).where(
                    RoleSubject.role_id == role_id, RoleSubject.subject_id == subject_id
                )
            )
        if result.rowcount:
            log.info("Unassigned role %s from subject %r", role_id, subject_id)

    async def unassign_subjects(self, role_ids: List[int]) -> int:
        """Drop every subject edge of the given roles."""
        async with self._lock, transaction(self._sessions) as session:
            result = await session.execute(delete(RoleSubject).where(RoleSubject.role_id.in_(role_ids)))
        return result.rowcount

    async def has_role(self, role_id: int, subject_id: str) -> bool:
        async with transaction(self._sessions) as session:
            edge = await session.scalar(
                select(RoleSubject.id).where(
                    RoleSubject.role_id == role_id, RoleSubject.subject_id == str(subject_id)
                )
            )
        return edge is not None

    async def role_count(self, subject_id: str) -> int:
        async with transaction(self._sessions) as session:
            return await session.scalar(
                select(func.count(RoleSubject.id)).where(RoleSubject.subject_id == str(subject_id))
            )

    async def subject_edges(self, subject_id: str) -> List[SubjectEdge]:
        stmt = (
            select(RoleSubject.id, RoleSubject.role_id, RoleSubject.subject_id, RoleSubject.constraint)
            .where(RoleSubject.subject_id == str(subject_id))
            .order_by(RoleSubject.id)
        )
        async with transaction(self._sessions) as session:
            rows = (await session.execute(stmt)).all()
        return [SubjectEdge.model_validate(row, from_attributes=True) for row in rows]

    async def reset_subject_assignments(self, confirmed: bool = False) -> None:
        if not confirmed:
            log.warning("Refusing to reset role_subjects without confirmation")
            raise InvalidArgument("reset of role_subjects requires confirmed=True")
        async with self._lock, transaction(self._sessions) as session:
            await session.execute(delete(RoleSubject))
        log.warning("Reset role_subjects")
