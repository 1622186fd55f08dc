"""
Nested-set tree engine shared by the role and permission partitions.

Every node stores a ``[left, right]`` interval. A node is an ancestor of
another exactly when its interval contains the other's, so ancestor and
descendant queries are single self-joins instead of recursive walks. The
price is paid on mutation: inserting or removing a node shifts the bounds of
every node to its right, which is why each mutation runs as one transaction
under the partition's write lock.

Usage:
    store = HierarchicalEntityStore(RoleNode, sessions)
    await store.reset(confirmed=True)
    admin_id = await store.insert("admin", "Administrators")
    await store.insert_path("/admin/billing", ["", "Billing staff"])
    await store.path_string(await store.resolve_id("billing"))  # "/admin/billing"
"""
from contextlib import asynccontextmanager
from itertools import groupby
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Sequence, Type, Union

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import aliased

from app.core.database.engine import transaction
from app.core.errors import InvalidArgument, PathNotFound, TitleNotFound
from app.core.locks import AsyncRWLock
from app.features.entities.models import NodeMixin
from app.features.entities.schemas import Node, NodeDepth
from app.utils import get_logger


log = get_logger(__name__)

SEPARATOR = "/"
ROOT_TITLE = "root"

Reference = Union[int, str]

# Called inside a removal transaction with the ids about to be deleted
RemovalHook = Callable[[AsyncSession, List[int]], Awaitable[None]]


def check_title(title: str) -> None:
    if not title or SEPARATOR in title:
        raise InvalidArgument(f"title must be non-empty and must not contain {SEPARATOR!r}: {title!r}")


class HierarchicalEntityStore:
    """
    One partition (roles or permissions) of the authority store.

    Methods ending in ``_in`` take an open session and no lock; they exist so
    callers that already hold the partition lock (the authorization engine)
    can compose several queries in a single transaction.
    """

    def __init__(
        self,
        model: Type[NodeMixin],
        sessions: async_sessionmaker[AsyncSession],
        lock_timeout: Optional[float] = None,
    ):
        self.model = model
        self.name: str = model.__tablename__
        self._sessions = sessions
        self.lock = AsyncRWLock(self.name, lock_timeout)

    @asynccontextmanager
    async def reading(self) -> AsyncIterator[AsyncSession]:
        async with self.lock.read():
            async with transaction(self._sessions) as session:
                yield session

    @asynccontextmanager
    async def writing(self) -> AsyncIterator[AsyncSession]:
        async with self.lock.write():
            async with transaction(self._sessions) as session:
                yield session

    # ------------------------------------------------------------------
    # Session-level helpers
    # ------------------------------------------------------------------

    async def root_id_in(self, session: AsyncSession) -> int:
        m = self.model
        root_id = await session.scalar(select(m.id).order_by(m.lft).limit(1))
        if root_id is None:
            raise InvalidArgument(f"{self.name} has no root node; reset the partition first")
        return root_id

    async def bounds_in(self, session: AsyncSession, node_id: int) -> tuple[int, int]:
        m = self.model
        row = (await session.execute(select(m.lft, m.rght).where(m.id == node_id))).first()
        if row is None:
            raise InvalidArgument(f"{self.name} node {node_id} does not exist")
        return row.lft, row.rght

    async def ancestors_in(self, session: AsyncSession, node_id: int) -> List[NodeDepth]:
        node = aliased(self.model, name="node")
        parent = aliased(self.model, name="parent")
        stmt = (
            select(parent.id, parent.title, parent.description)
            .where(node.id == node_id, node.lft.between(parent.lft, parent.rght))
            .order_by(parent.lft)
        )
        rows = (await session.execute(stmt)).all()
        if not rows:
            raise InvalidArgument(f"{self.name} node {node_id} does not exist")
        return [
            NodeDepth(id=row.id, title=row.title, description=row.description, depth=depth)
            for depth, row in enumerate(rows)
        ]

    async def depth_in(self, session: AsyncSession, node_id: int) -> int:
        node = aliased(self.model, name="node")
        parent = aliased(self.model, name="parent")
        count = await session.scalar(
            select(func.count(parent.id)).where(
                node.id == node_id, node.lft.between(parent.lft, parent.rght)
            )
        )
        if not count:
            raise InvalidArgument(f"{self.name} node {node_id} does not exist")
        return count - 1

    async def title_id_in(self, session: AsyncSession, title: str) -> int:
        m = self.model
        node_id = await session.scalar(
            select(m.id).where(m.title == title).order_by(m.lft).limit(1)
        )
        if node_id is None:
            raise TitleNotFound(title)
        return node_id

    async def path_id_in(self, session: AsyncSession, path: str) -> int:
        if not path.startswith(SEPARATOR):
            raise InvalidArgument(f"path must start with {SEPARATOR!r}: {path!r}")
        if len(path) > 1:
            path = path.rstrip(SEPARATOR)
        if path == "" or path == SEPARATOR:
            return await self.root_id_in(session)

        segments = path[1:].split(SEPARATOR)
        node = aliased(self.model, name="node")
        parent = aliased(self.model, name="parent")
        # Every node carrying the leaf title, with its ancestor titles in order
        stmt = (
            select(node.id, parent.title)
            .where(node.title == segments[-1], node.lft.between(parent.lft, parent.rght))
            .order_by(node.lft, parent.lft)
        )
        rows = (await session.execute(stmt)).all()
        for node_id, group in groupby(rows, key=lambda row: row.id):
            titles = [row.title for row in group]
            # titles[0] is the root
            if titles[1:] == segments:
                return node_id
        raise PathNotFound(path)

    async def resolve_in(self, session: AsyncSession, reference: Reference) -> int:
        if isinstance(reference, int):
            await self.bounds_in(session, reference)
            return reference
        if reference.startswith(SEPARATOR):
            return await self.path_id_in(session, reference)
        return await self.title_id_in(session, reference)

    async def _next_id(self, session: AsyncSession) -> int:
        m = self.model
        return (await session.scalar(select(func.coalesce(func.max(m.id), 0)))) + 1

    async def _insert(
        self,
        session: AsyncSession,
        title: str,
        description: str,
        parent_id: Optional[int],
    ) -> int:
        check_title(title)
        m = self.model
        if parent_id is None:
            parent_id = await self.root_id_in(session)
        _, right = await self.bounds_in(session, parent_id)

        # Open a two-unit gap at the parent's right bound
        await session.execute(update(m).where(m.rght >= right).values(rght=m.rght + 2))
        await session.execute(update(m).where(m.lft > right).values(lft=m.lft + 2))

        node_id = await self._next_id(session)
        await session.execute(
            insert(m).values(
                id=node_id, lft=right, rght=right + 1, title=title, description=description
            )
        )
        return node_id

    async def _subtree(
        self,
        session: AsyncSession,
        node_id: int,
        base_depth: int,
        only_depth: Optional[int] = None,
    ) -> List[NodeDepth]:
        left, right = await self.bounds_in(session, node_id)
        node = aliased(self.model, name="node")
        parent = aliased(self.model, name="parent")
        depth = func.count(parent.id) - 1 - base_depth
        stmt = (
            select(node.id, node.title, node.description, depth.label("depth"))
            .where(
                node.lft > left,
                node.lft < right,
                node.lft.between(parent.lft, parent.rght),
            )
            .group_by(node.id, node.title, node.description, node.lft)
            .order_by(node.lft)
        )
        if only_depth is not None:
            stmt = stmt.having(depth == only_depth)
        rows = (await session.execute(stmt)).all()
        return [
            NodeDepth(id=row.id, title=row.title, description=row.description, depth=row.depth)
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Structural mutation
    # ------------------------------------------------------------------

    async def insert(self, title: str, description: str = "", parent_id: Optional[int] = None) -> int:
        """Add ``title`` as the last child of ``parent_id`` (the root by default)."""
        async with self.writing() as session:
            node_id = await self._insert(session, title, description, parent_id)
        log.info("Inserted %s node %s (%r) under %s", self.name, node_id, title, parent_id or "root")
        return node_id

    async def insert_path(self, path: str, descriptions: Optional[Sequence[str]] = None) -> int:
        """
        Create every missing node along ``path``.

        Returns the number of nodes created; existing prefixes are left
        untouched, so repeating a call returns 0.
        """
        if not path.startswith(SEPARATOR):
            raise InvalidArgument(f"path must start with {SEPARATOR!r}: {path!r}")
        descriptions = list(descriptions or [])
        trimmed = path[len(SEPARATOR):].rstrip(SEPARATOR)
        segments = trimmed.split(SEPARATOR) if trimmed else []
        if any(segment == "" for segment in segments):
            raise InvalidArgument(f"path contains an empty segment: {path!r}")

        created = 0
        async with self.writing() as session:
            parent_id = await self.root_id_in(session)
            prefix = ""
            missing = False
            for i, segment in enumerate(segments):
                prefix += SEPARATOR + segment
                if not missing:
                    try:
                        parent_id = await self.path_id_in(session, prefix)
                        continue
                    except PathNotFound:
                        missing = True
                description = descriptions[i] if i < len(descriptions) else ""
                parent_id = await self._insert(session, segment, description, parent_id)
                created += 1
        if created:
            log.info("Created %d %s node(s) for path %s", created, self.name, path)
        return created

    async def remove(self, node_id: int, on_removed: Optional[RemovalHook] = None) -> None:
        """
        Delete one node; its children move up to its former parent.

        ``on_removed`` runs in the same transaction before the delete, so
        rows that refer to the node can go with it atomically.
        """
        m = self.model
        async with self.writing() as session:
            if node_id == await self.root_id_in(session):
                raise InvalidArgument(f"the {self.name} root cannot be removed")
            left, right = await self.bounds_in(session, node_id)
            if on_removed is not None:
                await on_removed(session, [node_id])

            await session.execute(delete(m).where(m.id == node_id))
            await session.execute(
                update(m)
                .where(m.lft.between(left, right))
                .values(lft=m.lft - 1, rght=m.rght - 1)
            )
            await session.execute(update(m).where(m.rght > right).values(rght=m.rght - 2))
            await session.execute(update(m).where(m.lft > right).values(lft=m.lft - 2))
        log.info("Removed %s node %s", self.name, node_id)

    async def remove_subtree(self, node_id: int, on_removed: Optional[RemovalHook] = None) -> List[int]:
        """Delete a node with all of its descendants and return the removed ids."""
        m = self.model
        async with self.writing() as session:
            if node_id == await self.root_id_in(session):
                raise InvalidArgument(f"the {self.name} root cannot be removed")
            left, right = await self.bounds_in(session, node_id)
            width = right - left + 1

            removed = list(
                (await session.scalars(select(m.id).where(m.lft.between(left, right)))).all()
            )
            if on_removed is not None:
                await on_removed(session, removed)
            await session.execute(delete(m).where(m.lft.between(left, right)))
            await session.execute(update(m).where(m.rght > right).values(rght=m.rght - width))
            await session.execute(update(m).where(m.lft > right).values(lft=m.lft - width))
        log.info("Removed %s subtree at %s (%d nodes)", self.name, node_id, len(removed))
        return removed

    async def edit(self, node_id: int, title: Optional[str] = None, description: Optional[str] = None) -> None:
        m = self.model
        values = {}
        if title is not None:
            check_title(title)
            values["title"] = title
        if description is not None:
            values["description"] = description
        async with self.writing() as session:
            await self.bounds_in(session, node_id)
            if values:
                await session.execute(update(m).where(m.id == node_id).values(**values))
        log.info("Edited %s node %s: %s", self.name, node_id, values)

    async def reset(self, confirmed: bool = False) -> None:
        """
        Truncate the partition and recreate the root with bounds (0, 1).

        Identifiers restart at 1. Refuses to run unless ``confirmed`` is true.
        """
        if not confirmed:
            log.warning("Refusing to reset %s without confirmation", self.name)
            raise InvalidArgument(f"reset of {self.name} requires confirmed=True")
        m = self.model
        async with self.writing() as session:
            await session.execute(delete(m))
            await session.execute(
                insert(m).values(id=1, lft=0, rght=1, title=ROOT_TITLE, description=ROOT_TITLE)
            )
        log.warning("Reset %s partition", self.name)

    async def ensure_root(self) -> None:
        """Create the root if the partition is empty; leave existing data alone."""
        m = self.model
        async with self.writing() as session:
            if await session.scalar(select(func.count(m.id))):
                return
            await session.execute(
                insert(m).values(id=1, lft=0, rght=1, title=ROOT_TITLE, description=ROOT_TITLE)
            )
        log.info("Created %s root", self.name)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def root_id(self) -> int:
        async with self.reading() as session:
            return await self.root_id_in(session)

    async def get(self, node_id: int) -> Node:
        m = self.model
        async with self.reading() as session:
            row = (
                await session.execute(
                    select(m.id, m.title, m.description, m.lft, m.rght).where(m.id == node_id)
                )
            ).first()
        if row is None:
            raise InvalidArgument(f"{self.name} node {node_id} does not exist")
        return Node(id=row.id, title=row.title, description=row.description, left=row.lft, right=row.rght)

    async def title(self, node_id: int) -> str:
        return (await self.get(node_id)).title

    async def description(self, node_id: int) -> str:
        return (await self.get(node_id)).description

    async def nodes(self) -> List[Node]:
        """Every node of the partition in pre-order."""
        m = self.model
        async with self.reading() as session:
            rows = (
                await session.execute(
                    select(m.id, m.title, m.description, m.lft, m.rght).order_by(m.lft)
                )
            ).all()
        return [
            Node(id=row.id, title=row.title, description=row.description, left=row.lft, right=row.rght)
            for row in rows
        ]

    async def children(self, node_id: int) -> List[NodeDepth]:
        async with self.reading() as session:
            base = await self.depth_in(session, node_id)
            return await self._subtree(session, node_id, base, only_depth=1)

    async def descendants(self, node_id: int, absolute: bool = False) -> List[NodeDepth]:
        async with self.reading() as session:
            base = 0 if absolute else await self.depth_in(session, node_id)
            return await self._subtree(session, node_id, base)

    async def ancestor_path(self, node_id: int) -> List[NodeDepth]:
        """Nodes from the root down to ``node_id`` inclusive."""
        async with self.reading() as session:
            return await self.ancestors_in(session, node_id)

    async def depth(self, node_id: int) -> int:
        async with self.reading() as session:
            return await self.depth_in(session, node_id)

    async def parent_node(self, node_id: int) -> Optional[int]:
        """Id of the direct parent, or None for the root."""
        ancestors = await self.ancestor_path(node_id)
        if len(ancestors) < 2:
            return None
        return ancestors[-2].id

    async def path_string(self, node_id: int) -> str:
        ancestors = await self.ancestor_path(node_id)
        if len(ancestors) == 1:
            return SEPARATOR
        return "".join(SEPARATOR + node.title for node in ancestors[1:])

    async def title_id(self, title: str) -> int:
        async with self.reading() as session:
            return await self.title_id_in(session, title)

    async def path_id(self, path: str) -> int:
        async with self.reading() as session:
            return await self.path_id_in(session, path)

    async def resolve_id(self, reference: Reference) -> int:
        """
        Resolve an id, a ``/path`` or a title.

        Titles are matched first-in-tree-order; when the same title appears
        in different subtrees, only a path tells them apart.
        """
        async with self.reading() as session:
            return await self.resolve_in(session, reference)

    async def count(self) -> int:
        m = self.model
        async with self.reading() as session:
            return await session.scalar(select(func.count(m.id)))
