"""
Role and permission hierarchy API routes.

Both partitions expose the same endpoints; ``build_router`` is mounted once
under ``/roles`` and once under ``/permissions``.
"""
from typing import List
from fastapi import APIRouter, Depends, status

from app.core.dependencies import get_rbac, parse_reference
from app.features.entities.schemas import (
    Node,
    NodeCount,
    NodeCreate,
    NodeDepth,
    NodeDepthValue,
    NodeParent,
    NodePath,
    NodeRef,
    NodeUpdate,
    PathCreate,
    PathCreated,
)
from app.features.entities.store import HierarchicalEntityStore
from app.rbac import Rbac


PARTITIONS = ("roles", "permissions")


def build_router(partition: str) -> APIRouter:
    if partition not in PARTITIONS:
        raise ValueError(f"unknown partition: {partition}")

    router = APIRouter()

    def get_store(rbac: Rbac = Depends(get_rbac)) -> HierarchicalEntityStore:
        return getattr(rbac, partition)

    @router.post("", response_model=NodeRef, status_code=status.HTTP_201_CREATED)
    async def insert_node(node: NodeCreate, store: HierarchicalEntityStore = Depends(get_store)):
        """Insert a node as the last child of its parent (root by default)."""
        node_id = await store.insert(node.title, node.description, node.parent_id)
        return NodeRef(id=node_id)

    @router.post("/paths", response_model=PathCreated, status_code=status.HTTP_201_CREATED)
    async def insert_path(body: PathCreate, store: HierarchicalEntityStore = Depends(get_store)):
        """Create every missing node along a path."""
        created = await store.insert_path(body.path, body.descriptions)
        return PathCreated(created=created)

    @router.get("", response_model=List[Node])
    async def list_nodes(store: HierarchicalEntityStore = Depends(get_store)):
        """Every node with its bounds, in tree order."""
        return await store.nodes()

    @router.get("/count", response_model=NodeCount)
    async def count_nodes(store: HierarchicalEntityStore = Depends(get_store)):
        return NodeCount(count=await store.count())

    @router.get("/resolve", response_model=NodeRef)
    async def resolve(ref: str, store: HierarchicalEntityStore = Depends(get_store)):
        """Resolve a title or a /path to an id."""
        return NodeRef(id=await store.resolve_id(parse_reference(ref)))

    @router.get("/{node_id}", response_model=Node)
    async def get_node(node_id: int, store: HierarchicalEntityStore = Depends(get_store)):
        return await store.get(node_id)

    @router.patch("/{node_id}", response_model=Node)
    async def edit_node(
        node_id: int,
        node_update: NodeUpdate,
        store: HierarchicalEntityStore = Depends(get_store),
    ):
        """Edit title and/or description; bounds are unaffected."""
        await store.edit(node_id, node_update.title, node_update.description)
        return await store.get(node_id)

    @router.delete("/{node_id}", response_model=List[int])
    async def remove_node(node_id: int, recursive: bool = False, rbac: Rbac = Depends(get_rbac)):
        """
        Remove a node and its edges.

        With ``recursive`` the whole subtree goes; otherwise the children are
        reattached to the removed node's parent. Returns the removed ids.
        """
        if partition == "roles":
            return await rbac.remove_role(node_id, recursive)
        return await rbac.remove_permission(node_id, recursive)

    @router.get("/{node_id}/children", response_model=List[NodeDepth])
    async def children(node_id: int, store: HierarchicalEntityStore = Depends(get_store)):
        return await store.children(node_id)

    @router.get("/{node_id}/descendants", response_model=List[NodeDepth])
    async def descendants(
        node_id: int,
        absolute: bool = False,
        store: HierarchicalEntityStore = Depends(get_store),
    ):
        return await store.descendants(node_id, absolute)

    @router.get("/{node_id}/ancestors", response_model=List[NodeDepth])
    async def ancestors(node_id: int, store: HierarchicalEntityStore = Depends(get_store)):
        """Root-to-node path, the node included."""
        return await store.ancestor_path(node_id)

    @router.get("/{node_id}/path", response_model=NodePath)
    async def path(node_id: int, store: HierarchicalEntityStore = Depends(get_store)):
        return NodePath(id=node_id, path=await store.path_string(node_id))

    @router.get("/{node_id}/depth", response_model=NodeDepthValue)
    async def depth(node_id: int, store: HierarchicalEntityStore = Depends(get_store)):
        return NodeDepthValue(id=node_id, depth=await store.depth(node_id))

    @router.get("/{node_id}/parent", response_model=NodeParent)
    async def parent(node_id: int, store: HierarchicalEntityStore = Depends(get_store)):
        return NodeParent(id=node_id, parent_id=await store.parent_node(node_id))

    return router
