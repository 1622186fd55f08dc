"""Random mutation sequences; the interval invariants are checked after every step."""

from __future__ import annotations

import random

import pytest

from app.features.entities.store import HierarchicalEntityStore
from app.rbac import Rbac

TITLES = ("alpha", "beta", "gamma", "delta")


async def _random_step(store: HierarchicalEntityStore, rng: random.Random) -> None:
    nodes = await store.nodes()
    root = nodes[0]
    others = nodes[1:]
    choice = rng.choice(("insert", "insert", "path", "remove", "subtree")) if others else "insert"

    if choice == "insert":
        parent = rng.choice(nodes)
        node_id = await store.insert(rng.choice(TITLES), "", parent.id)
        children = await store.children(parent.id)
        assert [c.id for c in children].count(node_id) == 1
        assert (await store.get(root.id)).right == root.right + 2

    elif choice == "path":
        depth = rng.randint(1, 3)
        path = "".join("/" + rng.choice(TITLES) for _ in range(depth))
        created = await store.insert_path(path)
        assert await store.count() == len(nodes) + created
        assert await store.insert_path(path) == 0
        assert await store.path_string(await store.resolve_id(path)) == path

    elif choice == "remove":
        victim = rng.choice(others)
        children = await store.children(victim.id)
        parent_id = await store.parent_node(victim.id)
        depths = {child.id: await store.depth(child.id) for child in children}

        await store.remove(victim.id)

        assert await store.count() == len(nodes) - 1
        for child in children:
            assert await store.parent_node(child.id) == parent_id
            assert await store.depth(child.id) == depths[child.id] - 1

    else:
        victim = rng.choice(others)
        width = (victim.right - victim.left + 1) // 2

        removed = await store.remove_subtree(victim.id)

        assert len(removed) == width
        assert await store.count() == len(nodes) - width


@pytest.mark.asyncio
@pytest.mark.parametrize("seed", [3, 17, 2024])
async def test_random_mutations_preserve_intervals(rbac: Rbac, nested_set_checker, seed: int) -> None:
    rng = random.Random(seed)
    for _ in range(30):
        await _random_step(rbac.permissions, rng)
        nested_set_checker(await rbac.permissions.nodes())
