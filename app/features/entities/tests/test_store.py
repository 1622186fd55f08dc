from __future__ import annotations

import asyncio

import pytest

from app.core.errors import InvalidArgument, NotFound, PathNotFound, StorageFailure, TitleNotFound
from app.rbac import Rbac


async def _titles(nodes) -> list[str]:
    return [node.title for node in nodes]


@pytest.mark.asyncio
async def test_reset_leaves_only_root(rbac: Rbac) -> None:
    nodes = await rbac.roles.nodes()

    assert len(nodes) == 1
    root = nodes[0]
    assert (root.id, root.left, root.right, root.title) == (1, 0, 1, "root")
    assert await rbac.roles.count() == 1
    assert await rbac.roles.root_id() == 1


@pytest.mark.asyncio
async def test_reset_requires_confirmation(rbac: Rbac) -> None:
    await rbac.roles.insert("admin")

    with pytest.raises(InvalidArgument):
        await rbac.roles.reset(False)

    assert await rbac.roles.count() == 2


@pytest.mark.asyncio
async def test_reset_restarts_identifiers(rbac: Rbac) -> None:
    await rbac.roles.insert_path("/a/b/c")
    await rbac.roles.reset(confirmed=True)

    assert await rbac.roles.insert("fresh") == 2


@pytest.mark.asyncio
async def test_end_to_end_scenario(rbac: Rbac) -> None:
    roles = rbac.roles
    root_id = await roles.root_id()

    admin_id = await roles.insert("admin", "", root_id)
    assert admin_id == 2

    assert await roles.insert_path("/admin/sub1", ["", ""]) == 1

    children = await roles.children(root_id)
    assert [(c.id, c.title, c.depth) for c in children] == [(admin_id, "admin", 1)]

    descendants = await roles.descendants(root_id, absolute=True)
    assert [(d.title, d.depth) for d in descendants] == [("admin", 1), ("sub1", 2)]


@pytest.mark.asyncio
async def test_insert_appends_rightmost_child(rbac: Rbac) -> None:
    roles = rbac.roles
    root_id = await roles.root_id()

    for expected_right, title in ((3, "first"), (5, "second"), (7, "third")):
        node_id = await roles.insert(title)
        assert (await roles.get(root_id)).right == expected_right
        children = await roles.children(root_id)
        assert [c.id for c in children].count(node_id) == 1
        assert children[-1].id == node_id

    assert await _titles(await roles.children(root_id)) == ["first", "second", "third"]


@pytest.mark.asyncio
async def test_insert_under_parent_shifts_right_siblings(rbac: Rbac) -> None:
    roles = rbac.roles
    a = await roles.insert("a")
    b = await roles.insert("b")
    child = await roles.insert("a1", parent_id=a)

    assert (await roles.get(a)).left == 1
    assert (await roles.get(child)).left == 2
    assert (await roles.get(child)).right == 3
    assert (await roles.get(a)).right == 4
    assert (await roles.get(b)).left == 5
    assert (await roles.get(b)).right == 6


@pytest.mark.asyncio
async def test_insert_with_missing_parent_is_rejected(rbac: Rbac) -> None:
    with pytest.raises(InvalidArgument):
        await rbac.roles.insert("orphan", parent_id=999)

    assert await rbac.roles.count() == 1


@pytest.mark.asyncio
async def test_insert_path_is_idempotent(rbac: Rbac) -> None:
    roles = rbac.roles

    assert await roles.insert_path("/a/b/c", ["A", "B", "C"]) == 3
    first = await roles.resolve_id("/a/b/c")

    assert await roles.insert_path("/a/b/c", ["x", "y", "z"]) == 0
    assert await roles.resolve_id("/a/b/c") == first
    assert await roles.description(first) == "C"
    assert await roles.count() == 4


@pytest.mark.asyncio
async def test_insert_path_creates_only_missing_suffix(rbac: Rbac) -> None:
    roles = rbac.roles
    await roles.insert_path("/a/b")

    assert await roles.insert_path("/a/b/c/d", ["", "", "C", "D"]) == 2
    assert await roles.path_string(await roles.resolve_id("/a/b/c/d")) == "/a/b/c/d"
    assert await roles.description(await roles.resolve_id("/a/b/c")) == "C"


@pytest.mark.asyncio
async def test_insert_path_rejects_malformed_paths(rbac: Rbac) -> None:
    with pytest.raises(InvalidArgument):
        await rbac.roles.insert_path("a/b")
    with pytest.raises(InvalidArgument):
        await rbac.roles.insert_path("/a//b")

    assert await rbac.roles.count() == 1


@pytest.mark.asyncio
async def test_insert_path_tolerates_trailing_separator(rbac: Rbac) -> None:
    assert await rbac.roles.insert_path("/a/b/") == 2
    assert await rbac.roles.insert_path("/") == 0


@pytest.mark.asyncio
async def test_remove_reparents_children(rbac: Rbac) -> None:
    roles = rbac.roles
    await roles.insert_path("/a/b/d")
    await roles.insert_path("/a/c")
    root_id = await roles.root_id()
    a = await roles.resolve_id("/a")
    b = await roles.resolve_id("/a/b")
    c = await roles.resolve_id("/a/c")
    d = await roles.resolve_id("/a/b/d")
    depths = {node_id: await roles.depth(node_id) for node_id in (b, c, d)}

    await roles.remove(a)

    assert await roles.count() == 4
    assert [child.id for child in await roles.children(root_id)] == [b, c]
    for node_id in (b, c):
        assert await roles.parent_node(node_id) == root_id
    for node_id in (b, c, d):
        assert await roles.depth(node_id) == depths[node_id] - 1
    assert await roles.path_string(d) == "/b/d"


@pytest.mark.asyncio
async def test_remove_subtree_drops_width_nodes(rbac: Rbac) -> None:
    roles = rbac.roles
    await roles.insert_path("/a/b/c")
    await roles.insert_path("/a/d")
    await roles.insert_path("/e")
    a = await roles.resolve_id("/a")
    node = await roles.get(a)
    covered = (node.right - node.left + 1) // 2
    before = await roles.count()

    removed = await roles.remove_subtree(a)

    assert len(removed) == covered == 4
    assert await roles.count() == before - covered
    e = await roles.resolve_id("/e")
    assert (await roles.get(e)).left == 1
    with pytest.raises(NotFound):
        await roles.resolve_id("/a/b")


@pytest.mark.asyncio
async def test_root_cannot_be_removed(rbac: Rbac) -> None:
    root_id = await rbac.roles.root_id()

    with pytest.raises(InvalidArgument):
        await rbac.roles.remove(root_id)
    with pytest.raises(InvalidArgument):
        await rbac.roles.remove_subtree(root_id)


@pytest.mark.asyncio
async def test_remove_missing_node_is_rejected(rbac: Rbac) -> None:
    with pytest.raises(InvalidArgument):
        await rbac.roles.remove(42)


@pytest.mark.asyncio
async def test_path_string_round_trip(rbac: Rbac) -> None:
    roles = rbac.roles
    await roles.insert_path("/x/y")

    assert await roles.path_string(await roles.resolve_id("/x/y")) == "/x/y"
    assert await roles.path_string(await roles.root_id()) == "/"
    assert await roles.resolve_id("/") == await roles.root_id()


@pytest.mark.asyncio
async def test_resolve_distinguishes_shared_titles_by_path(rbac: Rbac) -> None:
    roles = rbac.roles
    await roles.insert_path("/a/x")
    await roles.insert_path("/b/x")
    ax = await roles.resolve_id("/a/x")
    bx = await roles.resolve_id("/b/x")

    assert ax != bx
    assert await roles.path_string(bx) == "/b/x"
    # a bare title resolves to the first match in tree order
    assert await roles.resolve_id("x") == ax


@pytest.mark.asyncio
async def test_resolve_misses_raise_not_found(rbac: Rbac) -> None:
    await rbac.roles.insert_path("/a/b")

    with pytest.raises(TitleNotFound):
        await rbac.roles.resolve_id("nope")
    with pytest.raises(PathNotFound):
        await rbac.roles.resolve_id("/a/nope")
    with pytest.raises(PathNotFound):
        await rbac.roles.resolve_id("/b")


@pytest.mark.asyncio
async def test_depth_parent_and_ancestors(rbac: Rbac) -> None:
    roles = rbac.roles
    await roles.insert_path("/my1/testpath/test1")
    test1 = await roles.resolve_id("/my1/testpath/test1")

    assert await roles.depth(test1) == 3
    assert await roles.depth(await roles.root_id()) == 0

    leaf = await roles.insert("test123", "", test1)
    assert await roles.resolve_id("/my1/testpath/test1/test123") == leaf
    assert await roles.parent_node(leaf) == test1
    assert await roles.parent_node(await roles.root_id()) is None

    ancestors = await roles.ancestor_path(leaf)
    assert [(a.title, a.depth) for a in ancestors] == [
        ("root", 0),
        ("my1", 1),
        ("testpath", 2),
        ("test1", 3),
        ("test123", 4),
    ]


@pytest.mark.asyncio
async def test_children_and_relative_descendants(rbac: Rbac) -> None:
    roles = rbac.roles
    await roles.insert_path("/my1/testpath/test1")
    await roles.insert_path("/my1/other")
    await roles.insert_path("/my1/third")
    my1 = await roles.resolve_id("my1")

    children = await roles.children(my1)
    assert await _titles(children) == ["testpath", "other", "third"]
    assert {c.depth for c in children} == {1}

    descendants = await roles.descendants(my1)
    assert [(d.title, d.depth) for d in descendants] == [
        ("testpath", 1),
        ("test1", 2),
        ("other", 1),
        ("third", 1),
    ]
    absolute = await roles.descendants(my1, absolute=True)
    assert [d.depth for d in absolute] == [2, 3, 2, 2]


@pytest.mark.asyncio
async def test_edit_keeps_bounds(rbac: Rbac) -> None:
    roles = rbac.roles
    node_id = await roles.insert("forum_moderator", "User can moderate forums")
    before = await roles.get(node_id)

    await roles.edit(node_id, title="forum_moderator1")

    after = await roles.get(node_id)
    assert after.title == "forum_moderator1"
    assert after.description == "User can moderate forums"
    assert (after.left, after.right) == (before.left, before.right)
    assert await roles.title(node_id) == "forum_moderator1"

    with pytest.raises(InvalidArgument):
        await roles.edit(999, title="ghost")


@pytest.mark.asyncio
@pytest.mark.parametrize("title", ["", "a/b", "/", "posts/"])
async def test_titles_must_be_path_segments(rbac: Rbac, title: str) -> None:
    roles = rbac.roles
    node_id = await roles.insert("editor")

    with pytest.raises(InvalidArgument):
        await roles.insert(title)
    with pytest.raises(InvalidArgument):
        await roles.edit(node_id, title=title)

    assert await roles.count() == 2
    assert await roles.title(node_id) == "editor"
    assert await roles.resolve_id(await roles.path_string(node_id)) == node_id


@pytest.mark.asyncio
async def test_failed_mutation_rolls_back(rbac: Rbac, monkeypatch: pytest.MonkeyPatch) -> None:
    roles = rbac.roles
    await roles.insert_path("/a/b")
    before = await roles.nodes()

    async def failing_next_id(session):
        raise StorageFailure("disk on fire")

    # fails after the bounds have been shifted
    monkeypatch.setattr(roles, "_next_id", failing_next_id)
    with pytest.raises(StorageFailure):
        await roles.insert("c", parent_id=await roles.resolve_id("/a"))

    assert await roles.nodes() == before


@pytest.mark.asyncio
async def test_partitions_are_independent(rbac: Rbac) -> None:
    await rbac.roles.insert_path("/a/b")

    assert await rbac.permissions.count() == 1
    with pytest.raises(NotFound):
        await rbac.permissions.resolve_id("/a/b")


@pytest.mark.asyncio
async def test_readers_wait_for_inflight_mutation(rbac: Rbac) -> None:
    roles = rbac.roles

    async with roles.lock.write():
        reader = asyncio.create_task(roles.count())
        await asyncio.sleep(0.05)
        assert not reader.done()

    assert await reader == 1


@pytest.mark.asyncio
async def test_concurrent_inserts_keep_invariants(rbac: Rbac, nested_set_checker) -> None:
    await asyncio.gather(
        *(rbac.roles.insert(f"role{i}") for i in range(8)),
        *(rbac.permissions.insert_path(f"/perm{i}/child") for i in range(8)),
    )

    roles = await rbac.roles.nodes()
    permissions = await rbac.permissions.nodes()
    assert len(roles) == 9
    assert len(permissions) == 17
    nested_set_checker(roles)
    nested_set_checker(permissions)
