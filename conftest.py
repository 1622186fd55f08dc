"""Shared pytest fixtures: a fresh file-backed SQLite store per test."""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.features.entities.schemas import Node
from app.main import create_app
from app.rbac import Rbac


@pytest_asyncio.fixture
async def make_rbac(tmp_path) -> AsyncIterator[Callable[..., Awaitable[Rbac]]]:
    """Factory for independent, freshly reset stores (one database file each)."""
    created: list[Rbac] = []

    async def factory(**kwargs: Any) -> Rbac:
        kwargs.setdefault("lock_timeout", 5)
        kwargs.setdefault("role_inheritance", False)
        db_path = tmp_path / f"rbac-{len(created)}.sqlite"
        store = Rbac(f"sqlite+aiosqlite:///{db_path}", **kwargs)
        created.append(store)
        await store.init()
        await store.reset(confirmed=True)
        return store

    yield factory

    for store in created:
        await store.close()


@pytest_asyncio.fixture
async def rbac(make_rbac: Callable[..., Awaitable[Rbac]]) -> Rbac:
    return await make_rbac()


@pytest_asyncio.fixture
async def async_client(rbac: Rbac) -> AsyncIterator[AsyncClient]:
    app = create_app(rbac, rate_limit="1000/minute")
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as client:
        yield client


def assert_nested_set(nodes: list[Node]) -> None:
    """Check the interval invariants over a full partition listing."""
    assert nodes, "partition has no root"
    root = min(nodes, key=lambda node: node.left)
    bounds = sorted([node.left for node in nodes] + [node.right for node in nodes])
    assert bounds == list(range(2 * len(nodes))), "bounds are not densely packed"

    for node in nodes:
        assert node.left < node.right
        assert root.left <= node.left and node.right <= root.right
        inside = [other for other in nodes if node.left <= other.left and other.right <= node.right]
        assert len(inside) == (node.right - node.left + 1) // 2

    for a in nodes:
        for b in nodes:
            if a.id == b.id:
                continue
            contains = a.left < b.left and b.right < a.right
            contained = b.left < a.left and a.right < b.right
            disjoint = a.right < b.left or b.right < a.left
            assert contains or contained or disjoint, f"{a} partially overlaps {b}"


@pytest.fixture
def nested_set_checker() -> Callable[[list[Node]], None]:
    return assert_nested_set
