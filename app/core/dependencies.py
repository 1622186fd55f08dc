"""
FastAPI dependencies shared by the feature routers.
"""
from fastapi import Request

from app.features.entities.store import Reference
from app.rbac import Rbac


def get_rbac(request: Request) -> Rbac:
    """
    The authority store attached to the application by ``create_app``.

    Usage in FastAPI routes:
        @router.get("/count")
        async def count(rbac: Rbac = Depends(get_rbac)):
            return await rbac.roles.count()
    """
    return request.app.state.rbac


def parse_reference(value: str) -> Reference:
    """Query-string references: digits are ids, anything else a title or /path."""
    return int(value) if value.isdigit() else value
