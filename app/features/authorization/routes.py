"""
Authorization API routes.
"""
from fastapi import APIRouter, Depends

from app.core.dependencies import get_rbac, parse_reference
from app.features.authorization.schemas import CheckResponse, RoleHasPermissionResponse
from app.rbac import Rbac


router = APIRouter()


@router.get("/check", response_model=CheckResponse)
async def check_permission(permission: str, subject: str, rbac: Rbac = Depends(get_rbac)):
    """
    Does the subject hold the permission through any of its roles?

    A grant on an ancestor permission covers the whole subtree below it.
    """
    allowed = await rbac.check(parse_reference(permission), subject)
    return CheckResponse(permission=permission, subject=subject, allowed=allowed)


@router.get("/role-has-permission", response_model=RoleHasPermissionResponse)
async def role_has_permission(role: str, permission: str, rbac: Rbac = Depends(get_rbac)):
    allowed = await rbac.role_has_permission(parse_reference(role), parse_reference(permission))
    return RoleHasPermissionResponse(role=role, permission=permission, allowed=allowed)
