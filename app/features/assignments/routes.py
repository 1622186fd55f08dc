"""
Assignment API routes.

Role/permission edges and role/subject edges. References are ids, titles or
/paths; in query strings an all-digit value is taken as an id.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, status

from app.core.dependencies import get_rbac, parse_reference
from app.features.assignments.schemas import (
    AssignPermissionToRole,
    AssignRoleToSubject,
    EdgeCreated,
    SubjectEdge,
)
from app.features.authorization.schemas import SubjectRoles
from app.features.entities.schemas import Node
from app.rbac import Rbac


router = APIRouter()


# ============================================================================
# Role <-> Permission
# ============================================================================

@router.post("", response_model=EdgeCreated, status_code=status.HTTP_201_CREATED)
async def assign_permission_to_role(body: AssignPermissionToRole, rbac: Rbac = Depends(get_rbac)):
    """Assign a permission to a role; assigning twice returns the same edge."""
    return EdgeCreated(id=await rbac.assign(body.role, body.permission))


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
async def unassign_permission_from_role(role: str, permission: str, rbac: Rbac = Depends(get_rbac)):
    await rbac.unassign(parse_reference(role), parse_reference(permission))


@router.get("/permissions", response_model=List[Node])
async def role_permissions(role: str, rbac: Rbac = Depends(get_rbac)):
    """Permissions directly assigned to a role."""
    return await rbac.role_permissions(parse_reference(role))


@router.get("/roles", response_model=List[Node])
async def permission_roles(permission: str, rbac: Rbac = Depends(get_rbac)):
    """Roles directly holding a permission."""
    return await rbac.permission_roles(parse_reference(permission))


# ============================================================================
# Role <-> Subject
# ============================================================================

@router.post("/subjects", response_model=EdgeCreated, status_code=status.HTTP_201_CREATED)
async def assign_role_to_subject(body: AssignRoleToSubject, rbac: Rbac = Depends(get_rbac)):
    return EdgeCreated(id=await rbac.assign_subject(body.role, body.subject, body.constraint))


@router.delete("/subjects", status_code=status.HTTP_204_NO_CONTENT)
async def unassign_role_from_subject(role: str, subject: str, rbac: Rbac = Depends(get_rbac)):
    await rbac.unassign_subject(parse_reference(role), subject)


@router.get("/subjects/{subject}/roles", response_model=SubjectRoles)
async def subject_roles(subject: str, within: Optional[str] = None, rbac: Rbac = Depends(get_rbac)):
    """Role ids assigned to a subject, optionally limited to one role subtree."""
    scope = parse_reference(within) if within is not None else None
    return SubjectRoles(subject=subject, within=within, roles=await rbac.all_roles(subject, scope))


@router.get("/subjects/{subject}/edges", response_model=List[SubjectEdge])
async def subject_edges(subject: str, rbac: Rbac = Depends(get_rbac)):
    return await rbac.assignments.subject_edges(subject)
