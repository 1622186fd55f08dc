"""
Pydantic schemas for role/permission and role/subject assignments.

Role and permission references may be an integer id, a title, or a
separator-prefixed path.
"""
from typing import Any, Dict, Optional, Union
from pydantic import BaseModel, Field, ConfigDict


Reference = Union[int, str]


class AssignPermissionToRole(BaseModel):
    role: Reference = Field(..., description="Role id, title or /path")
    permission: Reference = Field(..., description="Permission id, title or /path")


class AssignRoleToSubject(BaseModel):
    role: Reference = Field(..., description="Role id, title or /path")
    subject: str = Field(..., min_length=1, max_length=255)
    constraint: Optional[Dict[str, Any]] = Field(None, description="Opaque payload stored with the edge")


class EdgeCreated(BaseModel):
    id: int


class SubjectEdge(BaseModel):
    id: int
    role_id: int
    subject_id: str
    constraint: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(from_attributes=True)
