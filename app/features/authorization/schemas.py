"""
Pydantic schemas for authorization queries.
"""
from typing import List, Optional
from pydantic import BaseModel, Field


class CheckResponse(BaseModel):
    permission: str
    subject: str
    allowed: bool


class RoleHasPermissionResponse(BaseModel):
    role: str
    permission: str
    allowed: bool


class SubjectRoles(BaseModel):
    subject: str
    within: Optional[str] = None
    roles: List[int] = Field(default_factory=list)


class ResetRequest(BaseModel):
    confirm: bool = Field(False, description="Must be true; the reset removes every node and edge")
