"""
Pydantic schemas for the role and permission hierarchies.

``Node`` and ``NodeDepth`` are also what the store returns to library callers.
"""
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict


# Titles are path segments, so they cannot contain the separator
TITLE_PATTERN = r"^[^/]+$"


class Node(BaseModel):
    """A node with its nested-set bounds."""
    id: int
    title: str
    description: str = ""
    left: int
    right: int


class NodeDepth(BaseModel):
    """A node as listed by children/descendants/ancestor queries."""
    id: int
    title: str
    description: str = ""
    depth: int = 0

    model_config = ConfigDict(from_attributes=True)


class NodeCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=128, pattern=TITLE_PATTERN)
    description: str = Field("", max_length=1000)
    parent_id: Optional[int] = Field(None, description="Parent node id (root if omitted)")


class PathCreate(BaseModel):
    path: str = Field(..., min_length=1, description="Separator-prefixed path, e.g. /admin/users")
    descriptions: List[str] = Field(default_factory=list, description="One description per path segment")


class PathCreated(BaseModel):
    created: int


class NodeUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=128, pattern=TITLE_PATTERN)
    description: Optional[str] = Field(None, max_length=1000)


class NodeRef(BaseModel):
    id: int


class NodePath(BaseModel):
    id: int
    path: str


class NodeParent(BaseModel):
    id: int
    parent_id: Optional[int]


class NodeDepthValue(BaseModel):
    id: int
    depth: int


class NodeCount(BaseModel):
    count: int
