"""
Node tables for the role and permission hierarchies.

Both tables share one layout: an integer id, the nested-set bounds, and a
human label. The bounds are stored in columns named ``left`` and ``right``;
the mapped attributes are ``lft`` and ``rght`` to stay clear of the SQL
keywords in expressions.
"""
from sqlalchemy import Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base


class NodeMixin:
    """Columns shared by every partition table."""

    # Generated by the store as max(id) + 1 inside the write lock
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)

    lft: Mapped[int] = mapped_column("left", Integer, nullable=False, index=True)
    rght: Mapped[int] = mapped_column("right", Integer, nullable=False, index=True)

    title: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(id={self.id}, title={self.title!r}, left={self.lft}, right={self.rght})>"


class RoleNode(NodeMixin, Base):
    __tablename__ = "roles"


class PermissionNode(NodeMixin, Base):
    __tablename__ = "permissions"
