"""
Edge tables: role <-> permission and role <-> subject.

Edges carry no interval semantics; they reference node ids of the two
partitions and are cleaned up by ``app.rbac.Rbac`` when nodes are removed.
"""
from typing import Any, Dict
from sqlalchemy import ForeignKey, Integer, JSON, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin


class RolePermission(Base, TimestampMixin):
    __tablename__ = "role_permissions"
    __table_args__ = (
        UniqueConstraint("role_id", "permission_id", name="uq_role_permissions_pair"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    role_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("roles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    permission_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False, index=True
    )

    def __repr__(self) -> str:
        return f"<RolePermission(id={self.id}, role_id={self.role_id}, permission_id={self.permission_id})>"


class RoleSubject(Base, TimestampMixin):
    """
    A role held by an opaque subject (a user id, a service account, ...).

    ``constraint`` is an optional JSON payload stored for the embedding
    application; the core never interprets it.
    """
    __tablename__ = "role_subjects"
    __table_args__ = (
        UniqueConstraint("role_id", "subject_id", name="uq_role_subjects_pair"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    role_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("roles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    subject_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    constraint: Mapped[Dict[str, Any] | None] = mapped_column("constraint", JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<RoleSubject(id={self.id}, role_id={self.role_id}, subject_id={self.subject_id!r})>"
