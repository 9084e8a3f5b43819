"""
Permission, Policy, Role and UserRoleAssignment models.

The access-control graph is:

    UserRoleAssignment -> Role -> Policy -> Permission

Permissions are atomic (resource, action) capabilities, policies bundle
permissions, roles bundle policies and assignments bind an account to a role
for a (possibly bounded) period. Every node is soft-deleted, never erased.
"""
import enum
from datetime import datetime
from typing import Any, Dict
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Table,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from team_access.core.database.base import Base, SoftDeleteMixin, TimestampMixin, generate_ulid
from team_access.utils import utcnow


class PermissionAction(str, enum.Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    LIST = "list"
    MANAGE = "manage"


class PolicyCategory(str, enum.Enum):
    USER = "user"
    ADMIN = "admin"
    MODERATOR = "moderator"
    CUSTOM = "custom"


# ============================================================================
# Association Tables for Many-to-Many Relationships
# ============================================================================

# Policy-Permission relationship
policy_permissions = Table(
    "policy_permissions",
    Base.metadata,
    Column("policy_id", String(26), ForeignKey("policies.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", String(26), ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
)

# Role-Policy relationship
role_policies = Table(
    "role_policies",
    Base.metadata,
    Column("role_id", String(26), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column("policy_id", String(26), ForeignKey("policies.id", ondelete="CASCADE"), primary_key=True),
)


# ============================================================================
# Core Models
# ============================================================================

class Permission(Base, TimestampMixin, SoftDeleteMixin):
    """
    Atomic capability on a resource.

    ``identifier`` is ``resource:action`` unless given explicitly and is
    never recomputed afterwards.
    """
    __tablename__ = "permissions"
    __table_args__ = (
        Index("ix_permissions_resource_action", "resource", "action"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    identifier: Mapped[str] = mapped_column(String(201), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    resource: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(20), nullable=False)

    # Free-form attributes; `metadata` is reserved on declarative classes
    extra: Mapped[Dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)

    def __repr__(self) -> str:
        return f"<Permission(id={self.id}, identifier={self.identifier!r})>"


class Policy(Base, TimestampMixin, SoftDeleteMixin):
    """
    Named bundle of permissions.

    System policies (``is_system``) cannot be soft-deleted.
    """
    __tablename__ = "policies"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    identifier: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0, index=True)
    category: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PolicyCategory.CUSTOM.value, index=True
    )
    is_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    extra: Mapped[Dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)

    permissions: Mapped[list["Permission"]] = relationship(
        "Permission",
        secondary=policy_permissions,
        lazy="selectin",
        order_by="Permission.identifier",
    )

    def __repr__(self) -> str:
        return f"<Policy(id={self.id}, identifier={self.identifier!r})>"


class Role(Base, TimestampMixin, SoftDeleteMixin):
    """
    Named bundle of policies, assignable to accounts.

    Neither system roles nor the default role can be soft-deleted. At most
    one role is the default; the role store demotes the previous default
    whenever a new one is set.
    """
    __tablename__ = "roles"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    identifier: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=0, index=True)
    is_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    extra: Mapped[Dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)

    policies: Mapped[list["Policy"]] = relationship(
        "Policy",
        secondary=role_policies,
        lazy="selectin",
        order_by="Policy.identifier",
    )

    def __repr__(self) -> str:
        return f"<Role(id={self.id}, identifier={self.identifier!r}, default={self.is_default})>"


class UserRoleAssignment(Base, TimestampMixin, SoftDeleteMixin):
    """
    Binding of an account (opaque ``user_id``) to a role.

    Only one live (``deleted_at IS NULL``) row may exist per
    ``(user_id, role_id)``; revoked rows stay behind and are restored in
    place when the role is assigned again.
    """
    __tablename__ = "user_role_assignments"
    __table_args__ = (
        Index(
            "uq_user_role_assignments_live",
            "user_id",
            "role_id",
            unique=True,
            sqlite_where=text("deleted_at IS NULL"),
            postgresql_where=text("deleted_at IS NULL"),
        ),
        Index("ix_user_role_assignments_user", "user_id", "is_active", "deleted_at"),
        Index("ix_user_role_assignments_role", "role_id", "is_active", "deleted_at"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    role_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("roles.id", ondelete="CASCADE"), nullable=False
    )
    assigned_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    extra: Mapped[Dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)

    role: Mapped["Role"] = relationship("Role", lazy="selectin")

    def revoke(self, revoked_by: str | None = None) -> None:
        """Soft-delete the assignment, recording who revoked it and when."""
        self.soft_delete()
        self.extra = {
            **(self.extra or {}),
            "revoked_by": revoked_by,
            "revoked_at": self.deleted_at.isoformat(),
        }

    def __repr__(self) -> str:
        return f"<UserRoleAssignment(user_id={self.user_id}, role_id={self.role_id}, active={self.is_active})>"
