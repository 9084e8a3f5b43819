"""
Admin account and audit log models.
"""
import enum
from typing import Any, Dict
from sqlalchemy import Enum, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from team_access.core.database.base import Base, TimestampMixin, generate_ulid


class AdminUserType(str, enum.Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"


class AdminUserStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class AdminAccount(Base, TimestampMixin):
    """
    Administrator account.

    ``status`` is only moved between active and suspended by the lifecycle
    service; ``version`` guards those transitions against concurrent writers.
    """
    __tablename__ = "admin_accounts"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Subject id issued by the provisioning service
    external_subject_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)

    type: Mapped[AdminUserType] = mapped_column(
        Enum(AdminUserType, native_enum=False, values_callable=lambda e: [m.value for m in e], length=20),
        nullable=False,
        default=AdminUserType.ADMIN,
    )
    status: Mapped[AdminUserStatus] = mapped_column(
        Enum(AdminUserStatus, native_enum=False, values_callable=lambda e: [m.value for m in e], length=20),
        nullable=False,
        default=AdminUserStatus.ACTIVE,
        index=True,
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<AdminAccount(id={self.id}, email={self.email!r}, status={self.status.value})>"


class AuditLog(Base, TimestampMixin):
    """
    Audit trail entry for account lifecycle actions.

    Tracks who did what to whom.
    """
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    actor_id: Mapped[str | None] = mapped_column(String(26), nullable=True, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_id: Mapped[str | None] = mapped_column(String(26), nullable=True, index=True)
    details: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, actor_id={self.actor_id}, action={self.action}, resource={self.resource_type})>"
