"""
Grant tables for program-scoped RBAC.

- Role grants: the permissions a role carries inside one program
- User roles: the roles a user holds inside one program
- User permissions: permissions granted to a user directly inside one program
- Write sequences: last committed request ordering per scope key and writer
- Audit log: who replaced which scope, and when
"""
from datetime import datetime
from typing import Any, Dict
from sqlalchemy import BigInteger, String, ForeignKey, Table, Column, JSON, DateTime, Integer
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin


# (role, program) -> permissions
program_role_permissions = Table(
    "program_role_permissions",
    Base.metadata,
    Column("program_id", Integer, ForeignKey("programs.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", Integer, ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
)

# (user, program) -> roles
program_user_roles = Table(
    "program_user_roles",
    Base.metadata,
    Column("program_id", Integer, ForeignKey("programs.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column("assigned_at", DateTime(timezone=True), nullable=False, default=datetime.now),
    Column("assigned_by_id", Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
)

# (user, program) -> direct permissions
program_user_permissions = Table(
    "program_user_permissions",
    Base.metadata,
    Column("program_id", Integer, ForeignKey("programs.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", Integer, ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
    Column("assigned_at", DateTime(timezone=True), nullable=False, default=datetime.now),
    Column("assigned_by_id", Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
)


class GrantWriteSequence(Base, TimestampMixin):
    """
    Highest request sequence a writer committed for a scope key.

    Scope keys look like ``role:3:program:1`` or ``user:7``; ``origin``
    identifies the writer that numbered the requests. A write carrying a
    sequence not above the one stored for its own origin was superseded and
    is rejected. Sequences of different origins are never compared.
    """
    __tablename__ = "grant_write_sequences"

    scope_key: Mapped[str] = mapped_column(String(100), primary_key=True)
    origin: Mapped[str] = mapped_column(String(64), primary_key=True)
    sequence: Mapped[int] = mapped_column(BigInteger, nullable=False)

    def __repr__(self) -> str:
        return f"<GrantWriteSequence(scope_key={self.scope_key!r}, origin={self.origin!r}, sequence={self.sequence})>"


class AuditLog(Base, TimestampMixin):
    """
    Audit entry for a grant mutation, written in the same transaction.
    """
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    actor_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    scope_key: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    details: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, actor_id={self.actor_id}, action={self.action}, scope={self.scope_key})>"
