"""
Catalog models: programs, roles and permissions.

Roles and permissions are global catalog entries. Their meaning inside a
program is defined by the grant tables in ``app.features.grants.models``.
"""
from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin


class Program(Base, TimestampMixin):
    """
    Organizational scope under which roles and permissions are granted.
    """
    __tablename__ = "programs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<Program(id={self.id}, name={self.name!r})>"


class Role(Base, TimestampMixin):
    """
    Named bundle of permissions. Not program-scoped itself; examples:
    super-admin, pm-manager, manager.
    """
    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<Role(id={self.id}, name={self.name!r})>"


class Permission(Base, TimestampMixin):
    """
    Atomic capability identifier, e.g. view-passenger or delete-passenger.
    """
    __tablename__ = "permissions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<Permission(id={self.id}, name={self.name!r})>"
