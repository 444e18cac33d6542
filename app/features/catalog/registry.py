"""
Permission registry: read access to the catalog and name resolution.

Role and permission names travel over the wire as strings. At the store
boundary they are resolved against a ``Catalog`` snapshot into catalog ids,
and unknown names are rejected before anything is written.
"""
from collections.abc import Iterable
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.timeouts import run_bounded
from app.core.errors import NotAvailable, UnknownPermission, UnknownRole, UnknownScope
from app.features.catalog.models import Permission, Program, Role


async def _list(db: AsyncSession, model) -> list:
    result = await db.execute(select(model).order_by(model.id))
    return list(result.scalars().all())


async def list_roles(db: AsyncSession) -> list[Role]:
    """All roles in catalog order (by id)."""
    return await run_bounded(_list(db, Role), what="list roles", error_cls=NotAvailable)


async def list_permissions(db: AsyncSession) -> list[Permission]:
    """All permissions in catalog order (by id)."""
    return await run_bounded(_list(db, Permission), what="list permissions", error_cls=NotAvailable)


async def list_programs(db: AsyncSession) -> list[Program]:
    """All programs in catalog order (by id)."""
    return await run_bounded(_list(db, Program), what="list programs", error_cls=NotAvailable)


@dataclass(frozen=True)
class Catalog:
    """
    Immutable snapshot of the catalog, mapping names to ids.

    Used by the grant store to validate a whole write before touching any row.
    """
    roles: dict[str, int] = field(default_factory=dict)
    permissions: dict[str, int] = field(default_factory=dict)
    programs: dict[int, str] = field(default_factory=dict)

    def resolve_roles(self, names: Iterable[str], field_name: str = "roles") -> dict[str, int]:
        names = set(names)
        unknown = names - self.roles.keys()
        if unknown:
            raise UnknownRole(unknown, field=field_name)
        return {name: self.roles[name] for name in names}

    def resolve_permissions(self, names: Iterable[str], field_name: str = "permissions") -> dict[str, int]:
        names = set(names)
        unknown = names - self.permissions.keys()
        if unknown:
            raise UnknownPermission(unknown, field=field_name)
        return {name: self.permissions[name] for name in names}

    def require_program(self, program_id: int, field_name: str = "program_id") -> str:
        if program_id not in self.programs:
            raise UnknownScope(field_name, program_id)
        return self.programs[program_id]

    def require_role_id(self, role_id: int, field_name: str = "role_id") -> str:
        for name, known_id in self.roles.items():
            if known_id == role_id:
                return name
        raise UnknownScope(field_name, role_id)

    def role_names(self, ids: Iterable[int]) -> frozenset[str]:
        by_id = {v: k for k, v in self.roles.items()}
        return frozenset(by_id[i] for i in ids)

    def permission_names(self, ids: Iterable[int]) -> frozenset[str]:
        by_id = {v: k for k, v in self.permissions.items()}
        return frozenset(by_id[i] for i in ids)


async def read_catalog(db: AsyncSession) -> Catalog:
    """Snapshot the catalog inside an already bounded unit of work."""
    roles = await _list(db, Role)
    permissions = await _list(db, Permission)
    programs = await _list(db, Program)
    return Catalog(
        roles={r.name: r.id for r in roles},
        permissions={p.name: p.id for p in permissions},
        programs={p.id: p.name for p in programs},
    )


async def load_catalog(db: AsyncSession) -> Catalog:
    """Snapshot the whole catalog."""
    return await run_bounded(read_catalog(db), what="load catalog", error_cls=NotAvailable)
