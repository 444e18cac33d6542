"""
Program-scoped grant store.

Source of truth for role grants and user assignments. Each write replaces
the full set for its scope key inside one transaction:

- Role grant: key ``role:{role_id}:program:{program_id}``
- User assignments: key ``user:{user_id}``, covering every program in the batch

The whole write is validated against the catalog before any row changes, so
an invalid name anywhere leaves stored state untouched.

Writes to one key are serialized and the last commit wins. A writer may
number its requests (``sequence``, scoped to its ``origin``) so that a
request it already superseded is rejected instead of overwriting the newer one.
"""
from collections import defaultdict
from collections.abc import Awaitable, Callable, Iterable, Sequence
from typing import Optional, Protocol, TypeVar

from sqlalchemy import and_, delete, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.timeouts import run_bounded
from app.core.errors import StaleWrite, UnknownScope, ValidationFailed
from app.features.catalog.models import Permission, Program, Role
from app.features.catalog.registry import read_catalog
from app.features.grants.concurrency import (
    KeyedLock,
    role_scope_key,
    scope_locks,
    user_scope_key,
)
from app.features.grants.models import (
    AuditLog,
    GrantWriteSequence,
    program_role_permissions,
    program_user_permissions,
    program_user_roles,
)
from app.features.grants.schemas import AssignmentInput, ProgramAssignment
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)

T = TypeVar("T")


class GrantStore(Protocol):
    """
    Operations shared by the SQL store and the HTTP client store.

    The assignment mutator and the profile builder only depend on this.
    """

    async def get_role_grant(self, role_id: int, program_id: int) -> frozenset[str]: ...

    async def set_role_grant(
        self,
        role_id: int,
        program_id: int,
        permissions: Iterable[str],
        *,
        sequence: Optional[int] = None,
        origin: Optional[str] = None,
    ) -> str: ...

    async def get_user_assignments(self, user_id: int) -> list[ProgramAssignment]: ...

    async def set_user_assignments(
        self,
        user_id: int,
        assignments: Sequence[AssignmentInput],
        *,
        sequence: Optional[int] = None,
        origin: Optional[str] = None,
    ) -> str: ...


class SqlGrantStore:
    """
    GrantStore backed by the SQLAlchemy session.

    Usage:
        store = SqlGrantStore(db, actor_id=current_user.id)
        message = await store.set_role_grant(role_id, program_id, {"view-passenger"})
    """

    def __init__(
        self,
        db: AsyncSession,
        *,
        actor_id: Optional[int] = None,
        locks: KeyedLock = scope_locks,
        timeout: Optional[float] = None,
    ):
        self.db = db
        self.actor_id = actor_id
        self.locks = locks
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Role grants
    # ------------------------------------------------------------------

    async def get_role_grant(self, role_id: int, program_id: int) -> frozenset[str]:
        """Permission names granted to a role inside a program; empty if never written."""
        return await run_bounded(
            self._read_role_grant(role_id, program_id),
            what=f"read {role_scope_key(role_id, program_id)}",
            timeout=self.timeout,
        )

    async def _read_role_grant(self, role_id: int, program_id: int) -> frozenset[str]:
        if await self.db.get(Role, role_id) is None:
            raise UnknownScope("role_id", role_id)
        if await self.db.get(Program, program_id) is None:
            raise UnknownScope("program_id", program_id)

        stmt = (
            select(Permission.name)
            .join(program_role_permissions, program_role_permissions.c.permission_id == Permission.id)
            .where(
                and_(
                    program_role_permissions.c.role_id == role_id,
                    program_role_permissions.c.program_id == program_id,
                )
            )
        )
        result = await self.db.execute(stmt)
        return frozenset(result.scalars().all())

    async def set_role_grant(
        self,
        role_id: int,
        program_id: int,
        permissions: Iterable[str],
        *,
        sequence: Optional[int] = None,
        origin: Optional[str] = None,
    ) -> str:
        """
        Replace the permissions of a role inside a program.

        Raises:
            UnknownScope: role or program does not exist
            UnknownPermission: a name is not in the catalog
            StaleWrite: the same origin already committed a newer write to this key
        """
        key = role_scope_key(role_id, program_id)
        names = frozenset(permissions)
        return await self._write(
            key, lambda: self._apply_role_grant(key, role_id, program_id, names, sequence, origin)
        )

    async def _apply_role_grant(
        self,
        key: str,
        role_id: int,
        program_id: int,
        names: frozenset[str],
        sequence: Optional[int],
        origin: Optional[str],
    ) -> str:
        catalog = await read_catalog(self.db)
        role_name = catalog.require_role_id(role_id)
        program_name = catalog.require_program(program_id)
        resolved = catalog.resolve_permissions(names)

        await self._claim_sequence(key, sequence, origin)

        await self.db.execute(
            delete(program_role_permissions).where(
                and_(
                    program_role_permissions.c.role_id == role_id,
                    program_role_permissions.c.program_id == program_id,
                )
            )
        )
        if resolved:
            await self.db.execute(
                insert(program_role_permissions),
                [
                    {"role_id": role_id, "program_id": program_id, "permission_id": permission_id}
                    for permission_id in sorted(resolved.values())
                ],
            )

        self.db.add(AuditLog(
            actor_id=self.actor_id,
            action="set_role_grant",
            scope_key=key,
            details={"permissions": sorted(resolved)},
        ))
        log.info(f"Role grant replaced: {key} actor={self.actor_id} permissions={sorted(resolved)}")
        return f"Permissions for role '{role_name}' in program '{program_name}' saved"

    # ------------------------------------------------------------------
    # User assignments
    # ------------------------------------------------------------------

    async def get_user_assignments(self, user_id: int) -> list[ProgramAssignment]:
        """
        Per-program roles and effective permissions of a user, ordered by program id.

        Programs where the user holds no role and no direct permission are omitted.
        """
        return await run_bounded(
            self._read_user_assignments(user_id),
            what=f"read {user_scope_key(user_id)}",
            timeout=self.timeout,
        )

    async def _read_user_assignments(self, user_id: int) -> list[ProgramAssignment]:
        if await self.db.get(User, user_id) is None:
            raise UnknownScope("user_id", user_id)

        roles: dict[int, set[str]] = defaultdict(set)
        permissions: dict[int, set[str]] = defaultdict(set)

        # 1. Roles held in each program
        stmt = (
            select(program_user_roles.c.program_id, Role.name)
            .join(Role, Role.id == program_user_roles.c.role_id)
            .where(program_user_roles.c.user_id == user_id)
        )
        for program_id, name in (await self.db.execute(stmt)).all():
            roles[program_id].add(name)

        # 2. Direct permissions in each program
        stmt = (
            select(program_user_permissions.c.program_id, Permission.name)
            .join(Permission, Permission.id == program_user_permissions.c.permission_id)
            .where(program_user_permissions.c.user_id == user_id)
        )
        for program_id, name in (await self.db.execute(stmt)).all():
            permissions[program_id].add(name)

        # 3. Permissions the held roles carry in that same program
        stmt = (
            select(program_user_roles.c.program_id, Permission.name)
            .join(
                program_role_permissions,
                and_(
                    program_role_permissions.c.role_id == program_user_roles.c.role_id,
                    program_role_permissions.c.program_id == program_user_roles.c.program_id,
                ),
            )
            .join(Permission, Permission.id == program_role_permissions.c.permission_id)
            .where(program_user_roles.c.user_id == user_id)
        )
        for program_id, name in (await self.db.execute(stmt)).all():
            permissions[program_id].add(name)

        program_ids = set(roles) | set(permissions)
        if not program_ids:
            return []

        result = await self.db.execute(
            select(Program).where(Program.id.in_(program_ids)).order_by(Program.id)
        )
        return [
            ProgramAssignment(
                id=program.id,
                name=program.name,
                roles=roles.get(program.id, ()),
                permissions=permissions.get(program.id, ()),
            )
            for program in result.scalars().all()
        ]

    async def set_user_assignments(
        self,
        user_id: int,
        assignments: Sequence[AssignmentInput],
        *,
        sequence: Optional[int] = None,
        origin: Optional[str] = None,
    ) -> str:
        """
        Replace a user's roles and direct permissions in every listed program, all or nothing.

        Raises:
            UnknownScope: the user does not exist
            ValidationFailed: any program id, role or permission name in the batch is unknown,
                or a program is listed twice; nothing is written
            StaleWrite: the same origin already committed a newer write for this user
        """
        key = user_scope_key(user_id)
        batch = list(assignments)
        return await self._write(
            key, lambda: self._apply_user_assignments(key, user_id, batch, sequence, origin)
        )

    async def _apply_user_assignments(
        self,
        key: str,
        user_id: int,
        batch: list[AssignmentInput],
        sequence: Optional[int],
        origin: Optional[str],
    ) -> str:
        user = await self.db.get(User, user_id)
        if user is None:
            raise UnknownScope("user_id", user_id)

        catalog = await read_catalog(self.db)
        errors: dict[str, list[str]] = {}
        resolved: list[tuple[int, dict[str, int], dict[str, int]]] = []
        seen: set[int] = set()

        for index, item in enumerate(batch):
            prefix = f"assignments.{index}"
            try:
                catalog.require_program(item.program_id, f"{prefix}.program_id")
                if item.program_id in seen:
                    raise ValidationFailed(
                        errors={f"{prefix}.program_id": [f"Program {item.program_id} is listed more than once"]}
                    )
                seen.add(item.program_id)
                role_ids = catalog.resolve_roles(item.roles, f"{prefix}.roles")
                permission_ids = catalog.resolve_permissions(item.permissions, f"{prefix}.permissions")
            except ValidationFailed as e:
                errors.update(e.errors)
                continue
            resolved.append((item.program_id, role_ids, permission_ids))

        if errors:
            log.info(f"Rejected assignment batch for {key}: {errors}")
            raise ValidationFailed.from_errors(errors)

        await self._claim_sequence(key, sequence, origin)

        for program_id, role_ids, permission_ids in resolved:
            await self.db.execute(
                delete(program_user_roles).where(
                    and_(
                        program_user_roles.c.user_id == user_id,
                        program_user_roles.c.program_id == program_id,
                    )
                )
            )
            await self.db.execute(
                delete(program_user_permissions).where(
                    and_(
                        program_user_permissions.c.user_id == user_id,
                        program_user_permissions.c.program_id == program_id,
                    )
                )
            )
            if role_ids:
                await self.db.execute(
                    insert(program_user_roles),
                    [
                        {"program_id": program_id, "user_id": user_id, "role_id": role_id,
                         "assigned_by_id": self.actor_id}
                        for role_id in sorted(role_ids.values())
                    ],
                )
            if permission_ids:
                await self.db.execute(
                    insert(program_user_permissions),
                    [
                        {"program_id": program_id, "user_id": user_id, "permission_id": permission_id,
                         "assigned_by_id": self.actor_id}
                        for permission_id in sorted(permission_ids.values())
                    ],
                )

        self.db.add(AuditLog(
            actor_id=self.actor_id,
            action="set_user_assignments",
            scope_key=key,
            details={
                "programs": [
                    {"program_id": program_id, "roles": sorted(role_ids), "permissions": sorted(permission_ids)}
                    for program_id, role_ids, permission_ids in resolved
                ]
            },
        ))
        log.info(f"User assignments replaced: {key} actor={self.actor_id} programs={sorted(seen)}")
        return f"Roles and permissions saved for {user.name}"

    # ------------------------------------------------------------------
    # Write plumbing
    # ------------------------------------------------------------------

    async def _write(self, key: str, operation: Callable[[], Awaitable[T]]) -> T:
        async def serialized() -> T:
            async with self.locks.hold(key):
                return await self._in_transaction(operation)

        return await run_bounded(serialized(), what=f"write {key}", timeout=self.timeout)

    async def _in_transaction(self, operation: Callable[[], Awaitable[T]]) -> T:
        try:
            result = await operation()
            await self.db.commit()
        except BaseException:
            # covers cancellation on timeout as well as validation errors
            await self.db.rollback()
            raise
        return result

    def _origin_of(self, origin: Optional[str]) -> str:
        if origin:
            return origin
        return f"actor:{self.actor_id}" if self.actor_id is not None else "anonymous"

    async def _claim_sequence(self, key: str, sequence: Optional[int], origin: Optional[str]) -> None:
        """
        Reject a write its own writer has already superseded.

        Only sequences from the same origin are compared, so clocks or
        counters of different writers never order each other. Unsequenced
        writes are not checked; the keyed lock applies them in commit order.

        Raises:
            StaleWrite: ``sequence`` is not above the last one committed for this origin
        """
        if sequence is None:
            return
        origin = self._origin_of(origin)
        current = await self.db.get(
            GrantWriteSequence, (key, origin), populate_existing=True, with_for_update=True
        )
        if current is not None and sequence <= current.sequence:
            log.warning(f"Stale write rejected for {key} from {origin}: sequence {sequence} <= {current.sequence}")
            raise StaleWrite()

        if current is None:
            self.db.add(GrantWriteSequence(scope_key=key, origin=origin, sequence=sequence))
        else:
            current.sequence = sequence
        await self.db.flush()
