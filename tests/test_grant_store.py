"""
Grant store behavior against a real SQLite database.

Covers full-replacement writes per scope key, validation before any row
changes, revocation by omission and stale write rejection.
"""
import asyncio
import time

import pytest
from sqlalchemy import select

from app.core.database.timeouts import run_bounded
from app.core.errors import (
    NotAvailable,
    StaleWrite,
    Unavailable,
    UnknownPermission,
    UnknownScope,
    ValidationFailed,
)
from app.features.grants.concurrency import KeyedLock
from app.features.grants.models import AuditLog
from app.features.grants.schemas import AssignmentInput
from app.features.grants.store import SqlGrantStore


def by_program(assignments):
    return {a.id: (a.roles, a.permissions) for a in assignments}


class TestRoleGrants:
    """Replacing the permission set of a role inside one program."""

    @pytest.mark.asyncio
    async def test_unwritten_grant_is_empty(self, db, seed):
        store = SqlGrantStore(db)
        assert await store.get_role_grant(seed.roles["manager"], seed.program1) == frozenset()

    @pytest.mark.asyncio
    async def test_set_twice_is_idempotent(self, db, seed):
        store = SqlGrantStore(db)
        role = seed.roles["manager"]
        wanted = {"view-passenger", "create-passenger"}

        await store.set_role_grant(role, seed.program1, wanted)
        once = await store.get_role_grant(role, seed.program1)
        await store.set_role_grant(role, seed.program1, wanted)
        twice = await store.get_role_grant(role, seed.program1)

        assert once == twice == frozenset(wanted)

    @pytest.mark.asyncio
    async def test_programs_are_isolated(self, db, seed):
        store = SqlGrantStore(db)
        role = seed.roles["manager"]

        await store.set_role_grant(role, seed.program1, {"view-passenger"})
        await store.set_role_grant(role, seed.program2, {"delete-passenger", "create-passenger"})

        assert await store.get_role_grant(role, seed.program1) == {"view-passenger"}
        assert await store.get_role_grant(role, seed.program2) == {"delete-passenger", "create-passenger"}

    @pytest.mark.asyncio
    async def test_write_replaces_whole_set(self, db, seed):
        store = SqlGrantStore(db)
        role = seed.roles["pm-manager"]

        await store.set_role_grant(role, seed.program1, {"view-passenger", "delete-passenger"})
        await store.set_role_grant(role, seed.program1, {"create-passenger"})

        assert await store.get_role_grant(role, seed.program1) == {"create-passenger"}

    @pytest.mark.asyncio
    async def test_confirmation_message_names_role_and_program(self, db, seed):
        store = SqlGrantStore(db)
        message = await store.set_role_grant(seed.roles["manager"], seed.program1, {"view-passenger"})
        assert message == "Permissions for role 'manager' in program 'North Route' saved"

    @pytest.mark.asyncio
    async def test_unknown_permission_leaves_grant_untouched(self, db, seed):
        store = SqlGrantStore(db)
        role = seed.roles["manager"]
        await store.set_role_grant(role, seed.program1, {"view-passenger"})

        with pytest.raises(UnknownPermission) as exc:
            await store.set_role_grant(role, seed.program1, {"create-passenger", "fly-plane"})

        assert exc.value.names == ["fly-plane"]
        assert exc.value.status_code == 422
        assert "permissions" in exc.value.errors
        assert await store.get_role_grant(role, seed.program1) == {"view-passenger"}

    @pytest.mark.asyncio
    async def test_unknown_role_or_program(self, db, seed):
        store = SqlGrantStore(db)

        with pytest.raises(UnknownScope) as exc:
            await store.set_role_grant(999, seed.program1, {"view-passenger"})
        assert exc.value.field == "role_id"

        with pytest.raises(UnknownScope) as exc:
            await store.get_role_grant(seed.roles["manager"], 999)
        assert exc.value.field == "program_id"
        assert exc.value.message == "Unknown program: 999"

    @pytest.mark.asyncio
    async def test_write_is_audited(self, db, seed):
        store = SqlGrantStore(db, actor_id=seed.admin)
        await store.set_role_grant(seed.roles["manager"], seed.program1, {"view-passenger"})

        entries = (await db.execute(select(AuditLog))).scalars().all()
        assert len(entries) == 1
        assert entries[0].actor_id == seed.admin
        assert entries[0].action == "set_role_grant"
        assert entries[0].scope_key == f"role:{seed.roles['manager']}:program:{seed.program1}"
        assert entries[0].details == {"permissions": ["view-passenger"]}


class TestUserAssignments:
    """Bulk replacement of a user's roles and permissions across programs."""

    @pytest.mark.asyncio
    async def test_user_without_rows_has_no_programs(self, db, seed):
        store = SqlGrantStore(db)
        assert await store.get_user_assignments(seed.alice) == []

    @pytest.mark.asyncio
    async def test_unknown_user(self, db, seed):
        store = SqlGrantStore(db)
        with pytest.raises(UnknownScope):
            await store.get_user_assignments(999)
        with pytest.raises(UnknownScope):
            await store.set_user_assignments(999, [AssignmentInput(program_id=seed.program1)])

    @pytest.mark.asyncio
    async def test_roles_and_direct_permissions_per_program(self, db, seed):
        store = SqlGrantStore(db)
        message = await store.set_user_assignments(seed.alice, [
            AssignmentInput(program_id=seed.program1, roles={"manager"}, permissions={"create-passenger"}),
            AssignmentInput(program_id=seed.program2, permissions={"view-passenger"}),
        ])

        assert message == "Roles and permissions saved for Alice"
        assignments = await store.get_user_assignments(seed.alice)
        assert [a.id for a in assignments] == [seed.program1, seed.program2]
        assert by_program(assignments) == {
            seed.program1: ({"manager"}, {"create-passenger"}),
            seed.program2: (frozenset(), {"view-passenger"}),
        }

    @pytest.mark.asyncio
    async def test_effective_permissions_include_role_grants_of_same_program(self, db, seed):
        store = SqlGrantStore(db)
        manager = seed.roles["manager"]
        await store.set_role_grant(manager, seed.program1, {"view-passenger"})
        await store.set_role_grant(manager, seed.program2, {"delete-passenger"})
        await store.set_user_assignments(seed.alice, [
            AssignmentInput(program_id=seed.program1, roles={"manager"}),
        ])

        assignments = await store.get_user_assignments(seed.alice)

        # the program 2 grant of the role must not leak into program 1
        assert by_program(assignments) == {seed.program1: ({"manager"}, {"view-passenger"})}

    @pytest.mark.asyncio
    async def test_role_grant_change_is_visible_on_next_read(self, db, seed):
        store = SqlGrantStore(db)
        manager = seed.roles["manager"]
        await store.set_user_assignments(seed.alice, [
            AssignmentInput(program_id=seed.program1, roles={"manager"}),
        ])
        await store.set_role_grant(manager, seed.program1, {"view-passenger"})
        before = await store.get_user_assignments(seed.alice)

        await store.set_role_grant(manager, seed.program1, {"view-passenger", "delete-passenger"})
        after = await store.get_user_assignments(seed.alice)

        assert before[0].permissions == {"view-passenger"}
        assert after[0].permissions == {"view-passenger", "delete-passenger"}

    @pytest.mark.asyncio
    async def test_invalid_entry_rejects_whole_batch(self, db, seed):
        store = SqlGrantStore(db)
        await store.set_user_assignments(seed.alice, [
            AssignmentInput(program_id=seed.program1, permissions={"view-passenger"}),
            AssignmentInput(program_id=seed.program2, roles={"manager"}),
        ])
        before = await store.get_user_assignments(seed.alice)

        with pytest.raises(ValidationFailed) as exc:
            await store.set_user_assignments(seed.alice, [
                AssignmentInput(program_id=seed.program1, permissions={"delete-passenger"}),
                AssignmentInput(program_id=seed.program2, roles={"pilot"}),
            ])

        assert exc.value.errors == {"assignments.1.roles": ["Unknown role(s): pilot"]}
        assert exc.value.first_error == "Unknown role(s): pilot"
        assert await store.get_user_assignments(seed.alice) == before

    @pytest.mark.asyncio
    async def test_every_invalid_entry_is_reported(self, db, seed):
        store = SqlGrantStore(db)

        with pytest.raises(ValidationFailed) as exc:
            await store.set_user_assignments(seed.alice, [
                AssignmentInput(program_id=999),
                AssignmentInput(program_id=seed.program1, permissions={"fly-plane"}),
                AssignmentInput(program_id=seed.program1),
            ])

        assert set(exc.value.errors) == {
            "assignments.0.program_id",
            "assignments.1.permissions",
            "assignments.2.program_id",
        }
        assert await store.get_user_assignments(seed.alice) == []

    @pytest.mark.asyncio
    async def test_omitted_permission_is_revoked(self, db, seed):
        store = SqlGrantStore(db)
        await store.set_user_assignments(seed.alice, [
            AssignmentInput(program_id=seed.program1, permissions={"view-passenger", "delete-passenger"}),
        ])

        await store.set_user_assignments(seed.alice, [
            AssignmentInput(program_id=seed.program1, permissions={"view-passenger"}),
        ])

        assignments = await store.get_user_assignments(seed.alice)
        assert by_program(assignments) == {seed.program1: (frozenset(), {"view-passenger"})}

    @pytest.mark.asyncio
    async def test_unlisted_program_is_left_unchanged(self, db, seed):
        store = SqlGrantStore(db)
        await store.set_user_assignments(seed.alice, [
            AssignmentInput(program_id=seed.program1, permissions={"view-passenger"}),
            AssignmentInput(program_id=seed.program2, permissions={"create-passenger"}),
        ])

        await store.set_user_assignments(seed.alice, [
            AssignmentInput(program_id=seed.program1, permissions=set()),
        ])

        # the cleared program disappears, the unlisted one stays
        assignments = await store.get_user_assignments(seed.alice)
        assert by_program(assignments) == {seed.program2: (frozenset(), {"create-passenger"})}

    @pytest.mark.asyncio
    async def test_users_are_isolated(self, db, seed):
        store = SqlGrantStore(db)
        await store.set_user_assignments(seed.alice, [
            AssignmentInput(program_id=seed.program1, roles={"pm-manager"}),
        ])
        await store.set_user_assignments(seed.bob, [
            AssignmentInput(program_id=seed.program1, roles={"manager"}),
        ])

        alice = await store.get_user_assignments(seed.alice)
        assert alice[0].roles == {"pm-manager"}


class GatedStore(SqlGrantStore):
    """Pauses inside the write, after the keyed lock is taken."""

    def __init__(self, db, **kwargs):
        super().__init__(db, **kwargs)
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def _apply_role_grant(self, *args):
        self.entered.set()
        await self.release.wait()
        return await super()._apply_role_grant(*args)


class TestWriteOrdering:
    """Sequenced writes and per-key serialization."""

    @pytest.mark.asyncio
    async def test_stale_sequence_is_rejected(self, db, seed):
        store = SqlGrantStore(db)
        role = seed.roles["manager"]
        await store.set_role_grant(role, seed.program1, {"view-passenger"}, sequence=10)

        with pytest.raises(StaleWrite):
            await store.set_role_grant(role, seed.program1, {"delete-passenger"}, sequence=5)
        with pytest.raises(StaleWrite):
            await store.set_role_grant(role, seed.program1, {"delete-passenger"}, sequence=10)

        assert await store.get_role_grant(role, seed.program1) == {"view-passenger"}

    @pytest.mark.asyncio
    async def test_sequences_are_tracked_per_key(self, db, seed):
        store = SqlGrantStore(db)
        role = seed.roles["manager"]
        await store.set_role_grant(role, seed.program1, {"view-passenger"}, sequence=10)

        await store.set_role_grant(role, seed.program2, {"delete-passenger"}, sequence=5)
        await store.set_user_assignments(
            seed.alice, [AssignmentInput(program_id=seed.program1, roles={"manager"})], sequence=1
        )

        assert await store.get_role_grant(role, seed.program2) == {"delete-passenger"}

    @pytest.mark.asyncio
    async def test_later_write_from_lagging_clock_wins(self, db, seed):
        store = SqlGrantStore(db)
        role = seed.roles["manager"]
        now = time.time_ns()
        await store.set_role_grant(role, seed.program1, {"view-passenger"}, sequence=now, origin="tab-a")

        # a second writer whose clock runs five seconds behind
        await store.set_role_grant(
            role, seed.program1, {"delete-passenger"}, sequence=now - 5_000_000_000, origin="tab-b"
        )

        assert await store.get_role_grant(role, seed.program1) == {"delete-passenger"}

    @pytest.mark.asyncio
    async def test_counter_sequences_after_unsequenced_write(self, db, seed):
        store = SqlGrantStore(db, actor_id=seed.admin)
        role = seed.roles["manager"]
        await store.set_role_grant(role, seed.program1, {"view-passenger"})

        await store.set_role_grant(role, seed.program1, {"create-passenger"}, sequence=1)
        await store.set_role_grant(role, seed.program1, {"delete-passenger"}, sequence=2)

        assert await store.get_role_grant(role, seed.program1) == {"delete-passenger"}
        with pytest.raises(StaleWrite):
            await store.set_role_grant(role, seed.program1, {"view-passenger"}, sequence=1)

    @pytest.mark.asyncio
    async def test_unsequenced_write_follows_sequenced_one(self, db, seed):
        store = SqlGrantStore(db)
        role = seed.roles["manager"]
        await store.set_role_grant(role, seed.program1, {"view-passenger"}, sequence=2**62, origin="tab-a")

        await store.set_role_grant(role, seed.program1, {"create-passenger"})

        assert await store.get_role_grant(role, seed.program1) == {"create-passenger"}

    @pytest.mark.asyncio
    async def test_concurrent_writes_to_same_key_are_serialized(self, session_factory, seed):
        locks = KeyedLock()
        role = seed.roles["manager"]
        key = f"role:{role}:program:{seed.program1}"
        first = {"view-passenger"}
        second = {"create-passenger", "delete-passenger"}

        async with session_factory() as db1, session_factory() as db2:
            gated = GatedStore(db1, locks=locks)
            first_write = asyncio.create_task(gated.set_role_grant(role, seed.program1, first))
            await gated.entered.wait()

            second_write = asyncio.create_task(
                SqlGrantStore(db2, locks=locks).set_role_grant(role, seed.program1, second)
            )
            for _ in range(5):
                await asyncio.sleep(0)
            # the second writer queues behind the first
            assert locks.is_held(key)
            assert not second_write.done()

            gated.release.set()
            await asyncio.gather(first_write, second_write)
            stored = await SqlGrantStore(db1, locks=locks).get_role_grant(role, seed.program1)

        assert stored == second
        assert not locks.is_held(key)


class TestBoundedCalls:
    @pytest.mark.asyncio
    async def test_timeout_surfaces_as_unavailable(self):
        with pytest.raises(Unavailable) as exc:
            await run_bounded(asyncio.sleep(1), what="read user:1", timeout=0.01)
        assert exc.value.status_code == 503
        assert "read user:1" in exc.value.message

    @pytest.mark.asyncio
    async def test_registry_timeout_is_not_available(self):
        with pytest.raises(NotAvailable):
            await run_bounded(asyncio.sleep(1), what="list roles", timeout=0.01, error_cls=NotAvailable)
