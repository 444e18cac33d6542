"""
Authorization profile: per-program breakdown plus global unions.
"""
import pytest

from app.features.authorization.guard import programs_where
from app.features.authorization.profile import AuthorizationProfile, build_profile, union_of
from app.features.grants.schemas import AssignmentInput, ProgramAssignment
from app.features.grants.store import SqlGrantStore
from app.features.users.models import User


def make_profile(*programs: ProgramAssignment) -> AuthorizationProfile:
    return AuthorizationProfile(id=1, name="Alice", email="alice@example.com", programs=list(programs))


def test_union_of_empty_is_empty():
    assert union_of([]) == frozenset()


def test_global_sets_are_unions_of_programs():
    profile = make_profile(
        ProgramAssignment(id=1, name="North", roles={"manager"}, permissions={"view-passenger"}),
        ProgramAssignment(id=2, name="South", roles={"pm-manager"}, permissions={"create-passenger"}),
    )

    assert profile.roles == ["manager", "pm-manager"]
    assert profile.permissions == ["create-passenger", "view-passenger"]
    assert profile.permission_set == {"view-passenger", "create-passenger"}


def test_serialized_profile_carries_global_sets():
    profile = make_profile(
        ProgramAssignment(id=1, name="North", roles={"manager"}, permissions={"view-passenger", "create-passenger"}),
    )

    body = profile.model_dump(mode="json")

    assert body["roles"] == ["manager"]
    assert body["permissions"] == ["create-passenger", "view-passenger"]
    assert body["programs"][0]["permissions"] == ["create-passenger", "view-passenger"]


def test_payload_global_fields_are_recomputed():
    profile = AuthorizationProfile.from_payload({
        "id": 1,
        "name": "Alice",
        "email": "alice@example.com",
        "roles": ["super-admin"],
        "permissions": ["delete-passenger"],
        "programs": [{"id": 1, "name": "North", "roles": ["manager"], "permissions": ["view-passenger"]}],
    })

    assert profile.roles == ["manager"]
    assert profile.permissions == ["view-passenger"]


def test_program_lookup():
    north = ProgramAssignment(id=1, name="North", permissions={"view-passenger"})
    profile = make_profile(north)

    assert profile.program(1) == north
    assert profile.program(2) is None


class TestBuildProfile:
    """Profiles built from the grant store."""

    @pytest.mark.asyncio
    async def test_union_holds_after_single_program_mutation(self, db, seed):
        store = SqlGrantStore(db)
        alice = await db.get(User, seed.alice)
        await store.set_user_assignments(seed.alice, [
            AssignmentInput(program_id=seed.program1, permissions={"view-passenger", "delete-passenger"}),
            AssignmentInput(program_id=seed.program2, permissions={"create-passenger"}),
        ])
        before = await build_profile(store, alice)

        await store.set_user_assignments(seed.alice, [
            AssignmentInput(program_id=seed.program1, permissions={"view-passenger"}),
        ])
        after = await build_profile(store, alice)

        assert before.permissions == ["create-passenger", "delete-passenger", "view-passenger"]
        assert after.permissions == ["create-passenger", "view-passenger"]
        assert after.permission_set == union_of(p.permissions for p in after.programs)

    @pytest.mark.asyncio
    async def test_revoked_permission_kept_when_granted_elsewhere(self, db, seed):
        store = SqlGrantStore(db)
        alice = await db.get(User, seed.alice)
        await store.set_user_assignments(seed.alice, [
            AssignmentInput(program_id=seed.program1, permissions={"view-passenger"}),
            AssignmentInput(program_id=seed.program2, permissions={"view-passenger"}),
        ])

        await store.set_user_assignments(seed.alice, [
            AssignmentInput(program_id=seed.program1, permissions=set()),
        ])
        profile = await build_profile(store, alice)

        assert profile.permissions == ["view-passenger"]
        assert [p.id for p in profile.programs] == [seed.program2]

    @pytest.mark.asyncio
    async def test_manager_with_empty_grant_in_second_program(self, db, seed):
        store = SqlGrantStore(db)
        manager = seed.roles["manager"]
        await store.set_role_grant(manager, seed.program1, {"view-passenger"})
        await store.set_role_grant(manager, seed.program2, set())
        await store.set_user_assignments(seed.bob, [
            AssignmentInput(program_id=seed.program1, roles={"manager"}),
            AssignmentInput(program_id=seed.program2, roles={"manager"}),
        ])
        bob = await db.get(User, seed.bob)

        profile = await build_profile(store, bob)

        assert profile.roles == ["manager"]
        assert profile.permissions == ["view-passenger"]
        assert {p.id for p in programs_where(profile, "view-passenger")} == {seed.program1}
        assert profile.program(seed.program2).permissions == frozenset()
