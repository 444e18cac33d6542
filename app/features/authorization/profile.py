"""
Authorization profile builder.

A profile is the per-actor view of the grant store: the per-program
breakdown verbatim, plus global role and permission sets that are unions
over that breakdown. The unions are computed on access and never stored, so
a profile can not drift from its own programs.
"""
from functools import reduce
from typing import List

from pydantic import BaseModel, ConfigDict, computed_field

from app.features.grants.schemas import ProgramAssignment
from app.features.grants.store import GrantStore
from app.features.users.models import User


def union_of(sets) -> frozenset[str]:
    return reduce(frozenset.union, sets, frozenset())


class AuthorizationProfile(BaseModel):
    id: int
    name: str
    email: str
    programs: List[ProgramAssignment] = []

    model_config = ConfigDict(frozen=True)

    @computed_field  # type: ignore[misc]
    @property
    def roles(self) -> list[str]:
        """Every role held in any program."""
        return sorted(self.role_set)

    @computed_field  # type: ignore[misc]
    @property
    def permissions(self) -> list[str]:
        """Every permission effective in any program."""
        return sorted(self.permission_set)

    @property
    def role_set(self) -> frozenset[str]:
        return union_of(p.roles for p in self.programs)

    @property
    def permission_set(self) -> frozenset[str]:
        return union_of(p.permissions for p in self.programs)

    def program(self, program_id: int) -> ProgramAssignment | None:
        return next((p for p in self.programs if p.id == program_id), None)

    @classmethod
    def from_payload(cls, data: dict) -> "AuthorizationProfile":
        """
        Parse a ``GET /user`` body.

        The global ``roles``/``permissions`` fields of the body are ignored and
        recomputed from ``programs``.
        """
        return cls(
            id=data["id"],
            name=data["name"],
            email=data["email"],
            programs=[ProgramAssignment.model_validate(p) for p in data.get("programs", [])],
        )


def assemble_profile(user: User, assignments: List[ProgramAssignment]) -> AuthorizationProfile:
    return AuthorizationProfile(
        id=user.id,
        name=user.name,
        email=user.email,
        programs=list(assignments),
    )


async def build_profile(store: GrantStore, user: User) -> AuthorizationProfile:
    """
    Build the authorization profile of ``user`` from current store state.

    Always reads through the store; call again after any mutation before
    making further authorization decisions.
    """
    assignments = await store.get_user_assignments(user.id)
    return assemble_profile(user, assignments)
