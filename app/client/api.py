"""
Typed wrappers around the authorization API routes, and a GrantStore that
talks to them.
"""
from __future__ import annotations

import uuid
from collections.abc import Iterable, Sequence

from app.client.transport import ApiTransport
from app.features.authorization.profile import AuthorizationProfile
from app.features.catalog.schemas import PermissionResponse, ProgramResponse, RoleResponse
from app.features.grants.concurrency import SequenceClock
from app.features.grants.schemas import AssignmentInput, ProgramAssignment
from app.features.passengers.schemas import PassengerResponse
from app.features.users.schemas import UserSummary


class AuthorizationApi:
    def __init__(self, transport: ApiTransport) -> None:
        self.transport = transport

    # Catalog

    async def list_roles(self) -> list[RoleResponse]:
        return [RoleResponse.model_validate(r) for r in await self.transport.get("/roles")]

    async def list_permissions(self) -> list[PermissionResponse]:
        return [PermissionResponse.model_validate(p) for p in await self.transport.get("/permissions")]

    async def list_programs(self) -> list[ProgramResponse]:
        return [ProgramResponse.model_validate(p) for p in await self.transport.get("/programs")]

    # Role grants

    async def get_role_permissions(self, role_id: int, program_id: int) -> frozenset[str]:
        names = await self.transport.get(f"/roles/{role_id}/permissions", params={"program_id": program_id})
        return frozenset(names or ())

    async def set_role_permissions(
        self,
        role_id: int,
        program_id: int,
        permissions: Iterable[str],
        *,
        sequence: int | None = None,
        origin: str | None = None,
    ) -> str:
        body = {"permissions": sorted(permissions), "program_id": program_id}
        body.update(_ordering(sequence, origin))
        data = await self.transport.post(f"/roles/{role_id}/permissions", json=body)
        return data["message"]

    # User assignments

    async def get_user_assignments(self, user_id: int) -> list[ProgramAssignment]:
        data = await self.transport.get(f"/users/{user_id}/assignments")
        return [ProgramAssignment.model_validate(p) for p in data.get("programs", [])]

    async def set_user_assignments(
        self,
        user_id: int,
        assignments: Sequence[AssignmentInput],
        *,
        sequence: int | None = None,
        origin: str | None = None,
    ) -> str:
        body = {"assignments": [a.model_dump(mode="json") for a in assignments]}
        body.update(_ordering(sequence, origin))
        data = await self.transport.post(f"/users/{user_id}/assignments", json=body)
        return data.get("message") or "Saved successfully"

    # Actor and users

    async def fetch_profile(self) -> AuthorizationProfile:
        """The authenticated actor's profile; fetch again after every own mutation."""
        return AuthorizationProfile.from_payload(await self.transport.get("/user"))

    async def list_users(self) -> list[UserSummary]:
        return [UserSummary.model_validate(u) for u in await self.transport.get("/users")]

    # Passengers

    async def list_passengers(self) -> list[PassengerResponse]:
        return [PassengerResponse.model_validate(p) for p in await self.transport.get("/passengers")]

    async def create_passenger(self, name: str, program_id: int) -> PassengerResponse:
        data = await self.transport.post("/passengers", json={"name": name, "program_id": program_id})
        return PassengerResponse.model_validate(data)

    async def delete_passenger(self, passenger_id: int) -> None:
        await self.transport.delete(f"/passengers/{passenger_id}")


def _ordering(sequence: int | None, origin: str | None) -> dict:
    fields: dict = {}
    if sequence is not None:
        fields["sequence"] = sequence
    if origin is not None:
        fields["origin"] = origin
    return fields


class HttpGrantStore:
    """
    GrantStore over HTTP.

    Every write carries this store's ``origin`` and a fresh sequence from its
    own clock, so the server drops a request this store has already
    superseded. Writes from other origins are never compared with ours.
    """

    def __init__(
        self, api: AuthorizationApi, clock: SequenceClock | None = None, origin: str | None = None
    ) -> None:
        self.api = api
        self.clock = clock or SequenceClock()
        self.origin = origin or uuid.uuid4().hex

    async def get_role_grant(self, role_id: int, program_id: int) -> frozenset[str]:
        return await self.api.get_role_permissions(role_id, program_id)

    async def set_role_grant(
        self,
        role_id: int,
        program_id: int,
        permissions: Iterable[str],
        *,
        sequence: int | None = None,
        origin: str | None = None,
    ) -> str:
        return await self.api.set_role_permissions(
            role_id,
            program_id,
            permissions,
            sequence=sequence if sequence is not None else self.clock.next(),
            origin=origin or self.origin,
        )

    async def get_user_assignments(self, user_id: int) -> list[ProgramAssignment]:
        return await self.api.get_user_assignments(user_id)

    async def set_user_assignments(
        self,
        user_id: int,
        assignments: Sequence[AssignmentInput],
        *,
        sequence: int | None = None,
        origin: str | None = None,
    ) -> str:
        return await self.api.set_user_assignments(
            user_id,
            assignments,
            sequence=sequence if sequence is not None else self.clock.next(),
            origin=origin or self.origin,
        )
