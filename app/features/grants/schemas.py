"""
Pydantic schemas for role grants and user assignments.
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator


def _names(value) -> frozenset[str]:
    if value is None:
        return frozenset()
    return frozenset(str(v).strip() for v in value)


# ============================================================================
# Per-program state
# ============================================================================

class ProgramAssignment(BaseModel):
    """
    A user's state inside one program: the roles held there and the
    permissions effective there.
    """
    id: int = Field(..., description="Program ID")
    name: str = Field(..., description="Program name")
    roles: frozenset[str] = frozenset()
    permissions: frozenset[str] = frozenset()

    model_config = ConfigDict(frozen=True)

    @field_validator("roles", "permissions", mode="before")
    @classmethod
    def to_name_set(cls, v):
        return _names(v)

    @field_serializer("roles", "permissions")
    def sorted_names(self, v: frozenset[str]) -> list[str]:
        return sorted(v)


class AssignmentInput(BaseModel):
    """Desired state of one program in a bulk assignment update."""
    program_id: int = Field(..., description="Program ID")
    roles: frozenset[str] = Field(default_factory=frozenset, description="Complete set of role names")
    permissions: frozenset[str] = Field(default_factory=frozenset, description="Complete set of permission names")

    @field_validator("roles", "permissions", mode="before")
    @classmethod
    def to_name_set(cls, v):
        return _names(v)

    @field_serializer("roles", "permissions")
    def sorted_names(self, v: frozenset[str]) -> list[str]:
        return sorted(v)


# ============================================================================
# Requests
# ============================================================================

class RoleGrantUpdate(BaseModel):
    """Full replacement of a role's permissions inside one program."""
    program_id: int = Field(..., description="Program ID")
    permissions: List[str] = Field(default_factory=list, description="Complete set of permission names")
    sequence: Optional[int] = Field(
        None, ge=0, description="Request ordering of the writer; stale values for the same origin are rejected"
    )
    origin: Optional[str] = Field(
        None, min_length=1, max_length=64, description="Writer that numbered the request; defaults to the actor"
    )


class UserAssignmentsUpdate(BaseModel):
    """
    Full replacement of a user's roles and permissions in every listed program.

    Programs with empty sets must be listed to clear them; programs that are
    not listed are left unchanged.
    """
    assignments: List[AssignmentInput] = Field(default_factory=list)
    sequence: Optional[int] = Field(
        None, ge=0, description="Request ordering of the writer; stale values for the same origin are rejected"
    )
    origin: Optional[str] = Field(
        None, min_length=1, max_length=64, description="Writer that numbered the request; defaults to the actor"
    )


# ============================================================================
# Responses
# ============================================================================

class UserAssignmentsResponse(BaseModel):
    programs: List[ProgramAssignment] = []


class MessageResponse(BaseModel):
    message: str


class AuditLogResponse(BaseModel):
    id: int
    actor_id: Optional[int]
    action: str
    scope_key: str
    details: Optional[dict]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditLogListResponse(BaseModel):
    items: List[AuditLogResponse]
    total: int
    page: int
    page_size: int
    pages: int
