"""
Grant store API routes.

Role grants per program and bulk user assignments. Every write replaces the
full set for its scope key.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.grants.models import AuditLog
from app.features.grants.schemas import (
    AuditLogListResponse,
    AuditLogResponse,
    MessageResponse,
    RoleGrantUpdate,
    UserAssignmentsResponse,
    UserAssignmentsUpdate,
)
from app.features.grants.store import SqlGrantStore
from app.features.users.dependencies import get_current_admin_user, get_current_user
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter(tags=["grants"])


# ============================================================================
# Role Grant Routes
# ============================================================================

@router.get("/roles/{role_id}/permissions", response_model=List[str])
async def get_role_permissions(
    role_id: int,
    program_id: int = Query(..., description="Program scope"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Permission names granted to a role inside one program."""
    store = SqlGrantStore(db, actor_id=current_user.id)
    return sorted(await store.get_role_grant(role_id, program_id))


@router.post("/roles/{role_id}/permissions", response_model=MessageResponse)
async def set_role_permissions(
    role_id: int,
    update: RoleGrantUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_admin_user)
):
    """Replace a role's permissions inside one program (admin only)."""
    store = SqlGrantStore(db, actor_id=current_user.id)
    message = await store.set_role_grant(
        role_id, update.program_id, update.permissions, sequence=update.sequence, origin=update.origin
    )
    return MessageResponse(message=message)


# ============================================================================
# User Assignment Routes
# ============================================================================

@router.get("/users/{user_id}/assignments", response_model=UserAssignmentsResponse)
async def get_user_assignments(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """A user's roles and permissions per program."""
    # Can only view own assignments unless admin
    if user_id != current_user.id and not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized to view other users' assignments"
        )

    store = SqlGrantStore(db, actor_id=current_user.id)
    return UserAssignmentsResponse(programs=await store.get_user_assignments(user_id))


@router.post("/users/{user_id}/assignments", response_model=MessageResponse)
async def set_user_assignments(
    user_id: int,
    update: UserAssignmentsUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_admin_user)
):
    """Replace a user's roles and permissions in every listed program, atomically (admin only)."""
    store = SqlGrantStore(db, actor_id=current_user.id)
    message = await store.set_user_assignments(
        user_id, update.assignments, sequence=update.sequence, origin=update.origin
    )
    return MessageResponse(message=message)


# ============================================================================
# Audit Log Routes
# ============================================================================

@router.get("/audit-logs", response_model=AuditLogListResponse)
async def list_audit_logs(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    scope_key: Optional[str] = None,
    actor_id: Optional[int] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_admin_user)  # Admin only
):
    """List grant mutations, newest first."""
    stmt = select(AuditLog)

    if scope_key:
        stmt = stmt.where(AuditLog.scope_key == scope_key)
    if actor_id:
        stmt = stmt.where(AuditLog.actor_id == actor_id)

    count_stmt = select(func.count()).select_from(stmt.subquery())
    total = (await db.execute(count_stmt)).scalar() or 0

    stmt = stmt.order_by(AuditLog.id.desc()).offset(skip).limit(limit)
    logs = (await db.execute(stmt)).scalars().all()

    pages = (total + limit - 1) // limit
    page = (skip // limit) + 1

    return AuditLogListResponse(
        items=[AuditLogResponse.model_validate(entry) for entry in logs],
        total=total,
        page=page,
        page_size=limit,
        pages=pages
    )
