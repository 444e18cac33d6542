"""
User feature routes.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.authorization.dependencies import get_current_profile
from app.features.authorization.guard import landing_path
from app.features.authorization.profile import AuthorizationProfile, build_profile
from app.features.grants.store import SqlGrantStore
from app.features.users.models import User
from app.features.users.schemas import ProfileResponse, UserSummary
from app.features.users.dependencies import get_current_admin_user


router = APIRouter(tags=["users"])


@router.get("/user", response_model=ProfileResponse)
async def get_current_user_profile(
    profile: Annotated[AuthorizationProfile, Depends(get_current_profile)]
):
    """Authenticated actor's own authorization profile."""
    return ProfileResponse(
        id=profile.id,
        name=profile.name,
        email=profile.email,
        programs=profile.programs,
        landing_path=landing_path(profile),
    )


@router.get("/users", response_model=list[UserSummary])
async def list_users(
    admin: Annotated[User, Depends(get_current_admin_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500)
):
    """List active users with their global roles and permissions (admin only)."""
    result = await db.execute(
        select(User)
        .where(User.is_active == True)  # noqa: E712
        .order_by(User.id)
        .offset(skip)
        .limit(limit)
    )
    store = SqlGrantStore(db, actor_id=admin.id)
    return [
        UserSummary.from_profile(await build_profile(store, user))
        for user in result.scalars().all()
    ]
