"""
FastAPI dependencies exposing the current actor's authorization profile.
"""
from typing import Annotated
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.authorization.profile import AuthorizationProfile, build_profile
from app.features.grants.store import SqlGrantStore
from app.features.users.dependencies import get_current_user
from app.features.users.models import User


async def get_current_profile(
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> AuthorizationProfile:
    """
    Build the profile of the authenticated user for this request.

    Usage:
        @router.get("/passengers")
        async def list_passengers(profile: AuthorizationProfile = Depends(get_current_profile)):
            ...
    """
    return await build_profile(SqlGrantStore(db, actor_id=user.id), user)
