"""
Catalog routes: roles, permissions and programs, in catalog order.
"""
from typing import List
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.catalog import registry
from app.features.catalog.schemas import PermissionResponse, ProgramResponse, RoleResponse
from app.features.users.dependencies import get_current_user
from app.features.users.models import User


router = APIRouter(tags=["catalog"])


@router.get("/roles", response_model=List[RoleResponse])
async def list_roles(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """List all roles."""
    return await registry.list_roles(db)


@router.get("/permissions", response_model=List[PermissionResponse])
async def list_permissions(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """List all permissions."""
    return await registry.list_permissions(db)


@router.get("/programs", response_model=List[ProgramResponse])
async def list_programs(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """List all programs."""
    return await registry.list_programs(db)
