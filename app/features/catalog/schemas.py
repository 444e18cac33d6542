"""
Pydantic schemas for the catalog.
"""
from pydantic import BaseModel, ConfigDict


class CatalogEntry(BaseModel):
    """Shape shared by programs, roles and permissions."""
    id: int
    name: str

    model_config = ConfigDict(from_attributes=True, frozen=True)


class ProgramResponse(CatalogEntry):
    pass


class RoleResponse(CatalogEntry):
    pass


class PermissionResponse(CatalogEntry):
    pass
