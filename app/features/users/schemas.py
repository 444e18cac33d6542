"""
Pydantic schemas for user-related responses.
"""
from pydantic import BaseModel, EmailStr

from app.features.authorization.profile import AuthorizationProfile


class UserSummary(BaseModel):
    """Row of the admin dashboard: a user with global roles and permissions."""
    id: int
    name: str
    email: EmailStr
    roles: list[str] = []
    permissions: list[str] = []

    @classmethod
    def from_profile(cls, profile: AuthorizationProfile) -> "UserSummary":
        return cls(
            id=profile.id,
            name=profile.name,
            email=profile.email,
            roles=profile.roles,
            permissions=profile.permissions,
        )


class ProfileResponse(AuthorizationProfile):
    """Body of ``GET /user``."""
    landing_path: str = "/"
