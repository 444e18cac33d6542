"""
Authorization guard.

Pure decision functions over an already built AuthorizationProfile.

Resource-level checks must go through ``can_in_program``: the global union
is a superset across programs and would let a grant in one program
authorize an action in another. ``can_globally`` and ``landing_path`` are
only for coarse routing.
"""
from app.core.errors import Forbidden
from app.features.authorization.profile import AuthorizationProfile
from app.features.catalog.schemas import ProgramResponse
from app.utils import get_logger


log = get_logger(__name__)


# Landing pages by role, checked in order
LANDING_PATHS: list[tuple[str, str]] = [
    ("super-admin", "/dashboard"),
    ("pm-manager", "/pm-dashboard"),
]
DEFAULT_LANDING_PATH = "/"


def can_globally(profile: AuthorizationProfile, permission: str) -> bool:
    """True if ``permission`` is effective in at least one program."""
    return permission in profile.permission_set


def can_in_program(profile: AuthorizationProfile, program_id: int, permission: str) -> bool:
    """True only if ``permission`` is effective in program ``program_id`` itself."""
    assignment = profile.program(program_id)
    if assignment is None:
        return False
    return permission in assignment.permissions


def programs_where(profile: AuthorizationProfile, permission: str) -> set[ProgramResponse]:
    """
    Programs in which ``permission`` is effective.

    Use this to restrict choices such as "create in program X" to programs
    where the actor holds the permission, not every program they belong to.
    """
    return {
        ProgramResponse(id=p.id, name=p.name)
        for p in profile.programs
        if permission in p.permissions
    }


def ensure_in_program(profile: AuthorizationProfile, program_id: int, permission: str) -> None:
    """
    Raises:
        Forbidden: ``permission`` is not effective in ``program_id``
    """
    if not can_in_program(profile, program_id, permission):
        log.info(f"User {profile.id} denied {permission} in program {program_id}")
        raise Forbidden(f"You are not allowed to {permission.replace('-', ' ')} in this program.")


def landing_path(profile: AuthorizationProfile) -> str:
    """Where to send the actor after authentication."""
    roles = profile.role_set
    for role, path in LANDING_PATHS:
        if role in roles:
            return path
    return DEFAULT_LANDING_PATH
