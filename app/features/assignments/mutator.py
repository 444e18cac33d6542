"""
Assignment mutator.

Edits are accumulated in explicit drafts and committed through a GrantStore:

- RoleGrantDraft: the permission set of one (role, program) pair
- UserAssignmentDraft: one user's roles and permissions in every program
  they have a row for

Commits are full replacements. The mutator never merges with or diffs
against prior state; a draft starts from whatever the caller loaded, and
whatever is missing from it at commit time is revoked.

SaveTracker keeps the per-scope-key save state
``IDLE -> SAVING -> COMMITTED | FAILED -> IDLE`` that a caller displays.
"""
import asyncio
import enum
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Optional

from app.core import config
from app.core.errors import (
    AppError,
    InvalidSelection,
    RequestFailed,
    SaveInProgress,
    Unauthorized,
    ValidationFailed,
)
from app.features.grants.concurrency import role_scope_key, user_scope_key
from app.features.grants.schemas import AssignmentInput, ProgramAssignment
from app.features.grants.store import GrantStore
from app.utils import get_logger


log = get_logger(__name__)

UNSELECTED_ROLE_SCOPE = "role:unselected"


def _toggle(names: set[str], name: str) -> bool:
    if name in names:
        names.discard(name)
        return False
    names.add(name)
    return True


# ============================================================================
# Drafts
# ============================================================================

@dataclass
class RoleGrantDraft:
    """Desired permission set of a role inside a program."""
    role_id: Optional[int] = None
    program_id: Optional[int] = None
    permissions: set[str] = field(default_factory=set)

    @property
    def is_complete(self) -> bool:
        return self.role_id is not None and self.program_id is not None

    @property
    def scope_key(self) -> Optional[str]:
        if not self.is_complete:
            return None
        return role_scope_key(self.role_id, self.program_id)

    def toggle(self, permission: str) -> bool:
        """Flip one permission; returns whether it is now granted."""
        return _toggle(self.permissions, permission)


@dataclass
class UserAssignmentDraft:
    """
    Desired roles and permissions of one user, per program.

    ``program_names`` keeps the programs in display order; every one of them
    is sent on commit, including programs whose sets are now empty.
    """
    user_id: int
    program_names: dict[int, str] = field(default_factory=dict)
    roles: dict[int, set[str]] = field(default_factory=dict)
    permissions: dict[int, set[str]] = field(default_factory=dict)

    @classmethod
    def from_assignments(cls, user_id: int, assignments: Iterable[ProgramAssignment]) -> "UserAssignmentDraft":
        draft = cls(user_id=user_id)
        for assignment in assignments:
            draft.program_names[assignment.id] = assignment.name
            draft.roles[assignment.id] = set(assignment.roles)
            draft.permissions[assignment.id] = set(assignment.permissions)
        return draft

    @property
    def scope_key(self) -> str:
        return user_scope_key(self.user_id)

    def add_program(self, program_id: int, name: str) -> None:
        """Start editing a program the user has no row for yet."""
        if program_id not in self.program_names:
            self.program_names[program_id] = name
            self.roles[program_id] = set()
            self.permissions[program_id] = set()

    def _require(self, program_id: int) -> None:
        if program_id not in self.program_names:
            raise InvalidSelection(f"Program {program_id} is not part of this user's assignments.")

    def toggle_role(self, program_id: int, role: str) -> bool:
        self._require(program_id)
        return _toggle(self.roles[program_id], role)

    def toggle_permission(self, program_id: int, permission: str) -> bool:
        self._require(program_id)
        return _toggle(self.permissions[program_id], permission)

    def to_batch(self) -> list[AssignmentInput]:
        return [
            AssignmentInput(
                program_id=program_id,
                roles=self.roles.get(program_id, set()),
                permissions=self.permissions.get(program_id, set()),
            )
            for program_id in self.program_names
        ]


async def load_role_grant_draft(store: GrantStore, role_id: int, program_id: int) -> RoleGrantDraft:
    """Draft pre-filled with the currently stored grant."""
    current = await store.get_role_grant(role_id, program_id)
    return RoleGrantDraft(role_id=role_id, program_id=program_id, permissions=set(current))


async def load_user_assignment_draft(store: GrantStore, user_id: int) -> UserAssignmentDraft:
    """
    Draft pre-filled with the user's current assignments.

    The permission sets are the effective ones, so they include what the
    user's roles grant in each program. Saving the draft stores all of them
    as direct grants; those stay in place if the role or its grant is later
    changed. Remove role-implied permissions from the draft first if that
    is not wanted.
    """
    return UserAssignmentDraft.from_assignments(user_id, await store.get_user_assignments(user_id))


# ============================================================================
# Commit operations
# ============================================================================

async def update_role_grant(store: GrantStore, draft: RoleGrantDraft) -> str:
    """
    Replace the stored grant with the draft's permission set.

    Raises:
        InvalidSelection: role or program not selected; the store is not called
    """
    if not draft.is_complete:
        raise InvalidSelection()
    return await store.set_role_grant(draft.role_id, draft.program_id, frozenset(draft.permissions))


async def update_user_assignments(store: GrantStore, draft: UserAssignmentDraft) -> str:
    """Replace the user's assignments in every program held by the draft."""
    return await store.set_user_assignments(draft.user_id, draft.to_batch())


# ============================================================================
# Save state
# ============================================================================

class SaveState(str, enum.Enum):
    IDLE = "idle"
    SAVING = "saving"
    COMMITTED = "committed"
    FAILED = "failed"


@dataclass(frozen=True)
class SaveStatus:
    state: SaveState = SaveState.IDLE
    message: Optional[str] = None


IDLE = SaveStatus()


class SaveTracker:
    """
    Save state per scope key.

    COMMITTED carries the store's confirmation message and FAILED an error
    message; both fall back to IDLE after ``display_seconds``. Starting a
    save for a key that is already SAVING raises SaveInProgress.
    """

    def __init__(self, display_seconds: Optional[float] = None):
        self.display_seconds = config.SAVE_MESSAGE_SECONDS if display_seconds is None else display_seconds
        self._statuses: dict[str, SaveStatus] = {}
        self._resets: dict[str, asyncio.TimerHandle] = {}

    def status(self, key: str) -> SaveStatus:
        return self._statuses.get(key, IDLE)

    async def run(self, key: str, operation: Callable[[], Awaitable[str]]) -> SaveStatus:
        """
        Run ``operation`` as the save for ``key``.

        ValidationFailed, InvalidSelection and other application errors end
        in FAILED with an inline message. Unauthorized is recorded as FAILED
        and re-raised so the caller can re-authenticate. Any other exception
        is recorded as FAILED with a generic message and re-raised. Nothing
        is retried.
        """
        if self.status(key).state is SaveState.SAVING:
            raise SaveInProgress()

        self._cancel_reset(key)
        self._statuses[key] = SaveStatus(SaveState.SAVING)
        try:
            message = await operation()
        except ValidationFailed as e:
            return self._settle(key, SaveState.FAILED, e.first_error)
        except Unauthorized as e:
            self._settle(key, SaveState.FAILED, e.message)
            raise
        except AppError as e:
            return self._settle(key, SaveState.FAILED, e.message)
        except asyncio.CancelledError:
            # abandoned by the caller
            self._statuses.pop(key, None)
            raise
        except Exception:
            log.exception(f"Save for {key} failed unexpectedly")
            self._settle(key, SaveState.FAILED, RequestFailed.message)
            raise
        return self._settle(key, SaveState.COMMITTED, message)

    def _settle(self, key: str, state: SaveState, message: str) -> SaveStatus:
        status = SaveStatus(state, message)
        self._statuses[key] = status
        log.info(f"Save {state.value} for {key}: {message}")
        loop = asyncio.get_running_loop()
        self._resets[key] = loop.call_later(self.display_seconds, self._reset, key, status)
        return status

    def _reset(self, key: str, status: SaveStatus) -> None:
        self._resets.pop(key, None)
        if self._statuses.get(key) is status:
            del self._statuses[key]

    def _cancel_reset(self, key: str) -> None:
        handle = self._resets.pop(key, None)
        if handle is not None:
            handle.cancel()


class AssignmentMutator:
    """
    Commit drafts through a store while tracking save state.

    Usage:
        mutator = AssignmentMutator(store)
        draft = await load_user_assignment_draft(store, user_id)
        draft.toggle_permission(program_id, "delete-passenger")
        status = await mutator.save_user_assignments(draft)
    """

    def __init__(self, store: GrantStore, tracker: Optional[SaveTracker] = None):
        self.store = store
        self.tracker = tracker or SaveTracker()

    async def save_role_grant(self, draft: RoleGrantDraft) -> SaveStatus:
        key = draft.scope_key or UNSELECTED_ROLE_SCOPE
        return await self.tracker.run(key, lambda: update_role_grant(self.store, draft))

    async def save_user_assignments(self, draft: UserAssignmentDraft) -> SaveStatus:
        return await self.tracker.run(draft.scope_key, lambda: update_user_assignments(self.store, draft))
