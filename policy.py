"""
Authorization policy

A pure decision table over (caller, action, resource). Roles are a flat set;
ADMIN gets elevated access only where it is listed explicitly.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from errors import AuthenticationError, AuthorizationError
from schemas import Role


class Action(str, Enum):
    # public
    COURSE_LIST = "course:list"
    COURSE_READ = "course:read"
    VIDEO_LIST = "video:list"
    VIDEO_READ = "video:read"

    # owner (teacher of the course) or admin
    COURSE_CREATE = "course:create"
    COURSE_UPDATE = "course:update"
    COURSE_DELETE = "course:delete"
    COURSE_LIST_OWNED = "course:list-owned"
    VIDEO_CREATE = "video:create"
    VIDEO_UPDATE = "video:update"
    VIDEO_DELETE = "video:delete"
    MOCK_TEST_CREATE = "mock-test:create"
    CERTIFICATE_ISSUE = "certificate:issue"

    # any signed-in caller, on their own records
    ENROLL = "enrollment:create"
    MARK_WATCHED = "progress:mark-watched"
    VIEW_OWN_PROGRESS = "progress:view-own"
    VIEW_OWN_CERTIFICATES = "certificate:view-own"
    VIEW_PROFILE = "user:view-own"
    MOCK_TEST_READ = "mock-test:read"
    MOCK_TEST_ATTEMPT = "mock-test:attempt"

    # self or admin
    USER_UPDATE = "user:update"

    # staff
    USER_READ = "user:read"

    # admin only
    USER_LIST = "user:list"
    USER_DELETE = "user:delete"
    USER_CHANGE_ROLE = "user:change-role"
    STATS_VIEW = "stats:view"


PUBLIC = frozenset({Action.COURSE_LIST, Action.COURSE_READ, Action.VIDEO_LIST, Action.VIDEO_READ})

SELF_SERVICE = frozenset({
    Action.ENROLL,
    Action.MARK_WATCHED,
    Action.VIEW_OWN_PROGRESS,
    Action.VIEW_OWN_CERTIFICATES,
    Action.VIEW_PROFILE,
    Action.MOCK_TEST_READ,
    Action.MOCK_TEST_ATTEMPT,
})

# Actions on a course (or something inside it) that the owning teacher may do.
OWNED_BY_TEACHER = frozenset({
    Action.COURSE_UPDATE,
    Action.COURSE_DELETE,
    Action.VIDEO_CREATE,
    Action.VIDEO_UPDATE,
    Action.VIDEO_DELETE,
    Action.MOCK_TEST_CREATE,
    Action.CERTIFICATE_ISSUE,
})

ROLE_ONLY = {
    Action.COURSE_CREATE: frozenset({Role.TEACHER, Role.ADMIN}),
    Action.COURSE_LIST_OWNED: frozenset({Role.TEACHER, Role.ADMIN}),
    Action.USER_READ: frozenset({Role.TEACHER, Role.ADMIN}),
    Action.USER_LIST: frozenset({Role.ADMIN}),
    Action.USER_DELETE: frozenset({Role.ADMIN}),
    Action.USER_CHANGE_ROLE: frozenset({Role.ADMIN}),
    Action.STATS_VIEW: frozenset({Role.ADMIN}),
}


@dataclass(frozen=True)
class Caller:
    id: str
    role: Role
    name: Optional[str] = None

    @classmethod
    def from_user(cls, user: dict) -> "Caller":
        return cls(id=str(user["_id"]), role=Role.parse(user["role"]), name=user.get("name"))

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


@dataclass(frozen=True)
class Resource:
    owner_id: Optional[str]


def can_perform(caller: Optional[Caller], action: Action, resource: Optional[Resource] = None) -> bool:
    if action in PUBLIC:
        return True
    if caller is None:
        return False
    if action in SELF_SERVICE:
        return True
    if action in OWNED_BY_TEACHER:
        if caller.role == Role.ADMIN:
            return True
        if caller.role != Role.TEACHER or resource is None:
            return False
        return resource.owner_id is not None and resource.owner_id == caller.id
    if action == Action.USER_UPDATE:
        if caller.role == Role.ADMIN:
            return True
        return resource is not None and resource.owner_id == caller.id
    allowed = ROLE_ONLY.get(action)
    return allowed is not None and caller.role in allowed


def authorize(caller: Optional[Caller], action: Action, resource: Optional[Resource] = None) -> None:
    """Raise 401 when there is no identity and 403 when the identity is not enough."""
    if caller is None and action not in PUBLIC:
        raise AuthenticationError()
    if not can_perform(caller, action, resource):
        raise AuthorizationError()


def ownership_filter(caller: Caller, field: str = "teacher_id") -> Dict[str, str]:
    """Query predicate selecting the records this caller manages."""
    if caller.is_admin:
        return {}
    return {field: caller.id}
