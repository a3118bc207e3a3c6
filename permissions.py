"""
Role-based access control for tasks and users.

Pure decision logic: every check looks only at the caller, the task's
owner/assignee and, for user administration, the target user. Nothing here
touches storage, so the checks are safe to call from any request concurrently.

Each ``can_*`` hook returns a ``Decision``; ``authorize`` turns a denial into
the matching error (Unauthenticated, Forbidden, NotFound, InvalidInput).
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Mapping, NamedTuple, Optional, Type

from errors import AppError, Forbidden, InvalidInput, NotFound, Unauthenticated
from schemas import Role

logger = logging.getLogger("maintenance_tracker.permissions")


class Operation(str, Enum):
    CREATE_TASK = "create_task"
    READ_TASK = "read_task"
    UPDATE_TASK = "update_task"
    DELETE_TASK = "delete_task"
    ASSIGN_TASK = "assign_task"
    ACCEPT_TASK = "accept_task"
    LIST_USERS = "list_users"
    CHANGE_ROLE = "change_role"
    DELETE_USER = "delete_user"


@dataclass(frozen=True)
class Caller:
    id: str
    email: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @classmethod
    def from_claims(cls, claims: Mapping[str, Any]) -> "Caller":
        if not claims.get("id"):
            raise Unauthenticated("Unauthorized: No user ID in token.")
        try:
            role = Role(claims.get("role"))
        except ValueError:
            raise Forbidden("Forbidden: Unknown or malformed user role.")
        return cls(id=str(claims["id"]), email=claims.get("email", ""), role=role)


@dataclass(frozen=True)
class TaskRef:
    owner_id: Optional[str]
    assignee_id: Optional[str] = None
    status: Optional[str] = None

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "TaskRef":
        owner = doc.get("owner_id")
        assignee = doc.get("assignee_id")
        return cls(
            owner_id=str(owner) if owner is not None else None,
            assignee_id=str(assignee) if assignee is not None else None,
            status=doc.get("status"),
        )


@dataclass(frozen=True)
class UserRef:
    id: str
    role: Optional[str] = None

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "UserRef":
        return cls(id=str(doc["_id"]), role=doc.get("role"))


class Decision(NamedTuple):
    allowed: bool
    reason: str
    error: Optional[Type[AppError]] = None


def _allow(reason: str) -> Decision:
    return Decision(True, reason)


def _deny(error: Type[AppError], reason: str) -> Decision:
    return Decision(False, reason, error)


def parse_role(value: Any) -> Role:
    try:
        return Role(value)
    except ValueError:
        raise InvalidInput("Invalid role value.")


def is_owner(caller: Caller, task: TaskRef) -> bool:
    return task.owner_id is not None and task.owner_id == caller.id


def is_assignee(caller: Caller, task: TaskRef) -> bool:
    return task.assignee_id is not None and task.assignee_id == caller.id


# -----------------------------
# Task hooks
# -----------------------------
def can_create_task(caller: Caller, **_) -> Decision:
    return _allow("Any authenticated user may create tasks")


def can_read_task(caller: Caller, task: TaskRef, **_) -> Decision:
    if caller.is_admin or is_owner(caller, task) or is_assignee(caller, task):
        return _allow("Owner, assignee or admin")
    # existence of other people's tasks is not revealed
    return _deny(NotFound, "Task not found.")


def can_update_task(caller: Caller, task: TaskRef, **_) -> Decision:
    if caller.is_admin or is_owner(caller, task):
        return _allow("Owner or admin")
    return _deny(Forbidden, "Forbidden: Only admin or task owner can update.")


def can_delete_task(caller: Caller, task: TaskRef, **_) -> Decision:
    if caller.is_admin or is_owner(caller, task):
        return _allow("Owner or admin")
    return _deny(Forbidden, "Forbidden: Only admin or task owner can delete.")


def can_assign_task(caller: Caller, **_) -> Decision:
    if caller.is_admin:
        return _allow("Admin")
    return _deny(Forbidden, "Forbidden: Only admins can assign or reassign tasks.")


def can_accept_task(caller: Caller, task: TaskRef, **_) -> Decision:
    if is_assignee(caller, task):
        return _allow("Assignee")
    return _deny(Forbidden, "Forbidden: Only the assignee can accept.")


# -----------------------------
# User hooks
# -----------------------------
def can_list_users(caller: Caller, **_) -> Decision:
    if caller.is_admin:
        return _allow("Admin")
    return _deny(Forbidden, "Forbidden: Insufficient permissions.")


def can_change_role(caller: Caller, **_) -> Decision:
    if caller.is_admin:
        return _allow("Admin")
    return _deny(Forbidden, "Forbidden: Insufficient permissions.")


def can_delete_user(caller: Caller, target: Optional[UserRef] = None, **_) -> Decision:
    if not caller.is_admin:
        return _deny(Forbidden, "Forbidden: Insufficient permissions.")
    if target is None:
        return _deny(NotFound, "User not found.")
    if target.role == Role.ADMIN.value:
        return _deny(Forbidden, "Forbidden: Admin users cannot be deleted.")
    return _allow("Admin deleting a non-admin user")


RULES: Dict[Operation, Callable[..., Decision]] = {
    Operation.CREATE_TASK: can_create_task,
    Operation.READ_TASK: can_read_task,
    Operation.UPDATE_TASK: can_update_task,
    Operation.DELETE_TASK: can_delete_task,
    Operation.ASSIGN_TASK: can_assign_task,
    Operation.ACCEPT_TASK: can_accept_task,
    Operation.LIST_USERS: can_list_users,
    Operation.CHANGE_ROLE: can_change_role,
    Operation.DELETE_USER: can_delete_user,
}

_TASK_OPERATIONS = {
    Operation.READ_TASK,
    Operation.UPDATE_TASK,
    Operation.DELETE_TASK,
    Operation.ACCEPT_TASK,
}


def decide(
    caller: Optional[Caller],
    operation: Operation,
    task: Optional[TaskRef] = None,
    target: Optional[UserRef] = None,
) -> Decision:
    if caller is None:
        return _deny(Unauthenticated, "Unauthorized")
    if operation in _TASK_OPERATIONS and task is None:
        return _deny(NotFound, "Task not found.")
    return RULES[operation](caller, task=task, target=target)


def authorize(
    caller: Optional[Caller],
    operation: Operation,
    task: Optional[TaskRef] = None,
    target: Optional[UserRef] = None,
) -> None:
    """Raise the classified error unless ``caller`` may perform ``operation``."""
    decision = decide(caller, operation, task=task, target=target)
    caller_id = caller.id if caller else None
    if decision.allowed:
        logger.info(f"POLICY CHECK: {operation.value} | user_id={caller_id} | ALLOWED")
        return
    logger.warning(
        f"POLICY CHECK: {operation.value} | user_id={caller_id} | DENIED | {decision.reason}"
    )
    raise decision.error(decision.reason)


def is_allowed(
    caller: Optional[Caller],
    operation: Operation,
    task: Optional[TaskRef] = None,
    target: Optional[UserRef] = None,
) -> bool:
    return decide(caller, operation, task=task, target=target).allowed
