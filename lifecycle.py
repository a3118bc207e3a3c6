"""
Task status lifecycle.

    Pending -> Accepted -> In-Progress -> Done

Owners and admins may set any of the four statuses directly; the only
dedicated transition is ``accept`` (assignee, Pending -> Accepted).
Functions here return the field changes to persist; they never write.
"""
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from database import from_storage
from errors import InvalidInput
from permissions import Caller
from schemas import TaskStatus

ALLOWED_STATUSES = [s.value for s in TaskStatus]
INVALID_STATUS_MESSAGE = "Invalid status value. Allowed: Pending, Accepted, In-Progress, Done."


def parse_status(value: Any) -> TaskStatus:
    if not isinstance(value, str):
        raise InvalidInput(INVALID_STATUS_MESSAGE)
    try:
        return TaskStatus(value)
    except ValueError:
        raise InvalidInput(INVALID_STATUS_MESSAGE)


def completed_at_for(
    status: TaskStatus,
    previous_status: Optional[str],
    previous_completed_at: Optional[datetime],
    now: datetime,
) -> Optional[datetime]:
    """completedAt is set exactly while a task is Done."""
    if status != TaskStatus.DONE:
        return None
    if previous_status == TaskStatus.DONE.value and previous_completed_at is not None:
        return previous_completed_at
    return now


def transition(task: Mapping[str, Any], status: Any, now: datetime) -> Dict[str, Any]:
    new_status = parse_status(status)
    return {
        "status": new_status.value,
        "completed_at": completed_at_for(
            new_status, task.get("status"), task.get("completed_at"), now
        ),
    }


def accept(task: Mapping[str, Any]) -> Dict[str, Any]:
    """Changes for an assignee accepting ``task``; empty if already accepted."""
    current = task.get("status")
    if current == TaskStatus.ACCEPTED.value:
        return {}
    if current != TaskStatus.PENDING.value:
        raise InvalidInput("Task is not pending.")
    return {"status": TaskStatus.ACCEPTED.value, "completed_at": None}


def assignment_changes(assignee_id: str) -> Dict[str, Any]:
    # a new assignee starts over from Pending
    return {"assignee_id": assignee_id, "status": TaskStatus.PENDING.value, "completed_at": None}


def creation_status(requested: Any, caller: Caller, assignee_id: Optional[str]) -> TaskStatus:
    """Status a newly created task starts in.

    The requested status is always validated, but only an admin creating a
    task for somebody else may start it anywhere other than Pending.
    """
    status = parse_status(requested) if requested is not None else TaskStatus.PENDING
    if not caller.is_admin or assignee_id is None or assignee_id == caller.id:
        return TaskStatus.PENDING
    return status


def is_overdue(task: Mapping[str, Any], now: datetime) -> bool:
    if task.get("status") == TaskStatus.DONE.value:
        return False
    due = from_storage(task.get("due_date"))
    return due is not None and due < now
