"""
Storage collaborators: users, tasks and login sessions.

Each store wraps one collection of an injected pymongo ``Database``. Stores
know nothing about permissions; callers decide who may do what and then ask
the store to find, save or delete by criteria.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import schemas
from database import (
    META,
    SESSIONS,
    TASKS,
    USERS,
    create_document,
    get_documents,
    object_id,
    to_storage,
    utcnow,
)
from errors import Conflict

logger = logging.getLogger("maintenance_tracker.stores")

BOOTSTRAP_ADMIN = "bootstrap_admin"


# -----------------------------
# Users
# -----------------------------
class UserStore:
    def __init__(self, db: Database):
        self.db = db
        self.collection = db[USERS]

    def find_by_id(self, user_id: Any) -> Optional[Dict[str, Any]]:
        oid = object_id(user_id)
        if oid is None:
            return None
        return self.collection.find_one({"_id": oid})

    def find_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return self.collection.find_one({"email": email.strip().lower()})

    def find_many(self, user_ids: Iterable[Any]) -> Dict[str, Dict[str, Any]]:
        oids = {oid for oid in (object_id(u) for u in user_ids) if oid is not None}
        if not oids:
            return {}
        docs = get_documents(self.db, USERS, {"_id": {"$in": list(oids)}})
        return {str(d["_id"]): d for d in docs}

    def list_all(self) -> List[Dict[str, Any]]:
        return get_documents(self.db, USERS, projection={"email": 1, "role": 1})

    def count_by_role(self, role: schemas.Role) -> int:
        return self.collection.count_documents({"role": schemas.Role(role).value})

    def claim_bootstrap_admin(self) -> bool:
        """Reserve the single self-elected admin slot.

        The reservation is one insert with a fixed ``_id``, so of any number
        of concurrent callers at most one gets True.
        """
        if self.count_by_role(schemas.Role.ADMIN) > 0:
            return False
        try:
            self.db[META].insert_one({"_id": BOOTSTRAP_ADMIN, "claimed_at": to_storage(utcnow())})
        except DuplicateKeyError:
            return False
        return True

    def release_bootstrap_admin(self) -> None:
        self.db[META].delete_one({"_id": BOOTSTRAP_ADMIN})

    def create(self, email: str, password_hash: str, role: schemas.Role) -> Dict[str, Any]:
        user = schemas.User(email=email.strip().lower(), password=password_hash, role=role)
        if self.find_by_email(user.email):
            raise Conflict("User already exists")
        try:
            doc = create_document(self.db, USERS, user.model_dump())
        except DuplicateKeyError:
            raise Conflict("User already exists")
        logger.info(f"Created user | id={doc['_id']} | role={doc['role']}")
        return doc

    def save(self, user: Dict[str, Any]) -> Dict[str, Any]:
        user = {**user, "updated_at": to_storage(utcnow())}
        self.collection.replace_one({"_id": user["_id"]}, user)
        return user

    def delete(self, user_id: Any) -> bool:
        oid = object_id(user_id)
        if oid is None:
            return False
        return self.collection.delete_one({"_id": oid}).deleted_count == 1


# -----------------------------
# Tasks
# -----------------------------
@dataclass
class TaskFilters:
    status: Optional[str] = None
    category: Optional[str] = None
    completed_from: Optional[datetime] = None
    completed_to: Optional[datetime] = None
    due_from: Optional[datetime] = None
    due_to: Optional[datetime] = None
    owner_id: Optional[str] = None
    assignee_id: Optional[str] = None
    # Restrict to tasks this user owns or is assigned; None means every task.
    visible_to: Optional[str] = None

    def to_query(self) -> Dict[str, Any]:
        clauses: List[Dict[str, Any]] = []
        if self.status:
            clauses.append({"status": self.status})
        if self.category:
            clauses.append({"category": self.category})
        completed = _range(self.completed_from, self.completed_to)
        if completed:
            clauses.append({"completed_at": completed})
        due = _range(self.due_from, self.due_to)
        if due:
            clauses.append({"due_date": due})
        if self.owner_id is not None:
            clauses.append({"owner_id": _ref(self.owner_id)})
        if self.assignee_id is not None:
            clauses.append({"assignee_id": _ref(self.assignee_id)})
        if self.visible_to is not None:
            me = _ref(self.visible_to)
            clauses.append({"$or": [{"owner_id": me}, {"assignee_id": me}]})
        if not clauses:
            return {}
        if len(clauses) == 1:
            return clauses[0]
        return {"$and": clauses}


def _ref(value: Any) -> Any:
    oid = object_id(value)
    # an unparseable id matches nothing rather than every unassigned task
    return oid if oid is not None else {"$in": []}


def _range(low: Optional[datetime], high: Optional[datetime]) -> Dict[str, Any]:
    bounds: Dict[str, Any] = {}
    if low is not None:
        bounds["$gte"] = to_storage(low)
    if high is not None:
        bounds["$lte"] = to_storage(high)
    return bounds


class TaskStore:
    def __init__(self, db: Database):
        self.db = db
        self.collection = db[TASKS]

    def find_by_id(self, task_id: Any) -> Optional[Dict[str, Any]]:
        oid = object_id(task_id)
        if oid is None:
            return None
        return self.collection.find_one({"_id": oid})

    def create(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        task = schemas.Task(**fields).model_dump()
        task["owner_id"] = object_id(task["owner_id"])
        task["assignee_id"] = object_id(task["assignee_id"])
        task["due_date"] = to_storage(task["due_date"])
        task["completed_at"] = to_storage(task["completed_at"])
        return create_document(self.db, TASKS, task)

    def save(self, task: Dict[str, Any]) -> Dict[str, Any]:
        task = {**task, "updated_at": to_storage(utcnow())}
        self.collection.replace_one({"_id": task["_id"]}, task)
        return task

    def update(self, task_id: Any, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Apply field changes and return the stored task, or None if it vanished."""
        oid = object_id(task_id)
        if oid is None:
            return None
        stored = {
            key: to_storage(value) if isinstance(value, datetime) else value
            for key, value in changes.items()
        }
        if "assignee_id" in stored:
            stored["assignee_id"] = object_id(stored["assignee_id"])
        stored["updated_at"] = to_storage(utcnow())
        return self.collection.find_one_and_update(
            {"_id": oid}, {"$set": stored}, return_document=ReturnDocument.AFTER
        )

    def delete(self, task_id: Any) -> bool:
        oid = object_id(task_id)
        if oid is None:
            return False
        return self.collection.delete_one({"_id": oid}).deleted_count == 1

    def query(
        self,
        filters: TaskFilters,
        page: int = 1,
        page_size: int = 20,
        sort: str = "desc",
    ) -> Tuple[List[Dict[str, Any]], int]:
        query = filters.to_query()
        direction = ASCENDING if sort == "asc" else DESCENDING
        total = self.collection.count_documents(query)
        cursor = (
            self.collection.find(query)
            .sort([("completed_at", direction), ("due_date", direction)])
            .skip((page - 1) * page_size)
            .limit(page_size)
        )
        return list(cursor), total

    def open_tasks_due(
        self,
        owner_id: str,
        due_from: Optional[datetime] = None,
        due_to: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        """Owner's tasks without a completion stamp whose due date falls in range."""
        query = {
            "owner_id": object_id(owner_id),
            "completed_at": None,
            "due_date": {"$ne": None, **_range(due_from, due_to)},
        }
        return list(self.collection.find(query).sort("due_date", ASCENDING))

    def delete_owned_by(self, user_id: Any) -> int:
        return self.collection.delete_many({"owner_id": object_id(user_id)}).deleted_count

    def clear_assignee(self, user_id: Any) -> int:
        res = self.collection.update_many(
            {"assignee_id": object_id(user_id)},
            {"$set": {"assignee_id": None, "updated_at": to_storage(utcnow())}},
        )
        return res.modified_count


# -----------------------------
# Sessions
# -----------------------------
class SessionStore:
    def __init__(self, db: Database):
        self.db = db
        self.collection = db[SESSIONS]

    def create(self, token: str, user_id: str, claims: Dict[str, Any], expires_at: datetime) -> Dict[str, Any]:
        session = schemas.Session(token=token, user_id=user_id, claims=claims, expires_at=expires_at)
        doc = session.model_dump()
        doc["user_id"] = object_id(doc["user_id"])
        doc["expires_at"] = to_storage(doc["expires_at"])
        return create_document(self.db, SESSIONS, doc)

    def find(self, token: str) -> Optional[Dict[str, Any]]:
        return self.collection.find_one({"token": token})

    def delete(self, token: str) -> bool:
        return self.collection.delete_one({"token": token}).deleted_count == 1

    def delete_for_user(self, user_id: Any) -> int:
        return self.collection.delete_many({"user_id": object_id(user_id)}).deleted_count

    def purge_expired(self, now: datetime) -> int:
        return self.collection.delete_many({"expires_at": {"$lte": to_storage(now)}}).deleted_count
