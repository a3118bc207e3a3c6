import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pymongo.database import Database

import lifecycle
from config import Settings, load_settings
from database import connect, ensure_indexes, from_storage, utcnow
from errors import Conflict, InvalidInput, NotFound, register_error_handlers
from permissions import Caller, Operation, TaskRef, UserRef, authorize, parse_role
from schemas import (
    AssignRequest,
    LoginRequest,
    RegisterRequest,
    Role,
    RoleUpdate,
    StatusUpdate,
    TaskCreate,
    TaskStatus,
    TaskUpdate,
)
from security import CredentialIssuer, bearer_token, claims_for, hash_password
from stores import SessionStore, TaskFilters, TaskStore, UserStore

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
UPCOMING_WINDOW = timedelta(days=14)

logger = logging.getLogger("maintenance_tracker")


# -----------------------------
# Helpers
# -----------------------------
def iso(value: Optional[datetime]) -> Optional[str]:
    value = from_storage(value)
    return value.astimezone(timezone.utc).isoformat() if value else None


def public_user(doc: Dict[str, Any]) -> Dict[str, Any]:
    return {"id": str(doc["_id"]), "email": doc["email"], "role": doc.get("role", Role.USER.value)}


def person(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, str]]:
    if not doc:
        return None
    return {"id": str(doc["_id"]), "email": doc["email"]}


def serialize_task(task: Dict[str, Any], people: Dict[str, Dict[str, Any]], now: datetime) -> Dict[str, Any]:
    owner_id = task.get("owner_id")
    assignee_id = task.get("assignee_id")
    return {
        "id": str(task["_id"]),
        "title": task["title"],
        "category": task.get("category"),
        "status": task["status"],
        "dueDate": iso(task.get("due_date")),
        "completedAt": iso(task.get("completed_at")),
        "user": person(people.get(str(owner_id))) if owner_id else None,
        "assignee": person(people.get(str(assignee_id))) if assignee_id else None,
        "isOverdue": lifecycle.is_overdue(task, now),
    }


def present_tasks(tasks: Iterable[Dict[str, Any]], users: UserStore) -> List[Dict[str, Any]]:
    tasks = list(tasks)
    ids = {t.get(k) for t in tasks for k in ("owner_id", "assignee_id") if t.get(k)}
    people = users.find_many(ids)
    now = utcnow()
    return [serialize_task(t, people, now) for t in tasks]


def present_task(task: Dict[str, Any], users: UserStore) -> Dict[str, Any]:
    return present_tasks([task], users)[0]


# -----------------------------
# Dependencies
# -----------------------------
def get_db(request: Request) -> Database:
    return request.app.state.db


def get_users(db: Database = Depends(get_db)) -> UserStore:
    return UserStore(db)


def get_tasks(db: Database = Depends(get_db)) -> TaskStore:
    return TaskStore(db)


def get_sessions(db: Database = Depends(get_db)) -> SessionStore:
    return SessionStore(db)


def get_issuer(
    request: Request,
    users: UserStore = Depends(get_users),
    sessions: SessionStore = Depends(get_sessions),
) -> CredentialIssuer:
    return CredentialIssuer(users, sessions, request.app.state.settings.token_ttl_seconds)


def get_token(authorization: Optional[str] = Header(default=None)) -> str:
    return bearer_token(authorization)


def get_caller(
    token: str = Depends(get_token),
    issuer: CredentialIssuer = Depends(get_issuer),
) -> Caller:
    return Caller.from_claims(issuer.verify_token(token))


def load_task(task_id: str, tasks: TaskStore) -> Dict[str, Any]:
    task = tasks.find_by_id(task_id)
    if not task:
        raise NotFound("Task not found.")
    return task


def save_changes(task_id: str, changes: Dict[str, Any], tasks: TaskStore) -> Dict[str, Any]:
    updated = tasks.update(task_id, changes)
    if not updated:
        raise NotFound("Task not found.")
    return updated


# -----------------------------
# Auth endpoints
# -----------------------------
auth_router = APIRouter(prefix="/api/auth", tags=["auth"])


@auth_router.post("/register")
def register(body: RegisterRequest, users: UserStore = Depends(get_users)):
    role = parse_role(body.role) if body.role is not None else Role.USER
    if role == Role.ADMIN and not users.claim_bootstrap_admin():
        logger.info(f"Admin role requested by {body.email} but the admin slot is taken; registering as user")
        role = Role.USER
    try:
        user = users.create(body.email, hash_password(body.password), role)
    except Conflict:
        if role == Role.ADMIN:
            users.release_bootstrap_admin()
        raise
    return {"message": "Registered", **public_user(user)}


@auth_router.post("/login")
def login(body: LoginRequest, issuer: CredentialIssuer = Depends(get_issuer)):
    user = issuer.authenticate(body.email, body.password)
    token = issuer.issue_token(claims_for(user))
    return {"token": token, "user": public_user(user)}


@auth_router.post("/logout")
def logout(token: str = Depends(get_token), issuer: CredentialIssuer = Depends(get_issuer)):
    issuer.verify_token(token)
    issuer.revoke(token)
    return {"success": True}


@auth_router.get("/me")
def me(caller: Caller = Depends(get_caller), users: UserStore = Depends(get_users)):
    user = users.find_by_id(caller.id)
    if not user:
        raise NotFound("User not found")
    return public_user(user)


# -----------------------------
# User endpoints
# -----------------------------
users_router = APIRouter(prefix="/api/users", tags=["users"])


@users_router.get("")
def list_users(caller: Caller = Depends(get_caller), users: UserStore = Depends(get_users)):
    authorize(caller, Operation.LIST_USERS)
    return {"users": [public_user(u) for u in users.list_all()]}


@users_router.put("/{user_id}/role")
def change_role(
    user_id: str,
    body: RoleUpdate,
    caller: Caller = Depends(get_caller),
    users: UserStore = Depends(get_users),
    sessions: SessionStore = Depends(get_sessions),
):
    authorize(caller, Operation.CHANGE_ROLE)
    role = parse_role(body.role)
    user = users.find_by_id(user_id)
    if not user:
        raise NotFound("User not found.")
    if user.get("role") != role.value:
        user["role"] = role.value
        user = users.save(user)
        # outstanding tokens carry the old role
        sessions.delete_for_user(user["_id"])
        logger.info(f"Role changed | user_id={user_id} | role={role.value} | by={caller.id}")
    return {"success": True, **public_user(user)}


@users_router.delete("/{user_id}")
def delete_user(
    user_id: str,
    caller: Caller = Depends(get_caller),
    users: UserStore = Depends(get_users),
    tasks: TaskStore = Depends(get_tasks),
    sessions: SessionStore = Depends(get_sessions),
):
    target = users.find_by_id(user_id)
    authorize(caller, Operation.DELETE_USER, target=UserRef.from_document(target) if target else None)
    removed = tasks.delete_owned_by(target["_id"])
    tasks.clear_assignee(target["_id"])
    sessions.delete_for_user(target["_id"])
    if not users.delete(target["_id"]):
        raise NotFound("User not found.")
    logger.info(f"User deleted | user_id={user_id} | owned_tasks_removed={removed} | by={caller.id}")
    return {"success": True}


# -----------------------------
# Task endpoints
# -----------------------------
tasks_router = APIRouter(prefix="/api/tasks", tags=["tasks"])


@tasks_router.post("")
def create_task(
    body: TaskCreate,
    caller: Caller = Depends(get_caller),
    users: UserStore = Depends(get_users),
    tasks: TaskStore = Depends(get_tasks),
):
    authorize(caller, Operation.CREATE_TASK)
    if not users.find_by_id(caller.id):
        raise InvalidInput("User not found.")
    assignee_id = caller.id
    if body.assignee_id and body.assignee_id != caller.id:
        authorize(caller, Operation.ASSIGN_TASK)
        assignee = users.find_by_id(body.assignee_id)
        if not assignee:
            raise InvalidInput("Assignee not found.")
        assignee_id = str(assignee["_id"])
    status = lifecycle.creation_status(body.status, caller, assignee_id)
    task = tasks.create({
        "title": body.title,
        "status": status,
        "category": body.category,
        "due_date": body.due_date,
        "completed_at": utcnow() if status == TaskStatus.DONE else None,
        "owner_id": caller.id,
        "assignee_id": assignee_id,
    })
    logger.info(f"Task created | task_id={task['_id']} | owner={caller.id} | assignee={assignee_id}")
    return present_task(task, users)


@tasks_router.get("")
def list_tasks(
    caller: Caller = Depends(get_caller),
    users: UserStore = Depends(get_users),
    tasks: TaskStore = Depends(get_tasks),
    status: Optional[str] = None,
    category: Optional[str] = None,
    completed_from: Optional[datetime] = Query(None, alias="from"),
    completed_to: Optional[datetime] = Query(None, alias="to"),
    due_from: Optional[datetime] = Query(None, alias="dueFrom"),
    due_to: Optional[datetime] = Query(None, alias="dueTo"),
    owner: Optional[str] = None,
    assignee: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100, alias="pageSize"),
    sort: str = Query("desc", pattern="^(asc|desc)$"),
):
    if status and status != "All":
        status = lifecycle.parse_status(status).value
    else:
        status = None
    filters = TaskFilters(
        status=status,
        category=category,
        completed_from=completed_from,
        completed_to=completed_to,
        due_from=due_from,
        due_to=due_to,
        owner_id=owner,
        assignee_id=assignee,
        visible_to=None if caller.is_admin else caller.id,
    )
    found, total = tasks.query(filters, page=page, page_size=page_size, sort=sort)
    return {"tasks": present_tasks(found, users), "total": total, "page": page, "pageSize": page_size}


@tasks_router.get("/upcoming")
def upcoming_tasks(
    caller: Caller = Depends(get_caller),
    users: UserStore = Depends(get_users),
    tasks: TaskStore = Depends(get_tasks),
):
    now = utcnow()
    upcoming = tasks.open_tasks_due(caller.id, due_from=now, due_to=now + UPCOMING_WINDOW)
    late = [t for t in tasks.open_tasks_due(caller.id, due_to=now) if lifecycle.is_overdue(t, now)]
    return {"upcoming": present_tasks(upcoming, users), "late": present_tasks(late, users)}


@tasks_router.get("/{task_id}")
def get_task(
    task_id: str,
    caller: Caller = Depends(get_caller),
    users: UserStore = Depends(get_users),
    tasks: TaskStore = Depends(get_tasks),
):
    task = load_task(task_id, tasks)
    authorize(caller, Operation.READ_TASK, task=TaskRef.from_document(task))
    return present_task(task, users)


@tasks_router.put("/{task_id}")
def update_task(
    task_id: str,
    body: TaskUpdate,
    caller: Caller = Depends(get_caller),
    users: UserStore = Depends(get_users),
    tasks: TaskStore = Depends(get_tasks),
):
    task = load_task(task_id, tasks)
    authorize(caller, Operation.UPDATE_TASK, task=TaskRef.from_document(task))
    if "title" in body.model_fields_set and body.title is None:
        raise InvalidInput("Title cannot be empty.")
    changes: Dict[str, Any] = {}
    for field in ("title", "category", "due_date"):
        if field in body.model_fields_set:
            changes[field] = getattr(body, field)
    if "status" in body.model_fields_set:
        changes.update(lifecycle.transition(task, body.status, utcnow()))
    if not changes:
        return present_task(task, users)
    return present_task(save_changes(task_id, changes, tasks), users)


@tasks_router.put("/{task_id}/status")
def update_task_status(
    task_id: str,
    body: StatusUpdate,
    caller: Caller = Depends(get_caller),
    users: UserStore = Depends(get_users),
    tasks: TaskStore = Depends(get_tasks),
):
    lifecycle.parse_status(body.status)
    task = load_task(task_id, tasks)
    authorize(caller, Operation.UPDATE_TASK, task=TaskRef.from_document(task))
    changes = lifecycle.transition(task, body.status, utcnow())
    return present_task(save_changes(task_id, changes, tasks), users)


@tasks_router.put("/{task_id}/assign")
def assign_task(
    task_id: str,
    body: AssignRequest,
    caller: Caller = Depends(get_caller),
    users: UserStore = Depends(get_users),
    tasks: TaskStore = Depends(get_tasks),
):
    authorize(caller, Operation.ASSIGN_TASK)
    if not body.assignee_id:
        raise InvalidInput("Missing assigneeId in request body.")
    task = load_task(task_id, tasks)
    assignee = users.find_by_id(body.assignee_id)
    if not assignee:
        raise InvalidInput("Assignee not found.")
    if task.get("assignee_id") == assignee["_id"]:
        raise Conflict("User is already assigned to this task.")
    updated = save_changes(task_id, lifecycle.assignment_changes(str(assignee["_id"])), tasks)
    logger.info(f"Task assigned | task_id={task_id} | assignee={assignee['_id']} | by={caller.id}")
    return present_task(updated, users)


@tasks_router.put("/{task_id}/accept")
def accept_task(
    task_id: str,
    caller: Caller = Depends(get_caller),
    users: UserStore = Depends(get_users),
    tasks: TaskStore = Depends(get_tasks),
):
    task = load_task(task_id, tasks)
    authorize(caller, Operation.ACCEPT_TASK, task=TaskRef.from_document(task))
    changes = lifecycle.accept(task)
    if changes:
        task = save_changes(task_id, changes, tasks)
    return present_task(task, users)


@tasks_router.delete("/{task_id}")
def delete_task(
    task_id: str,
    caller: Caller = Depends(get_caller),
    tasks: TaskStore = Depends(get_tasks),
):
    task = load_task(task_id, tasks)
    authorize(caller, Operation.DELETE_TASK, task=TaskRef.from_document(task))
    if not tasks.delete(task_id):
        raise NotFound("Task not found.")
    logger.info(f"Task deleted | task_id={task_id} | by={caller.id}")
    return {"success": True}


# -----------------------------
# Health/Test
# -----------------------------
meta_router = APIRouter(tags=["meta"])


@meta_router.get("/")
def read_root():
    return {"message": "Maintenance Tracker API running"}


@meta_router.get("/api/hello")
def hello():
    return {"message": "Hello from backend!"}


@meta_router.get("/test")
def test_database(request: Request):
    settings: Settings = request.app.state.settings
    db = request.app.state.db
    response = {
        "backend": "Running",
        "database": "Not Available",
        "database_name": settings.database_name,
        "connection_status": "Not Connected",
        "collections": [],
    }
    if db is None:
        return response
    response["connection_status"] = "Connected"
    try:
        response["collections"] = db.list_collection_names()[:10]
        response["database"] = "Connected & Working"
    except Exception as e:
        logger.warning(f"Database check failed: {e}")
        response["database"] = f"Connected but Error: {str(e)[:50]}"
    return response


# -----------------------------
# Application factory
# -----------------------------
def create_app(database: Optional[Database] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Build the API around an explicit database handle.

    When ``database`` is None the lifespan opens a MongoDB client from
    ``settings`` on startup and closes it on shutdown. ``settings`` defaults
    to the environment. Nothing is built at import time; serve with
    ``uvicorn main:create_app --factory``.
    """
    settings = settings or load_settings()
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        client = None
        if app.state.db is None:
            client = connect(settings)
            app.state.db = client[settings.database_name]
            ensure_indexes(app.state.db)
        try:
            yield
        finally:
            if client is not None:
                client.close()
                app.state.db = None

    app = FastAPI(title="Maintenance Tracker API", lifespan=lifespan)
    app.state.settings = settings
    app.state.db = database
    if database is not None:
        ensure_indexes(database)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_origin_regex=settings.allowed_origin_regex,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)
    app.include_router(meta_router)
    app.include_router(auth_router)
    app.include_router(users_router)
    app.include_router(tasks_router)
    return app


if __name__ == "__main__":
    # equivalent to: uvicorn main:create_app --factory
    import uvicorn
    uvicorn.run("main:create_app", factory=True, host="0.0.0.0", port=load_settings().port)
