"""
Database Schemas and request bodies for the Maintenance Tracker

Each document Pydantic model describes a MongoDB collection. The collection
name is lowercased from the class name, e.g. User -> "user".

Request bodies use the camelCase field names the frontend sends (dueDate,
assigneeId); Python code reads them through snake_case attributes.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


class Role(str, Enum):
    """Closed set of user roles."""
    USER = "user"
    ADMIN = "admin"


class TaskStatus(str, Enum):
    """Stored task statuses. "Overdue" is derived, never stored."""
    PENDING = "Pending"
    ACCEPTED = "Accepted"
    IN_PROGRESS = "In-Progress"
    DONE = "Done"


# Documents
class _Document(BaseModel):
    model_config = ConfigDict(use_enum_values=True)


class User(_Document):
    email: EmailStr = Field(..., description="Unique, lowercased email")
    password: str = Field(..., description="salt:digest; never returned in responses")
    role: Role = Role.USER


class Task(_Document):
    title: str
    status: TaskStatus = TaskStatus.PENDING
    category: Optional[str] = None
    due_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    owner_id: str = Field(..., description="User id of the creator")
    assignee_id: Optional[str] = None


class Session(_Document):
    token: str
    user_id: str
    claims: Dict[str, Any]
    expires_at: datetime


# Requests
class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RegisterRequest(_Body):
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    role: Optional[str] = None

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value


class LoginRequest(_Body):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value


class TaskCreate(_Body):
    title: str = Field(..., max_length=200)
    status: Optional[str] = None
    category: Optional[str] = Field(None, max_length=100)
    due_date: Optional[datetime] = Field(None, alias="dueDate")
    assignee_id: Optional[str] = Field(None, alias="assigneeId")

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Title is required.")
        return value


class TaskUpdate(_Body):
    title: Optional[str] = Field(None, max_length=200)
    status: Optional[str] = None
    category: Optional[str] = Field(None, max_length=100)
    due_date: Optional[datetime] = Field(None, alias="dueDate")

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        value = value.strip()
        if not value:
            raise ValueError("Title cannot be empty.")
        return value


class StatusUpdate(_Body):
    status: Optional[str] = None


class AssignRequest(_Body):
    assignee_id: Optional[str] = Field(None, alias="assigneeId")


class RoleUpdate(_Body):
    role: Optional[str] = None
