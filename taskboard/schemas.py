"""Request and response bodies for the HTTP API.

Field names are snake_case in Python and camelCase on the wire.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from .models import AuditLogEntry, Project, Role, Task, TaskPriority, TaskStatus, User


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _strip_required(value: str) -> str:
    stripped = value.strip()
    if not stripped:
        raise ValueError("must not be empty")
    return stripped


class RegisterRequest(CamelModel):
    username: str = Field(..., min_length=1, max_length=64)
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=256)
    role: Role = Role.MEMBER

    @field_validator("username")
    @classmethod
    def _normalize_username(cls, value: str) -> str:
        return _strip_required(value)


class LoginRequest(CamelModel):
    # Missing credentials are rejected by the login check as invalid, not here.
    email: Optional[str] = None
    password: Optional[str] = None


class ChangeRoleRequest(CamelModel):
    user_id: int
    role: Role


class CreateProjectRequest(CamelModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, value: str) -> str:
        return _strip_required(value)


class AssignManagerRequest(CamelModel):
    project_id: int
    manager_id: int


class CreateTaskRequest(CamelModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    project_id: int
    assigned_to: int
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM

    @field_validator("title")
    @classmethod
    def _normalize_title(cls, value: str) -> str:
        return _strip_required(value)


class UpdateTaskRequest(CamelModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    assigned_to: Optional[int] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None

    @field_validator("title")
    @classmethod
    def _normalize_title(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return _strip_required(value)


class MessageResponse(CamelModel):
    message: str


class UserResponse(CamelModel):
    id: int
    username: str
    email: str
    role: Role
    created_at: datetime


class RegisterResponse(CamelModel):
    message: str
    user_id: int


class LoginResponse(CamelModel):
    token: str
    user: UserResponse


class ProjectResponse(CamelModel):
    id: int
    name: str
    description: Optional[str]
    owner_id: int
    managers: List[int]
    created_at: datetime


class TaskResponse(CamelModel):
    id: int
    title: str
    description: Optional[str]
    status: TaskStatus
    priority: TaskPriority
    project_id: int
    assigned_to: int
    created_at: datetime
    updated_at: datetime


class AuditLogResponse(CamelModel):
    id: int
    action: str
    actor_id: int
    target_id: Optional[str]
    details: Dict[str, Any]
    timestamp: datetime


def user_to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        username=user.username,
        email=user.email,
        role=user.role,
        created_at=user.created_at,
    )


def project_to_response(project: Project) -> ProjectResponse:
    return ProjectResponse(
        id=project.id,
        name=project.name,
        description=project.description,
        owner_id=project.owner_id,
        managers=list(project.managers),
        created_at=project.created_at,
    )


def task_to_response(task: Task) -> TaskResponse:
    return TaskResponse(
        id=task.id,
        title=task.title,
        description=task.description,
        status=task.status,
        priority=task.priority,
        project_id=task.project_id,
        assigned_to=task.assigned_to,
        created_at=task.created_at,
        updated_at=task.updated_at,
    )


def audit_entry_to_response(entry: AuditLogEntry) -> AuditLogResponse:
    return AuditLogResponse(
        id=entry.id,
        action=entry.action,
        actor_id=entry.actor_id,
        target_id=entry.target_id,
        details=dict(entry.details),
        timestamp=entry.timestamp,
    )


def to_wire(model: BaseModel) -> Dict[str, Any]:
    """Dump a response model exactly as the HTTP API would render it."""

    return model.model_dump(mode="json", by_alias=True)


__all__ = [
    "AssignManagerRequest",
    "AuditLogResponse",
    "ChangeRoleRequest",
    "CreateProjectRequest",
    "CreateTaskRequest",
    "LoginRequest",
    "LoginResponse",
    "MessageResponse",
    "ProjectResponse",
    "RegisterRequest",
    "RegisterResponse",
    "TaskResponse",
    "UpdateTaskRequest",
    "UserResponse",
    "audit_entry_to_response",
    "project_to_response",
    "task_to_response",
    "to_wire",
    "user_to_response",
]
