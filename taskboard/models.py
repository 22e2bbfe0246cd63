"""Domain models for users, projects, tasks and the audit trail."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class Role(str, Enum):
    """The three flat actor roles."""

    ADMIN = "Admin"
    MANAGER = "Manager"
    MEMBER = "Member"


class TaskStatus(str, Enum):
    PENDING = "Pending"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"


class TaskPriority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


@dataclass(frozen=True)
class User:
    """Represents a user account stored in the database."""

    id: int
    username: str
    email: str
    role: Role
    created_at: datetime


@dataclass(frozen=True)
class Project:
    id: int
    name: str
    description: Optional[str]
    owner_id: int
    created_at: datetime
    managers: Tuple[int, ...] = ()


@dataclass(frozen=True)
class Task:
    id: int
    title: str
    description: Optional[str]
    status: TaskStatus
    priority: TaskPriority
    project_id: int
    assigned_to: int
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class AuditLogEntry:
    """Immutable record of a mutating action."""

    id: int
    action: str
    actor_id: int
    target_id: Optional[str]
    timestamp: datetime
    details: Dict[str, Any] = field(default_factory=dict)


__all__ = [
    "AuditLogEntry",
    "Project",
    "Role",
    "Task",
    "TaskPriority",
    "TaskStatus",
    "User",
]
