"""Declarative role-based access rules.

Each protected action maps to the exact set of roles allowed to perform it.
There is no hierarchy: an Admin may only do what the table grants to Admin.
Listing actions additionally map each role to the slice of data it may see.
"""
from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, Optional

from .errors import PermissionDeniedError
from .models import Role, Task


class Action(str, Enum):
    LIST_AUDIT_LOGS = "auditlogs:list"
    LIST_USERS = "users:list"
    CHANGE_ROLE = "users:change-role"
    CREATE_PROJECT = "projects:create"
    DELETE_PROJECT = "projects:delete"
    ASSIGN_MANAGER = "projects:assign-manager"
    LIST_PROJECTS = "projects:list"
    CREATE_TASK = "tasks:create"
    UPDATE_TASK = "tasks:update"
    LIST_TASKS = "tasks:list"


class Scope(str, Enum):
    """Which records a role sees when listing."""

    ALL = "all"
    MANAGED_PROJECTS = "managed-projects"
    ASSIGNED = "assigned"


PERMISSIONS: Dict[Action, FrozenSet[Role]] = {
    Action.LIST_AUDIT_LOGS: frozenset({Role.ADMIN}),
    Action.LIST_USERS: frozenset({Role.ADMIN}),
    Action.CHANGE_ROLE: frozenset({Role.ADMIN}),
    Action.CREATE_PROJECT: frozenset({Role.ADMIN}),
    Action.DELETE_PROJECT: frozenset({Role.ADMIN}),
    Action.ASSIGN_MANAGER: frozenset({Role.ADMIN}),
    Action.LIST_PROJECTS: frozenset({Role.ADMIN, Role.MANAGER}),
    Action.CREATE_TASK: frozenset({Role.MANAGER}),
    # The current assignee may also update, see can_update_task().
    Action.UPDATE_TASK: frozenset({Role.MANAGER}),
    Action.LIST_TASKS: frozenset({Role.ADMIN, Role.MANAGER, Role.MEMBER}),
}

LIST_SCOPES: Dict[Action, Dict[Role, Scope]] = {
    Action.LIST_PROJECTS: {
        Role.ADMIN: Scope.ALL,
        Role.MANAGER: Scope.MANAGED_PROJECTS,
    },
    Action.LIST_TASKS: {
        Role.ADMIN: Scope.ALL,
        Role.MANAGER: Scope.MANAGED_PROJECTS,
        Role.MEMBER: Scope.ASSIGNED,
    },
}

_DENIED_MESSAGES: Dict[Action, str] = {
    Action.LIST_AUDIT_LOGS: "Forbidden: Only admin can access audit logs.",
    Action.CHANGE_ROLE: "Forbidden: Only Admins can change user roles.",
    Action.LIST_PROJECTS: "Forbidden: You do not have permission to view projects.",
    Action.ASSIGN_MANAGER: "Forbidden: You do not have permission to assign managers.",
    Action.CREATE_TASK: "Forbidden: Only managers can create tasks.",
    Action.UPDATE_TASK: "Forbidden: You do not have permission to update this task.",
}


def is_allowed(role: Role, action: Action) -> bool:
    return role in PERMISSIONS.get(action, frozenset())


def require(role: Role, action: Action) -> None:
    """Raise :class:`PermissionDeniedError` unless ``role`` may perform ``action``."""

    if not is_allowed(role, action):
        raise PermissionDeniedError(
            _DENIED_MESSAGES.get(action, "Forbidden: You do not have access to this resource.")
        )


def can_update_task(role: Role, user_id: int, task: Task) -> bool:
    return is_allowed(role, Action.UPDATE_TASK) or task.assigned_to == user_id


def list_scope(role: Role, action: Action) -> Scope:
    require(role, action)
    scope: Optional[Scope] = LIST_SCOPES.get(action, {}).get(role)
    if scope is None:
        raise PermissionDeniedError(_DENIED_MESSAGES.get(action, "Forbidden"))
    return scope


__all__ = [
    "Action",
    "LIST_SCOPES",
    "PERMISSIONS",
    "Scope",
    "can_update_task",
    "is_allowed",
    "list_scope",
    "require",
]
