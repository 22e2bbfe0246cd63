"""Domain services for users, projects and tasks.

Every mutating operation follows the same sequence: check the caller's role,
perform one write, record one audit entry and publish at most one real-time
event to the affected audience.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic.alias_generators import to_camel

from . import audit, realtime
from .audit import AuditLogService
from .database import Database
from .errors import InvalidCredentialsError, NotFoundError, PermissionDeniedError
from .models import AuditLogEntry, Project, Role, Task, TaskPriority, TaskStatus, User
from .permissions import Action, Scope, can_update_task, list_scope, require
from .realtime import Broadcaster
from .schemas import project_to_response, task_to_response, to_wire
from .security import Principal, TokenAuth

logger = logging.getLogger("taskboard.services")


class UserService:
    def __init__(
        self,
        database: Database,
        audit_log: AuditLogService,
        broadcaster: Broadcaster,
        auth: TokenAuth,
    ) -> None:
        self._database = database
        self._audit = audit_log
        self._broadcaster = broadcaster
        self._auth = auth

    def register(self, *, username: str, email: str, password: str, role: Role) -> User:
        user = self._database.create_user(username, email, password, role)
        self._audit.log_action(
            audit.USER_REGISTERED,
            user.id,
            user.id,
            {"email": user.email, "role": user.role.value},
        )
        logger.info("Registered user %s with role %s", user.id, user.role.value)
        return user

    def login(self, email: Optional[str], password: Optional[str]) -> Tuple[str, User]:
        if not email or not password:
            raise InvalidCredentialsError("Invalid credentials")
        user = self._database.authenticate_user(email, password)
        if user is None:
            raise InvalidCredentialsError("Invalid credentials")
        return self._auth.issue(user), user

    def change_role(self, caller: Principal, user_id: int, role: Role) -> User:
        require(caller.role, Action.CHANGE_ROLE)

        existing = self._database.get_user(user_id)
        if existing is None:
            raise NotFoundError("User not found")

        updated = self._database.update_user_role(user_id, role)
        if updated is None:
            raise NotFoundError("User not found")

        self._audit.log_action(
            audit.ROLE_CHANGE,
            caller.id,
            user_id,
            {"oldRole": existing.role.value, "newRole": updated.role.value},
        )
        self._broadcaster.publish(
            realtime.user_channel(user_id),
            realtime.ROLE_UPDATED,
            {"userId": updated.id, "newRole": updated.role.value},
        )
        logger.info("Role for user %s changed from %s to %s", user_id, existing.role.value, updated.role.value)
        return updated

    def list_users(self, caller: Principal, role: Optional[Role] = None) -> List[User]:
        require(caller.role, Action.LIST_USERS)
        return self._database.list_users(role)


class ProjectService:
    def __init__(self, database: Database, audit_log: AuditLogService, broadcaster: Broadcaster) -> None:
        self._database = database
        self._audit = audit_log
        self._broadcaster = broadcaster

    def create(self, caller: Principal, *, name: str, description: Optional[str]) -> Project:
        require(caller.role, Action.CREATE_PROJECT)
        project = self._database.create_project(name, description, caller.id)
        self._audit.log_action(
            audit.PROJECT_CREATED,
            caller.id,
            project.id,
            {"projectId": project.id, "projectName": project.name},
        )
        return project

    def delete(self, caller: Principal, project_id: int) -> None:
        """Delete the project; its tasks are left in place with a dangling reference."""

        require(caller.role, Action.DELETE_PROJECT)
        if not self._database.delete_project(project_id):
            raise NotFoundError("Project not found")

        self._audit.log_action(audit.PROJECT_DELETED, caller.id, project_id, {"projectId": project_id})
        self._broadcaster.publish_global(realtime.PROJECT_DELETED, {"projectId": project_id})

    def assign_manager(self, caller: Principal, project_id: int, manager_id: int) -> Project:
        require(caller.role, Action.ASSIGN_MANAGER)

        if self._database.get_user(manager_id) is None:
            raise NotFoundError("Project not found or manager could not be assigned.")
        project = self._database.add_project_manager(project_id, manager_id)
        if project is None:
            raise NotFoundError("Project not found or manager could not be assigned.")

        self._audit.log_action(
            audit.MANAGER_ASSIGNED_TO_PROJECT,
            caller.id,
            project_id,
            {"managerId": manager_id, "projectId": project_id},
        )
        self._broadcaster.publish(
            realtime.user_channel(manager_id),
            realtime.MANAGER_ASSIGNED,
            {"projectId": project.id, "project": to_wire(project_to_response(project))},
        )
        return project

    def list_for(self, caller: Principal) -> List[Project]:
        scope = list_scope(caller.role, Action.LIST_PROJECTS)
        if scope is Scope.ALL:
            return self._database.list_projects()
        return self._database.list_projects_for_manager(caller.id)

    def can_follow(self, caller: Principal, project_id: int) -> bool:
        """Whether ``caller`` may subscribe to the project's activity channel."""

        project = self._database.get_project(project_id)
        if project is None:
            return False
        if caller.role is Role.ADMIN:
            return True
        if caller.role is Role.MANAGER and caller.id in project.managers:
            return True
        return any(task.project_id == project_id for task in self._database.list_tasks_for_assignee(caller.id))


class TaskService:
    _UPDATABLE = ("title", "description", "assigned_to", "status", "priority")

    def __init__(self, database: Database, audit_log: AuditLogService, broadcaster: Broadcaster) -> None:
        self._database = database
        self._audit = audit_log
        self._broadcaster = broadcaster

    def create(
        self,
        caller: Principal,
        *,
        title: str,
        description: Optional[str],
        project_id: int,
        assigned_to: int,
        status: TaskStatus = TaskStatus.PENDING,
        priority: TaskPriority = TaskPriority.MEDIUM,
    ) -> Task:
        require(caller.role, Action.CREATE_TASK)

        if self._database.get_project(project_id) is None:
            raise NotFoundError("Project not found")
        if self._database.get_user(assigned_to) is None:
            raise NotFoundError("Assigned user not found")

        task = self._database.create_task(
            title=title,
            description=description,
            project_id=project_id,
            assigned_to=assigned_to,
            status=status,
            priority=priority,
        )

        self._audit.log_action(
            audit.TASK_CREATED,
            caller.id,
            task.id,
            {"taskId": task.id, "assignedTo": task.assigned_to},
        )
        self._broadcaster.publish(
            realtime.user_channel(task.assigned_to),
            realtime.NEW_TASK_ASSIGNED,
            {
                "message": f"You have been assigned a new task: {task.title}",
                "task": to_wire(task_to_response(task)),
            },
        )
        return task

    def get(self, task_id: int) -> Task:
        task = self._database.get_task(task_id)
        if task is None:
            raise NotFoundError("Task not found")
        return task

    def update(self, caller: Principal, task_id: int, changes: Mapping[str, object]) -> Task:
        """Apply the supplied fields only; status may move between any two values."""

        task = self.get(task_id)
        if not can_update_task(caller.role, caller.id, task):
            raise PermissionDeniedError("Forbidden: You do not have permission to update this task.")

        sanitized: Dict[str, object] = {}
        for key in self._UPDATABLE:
            if key not in changes:
                continue
            value = changes[key]
            if key == "description" and isinstance(value, str):
                value = value.strip() or None
            if value is None and key != "description":
                continue
            sanitized[key] = value

        if not sanitized:
            return task

        new_assignee = sanitized.get("assigned_to")
        if new_assignee is not None and self._database.get_user(int(new_assignee)) is None:
            raise NotFoundError("Assigned user not found")

        updated = self._database.update_task(task_id, **sanitized)
        if updated is None:
            raise NotFoundError("Task not found")

        updated_fields = _to_wire_fields(sanitized)
        self._audit.log_action(audit.TASK_UPDATED, caller.id, task_id, {"updates": updated_fields})
        self._broadcaster.publish(
            realtime.project_channel(updated.project_id),
            realtime.TASK_UPDATED,
            {"taskId": updated.id, "updatedFields": updated_fields},
        )
        return updated

    def list_for(self, caller: Principal) -> List[Task]:
        scope = list_scope(caller.role, Action.LIST_TASKS)
        if scope is Scope.ALL:
            return self._database.list_tasks()
        if scope is Scope.MANAGED_PROJECTS:
            projects = self._database.list_projects_for_manager(caller.id)
            return self._database.list_tasks_for_projects([project.id for project in projects])
        return self._database.list_tasks_for_assignee(caller.id)


class AuditQueryService:
    def __init__(self, audit_log: AuditLogService) -> None:
        self._audit = audit_log

    def list_for(self, caller: Principal) -> List[AuditLogEntry]:
        require(caller.role, Action.LIST_AUDIT_LOGS)
        return self._audit.list_entries()


def _to_wire_fields(fields: Mapping[str, object]) -> Dict[str, Any]:
    wire: Dict[str, Any] = {}
    for key, value in fields.items():
        if isinstance(value, Enum):
            value = value.value
        wire[to_camel(key)] = value
    return wire


__all__ = ["AuditQueryService", "ProjectService", "TaskService", "UserService"]
