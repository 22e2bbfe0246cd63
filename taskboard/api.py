"""FastAPI application exposing the task board REST and WebSocket surface."""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request, WebSocket, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .audit import AuditLogService
from .config import Settings, load_settings
from .database import Database
from .errors import AuthenticationError, ServiceError
from .models import Role, User
from .realtime import Broadcaster, QueueSubscriber, user_channel
from .schemas import (
    AssignManagerRequest,
    AuditLogResponse,
    ChangeRoleRequest,
    CreateProjectRequest,
    CreateTaskRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    ProjectResponse,
    RegisterRequest,
    RegisterResponse,
    TaskResponse,
    UpdateTaskRequest,
    UserResponse,
    audit_entry_to_response,
    project_to_response,
    task_to_response,
    user_to_response,
)
from .security import Principal, TokenAuth
from .services import AuditQueryService, ProjectService, TaskService, UserService
from .streams import stream_events

logger = logging.getLogger("taskboard.api")

GENERIC_ERROR = "Server error"


def create_app(
    *,
    settings: Settings | None = None,
    database: Database | None = None,
    broadcaster: Broadcaster | None = None,
    auth: TokenAuth | None = None,
    initialize_database: bool = False,
) -> FastAPI:
    if settings is None:
        settings = load_settings()

    if database is None:
        database = Database(settings.database_path)
        database.initialize()
    elif initialize_database:
        database.initialize()

    if broadcaster is None:
        broadcaster = Broadcaster()

    if auth is None:
        auth = TokenAuth(
            settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
            ttl=timedelta(minutes=settings.token_ttl_minutes),
        )

    audit_log = AuditLogService(database)
    users = UserService(database, audit_log, broadcaster, auth)
    projects = ProjectService(database, audit_log, broadcaster)
    tasks = TaskService(database, audit_log, broadcaster)
    audit_queries = AuditQueryService(audit_log)

    app = FastAPI(
        title="Taskboard API",
        description="Role-based project and task tracking with audit logging and live notifications",
        version="1.0.0",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )
    app.state.settings = settings
    app.state.database = database
    app.state.broadcaster = broadcaster

    async def get_current_user(request: Request) -> Principal:
        return await auth(request)

    @app.get("/health")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    users_router = APIRouter(prefix="/api/users", tags=["Users"])

    @users_router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
    async def register_user(payload: RegisterRequest) -> RegisterResponse:
        try:
            user = users.register(
                username=payload.username,
                email=payload.email,
                password=payload.password,
                role=payload.role,
            )
        except ValueError as exc:
            raise ServiceError(str(exc)) from exc
        return RegisterResponse(message="User registered successfully", user_id=user.id)

    @users_router.post("/login", response_model=LoginResponse)
    async def login(payload: LoginRequest) -> LoginResponse:
        token, user = users.login(payload.email, payload.password)
        return LoginResponse(token=token, user=user_to_response(user))

    @users_router.put("/role", response_model=UserResponse)
    async def change_role(
        payload: ChangeRoleRequest,
        current_user: Principal = Depends(get_current_user),
    ) -> UserResponse:
        updated = users.change_role(current_user, payload.user_id, payload.role)
        return user_to_response(updated)

    @users_router.get("", response_model=List[UserResponse])
    async def list_users(
        role: Optional[Role] = Query(default=None),
        current_user: Principal = Depends(get_current_user),
    ) -> List[UserResponse]:
        return [user_to_response(user) for user in users.list_users(current_user, role)]

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------
    projects_router = APIRouter(prefix="/api/projects", tags=["Projects"])

    @projects_router.post("", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
    async def create_project(
        payload: CreateProjectRequest,
        current_user: Principal = Depends(get_current_user),
    ) -> ProjectResponse:
        project = projects.create(current_user, name=payload.name, description=payload.description)
        return project_to_response(project)

    @projects_router.get("", response_model=List[ProjectResponse])
    async def list_projects(current_user: Principal = Depends(get_current_user)) -> List[ProjectResponse]:
        return [project_to_response(project) for project in projects.list_for(current_user)]

    @projects_router.put("/assign-manager", response_model=ProjectResponse)
    async def assign_manager(
        payload: AssignManagerRequest,
        current_user: Principal = Depends(get_current_user),
    ) -> ProjectResponse:
        project = projects.assign_manager(current_user, payload.project_id, payload.manager_id)
        return project_to_response(project)

    @projects_router.delete("/{project_id}", response_model=MessageResponse)
    async def delete_project(
        project_id: int,
        current_user: Principal = Depends(get_current_user),
    ) -> MessageResponse:
        projects.delete(current_user, project_id)
        return MessageResponse(message="Project deleted successfully")

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------
    tasks_router = APIRouter(prefix="/api/tasks", tags=["Tasks"])

    @tasks_router.post("", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
    async def create_task(
        payload: CreateTaskRequest,
        current_user: Principal = Depends(get_current_user),
    ) -> TaskResponse:
        task = tasks.create(
            current_user,
            title=payload.title,
            description=payload.description,
            project_id=payload.project_id,
            assigned_to=payload.assigned_to,
            status=payload.status,
            priority=payload.priority,
        )
        return task_to_response(task)

    @tasks_router.put("/{task_id}", response_model=TaskResponse)
    async def update_task(
        task_id: int,
        payload: UpdateTaskRequest,
        current_user: Principal = Depends(get_current_user),
    ) -> TaskResponse:
        updated = tasks.update(current_user, task_id, payload.model_dump(exclude_unset=True))
        return task_to_response(updated)

    @tasks_router.get("", response_model=List[TaskResponse])
    async def list_tasks(current_user: Principal = Depends(get_current_user)) -> List[TaskResponse]:
        return [task_to_response(task) for task in tasks.list_for(current_user)]

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------
    audit_router = APIRouter(prefix="/api/auditlogs", tags=["Audit"])

    @audit_router.get("", response_model=List[AuditLogResponse])
    async def list_audit_logs(current_user: Principal = Depends(get_current_user)) -> List[AuditLogResponse]:
        return [audit_entry_to_response(entry) for entry in audit_queries.list_for(current_user)]

    app.include_router(users_router)
    app.include_router(projects_router)
    app.include_router(tasks_router)
    app.include_router(audit_router)

    # ------------------------------------------------------------------
    # Real-time events
    # ------------------------------------------------------------------
    def _authenticate_websocket(websocket: WebSocket) -> tuple[Principal | None, User | None]:
        header = websocket.headers.get("authorization")
        if not header:
            token = websocket.query_params.get("token")
            header = f"Bearer {token}" if token else None
        try:
            principal = auth.authenticate_header(header)
        except AuthenticationError:
            return None, None
        user = database.get_user(principal.id)
        if user is None:
            return None, None
        return principal, user

    @app.websocket("/ws")
    async def event_stream(websocket: WebSocket):
        principal, user = _authenticate_websocket(websocket)
        if principal is None or user is None:
            await websocket.close(code=4401)
            return

        def can_join(channel: str) -> bool:
            if channel == user_channel(principal.id):
                return True
            prefix, _, raw_id = channel.partition(":")
            if prefix != "project":
                return False
            try:
                project_id = int(raw_id)
            except ValueError:
                return False
            return projects.can_follow(principal, project_id)

        await websocket.accept()
        subscriber = QueueSubscriber(user_id=user.id, username=user.username, role=principal.role.value)
        await stream_events(websocket, subscriber, broadcaster, can_join=can_join)

    # ------------------------------------------------------------------
    # Error handling
    # ------------------------------------------------------------------
    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
            return JSONResponse(status_code=exc.status_code, content={"detail": GENERIC_ERROR})
        headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthenticationError) else None
        return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)}, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        logger.warning("Rejected request body for %s %s: %s", request.method, request.url.path, exc.errors())
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": GENERIC_ERROR})

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.exception("Unhandled error during %s %s", request.method, request.url.path)
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": GENERIC_ERROR})

    return app


__all__ = ["create_app"]
