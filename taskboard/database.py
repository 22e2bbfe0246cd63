"""SQLite-backed persistence for users, projects, tasks and audit entries."""
from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from passlib.context import CryptContext

from .models import AuditLogEntry, Project, Role, Task, TaskPriority, TaskStatus, User


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the application database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "taskboard.sqlite3").resolve(strict=False)


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    return value.isoformat()


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


_pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def _hash_password(password: str) -> str:
    return _pwd_context.hash(password)


def _verify_password(password: str, hashed: str) -> bool:
    try:
        return _pwd_context.verify(password, hashed)
    except ValueError:
        return False


def _normalize_email(email: str) -> str:
    return email.strip().lower()


# SQLite INTEGER is a signed 64-bit value.
_MAX_ROWID = 2**63 - 1


def _is_rowid(value: int) -> bool:
    return 0 < value <= _MAX_ROWID


class Database:
    """Simple wrapper around SQLite for persisting the task board."""

    def __init__(self, path: Path) -> None:
        _ensure_directory(path)
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        # Tasks carry no foreign keys: deleting a project leaves
        # its tasks in place with a dangling project_id.
        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    username TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    role TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS projects (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    description TEXT,
                    owner_id INTEGER NOT NULL,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS project_managers (
                    project_id INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
                    manager_id INTEGER NOT NULL,
                    PRIMARY KEY (project_id, manager_id)
                );

                CREATE TABLE IF NOT EXISTS tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    title TEXT NOT NULL,
                    description TEXT,
                    status TEXT NOT NULL,
                    priority TEXT NOT NULL,
                    project_id INTEGER NOT NULL,
                    assigned_to INTEGER NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS audit_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    action TEXT NOT NULL,
                    actor_id INTEGER NOT NULL,
                    target_id TEXT,
                    details TEXT NOT NULL,
                    timestamp TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_project_managers_manager ON project_managers(manager_id);
                CREATE INDEX IF NOT EXISTS idx_tasks_project_id ON tasks(project_id);
                CREATE INDEX IF NOT EXISTS idx_tasks_assigned_to ON tasks(assigned_to);
                CREATE INDEX IF NOT EXISTS idx_audit_logs_timestamp ON audit_logs(timestamp);
                """
            )

    # ------------------------------------------------------------------
    # User management
    # ------------------------------------------------------------------
    def create_user(
        self,
        username: str,
        email: str,
        password: str,
        role: Role = Role.MEMBER,
    ) -> User:
        if not password:
            raise ValueError("Password must not be empty")

        normalized_username = username.strip()
        if not normalized_username:
            raise ValueError("Username must not be empty")

        created_at = _current_timestamp()
        normalized_email = _normalize_email(email)
        password_hash = _hash_password(password)

        with self._connect() as conn:
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO users (username, email, password_hash, role, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        normalized_username,
                        normalized_email,
                        password_hash,
                        Role(role).value,
                        _serialize_datetime(created_at),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise ValueError("A user with that email already exists") from exc
            user_id = cursor.lastrowid

        return User(
            id=int(user_id),
            username=normalized_username,
            email=normalized_email,
            role=Role(role),
            created_at=created_at,
        )

    def get_user(self, user_id: int) -> Optional[User]:
        if not _is_rowid(user_id):
            return None
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def authenticate_user(self, email: str, password: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE email = ?",
                (_normalize_email(email),),
            ).fetchone()
        if row is None:
            return None
        stored_hash = row["password_hash"]
        if not stored_hash or not _verify_password(password, stored_hash):
            return None
        return self._row_to_user(row)

    def list_users(self, role: Optional[Role] = None) -> List[User]:
        with self._connect() as conn:
            if role is None:
                rows = conn.execute("SELECT * FROM users ORDER BY id").fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM users WHERE role = ? ORDER BY id",
                    (Role(role).value,),
                ).fetchall()
        return [self._row_to_user(row) for row in rows]

    def update_user_role(self, user_id: int, role: Role) -> Optional[User]:
        if not _is_rowid(user_id):
            return None
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE users SET role = ? WHERE id = ?",
                (Role(role).value, user_id),
            )
            if cursor.rowcount == 0:
                return None
        return self.get_user(user_id)

    # ------------------------------------------------------------------
    # Project management
    # ------------------------------------------------------------------
    def create_project(self, name: str, description: Optional[str], owner_id: int) -> Project:
        created_at = _current_timestamp()
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO projects (name, description, owner_id, created_at) VALUES (?, ?, ?, ?)",
                (name, description, owner_id, _serialize_datetime(created_at)),
            )
            project_id = cursor.lastrowid

        return Project(
            id=int(project_id),
            name=name,
            description=description,
            owner_id=owner_id,
            created_at=created_at,
            managers=(),
        )

    def get_project(self, project_id: int) -> Optional[Project]:
        if not _is_rowid(project_id):
            return None
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
            if row is None:
                return None
            managers = self._load_managers(conn, [project_id])
        return self._row_to_project(row, managers.get(project_id, ()))

    def list_projects(self) -> List[Project]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM projects ORDER BY id").fetchall()
            managers = self._load_managers(conn, [int(row["id"]) for row in rows])
        return [self._row_to_project(row, managers.get(int(row["id"]), ())) for row in rows]

    def list_projects_for_manager(self, manager_id: int) -> List[Project]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT p.* FROM projects p
                  JOIN project_managers pm ON pm.project_id = p.id
                 WHERE pm.manager_id = ?
                 ORDER BY p.id
                """,
                (manager_id,),
            ).fetchall()
            managers = self._load_managers(conn, [int(row["id"]) for row in rows])
        return [self._row_to_project(row, managers.get(int(row["id"]), ())) for row in rows]

    def add_project_manager(self, project_id: int, manager_id: int) -> Optional[Project]:
        """Add ``manager_id`` to the project's manager set; a repeat add is a no-op."""

        if not (_is_rowid(project_id) and _is_rowid(manager_id)):
            return None
        with self._connect() as conn:
            exists = conn.execute("SELECT 1 FROM projects WHERE id = ?", (project_id,)).fetchone()
            if exists is None:
                return None
            conn.execute(
                "INSERT OR IGNORE INTO project_managers (project_id, manager_id) VALUES (?, ?)",
                (project_id, manager_id),
            )
        return self.get_project(project_id)

    def delete_project(self, project_id: int) -> bool:
        if not _is_rowid(project_id):
            return False
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Task management
    # ------------------------------------------------------------------
    def create_task(
        self,
        *,
        title: str,
        description: Optional[str],
        project_id: int,
        assigned_to: int,
        status: TaskStatus = TaskStatus.PENDING,
        priority: TaskPriority = TaskPriority.MEDIUM,
    ) -> Task:
        created_at = _current_timestamp()
        serialized = _serialize_datetime(created_at)
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO tasks (
                    title, description, status, priority, project_id, assigned_to, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    title,
                    description,
                    TaskStatus(status).value,
                    TaskPriority(priority).value,
                    project_id,
                    assigned_to,
                    serialized,
                    serialized,
                ),
            )
            task_id = cursor.lastrowid

        task = self.get_task(int(task_id))
        if task is None:
            raise RuntimeError("Failed to load task after creation")
        return task

    def get_task(self, task_id: int) -> Optional[Task]:
        if not _is_rowid(task_id):
            return None
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    def list_tasks(self) -> List[Task]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM tasks ORDER BY id").fetchall()
        return [self._row_to_task(row) for row in rows]

    def list_tasks_for_projects(self, project_ids: Sequence[int]) -> List[Task]:
        if not project_ids:
            return []
        placeholders = ", ".join("?" for _ in project_ids)
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM tasks WHERE project_id IN ({placeholders}) ORDER BY id",
                tuple(project_ids),
            ).fetchall()
        return [self._row_to_task(row) for row in rows]

    def list_tasks_for_assignee(self, user_id: int) -> List[Task]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM tasks WHERE assigned_to = ? ORDER BY id",
                (user_id,),
            ).fetchall()
        return [self._row_to_task(row) for row in rows]

    def update_task(self, task_id: int, **fields: object) -> Optional[Task]:
        if not _is_rowid(task_id):
            return None
        if not fields:
            return self.get_task(task_id)

        allowed = {
            "title": "title",
            "description": "description",
            "assigned_to": "assigned_to",
            "status": "status",
            "priority": "priority",
        }

        updates: List[str] = []
        values: List[object] = []
        for key, column in allowed.items():
            if key not in fields:
                continue
            value = fields[key]
            if value is None and column != "description":
                continue
            if column == "status":
                value = TaskStatus(value).value
            if column == "priority":
                value = TaskPriority(value).value
            updates.append(f"{column} = ?")
            values.append(value)

        if not updates:
            return self.get_task(task_id)

        updates.append("updated_at = ?")
        values.append(_serialize_datetime(_current_timestamp()))
        values.append(task_id)
        query = f"UPDATE tasks SET {', '.join(updates)} WHERE id = ?"

        with self._connect() as conn:
            cursor = conn.execute(query, values)
            if cursor.rowcount == 0:
                return None

        return self.get_task(task_id)

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------
    def create_audit_entry(
        self,
        *,
        action: str,
        actor_id: int,
        target_id: Optional[str],
        details: Mapping[str, Any],
        timestamp: Optional[datetime] = None,
    ) -> AuditLogEntry:
        recorded_at = timestamp or _current_timestamp()
        payload = dict(details)
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO audit_logs (action, actor_id, target_id, details, timestamp)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    action,
                    actor_id,
                    target_id,
                    json.dumps(payload, default=str),
                    _serialize_datetime(recorded_at),
                ),
            )
            entry_id = cursor.lastrowid

        return AuditLogEntry(
            id=int(entry_id),
            action=action,
            actor_id=actor_id,
            target_id=target_id,
            timestamp=recorded_at,
            details=json.loads(json.dumps(payload, default=str)),
        )

    def list_audit_entries(self) -> List[AuditLogEntry]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM audit_logs ORDER BY timestamp DESC, id DESC"
            ).fetchall()
        return [self._row_to_audit_entry(row) for row in rows]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _load_managers(
        self,
        conn: sqlite3.Connection,
        project_ids: Iterable[int],
    ) -> Dict[int, tuple[int, ...]]:
        ids = list(project_ids)
        if not ids:
            return {}
        placeholders = ", ".join("?" for _ in ids)
        rows = conn.execute(
            f"""
            SELECT project_id, manager_id FROM project_managers
             WHERE project_id IN ({placeholders})
             ORDER BY rowid
            """,
            tuple(ids),
        ).fetchall()
        managers: Dict[int, List[int]] = {}
        for row in rows:
            managers.setdefault(int(row["project_id"]), []).append(int(row["manager_id"]))
        return {project_id: tuple(values) for project_id, values in managers.items()}

    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            id=int(row["id"]),
            username=str(row["username"]),
            email=str(row["email"]),
            role=Role(row["role"]),
            created_at=_parse_datetime(str(row["created_at"])),
        )

    def _row_to_project(self, row: sqlite3.Row, managers: tuple[int, ...]) -> Project:
        return Project(
            id=int(row["id"]),
            name=str(row["name"]),
            description=row["description"],
            owner_id=int(row["owner_id"]),
            created_at=_parse_datetime(str(row["created_at"])),
            managers=managers,
        )

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        return Task(
            id=int(row["id"]),
            title=str(row["title"]),
            description=row["description"],
            status=TaskStatus(row["status"]),
            priority=TaskPriority(row["priority"]),
            project_id=int(row["project_id"]),
            assigned_to=int(row["assigned_to"]),
            created_at=_parse_datetime(str(row["created_at"])),
            updated_at=_parse_datetime(str(row["updated_at"])),
        )

    def _row_to_audit_entry(self, row: sqlite3.Row) -> AuditLogEntry:
        return AuditLogEntry(
            id=int(row["id"]),
            action=str(row["action"]),
            actor_id=int(row["actor_id"]),
            target_id=row["target_id"],
            timestamp=_parse_datetime(str(row["timestamp"])),
            details=json.loads(row["details"]),
        )


__all__ = ["Database", "resolve_database_path"]
