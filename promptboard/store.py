"""
Board storage backend (SQLite).

Provides CRUD, list and upsert operations for projects and tasks. Every
failure is wrapped in a StoreError whose message names the failing step.
"""
import logging
import sqlite3
from pathlib import Path
from typing import Iterable, List, Optional, Set

from .errors import StoreError, RecordIntegrityError, RecordNotFound
from .schema import (
    Project,
    Task,
    project_from_row,
    project_to_row,
    task_from_row,
    task_to_row,
)

logger = logging.getLogger(__name__)

TASK_COLUMNS = (
    "id", "title", "description", "priority", "tags", "prompt",
    "attachments", "status", "order", "project_id", "created_at",
)


def _connect(db_path: str) -> sqlite3.Connection:
    """Open a connection with FK enforcement and WAL mode."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


def _quoted(columns: Iterable[str]) -> str:
    # "order" is a reserved word
    return ", ".join(f'"{c}"' for c in columns)


class BoardStore:
    """SQLite-backed store for projects and tasks."""

    def __init__(self, db_path: str = None):
        """Initialize store and create tables if needed."""
        if db_path is None:
            db_path = str(Path.home() / ".local" / "share" / "promptboard" / "board.db")
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _init_schema(self):
        """Create tables if they don't exist."""
        with _connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS projects (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    priority TEXT NOT NULL,
                    tags TEXT NOT NULL DEFAULT '[]',         -- JSON list
                    prompt TEXT,
                    attachments TEXT NOT NULL DEFAULT '[]',  -- JSON list
                    status TEXT NOT NULL,
                    "order" INTEGER,
                    project_id TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_project ON tasks(project_id)")
            conn.commit()

    # ── Projects ─────────────────────────────────────────────────────────────

    def upsert_project(self, project: Project) -> Project:
        """Insert or update a project by id."""
        row = project_to_row(project)
        try:
            with _connect(self.db_path) as conn:
                conn.execute("""
                    INSERT INTO projects (id, name, created_at, updated_at)
                    VALUES (:id, :name, :created_at, :updated_at)
                    ON CONFLICT(id) DO UPDATE SET
                        name=excluded.name, updated_at=excluded.updated_at
                """, row)
                conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to save project {project.id}: {e}") from e
        return project

    def get_project(self, project_id: str) -> Optional[Project]:
        try:
            with _connect(self.db_path) as conn:
                row = conn.execute(
                    "SELECT * FROM projects WHERE id = ?", (project_id,)
                ).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to load project {project_id}: {e}") from e
        return project_from_row(dict(row)) if row else None

    def list_projects(self) -> List[Project]:
        """List all projects, newest first."""
        try:
            with _connect(self.db_path) as conn:
                rows = conn.execute(
                    "SELECT * FROM projects ORDER BY created_at DESC, rowid DESC"
                ).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to load projects: {e}") from e
        return [project_from_row(dict(r)) for r in rows]

    def rename_project(self, project_id: str, name: str) -> Project:
        project = self.get_project(project_id)
        if project is None:
            raise RecordNotFound(f"Project not found: {project_id}")
        project.rename(name)
        return self.upsert_project(project)

    def delete_project(self, project_id: str) -> bool:
        """Delete a project; its tasks go with it. Returns False if absent."""
        try:
            with _connect(self.db_path) as conn:
                cur = conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
                conn.commit()
                return cur.rowcount > 0
        except sqlite3.Error as e:
            raise StoreError(f"Failed to delete project {project_id}: {e}") from e

    # ── Tasks ────────────────────────────────────────────────────────────────

    def get_task(self, task_id: str) -> Optional[Task]:
        try:
            with _connect(self.db_path) as conn:
                row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to load task {task_id}: {e}") from e
        return task_from_row(dict(row)) if row else None

    def list_tasks(self, project_id: str) -> List[Task]:
        """List a project's tasks by manual order, nulls last, then insertion."""
        try:
            with _connect(self.db_path) as conn:
                rows = conn.execute("""
                    SELECT * FROM tasks WHERE project_id = ?
                    ORDER BY "order" IS NULL, "order" ASC, rowid ASC
                """, (project_id,)).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to load tasks for project {project_id}: {e}") from e
        return [task_from_row(dict(r)) for r in rows]

    def list_task_ids(self, project_id: str) -> Set[str]:
        try:
            with _connect(self.db_path) as conn:
                rows = conn.execute(
                    "SELECT id FROM tasks WHERE project_id = ?", (project_id,)
                ).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to load tasks for project {project_id}: {e}") from e
        return {r["id"] for r in rows}

    def upsert_task(self, task: Task) -> Task:
        self.upsert_tasks([task])
        return task

    def upsert_tasks(self, tasks: List[Task]) -> int:
        """Insert or update tasks by id in one transaction. Returns rows written."""
        if not tasks:
            return 0
        updates = ", ".join(f'"{c}"=excluded."{c}"' for c in TASK_COLUMNS if c != "id")
        sql = (
            f"INSERT INTO tasks ({_quoted(TASK_COLUMNS)}) "
            f"VALUES ({', '.join(':' + c for c in TASK_COLUMNS)}) "
            f"ON CONFLICT(id) DO UPDATE SET {updates}"
        )
        try:
            with _connect(self.db_path) as conn:
                conn.executemany(sql, [task_to_row(t) for t in tasks])
                conn.commit()
        except sqlite3.IntegrityError as e:
            raise RecordIntegrityError(
                f"Failed to save tasks: project reference rejected ({e})"
            ) from e
        except sqlite3.Error as e:
            raise StoreError(f"Failed to save tasks: {e}") from e
        return len(tasks)

    def delete_task(self, task_id: str) -> bool:
        return self.delete_tasks([task_id]) > 0

    def delete_tasks(self, task_ids: Iterable[str]) -> int:
        """Delete tasks by id. Returns the number of rows removed."""
        ids = list(task_ids)
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        try:
            with _connect(self.db_path) as conn:
                cur = conn.execute(f"DELETE FROM tasks WHERE id IN ({placeholders})", ids)
                conn.commit()
                return cur.rowcount
        except sqlite3.Error as e:
            raise StoreError(f"Failed to delete tasks {ids}: {e}") from e

    def count_tasks(self) -> int:
        try:
            with _connect(self.db_path) as conn:
                return conn.execute("SELECT COUNT(*) FROM tasks").fetchone()[0]
        except sqlite3.Error as e:
            raise StoreError(f"Failed to count tasks: {e}") from e
