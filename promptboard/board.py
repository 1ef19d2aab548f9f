"""
Project-scoped board operations.

The server calls these instead of touching the store directly so every
write that affects ordering goes through the reconciler.
"""
import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional

from .errors import RecordNotFound, RecordValidationError
from .reconciler import ReconcilePlan, move_task, reconcile
from .schema import ColumnId, Project, Task, make_id, utc_now
from .store import BoardStore

logger = logging.getLogger(__name__)


class Board:
    """Kanban board for one project."""

    def __init__(self, store: BoardStore, project_id: str):
        self.store = store
        project = store.get_project(project_id)
        if project is None:
            raise RecordNotFound(f"Project not found: {project_id}")
        self.project: Project = project

    @property
    def project_id(self) -> str:
        return self.project.id

    def tasks(self) -> List[Task]:
        return self.store.list_tasks(self.project_id)

    def column(self, column: ColumnId) -> List[Task]:
        return [t for t in self.tasks() if t.status == column]

    def get(self, task_id: str) -> Task:
        task = self.store.get_task(task_id)
        if task is None or task.project_id != self.project_id:
            raise RecordNotFound(f"Task not found: {task_id}")
        return task

    def add_task(self, data: Dict[str, Any]) -> Task:
        """Create a task from an API payload and append it to the board."""
        payload = dict(data)
        payload.setdefault("id", make_id("task"))
        payload.setdefault("createdAt", utc_now().isoformat())
        payload["projectId"] = self.project_id
        task = Task.from_dict(payload)

        current = self.tasks()
        if any(t.id == task.id for t in current):
            raise RecordValidationError(f"Task already exists: {task.id}")
        self.save(current + [task])
        return self.get(task.id)

    def update_task(self, task_id: str, data: Dict[str, Any]) -> Task:
        """Replace the editable fields of a task, keeping id, project and position."""
        existing = self.get(task_id)
        payload = existing.to_dict()
        for key in ("title", "description", "priority", "tags", "prompt", "attachments", "status"):
            if key in data:
                payload[key] = data[key]
        updated = Task.from_dict(payload)
        self.store.upsert_task(updated)
        return updated

    def start_task(self, task_id: str) -> Task:
        """Shortcut used by the card's start button: move straight to In Progress."""
        task = replace(self.get(task_id), status=ColumnId.IN_PROGRESS)
        self.store.upsert_task(task)
        return task

    def set_prompt(self, task_id: str, prompt: str) -> Task:
        task = replace(self.get(task_id), prompt=prompt)
        self.store.upsert_task(task)
        return task

    def delete_task(self, task_id: str) -> ReconcilePlan:
        self.get(task_id)
        return self.save([t for t in self.tasks() if t.id != task_id], allow_empty=True)

    def move(
        self,
        task_id: str,
        source_column: ColumnId,
        source_index: int,
        dest_column: Optional[ColumnId],
        dest_index: int,
    ) -> ReconcilePlan:
        """Apply a drag-and-drop move and persist the resulting order."""
        current = self.tasks()
        if not any(t.id == task_id for t in current):
            raise RecordNotFound(f"Task not found: {task_id}")
        moved = move_task(current, task_id, source_column, source_index, dest_column, dest_index)
        return self.save(moved)

    def save(self, tasks: List[Task], allow_empty: bool = False) -> ReconcilePlan:
        """
        Persist `tasks` as the board's full ordered content.

        `allow_empty` is only set by delete_task, where an empty board is
        the explicit result of removing the last card.
        """
        if allow_empty and not tasks:
            ids = self.store.list_task_ids(self.project_id)
            self.store.delete_tasks(ids)
            logger.info(f"Cleared board of project {self.project_id}: {len(ids)} deleted")
            return ReconcilePlan(project_id=self.project_id, deletes=sorted(ids))
        return reconcile(self.store, self.project_id, tasks)
