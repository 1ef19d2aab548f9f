"""
Ordering reconciler: keeps a project's manual task order in the store in
step with a reordered in-memory list.

Two pieces:
  move_task()  - drag-and-drop placement on the flat task list
  plan() / reconcile() - diff the desired list against the stored one and
                 apply only the upserts and targeted deletes it needs
"""
import logging
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence

from .errors import RecordIntegrityError, RecordValidationError
from .schema import ColumnId, Task
from .store import BoardStore

logger = logging.getLogger(__name__)


def move_task(
    tasks: Sequence[Task],
    task_id: str,
    source_column: ColumnId,
    source_index: int,
    dest_column: Optional[ColumnId],
    dest_index: int,
) -> List[Task]:
    """
    Move a task to `dest_index` within `dest_column`.

    The index counts only tasks already in the destination column, so the
    flat list is scanned for same-column entries until the index is reached.
    Returns a new list; dropping outside any column or onto the same slot
    returns the input unchanged.
    """
    if dest_column is None:
        return list(tasks)
    if dest_column == source_column and dest_index == source_index:
        return list(tasks)

    new_tasks = list(tasks)
    pos = next((i for i, t in enumerate(new_tasks) if t.id == task_id), -1)
    if pos == -1:
        return new_tasks

    moved = replace(new_tasks.pop(pos), status=dest_column)

    insert_at = 0
    column_count = 0
    for i, t in enumerate(new_tasks):
        if t.status == dest_column:
            if column_count == dest_index:
                insert_at = i
                break
            column_count += 1
        insert_at = i + 1

    new_tasks.insert(insert_at, moved)
    return new_tasks


@dataclass
class ReconcilePlan:
    """Store mutations needed to make one project match a desired list."""
    project_id: str
    upserts: List[Task] = field(default_factory=list)
    deletes: List[str] = field(default_factory=list)
    warning: Optional[str] = None

    @property
    def is_noop(self) -> bool:
        return not self.upserts and not self.deletes


def plan(project_id: str, desired: Sequence[Task], stored: Sequence[Task]) -> ReconcilePlan:
    """
    Compute the upserts and deletes for `desired` against `stored`.

    Each desired task gets `order` = its position. Tasks identical to their
    stored copy are left alone. Stored ids missing from `desired` are
    deleted, unless `desired` is empty while the store is not: that looks
    like a half-loaded board, so deletes are skipped and a warning is set.
    """
    result = ReconcilePlan(project_id=project_id)
    by_id: Dict[str, Task] = {t.id: t for t in stored}

    seen = set()
    for position, task in enumerate(desired):
        if task.project_id != project_id:
            raise RecordValidationError(
                f"Task {task.id} belongs to project {task.project_id}, not {project_id}"
            )
        if task.id in seen:
            raise RecordValidationError(f"Duplicate task id in board: {task.id}")
        seen.add(task.id)

        ordered = replace(task, order=position)
        if by_id.get(task.id) != ordered:
            result.upserts.append(ordered)

    if not desired and by_id:
        result.warning = (
            f"Refusing to delete {len(by_id)} stored task(s) of project {project_id}: "
            f"board is empty, possibly not loaded yet"
        )
        return result

    result.deletes = [tid for tid in by_id if tid not in seen]
    return result


def reconcile(store: BoardStore, project_id: str, desired: Sequence[Task]) -> ReconcilePlan:
    """Apply the plan for `desired` to the store and return it."""
    if store.get_project(project_id) is None:
        logger.error(f"Reconcile aborted: project {project_id} does not exist")
        raise RecordIntegrityError(f"Project not found: {project_id}")

    result = plan(project_id, desired, store.list_tasks(project_id))
    if result.warning:
        logger.warning(result.warning)

    if result.upserts:
        store.upsert_tasks(result.upserts)
    if result.deletes:
        store.delete_tasks(result.deletes)

    if not result.is_noop:
        logger.info(
            f"Reconciled project {project_id}: "
            f"{len(result.upserts)} upserted, {len(result.deletes)} deleted"
        )
    return result
