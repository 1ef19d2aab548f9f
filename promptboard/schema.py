"""
Board schema: projects, tasks and attachments.

Board columns, left to right:
  Planning → Error to Fix → In Progress → Human Review → AI Review → To Verify → Done

Domain dicts (API payloads, backup snapshots) use camelCase keys. Storage rows
use snake_case columns. Conversion in both directions goes through the
explicit mapping functions at the bottom of this module; anything that does
not fit the schema raises RecordValidationError instead of being coerced.
"""
from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any
import json
import time
import uuid

from .errors import RecordValidationError


class ColumnId(Enum):
    """Fixed kanban columns a task can sit in."""
    PLANNING = "planning"
    ERROR = "error"
    IN_PROGRESS = "in-progress"
    HUMAN_REVIEW = "human-review"
    AI_REVIEW = "ai-review"
    TO_VERIFY = "to-verify"
    DONE = "done"

    @classmethod
    def parse(cls, value: Any) -> "ColumnId":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise RecordValidationError(f"Invalid status: {value!r}")


class Priority(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @classmethod
    def parse(cls, value: Any) -> "Priority":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise RecordValidationError(f"Invalid priority: {value!r}")


class AttachmentType(Enum):
    FILE = "file"
    IMAGE = "image"


@dataclass(frozen=True)
class Column:
    id: ColumnId
    title: str


COLUMNS: List[Column] = [
    Column(ColumnId.PLANNING, "Planning"),
    Column(ColumnId.ERROR, "Error to Fix"),
    Column(ColumnId.IN_PROGRESS, "In Progress"),
    Column(ColumnId.HUMAN_REVIEW, "Human Review"),
    Column(ColumnId.AI_REVIEW, "AI Review"),
    Column(ColumnId.TO_VERIFY, "To Verify"),
    Column(ColumnId.DONE, "Done"),
]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def make_id(prefix: str) -> str:
    """Generate a sortable unique id (ms-precision timestamp + random hex)."""
    ts = int(time.time() * 1000)
    rand = uuid.uuid4().hex[:8]
    return f"{prefix}-{ts}-{rand}"


def _parse_time(value: Any, name: str) -> datetime:
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value:
        raise RecordValidationError(f"Missing {name}")
    try:
        # fromisoformat() only accepts a trailing "Z" on newer interpreters
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise RecordValidationError(f"Invalid {name}: {value!r}")


def _require_str(data: Dict[str, Any], key: str, allow_empty: bool = False) -> str:
    value = data.get(key)
    if not isinstance(value, str) or (not allow_empty and not value.strip()):
        raise RecordValidationError(f"Missing or invalid field: {key}")
    return value


@dataclass
class Attachment:
    """A file or image owned by a single task."""
    id: str
    name: str
    type: AttachmentType
    url: str                       # data URI or storage URL

    @property
    def is_image(self) -> bool:
        return self.type == AttachmentType.IMAGE

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "type": self.type.value, "url": self.url}

    @classmethod
    def from_dict(cls, data: Any) -> "Attachment":
        if not isinstance(data, dict):
            raise RecordValidationError(f"Attachment must be an object, got {type(data).__name__}")
        try:
            kind = AttachmentType(data.get("type"))
        except ValueError:
            raise RecordValidationError(f"Invalid attachment type: {data.get('type')!r}")
        return cls(
            id=_require_str(data, "id"),
            name=_require_str(data, "name"),
            type=kind,
            url=_require_str(data, "url", allow_empty=True),
        )


@dataclass
class Project:
    """A named group of tasks. Deleting a project deletes its tasks."""
    id: str
    name: str
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def rename(self, name: str) -> None:
        self.name = name
        self.updated_at = utc_now()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Project":
        if not isinstance(data, dict):
            raise RecordValidationError("Project must be an object")
        return cls(
            id=_require_str(data, "id"),
            name=_require_str(data, "name"),
            created_at=_parse_time(data.get("createdAt"), "createdAt"),
            updated_at=_parse_time(data.get("updatedAt"), "updatedAt"),
        )


@dataclass
class Task:
    """A card on the board. `order` is the manual sort key within its project."""
    id: str
    title: str
    project_id: str
    description: str = ""
    priority: Priority = Priority.MEDIUM
    tags: List[str] = field(default_factory=list)
    prompt: Optional[str] = None
    attachments: List[Attachment] = field(default_factory=list)
    status: ColumnId = ColumnId.PLANNING
    created_at: datetime = field(default_factory=utc_now)
    order: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "priority": self.priority.value,
            "tags": list(self.tags),
            "prompt": self.prompt,
            "attachments": [a.to_dict() for a in self.attachments],
            "status": self.status.value,
            "createdAt": self.created_at.isoformat(),
            "projectId": self.project_id,
            "order": self.order,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        if not isinstance(data, dict):
            raise RecordValidationError("Task must be an object")
        return cls(
            id=_require_str(data, "id"),
            title=_require_str(data, "title"),
            project_id=_require_str(data, "projectId"),
            description=_parse_description(data.get("description")),
            priority=Priority.parse(data.get("priority", "medium")),
            tags=_parse_tags(data.get("tags", [])),
            prompt=_parse_prompt(data.get("prompt")),
            attachments=[Attachment.from_dict(a) for a in data.get("attachments") or []],
            status=ColumnId.parse(data.get("status", "planning")),
            created_at=_parse_time(data.get("createdAt"), "createdAt"),
            order=_parse_order(data.get("order")),
        )


def _parse_tags(value: Any) -> List[str]:
    if not isinstance(value, list) or not all(isinstance(t, str) for t in value):
        raise RecordValidationError(f"Tags must be a list of strings, got {value!r}")
    return list(value)


def _parse_description(value: Any) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise RecordValidationError(f"Description must be a string, got {value!r}")
    return value


def _parse_prompt(value: Any) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise RecordValidationError(f"Prompt must be a string, got {value!r}")
    return value or None


def _parse_order(value: Any) -> Optional[int]:
    if value is None:
        return None
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise RecordValidationError(f"Invalid order: {value!r}")
    if isinstance(value, float) and not value.is_integer():
        raise RecordValidationError(f"Invalid order: {value!r}")
    return int(value)


# ── Row mapping ──────────────────────────────────────────────────────────────


def project_to_row(project: Project) -> Dict[str, Any]:
    return {
        "id": project.id,
        "name": project.name,
        "created_at": project.created_at.isoformat(),
        "updated_at": project.updated_at.isoformat(),
    }


def project_from_row(row: Dict[str, Any]) -> Project:
    return Project(
        id=_require_str(row, "id"),
        name=_require_str(row, "name"),
        created_at=_parse_time(row.get("created_at"), "created_at"),
        updated_at=_parse_time(row.get("updated_at"), "updated_at"),
    )


def task_to_row(task: Task) -> Dict[str, Any]:
    return {
        "id": task.id,
        "title": task.title,
        "description": task.description,
        "priority": task.priority.value,
        "tags": json.dumps(task.tags),
        "prompt": task.prompt,
        "attachments": json.dumps([a.to_dict() for a in task.attachments]),
        "status": task.status.value,
        "order": task.order,
        "project_id": task.project_id,
        "created_at": task.created_at.isoformat(),
    }


def task_from_row(row: Dict[str, Any]) -> Task:
    """Convert a tasks row into a Task. JSON columns must decode cleanly."""
    try:
        tags = json.loads(row.get("tags") or "[]")
        attachments = json.loads(row.get("attachments") or "[]")
    except (json.JSONDecodeError, TypeError) as e:
        raise RecordValidationError(f"Corrupt JSON column in task {row.get('id')}: {e}")
    if not isinstance(attachments, list):
        raise RecordValidationError(f"Attachments must be a list in task {row.get('id')}")

    return Task(
        id=_require_str(row, "id"),
        title=_require_str(row, "title"),
        project_id=_require_str(row, "project_id"),
        description=_parse_description(row.get("description")),
        priority=Priority.parse(row.get("priority")),
        tags=_parse_tags(tags),
        prompt=_parse_prompt(row.get("prompt")),
        attachments=[Attachment.from_dict(a) for a in attachments],
        status=ColumnId.parse(row.get("status")),
        created_at=_parse_time(row.get("created_at"), "created_at"),
        order=_parse_order(row.get("order")),
    )
