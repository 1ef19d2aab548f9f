"""Shared test fixtures for PromptBoard tests."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Ensure board_server.py at the repo root is importable
sys.path.insert(0, str(Path(__file__).parent.parent))

from promptboard.blobstore import LocalBlobStore
from promptboard.schema import ColumnId, Project, Task
from promptboard.store import BoardStore

T0 = datetime(2026, 10, 1, 9, 0, 0, tzinfo=timezone.utc)


class FakeChain:
    """Stands in for TransportChain: returns canned replies and records requests."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.requests = []

    def complete(self, request):
        self.requests.append(request)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class Clock:
    """Deterministic clock advancing one minute per call."""

    def __init__(self, start=T0):
        self.now = start

    def __call__(self):
        current = self.now
        self.now = self.now + timedelta(minutes=1)
        return current


@pytest.fixture
def store(tmp_path):
    return BoardStore(str(tmp_path / "board.db"))


@pytest.fixture
def blobs(tmp_path):
    return LocalBlobStore(str(tmp_path / "backups"))


@pytest.fixture
def project(store):
    return store.upsert_project(Project(id="p1", name="Site Revamp", created_at=T0, updated_at=T0))


def make_task(task_id, project_id="p1", status=ColumnId.PLANNING, order=None, **kwargs):
    return Task(
        id=task_id,
        title=kwargs.pop("title", f"Task {task_id}"),
        project_id=project_id,
        status=status,
        order=order,
        created_at=kwargs.pop("created_at", T0),
        **kwargs,
    )
