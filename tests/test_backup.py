"""
Tests for snapshot backups, retention and restore.
"""
import json
import os
from datetime import timedelta
from unittest.mock import patch

import pytest

from promptboard.backup import (
    CHECKSUM_FILE,
    BackupService,
    backup_filename,
    compute_data_hash,
)
from promptboard.blobstore import BlobStoreError
from promptboard.errors import BackupError, StoreError
from promptboard.restore import main as restore_main
from promptboard.restore import restore_snapshot
from promptboard.schema import Project
from promptboard.store import BoardStore

from conftest import T0, Clock, make_task


@pytest.fixture
def service(store, blobs):
    return BackupService(store, blobs, clock=Clock())


def test_hash_is_deterministic():
    assert compute_data_hash([], []) == compute_data_hash([], [])
    assert compute_data_hash([{"b": 1, "a": 2}], []) == compute_data_hash([{"a": 2, "b": 1}], [])
    assert compute_data_hash([], [{"id": "x"}]) != compute_data_hash([], [])


def test_filename_embeds_timestamp():
    assert backup_filename(T0) == "backup-2026-10-01T09-00-00.json"


def test_first_backup_writes_snapshot_and_checksum(service, store, blobs, project):
    store.upsert_tasks([make_task("b", order=1), make_task("a", order=0)])

    meta = service.create_backup()

    assert meta.filename == "backup-2026-10-01T09-00-00.json"
    assert meta.projectCount == 1
    assert meta.taskCount == 2
    assert not meta.skipped

    snapshot = json.loads(blobs.download(meta.filename))
    assert meta.size == len(blobs.download(meta.filename))
    assert [t["id"] for t in snapshot["tasks"]] == ["a", "b"]
    assert snapshot["projects"][0]["name"] == "Site Revamp"
    assert "exportDate" in snapshot
    assert blobs.download(CHECKSUM_FILE).decode() == compute_data_hash(
        snapshot["projects"], snapshot["tasks"]
    )


def test_second_backup_without_changes_is_skipped(service, blobs, project):
    first = service.create_backup()
    second = service.create_backup()

    assert first.filename
    assert second.skipped is True
    assert second.reason == "no changes"
    assert second.filename == ""
    assert len(service.list_backups()) == 1


def test_changed_data_writes_new_snapshot(service, store, project):
    service.create_backup()
    store.upsert_task(make_task("a"))
    meta = service.create_backup()
    assert not meta.skipped
    assert meta.taskCount == 1
    assert len(service.list_backups()) == 2


def test_skip_can_be_disabled(service, project):
    service.create_backup()
    meta = service.create_backup(skip_if_unchanged=False)
    assert not meta.skipped


def _seed_backups(blobs, count):
    names = []
    for i in range(count):
        when = T0 - timedelta(days=count - i)
        name = backup_filename(when)
        blobs.upload(name, b"{}", content_type="application/json")
        os.utime(blobs.root / name, (when.timestamp(), when.timestamp()))
        names.append(name)
    return names


def test_retention_keeps_latest_thirty(service, blobs, project):
    seeded = _seed_backups(blobs, 35)

    meta = service.create_backup()

    remaining = {b.filename for b in service.list_backups()}
    assert len(remaining) == 30
    assert meta.filename in remaining
    assert remaining.isdisjoint(seeded[:6])
    assert set(seeded[6:]) <= remaining


def test_prune_ignores_checksum_file(service, blobs, project):
    _seed_backups(blobs, 3)
    service.create_backup()
    assert blobs.download(CHECKSUM_FILE) is not None
    assert service.prune() == []


def test_list_backups_newest_first_without_counts(service, blobs, project):
    seeded = _seed_backups(blobs, 3)
    listed = service.list_backups()
    assert [b.filename for b in listed] == list(reversed(seeded))
    assert all(b.projectCount == -1 and b.taskCount == -1 for b in listed)
    assert all(b.size == 2 for b in listed)


def test_upload_failure_names_step(service, blobs, project):
    with patch.object(blobs, "upload", side_effect=BlobStoreError("disk full")):
        with pytest.raises(BackupError, match="Failed to upload backup"):
            service.create_backup()


def test_project_load_failure_names_step(service, store):
    with patch.object(store, "list_projects", side_effect=StoreError("db locked")):
        with pytest.raises(BackupError, match="Failed to load projects"):
            service.create_backup()


def test_task_load_failure_names_project(service, store, project):
    with patch.object(store, "list_tasks", side_effect=StoreError("db locked")):
        with pytest.raises(BackupError, match="Failed to load tasks for project p1"):
            service.create_backup()


def test_restore_round_trip(service, store, project, tmp_path):
    store.upsert_project(Project(id="p2", name="Docs", created_at=T0, updated_at=T0))
    store.upsert_tasks([
        make_task("a", order=0, tags=["x"]),
        make_task("b", project_id="p2", order=0, prompt="Write docs"),
    ])
    meta = service.create_backup()

    fresh = BoardStore(str(tmp_path / "restored.db"))
    report = restore_snapshot(fresh, service.load_backup(meta.filename))

    assert (report.projects_ok, report.tasks_ok) == (2, 2)
    assert report.tasks_failed == 0
    assert fresh.get_task("a") == store.get_task("a")
    assert fresh.get_task("b").prompt == "Write docs"


def test_restore_counts_bad_tasks(store, project):
    snapshot = {
        "projects": [],
        "tasks": [
            make_task("ok").to_dict(),
            make_task("orphan", project_id="ghost").to_dict(),
            {"id": "broken"},
            "garbage",
        ],
    }
    report = restore_snapshot(store, snapshot)
    assert report.tasks_ok == 1
    assert report.tasks_failed == 3
    assert report.errors[-1].startswith("task ?:")


def test_restore_counts_non_object_project(store):
    report = restore_snapshot(store, {"projects": [42], "tasks": []})
    assert report.projects_failed == 1
    assert len(report.errors) == 1
    assert report.errors[0].startswith("project ?:")


@pytest.mark.parametrize("snapshot", [
    ["not", "a", "snapshot"],
    {"projects": [], "tasks": "garbage"},
    {"projects": {"id": "p1"}, "tasks": []},
])
def test_restore_rejects_malformed_snapshot(store, snapshot):
    with pytest.raises(BackupError):
        restore_snapshot(store, snapshot)


def test_restore_cli_fails_cleanly_on_non_object_file(tmp_path):
    snapshot_file = tmp_path / "kanban-backup.json"
    snapshot_file.write_text("[1, 2, 3]", encoding="utf-8")
    code = restore_main(["--file", str(snapshot_file), "--db", str(tmp_path / "restore.db")])
    assert code == 1


def test_load_backup_rejects_unknown_file(service):
    with pytest.raises(BackupError, match="not found"):
        service.load_backup("backup-1999-01-01T00-00-00.json")
    with pytest.raises(BackupError, match="Not a backup file"):
        service.load_backup(CHECKSUM_FILE)


def test_load_backup_rejects_non_object_snapshot(service, blobs):
    blobs.upload("backup-1999-01-01T00-00-00.json", b"[]")
    with pytest.raises(BackupError, match="not a snapshot object"):
        service.load_backup("backup-1999-01-01T00-00-00.json")
