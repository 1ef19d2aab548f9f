#!/usr/bin/env python3
"""
Restore a backup snapshot into the board store.

Projects are upserted first, then tasks one at a time so a single bad record
(oversized attachment, missing project) does not abort the whole restore.

Usage:
    python -m promptboard.restore backup-2026-10-19T08-00-00.json
    python -m promptboard.restore --file ./kanban-backup.json --db ./board.db
"""
import argparse
import json
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

from .backup import BackupService
from .blobstore import LocalBlobStore
from .config import Config, setup_logging
from .errors import BackupError, PromptBoardError, StoreError
from .schema import Project, Task
from .store import BoardStore

logger = logging.getLogger(__name__)


@dataclass
class RestoreReport:
    projects_ok: int = 0
    projects_failed: int = 0
    tasks_ok: int = 0
    tasks_failed: int = 0
    errors: List[str] = field(default_factory=list)


def _record_id(raw: Any) -> str:
    return str(raw.get("id", "?")) if isinstance(raw, dict) else "?"


def _entries(snapshot: Dict[str, Any], key: str) -> List[Any]:
    entries = snapshot.get(key) or []
    if not isinstance(entries, list):
        raise BackupError(f"Snapshot {key} must be a list")
    return entries


def restore_snapshot(store: BoardStore, snapshot: Dict[str, Any]) -> RestoreReport:
    """Upsert every project and task from a parsed snapshot."""
    if not isinstance(snapshot, dict):
        raise BackupError("Snapshot must be an object")
    projects = _entries(snapshot, "projects")
    tasks = _entries(snapshot, "tasks")

    report = RestoreReport()
    logger.info(
        f"Restoring snapshot from {snapshot.get('exportDate', 'unknown date')}: "
        f"{len(projects)} projects, {len(tasks)} tasks"
    )

    for raw in projects:
        try:
            store.upsert_project(Project.from_dict(raw))
            report.projects_ok += 1
        except StoreError as e:
            report.projects_failed += 1
            report.errors.append(f"project {_record_id(raw)}: {e}")
            logger.error(f"Failed to restore project {_record_id(raw)}: {e}")

    for raw in tasks:
        try:
            store.upsert_task(Task.from_dict(raw))
            report.tasks_ok += 1
        except StoreError as e:
            report.tasks_failed += 1
            report.errors.append(f"task {_record_id(raw)}: {e}")
            logger.error(f"Failed to restore task {_record_id(raw)}: {e}")

    logger.info(
        f"Restore complete: {report.tasks_ok} tasks succeeded, {report.tasks_failed} failed"
    )
    return report


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Restore a PromptBoard backup snapshot")
    parser.add_argument("filename", nargs="?", help="Snapshot name in the backup directory")
    parser.add_argument("--file", help="Path to a snapshot JSON file outside the backup directory")
    parser.add_argument("--config", help="Path to promptboard.yaml")
    parser.add_argument("--db", help="Path to board.db (overrides config)")
    args = parser.parse_args(argv)

    if not args.filename and not args.file:
        parser.error("give a snapshot filename or --file")

    setup_logging()
    cfg = Config.load(args.config)
    if args.db:
        cfg.db_path = args.db

    store = BoardStore(cfg.db_path)
    try:
        if args.file:
            snapshot = json.loads(Path(args.file).read_text(encoding="utf-8"))
        else:
            service = BackupService(store, LocalBlobStore(cfg.backup_dir))
            snapshot = service.load_backup(args.filename)
        report = restore_snapshot(store, snapshot)
    except (OSError, json.JSONDecodeError, PromptBoardError) as e:
        logger.error(f"Restore failed: {e}")
        return 1

    print(f"Projects: {report.projects_ok} restored, {report.projects_failed} failed")
    print(f"Tasks:    {report.tasks_ok} restored, {report.tasks_failed} failed")
    print(f"Tasks in DB: {store.count_tasks()}")
    return 0 if not report.projects_failed and not report.tasks_failed else 2


if __name__ == "__main__":
    sys.exit(main())
