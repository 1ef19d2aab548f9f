"""
Snapshot backups of every project and task.

A run loads the whole board, hashes it and compares the hash with the
checksum artifact from the previous run. Unchanged data is skipped, so a
cron hitting the endpoint repeatedly costs one read. Changed data is written
to a timestamped JSON artifact and the oldest artifacts beyond the retention
limit are pruned.

Upload and checksum update are not transactional: if the checksum write
fails after the snapshot landed, the next run just writes another snapshot.
"""
import hashlib
import json
import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .blobstore import BlobStoreError, LocalBlobStore
from .errors import BackupError, StoreError
from .schema import utc_now
from .store import BoardStore

logger = logging.getLogger(__name__)

CHECKSUM_FILE = "latest-checksum.txt"
BACKUP_PREFIX = "backup-"
BACKUP_SUFFIX = ".json"
MAX_BACKUPS = 30


@dataclass
class BackupMetadata:
    filename: str
    size: int
    createdAt: str
    projectCount: int
    taskCount: int
    skipped: bool = False
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if not self.skipped:
            data.pop("skipped")
            data.pop("reason")
        return data


def compute_data_hash(projects: List[Dict[str, Any]], tasks: List[Dict[str, Any]]) -> str:
    """SHA-256 over the board content with keys sorted at every level."""
    data = json.dumps({"projects": projects, "tasks": tasks}, sort_keys=True)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def backup_filename(when: datetime) -> str:
    """backup-YYYY-MM-DDTHH-MM-SS.json (second resolution)."""
    return f"{BACKUP_PREFIX}{when.strftime('%Y-%m-%dT%H-%M-%S')}{BACKUP_SUFFIX}"


def is_backup_file(name: str) -> bool:
    return name.startswith(BACKUP_PREFIX) and name.endswith(BACKUP_SUFFIX) and name != CHECKSUM_FILE


class BackupService:
    """Creates, lists and prunes snapshot artifacts in a blob store."""

    def __init__(
        self,
        store: BoardStore,
        blobs: LocalBlobStore,
        max_backups: int = MAX_BACKUPS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.blobs = blobs
        self.max_backups = max_backups
        self.clock = clock

    def export_data(self):
        """Load all projects (newest first) and their tasks (by order, nulls last)."""
        try:
            projects = self.store.list_projects()
        except StoreError as e:
            raise BackupError(f"Failed to load projects: {e}") from e

        tasks = []
        for project in projects:
            try:
                tasks.extend(self.store.list_tasks(project.id))
            except StoreError as e:
                raise BackupError(f"Failed to load tasks for project {project.id}: {e}") from e

        return [p.to_dict() for p in projects], [t.to_dict() for t in tasks]

    def create_backup(self, skip_if_unchanged: bool = True) -> BackupMetadata:
        projects, tasks = self.export_data()
        data_hash = compute_data_hash(projects, tasks)

        if skip_if_unchanged:
            previous = self._read_checksum()
            if previous is not None and previous == data_hash:
                logger.info("Backup skipped: no changes since last snapshot")
                return BackupMetadata(
                    filename="",
                    size=0,
                    createdAt=self.clock().isoformat(),
                    projectCount=len(projects),
                    taskCount=len(tasks),
                    skipped=True,
                    reason="no changes",
                )

        now = self.clock()
        payload = json.dumps(
            {"exportDate": now.isoformat(), "projects": projects, "tasks": tasks},
            indent=2,
        ).encode("utf-8")
        filename = backup_filename(now)

        try:
            self.blobs.upload(filename, payload, content_type="application/json", upsert=False)
        except BlobStoreError as e:
            raise BackupError(f"Failed to upload backup: {e}") from e

        try:
            self.blobs.upload(CHECKSUM_FILE, data_hash.encode("utf-8"),
                              content_type="text/plain", upsert=True)
        except BlobStoreError as e:
            raise BackupError(f"Failed to update checksum after writing {filename}: {e}") from e

        self.prune()

        logger.info(
            f"Backup written: {filename} ({len(payload)} bytes, "
            f"{len(projects)} projects, {len(tasks)} tasks)"
        )
        return BackupMetadata(
            filename=filename,
            size=len(payload),
            createdAt=now.isoformat(),
            projectCount=len(projects),
            taskCount=len(tasks),
        )

    def prune(self) -> List[str]:
        """Delete the oldest snapshots so at most `max_backups` remain."""
        try:
            files = [b for b in self.blobs.list(sort_by="created_at") if is_backup_file(b.name)]
        except BlobStoreError as e:
            raise BackupError(f"Failed to list backups for pruning: {e}") from e

        if len(files) <= self.max_backups:
            return []

        doomed = [b.name for b in files[: len(files) - self.max_backups]]
        try:
            self.blobs.remove(doomed)
        except BlobStoreError as e:
            raise BackupError(f"Failed to remove old backups: {e}") from e
        logger.info(f"Pruned {len(doomed)} old backup(s)")
        return doomed

    def list_backups(self) -> List[BackupMetadata]:
        """
        Snapshots newest first. Counts are -1: reading them would mean
        downloading and parsing every artifact.
        """
        try:
            files = self.blobs.list(sort_by="created_at", descending=True)
        except BlobStoreError as e:
            raise BackupError(f"Failed to list backups: {e}") from e

        return [
            BackupMetadata(
                filename=b.name,
                size=b.size,
                createdAt=b.created_at.isoformat(),
                projectCount=-1,
                taskCount=-1,
            )
            for b in files if is_backup_file(b.name)
        ]

    def load_backup(self, filename: str) -> Dict[str, Any]:
        """Download and parse one snapshot."""
        if not is_backup_file(filename):
            raise BackupError(f"Not a backup file: {filename}")
        try:
            raw = self.blobs.download(filename)
        except BlobStoreError as e:
            raise BackupError(f"Failed to download {filename}: {e}") from e
        if raw is None:
            raise BackupError(f"Backup not found: {filename}")
        try:
            snapshot = json.loads(raw)
        except json.JSONDecodeError as e:
            raise BackupError(f"Backup {filename} is not valid JSON: {e}") from e
        if not isinstance(snapshot, dict):
            raise BackupError(f"Backup {filename} is not a snapshot object")
        return snapshot

    def _read_checksum(self) -> Optional[str]:
        try:
            raw = self.blobs.download(CHECKSUM_FILE)
        except BlobStoreError as e:
            raise BackupError(f"Failed to read checksum: {e}") from e
        return raw.decode("utf-8").strip() if raw is not None else None
