"""
Directory-backed blob store for backup artifacts.

Mirrors the bucket operations the backup service needs:
upload / list / download / remove. Object names are flat file names inside
the root directory.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)


class BlobStoreError(Exception):
    """Raised when a blob operation fails."""
    pass


class BlobExistsError(BlobStoreError):
    """Raised when uploading without upsert onto an existing object."""
    pass


@dataclass
class BlobInfo:
    name: str
    size: int
    created_at: datetime

    def to_dict(self):
        return {"name": self.name, "size": self.size, "created_at": self.created_at.isoformat()}


class LocalBlobStore:
    """Stores each object as a file under `root`."""

    def __init__(self, root: str):
        self.root = Path(root).expanduser()
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, name: str) -> Path:
        """Resolve an object name and assert it stays within root."""
        resolved = (self.root / name).resolve()
        if resolved.parent != self.root.resolve():
            raise BlobStoreError(f"Invalid object name: {name}")
        return resolved

    def upload(self, name: str, data: bytes, content_type: str = "application/octet-stream",
               upsert: bool = False) -> BlobInfo:
        path = self._path(name)
        mode = "wb" if upsert else "xb"
        try:
            with open(path, mode) as f:
                f.write(data)
        except FileExistsError as e:
            raise BlobExistsError(f"Object already exists: {name}") from e
        except OSError as e:
            raise BlobStoreError(f"Cannot write {name}: {e}") from e
        logger.debug(f"Uploaded {name} ({len(data)} bytes, {content_type})")
        return self._info(path)

    def download(self, name: str) -> Optional[bytes]:
        """Return the object's bytes, or None if it does not exist."""
        path = self._path(name)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise BlobStoreError(f"Cannot read {name}: {e}") from e

    def list(self, prefix: str = "", sort_by: str = "created_at",
             descending: bool = False) -> List[BlobInfo]:
        """List objects whose name starts with `prefix`."""
        try:
            entries = [self._info(p) for p in self.root.iterdir()
                       if p.is_file() and p.name.startswith(prefix)]
        except OSError as e:
            raise BlobStoreError(f"Cannot list {self.root}: {e}") from e

        if sort_by == "created_at":
            key = lambda b: (b.created_at, b.name)
        elif sort_by == "name":
            key = lambda b: b.name
        else:
            raise ValueError(f"Unsupported sort column: {sort_by}")
        return sorted(entries, key=key, reverse=descending)

    def remove(self, names: Iterable[str]) -> int:
        removed = 0
        for name in names:
            try:
                self._path(name).unlink()
                removed += 1
            except FileNotFoundError:
                logger.warning(f"Blob {name} already removed")
            except OSError as e:
                raise BlobStoreError(f"Cannot remove {name}: {e}") from e
        return removed

    def _info(self, path: Path) -> BlobInfo:
        st = path.stat()
        created = datetime.fromtimestamp(st.st_mtime_ns / 1e9, tz=timezone.utc)
        return BlobInfo(name=path.name, size=st.st_size, created_at=created)
