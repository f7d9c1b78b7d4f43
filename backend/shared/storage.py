"""Storage for completed-leg snapshots.

A snapshot is the JSON of one finished leg: the leg row, its turns with
throws and per-player stats. Statistics and commentary tooling read them
offline. Files are gzip-compressed, written atomically and readable by the
owner only.
"""

import contextlib
import gzip
import os
import tempfile
from pathlib import Path
from typing import Protocol

import structlog

logger = structlog.get_logger()

_SNAPSHOT_DIR_MODE = 0o700
_SNAPSHOT_FILE_MODE = 0o600
SNAPSHOT_SUFFIX = ".json.gz"


class SnapshotStorage(Protocol):
    def save_snapshot(self, name: str, content: str) -> None: ...


class LocalSnapshotStorage:
    """Writes ``<name>.json.gz`` files under one directory."""

    def __init__(self, snapshot_dir: str) -> None:
        self._root = Path(snapshot_dir).resolve()

    def path_for(self, name: str) -> Path:
        target = (self._root / f"{name}{SNAPSHOT_SUFFIX}").resolve()
        if not target.is_relative_to(self._root):
            raise ValueError(f"Path traversal rejected: '{name}' resolves outside the snapshot directory")
        return target

    def save_snapshot(self, name: str, content: str) -> None:
        """Compress ``content`` and move it into place with a rename.

        The directory is created on first write. Names that would escape the
        directory raise ValueError before anything touches the disk.
        """
        target = self.path_for(name)
        self._root.mkdir(mode=_SNAPSHOT_DIR_MODE, parents=True, exist_ok=True)
        self._root.chmod(_SNAPSHOT_DIR_MODE)

        payload = gzip.compress(content.encode("utf-8"))
        fd, tmp_name = tempfile.mkstemp(dir=str(self._root), prefix=".snapshot_", suffix=".tmp")
        fd_owned = True
        try:
            with os.fdopen(fd, "wb") as f:
                fd_owned = False
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_name, _SNAPSHOT_FILE_MODE)  # noqa: PTH101
            Path(tmp_name).replace(target)
        except BaseException:
            if fd_owned:
                with contextlib.suppress(OSError):
                    os.close(fd)
            with contextlib.suppress(OSError):
                Path(tmp_name).unlink()
            raise
        logger.info("saved snapshot", name=name, path=str(target), size=len(payload))

    def load_snapshot(self, name: str) -> str:
        return gzip.decompress(self.path_for(name).read_bytes()).decode("utf-8")
