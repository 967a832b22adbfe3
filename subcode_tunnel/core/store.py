"""
Tunnel state store.

One JSON file per tunnel name in the state directory. Nothing is cached
in memory: every call reads from disk, and every write goes to a temp
file that is renamed into place so readers never see a partial record.
"""

from __future__ import annotations

import fcntl
import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from pydantic import ValidationError

from subcode_tunnel.core.validation import get_safe_state_path, validate_tunnel_name
from subcode_tunnel.logging import get_logger
from subcode_tunnel.models.tunnel import TunnelRecord

logger = get_logger(__name__)

RECORD_SUFFIX = ".json"


def atomic_write_text(path: Path, text: str) -> None:
    """
    Write text to path via a temp file in the same directory and a rename.

    Args:
        path: Destination file
        text: Full file contents
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


@contextmanager
def file_lock(lock_path: Path) -> Iterator[None]:
    """
    Hold an exclusive advisory lock on lock_path for the duration.

    Blocks until the lock is available. The lock file is left in place.
    """
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with lock_path.open("a") as lock_file:
        fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)


class TunnelStore:
    """
    Key-value store of TunnelRecords keyed by tunnel name.

    Supports atomic put, get, delete and list, plus per-key locks used
    to serialize operations on the same tunnel name across processes.
    """

    def __init__(self, state_dir: Path):
        """
        Initialize tunnel store.

        Args:
            state_dir: Directory holding one record file per tunnel
        """
        self.state_dir = Path(state_dir).expanduser()
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self.lock_dir = self.state_dir / "locks"

    def _path(self, name: str) -> Path:
        return get_safe_state_path(self.state_dir, name, RECORD_SUFFIX)

    def put(self, record: TunnelRecord) -> None:
        """Write a record, replacing any record with the same name."""
        validate_tunnel_name(record.name)
        atomic_write_text(self._path(record.name), record.model_dump_json(indent=2))
        logger.debug("Saved tunnel record", name=record.name, method=record.method.value)

    def get(self, name: str) -> TunnelRecord | None:
        """
        Read a record by name.

        Returns:
            The record, or None if absent or unreadable
        """
        path = self._path(name)
        if not path.exists():
            return None
        return self._read(path)

    def _read(self, path: Path) -> TunnelRecord | None:
        try:
            return TunnelRecord.model_validate_json(path.read_text())
        except FileNotFoundError:
            return None
        except (OSError, ValidationError) as e:
            logger.warning("Ignoring unreadable tunnel record", path=str(path), error=str(e))
            return None

    def delete(self, name: str) -> bool:
        """
        Delete a record by name.

        Returns:
            True if a record file was removed
        """
        path = self._path(name)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        logger.debug("Deleted tunnel record", name=name)
        return True

    def list(self) -> list[TunnelRecord]:
        """Return every readable record, sorted by name."""
        records = []
        for path in sorted(self.state_dir.glob(f"*{RECORD_SUFFIX}")):
            record = self._read(path)
            if record is not None:
                records.append(record)
        return records

    def clear(self) -> int:
        """
        Delete every record file, readable or not.

        Returns:
            Number of files removed
        """
        removed = 0
        for path in self.state_dir.glob(f"*{RECORD_SUFFIX}"):
            try:
                path.unlink()
                removed += 1
            except FileNotFoundError:
                continue
        logger.debug("Cleared tunnel records", count=removed)
        return removed

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        """
        Serialize work on key across concurrent invocations.

        Args:
            key: Lock key (a tunnel name)
        """
        lock_path = get_safe_state_path(self.lock_dir, key, ".lock")
        with file_lock(lock_path):
            yield
