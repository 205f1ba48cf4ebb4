# migrator/progress/store.py

import os
from pathlib import Path
from typing import Optional, Union

import msgspec

from ..core.errors import ProgressCorruptError, ProgressPersistenceError
from ..core.logging import LoggingMixin
from ..types import ProgressRecord
from .lock import SingletonLock
from .schema import RequestedLookup, now_ms, upgrade_record


def atomic_write_bytes(path: Path, payload: bytes) -> None:
    """
    Write ``payload`` to ``path`` through a temporary sibling and an atomic rename.

    Readers see either the previous file or the complete new one. On failure the
    temporary file is removed and the exception propagates.
    """
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        with open(tmp_path, "wb") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        try:
            tmp_path.unlink()
        except FileNotFoundError:
            pass
        raise


class ProgressStore(LoggingMixin):
    """
    Durable record of applied entries and failed batches for one migration job.

    The store owns the progress file and its lock file. Only the running
    migration mutates the record, and it saves after every batch attempt.
    """

    def __init__(self, path: Union[str, Path], job: str, lock_path: Optional[Union[str, Path]] = None):
        self.path = Path(path)
        self.job = job
        lock_path = Path(lock_path) if lock_path else self.path.with_name(self.path.name + ".lock")
        self.lock = SingletonLock(lock_path)
        self._encoder = msgspec.json.Encoder()

    def acquire(self) -> None:
        self.lock.acquire()

    def release(self) -> None:
        self.lock.release()

    def exists(self) -> bool:
        return self.path.is_file()

    def new_record(self) -> ProgressRecord:
        now = now_ms()
        return ProgressRecord(job=self.job, start_time=now, last_update_time=now)

    def read(self, requested: Optional[RequestedLookup] = None) -> Optional[ProgressRecord]:
        """Read the record without creating it. Used by read-only commands."""
        if not self.exists():
            return None
        try:
            raw = msgspec.json.decode(self.path.read_bytes())
        except msgspec.DecodeError as e:
            raise ProgressCorruptError(f"{self.path}: progress file is not valid JSON: {e}") from e
        return upgrade_record(raw, self.job, requested)

    def load(self, requested: Optional[RequestedLookup] = None) -> ProgressRecord:
        """
        Load the job's progress record, creating and persisting a fresh one if absent.

        Args:
            requested: owner -> asset -> requested quantity from the entry source,
                used to upgrade legacy progress layouts

        Raises:
            ProgressCorruptError: if the file exists but cannot be decoded
        """
        record = self.read(requested)
        if record is not None:
            self.log_info("Progress loaded",
                          job=self.job,
                          path=str(self.path),
                          processed=record.processed_entry_count,
                          failed_batches=len(record.failed_batches))
            return record

        self.log_info("Progress file not found, starting fresh", job=self.job, path=str(self.path))
        record = self.new_record()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.save(record)
        return record

    def encode(self, record: ProgressRecord) -> bytes:
        return msgspec.json.format(self._encoder.encode(record), indent=2)

    def save(self, record: ProgressRecord) -> None:
        record.last_update_time = now_ms()
        try:
            atomic_write_bytes(self.path, self.encode(record))
        except OSError as e:
            self.log_error("Failed to save progress",
                           job=self.job,
                           path=str(self.path),
                           error=str(e))
            raise ProgressPersistenceError(f"Could not save progress to {self.path}: {e}") from e
