"""Stream lock: at most one consumer per PLOG location.

The file manager assumes it is the only reader advancing through a
producer's sequence.  :class:`StreamLock` enforces that across processes.
The lock file lives in ``state_dir`` and is named after a digest of the
*resolved* PLOG location, so consumers of different streams can share one
state directory while a second consumer of the same stream is refused,
however its location was spelled (relative path, symlink, ``file://`` URI).

The lock file holds a JSON :class:`LockRecord` naming the owning PID and
the stream.  A record whose PID is no longer running, or that cannot be
read, is stale and is taken over.

Usage::

    from plogseq.lock import LockError, StreamLock

    try:
        with StreamLock(settings.paths.state_dir, settings.paths.plog_location):
            ...  # scan loop
    except LockError as exc:
        log.error("PLOG stream already being followed", detail=str(exc))
        raise typer.Exit(1)
"""

from __future__ import annotations

import hashlib
import json
import os
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path

from plogseq.logging import get_logger

_log = get_logger(__name__)

LOCK_PREFIX = "plogseq-"
LOCK_SUFFIX = ".lock"


class LockError(RuntimeError):
    """Raised when another live process already follows the stream."""


@dataclass(frozen=True)
class LockRecord:
    """Contents of a stream lock file."""

    pid: int
    plog_location: str
    acquired_at: str

    def to_json(self) -> str:
        return json.dumps(asdict(self), sort_keys=True)

    @classmethod
    def from_json(cls, text: str) -> LockRecord | None:
        """Parse a lock file body; None if it is not a record at all."""
        try:
            data = json.loads(text)
            pid = int(data["pid"])
            if pid <= 0:
                return None
            return cls(
                pid=pid,
                plog_location=str(data["plog_location"]),
                acquired_at=str(data["acquired_at"]),
            )
        except (ValueError, KeyError, TypeError):
            return None


def stream_key(location: Path) -> str:
    """Short stable digest identifying the stream at *location*."""
    resolved = str(Path(location).resolve())
    return hashlib.sha256(resolved.encode()).hexdigest()[:16]


def lock_path_for(state_dir: Path, location: Path) -> Path:
    return state_dir / f"{LOCK_PREFIX}{stream_key(location)}{LOCK_SUFFIX}"


class StreamLock:
    """Cross-process lock on one PLOG location.

    Args:
        state_dir: Directory holding lock files; must already exist.
        location:  PLOG location being followed.
    """

    def __init__(self, state_dir: Path, location: Path) -> None:
        self._location = Path(location).resolve()
        self._path = lock_path_for(state_dir, self._location)
        self._pid = os.getpid()
        self._held = False

    @property
    def path(self) -> Path:
        return self._path

    @property
    def location(self) -> Path:
        return self._location

    def holder(self) -> LockRecord | None:
        """Return the record of the live process holding the lock, if any."""
        record = self._read()
        if record is None or not _is_alive(record.pid):
            return None
        return record

    def acquire(self) -> None:
        """Claim the stream; raise ``LockError`` if a live process holds it."""
        record = LockRecord(
            pid=self._pid,
            plog_location=str(self._location),
            acquired_at=datetime.now(timezone.utc).isoformat(timespec="seconds"),
        )
        try:
            fd = os.open(self._path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            holder = self.holder()
            if holder is not None:
                raise LockError(
                    f"PLOG location {self._location} is already being followed "
                    f"by PID {holder.pid} since {holder.acquired_at}.  Lock file: {self._path}"
                ) from None
            _log.warning("taking over stale stream lock", lock=str(self._path))
            self._path.write_text(record.to_json())
        else:
            with os.fdopen(fd, "w") as fh:
                fh.write(record.to_json())

        self._held = True
        _log.debug("stream lock acquired", lock=str(self._path), location=str(self._location))

    def release(self) -> None:
        """Remove the lock file if this instance holds it."""
        if not self._held:
            return
        self._held = False
        record = self._read()
        if record is not None and record.pid == self._pid:
            self._path.unlink(missing_ok=True)

    def __enter__(self) -> StreamLock:
        self.acquire()
        return self

    def __exit__(self, *_: object) -> None:
        self.release()

    def _read(self) -> LockRecord | None:
        try:
            return LockRecord.from_json(self._path.read_text())
        except FileNotFoundError:
            return None


def _is_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True  # exists, owned by someone else
    return True
