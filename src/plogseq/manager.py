"""FileManager: hands segments to the parser one at a time, in logical order.

Lifecycle::

    manager = FileManager.from_settings(settings)        # cold start
    manager.start_at(uid)                                 # ...or warm resume
    while True:
        handle = manager.scan(cancel)                     # blocks
        parse(handle)
    manager.close()

``scan()`` is the only transition of the scan state machine:

- **cold** (never scanned): poll for the oldest sequence present, open it.
- **warm**: the current handle becomes the previous one.  If its sequence
  still has parts cached (a restart left several files behind), the next
  part is opened straight away.  Otherwise poll for ``previous + 1``.

Before a new handle is exposed its predecessor's parse cache is copied
into it and the predecessor is closed; the new file is then only opened
once it has grown past the control header.

Every wait polls with ``sleep`` and checks the optional cancellation
``threading.Event`` before each poll.  Unsuccessful polls count towards a
liveness budget of ``scan_quit_interval_count * health_check_interval_count``
polls; when it runs out the scan raises :class:`~plogseq.errors.OfflineError`,
or :class:`~plogseq.errors.CancellationError` if forced interruption is armed.
"""

from __future__ import annotations

import os
import threading
import time
from collections.abc import Callable
from datetime import timedelta
from pathlib import Path

from plogseq.cache import SequenceCache
from plogseq.config import ScanSettings, Settings
from plogseq.descriptor import SegmentDescriptor, split_uid
from plogseq.discovery import NO_SEQUENCE, find_oldest_sequence
from plogseq.errors import (
    CancellationError,
    ConfigurationError,
    NotFoundError,
    OfflineError,
    ScanStateError,
)
from plogseq.logging import get_logger
from plogseq.segment import PlogSegment, SegmentHandle

_log = get_logger(__name__)

HandleFactory = Callable[[Path, SegmentDescriptor], SegmentHandle]


def _file_size(path: Path) -> int:
    try:
        return path.stat().st_size
    except FileNotFoundError:
        return 0


class FileManager:
    """Finds, orders and opens the segments of one producer's output.

    Args:
        location:       Directory the producer writes segments to.  Must be
                        a readable directory.
        scan:           Polling cadence and liveness budget.
        resume_uid:     If given, :meth:`start_at` this UID straight away.
        handle_factory: Builds an unopened handle for a descriptor.
        sleep:          Blocking sleep in seconds (inject a fake in tests).

    Raises:
        ConfigurationError: *location* is not a readable directory.
    """

    def __init__(
        self,
        location: Path,
        scan: ScanSettings,
        *,
        resume_uid: int | None = None,
        handle_factory: HandleFactory = PlogSegment.from_descriptor,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        location = Path(location)
        if not (location.is_dir() and os.access(location, os.R_OK | os.X_OK)):
            _log.error("PLOG location is not accessible", location=str(location))
            raise ConfigurationError(f"The PLOG location: {location} is not accessible")

        self._location = location
        self._scan_interval = scan.scan_interval_count
        self._wait_seconds = scan.scan_wait_time_ms / 1000
        self._wait_ms = scan.scan_wait_time_ms
        self._health_check_interval = scan.health_check_interval_count
        self._quit_interval = scan.scan_quit_interval_count
        self._force_interrupt = scan.force_interrupt
        self._handle_factory = handle_factory
        self._sleep = sleep

        self._cache = SequenceCache(location)
        self._current: SegmentHandle | None = None
        self._previous: SegmentHandle | None = None
        self._active = False
        self._resumed = False
        self._scan_count = 0
        self._lock = threading.RLock()

        if resume_uid is not None:
            self.start_at(resume_uid)

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> FileManager:
        """Build a manager for ``settings.paths.plog_location``."""
        return cls(settings.paths.plog_location, settings.scan, **kwargs)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def location(self) -> Path:
        return self._location

    @property
    def scan_count(self) -> int:
        """Consecutive unsuccessful polls since the last segment was opened."""
        return self._scan_count

    @property
    def previous_handle(self) -> SegmentHandle | None:
        return self._previous

    def current_handle(self) -> SegmentHandle | None:
        """The handle exposed by the last successful :meth:`scan`."""
        return self._current

    def is_active(self) -> bool:
        return self._active

    def is_resumed(self) -> bool:
        """True when positioned by :meth:`start_at` rather than a cold start."""
        return self._resumed

    def can_quit(self) -> bool:
        """True once the unsuccessful polls have used up the liveness budget."""
        return self._scan_count // self._health_check_interval >= self._quit_interval

    def timeout_duration(self) -> timedelta:
        """How long the producer may stay silent before it is considered offline."""
        return timedelta(
            milliseconds=self._quit_interval * self._health_check_interval * self._wait_ms
        )

    def set_force_interrupt(self) -> None:
        """Cancel instead of failing when the liveness budget runs out."""
        self._force_interrupt = True

    # ------------------------------------------------------------------
    # Positioning
    # ------------------------------------------------------------------

    def start_at(self, uid: int) -> None:
        """Position the manager so that the next :meth:`scan` yields *uid*.

        Does not open anything.  The segment before *uid* is adopted as the
        previous handle so that the normal advance logic lands on *uid*.
        If that predecessor is gone from disk a placeholder carrying its
        sequence number and an empty file name stands in for it.

        Raises:
            InvalidIdentifierError: the sequence part of *uid* is below 1.
            NotFoundError:          no file exists for *uid*'s sequence.
        """
        with self._lock:
            sequence, timestamp = split_uid(uid)
            self._release_handles()

            # Redo the target's own sequence from scratch.
            self._cache.discard(sequence)
            target = self._cache.next(sequence)
            assert target is not None  # discard() guarantees a fresh listing

            if target.uid == uid:
                placeholder = self._rewind(sequence, target)
                self._cache.discard(sequence)
            elif self._cache.has_active_multi_sequence(sequence):
                _log.debug("restarting with multi-sequence PLOG", sequence=sequence)
                skipped = self._cache.skip_before(sequence, timestamp)
                placeholder = self._handle_for(skipped or target)
            else:
                _log.warning(
                    "resume PLOG not found on disk, resuming after closest match",
                    uid=uid,
                    file=target.file_name,
                )
                placeholder = self._handle_for(target)

            self._previous = placeholder
            self._active = True
            self._scan_count = 0
            # Not a cold start: the producer is running and we are resuming.
            self._resumed = True
            _log.debug("positioned before PLOG", uid=uid, previous=placeholder.file_name)

    def start_after(self, uid: int) -> None:
        """Position the manager so that scanning resumes strictly after *uid*."""
        with self._lock:
            sequence, _ = split_uid(uid)
            self.start_at(uid)
            descriptor = self._cache.next(sequence)
            if descriptor is not None:
                self._previous = self._handle_for(descriptor)

    def restart_at(self, uid: int) -> None:
        """Drop all cached scan state and :meth:`start_at` *uid*."""
        with self._lock:
            if self._active:
                self._reset()
            self.start_at(uid)

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def scan(self, cancel: threading.Event | None = None) -> SegmentHandle:
        """Block until the next segment is open and return its handle.

        The returned handle replaces the one returned by the previous call,
        which is closed.

        Raises:
            CancellationError: *cancel* was set, or the liveness budget ran
                               out with forced interruption armed.
            OfflineError:      the liveness budget ran out.
            ConfigurationError: the location can no longer be listed.
        """
        with self._lock:
            _log.debug("scanning for PLOGs", location=str(self._location))
            if not self._active:
                self._first_scan(cancel)
            else:
                if self._current is not None and self._current is not self._previous:
                    self._previous = self._current
                self._current = None
                if not self._continue_scan(cancel):
                    self._next_scan(cancel)

            assert self._current is not None
            _log.debug("done scanning", file=self._current.file_name)
            return self._current

    def close(self) -> None:
        """Close the current and previous handles, whichever exist."""
        for handle in (self._current, self._previous):
            if handle is not None:
                handle.close()

    def describe(self) -> str:
        return (
            f"PLOG file manager location: {self._location}"
            f" previous plog: {self._previous.file_name if self._previous else 'n/a'}"
            f" current plog: {self._current.file_name if self._current else 'n/a'}"
            f" active: {self._active} resumed: {self._resumed}"
        )

    def __repr__(self) -> str:
        return f"<FileManager {self.describe()}>"

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _first_scan(self, cancel: threading.Event | None) -> None:
        limit = self._quit_interval * self._health_check_interval
        retries = 0

        while True:
            self._check_cancel(cancel)
            first = find_oldest_sequence(self._location)
            if first != NO_SEQUENCE:
                try:
                    descriptor = self._cache.next(first)
                except NotFoundError:
                    # Only bulk-load segments so far.
                    descriptor = None
                if descriptor is not None:
                    break

            retries += 1
            if retries > limit:
                raise OfflineError(
                    f"Producer seems offline: no PLOG appeared in {self._location} "
                    f"after {retries} scans"
                )
            if retries % self._health_check_interval == 0:
                _log.warning("no PLOG found, checking producer", retries=retries)
            self._sleep(self._wait_seconds)

        _log.info("replicate stream starts with", file=descriptor.file_name)
        self._open_next(descriptor, cancel)
        self._active = True
        self._scan_count = 0

    def _continue_scan(self, cancel: threading.Event | None) -> bool:
        """Open the next part of the previous handle's sequence, if any."""
        if self._previous is None:
            raise ScanStateError(
                "Unable to perform scan for multi-sequence PLOGs if no previous PLOG exists"
            )

        sequence = self._previous.sequence_number
        if not self._cache.has_active_multi_sequence(sequence):
            return False

        _log.debug("finding next PLOG part of multi-sequence", sequence=sequence)
        descriptor = self._cache.next(sequence)
        assert descriptor is not None
        self._open_next(descriptor, cancel)
        return True

    def _next_scan(self, cancel: threading.Event | None) -> None:
        assert self._previous is not None
        sequence = self._previous.sequence_number + 1

        while self._current is None:
            self._check_cancel(cancel)
            _log.debug("scanning for next PLOG sequence", sequence=sequence)
            try:
                descriptor = self._cache.next(sequence)
            except NotFoundError as exc:
                descriptor = None
                reason = str(exc)
            else:
                reason = f"sequence {sequence} already processed"

            if descriptor is not None:
                self._open_next(descriptor, cancel)
                return

            self._scan_count += 1
            _log.debug("waiting for next PLOG file to appear", reason=reason)
            if self._scan_count % self._health_check_interval == 0:
                _log.warning(
                    "no new PLOG found, checking producer",
                    sequence=sequence,
                    scan_count=self._scan_count,
                )
            if self.can_quit():
                if self._force_interrupt:
                    _log.warning("forcing shutdown of PLOG scanning", reason="idle timeout")
                    raise CancellationError(
                        f"PLOG scanning interrupted after idle timeout of {self.timeout_duration()}"
                    )
                raise OfflineError(
                    f"Producer seems offline: no PLOG for sequence {sequence} "
                    f"after {self._scan_count} scans"
                )
            self._sleep(self._wait_seconds)

    def _open_next(self, descriptor: SegmentDescriptor, cancel: threading.Event | None) -> None:
        """Hand over from the previous handle and open *descriptor*'s file."""
        handle = self._handle_for(descriptor)

        if self._cache.is_restart_boundary(descriptor.file_name):
            # Its predecessor may not have been finalised before the restart.
            _log.debug("restart boundary PLOG found", file=descriptor.file_name)
            handle.enable_force_close_at_end()

        if self._previous is not None:
            handle.copy_cache_from(self._previous)
            self._previous.close()

        try:
            self._wait_for_control_header(handle, cancel)
        except CancellationError:
            # Serve the same file again on the next scan().
            self._cache.requeue(descriptor)
            raise

        handle.open()
        self._current = handle
        self._scan_count = 0
        _log.info("PLOG opened", file=descriptor.file_name, sequence=descriptor.sequence)

    def _wait_for_control_header(
        self, handle: SegmentHandle, cancel: threading.Event | None
    ) -> None:
        while _file_size(handle.full_path) < handle.control_header_size:
            self._check_cancel(cancel)
            _log.info("waiting for control header to be written to PLOG", file=handle.file_name)
            self._sleep(self._wait_seconds * self._scan_interval)

    def _rewind(self, sequence: int, target: SegmentDescriptor) -> SegmentHandle:
        """Return a handle for the last part of the sequence before *sequence*."""
        previous_sequence = sequence - 1
        _log.debug("reset scanning to PLOG sequence", sequence=previous_sequence)

        try:
            descriptor = self._cache.next(previous_sequence)
            # Land on the last part of a multi-part predecessor.
            while self._cache.has_active_multi_sequence(previous_sequence):
                descriptor = self._cache.next(previous_sequence)
        except NotFoundError:
            descriptor = None

        if descriptor is not None:
            return self._handle_for(descriptor)

        _log.debug(
            "previous PLOG is no longer available, mark it as empty file",
            sequence=previous_sequence,
        )
        placeholder = self._handle_for(target)
        placeholder.sequence_number = previous_sequence
        placeholder.file_name = ""
        return placeholder

    def _handle_for(self, descriptor: SegmentDescriptor) -> SegmentHandle:
        return self._handle_factory(self._location, descriptor)

    def _check_cancel(self, cancel: threading.Event | None) -> None:
        if cancel is not None and cancel.is_set():
            raise CancellationError("PLOG scanning was cancelled")

    def _release_handles(self) -> None:
        self.close()
        self._current = None
        self._previous = None

    def _reset(self) -> None:
        self._scan_count = 0
        self._cache.reset()
