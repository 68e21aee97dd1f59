"""Per-sequence bookkeeping for multi-part segment sequences.

Normally one sequence number maps to one file.  After a producer restart
it can map to several, which must be consumed in ``(sequence, timestamp)``
order.  :class:`SequenceCache` lists the directory once per sequence
number and then serves the parts one at a time from memory.

Three tables, all owned by one :class:`~plogseq.manager.FileManager`:

- ``pending``          sequence → queue of not-yet-consumed descriptors
- ``done``             sequence → True once every part has been handed out
- ``restart_boundary`` file name → True for every part of a multi-part sequence

A sequence never has ``done`` set while its pending queue is non-empty.
"""

from __future__ import annotations

from collections import deque
from pathlib import Path

from plogseq.descriptor import SegmentDescriptor
from plogseq.discovery import find_candidates
from plogseq.logging import get_logger

_log = get_logger(__name__)


class SequenceCache:
    """Serves the files of each sequence number exactly once, in order.

    Args:
        location: Segment directory handed to
                  :func:`~plogseq.discovery.find_candidates` on a cache miss.
    """

    def __init__(self, location: Path) -> None:
        self._location = location
        self._pending: dict[int, deque[SegmentDescriptor]] = {}
        self._done: dict[int, bool] = {}
        self._restart_boundary: dict[str, bool] = {}

    def next(self, sequence: int) -> SegmentDescriptor | None:
        """Return the next unconsumed file for *sequence*.

        Serves from the pending queue when one exists, otherwise lists the
        directory.  Returns None when *sequence* is already done.

        Raises:
            NotFoundError:      no file exists for *sequence* yet.
            ConfigurationError: the location cannot be listed.
        """
        queue = self._pending.get(sequence)
        if queue:
            descriptor = queue.popleft()
            _log.debug("found PLOG in multi-sequence cache", file=descriptor.file_name)
            if not queue:
                _log.debug("done with multi-sequence", sequence=sequence)
                del self._pending[sequence]
                self._done[sequence] = True
            return descriptor

        if self._done.get(sequence):
            return None

        candidates = sorted(find_candidates(self._location, sequence))
        self._done[sequence] = False

        first, rest = candidates[0], candidates[1:]
        if rest:
            # Several files for one sequence only happens at a restart boundary.
            for descriptor in candidates:
                self._restart_boundary[descriptor.file_name] = True
            self._pending[sequence] = deque(rest)
            _log.debug("multi-sequence PLOG found", sequence=sequence, parts=len(candidates))
        else:
            self._done[sequence] = True
        return first

    def has_active_multi_sequence(self, sequence: int) -> bool:
        """True while *sequence* still has parts waiting in the cache."""
        return bool(self._pending.get(sequence))

    def pending_count(self, sequence: int) -> int:
        return len(self._pending.get(sequence, ()))

    def is_done(self, sequence: int) -> bool:
        return bool(self._done.get(sequence))

    def is_restart_boundary(self, file_name: str) -> bool:
        return bool(self._restart_boundary.get(file_name))

    def skip_before(self, sequence: int, timestamp: int) -> SegmentDescriptor | None:
        """Drop pending parts of *sequence* older than *timestamp*.

        Keeps the first part at or after *timestamp* at the head of the
        queue.  Returns the last part dropped, or None if nothing was.
        """
        queue = self._pending.get(sequence)
        skipped = None
        while queue and queue[0].timestamp < timestamp:
            skipped = queue.popleft()
        if sequence in self._pending and not queue:
            del self._pending[sequence]
            self._done[sequence] = True
        return skipped

    def requeue(self, descriptor: SegmentDescriptor) -> None:
        """Put *descriptor* back at the head of its sequence's queue."""
        self._pending.setdefault(descriptor.sequence, deque()).appendleft(descriptor)
        self._done[descriptor.sequence] = False

    def discard(self, sequence: int) -> None:
        """Forget everything about *sequence* so the next call rescans it."""
        self._pending.pop(sequence, None)
        self._done.pop(sequence, None)

    def reset(self) -> None:
        """Clear all three tables."""
        self._pending.clear()
        self._done.clear()
        self._restart_boundary.clear()
