"""Segment handles: the resource the file manager hands to the parser.

:class:`SegmentHandle` is the interface the manager relies on.  Parsers
with their own reader plug in by passing a ``handle_factory`` to
:class:`~plogseq.manager.FileManager`; :class:`PlogSegment` is the plain
file-backed default used by the CLI.

A handle is created unopened.  The manager moves any carried-over parse
cache into it from its predecessor, waits until the file is at least
``control_header_size`` bytes long, and only then calls :meth:`open`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, BinaryIO, Protocol

from plogseq.descriptor import SegmentDescriptor, make_uid

# Bytes the producer writes before any entry; a shorter file is still
# being created and must not be opened.
CONTROL_HEADER_SIZE = 12


class SegmentHandle(Protocol):
    control_header_size: int
    sequence_number: int
    file_name: str

    @property
    def uid(self) -> int: ...

    @property
    def full_path(self) -> Path: ...

    def open(self) -> None: ...

    def close(self) -> None: ...

    def copy_cache_from(self, other: SegmentHandle) -> None: ...

    def enable_force_close_at_end(self) -> None: ...


class PlogSegment:
    """File-backed :class:`SegmentHandle`.

    Args:
        sequence:  Sequence number of the segment.
        timestamp: 10-digit creation timestamp from the filename.
        location:  Directory holding the segment.
        file_name: Name of the file within *location*.  Empty for the
                   placeholder that stands in for a predecessor that no
                   longer exists on disk.
    """

    control_header_size = CONTROL_HEADER_SIZE

    def __init__(self, sequence: int, timestamp: int, location: Path, file_name: str) -> None:
        self.sequence_number = sequence
        self.timestamp = timestamp
        self.location = location
        self.file_name = file_name
        self.force_close_at_end = False
        # Decoder state (e.g. table definitions) that carries across segments.
        self.cache: dict[str, Any] = {}
        self._stream: BinaryIO | None = None

    @classmethod
    def from_descriptor(cls, location: Path, descriptor: SegmentDescriptor) -> PlogSegment:
        return cls(descriptor.sequence, descriptor.timestamp, location, descriptor.file_name)

    @property
    def uid(self) -> int:
        return make_uid(self.sequence_number, self.timestamp)

    @property
    def full_path(self) -> Path:
        return self.location / self.file_name

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    @property
    def stream(self) -> BinaryIO:
        """The open binary stream, positioned at the start of the file."""
        if self._stream is None:
            raise ValueError(f"PLOG {self.file_name!r} is not open")
        return self._stream

    def open(self) -> None:
        if self._stream is None:
            self._stream = self.full_path.open("rb")

    def close(self) -> None:
        """Close the stream if open.  Safe to call repeatedly."""
        if self._stream is not None:
            self._stream.close()
            self._stream = None

    def copy_cache_from(self, other: SegmentHandle) -> None:
        self.cache.update(getattr(other, "cache", {}))

    def enable_force_close_at_end(self) -> None:
        self.force_close_at_end = True

    def __repr__(self) -> str:
        return (
            f"PlogSegment(sequence={self.sequence_number}, timestamp={self.timestamp}, "
            f"file_name={self.file_name!r}, open={self.is_open})"
        )
