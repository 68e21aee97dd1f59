"""Segment filename convention, parsed descriptors and UID encoding.

Every transactional segment the producer writes is named::

    <sequence>.plog.<timestamp>[optional suffix]

where ``sequence`` is the logical position in the replicated stream and
``timestamp`` is a 10-digit creation time.  A producer restart can leave
several files behind for one sequence number; they are ordered by
``(sequence, timestamp)``.

Bulk-load segments carry an extra ``-<6 digits>-LOAD_`` marker and are
never part of the main sequence; :func:`is_load_segment` recognises them.

A segment UID packs both parts into one 64-bit integer::

    uid = (sequence << 32) + timestamp
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from plogseq.errors import InvalidIdentifierError, NamingConventionError

PLOG_SUFFIX = "plog"

# ".plog.": the infix that marks a file as a segment at all.
PLOG_INFIX = f".{PLOG_SUFFIX}."

_NAME_RE = re.compile(
    rf"^(?P<sequence>0|[1-9][0-9]*)\.{PLOG_SUFFIX}\.(?P<timestamp>[0-9]{{10}}).*$"
)
_LOAD_RE = re.compile(rf"^[0-9]+\.{PLOG_SUFFIX}\.[0-9]{{10}}.*-[0-9]{{6}}-LOAD_.*")

_TIMESTAMP_BITS = 32
_TIMESTAMP_MASK = (1 << _TIMESTAMP_BITS) - 1


def make_uid(sequence: int, timestamp: int) -> int:
    """Pack *sequence* and *timestamp* into a single segment UID.

    Raises:
        InvalidIdentifierError: *timestamp* does not fit the low 32 bits.
    """
    if not 0 <= timestamp <= _TIMESTAMP_MASK:
        raise InvalidIdentifierError(
            f"Invalid PLOG timestamp: {timestamp}, must fit in {_TIMESTAMP_BITS} bits"
        )
    return (sequence << _TIMESTAMP_BITS) + timestamp


def sequence_from_uid(uid: int) -> int:
    return uid >> _TIMESTAMP_BITS


def timestamp_from_uid(uid: int) -> int:
    return uid & _TIMESTAMP_MASK


def split_uid(uid: int) -> tuple[int, int]:
    """Return ``(sequence, timestamp)`` for *uid*.

    Raises:
        InvalidIdentifierError: the sequence component is below 1.
    """
    sequence = sequence_from_uid(uid)
    if sequence < 1:
        raise InvalidIdentifierError(f"Invalid PLOG sequence: {sequence}, uid: {uid}")
    return sequence, timestamp_from_uid(uid)


def is_load_segment(file_name: str) -> bool:
    """Return True for a bulk-load segment, which is excluded from sequencing."""
    return _LOAD_RE.match(file_name) is not None


@dataclass(frozen=True, order=True)
class SegmentDescriptor:
    """Immutable metadata recovered from a segment filename.

    Ordering (and equality) is by ``(sequence, timestamp)`` only, which is
    the order the parts of a multi-part sequence must be consumed in.
    """

    sequence: int
    timestamp: int
    file_name: str = field(compare=False)

    @classmethod
    def parse(cls, file_name: str) -> SegmentDescriptor:
        """Parse *file_name* into a descriptor.

        Raises:
            NamingConventionError: *file_name* does not follow the convention.
        """
        m = _NAME_RE.match(file_name)
        if m is None:
            raise NamingConventionError(
                f"Invalid PLOG file to process: {file_name}, "
                "reason: does not follow expected naming convention"
            )
        timestamp = int(m.group("timestamp"))
        if timestamp > _TIMESTAMP_MASK:
            raise NamingConventionError(
                f"Invalid PLOG file to process: {file_name}, "
                "reason: does not follow expected naming convention, timestamp out of range"
            )
        return cls(
            sequence=int(m.group("sequence")),
            timestamp=timestamp,
            file_name=file_name,
        )

    @property
    def uid(self) -> int:
        return make_uid(self.sequence, self.timestamp)
