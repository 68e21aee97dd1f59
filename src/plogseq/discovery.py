"""Stateless directory queries over the producer's segment location.

``find_oldest_sequence(location)`` answers "where does a cold start
begin?" and ``find_candidates(location, sequence)`` answers "which files
make up this sequence number?".  Neither keeps state; caching of
multi-part sequences lives in :mod:`plogseq.cache`.

The location is owned by the producer and treated as read-only.  A
location that cannot be listed is a :class:`~plogseq.errors.ConfigurationError`;
a readable location with nothing for the requested sequence is a
:class:`~plogseq.errors.NotFoundError`, which callers poll on.
"""

from __future__ import annotations

import sys
from pathlib import Path

from plogseq.descriptor import (
    PLOG_INFIX,
    PLOG_SUFFIX,
    SegmentDescriptor,
    is_load_segment,
)
from plogseq.errors import ConfigurationError, NamingConventionError, NotFoundError
from plogseq.logging import get_logger

_log = get_logger(__name__)

# Returned by find_oldest_sequence() when no segment is present at all.
NO_SEQUENCE = sys.maxsize


def _list_names(location: Path) -> list[str]:
    """Return the names of regular files in *location*, sorted."""
    try:
        return sorted(entry.name for entry in location.iterdir() if entry.is_file())
    except OSError as exc:
        raise ConfigurationError(f"Invalid location for PLOGs: {location} ({exc})") from exc


def find_oldest_sequence(location: Path) -> int:
    """Return the lowest sequence number of any segment in *location*.

    Every file whose name contains ``.plog.`` in any case is looked at,
    bulk-load segments included.  A name only counts when it parses as a
    :class:`~plogseq.descriptor.SegmentDescriptor`, the same test
    find_candidates() applies; the rest are logged and skipped.

    Returns:
        The smallest sequence number found, or :data:`NO_SEQUENCE` if no
        file parses.

    Raises:
        ConfigurationError: *location* cannot be listed.
    """
    oldest = NO_SEQUENCE
    for name in _list_names(location):
        if PLOG_INFIX not in name.lower():
            continue
        try:
            sequence = SegmentDescriptor.parse(name).sequence
        except NamingConventionError as exc:
            _log.warning("skipping malformed PLOG name", file=name, reason=str(exc))
            continue
        oldest = min(oldest, sequence)
    return oldest


def find_candidates(location: Path, sequence: int) -> list[SegmentDescriptor]:
    """Return descriptors for every main-sequence file of *sequence*.

    Matches names starting with ``<sequence>.plog`` and drops bulk-load
    segments.  Names that fail to parse are logged and skipped.  The
    result is in directory-listing (name) order; callers sort it.

    Raises:
        ConfigurationError: *location* cannot be listed.
        NotFoundError:      nothing usable exists for *sequence*.
    """
    prefix = f"{sequence}.{PLOG_SUFFIX}"
    found: list[SegmentDescriptor] = []

    for name in _list_names(location):
        if not name.lower().startswith(prefix) or is_load_segment(name):
            continue
        try:
            descriptor = SegmentDescriptor.parse(name)
        except NamingConventionError as exc:
            _log.warning("skipping PLOG with invalid name", file=name, reason=str(exc))
            continue
        _log.debug("found candidate PLOG", file=name)
        found.append(descriptor)

    if not found:
        raise NotFoundError(f"No file(s) found for sequence: {sequence} in PLOG location: {location}")
    return found
