"""Exception taxonomy shared by the scanner, cache and file manager.

Only :class:`NamingConventionError` is ever absorbed (logged and skipped
during directory listings).  :class:`NotFoundError` is the expected
"keep polling" signal; everything else propagates to the caller.
"""

from __future__ import annotations


class PlogError(Exception):
    """Base class for every error raised by plogseq."""


class ConfigurationError(PlogError):
    """The segment location is missing or unreadable, or settings are invalid."""


class NamingConventionError(PlogError, ValueError):
    """A filename does not follow ``<sequence>.plog.<timestamp>``."""


class NotFoundError(PlogError, FileNotFoundError):
    """No segment file exists (yet) for the requested sequence number."""


class OfflineError(PlogError):
    """The retry budget ran out; the producer appears to be offline."""


class CancellationError(PlogError):
    """A blocking scan observed a cancellation request and stopped cleanly."""


class InvalidIdentifierError(PlogError, ValueError):
    """A segment UID carries a sequence number below 1."""


class ScanStateError(PlogError):
    """The scan state machine was driven in an order it does not support."""
