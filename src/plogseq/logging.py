"""Structured logging configuration using structlog.

Call ``configure_logging()`` once at CLI startup to set up the processor
pipeline and bind a ``run_id`` to every log event emitted during that run.

Processor pipeline (applied in order to every log event):

  1. merge_contextvars   — pulls run_id (and any other bound vars) into the event
  2. add_log_level       — adds  level="info" / "warning" / …
  3. TimeStamper         — adds  timestamp="2026-10-19T02:41:55Z"
  4. JSONRenderer        — renders as a single JSON line  (format=json)
     ConsoleRenderer     — renders as coloured key=value  (format=text)

Typical usage:

    from plogseq.logging import configure_logging, get_logger

    run_id = configure_logging()         # call once, at CLI startup
    log = get_logger(__name__)
    log.info("segment opened", sequence=42, file="42.plog.1469088000")
"""

import logging as _stdlib
import sys
import uuid

import structlog

from plogseq.config import Settings, get_settings


def configure_logging(settings: Settings | None = None) -> str:
    """Configure structlog for this process and return the run_id.

    Calling again reconfigures the pipeline and binds a fresh run_id.

    Args:
        settings: Pre-loaded settings; loads from ``get_settings()`` if None.

    Returns:
        run_id — 8-character hex string present on every log event this run.
    """
    if settings is None:
        settings = get_settings()

    level_int = getattr(_stdlib, settings.logging.level, _stdlib.INFO)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.logging.format == "json"
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(level_int),
        context_class=dict,
        # stdout carries `follow` output; logs go to stderr.  Not cached so
        # that CLI test runners can swap sys.stderr per invocation.
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )

    run_id = uuid.uuid4().hex[:8]
    structlog.contextvars.bind_contextvars(run_id=run_id)

    return run_id


def get_logger(name: str = "plogseq") -> structlog.BoundLogger:
    """Return a structlog logger.

    Pass ``__name__`` to associate the logger with the calling module::

        log = get_logger(__name__)
        log.info("scanning", location="/u01/mine")
    """
    return structlog.get_logger(name)
