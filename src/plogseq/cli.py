"""CLI root — entry point for all plogseq subcommands.

Entry point:
  plogseq

Command surface:
  plogseq follow             open segments in order as the producer writes them
  plogseq oldest             print the oldest sequence number on disk
  plogseq candidates SEQ     list the files making up one sequence number
  plogseq uid make SEQ TS    encode a segment UID
  plogseq uid split UID      decode a segment UID
  plogseq config show        print resolved configuration
"""

import signal
import threading
from typing import Optional

import typer

from plogseq import __version__
from plogseq.logging import get_logger

app = typer.Typer(
    name="plogseq",
    help="Sequence PLOG segment files for a change-data-capture pipeline.",
    no_args_is_help=True,
)

_log = get_logger(__name__)


# ---------------------------------------------------------------------------
# Global callback — runs before every subcommand
# ---------------------------------------------------------------------------


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"plogseq {__version__}")
        raise typer.Exit()


@app.callback()
def _main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=_version_callback,
        is_eager=True,
        help="Print version and exit.",
    ),
) -> None:
    """Sequence PLOG segment files for a change-data-capture pipeline."""
    from plogseq.logging import configure_logging

    configure_logging()


# ---------------------------------------------------------------------------
# follow
# ---------------------------------------------------------------------------


@app.command("follow")
def follow(
    start_at: Optional[int] = typer.Option(
        None,
        "--start-at",
        help="Resume at the segment with this UID.",
    ),
    start_after: Optional[int] = typer.Option(
        None,
        "--start-after",
        help="Resume at the segment following this UID.",
    ),
    limit: int = typer.Option(
        0,
        "--limit",
        help="Stop after this many segments.  0 = follow until stopped.",
    ),
    force_interrupt: bool = typer.Option(
        False,
        "--force-interrupt",
        help="Stop cleanly instead of failing when the producer goes quiet.",
    ),
) -> None:
    """Open segments in logical order as the producer writes them.

    Prints one tab-separated line per segment: sequence, timestamp, UID,
    file name, and a restart-boundary marker where one applies.  Without
    --start-at / --start-after, begins at the oldest segment on disk.
    Ctrl-C stops after the current poll.  Exits 1 if another process is
    already following the same PLOG location.
    """
    from plogseq.config import get_settings
    from plogseq.descriptor import timestamp_from_uid
    from plogseq.errors import (
        CancellationError,
        ConfigurationError,
        InvalidIdentifierError,
        NotFoundError,
        OfflineError,
    )
    from plogseq.lock import LockError, StreamLock
    from plogseq.manager import FileManager

    if start_at is not None and start_after is not None:
        typer.echo("Error: --start-at and --start-after are mutually exclusive", err=True)
        raise typer.Exit(2)

    settings = get_settings()

    try:
        manager = FileManager.from_settings(settings)
        if start_at is not None:
            manager.start_at(start_at)
        elif start_after is not None:
            manager.start_after(start_after)
    except (ConfigurationError, InvalidIdentifierError, NotFoundError) as exc:
        _log.error("cannot position PLOG scan", detail=str(exc))
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(2) from exc

    if force_interrupt:
        manager.set_force_interrupt()

    cancel = threading.Event()
    previous_handler = signal.getsignal(signal.SIGINT)
    opened = 0

    try:
        signal.signal(signal.SIGINT, lambda *_: cancel.set())
        settings.paths.state_dir.mkdir(parents=True, exist_ok=True)
        with StreamLock(settings.paths.state_dir, manager.location):
            while not limit or opened < limit:
                handle = manager.scan(cancel)
                opened += 1
                fields = [
                    str(handle.sequence_number),
                    str(timestamp_from_uid(handle.uid)),
                    str(handle.uid),
                    handle.file_name,
                ]
                if getattr(handle, "force_close_at_end", False):
                    fields.append("restart-boundary")
                typer.echo("\t".join(fields))

    except LockError as exc:
        _log.error("PLOG stream already being followed", detail=str(exc))
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(1) from exc

    except CancellationError as exc:
        _log.info("PLOG scanning stopped", reason=str(exc), opened=opened)

    except (OfflineError, ConfigurationError) as exc:
        _log.error("PLOG scanning failed", detail=str(exc), opened=opened)
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(2) from exc

    except OSError as exc:
        _log.error(
            "PLOG scanning failed on I/O",
            state_dir=str(settings.paths.state_dir),
            detail=str(exc),
        )
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(2) from exc

    finally:
        manager.close()
        if previous_handler is not None:
            signal.signal(signal.SIGINT, previous_handler)


# ---------------------------------------------------------------------------
# oldest / candidates
# ---------------------------------------------------------------------------


@app.command("oldest")
def oldest() -> None:
    """Print the oldest sequence number present in the PLOG location.

    This is where a cold start begins.  Exits 1 if no segment is present.
    """
    from plogseq.config import get_settings
    from plogseq.discovery import NO_SEQUENCE, find_oldest_sequence
    from plogseq.errors import ConfigurationError

    location = get_settings().paths.plog_location
    try:
        sequence = find_oldest_sequence(location)
    except ConfigurationError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(2) from exc

    if sequence == NO_SEQUENCE:
        typer.echo(f"No PLOGs found in {location}", err=True)
        raise typer.Exit(1)
    typer.echo(str(sequence))


@app.command("candidates")
def candidates(sequence: int = typer.Argument(..., help="Sequence number to list.")) -> None:
    """List the files of one sequence number in the order they are consumed.

    More than one line means the producer restarted during this sequence.
    Bulk-load segments are not listed.
    """
    from plogseq.config import get_settings
    from plogseq.discovery import find_candidates
    from plogseq.errors import ConfigurationError, NotFoundError

    location = get_settings().paths.plog_location
    try:
        found = sorted(find_candidates(location, sequence))
    except NotFoundError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(1) from exc
    except ConfigurationError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(2) from exc

    for descriptor in found:
        typer.echo(f"{descriptor.uid}\t{descriptor.file_name}")


# ---------------------------------------------------------------------------
# uid subcommands
# ---------------------------------------------------------------------------

_uid_app = typer.Typer(help="Encode and decode segment UIDs.")
app.add_typer(_uid_app, name="uid")


@_uid_app.command("make")
def uid_make(
    sequence: int = typer.Argument(..., help="Sequence number (>= 1)."),
    timestamp: int = typer.Argument(..., help="10-digit segment timestamp."),
) -> None:
    """Print the UID for a sequence number and timestamp."""
    from plogseq.descriptor import make_uid
    from plogseq.errors import InvalidIdentifierError

    if sequence < 1:
        typer.echo(f"Error: sequence must be >= 1, got {sequence}", err=True)
        raise typer.Exit(2)
    try:
        uid = make_uid(sequence, timestamp)
    except InvalidIdentifierError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(2) from exc
    typer.echo(str(uid))


@_uid_app.command("split")
def uid_split(uid: int = typer.Argument(..., help="Segment UID.")) -> None:
    """Print the sequence number and timestamp packed into a UID."""
    from plogseq.descriptor import split_uid
    from plogseq.errors import InvalidIdentifierError

    try:
        sequence, timestamp = split_uid(uid)
    except InvalidIdentifierError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(2) from exc
    typer.echo(f"sequence={sequence} timestamp={timestamp}")


# ---------------------------------------------------------------------------
# config subcommands
# ---------------------------------------------------------------------------

_config_app = typer.Typer(help="Inspect resolved configuration.")
app.add_typer(_config_app, name="config")


@_config_app.command("show")
def config_show() -> None:
    """Print the fully-resolved configuration and exit.

    Shows which config file was loaded and the final value of every setting
    after environment-variable overrides are applied.
    """
    from plogseq.config import _config_file, get_settings

    settings = get_settings()

    typer.echo(f"\n  config : {_config_file()}\n")

    for section_name, section in settings.model_dump().items():
        typer.echo(f"  [{section_name}]")
        width = max(len(k) for k in section)
        for key, val in section.items():
            typer.echo(f"  {key.ljust(width)} = {val}")
        typer.echo()
