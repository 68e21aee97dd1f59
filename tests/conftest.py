"""Shared pytest fixtures for the plogseq test suite.

plog_dir        — empty segment directory under tmp_path
make_plog       — write a segment file into plog_dir: make_plog(seq, ts, suffix=, size=)
sleeps          — recording stand-in for time.sleep, with an optional per-call hook
scan_settings   — small, fast ScanSettings (budget: 2 health checks x 3 polls)
"""

from collections.abc import Callable
from pathlib import Path

import pytest

from plogseq.config import ScanSettings
from plogseq.segment import CONTROL_HEADER_SIZE

# A real 10-digit segment timestamp (2016-07-21).  Tests derive others from it.
TS = 1_469_088_000


class SleepRecorder:
    """Callable replacement for ``time.sleep`` that records instead of blocking.

    Set ``on_sleep`` to run code (create files, set events) each time the
    code under test would have slept; it receives the 1-based call number.
    """

    def __init__(self) -> None:
        self.calls: list[float] = []
        self.on_sleep: Callable[[int], None] | None = None

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.on_sleep is not None:
            self.on_sleep(len(self.calls))


@pytest.fixture()
def plog_dir(tmp_path: Path) -> Path:
    d = tmp_path / "mine"
    d.mkdir()
    return d


@pytest.fixture()
def make_plog(plog_dir: Path) -> Callable[..., Path]:
    """Return a helper that writes ``<seq>.plog.<ts><suffix>`` into plog_dir.

    Files are written at the control-header size by default so the
    manager opens them without waiting; pass ``size=0`` for a file the
    producer has only just created.
    """

    def _make(
        sequence: int,
        timestamp: int = TS,
        *,
        suffix: str = "",
        size: int = CONTROL_HEADER_SIZE,
    ) -> Path:
        path = plog_dir / f"{sequence}.plog.{timestamp}{suffix}"
        path.write_bytes(b"\0" * size)
        return path

    return _make


@pytest.fixture()
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture()
def scan_settings() -> ScanSettings:
    return ScanSettings(
        scan_interval_count=2,
        scan_wait_time_ms=10,
        health_check_interval_count=3,
        scan_quit_interval_count=2,
    )
