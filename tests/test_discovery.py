"""Tests for the stateless segment directory queries."""

import pytest
import structlog

from plogseq.discovery import NO_SEQUENCE, find_candidates, find_oldest_sequence
from plogseq.errors import ConfigurationError, NotFoundError

_TS = 1_469_088_000


# ---------------------------------------------------------------------------
# find_oldest_sequence
# ---------------------------------------------------------------------------


class TestFindOldestSequence:
    def test_empty_directory_returns_sentinel(self, plog_dir):
        assert find_oldest_sequence(plog_dir) == NO_SEQUENCE

    def test_returns_lowest_sequence(self, make_plog, plog_dir):
        for seq in (12, 10, 11):
            make_plog(seq)
        assert find_oldest_sequence(plog_dir) == 10

    def test_numeric_not_lexical_minimum(self, make_plog, plog_dir):
        make_plog(9)
        make_plog(10)
        assert find_oldest_sequence(plog_dir) == 9

    def test_unrelated_files_ignored(self, make_plog, plog_dir):
        (plog_dir / "README").write_text("mine output")
        (plog_dir / "mine.log").write_text("")
        make_plog(3)
        assert find_oldest_sequence(plog_dir) == 3

    def test_load_segments_count(self, make_plog, plog_dir):
        make_plog(5)
        make_plog(4, suffix="-000001-LOAD_SCOTT.EMP")
        assert find_oldest_sequence(plog_dir) == 4

    def test_malformed_prefix_is_logged_and_skipped(self, make_plog, plog_dir):
        (plog_dir / f"abc.plog.{_TS}").write_bytes(b"")
        make_plog(8)
        with structlog.testing.capture_logs() as logs:
            assert find_oldest_sequence(plog_dir) == 8
        warnings = [e for e in logs if e["log_level"] == "warning"]
        assert len(warnings) == 1
        assert warnings[0]["file"] == f"abc.plog.{_TS}"

    @pytest.mark.parametrize(
        "stray",
        ["0_1", "+3", "-1", " 4", "007", "\u0663", "1_000"],
    )
    def test_non_canonical_prefix_is_skipped(self, make_plog, plog_dir, stray):
        (plog_dir / f"{stray}.plog.{_TS}").write_bytes(b"")
        make_plog(5)
        with structlog.testing.capture_logs() as logs:
            assert find_oldest_sequence(plog_dir) == 5
        assert [e["file"] for e in logs if e["log_level"] == "warning"] == [
            f"{stray}.plog.{_TS}"
        ]

    @pytest.mark.parametrize("name", [f"2.PLOG.{_TS}", "2.plog.notatime", "2.plog.9999999999"])
    def test_unparseable_segment_names_are_skipped(self, make_plog, plog_dir, name):
        (plog_dir / name).write_bytes(b"")
        make_plog(5)
        assert find_oldest_sequence(plog_dir) == 5

    def test_only_malformed_returns_sentinel(self, plog_dir):
        (plog_dir / f"abc.plog.{_TS}").write_bytes(b"")
        assert find_oldest_sequence(plog_dir) == NO_SEQUENCE

    def test_directories_are_ignored(self, make_plog, plog_dir):
        (plog_dir / f"1.plog.{_TS}").mkdir()
        make_plog(2)
        assert find_oldest_sequence(plog_dir) == 2

    def test_missing_location_is_configuration_error(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Invalid location"):
            find_oldest_sequence(tmp_path / "nonexistent")


# ---------------------------------------------------------------------------
# find_candidates
# ---------------------------------------------------------------------------


class TestFindCandidates:
    def test_single_file(self, make_plog, plog_dir):
        make_plog(7)
        found = find_candidates(plog_dir, 7)
        assert [(d.sequence, d.timestamp) for d in found] == [(7, _TS)]

    def test_multi_part_sequence(self, make_plog, plog_dir):
        make_plog(7, _TS + 1)
        make_plog(7, _TS)
        found = find_candidates(plog_dir, 7)
        assert sorted(d.timestamp for d in found) == [_TS, _TS + 1]

    def test_only_requested_sequence(self, make_plog, plog_dir):
        for seq in (1, 11, 111, 2):
            make_plog(seq)
        found = find_candidates(plog_dir, 1)
        assert [d.sequence for d in found] == [1]

    def test_load_segments_excluded(self, make_plog, plog_dir):
        make_plog(7)
        make_plog(7, suffix="-000042-LOAD_SCOTT.EMP")
        found = find_candidates(plog_dir, 7)
        assert [d.file_name for d in found] == [f"7.plog.{_TS}"]

    def test_only_load_segment_is_not_found(self, make_plog, plog_dir):
        make_plog(7, suffix="-000042-LOAD_SCOTT.EMP")
        with pytest.raises(NotFoundError):
            find_candidates(plog_dir, 7)

    def test_invalid_name_is_logged_and_skipped(self, make_plog, plog_dir):
        (plog_dir / "7.plog.partial").write_bytes(b"")
        make_plog(7)
        with structlog.testing.capture_logs() as logs:
            found = find_candidates(plog_dir, 7)
        assert len(found) == 1
        assert any(e["log_level"] == "warning" for e in logs)

    def test_no_files_raises_not_found(self, make_plog, plog_dir):
        make_plog(6)
        with pytest.raises(NotFoundError, match="No file\\(s\\) found for sequence: 7"):
            find_candidates(plog_dir, 7)

    def test_not_found_is_a_file_not_found_error(self, plog_dir):
        with pytest.raises(FileNotFoundError):
            find_candidates(plog_dir, 1)

    def test_unreadable_location_is_distinct_from_not_found(self, tmp_path):
        with pytest.raises(ConfigurationError) as exc_info:
            find_candidates(tmp_path / "gone", 1)
        assert not isinstance(exc_info.value, NotFoundError)
