"""Tests for journal parsing and atomic replacement"""

import pytest

from pkgstate.core.errors import JournalParseError, JournalWriteError
from pkgstate.core.journal import (
    format_journal, parse_journal, read_journal, replace_journal, write_journal,
)


class TestParse:
    """Tests for parse_journal."""

    def test_records(self):
        records = parse_journal(
            "Package: a\nState: 1\n\n\nPackage: b\nUser-Tags: x y\n")
        assert [r['Package'] for r in records] == ["a", "b"]
        assert records[0].get_int('State', 0) == 1
        assert records[1]['User-Tags'] == "x y"

    def test_case_insensitive(self):
        record = parse_journal("package: a\nforbidver: 2.0\nUNSEEN: Yes\n")[0]
        assert record['Package'] == "a"
        assert record['ForbidVer'] == "2.0"
        assert record.get_flag('Unseen') is True
        assert record.get_flag('Reinstall') is False

    def test_continuation_line(self):
        record = parse_journal("Package: a\nNote: first\n second\n")[0]
        assert record['Note'] == "first\nsecond"

    def test_unknown_fields_are_kept(self):
        record = parse_journal("Package: a\nX-Future: 1\n")[0]
        assert record['X-Future'] == "1"

    @pytest.mark.parametrize("text", [
        "Package: a\nno colon here\n",
        " continuation first\n",
        "State: 1\n",
        "Package: a\nBad Key: 1\n",
    ])
    def test_malformed(self, text):
        with pytest.raises(JournalParseError):
            parse_journal(text)

    def test_bad_number(self):
        record = parse_journal("Package: a\nState: x\n")[0]
        with pytest.raises(JournalParseError, match="State"):
            record.get_int('State', 0)


class TestFiles:
    """Tests for reading and writing journal files."""

    def test_format(self):
        text = format_journal([[('Package', 'a'), ('State', '1')],
                               [('Package', 'b')]])
        assert text == "Package: a\nState: 1\n\nPackage: b\n"
        assert [r['Package'] for r in parse_journal(text)] == ["a", "b"]

    def test_read_missing(self, tmp_path):
        with pytest.raises(JournalParseError):
            read_journal(tmp_path / "missing")

    def test_read_undecodable(self, tmp_path):
        path = tmp_path / "pkgstates"
        path.write_bytes(b"Package: \xff\xfe\n")

        with pytest.raises(JournalParseError):
            read_journal(path)

    def test_write_failure(self, tmp_path):
        with pytest.raises(JournalWriteError):
            write_journal(tmp_path / "no-such-dir" / "pkgstates", "Package: a\n")

    def test_replace(self, tmp_path):
        path = tmp_path / "pkgstates"
        replace_journal(path, "Package: a\n")
        assert path.read_text() == "Package: a\n"
        assert not (tmp_path / "pkgstates.old").exists()

        replace_journal(path, "Package: b\n")
        assert path.read_text() == "Package: b\n"
        assert (tmp_path / "pkgstates.old").read_text() == "Package: a\n"
        assert not (tmp_path / "pkgstates.new").exists()
