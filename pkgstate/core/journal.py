"""
State journal reading and writing.

The journal is a sequence of RFC822-style records separated by blank
lines, one record per package that has at least one version:

    Package: foo
    Architecture: amd64
    Unseen: no
    State: 1
    Dselect-State: 1
    Remove-Reason: 0

Optional fields are left out entirely when they do not apply. Field names
are matched case-insensitively on read, unknown fields are kept in the
record and ignored by the loader.
"""

import logging
import os
from pathlib import Path
from typing import Iterable, List, Tuple, Union

from .errors import JournalParseError, JournalWriteError

logger = logging.getLogger(__name__)


class Record(dict):
    """One journal record: case-insensitive field lookup."""

    def __init__(self, line: int = 0):
        super().__init__()
        self.line = line

    def __setitem__(self, key, value):
        super().__setitem__(key.lower(), value)

    def __getitem__(self, key):
        return super().__getitem__(key.lower())

    def __contains__(self, key):
        return super().__contains__(key.lower())

    def get(self, key, default=None):
        return super().get(key.lower(), default)

    def get_int(self, key: str, default: int) -> int:
        value = self.get(key)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            raise JournalParseError(
                f"line {self.line}: field {key} is not a number: {value!r}") from None

    def get_flag(self, key: str) -> bool:
        value = self.get(key)
        if value is None:
            return False
        return value.strip().lower() in ('yes', 'true', '1')


def parse_journal(text: str) -> List[Record]:
    """Split journal text into records.

    Raises:
        JournalParseError: On a line that is not "Field: value", a
            continuation line with nothing to continue, or a record
            without a Package field
    """
    records: List[Record] = []
    current = None
    last_key = None

    for lineno, line in enumerate(text.splitlines(), 1):
        if not line.strip():
            if current is not None:
                records.append(current)
            current = None
            last_key = None
            continue

        if line[0] in ' \t':
            if current is None or last_key is None:
                raise JournalParseError(f"line {lineno}: continuation line outside a field")
            current[last_key] = current[last_key] + '\n' + line.strip()
            continue

        key, sep, value = line.partition(':')
        key = key.strip()
        if not sep or not key or ' ' in key:
            raise JournalParseError(f"line {lineno}: malformed field: {line!r}")

        if current is None:
            current = Record(line=lineno)
        current[key] = value.strip()
        last_key = key

    if current is not None:
        records.append(current)

    for record in records:
        if not record.get('Package'):
            raise JournalParseError(f"line {record.line}: record without a Package field")
    return records


def read_journal(path: Union[str, Path]) -> List[Record]:
    """Read and parse a journal file."""
    try:
        text = Path(path).read_text(encoding='utf-8')
    except (OSError, UnicodeDecodeError) as e:
        raise JournalParseError(f"Cannot read {path}: {e}") from e
    return parse_journal(text)


def format_record(fields: Iterable[Tuple[str, str]]) -> str:
    """Format one record; fields are written in the given order."""
    return ''.join(f"{key}: {value}\n" for key, value in fields)


def format_journal(records: Iterable[Iterable[Tuple[str, str]]]) -> str:
    return '\n'.join(format_record(r) for r in records)


def write_journal(path: Union[str, Path], text: str):
    """Write a journal file and flush it to disk.

    Raises:
        JournalWriteError: If anything goes wrong; a partially written
            file is removed
    """
    path = Path(path)
    try:
        with open(path, 'w', encoding='utf-8') as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
    except OSError as e:
        try:
            path.unlink()
        except OSError:
            pass
        raise JournalWriteError(f"Couldn't write state file {path}: {e}") from e


def replace_journal(path: Union[str, Path], text: str, new_suffix: str = '.new',
                    old_suffix: str = '.old'):
    """Atomically replace a journal, keeping the previous one as backup.

    The new content goes to <path>.new, the current file is hard-linked
    to <path>.old and <path>.new is renamed over <path>. If any step
    fails, <path> is left as it was.

    Raises:
        JournalWriteError: On failure
    """
    path = Path(path)
    new_path = path.with_name(path.name + new_suffix)
    old_path = path.with_name(path.name + old_suffix)

    write_journal(new_path, text)

    try:
        if old_path.exists() or old_path.is_symlink():
            old_path.unlink()
        if path.exists():
            os.link(path, old_path)
        os.rename(new_path, path)
    except OSError as e:
        try:
            new_path.unlink()
        except OSError:
            pass
        raise JournalWriteError(f"Couldn't replace {path} with {new_path}: {e}") from e

    logger.debug(f"Wrote state journal {path}")
