"""Error taxonomy and the shared error channel.

Mutation refusals are reported, not raised: batch callers keep going past a
bad package and read the channel afterwards. Only a corrupt journal aborts
the load that hit it.
"""

import logging
from dataclasses import dataclass
from typing import Iterator, List, Optional

logger = logging.getLogger(__name__)


class StateError(Exception):
    """Base class for package state errors."""


class PermissionDenied(StateError):
    """Mutation attempted while the cache is read-only."""


class JournalParseError(StateError):
    """The on-disk journal is structurally corrupt."""


class JournalWriteError(StateError):
    """The journal could not be written or rotated."""


class InvalidTarget(StateError):
    """A version that is neither downloadable nor currently installed."""


class SelfRemovalRefused(StateError):
    """Attempt to remove the package providing this tool."""


class LockError(StateError):
    """The write lock could not be acquired or regained."""


class ConfigError(StateError):
    """Invalid policy file."""


# Severity levels, in increasing order
NOTICE = "notice"
WARNING = "warning"
ERROR = "error"


@dataclass
class Report:
    """One entry of the error channel."""
    level: str
    message: str
    error: Optional[StateError] = None


class ErrorChannel:
    """Collects refusals and problems so callers can inspect them later.

    Usage:
        errors = ErrorChannel()
        cache = StateCache(depcache, errors=errors)
        cache.mark_delete(pkg)
        if errors.pending_error():
            for report in errors:
                print(report.message)
        errors.discard()
    """

    def __init__(self):
        self.reports: List[Report] = []

    def report(self, error: StateError) -> Report:
        """Record an error condition without raising it."""
        entry = Report(level=ERROR, message=str(error), error=error)
        self.reports.append(entry)
        logger.error(entry.message)
        return entry

    def warning(self, message: str) -> Report:
        entry = Report(level=WARNING, message=message)
        self.reports.append(entry)
        logger.warning(message)
        return entry

    def notice(self, message: str) -> Report:
        entry = Report(level=NOTICE, message=message)
        self.reports.append(entry)
        logger.info(message)
        return entry

    def pending_error(self) -> bool:
        """True if at least one error (not warning/notice) is recorded."""
        return any(r.level == ERROR for r in self.reports)

    def errors_of(self, error_type: type) -> List[Report]:
        """All reports carrying an error of the given type."""
        return [r for r in self.reports
                if r.error is not None and isinstance(r.error, error_type)]

    def discard(self):
        """Forget everything recorded so far."""
        self.reports.clear()

    def __iter__(self) -> Iterator[Report]:
        return iter(self.reports)

    def __len__(self) -> int:
        return len(self.reports)
