"""Version comparison backed by libsolv.

Versions are compared by loading them as solvables into a private scratch
pool and using libsolv's EVR comparison. The pool uses Debian ordering when
the libsolv build supports it and falls back to RPM ordering otherwise.
The two agree on plain numeric versions, epochs and tildes, but not on how
letters sort against digits: "1.a" is newer than "1.1" for dpkg and older
for RPM.
"""

import logging
from typing import Dict, Optional

import solv

logger = logging.getLogger(__name__)

# Relation operators accepted in dependencies. The single-character forms
# are the obsolete Debian spellings of <= and >=.
OPERATORS = ('<<', '<=', '=', '>=', '>>', '!=', '<', '>')

_LEGACY_OPS = {'<': '<=', '>': '>='}


class VersionComparator:
    """Compare version strings through a scratch libsolv pool."""

    def __init__(self):
        self.pool = solv.Pool()
        self.debian = self.pool.setdisttype(solv.Pool.DISTTYPE_DEB) >= 0
        if not self.debian:
            logger.debug("libsolv built without Debian support, using RPM ordering")
            self.pool.setdisttype(solv.Pool.DISTTYPE_RPM)
        self.repo = self.pool.add_repo("@versions")
        self._solvables: Dict[str, "solv.XSolvable"] = {}

    def _solvable(self, version: str):
        s = self._solvables.get(version)
        if s is None:
            s = self.repo.add_solvable()
            s.name = "version"
            s.evr = version
            self._solvables[version] = s
        return s

    def compare(self, a: str, b: str) -> int:
        """Return <0, 0 or >0 as a sorts before, equal to or after b."""
        if a == b:
            return 0
        return self._solvable(a).evrcmp(self._solvable(b))

    def check_dep(self, version: Optional[str], op: Optional[str],
                  target: Optional[str]) -> bool:
        """Check whether version satisfies "op target".

        An unversioned relation (no operator) is satisfied by any version,
        a missing version satisfies nothing that is versioned.
        """
        if not op:
            return True
        if version is None or target is None:
            return False

        op = _LEGACY_OPS.get(op, op)
        cmp = self.compare(version, target)
        if op == '<<':
            return cmp < 0
        if op == '<=':
            return cmp <= 0
        if op == '=':
            return cmp == 0
        if op == '>=':
            return cmp >= 0
        if op == '>>':
            return cmp > 0
        if op == '!=':
            return cmp != 0
        raise ValueError(f"Unknown relation operator: {op}")


_comparator: Optional[VersionComparator] = None


def get_comparator() -> VersionComparator:
    """Shared comparator (one scratch pool per process)."""
    global _comparator
    if _comparator is None:
        _comparator = VersionComparator()
    return _comparator


def compare_versions(a: str, b: str) -> int:
    return get_comparator().compare(a, b)


def check_dep(version: Optional[str], op: Optional[str], target: Optional[str]) -> bool:
    return get_comparator().check_dep(version, op, target)
