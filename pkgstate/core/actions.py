"""
Explaining pending changes.

find_pkg_state() classifies what will happen to a package, and
InterestingDeps decides which dependencies are worth showing to a user,
caching the answer per OR-group.
"""

import logging
from enum import Enum
from typing import Dict, List

from .depcache import Mode
from .extstate import RemoveReason
from .universe import CurrentState, DepType, Dependency, DependencyClause, Package
from .versions import compare_versions

logger = logging.getLogger(__name__)


class PkgActionState(Enum):
    """What will happen to a package, for display."""
    BROKEN = "broken"
    REMOVE = "remove"
    UNUSED_REMOVE = "unused_remove"
    AUTO_REMOVE = "auto_remove"
    INSTALL = "install"
    AUTO_INSTALL = "auto_install"
    REINSTALL = "reinstall"
    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"
    HOLD = "hold"
    AUTO_HOLD = "auto_hold"
    UNCONFIGURED = "unconfigured"
    UNCHANGED = "unchanged"


# States that "dpkg --configure" fixes
UNCONFIGURED_STATES = frozenset({
    CurrentState.UNPACKED, CurrentState.HALF_CONFIGURED,
    CurrentState.TRIGGERS_AWAITED, CurrentState.TRIGGERS_PENDING,
})


def find_pkg_state(cache, pkg: Package, ignore_broken: bool = False) -> PkgActionState:
    """Classify the pending action of a package.

    Args:
        cache: StateCache instance
        pkg: Package to classify
        ignore_broken: Report the action even if dependencies are broken
    """
    state = cache.depcache[pkg]
    est = cache.ext[pkg]
    cur = pkg.current_version
    cand = state.candidate

    if state.broken and not ignore_broken:
        return PkgActionState.BROKEN

    if state.mode == Mode.DELETE:
        if est.remove_reason == RemoveReason.MANUAL:
            return PkgActionState.REMOVE
        if est.remove_reason == RemoveReason.UNUSED:
            return PkgActionState.UNUSED_REMOVE
        return PkgActionState.AUTO_REMOVE

    if state.mode == Mode.INSTALL:
        if cur is not None:
            if state.reinstall:
                return PkgActionState.REINSTALL
            cmp = compare_versions(cand.ver_str, cur.ver_str) if cand is not None else 0
            if cmp < 0:
                return PkgActionState.DOWNGRADE
            if cmp > 0:
                return PkgActionState.UPGRADE
            return PkgActionState.INSTALL
        if state.auto:
            return PkgActionState.AUTO_INSTALL
        return PkgActionState.INSTALL

    # Kept back although a newer version is available
    if cur is not None and cand is not None and pkg.is_installed and \
            compare_versions(cand.ver_str, cur.ver_str) > 0:
        return PkgActionState.AUTO_HOLD if state.autokept else PkgActionState.HOLD

    if state.reinstall:
        return PkgActionState.REINSTALL
    if pkg.current_state in UNCONFIGURED_STATES:
        return PkgActionState.UNCONFIGURED
    return PkgActionState.UNCHANGED


# apt's relation operator classes
_OP_CLASS = {
    '<<': '<', '<=': '<=', '<': '<=',
    '>>': '>', '>=': '>=', '>': '>=',
    '=': '=', '!=': '!=',
}


def subsumes(d1: Dependency, d2: Dependency) -> bool:
    """True if anything satisfying d2 also satisfies d1."""
    if not d1.op:
        if d1.target is d2.target:
            return True
        if d2.op:
            return False
        return any(prv.owner.package is d2.target for prv in d1.target.provided_by)

    if d1.target is not d2.target or not d2.op:
        return False

    t1, t2 = _OP_CLASS[d1.op], _OP_CLASS[d2.op]
    cmp = compare_versions(d1.target_ver, d2.target_ver)
    if t1 == '<=':
        return t2 in ('<', '<=', '=') and cmp >= 0
    if t1 == '>=':
        return t2 in ('>', '>=', '=') and cmp <= 0
    if t1 == '<':
        return (t2 == '<' and cmp >= 0) or (t2 == '=' and cmp > 0)
    if t1 == '>':
        return (t2 == '>' and cmp <= 0) or (t2 == '=' and cmp < 0)
    return t2 == t1 and cmp == 0


def or_group_subsumes(c1: DependencyClause, c2: DependencyClause) -> bool:
    """Every alternative of c1 subsumes some alternative of c2."""
    return all(any(subsumes(i, j) for j in c2.alternatives) for i in c1.alternatives)


class InterestingDeps:
    """Per-clause cache of "is this dependency worth showing?".

    Interesting dependencies are the critical ones, plus Recommends
    when recommends are installed and: the recommending version is the
    current one and the recommendation is currently met, or the package
    is not installed, or the current version has no related
    recommendation (or has one that is currently met).
    """

    UNCACHED, INTERESTING, UNINTERESTING = range(3)

    def __init__(self, cache):
        self.cache = cache
        self._table: Dict[int, int] = {}

    def reset(self):
        self._table.clear()

    def is_interesting(self, dep: Dependency) -> bool:
        clause = dep.clause
        cached = self._table.get(clause.id, self.UNCACHED)
        if cached == self.UNCACHED:
            result = self._compute(clause)
            self._table[clause.id] = self.INTERESTING if result else self.UNINTERESTING
            return result
        return cached == self.INTERESTING

    def _satisfied_now(self, clause: DependencyClause) -> bool:
        for dep in clause.alternatives:
            target = dep.target
            if target.is_installed and dep.satisfied_by(target.current_version):
                return True
            for prv in target.provided_by:
                owner = prv.owner.package
                if owner.is_installed and prv.owner is owner.current_version \
                        and prv.satisfies(dep.op, dep.target_ver):
                    return True
        return False

    def _compute(self, clause: DependencyClause) -> bool:
        parver = clause.parent
        parpkg = parver.package
        currver = parpkg.current_version

        if not parver.downloadable and \
                (parver is not currver or parpkg.current_state == CurrentState.CONFIG_FILES):
            return False
        if clause.is_critical:
            return True
        if clause.dep_type != DepType.RECOMMENDS or not self.cache.policy.install_recommends:
            return False

        # Soft dependencies of the current version count while they are met
        if parver is currver:
            return self._satisfied_now(clause)
        if currver is None:
            return True

        related: List[DependencyClause] = [
            c for c in currver.clauses
            if c.dep_type == DepType.RECOMMENDS and
            (or_group_subsumes(c, clause) or or_group_subsumes(clause, c))
        ]
        if related:
            return self._satisfied_now(clause)
        return True
