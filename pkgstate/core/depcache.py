"""
Reference dependency cache (the feasibility engine).

Holds one BaseState per package and knows how to mark packages for
install/delete/keep while keeping track of broken dependencies and of
packages nothing needs anymore (mark-and-sweep garbage).

It deliberately has no notion of why a change was made: intent,
provenance, persistence and undo live in StateCache, which drives this
class through its primitives.

    StateCache (intent, journal, undo, sweep)
         |
         v
    DepCache (mode/auto/purge/candidate, broken, garbage)
         |
         v
    Universe (packages, versions, dependency clauses)
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Iterator, List, Optional

from .config import Policy
from .universe import (
    CurrentState, DepType, Dependency, Package, Priority, REQUIRING_DEP_TYPES,
    Universe, Version,
)
from .versions import compare_versions

logger = logging.getLogger(__name__)

# Recursion limit for auto-installation of dependencies
MAX_AUTOINST_DEPTH = 100


class Mode(Enum):
    """What will happen to a package."""
    KEEP = "keep"
    INSTALL = "install"
    DELETE = "delete"


@dataclass
class BaseState:
    """Per-package state owned by the dependency cache."""
    mode: Mode = Mode.KEEP
    auto: bool = False
    purge: bool = False
    reinstall: bool = False
    # Kept back because an install was refused (not by the user)
    autokept: bool = False
    candidate: Optional[Version] = None
    broken: bool = False
    garbage: bool = False
    marked: bool = False

    def copy(self) -> "BaseState":
        return replace(self)


# Hook deciding whether a package may be marked for install:
# (package, auto_inst, depth, from_user) -> bool
InstallOkHook = Callable[[Package, bool, int, bool], bool]


class DepCache:
    """In-memory feasibility engine over a Universe.

    Usage:
        cache = DepCache(universe, Policy())
        with cache.group():
            cache.mark_install(pkg)
            cache.mark_delete(other)
        # mark-and-sweep runs when the outermost group closes
        if cache[other].garbage: ...
    """

    def __init__(self, universe: Universe, policy: Optional[Policy] = None):
        self.universe = universe
        self.policy = policy or Policy()
        self.states: List[BaseState] = []
        self.install_ok_hook: Optional[InstallOkHook] = None
        self._group_level = 0
        self._keep_unused = self.policy.keep_unused_matcher()
        self.reset()

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    def reset(self):
        """Rebuild the state table from the universe."""
        self.states = [BaseState(candidate=self.policy_candidate(pkg))
                       for pkg in self.universe]
        self.update()

    def __getitem__(self, pkg: Package) -> BaseState:
        return self.states[pkg.id]

    def __iter__(self) -> Iterator[Package]:
        return iter(self.universe)

    def policy_candidate(self, pkg: Package) -> Optional[Version]:
        """Highest downloadable version, else the current version."""
        best = None
        for ver in pkg.versions:
            if not ver.downloadable:
                continue
            if best is None or compare_versions(ver.ver_str, best.ver_str) > 0:
                best = ver
        if best is None:
            return pkg.current_version
        return best

    def candidate(self, pkg: Package) -> Optional[Version]:
        return self.states[pkg.id].candidate

    def install_version(self, pkg: Package) -> Optional[Version]:
        """The version the package will have once changes are applied."""
        state = self.states[pkg.id]
        if state.mode == Mode.DELETE:
            return None
        if state.mode == Mode.INSTALL:
            return state.candidate
        return pkg.current_version if pkg.is_installed else None

    def is_upgradable(self, pkg: Package) -> bool:
        cand = self.states[pkg.id].candidate
        return (pkg.current_version is not None and cand is not None
                and cand is not pkg.current_version)

    @property
    def broken_count(self) -> int:
        return sum(1 for s in self.states if s.broken)

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    @contextmanager
    def group(self):
        """Defer mark-and-sweep until the outermost group closes."""
        self._group_level += 1
        try:
            yield self
        finally:
            self._group_level -= 1
            if self._group_level == 0:
                self.update()

    def _changed(self):
        if self._group_level == 0:
            self.update()

    # ------------------------------------------------------------------
    # Primitives
    # ------------------------------------------------------------------

    def mark_install(self, pkg: Package, auto_inst: bool = True,
                     from_user: bool = True, depth: int = 0) -> bool:
        """Mark a package for installation of its candidate version.

        Args:
            pkg: Package to install
            auto_inst: Also install unsatisfied dependencies
            from_user: The request comes from the user, not a dependency
            depth: Auto-installation recursion depth

        Returns:
            True if the package ends up installed (or kept at its candidate)
        """
        state = self.states[pkg.id]
        if pkg.is_virtual or state.candidate is None:
            return False
        if depth > MAX_AUTOINST_DEPTH:
            logger.warning(f"Giving up auto-installing {pkg.full_name}: too deep")
            return False

        if self.install_ok_hook is not None and \
                not self.install_ok_hook(pkg, auto_inst, depth, from_user):
            if not from_user:
                state.autokept = True
            return False

        state.autokept = False
        state.purge = False
        if state.candidate is pkg.current_version and pkg.is_installed:
            state.mode = Mode.KEEP
        else:
            if state.mode != Mode.INSTALL and not pkg.is_installed:
                # Newly installed dependencies are automatic
                state.auto = not from_user
            state.mode = Mode.INSTALL

        if auto_inst and state.mode == Mode.INSTALL:
            self._install_dependencies(state.candidate, depth)

        self._changed()
        return True

    def _install_dependencies(self, ver: Version, depth: int):
        types = set(REQUIRING_DEP_TYPES)
        if self.policy.install_recommends:
            types.add(DepType.RECOMMENDS)

        for clause in ver.clauses:
            if clause.dep_type not in types or self.clause_satisfied(clause.alternatives):
                continue
            for dep in clause.alternatives:
                if self._install_for(dep, depth):
                    break
            else:
                logger.debug(f"Cannot satisfy {clause} of {ver}")

    def _install_for(self, dep: Dependency, depth: int) -> bool:
        target = dep.target
        cand = self.states[target.id].candidate
        if not target.is_virtual and dep.satisfied_by(cand):
            return self.mark_install(target, True, False, depth + 1)
        for prv in target.provided_by:
            owner = prv.owner.package
            if prv.owner is self.states[owner.id].candidate and \
                    prv.satisfies(dep.op, dep.target_ver):
                if self.mark_install(owner, True, False, depth + 1):
                    return True
        return False

    def mark_delete(self, pkg: Package, purge: bool = False):
        """Mark a package for removal.

        A package with nothing on the system (no current version, or only
        config files when not purging) is simply kept.
        """
        state = self.states[pkg.id]
        state.reinstall = False
        if pkg.is_installed:
            state.mode = Mode.DELETE
            state.purge = purge
        elif purge and pkg.current_state == CurrentState.CONFIG_FILES:
            state.mode = Mode.DELETE
            state.purge = True
        else:
            state.mode = Mode.KEEP
            state.purge = purge
        self._changed()

    def mark_keep(self, pkg: Package, from_user: bool = True):
        """Cancel any pending change of a package.

        The purge flag is only cleared for installed packages: for one that
        is not installed it records whether its config files should go too.
        """
        state = self.states[pkg.id]
        state.mode = Mode.KEEP
        if pkg.is_installed:
            state.purge = False
        state.autokept = not from_user
        self._changed()

    def set_reinstall(self, pkg: Package, reinstall: bool):
        state = self.states[pkg.id]
        if pkg.current_version is None:
            reinstall = False
        state.reinstall = reinstall
        self._changed()

    def set_purge(self, pkg: Package, purge: bool):
        self.states[pkg.id].purge = purge

    def mark_auto(self, pkg: Package, auto: bool):
        self.states[pkg.id].auto = auto

    def set_candidate_version(self, ver: Version):
        self.states[ver.package.id].candidate = ver
        self._changed()

    # ------------------------------------------------------------------
    # Dependency evaluation
    # ------------------------------------------------------------------

    def dep_satisfied(self, dep: Dependency) -> bool:
        """True if the dependency target is met by the future state."""
        if dep.satisfied_by(self.install_version(dep.target)):
            return True
        for prv in dep.target.provided_by:
            if prv.owner is self.install_version(prv.owner.package) and \
                    prv.satisfies(dep.op, dep.target_ver):
                return True
        return False

    def clause_satisfied(self, alternatives: List[Dependency]) -> bool:
        return any(self.dep_satisfied(dep) for dep in alternatives)

    def _conflict_hits(self, dep: Dependency) -> bool:
        owner = dep.parent.package
        target = dep.target
        if target is not owner and dep.satisfied_by(self.install_version(target)):
            return True
        for prv in target.provided_by:
            prv_pkg = prv.owner.package
            if prv_pkg is owner:
                continue
            if prv.owner is self.install_version(prv_pkg) and \
                    prv.satisfies(dep.op, dep.target_ver):
                return True
        return False

    def is_broken(self, pkg: Package) -> bool:
        ver = self.install_version(pkg)
        if ver is None:
            return False
        for clause in ver.clauses:
            if clause.dep_type in REQUIRING_DEP_TYPES:
                if not self.clause_satisfied(clause.alternatives):
                    return True
            elif clause.dep_type.is_negative:
                if any(self._conflict_hits(dep) for dep in clause.alternatives):
                    return True
        return False

    def is_important_dep(self, dep: Dependency) -> bool:
        """Dependencies followed by mark-and-sweep."""
        if dep.dep_type in REQUIRING_DEP_TYPES:
            return True
        if dep.dep_type == DepType.RECOMMENDS:
            return self.policy.follows_recommends
        if dep.dep_type == DepType.SUGGESTS:
            return self.policy.follows_suggests
        return False

    # ------------------------------------------------------------------
    # Mark and sweep
    # ------------------------------------------------------------------

    def _is_root(self, pkg: Package) -> bool:
        state = self.states[pkg.id]
        if not state.auto or pkg.essential or pkg.important:
            return True
        ver = self.install_version(pkg)
        if ver is not None and ver.priority == Priority.REQUIRED:
            return True
        return bool(self._keep_unused and self._keep_unused.match(pkg.name))

    def mark_and_sweep(self):
        """Recompute the marked and garbage flags of every package.

        Roots are the packages that stay or get installed and are manual,
        essential, important, required, or protected by the keep-unused
        pattern. A package is only marked through the version it will
        have, or through its current version when it is being removed.
        """
        for state in self.states:
            state.marked = False

        work = []
        for pkg in self.universe:
            ver = self.install_version(pkg)
            if ver is not None and self._is_root(pkg):
                work.append((pkg, ver))

        while work:
            pkg, ver = work.pop()
            state = self.states[pkg.id]
            if state.marked:
                continue
            inst = self.install_version(pkg)
            if not (ver is inst or (inst is None and ver is pkg.current_version)):
                continue
            state.marked = True

            for dep in ver.depends:
                if not self.is_important_dep(dep):
                    continue
                target = dep.target
                for tver in target.versions:
                    if dep.satisfied_by(tver):
                        work.append((target, tver))
                for prv in target.provided_by:
                    if prv.satisfies(dep.op, dep.target_ver):
                        work.append((prv.owner.package, prv.owner))

        for pkg in self.universe:
            state = self.states[pkg.id]
            state.garbage = not state.marked and (
                pkg.is_installed or state.mode == Mode.INSTALL)

    def update(self):
        """Recompute garbage and broken flags."""
        self.mark_and_sweep()
        for pkg in self.universe:
            self.states[pkg.id].broken = self.is_broken(pkg)
