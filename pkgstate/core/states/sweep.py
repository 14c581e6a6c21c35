"""
Orphan reclamation, run once when the outermost action group closes.

    garbage + installed, not yet removed   -> remove, reason "unused"
    garbage, nothing on the system         -> cancel, normalize selection
    not garbage, removed as "unused"       -> reinstatement candidate
        conflicts with the future state    -> blocked
        needs a blocked package            -> blocked (transitively)
        needed by something that stays    -> reinstated (kept)
"""

import logging
from typing import List, Set

from ..depcache import Mode
from ..extstate import RemoveReason, SelectionState
from ..universe import CurrentState, Package, REQUIRING_DEP_TYPES, Version
from ..versions import check_dep

logger = logging.getLogger(__name__)


def _by_id(packages: Set[Package]) -> List[Package]:
    return sorted(packages, key=lambda p: p.id)


class SweepMixin:
    """Mixin reconciling garbage collection with removal provenance.

    Requires:
        - self.depcache: DepCache instance
        - self.ext: ExtendedStateTable instance
        - self.policy: Policy instance
        - self.is_conflicted(): conflict oracle (ConflictsMixin)
        - self._refuse_self_removal(): self-protection (MarkingMixin)
    """

    def sweep(self):
        """Remove unused packages and reinstate the ones still needed."""
        if not self.policy.delete_unused:
            return

        purge_unused = self.policy.purge_unused
        reinstated: Set[Package] = set()
        blocked: Set[Package] = set()

        # Flags stay as computed before the sweep until the group closes
        with self.depcache.group():
            for pkg in self.depcache:
                state = self.depcache[pkg]
                est = self.ext[pkg]

                if state.garbage:
                    if pkg.current_version is not None and \
                            pkg.current_state != CurrentState.CONFIG_FILES:
                        # Packages already on their way out keep their reason
                        if state.mode != Mode.DELETE and not self._refuse_self_removal(pkg):
                            logger.debug(f"sweep: removing {pkg.full_name}: it is unused")
                            self.depcache.mark_delete(pkg, purge_unused)
                            est.selection_state = (SelectionState.PURGE if purge_unused
                                                   else SelectionState.DEINSTALL)
                            est.remove_reason = RemoveReason.UNUSED
                    else:
                        if pkg.current_version is None:
                            est.selection_state = (SelectionState.PURGE if state.purge
                                                   else SelectionState.DEINSTALL)
                        else:
                            est.selection_state = SelectionState.INSTALL
                        if state.mode != Mode.KEEP:
                            logger.debug(f"sweep: cancelling the installation of "
                                         f"{pkg.full_name}: it is unused")
                        self.depcache.mark_keep(pkg, from_user=False)

                elif state.mode == Mode.DELETE and est.remove_reason == RemoveReason.UNUSED:
                    conflict = self.is_conflicted(pkg.current_version)
                    if conflict is not None:
                        logger.debug(f"sweep: not reinstating {pkg.full_name} due to the "
                                     f"conflict between {conflict.parent_package.full_name} "
                                     f"and {conflict.target.full_name}")
                        blocked.add(pkg)
                    else:
                        logger.debug(f"sweep: provisionally reinstating {pkg.full_name}")
                        reinstated.add(pkg)

            for pkg in _by_id(blocked):
                self._remove_reverse_current_versions(reinstated, pkg.current_version)

            not_orphaned: Set[Package] = set()
            for pkg in _by_id(reinstated):
                self._find_not_orphaned(pkg, reinstated, not_orphaned)

            for pkg in _by_id(not_orphaned):
                logger.info(f"sweep: reinstating {pkg.full_name}")
                self.depcache.mark_keep(pkg, from_user=False)

    def _remove_reverse_current_versions(self, reinstated: Set[Package], bad_ver: Version):
        """Drop candidates whose current version needs a blocked version.

        Everything in reinstated is assumed to stay at its current version.
        """
        if bad_ver is None:
            return

        work = [bad_ver]
        while work:
            ver = work.pop()
            bad_pkg = ver.package

            # Direct reverse dependencies, then through provided names
            edges = [(dep, ver.ver_str, None) for dep in bad_pkg.rev_depends]
            for prv in ver.provides:
                edges.extend((dep, prv.version, prv) for dep in prv.target.rev_depends)

            for dep, provided, prv in edges:
                parent = dep.parent_package
                if parent is bad_pkg or parent not in reinstated:
                    continue
                if dep.dep_type not in REQUIRING_DEP_TYPES or \
                        dep.parent is not parent.current_version:
                    continue
                matches = prv.satisfies(dep.op, dep.target_ver) if prv is not None \
                    else check_dep(provided, dep.op, dep.target_ver)
                if not matches:
                    continue

                via = f" via the virtual package {prv.target.name}" if prv else ""
                logger.debug(f"Not reinstating {parent.full_name} due to its dependency "
                             f"on {bad_pkg.full_name} {ver.ver_str}{via}")
                reinstated.discard(parent)
                work.append(dep.parent)

    def _stays_installed(self, pkg: Package) -> bool:
        state = self.depcache[pkg]
        return state.mode == Mode.INSTALL or (pkg.is_installed and state.mode != Mode.DELETE)

    def _find_not_orphaned(self, candidate: Package, reinstated: Set[Package],
                           not_orphaned: Set[Package]):
        """Trace from a candidate if something that stays requires it."""
        if not candidate.is_installed:
            logger.warning(f"Assuming {candidate.full_name} is orphaned, "
                           f"since it is not currently installed")
            return

        cur = candidate.current_version
        needed = False
        for dep in candidate.rev_depends:
            parent = dep.parent_package
            if parent is candidate or dep.dep_type not in REQUIRING_DEP_TYPES:
                continue
            if self._stays_installed(parent) and \
                    check_dep(cur.ver_str, dep.op, dep.target_ver):
                needed = True
                break

        if not needed:
            for prv in cur.provides:
                for dep in prv.target.rev_depends:
                    parent = dep.parent_package
                    if parent is candidate or dep.dep_type not in REQUIRING_DEP_TYPES:
                        continue
                    if self._stays_installed(parent) and \
                            prv.satisfies(dep.op, dep.target_ver):
                        needed = True
                        break
                if needed:
                    break

        if needed:
            self._trace_not_orphaned(candidate, reinstated, not_orphaned)

    def _trace_not_orphaned(self, start: Package, reinstated: Set[Package],
                            not_orphaned: Set[Package]):
        """Add start and the reinstatement candidates it needs, transitively.

        Only candidates are followed, so the wrong branch of an OR-group
        is never pulled back in.
        """
        work = [start]
        while work:
            pkg = work.pop()
            if pkg in not_orphaned:
                continue
            if not pkg.is_installed:
                logger.warning(f"Assuming {pkg.full_name} is orphaned, "
                               f"since it is not currently installed")
                continue
            if pkg not in reinstated:
                continue

            logger.debug(f"{pkg.full_name} is not an orphan")
            not_orphaned.add(pkg)

            for dep in pkg.current_version.depends:
                if not self.depcache.is_important_dep(dep):
                    continue
                target = dep.target
                if target.is_installed and \
                        check_dep(target.current_version.ver_str, dep.op, dep.target_ver):
                    work.append(target)
                for prv in target.provided_by:
                    if prv.satisfies(dep.op, dep.target_ver):
                        work.append(prv.owner.package)
