"""
Mutation operations.

Every public operation follows the same pattern: read-only guard, then
an action group (so the outermost commit sweeps and records undo), then
the internal_* worker that updates the dependency cache and the
extended state together.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Set

from ..depcache import Mode
from ..errors import InvalidTarget, SelfRemovalRefused
from ..extstate import RemoveReason, SelectionState
from ..undo import RestoreState, RevertCandidateVersion, RevertForgetNew, UndoGroup
from ..universe import CurrentState, Package, Version

logger = logging.getLogger(__name__)


@dataclass
class Choice:
    """One decision of a resolver proposal.

    version None means remove the package; the current version means
    keep it; any other version means install that version.
    """
    package: Package
    version: Optional[Version]
    auto: bool = True


class MarkingMixin:
    """Mixin providing install/delete/keep and related mutations.

    Requires:
        - self.depcache: DepCache instance
        - self.ext: ExtendedStateTable instance
        - self.policy: Policy instance
        - self.errors: ErrorChannel instance
        - self.action_group(), self._check_writable() (TransactionMixin)
        - self._delete_unused_dependencies() (CascadeMixin)
    """

    # ------------------------------------------------------------------
    # Install
    # ------------------------------------------------------------------

    def _set_to_manual(self, pkg: Package) -> bool:
        """True if touching the package should make it manual.

        That is the case for packages not yet on the system and not
        already being installed, and for packages being removed as unused.
        """
        state = self.depcache[pkg]
        if pkg.current_version is None:
            return state.mode != Mode.INSTALL
        return (state.mode == Mode.DELETE and
                self.ext[pkg].remove_reason == RemoveReason.UNUSED)

    def mark_install(self, pkg: Package, auto_inst: bool = True,
                     reinstall: bool = False, undo: Optional[UndoGroup] = None):
        """Install (or reinstall) a package.

        Args:
            pkg: Package to install
            auto_inst: Also install its missing dependencies
            reinstall: Reinstall the current version instead
            undo: Undo group receiving restoring records
        """
        if not self._check_writable():
            return
        with self.action_group(undo):
            self._internal_mark_install(pkg, auto_inst, reinstall)

    def _internal_mark_install(self, pkg: Package, auto_inst: bool, reinstall: bool):
        self.dirty = True
        state = self.depcache[pkg]

        # The cache fiddles with the auto flag, restore it afterwards
        final_auto = state.auto and not self._set_to_manual(pkg)

        if not reinstall:
            self.depcache.mark_install(pkg, auto_inst)
        else:
            self.depcache.mark_keep(pkg)
        self.depcache.set_reinstall(pkg, reinstall)
        self.depcache.mark_auto(pkg, final_auto)

        est = self.ext[pkg]
        est.selection_state = SelectionState.INSTALL
        est.reinstall = reinstall
        est.forbidver = ""
        est.previously_auto_package = final_auto

    def install_ok(self, pkg: Package, auto_inst: bool, depth: int,
                   from_user: bool) -> bool:
        """Refuse to pull in held packages or forbidden versions."""
        if depth == 0:
            return True

        cand = self.depcache.candidate(pkg)
        if cand is None:
            logger.warning(f"{pkg.full_name} has no candidate version, "
                           f"unsure whether it should be installed")
            return True

        est = self.ext[pkg]
        if est.selection_state == SelectionState.HOLD and cand is not pkg.current_version:
            logger.info(f"Refusing to install version {cand.ver_str} of the held "
                        f"package {pkg.full_name}")
            return False
        if est.forbidver == cand.ver_str:
            logger.info(f"Refusing to install the forbidden version {cand.ver_str} "
                        f"of {pkg.full_name}")
            return False
        return True

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def _refuse_self_removal(self, pkg: Package) -> bool:
        # Purging leftovers of an already removed copy is fine
        if pkg.is_installed and pkg.name == self.policy.self_package:
            self.errors.report(SelfRemovalRefused(
                f"Cannot remove {pkg.name} from within {pkg.name}"))
            return True
        return False

    def mark_delete(self, pkg: Package, purge: bool = False,
                    unused_delete: bool = False, undo: Optional[UndoGroup] = None):
        """Remove a package, and its dependencies nothing needs anymore.

        Args:
            pkg: Package to remove
            purge: Also remove configuration files
            unused_delete: The package is removed because it is unused
            undo: Undo group receiving restoring records
        """
        if self._refuse_self_removal(pkg):
            return
        if not self._check_writable():
            return
        with self.action_group(undo):
            self._internal_mark_delete(pkg, purge, unused_delete)

    def _internal_mark_delete(self, pkg: Package, purge: bool, unused_delete: bool,
                              visited: Optional[Set[int]] = None, cascade: bool = True):
        if self._refuse_self_removal(pkg):
            return

        if unused_delete and self.policy.purge_unused:
            purge = True

        self.dirty = True
        previously_to_delete = self.depcache[pkg].mode == Mode.DELETE

        self.depcache.mark_delete(pkg, purge)
        self.depcache.set_reinstall(pkg, False)

        est = self.ext[pkg]
        est.selection_state = SelectionState.PURGE if purge else SelectionState.DEINSTALL
        est.reinstall = False
        if not previously_to_delete:
            est.remove_reason = RemoveReason.UNUSED if unused_delete else RemoveReason.MANUAL

        if cascade:
            self._delete_unused_dependencies(pkg, visited if visited is not None else set())

    # ------------------------------------------------------------------
    # Keep
    # ------------------------------------------------------------------

    def mark_keep(self, pkg: Package, automatic: bool = False, hold: bool = False,
                  undo: Optional[UndoGroup] = None):
        """Cancel pending changes, optionally holding the package.

        Args:
            pkg: Package to keep
            automatic: The keep is not a user request
            hold: Put the package on hold
            undo: Undo group receiving restoring records
        """
        if not self._check_writable():
            return
        with self.action_group(undo):
            self._internal_mark_keep(pkg, automatic, hold)

    def _internal_mark_keep(self, pkg: Package, automatic: bool, hold: bool):
        self.dirty = True
        state = self.depcache[pkg]
        est = self.ext[pkg]

        # Keeping a package that was being garbage collected makes it manual
        if state.mode == Mode.DELETE and pkg.current_version is not None \
                and est.remove_reason == RemoveReason.UNUSED:
            self.depcache.mark_auto(pkg, False)

        policy_cand = self.depcache.policy_candidate(pkg)
        if policy_cand is not None:
            self._internal_set_candidate_version(policy_cand)

        self.depcache.mark_keep(pkg, from_user=not automatic)
        self.depcache.set_reinstall(pkg, False)
        est.reinstall = False
        est.forbidver = ""

        # Re-applied explicitly, the cache does not always preserve it
        self.depcache.mark_auto(pkg, automatic)

        if pkg.current_version is None:
            est.selection_state = (SelectionState.PURGE if state.purge
                                   else SelectionState.DEINSTALL)
        elif hold:
            est.selection_state = SelectionState.HOLD
        else:
            est.selection_state = SelectionState.INSTALL

    # ------------------------------------------------------------------
    # Candidate versions
    # ------------------------------------------------------------------

    def _candidate_allowed(self, ver: Version) -> bool:
        pkg = ver.package
        return ver.downloadable or (ver is pkg.current_version and
                                    pkg.current_state != CurrentState.CONFIG_FILES)

    def set_candidate_version(self, ver: Version, undo: Optional[UndoGroup] = None) -> bool:
        """Pin the version a package will be installed at.

        A version that is neither downloadable nor the current version of
        a package still on the system is refused and reported.

        Returns:
            True if the candidate was changed
        """
        if not self._check_writable():
            return False

        if not self._candidate_allowed(ver):
            self.errors.report(InvalidTarget(
                f"{ver} is neither downloadable nor installed"))
            return False

        prev = self.depcache.candidate(ver.package)
        with self.action_group(undo):
            self._internal_set_candidate_version(ver)
        if undo is not None:
            undo.add(RevertCandidateVersion(package=ver.package, version=prev))
        return True

    def _internal_set_candidate_version(self, ver: Version) -> bool:
        self.dirty = True
        if not self._candidate_allowed(ver):
            return False

        pkg = ver.package
        if self._set_to_manual(pkg):
            self.depcache.mark_auto(pkg, False)

        est = self.ext[pkg]
        est.candver = "" if ver is self.depcache.policy_candidate(pkg) else ver.ver_str
        est.selection_state = SelectionState.INSTALL
        self.depcache.set_candidate_version(ver)
        return True

    def forbid_upgrade(self, pkg: Package, verstr: str, undo: Optional[UndoGroup] = None):
        """Never upgrade the package to the given version.

        If that version is the candidate about to be installed, the
        package is kept instead.
        """
        if not self._check_writable():
            return

        est = self.ext[pkg]
        if verstr == est.forbidver:
            return

        with self.action_group(undo):
            self.dirty = True
            est.forbidver = verstr
            cand = self.depcache.candidate(pkg)
            if cand is not None and cand.ver_str == verstr and \
                    self.depcache[pkg].mode == Mode.INSTALL:
                self.depcache.mark_keep(pkg)

    def mark_auto_installed(self, pkg: Package, auto: bool,
                            undo: Optional[UndoGroup] = None):
        """Set the automatically-installed flag; nothing happens if unchanged."""
        if not self._check_writable():
            return
        if self.depcache[pkg].auto == auto:
            return
        with self.action_group(undo):
            self.dirty = True
            self.depcache.mark_auto(pkg, auto)
            self.ext[pkg].previously_auto_package = auto

    # ------------------------------------------------------------------
    # Bulk operations
    # ------------------------------------------------------------------

    def mark_single_install(self, pkg: Package, undo: Optional[UndoGroup] = None):
        """Cancel every pending change, then install one package."""
        if not self._check_writable():
            return
        with self.action_group(undo):
            self.dirty = True
            for other in self.depcache:
                self.depcache.mark_keep(other)
            if self._set_to_manual(pkg):
                self.depcache.mark_auto(pkg, False)
            self._internal_mark_install(pkg, True, False)

    def is_held(self, pkg: Package) -> bool:
        """Installed and on hold, or its candidate is the forbidden version."""
        if pkg.current_version is None:
            return False
        est = self.ext[pkg]
        cand = self.depcache.candidate(pkg)
        return (est.selection_state == SelectionState.HOLD or
                (cand is not None and cand.ver_str == est.forbidver))

    def get_upgradable(self, ignore_removed: bool = False) -> List[Package]:
        """Installed packages whose candidate differs from the current version.

        Args:
            ignore_removed: Only consider packages whose selection is Install
        """
        upgradable = []
        for pkg in self.depcache:
            if pkg.current_version is None:
                continue

            if ignore_removed:
                est = self.ext[pkg]
                if est.selection_state == SelectionState.UNKNOWN:
                    logger.warning(f"{pkg.full_name} has not been seen before, but it "
                                   f"should have been initialized on startup")
                    est.selection_state = SelectionState.INSTALL
                if est.selection_state != SelectionState.INSTALL:
                    logger.debug(f"{pkg.full_name} is not upgradable: its selection "
                                 f"is {est.selection_state.name}")
                    continue

            # Downgrades count too, when the candidate is pinned lower
            cand = self.depcache.candidate(pkg)
            if not self.is_held(pkg) and cand is not None and cand is not pkg.current_version:
                logger.debug(f"{pkg.full_name} is upgradable")
                upgradable.append(pkg)

        return upgradable

    def mark_all_upgradable(self, with_autoinst: bool = True, ignore_removed: bool = False,
                            undo: Optional[UndoGroup] = None):
        """Mark every upgradable package for upgrade.

        Runs twice, auto-installing only in the second pass, so that an
        upgrade whose new dependency can be met by upgrading another
        package does not pull in an alternative instead.
        """
        if not self._check_writable():
            return
        with self.action_group(undo):
            passes = (False, True) if with_autoinst else (False,)
            for do_autoinstall in passes:
                for pkg in self.get_upgradable(ignore_removed):
                    self.dirty = True
                    self._internal_mark_install(pkg, do_autoinstall, False)

    def mark_from_dselect(self, pkg: Package):
        """Align intent with the selection recorded by dpkg/dselect."""
        if not self._check_writable():
            return

        est = self.ext[pkg]
        selected = SelectionState(pkg.selected_state)
        est.original_selection_state = selected
        if selected == est.selection_state:
            return

        installed = pkg.current_version is not None
        if selected == SelectionState.PURGE:
            if installed or not self.depcache[pkg].purge:
                self.mark_delete(pkg, True, False)
            else:
                self.mark_keep(pkg, False, False)
        elif selected in (SelectionState.UNKNOWN, SelectionState.DEINSTALL):
            # Unknown to dpkg means another tool removed it
            if installed:
                self.mark_delete(pkg, False, False)
            else:
                self.mark_keep(pkg, False, False)
        elif selected == SelectionState.HOLD:
            if installed:
                self.mark_keep(pkg, False, True)
        elif selected == SelectionState.INSTALL:
            if not installed:
                self.mark_install(pkg, False, False)
            else:
                self.mark_keep(pkg, False, False)

    def apply_proposal(self, choices: Iterable[Choice], undo: Optional[UndoGroup] = None):
        """Apply the decisions of a resolver proposal.

        Automatic removals are recorded as coming from the resolver.
        Installs are only marked automatic for packages that were not
        already going to be installed.
        """
        if not self._check_writable():
            logger.debug("Not applying proposal: the cache is read-only")
            return

        choices = list(choices)
        with self.action_group(undo):
            for choice in choices:
                pkg, ver = choice.package, choice.version
                if ver is None:
                    logger.debug(f"Removing {pkg.full_name}")
                    self._internal_mark_delete(pkg, False, False)
                    if choice.auto and pkg.current_version is not None:
                        self.ext[pkg].remove_reason = RemoveReason.FROM_RESOLVER
                elif ver is pkg.current_version:
                    logger.debug(f"Keeping {pkg.full_name} at {ver.ver_str}")
                    self._internal_mark_keep(pkg, self.depcache[pkg].auto, False)
                else:
                    logger.debug(f"Installing {pkg.full_name} {ver.ver_str}")
                    was_installing = self.depcache.install_version(pkg) is not None
                    self._internal_set_candidate_version(ver)
                    self._internal_mark_install(pkg, False, False)
                    if choice.auto and not was_installing:
                        self.depcache.mark_auto(pkg, True)

    # ------------------------------------------------------------------
    # New packages
    # ------------------------------------------------------------------

    def set_new_flag(self, pkg: Package, is_new: bool):
        if not self._check_writable():
            return
        est = self.ext[pkg]
        if est.new_package and not is_new:
            self.new_package_count -= 1
        elif not est.new_package and is_new:
            self.new_package_count += 1
        if est.new_package != is_new:
            self.dirty = True
        est.new_package = is_new

    def forget_new(self, packages: Optional[Iterable[Package]] = None,
                   undo: Optional[UndoGroup] = None):
        """Acknowledge new packages (all of them by default)."""
        if not self._check_writable():
            return

        record = RevertForgetNew()
        for pkg in (packages if packages is not None else self.depcache):
            est = self.ext[pkg]
            if est.new_package:
                if self.new_package_count > 0:
                    self.new_package_count -= 1
                self.dirty = True
                est.new_package = False
                record.packages.append(pkg)

        if undo is not None and record.packages:
            undo.add(record)
        if self.group_level == 0:
            self.duplicate_cache()

    # ------------------------------------------------------------------
    # Undo
    # ------------------------------------------------------------------

    def restore_package_state(self, item: RestoreState):
        """Replay the mutation that leads back to a recorded state."""
        if not self._check_writable():
            return

        pkg = item.package
        with self.action_group():
            if item.reinstall:
                self._internal_mark_install(pkg, False, True)
            elif item.mode == Mode.DELETE:
                self._internal_mark_delete(pkg, item.purge,
                                           item.remove_reason == RemoveReason.UNUSED,
                                           cascade=False)
            elif item.mode == Mode.KEEP:
                self._internal_mark_keep(pkg, item.auto,
                                         item.selection_state == SelectionState.HOLD)
            else:
                self._internal_mark_install(pkg, False, False)

            # mark_keep leaves the purge flag of removed packages alone
            self.depcache.mark_auto(pkg, item.auto)
            self.depcache.set_purge(pkg, item.purge)
            self.depcache.set_reinstall(pkg, item.reinstall)
            est = self.ext[pkg]
            est.reinstall = item.reinstall
            est.remove_reason = item.remove_reason
            est.forbidver = item.forbidver
            est.selection_state = item.selection_state
