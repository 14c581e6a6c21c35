"""
Loading and saving the extended state journal.

Load:
    1. defaults for every package, take the write lock
    2. read <state_dir>/pkgstates (missing file = first run)
    3. reconcile each record with the live dselect selection
    4. replay stored intent into the dependency cache
Save:
    1. format every package with versions
    2. write pkgstates.new, rotate pkgstates -> pkgstates.old, rename
    3. push changed selections with the write lock released
"""

import logging
from pathlib import Path
from typing import List, Optional, Tuple, Union

from ..config import NEW_SUFFIX, OLD_SUFFIX
from ..depcache import Mode
from ..errors import JournalParseError, JournalWriteError, LockError
from ..extstate import RemoveReason, SelectionState
from ..journal import Record, format_journal, read_journal, replace_journal, write_journal
from ..selections import Selection
from ..universe import Package

logger = logging.getLogger(__name__)

# Install-Reason / Last-Change value meaning "installed by the user"
LEGACY_MANUAL_REASON = 0


class PersistenceMixin:
    """Mixin providing journal load/save and write-lock handling.

    Requires:
        - self.universe, self.depcache, self.ext, self.user_tags
        - self.policy, self.errors, self.lock, self.state_file, self.selections
        - self.action_group(), self.duplicate_cache() (TransactionMixin)
        - self.mark_from_dselect(), self.mark_all_upgradable(),
          self._refuse_self_removal() (MarkingMixin)
    """

    # ------------------------------------------------------------------
    # Lock
    # ------------------------------------------------------------------

    def release_lock(self):
        """Let a cooperating tool write; the cache stays writable in memory."""
        self.lock.release()

    def gain_lock(self) -> bool:
        """Take the write lock back after release_lock()."""
        if self.lock.locked:
            return True
        if not self.lock.acquire():
            self.errors.report(LockError(
                "Could not regain the state lock! (Perhaps another package "
                "manager is running?)"))
            return False
        return True

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------

    def _find_record_package(self, record: Record) -> Optional[Package]:
        name = record.get('Package')
        arch = record.get('Architecture') or None
        pkg = self.universe.find(name, arch)
        # Unknown packages and packages without versions are skipped
        if pkg is None or pkg.is_virtual:
            return None
        return pkg

    def _decode_record(self, record: Record) -> dict:
        """Typed view of a record; raises JournalParseError on bad numbers."""
        reason = record.get_int('Install-Reason', record.get_int('Last-Change',
                                                                 LEGACY_MANUAL_REASON))
        return {
            'unseen': record.get_flag('Unseen'),
            'upgrade': record.get_flag('Upgrade'),
            'reinstall': record.get_flag('Reinstall'),
            'auto_new_install': record.get_flag('Auto-New-Install'),
            'auto_installed': record.get_flag('Auto-Installed'),
            'legacy_auto': reason != LEGACY_MANUAL_REASON,
            'remove_reason': record.get_int('Remove-Reason', RemoveReason.MANUAL),
            'candver': record.get('Version', ''),
            'state': record.get_int('State', SelectionState.UNKNOWN),
            'dselect_state': record.get_int('Dselect-State', -1),
            'forbidver': record.get('ForbidVer', ''),
            'user_tags': record.get('User-Tags'),
        }

    def _read_records(self, path: Path) -> List[Tuple[Package, dict]]:
        try:
            records = read_journal(path)
            decoded = []
            for record in records:
                pkg = self._find_record_package(record)
                if pkg is not None:
                    decoded.append((pkg, self._decode_record(record)))
        except JournalParseError as e:
            raise JournalParseError(
                f"Problem parsing '{path}', is it corrupt or malformed? "
                f"You can try to recover from '{path}{OLD_SUFFIX}'. ({e})") from e

        for pkg, fields in decoded:
            try:
                SelectionState(fields['state'])
                RemoveReason(fields['remove_reason'])
            except ValueError as e:
                raise JournalParseError(
                    f"Problem parsing '{path}': bad value for {pkg.full_name}: {e}. "
                    f"You can try to recover from '{path}{OLD_SUFFIX}'.") from e
        return decoded

    def load(self, with_lock: bool = True, do_initselections: bool = True,
             status_file: Union[str, Path, None] = None,
             reset_reinstall: bool = False) -> bool:
        """(Re)build the extended state of every package.

        Args:
            with_lock: Take the write lock; without it the cache is read-only
            do_initselections: Replay stored installs/removals into the
                dependency cache
            status_file: Read this journal instead of the default one
            reset_reinstall: Forget pending reinstalls (the last run did them)

        Returns:
            True on success

        Raises:
            JournalParseError: The journal is corrupt; nothing was applied
        """
        path = Path(status_file) if status_file else self.state_file

        # Parse before touching anything so a corrupt file changes nothing
        decoded = self._read_records(path) if path.exists() else None

        self.depcache.reset()
        self.ext.rebuild()
        self.user_tags.clear()
        self.new_package_count = 0

        if with_lock and not self.lock.locked and not self.lock.acquire():
            self.errors.warning(f"Could not lock {self.lock.path}; "
                                f"package states are read-only")

        self.duplicate_cache()
        # Initial state setup needs write access
        self.read_only = False
        initial_open = decoded is None

        with self.action_group():
            if initial_open:
                logger.info(f"No state journal at {path}, starting fresh")
                # Save at least once so new packages are known next time
                self.dirty = True
            else:
                for pkg, fields in decoded:
                    self._apply_record(pkg, fields, do_initselections, reset_reinstall)

            for pkg in self.universe:
                self._init_package(pkg, initial_open, do_initselections)

        self.duplicate_cache()

        if self.policy.auto_upgrade and do_initselections:
            self.mark_all_upgradable(self.policy.auto_install, True)

        self.read_only = not self.lock.locked
        return True

    def _apply_record(self, pkg: Package, fields: dict, do_initselections: bool,
                      reset_reinstall: bool):
        est = self.ext[pkg]
        est.new_package = fields['unseen']
        est.upgrade = fields['upgrade']

        if fields['reinstall']:
            cur = pkg.current_version
            if cur is not None and cur.downloadable:
                est.reinstall = True
            else:
                self.errors.warning(
                    f"Package {pkg.full_name} had been marked to reinstall, but the "
                    f"file for the current installed version "
                    f"{cur.ver_str if cur else '<none>'} is not available")

        # The last run did the reinstall
        if reset_reinstall and est.reinstall:
            est.reinstall = False
            self.dirty = True

        if fields['auto_new_install'] or fields['legacy_auto'] or fields['auto_installed']:
            est.previously_auto_package = True

        est.remove_reason = RemoveReason(fields['remove_reason'])
        est.candver = fields['candver']
        est.selection_state = SelectionState(fields['state'])
        est.original_selection_state = SelectionState(pkg.selected_state)
        est.forbidver = fields['forbidver']

        if fields['user_tags']:
            est.user_tags = self.user_tags.parse(fields['user_tags'])
            if len(est.user_tags) != len(fields['user_tags'].split()):
                self.errors.report(JournalParseError(
                    f"Cannot parse user-tags for package: {pkg.full_name}: "
                    f"'{fields['user_tags']}'"))

        last_dselect = fields['dselect_state']
        if last_dselect < 0:
            last_dselect = pkg.selected_state
        if self.policy.track_dselect_state and pkg.selected_state != last_dselect:
            # Another tool changed the selection since the last save
            self.mark_from_dselect(pkg)
            self.dirty = True
            if not do_initselections:
                self.depcache.mark_keep(pkg)

        # Drop an upgrade that already happened
        if est.upgrade:
            cur = pkg.current_version
            cand = self.depcache.candidate(pkg)
            as_pinned = bool(est.candver) and cur is not None and cur.ver_str == est.candver
            as_candidate = cand is not None and cur is not None and cand is cur
            if as_pinned or (not est.candver and as_candidate):
                est.upgrade = False
                est.candver = ""
                self.dirty = True

    def _init_package(self, pkg: Package, initial_open: bool, do_initselections: bool):
        est = self.ext[pkg]

        if initial_open:
            # Don't make everything "new"
            est.new_package = False
        elif not pkg.is_virtual and est.new_package:
            self.new_package_count += 1

        selection = est.selection_state
        installed = pkg.current_version is not None

        if selection == SelectionState.UNKNOWN:
            est.selection_state = (SelectionState.INSTALL if installed
                                   else SelectionState.DEINSTALL)
        elif do_initselections:
            if selection == SelectionState.INSTALL:
                if est.candver:
                    ver = pkg.find_version(est.candver)
                    if ver is not None and self._candidate_allowed(ver):
                        self.depcache.set_candidate_version(ver)
                    self.depcache.mark_install(pkg, False)
                elif not installed:
                    self.depcache.mark_install(pkg, False)
                else:
                    self.depcache.set_reinstall(pkg, est.reinstall)
                    if est.upgrade and self.depcache.is_upgradable(pkg):
                        self.depcache.mark_install(pkg, False)
            elif selection == SelectionState.HOLD:
                self.depcache.mark_keep(pkg)
            elif selection in (SelectionState.DEINSTALL, SelectionState.PURGE):
                if installed:
                    if self._refuse_self_removal(pkg):
                        est.selection_state = SelectionState.INSTALL
                    else:
                        self.depcache.mark_delete(pkg, selection == SelectionState.PURGE)

        if est.previously_auto_package:
            self.depcache.mark_auto(pkg, True)
            self.dirty = True

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    def _format_package(self, pkg: Package) -> List[Tuple[str, str]]:
        state = self.depcache[pkg]
        est = self.ext[pkg]
        installed = pkg.current_version is not None
        installing = state.mode == Mode.INSTALL

        fields = [
            ('Package', pkg.name),
            ('Architecture', pkg.arch),
            ('Unseen', 'yes' if est.new_package else 'no'),
            ('State', str(int(est.selection_state))),
            ('Dselect-State', str(int(pkg.selected_state))),
            ('Remove-Reason', str(int(est.remove_reason))),
        ]
        if installed and installing:
            fields.append(('Upgrade', 'yes'))
        if est.reinstall:
            fields.append(('Reinstall', 'yes'))
        # Auto flag of a package that is not installed yet
        if not installed and installing and (state.auto or est.previously_auto_package):
            fields.append(('Auto-New-Install', 'yes'))
        if installed and state.auto:
            fields.append(('Auto-Installed', 'yes'))
        if est.forbidver:
            fields.append(('ForbidVer', est.forbidver))
        if est.user_tags:
            fields.append(('User-Tags', self.user_tags.format(est.user_tags)))

        policy_cand = self.depcache.policy_candidate(pkg)
        if installing and est.candver and \
                (policy_cand is None or policy_cand.ver_str != est.candver):
            fields.append(('Version', est.candver))
        return fields

    def _selection_arch(self, pkg: Package) -> str:
        cand = self.depcache.candidate(pkg)
        if self.depcache[pkg].mode == Mode.INSTALL and cand is not None:
            return cand.arch
        if pkg.current_version is not None:
            return pkg.current_version.arch
        return pkg.arch

    def save(self, status_file: Union[str, Path, None] = None) -> bool:
        """Write the journal and push changed selections.

        Args:
            status_file: Write here instead of the default journal; the
                file is written directly, without rotation

        Returns:
            True on success (or when there was nothing to do)
        """
        # Nothing changed, or not allowed to touch the default journal
        if not self.dirty and not status_file:
            return True
        if not self.lock.locked and not status_file:
            return True

        records = []
        selections: List[Selection] = []
        selected: List[Package] = []
        for pkg in self.universe:
            if pkg.is_virtual:
                continue
            records.append(self._format_package(pkg))

            est = self.ext[pkg]
            if est.original_selection_state != est.selection_state and not (
                    est.original_selection_state == SelectionState.UNKNOWN
                    and est.selection_state == SelectionState.DEINSTALL):
                selections.append((pkg.name, self._selection_arch(pkg), est.selection_state))
                selected.append(pkg)

        text = format_journal(records)
        try:
            if status_file:
                write_journal(status_file, text)
            else:
                self.state_file.parent.mkdir(parents=True, exist_ok=True)
                replace_journal(self.state_file, text, NEW_SUFFIX, OLD_SUFFIX)
        except JournalWriteError as e:
            self.errors.report(e)
            return False
        except OSError as e:
            self.errors.report(JournalWriteError(f"Couldn't write state file: {e}"))
            return False

        self.dirty = False
        # The new selections are also the original ones now
        for pkg in selected:
            self.ext[pkg].original_selection_state = self.ext[pkg].selection_state

        # dpkg refuses to run while the lock is held
        had_lock = self.lock.locked
        self.release_lock()
        pushed = self.selections.push(selections)
        if had_lock:
            self.gain_lock()
        if not pushed:
            self.errors.report(JournalWriteError("failed to save selections to dpkg database"))
            return False

        # The selection database now agrees with us
        for pkg in selected:
            pkg.selected_state = self.ext[pkg].selection_state
        return True
