"""Action groups, change detection and state snapshots."""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Set

from ..depcache import BaseState, Mode
from ..errors import PermissionDenied
from ..extstate import ExtendedState, RemoveReason, SelectionState
from ..undo import RestoreState, UndoGroup
from ..universe import CurrentState, Package

logger = logging.getLogger(__name__)

# Called with the set of packages whose visible state changed
Subscriber = Callable[[Set[Package]], None]


@dataclass
class StateSnapshot:
    """Point-in-time copy of every base and extended state."""
    base: List[BaseState]
    extended: List[ExtendedState]


class ActionGroup:
    """Scope around a batch of mutations.

    Only closing the outermost group reconciles: sweep, diff against the
    last snapshot, undo records, subscriber notification.

    Usage:
        with cache.action_group(undo):
            cache.mark_install(a)
            cache.mark_delete(b)
    """

    def __init__(self, cache, undo: Optional[UndoGroup] = None):
        self.cache = cache
        self.undo = undo

    def __enter__(self):
        self.cache.begin_action_group()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.cache.end_action_group(self.undo)
        return False


class TransactionMixin:
    """Mixin providing action groups, snapshots and the read-only guard.

    Requires:
        - self.depcache: DepCache instance
        - self.ext: ExtendedStateTable instance
        - self.errors: ErrorChannel instance
        - self.read_only: bool
        - self.sweep(): orphan reclamation (SweepMixin)
    """

    def _init_transactions(self):
        self.group_level = 0
        self.subscribers: List[Subscriber] = []
        # Called when the cache is read-only; may grant write access
        self.read_only_permission: Optional[Callable[[], bool]] = None
        self._backup: Optional[StateSnapshot] = None
        self._engine_group = None

    def subscribe(self, callback: Subscriber):
        """Register a callback run after every outermost commit."""
        self.subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber):
        self.subscribers.remove(callback)

    def _check_writable(self) -> bool:
        """Read-only guard run at the start of every mutation.

        Returns True when the mutation may proceed. At group level 0 on
        a read-only cache the refusal is reported; inside an open group
        the outer caller already decided, so the mutation goes ahead.
        """
        if not self.read_only:
            return True
        if self.read_only_permission is not None and self.read_only_permission():
            return True
        if self.group_level > 0:
            return True
        self.errors.report(PermissionDenied(
            "Cannot modify package states: the state lock is not held"))
        return False

    def action_group(self, undo: Optional[UndoGroup] = None) -> ActionGroup:
        return ActionGroup(self, undo)

    def begin_action_group(self):
        if self.group_level == 0:
            self._engine_group = self.depcache.group()
            self._engine_group.__enter__()
        self.group_level += 1

    def end_action_group(self, undo: Optional[UndoGroup] = None):
        assert self.group_level > 0, "end_action_group without begin"

        if self.group_level == 1:
            # Close the engine group first so garbage flags are current
            engine_group, self._engine_group = self._engine_group, None
            if engine_group is not None:
                engine_group.__exit__(None, None, None)

            self.sweep()
            changed: Set[Package] = set()
            self.cleanup_after_change(undo, changed)
            self._backup = self.snapshot_state()
            self.group_level -= 1
            for callback in list(self.subscribers):
                callback(changed)
            return

        self.group_level -= 1

    def cleanup_after_change(self, undo: Optional[UndoGroup] = None,
                             changed: Optional[Set[Package]] = None,
                             alter_stickies: bool = True):
        """Diff against the last snapshot.

        Packages whose mode, auto or purge flag, selection, reinstall flag,
        remove reason or forbidden version changed get a restoring undo record.
        When the mode moved but the selection did not, the selection is
        brought in line with the new mode. Cosmetic differences (broken,
        garbage, candidate, tags, new flag) only count as visible changes.
        """
        if self._backup is None:
            return

        for pkg in self.depcache:
            cur, prev = self.depcache[pkg], self._backup.base[pkg.id]
            est, prev_est = self.ext[pkg], self._backup.extended[pkg.id]
            visibly_changed = False

            # Once automatic, remembered even if the cache forgets it
            if cur.auto and not prev.auto:
                est.previously_auto_package = True
            if cur.mode != prev.mode:
                est.upgrade = pkg.current_version is not None and cur.mode == Mode.INSTALL

            if (cur.mode != prev.mode or cur.auto != prev.auto or cur.purge != prev.purge
                    or est.selection_state != prev_est.selection_state
                    or est.reinstall != prev_est.reinstall
                    or est.remove_reason != prev_est.remove_reason
                    or est.forbidver != prev_est.forbidver):
                if (alter_stickies and cur.mode != prev.mode
                        and est.selection_state == prev_est.selection_state):
                    self._fix_selection(pkg, cur, est)

                visibly_changed = True
                if undo is not None:
                    undo.add(RestoreState(
                        package=pkg, mode=prev.mode, auto=prev.auto,
                        purge=prev.purge, reinstall=prev.reinstall,
                        remove_reason=prev_est.remove_reason,
                        selection_state=prev_est.selection_state,
                        forbidver=prev_est.forbidver))
            elif (cur.broken != prev.broken or cur.garbage != prev.garbage
                  or cur.marked != prev.marked
                  or cur.candidate is not prev.candidate
                  or est.user_tags != prev_est.user_tags
                  or est.new_package != prev_est.new_package):
                visibly_changed = True

            if visibly_changed and changed is not None:
                changed.add(pkg)

    @staticmethod
    def _fix_selection(pkg: Package, cur: BaseState, est: ExtendedState):
        """Selection for a package whose mode changed behind our back."""
        if cur.mode == Mode.DELETE:
            if est.selection_state != SelectionState.DEINSTALL:
                if pkg.current_version is not None:
                    est.remove_reason = RemoveReason.LIBAPT
                est.selection_state = SelectionState.DEINSTALL
        elif cur.mode == Mode.KEEP:
            if pkg.current_version is not None:
                est.selection_state = SelectionState.INSTALL
            elif pkg.current_state == CurrentState.NOT_INSTALLED:
                est.selection_state = SelectionState.PURGE
            else:
                est.selection_state = SelectionState.DEINSTALL
        else:
            est.selection_state = SelectionState.INSTALL

    def duplicate_cache(self):
        """Take the reference snapshot later changes are diffed against."""
        self._backup = self.snapshot_state()

    def snapshot_state(self) -> StateSnapshot:
        return StateSnapshot(base=[s.copy() for s in self.depcache.states],
                             extended=self.ext.copy_states())

    def restore_state(self, snapshot: StateSnapshot):
        """Put every package back to a snapshot (read-only guarded)."""
        if not self._check_writable():
            return
        if len(snapshot.base) != len(self.depcache.states):
            raise ValueError("Snapshot does not match the package universe")
        self.depcache.states = [s.copy() for s in snapshot.base]
        self.ext.restore_states(snapshot.extended)
        self.new_package_count = sum(1 for s in self.ext if s.new_package)
        self.dirty = True
