"""
Extended package state engine.

StateCache sits on top of a DepCache and keeps three layers in step:
the dependency cache's per-package decisions, the extended state
(intent, removal provenance, forbidden versions, new flags, user tags)
and the on-disk journal.

    mutation (mark_install, mark_delete, ...)
         |
         v
    action group ---- outermost close ----> sweep
         |                                   |
         v                                   v
    DepCache + ExtendedStateTable      diff vs snapshot -> undo, subscribers
         |
         v
    save() -> pkgstates (+ .old), dpkg selections
"""

import logging
from pathlib import Path
from typing import Optional, Union

from .actions import InterestingDeps, PkgActionState, find_pkg_state
from .config import Policy, get_lock_file, get_state_file
from .depcache import DepCache
from .errors import ErrorChannel
from .extstate import ExtendedState, ExtendedStateTable, UserTagRegistry
from .lock import StateLock
from .selections import DpkgSelections, SelectionSync
from .states import (
    CascadeMixin,
    ConflictsMixin,
    MarkingMixin,
    PersistenceMixin,
    SweepMixin,
    TagsMixin,
    TransactionMixin,
)
from .universe import Dependency, Package, Universe

logger = logging.getLogger(__name__)


class StateCache(TransactionMixin, MarkingMixin, CascadeMixin, SweepMixin,
                 ConflictsMixin, TagsMixin, PersistenceMixin):
    """Authoritative package state: what should happen to each package, and why.

    Usage:
        cache = StateCache(universe, state_dir="/var/lib/pkgstate")
        cache.open()
        undo = UndoGroup()
        cache.mark_delete(pkg, undo=undo)
        cache.save()
        cache.close()

    The cache is read-only unless it holds the state lock; refused
    mutations are reported through cache.errors.
    """

    def __init__(self, universe: Universe, policy: Optional[Policy] = None,
                 state_dir: Union[str, Path, None] = None,
                 errors: Optional[ErrorChannel] = None,
                 selections: Optional[SelectionSync] = None,
                 depcache: Optional[DepCache] = None):
        """Initialize the state cache.

        Args:
            universe: Package universe to annotate
            policy: Behaviour switches (default: Policy())
            state_dir: Directory holding the journal and the lock
            errors: Error channel shared with the caller
            selections: Selection collaborator (default: dpkg)
            depcache: Dependency cache to drive (default: a new DepCache)
        """
        self.universe = universe
        self.policy = policy or Policy()
        self.depcache = depcache or DepCache(universe, self.policy)
        self.depcache.install_ok_hook = self.install_ok
        self.ext = ExtendedStateTable(universe)
        self.user_tags = UserTagRegistry()
        self.errors = errors if errors is not None else ErrorChannel()
        self.selections = selections if selections is not None else DpkgSelections()

        self.state_file = get_state_file(state_dir)
        self.lock = StateLock(get_lock_file(state_dir))

        self.read_only = True
        self.dirty = False
        self.new_package_count = 0
        self.interesting = InterestingDeps(self)
        self._init_transactions()

    def open(self, with_lock: bool = True, do_initselections: bool = True,
             status_file: Union[str, Path, None] = None,
             reset_reinstall: bool = False) -> bool:
        """Load the journal and start tracking changes."""
        self.interesting.reset()
        return self.load(with_lock, do_initselections, status_file, reset_reinstall)

    def close(self):
        """Drop the write lock; unsaved changes are discarded."""
        self.release_lock()
        self.read_only = True

    def get_ext_state(self, pkg: Package) -> ExtendedState:
        return self.ext[pkg]

    def find_pkg_state(self, pkg: Package, ignore_broken: bool = False) -> PkgActionState:
        return find_pkg_state(self, pkg, ignore_broken)

    def is_interesting_dep(self, dep: Dependency) -> bool:
        return self.interesting.is_interesting(dep)

    def is_auto_installed(self, pkg: Package) -> bool:
        return self.depcache[pkg].auto

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
